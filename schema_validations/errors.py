from __future__ import annotations

from typing import Any


class SchemaValidationError(Exception):
    pass


class SchemaUnavailable(SchemaValidationError, LookupError):
    def __init__(self, table_name: str, schema: str | None = None):
        self.table_name = table_name
        self.schema = schema
        qualified = f"{schema}.{table_name}" if schema else table_name
        super().__init__(f"Table not found: {qualified}")


class ConfigConflict(SchemaValidationError, ValueError):
    pass


class UnknownCategory(SchemaValidationError, ValueError):
    def __init__(self, category: Any):
        self.category = category
        super().__init__(f"Unknown validation category: {category!r}")


class RecordInvalid(SchemaValidationError):
    def __init__(self, instance: Any, failures: list):
        self.instance = instance
        self.failures = list(failures)
        detail = ", ".join(f"{failure.field} {failure.message}" for failure in self.failures)
        super().__init__(f"Validation failed for {type(instance).__name__}: {detail}")
