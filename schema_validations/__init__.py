from schema_validations.columns import AssociationDescriptor, ColumnDescriptor, ColumnKind, RequiredOn, SchemaReader
from schema_validations.errors import (
    ConfigConflict,
    RecordInvalid,
    SchemaUnavailable,
    SchemaValidationError,
    UnknownCategory,
)
from schema_validations.gate import ActivationGate, LoadState, SchemaValidations
from schema_validations.registry import RuleRegistry, ValidationFailure
from schema_validations.rules import (
    Inclusion,
    LengthLimit,
    NumericRange,
    NumericType,
    PresenceIf,
    RuleCategory,
    Uniqueness,
    ValidationConfig,
    ValidationOptions,
    derive,
    parse_options,
)

__all__ = [
    "ActivationGate",
    "AssociationDescriptor",
    "ColumnDescriptor",
    "ColumnKind",
    "ConfigConflict",
    "Inclusion",
    "LengthLimit",
    "LoadState",
    "NumericRange",
    "NumericType",
    "PresenceIf",
    "RecordInvalid",
    "RequiredOn",
    "RuleCategory",
    "RuleRegistry",
    "SchemaReader",
    "SchemaUnavailable",
    "SchemaValidationError",
    "SchemaValidations",
    "UnknownCategory",
    "Uniqueness",
    "ValidationConfig",
    "ValidationFailure",
    "ValidationOptions",
    "derive",
    "parse_options",
]
