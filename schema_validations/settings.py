from __future__ import annotations

import os


DEFAULT_DATABASE_URL = "sqlite+pysqlite:///:memory:"

_FALSE_VALUES = {"0", "false", "no", "off"}


def database_url() -> str:
    return os.getenv("SCHEMA_VALIDATIONS_DATABASE_URL", DEFAULT_DATABASE_URL)


def validations_enabled() -> bool:
    raw = os.getenv("SCHEMA_VALIDATIONS_ENABLED", "1")
    return raw.strip().lower() not in _FALSE_VALUES
