from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import registry as Registry
from sqlalchemy.pool import StaticPool

from schema_validations import settings
from schema_validations.columns import SchemaReader


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        kwargs: dict = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url:
            kwargs["poolclass"] = StaticPool
        return kwargs
    return {"pool_pre_ping": True}


def make_engine(url: str | None = None) -> Engine:
    database_url = url or settings.database_url()
    return create_engine(database_url, future=True, **_engine_kwargs(database_url))


def make_reader(url: str | None = None, registry: Registry | None = None) -> SchemaReader:
    return SchemaReader(make_engine(url), registry=registry)
