"""One-shot activation of schema validations per mapped class.

``SchemaValidations.install(Base)`` listens for the first construction
(``init``) or database load (``load``) of any class mapped under ``Base``.
That first use reflects the class's table, derives its rules and hands them to
the registry; later uses find the gate ``loaded`` and return immediately.
Rules belong to the base mapping of an inheritance hierarchy, so subclasses
never derive on their own; a concrete-table subclass is its own base. Options
declared as ``__schema_validations__`` are parsed when ``install`` runs.
"""

from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Any, Callable, Iterable

from sqlalchemy import Table, event, inspect

from schema_validations import settings
from schema_validations.columns import SchemaReader
from schema_validations.errors import ConfigConflict, SchemaUnavailable
from schema_validations.registry import RuleRegistry, rule_owner
from schema_validations.rules import ValidationConfig, derive, parse_options


logger = logging.getLogger(__name__)


class LoadState(str, Enum):
    UNLOADED = "unloaded"
    LOADING = "loading"
    LOADED = "loaded"


class ActivationGate:
    def __init__(self):
        self._lock = threading.RLock()
        self.state = LoadState.UNLOADED

    def activate(self, loader: Callable[[], bool]) -> bool:
        """Run ``loader`` once; True only for the call that completed loading."""
        if self.state is LoadState.LOADED:
            return False
        with self._lock:
            if self.state is not LoadState.UNLOADED:
                return False
            self.state = LoadState.LOADING
            try:
                loaded = loader()
            except BaseException:
                self.state = LoadState.UNLOADED
                raise
            self.state = LoadState.LOADED if loaded else LoadState.UNLOADED
            return bool(loaded)


class SchemaValidations:
    def __init__(self, reader: SchemaReader, registry: RuleRegistry | None = None):
        self.reader = reader
        self.registry = registry if registry is not None else RuleRegistry()
        self._gates: dict[type, ActivationGate] = {}
        self._configs: dict[type, ValidationConfig] = {}
        self._declared: dict[type, ValidationConfig] = {}
        self._lock = threading.Lock()

    def configure(
        self,
        cls: type,
        only: Iterable[str] | str | None = None,
        except_: Iterable[str] | str | None = None,
        validate: Iterable[str] | str | None = None,
    ) -> ValidationConfig:
        owner = self._owner(cls)
        if owner is None:
            raise ConfigConflict(f"{cls.__name__} is not mapped to a table and cannot be configured")
        config = ValidationConfig.from_options(only=only, except_=except_, validate=validate)
        with self._lock:
            if owner in self._configs:
                raise ConfigConflict(f"Schema validations already configured for {owner.__name__}")
            gate = self._gates.get(owner)
            if gate is not None and gate.state is not LoadState.UNLOADED:
                raise ConfigConflict(f"Schema validations already loaded for {owner.__name__}")
            self._configs[owner] = config
        return config

    def config_for(self, cls: type) -> ValidationConfig:
        with self._lock:
            config = self._configs.get(cls) or self._declared.get(cls)
        if config is not None:
            return config
        return self._declare(cls)

    def install(self, base: type, session: Any = None) -> None:
        registry = getattr(base, "registry", None)
        if self.reader.registry is None:
            self.reader.registry = registry
        if registry is not None:
            for mapper in list(registry.mappers):
                owner = self._owner(mapper.class_)
                if owner is mapper.class_:
                    self._declare(owner)
        event.listen(base, "init", self._on_init, propagate=True)
        event.listen(base, "load", self._on_load, propagate=True)
        if session is not None:
            self.registry.install(session)

    def state(self, cls: type) -> LoadState:
        with self._lock:
            gate = self._gates.get(cls)
        return gate.state if gate is not None else LoadState.UNLOADED

    def load(self, cls: type) -> bool:
        if not settings.validations_enabled():
            return False
        owner = self._owner(cls)
        if owner is None:
            return False
        return self._gate(owner).activate(lambda: self._derive(owner))

    def _on_init(self, target, args, kwargs) -> None:
        self.load(type(target))

    def _on_load(self, target, context) -> None:
        self.load(type(target))

    def _declare(self, cls: type) -> ValidationConfig:
        config = parse_options(getattr(cls, "__schema_validations__", None))
        with self._lock:
            return self._declared.setdefault(cls, config)

    def _gate(self, cls: type) -> ActivationGate:
        with self._lock:
            gate = self._gates.get(cls)
            if gate is None:
                gate = self._gates[cls] = ActivationGate()
            return gate

    def _owner(self, cls: type) -> type | None:
        if inspect(cls, raiseerr=False) is None:
            return None
        owner = rule_owner(cls)
        if owner.__dict__.get("__abstract__", False) or not owner.__name__:
            logger.debug("Skipping schema validations for %r", owner)
            return None
        if not isinstance(inspect(owner).local_table, Table):
            logger.debug("Skipping schema validations for %s: not mapped to a table", owner.__name__)
            return None
        return owner

    def _derive(self, cls: type) -> bool:
        table = inspect(cls).local_table
        config = self.config_for(cls)
        try:
            columns = self.reader.describe(table.name, schema=table.schema)
            associations = self.reader.list_belongs_to_associations(table.name, schema=table.schema)
        except SchemaUnavailable:
            logger.debug("Table %s for %s not found; schema validations deferred", table.name, cls.__name__)
            return False
        rules = derive(columns, config, associations)
        self.registry.register(cls, rules)
        logger.info("Derived %d schema validation rules for %s", len(rules), cls.__name__)
        return True
