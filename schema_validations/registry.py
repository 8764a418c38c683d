"""Rule registry and evaluator.

Holds the derived rules per mapped class and checks instances against them.
NULL semantics: ``None`` never collides in a uniqueness check (NULLs are
distinct in SQL), while the empty string is an ordinary value that does.
"""

from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Callable

from sqlalchemy import and_, event, func, inspect, not_, select
from sqlalchemy.orm.exc import UnmappedColumnError

from schema_validations.columns import RequiredOn
from schema_validations.errors import RecordInvalid


logger = logging.getLogger(__name__)

_INTEGER_TEXT = re.compile(r"^\s*[+-]?\d+\s*$")

BLANK = "can't be blank"
NOT_A_NUMBER = "is not a number"
NOT_AN_INTEGER = "must be an integer"
TAKEN = "has already been taken"


@dataclass(frozen=True)
class ValidationFailure:
    field: str
    kind: str
    message: str


def _number(value: Any) -> Decimal | None:
    if isinstance(value, bool):
        return None
    try:
        if isinstance(value, (int, Decimal)):
            number = Decimal(value)
        elif isinstance(value, float):
            number = Decimal(repr(value))
        elif isinstance(value, str):
            number = Decimal(value.strip())
        else:
            return None
    except InvalidOperation:
        return None
    return number if number.is_finite() else None


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _applies(on: RequiredOn, updating: bool) -> bool:
    return on == RequiredOn.SAVE or (on == RequiredOn.UPDATE and updating)


def _attribute_key(mapper, column_name: str) -> str:
    for table in mapper.tables:
        column = table.c.get(column_name)
        if column is None:
            continue
        try:
            return mapper.get_property_by_column(column).key
        except UnmappedColumnError:
            break
    return column_name


def _column(mapper, column_name: str):
    for table in mapper.tables:
        column = table.c.get(column_name)
        if column is not None:
            return column
    return None


class _Check:
    """Evaluation state for one instance."""

    def __init__(self, instance: Any, session):
        self.instance = instance
        self.state = inspect(instance)
        self.mapper = self.state.mapper
        self.session = session if session is not None else self.state.session
        self.updating = self.state.has_identity

    def key(self, field: str) -> str:
        return _attribute_key(self.mapper, field)

    def value(self, field: str) -> Any:
        return getattr(self.instance, self.key(field), None)

    def changed(self, field: str) -> bool:
        return self.state.attrs[self.key(field)].history.has_changes()


def _numeric_type(rule, check: _Check) -> str | None:
    value = check.value(rule.field)
    if value is None and rule.allow_null:
        return None
    number = _number(value)
    if number is None:
        return NOT_A_NUMBER
    # 2.0 and Decimal("2.0") are not integers; only their digits-only spelling is.
    if rule.only_integer and not _INTEGER_TEXT.match(value if isinstance(value, str) else str(value)):
        return NOT_AN_INTEGER
    return None


def _numeric_range(rule, check: _Check) -> str | None:
    value = check.value(rule.field)
    if value is None and rule.allow_null:
        return None
    number = _number(value)
    if number is None:
        return NOT_A_NUMBER
    if number < rule.minimum:
        return f"must be greater than or equal to {rule.minimum}"
    if number > rule.maximum:
        return f"must be less than or equal to {rule.maximum}"
    return None


def _length_limit(rule, check: _Check) -> str | None:
    value = check.value(rule.field)
    if value is None and rule.allow_null:
        return None
    if isinstance(value, (str, bytes)) and len(value) > rule.maximum:
        return f"is too long (maximum is {rule.maximum} characters)"
    return None


def _inclusion(rule, check: _Check) -> str | None:
    if not _applies(rule.on, check.updating):
        return None
    value = check.value(rule.field)
    if isinstance(value, bool) and value in rule.choices:
        return None
    return BLANK


def _presence_if(rule, check: _Check) -> str | None:
    if not _applies(rule.on, check.updating):
        return None
    if rule.unless_association and getattr(check.instance, rule.unless_association, None) is not None:
        return None
    return BLANK if _is_blank(check.value(rule.field)) else None


def _uniqueness(rule, check: _Check) -> str | None:
    value = check.value(rule.field)
    if value is None and rule.allow_null:
        return None
    if rule.if_changed and not check.changed(rule.field):
        return None
    column = _column(check.mapper, rule.field)
    if check.session is None or column is None:
        return None

    if rule.case_sensitive or not isinstance(value, str):
        criteria = [column == value]
    else:
        criteria = [func.lower(column) == value.lower()]
    for name in rule.scope:
        scope_column = column.table.c[name]
        scope_value = check.value(name)
        criteria.append(scope_column.is_(None) if scope_value is None else scope_column == scope_value)
    if check.updating:
        own_row = [pk == check.value(pk.name) for pk in column.table.primary_key.columns]
        if own_row:
            criteria.append(not_(and_(*own_row)))

    stmt = select(func.count()).select_from(column.table).where(*criteria)
    with check.session.no_autoflush:
        taken = check.session.execute(stmt).scalar_one()
    return TAKEN if taken else None


_CHECKS: dict[str, Callable[[Any, _Check], str | None]] = {
    "numeric_type": _numeric_type,
    "numeric_range": _numeric_range,
    "length_limit": _length_limit,
    "inclusion": _inclusion,
    "presence_if": _presence_if,
    "uniqueness": _uniqueness,
}


def rule_owner(cls: type) -> type:
    """The class whose table supplies the rules for ``cls``.

    Inheriting mappings share the base mapping's rules; a concrete-table
    subclass maps its own table and owns its rules.
    """
    mapper = inspect(cls, raiseerr=False)
    if mapper is None:
        return cls
    if not mapper.concrete:
        mapper = mapper.base_mapper
    return mapper.class_


class RuleRegistry:
    def __init__(self):
        self._rules: dict[type, list] = {}
        self._lock = threading.Lock()

    def register(self, cls: type, rules) -> None:
        with self._lock:
            self._rules.setdefault(cls, []).extend(rules)

    def rules_for(self, cls: type) -> list:
        owner = rule_owner(cls)
        with self._lock:
            return list(self._rules.get(owner, ()))

    def validate(self, instance: Any, session=None) -> list[ValidationFailure]:
        rules = self.rules_for(type(instance))
        if not rules:
            return []
        check = _Check(instance, session)
        failures: list[ValidationFailure] = []
        for rule in rules:
            message = _CHECKS[rule.kind](rule, check)
            if message is not None:
                failures.append(ValidationFailure(field=rule.field, kind=rule.kind, message=message))
        return failures

    def validate_or_raise(self, instance: Any, session=None) -> None:
        failures = self.validate(instance, session)
        if failures:
            raise RecordInvalid(instance, failures)

    def install(self, target) -> None:
        """Validate new and modified instances before every flush of ``target``.

        ``target`` is anything SQLAlchemy accepts for session events: a
        ``Session`` subclass, a ``sessionmaker`` or a single session.
        """
        event.listen(target, "before_flush", self._before_flush)

    def _before_flush(self, session, flush_context, instances) -> None:
        for instance in list(session.new) + list(session.dirty):
            if instance in session.dirty and not session.is_modified(instance):
                continue
            failures = self.validate(instance, session)
            if failures:
                logger.debug("Rejecting flush of %s: %d validation failures", type(instance).__name__, len(failures))
                raise RecordInvalid(instance, failures)
