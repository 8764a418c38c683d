"""Rule derivation: column descriptors + config -> declared validation rules."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Iterable, Literal, Mapping, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from schema_validations.columns import AssociationDescriptor, ColumnDescriptor, ColumnKind, RequiredOn
from schema_validations.errors import ConfigConflict, UnknownCategory


class RuleCategory(str, Enum):
    DATA_TYPE = "data_type"
    NOT_NULL = "not_null"
    UNIQUE = "unique"


ALL_CATEGORIES = frozenset(RuleCategory)

# Audit timestamps and list ordering columns are maintained by the application.
RESERVED_COLUMNS = frozenset({"created_at", "updated_at", "created_on", "updated_on", "position"})


class _Rule(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: str


class NumericType(_Rule):
    kind: Literal["numeric_type"] = "numeric_type"
    only_integer: bool = False
    allow_null: bool = True


class NumericRange(_Rule):
    kind: Literal["numeric_range"] = "numeric_range"
    minimum: Decimal
    maximum: Decimal
    allow_null: bool = True


class LengthLimit(_Rule):
    kind: Literal["length_limit"] = "length_limit"
    maximum: int
    allow_null: bool = True


class Inclusion(_Rule):
    kind: Literal["inclusion"] = "inclusion"
    choices: tuple[bool, ...] = (True, False)
    on: RequiredOn = RequiredOn.SAVE


class PresenceIf(_Rule):
    kind: Literal["presence_if"] = "presence_if"
    on: RequiredOn = RequiredOn.SAVE
    unless_association: str | None = None


class Uniqueness(_Rule):
    kind: Literal["uniqueness"] = "uniqueness"
    scope: tuple[str, ...] = ()
    case_sensitive: bool = True
    allow_null: bool = True
    if_changed: bool = True


DerivedRule = Annotated[
    Union[NumericType, NumericRange, LengthLimit, Inclusion, PresenceIf, Uniqueness],
    Field(discriminator="kind"),
]


def _as_names(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, (str, Enum)):
        value = [value]
    return [item.value if isinstance(item, Enum) else item for item in value]


class ValidationOptions(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)

    only: frozenset[str] | None = None
    except_: frozenset[str] | None = Field(default=None, alias="except")
    validate_: frozenset[str] | None = Field(default=None, alias="validate")

    @field_validator("only", "except_", "validate_", mode="before")
    @classmethod
    def _coerce_names(cls, value: Any) -> Any:
        return _as_names(value)


def _options(data: Mapping[str, Any]) -> ValidationOptions:
    try:
        return ValidationOptions.model_validate(data)
    except ValidationError as exc:
        raise ConfigConflict(f"Invalid schema validation options: {exc}") from exc


def _category(name: str) -> RuleCategory:
    try:
        return RuleCategory(name.replace("-", "_"))
    except ValueError:
        raise UnknownCategory(name) from None


@dataclass(frozen=True)
class ValidationConfig:
    include: bool = True
    columns: frozenset[str] | None = None
    categories: frozenset[RuleCategory] = ALL_CATEGORIES

    @classmethod
    def from_options(
        cls,
        only: Iterable[str] | str | None = None,
        except_: Iterable[str] | str | None = None,
        validate: Iterable[str] | str | None = None,
    ) -> "ValidationConfig":
        options = _options({"only": only, "except": except_, "validate": validate})
        return cls.from_model(options)

    @classmethod
    def from_model(cls, options: ValidationOptions) -> "ValidationConfig":
        if options.only is not None and options.except_ is not None:
            raise ConfigConflict("Options 'only' and 'except' are mutually exclusive")
        categories = ALL_CATEGORIES
        if options.validate_ is not None:
            categories = frozenset(_category(name) for name in options.validate_)
        if options.only is not None:
            return cls(include=True, columns=options.only, categories=categories)
        if options.except_ is not None:
            return cls(include=False, columns=options.except_, categories=categories)
        return cls(categories=categories)

    def selects(self, name: str) -> bool:
        if name in RESERVED_COLUMNS:
            return False
        if self.columns is None:
            return True
        return (name in self.columns) == self.include

    def enabled(self, category: RuleCategory) -> bool:
        return category in self.categories


def parse_options(options: Mapping[str, Any] | None) -> ValidationConfig:
    return ValidationConfig.from_model(_options(dict(options or {})))


def decimal_bound(precision: int, scale: int) -> Decimal:
    return Decimal(10) ** (precision - scale) - Decimal(10) ** (-scale)


def _data_type_rule(column: ColumnDescriptor) -> NumericType | NumericRange | LengthLimit | None:
    if column.kind == ColumnKind.INTEGER:
        return NumericType(field=column.name, only_integer=True)
    if column.kind == ColumnKind.DECIMAL and column.precision is not None:
        bound = decimal_bound(column.precision, column.scale or 0)
        return NumericRange(field=column.name, minimum=-bound, maximum=bound)
    if column.kind in (ColumnKind.DECIMAL, ColumnKind.NUMERIC):
        return NumericType(field=column.name)
    if column.kind == ColumnKind.TEXT and column.limit:
        return LengthLimit(field=column.name, maximum=column.limit)
    return None


def _not_null_rule(column: ColumnDescriptor) -> Inclusion | PresenceIf | None:
    if column.required_on is None:
        return None
    # A plain presence check would reject False.
    if column.kind == ColumnKind.BOOLEAN:
        return Inclusion(field=column.name, on=column.required_on)
    return PresenceIf(field=column.name, on=column.required_on)


def _unique_rule(column: ColumnDescriptor) -> Uniqueness | None:
    if not column.unique:
        return None
    return Uniqueness(field=column.name, scope=column.unique_scope, case_sensitive=column.case_sensitive)


def derive(
    columns: Iterable[ColumnDescriptor],
    config: ValidationConfig,
    associations: Iterable[AssociationDescriptor] = (),
) -> list:
    columns = list(columns)
    associations = list(associations)
    rules: list = []
    guarded = {association.foreign_key for association in associations}

    def add(rule) -> None:
        if rule is not None and rule not in rules:
            rules.append(rule)

    for column in columns:
        if not column.is_content or not config.selects(column.name):
            continue
        if config.enabled(RuleCategory.DATA_TYPE):
            add(_data_type_rule(column))
        # Presence of an association key is checked below, guarded by the association.
        if config.enabled(RuleCategory.NOT_NULL) and column.name not in guarded:
            add(_not_null_rule(column))
        if config.enabled(RuleCategory.UNIQUE):
            add(_unique_rule(column))

    by_name = {column.name: column for column in columns}
    for association in associations:
        column = by_name.get(association.foreign_key)
        if column is None or not config.selects(column.name):
            continue
        if config.enabled(RuleCategory.NOT_NULL) and column.required_on is not None:
            add(PresenceIf(field=column.name, on=column.required_on, unless_association=association.name))
        if config.enabled(RuleCategory.UNIQUE):
            add(_unique_rule(column))

    return rules
