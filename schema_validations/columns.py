"""Schema descriptor reader.

Reflects a table through ``sqlalchemy.inspect`` and reduces every column to a
``ColumnDescriptor`` carrying just what rule derivation needs: the data kind,
the not-null trigger, length/precision limits, uniqueness and foreign-key
linkage. When a declarative registry is supplied, the mapped ``Table`` and its
many-to-one relationships fill in what reflection cannot see (client-side
defaults, collations, expression indexes, relationship names).
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any

from sqlalchemy import Boolean, Float, Integer, Numeric, String, Table, inspect
from sqlalchemy.orm import RelationshipDirection
from sqlalchemy.sql.functions import FunctionElement
from sqlalchemy.sql.schema import Column

from schema_validations.errors import SchemaUnavailable


class ColumnKind(str, Enum):
    INTEGER = "integer"
    DECIMAL = "decimal"
    NUMERIC = "numeric"
    TEXT = "text"
    BOOLEAN = "boolean"
    OTHER = "other"


class RequiredOn(str, Enum):
    SAVE = "save"
    UPDATE = "update"


@dataclass(frozen=True)
class ColumnDescriptor:
    name: str
    kind: ColumnKind = ColumnKind.OTHER
    required_on: RequiredOn | None = None
    limit: int | None = None
    precision: int | None = None
    scale: int | None = None
    unique: bool = False
    unique_scope: tuple[str, ...] = ()
    case_sensitive: bool = True
    foreign_key: bool = False
    primary_key: bool = False
    association: str | None = None

    @property
    def is_content(self) -> bool:
        return not (self.primary_key or self.foreign_key)


@dataclass(frozen=True)
class AssociationDescriptor:
    name: str
    foreign_key: str


_CASE_FOLDING_FUNCTIONS = {"lower", "upper"}
_CASE_INSENSITIVE_COLLATION = re.compile(r"(^nocase$|_ci$|^citext$)", re.IGNORECASE)
_EXPRESSION_INDEX = re.compile(r'^\s*(lower|upper)\s*\(\s*"?(?P<column>\w+)"?\s*\)\s*$', re.IGNORECASE)


def column_kind(type_: Any) -> ColumnKind:
    if isinstance(type_, Boolean):
        return ColumnKind.BOOLEAN
    if isinstance(type_, Integer):
        return ColumnKind.INTEGER
    if isinstance(type_, Float):
        return ColumnKind.NUMERIC
    if isinstance(type_, Numeric):
        return ColumnKind.DECIMAL if type_.precision is not None else ColumnKind.NUMERIC
    if isinstance(type_, String):
        return ColumnKind.TEXT
    return ColumnKind.OTHER


def _is_case_insensitive_collation(collation: str | None) -> bool:
    return bool(collation) and bool(_CASE_INSENSITIVE_COLLATION.search(collation))


def _required_on(nullable: bool, has_default: bool) -> RequiredOn | None:
    if nullable:
        return None
    if has_default:
        return RequiredOn.UPDATE
    return RequiredOn.SAVE


def _case_folded_column(expression: Any) -> str | None:
    if isinstance(expression, FunctionElement) and getattr(expression, "name", "").lower() in _CASE_FOLDING_FUNCTIONS:
        columns = [clause for clause in expression.clauses if isinstance(clause, Column)]
        if len(columns) == 1:
            return columns[0].name
        return None
    if isinstance(expression, str):
        match = _EXPRESSION_INDEX.match(expression)
        if match:
            return match.group("column")
    return None


class SchemaReader:
    def __init__(self, bind, registry=None):
        self.bind = bind
        self.registry = registry

    def has_table(self, table_name: str, schema: str | None = None) -> bool:
        return inspect(self.bind).has_table(table_name, schema=schema)

    def describe(self, table_name: str, schema: str | None = None) -> list[ColumnDescriptor]:
        inspector = inspect(self.bind)
        if not inspector.has_table(table_name, schema=schema):
            raise SchemaUnavailable(table_name, schema)

        mapped_table = self._mapped_table(table_name, schema)
        primary_keys = set(inspector.get_pk_constraint(table_name, schema=schema).get("constrained_columns") or [])
        foreign_keys = {
            name
            for fk in inspector.get_foreign_keys(table_name, schema=schema)
            for name in fk.get("constrained_columns") or []
        }
        unique_sets, case_folded = self._unique_column_sets(inspector, table_name, schema, mapped_table)
        associations = {
            association.foreign_key: association.name
            for association in self._associations(inspector, table_name, schema)
        }

        descriptors: list[ColumnDescriptor] = []
        for column in inspector.get_columns(table_name, schema=schema):
            name = column["name"]
            type_ = column["type"]
            mapped_column = mapped_table.c.get(name) if mapped_table is not None else None
            has_default = column.get("default") is not None
            collation = getattr(type_, "collation", None)
            if mapped_column is not None:
                has_default = has_default or mapped_column.default is not None or mapped_column.server_default is not None
                collation = collation or getattr(mapped_column.type, "collation", None)

            kind = column_kind(type_)
            unique_set = next((columns for columns in unique_sets if columns[-1] == name), None)
            descriptors.append(
                ColumnDescriptor(
                    name=name,
                    kind=kind,
                    required_on=_required_on(column.get("nullable", True), has_default),
                    limit=getattr(type_, "length", None) if kind == ColumnKind.TEXT else None,
                    precision=type_.precision if kind == ColumnKind.DECIMAL else None,
                    scale=(type_.scale or 0) if kind == ColumnKind.DECIMAL else None,
                    unique=unique_set is not None and name not in primary_keys,
                    unique_scope=tuple(unique_set[:-1]) if unique_set else (),
                    case_sensitive=not (name in case_folded or _is_case_insensitive_collation(collation)),
                    foreign_key=name in foreign_keys,
                    primary_key=name in primary_keys,
                    association=associations.get(name),
                )
            )
        return descriptors

    def list_belongs_to_associations(self, table_name: str, schema: str | None = None) -> list[AssociationDescriptor]:
        inspector = inspect(self.bind)
        if not inspector.has_table(table_name, schema=schema):
            raise SchemaUnavailable(table_name, schema)
        return self._associations(inspector, table_name, schema)

    def _associations(self, inspector, table_name: str, schema: str | None) -> list[AssociationDescriptor]:
        mapper = self._mapper_for(table_name, schema)
        if mapper is not None:
            associations: list[AssociationDescriptor] = []
            for relationship in mapper.relationships:
                if relationship.direction is not RelationshipDirection.MANYTOONE:
                    continue
                local = [column for column in relationship.local_columns if column.table is mapper.local_table]
                if len(local) != 1:
                    continue
                associations.append(AssociationDescriptor(name=relationship.key, foreign_key=local[0].name))
            return associations

        associations = []
        for fk in inspector.get_foreign_keys(table_name, schema=schema):
            constrained = fk.get("constrained_columns") or []
            if len(constrained) != 1:
                continue
            column_name = constrained[0]
            name = column_name[: -len("_id")] if column_name.endswith("_id") and len(column_name) > 3 else column_name
            associations.append(AssociationDescriptor(name=name, foreign_key=column_name))
        return associations

    def _unique_column_sets(
        self, inspector, table_name: str, schema: str | None, mapped_table: Table | None
    ) -> tuple[list[tuple[str, ...]], set[str]]:
        unique_sets: list[tuple[str, ...]] = []
        case_folded: set[str] = set()

        def add(columns: tuple[str, ...]) -> None:
            if columns and columns not in unique_sets:
                unique_sets.append(columns)

        for constraint in inspector.get_unique_constraints(table_name, schema=schema):
            add(tuple(constraint.get("column_names") or ()))

        for index in inspector.get_indexes(table_name, schema=schema):
            if not index.get("unique"):
                continue
            column_names = index.get("column_names") or []
            expressions = index.get("expressions") or []
            if len(column_names) == 1 and column_names[0] is None and len(expressions) == 1:
                folded = _case_folded_column(expressions[0])
                if folded:
                    case_folded.add(folded)
                    add((folded,))
                continue
            if column_names and None not in column_names:
                add(tuple(column_names))

        if mapped_table is not None:
            for index in mapped_table.indexes:
                if not index.unique or len(index.expressions) != 1:
                    continue
                folded = _case_folded_column(index.expressions[0])
                if folded:
                    case_folded.add(folded)
                    add((folded,))

        return unique_sets, case_folded

    def _mapper_for(self, table_name: str, schema: str | None):
        if self.registry is None:
            return None
        candidates = [
            mapper
            for mapper in self.registry.mappers
            if isinstance(mapper.local_table, Table)
            and mapper.local_table.name == table_name
            and (schema is None or mapper.local_table.schema == schema)
        ]
        for mapper in candidates:
            if mapper.inherits is None or mapper.inherits.local_table is not mapper.local_table:
                return mapper
        return candidates[0] if candidates else None

    def _mapped_table(self, table_name: str, schema: str | None) -> Table | None:
        mapper = self._mapper_for(table_name, schema)
        if mapper is None:
            return None
        return mapper.local_table
