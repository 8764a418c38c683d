from __future__ import annotations

import pytest
from sqlalchemy import Boolean, Column, ForeignKey, Index, Integer, MetaData, Numeric, String, Table, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from schema_validations.columns import (
    AssociationDescriptor,
    ColumnKind,
    RequiredOn,
    SchemaReader,
    column_kind,
)
from schema_validations.errors import SchemaUnavailable


def _by_name(descriptors):
    return {descriptor.name: descriptor for descriptor in descriptors}


def test_describe_reflects_kinds_and_limits(engine, schema) -> None:
    reader = SchemaReader(engine, registry=schema.Base.registry)

    columns = _by_name(reader.describe("user_account"))

    assert list(columns) == [
        "id",
        "account_id",
        "email",
        "nickname",
        "age",
        "balance",
        "score",
        "active",
        "bio",
        "handle",
        "position",
        "created_at",
        "updated_at",
    ]
    assert columns["id"].primary_key is True
    assert columns["id"].is_content is False
    assert columns["email"].kind == ColumnKind.TEXT
    assert columns["email"].limit == 50
    assert columns["age"].kind == ColumnKind.INTEGER
    assert columns["balance"].kind == ColumnKind.DECIMAL
    assert (columns["balance"].precision, columns["balance"].scale) == (5, 2)
    assert columns["score"].kind == ColumnKind.NUMERIC
    assert columns["active"].kind == ColumnKind.BOOLEAN
    assert columns["bio"].kind == ColumnKind.TEXT
    assert columns["bio"].limit is None
    assert columns["created_at"].kind == ColumnKind.OTHER


def test_describe_derives_not_null_trigger(engine, schema) -> None:
    reader = SchemaReader(engine, registry=schema.Base.registry)

    columns = _by_name(reader.describe("user_account"))

    assert columns["email"].required_on == RequiredOn.SAVE
    assert columns["active"].required_on == RequiredOn.SAVE
    assert columns["handle"].required_on == RequiredOn.UPDATE
    assert columns["created_at"].required_on == RequiredOn.UPDATE
    assert columns["nickname"].required_on is None


def test_describe_reflects_uniqueness_and_scope(engine, schema) -> None:
    reader = SchemaReader(engine, registry=schema.Base.registry)

    columns = _by_name(reader.describe("user_account"))

    assert columns["email"].unique is True
    assert columns["email"].unique_scope == ()
    assert columns["email"].case_sensitive is False
    assert columns["nickname"].unique is True
    assert columns["nickname"].unique_scope == ("account_id",)
    assert columns["nickname"].case_sensitive is True
    assert columns["account_id"].unique is False
    assert columns["age"].unique is False


def test_describe_links_foreign_keys_to_associations(engine, schema) -> None:
    reader = SchemaReader(engine, registry=schema.Base.registry)

    columns = _by_name(reader.describe("user_account"))

    assert columns["account_id"].foreign_key is True
    assert columns["account_id"].association == "account"
    assert columns["account_id"].is_content is False


def test_describe_missing_table_raises(engine) -> None:
    reader = SchemaReader(engine)

    with pytest.raises(SchemaUnavailable, match="missing_table"):
        reader.describe("missing_table")
    assert reader.has_table("missing_table") is False


def test_belongs_to_associations_from_mapped_relationships(engine, schema) -> None:
    reader = SchemaReader(engine, registry=schema.Base.registry)

    assert reader.list_belongs_to_associations("user_account") == [
        AssociationDescriptor(name="account", foreign_key="account_id")
    ]
    assert reader.list_belongs_to_associations("account") == []


def test_belongs_to_associations_fall_back_to_foreign_keys(engine) -> None:
    metadata = MetaData()
    Table("owner", metadata, Column("id", Integer, primary_key=True))
    Table(
        "pet",
        metadata,
        Column("id", Integer, primary_key=True),
        Column("owner_id", ForeignKey("owner.id"), nullable=False),
        Column("name", String(10)),
    )
    metadata.create_all(bind=engine)

    reader = SchemaReader(engine)

    assert reader.list_belongs_to_associations("pet") == [
        AssociationDescriptor(name="owner", foreign_key="owner_id")
    ]
    assert _by_name(reader.describe("pet"))["owner_id"].association == "owner"


def test_belongs_to_associations_missing_table_raises(engine) -> None:
    with pytest.raises(SchemaUnavailable):
        SchemaReader(engine).list_belongs_to_associations("nowhere")


def test_case_folded_unique_index_is_case_insensitive(engine) -> None:
    class Base(DeclarativeBase):
        pass

    class TagModel(Base):
        __tablename__ = "tag"

        id: Mapped[int] = mapped_column(Integer, primary_key=True)
        label: Mapped[str] = mapped_column(String(20), nullable=False)

    Index("ix_tag_label_lower", func.lower(TagModel.__table__.c.label), unique=True)
    Base.metadata.create_all(bind=engine)

    label = _by_name(SchemaReader(engine, registry=Base.registry).describe("tag"))["label"]

    assert label.unique is True
    assert label.case_sensitive is False


def test_column_kind_mapping() -> None:
    assert column_kind(Boolean()) == ColumnKind.BOOLEAN
    assert column_kind(Integer()) == ColumnKind.INTEGER
    assert column_kind(Numeric(10, 4)) == ColumnKind.DECIMAL
    assert column_kind(Numeric()) == ColumnKind.NUMERIC
    assert column_kind(String(3)) == ColumnKind.TEXT
