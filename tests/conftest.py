import os
import sys
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from types import SimpleNamespace

import pytest


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("SCHEMA_VALIDATIONS_DATABASE_URL", "sqlite+pysqlite:///:memory:")

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship, sessionmaker

from schema_validations.db import make_engine


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def build_models() -> SimpleNamespace:
    class Base(DeclarativeBase):
        pass

    class AccountModel(Base):
        __tablename__ = "account"

        id: Mapped[int] = mapped_column(Integer, primary_key=True)
        name: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)

    class UserModel(Base):
        __tablename__ = "user_account"
        __table_args__ = (UniqueConstraint("account_id", "nickname"),)

        id: Mapped[int] = mapped_column(Integer, primary_key=True)
        account_id: Mapped[int] = mapped_column(ForeignKey("account.id"), nullable=False)
        email: Mapped[str] = mapped_column(String(50, collation="NOCASE"), nullable=False, unique=True)
        nickname: Mapped[str | None] = mapped_column(String(30), nullable=True)
        age: Mapped[int | None] = mapped_column(Integer, nullable=True)
        balance: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
        score: Mapped[float | None] = mapped_column(Float, nullable=True)
        active: Mapped[bool] = mapped_column(Boolean, nullable=False)
        bio: Mapped[str | None] = mapped_column(Text, nullable=True)
        handle: Mapped[str] = mapped_column(String(40), nullable=False, server_default="anon")
        position: Mapped[int | None] = mapped_column(Integer, nullable=True)
        created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, nullable=False)
        updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, nullable=False)

        account: Mapped[AccountModel] = relationship()

    return SimpleNamespace(Base=Base, AccountModel=AccountModel, UserModel=UserModel)


@pytest.fixture
def engine():
    engine = make_engine()
    yield engine
    engine.dispose()


@pytest.fixture
def models():
    return build_models()


@pytest.fixture
def schema(engine, models):
    models.Base.metadata.create_all(bind=engine)
    return models


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


@pytest.fixture(autouse=True)
def validations_enabled(monkeypatch):
    monkeypatch.delenv("SCHEMA_VALIDATIONS_ENABLED", raising=False)
    yield
