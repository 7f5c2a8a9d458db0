from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import Column, DateTime
from sqlmodel import SQLModel, create_engine
from sqlalchemy.engine import Engine
from recap.config import Settings

_settings = Settings()

# SQLite with WAL enabled
engine: Engine = create_engine(
    f"sqlite:///{_settings.database_path}", connect_args={"check_same_thread": False}
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Aware UTC for any datetime; naive input is taken to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_column(**kwargs) -> Column:
    # Explicit type so every sqlmodel release maps timestamps the same way
    return Column(DateTime(timezone=True), nullable=False, **kwargs)


def init_db(bind: Engine | None = None) -> None:
    target = bind or engine
    db_file = target.url.database
    if db_file and db_file != ":memory:":
        Path(db_file).parent.mkdir(parents=True, exist_ok=True)
    # Enable WAL
    with target.begin() as conn:
        conn.exec_driver_sql("PRAGMA journal_mode=WAL;")
        conn.exec_driver_sql("PRAGMA synchronous=NORMAL;")
    # Register tables on the metadata before create_all
    from recap.models import integration, meeting  # noqa: F401

    SQLModel.metadata.create_all(target)
