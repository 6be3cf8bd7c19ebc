from __future__ import annotations
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import create_engine, inspect
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool
from .settings import settings


DATABASE_URL = settings.database_url or "sqlite:///./app.db"

_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
_engine_kwargs = {}
if DATABASE_URL.startswith("sqlite") and (":memory:" in DATABASE_URL or DATABASE_URL.rstrip("/").endswith("sqlite:")):
	# A single shared connection, otherwise every session sees its own empty database
	_engine_kwargs["poolclass"] = StaticPool

engine = create_engine(DATABASE_URL, connect_args=_connect_args, future=True, **_engine_kwargs)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)
Base = declarative_base()


def get_db():
	db = SessionLocal()
	try:
		yield db
	finally:
		db.close()


def utcnow() -> datetime:
	return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
	"""Normalize a timestamp read back from the database.

	PostgreSQL returns aware datetimes for timestamptz columns; SQLite drops the
	offset on the way in, so naive values are UTC by construction.
	"""
	if value is None:
		return None
	if value.tzinfo is None:
		return value.replace(tzinfo=timezone.utc)
	return value.astimezone(timezone.utc)


# Columns added to bot_runtime_state after its first release. Older deployments
# created the table without them.
_BOT_RUNTIME_COLUMNS = {
	"heartbeat_at": "TIMESTAMP WITH TIME ZONE",
	"control_action": "VARCHAR(32)",
	"control_token": "VARCHAR(128)",
	"control_requested_at": "TIMESTAMP WITH TIME ZONE",
	"control_processed_at": "TIMESTAMP WITH TIME ZONE",
	"control_result": "TEXT",
}


# Best-effort lightweight migrations (SQLite and PostgreSQL friendly)
def ensure_schema() -> None:
	inspector = inspect(engine)
	tables = set(inspector.get_table_names())
	if "bot_runtime_state" in tables:
		cols = {c["name"] for c in inspector.get_columns("bot_runtime_state")}
		with engine.begin() as conn:
			for name, ddl in _BOT_RUNTIME_COLUMNS.items():
				if name not in cols:
					conn.exec_driver_sql(f"ALTER TABLE bot_runtime_state ADD COLUMN {name} {ddl}")
	if "admins" in tables:
		cols = {c["name"] for c in inspector.get_columns("admins")}
		if "last_login_at" not in cols:
			with engine.begin() as conn:
				conn.exec_driver_sql("ALTER TABLE admins ADD COLUMN last_login_at TIMESTAMP WITH TIME ZONE")


def iso_utc(value: Optional[datetime]) -> Optional[str]:
	value = as_utc(value)
	return value.isoformat() if value is not None else None
