"""Singleton bot runtime row shared between the dashboard and the bot worker.

The worker owns ``status``, ``qr_data_url``, ``last_error`` and
``heartbeat_at``; the dashboard only writes control commands, plus the forced
``stopped`` state when it stops the process itself. Every write is a single
UPDATE against the fixed row so concurrent control requests cannot lose
updates.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel
from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.schema import CreateTable

from .db import as_utc, utcnow
from .models import BotRuntimeState

logger = logging.getLogger(__name__)

RUNTIME_STATE_ID = 1

BotStatus = Literal["offline", "stopped", "starting", "waiting_qr", "connected", "disconnected", "auth_failed"]
ControlAction = Literal["connect", "reconnect", "stop"]

_ensured = False


class ControlCommand(BaseModel):
	"""Last command issued to the worker.

	``processed_at`` and ``result`` are filled in by the worker once it acts
	on the command identified by ``token``.
	"""

	action: ControlAction
	token: Optional[str] = None
	requested_at: Optional[datetime] = None
	processed_at: Optional[datetime] = None
	result: Optional[str] = None


class RuntimeState(BaseModel):
	status: str = "stopped"
	qr_data_url: Optional[str] = None
	last_error: Optional[str] = None
	heartbeat_at: Optional[datetime] = None
	control: Optional[ControlCommand] = None
	updated_at: Optional[datetime] = None


def _insert_if_absent(db: Session) -> None:
	values = {"id": RUNTIME_STATE_ID, "status": "stopped", "updated_at": utcnow()}
	dialect = db.get_bind().dialect.name
	if dialect == "postgresql":
		from sqlalchemy.dialects.postgresql import insert as pg_insert

		db.execute(pg_insert(BotRuntimeState).values(**values).on_conflict_do_nothing(index_elements=["id"]))
	elif dialect == "sqlite":
		from sqlalchemy.dialects.sqlite import insert as sqlite_insert

		db.execute(sqlite_insert(BotRuntimeState).values(**values).on_conflict_do_nothing(index_elements=["id"]))
	else:
		try:
			with db.begin_nested():
				db.execute(insert(BotRuntimeState).values(**values))
		except IntegrityError:
			# Row already created by a concurrent request
			pass


def ensure_runtime_state(db: Session) -> None:
	"""Create the table and the singleton row if they do not exist yet.

	Repeated calls are no-ops once the first one succeeded. Concurrent first
	calls are harmless: both the DDL and the insert are idempotent.
	"""
	global _ensured
	if _ensured:
		return
	db.connection().execute(CreateTable(BotRuntimeState.__table__, if_not_exists=True))
	_insert_if_absent(db)
	db.commit()
	_ensured = True
	logger.debug("bot_runtime event=ensured id=%s", RUNTIME_STATE_ID)


def reset_ensured() -> None:
	"""Forget that the singleton was ensured (the next access re-checks it)."""
	global _ensured
	_ensured = False


def read_runtime_state(db: Session) -> RuntimeState:
	ensure_runtime_state(db)
	row = db.execute(select(BotRuntimeState).where(BotRuntimeState.id == RUNTIME_STATE_ID)).scalar_one_or_none()
	if row is None:
		return RuntimeState()
	control = None
	if row.control_action:
		control = ControlCommand(
			action=row.control_action,
			token=row.control_token,
			requested_at=as_utc(row.control_requested_at),
			processed_at=as_utc(row.control_processed_at),
			result=row.control_result,
		)
	return RuntimeState(
		status=row.status or "stopped",
		qr_data_url=row.qr_data_url,
		last_error=row.last_error,
		heartbeat_at=as_utc(row.heartbeat_at),
		control=control,
		updated_at=as_utc(row.updated_at),
	)


def write_control_command(db: Session, action: ControlAction, token: str) -> None:
	"""Replace the current control command; there is no queue."""
	ensure_runtime_state(db)
	db.execute(
		update(BotRuntimeState)
		.where(BotRuntimeState.id == RUNTIME_STATE_ID)
		.values(
			control_action=action,
			control_token=token,
			control_requested_at=utcnow(),
			control_processed_at=None,
			control_result=None,
		)
	)
	db.commit()
	logger.info("bot_runtime event=control_written action=%s token=%s", action, token)


def force_stopped(db: Session) -> None:
	ensure_runtime_state(db)
	db.execute(
		update(BotRuntimeState)
		.where(BotRuntimeState.id == RUNTIME_STATE_ID)
		.values(status="stopped", qr_data_url=None, last_error=None, updated_at=utcnow())
	)
	db.commit()
	logger.info("bot_runtime event=forced_stopped")
