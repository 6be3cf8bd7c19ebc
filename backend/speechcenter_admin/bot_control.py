from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy.orm import Session

from .bot_process import Pm2Supervisor
from .bot_runtime import force_stopped, read_runtime_state, write_control_command
from .db import iso_utc, utcnow
from .settings import settings

logger = logging.getLogger(__name__)


# The process action always runs before the state write. The pair is not
# transactional: if the write fails after pm2 acted, the row lags behind the
# process until the worker heartbeats again.

async def connect_bot(db: Session, supervisor: Pm2Supervisor) -> str:
	await supervisor.ensure_online()
	token = str(uuid.uuid4())
	write_control_command(db, "connect", token)
	return token


async def reconnect_bot(db: Session, supervisor: Pm2Supervisor) -> str:
	await supervisor.restart()
	token = str(uuid.uuid4())
	write_control_command(db, "reconnect", token)
	return token


async def stop_bot(db: Session, supervisor: Pm2Supervisor) -> None:
	# Nothing is left to process a queued command, so the stop is applied here
	await supervisor.stop()
	force_stopped(db)


def is_heartbeat_stale(heartbeat_at: Optional[datetime], now: datetime, *, stale_after: Optional[timedelta] = None) -> bool:
	if heartbeat_at is None:
		return True
	if stale_after is None:
		stale_after = timedelta(seconds=settings.heartbeat_stale_seconds)
	return now - heartbeat_at > stale_after


async def resolve_bot_status(db: Session, supervisor: Pm2Supervisor, *, now: Optional[datetime] = None) -> dict[str, Any]:
	"""Status for the dashboard, with ``offline`` synthesized from the heartbeat.

	A missing row or a failing pm2 degrade to defaults; this never raises for
	missing data since the UI polls it continuously.
	"""
	state = read_runtime_state(db)
	process = await supervisor.get_status()
	now = now or utcnow()
	status = "offline" if is_heartbeat_stale(state.heartbeat_at, now) else state.status
	return {
		"status": status,
		"qrDataUrl": state.qr_data_url,
		"lastError": state.last_error,
		"heartbeatAt": iso_utc(state.heartbeat_at),
		"updatedAt": iso_utc(state.updated_at),
		"process": process.model_dump(exclude_none=True),
	}
