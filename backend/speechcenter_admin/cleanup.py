from __future__ import annotations
from sqlalchemy import delete
from sqlalchemy.orm import Session

from .db import utcnow
from .models import AdminSession


def purge_expired_sessions(db: Session) -> int:
	# Expired rows are already rejected at login check; this only reclaims space
	res = db.execute(delete(AdminSession).where(AdminSession.expires_at <= utcnow()))
	db.commit()
	return res.rowcount or 0
