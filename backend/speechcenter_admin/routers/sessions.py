from __future__ import annotations
from datetime import timedelta
from typing import Dict

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..db import as_utc, get_db, iso_utc, utcnow
from ..models import Child, Parent, UserSession
from .auth import require_admin

router = APIRouter(prefix="/sessions", tags=["sessions"], dependencies=[Depends(require_admin)])

# Bot conversation steps, as stored in user_sessions.step
STEP_LABELS: Dict[str, str] = {
	"idle": "Старт",
	"chooseUiLanguage": "Выбор языка",
	"parentPhone": "Телефон родителя",
	"parentFullName": "ФИО родителя",
	"confirmParentFullName": "Подтверждение ФИО",
	"childFullName": "ФИО ребёнка",
	"childLanguage": "Язык ребёнка",
	"childAge": "Возраст ребёнка",
	"confirmData": "Подтверждение данных",
	"mainMenu": "Главное меню",
	"testQuestion": "Прохождение теста",
}


def step_label(step: str) -> str:
	return STEP_LABELS.get(step, step)


@router.get("/users")
async def user_sessions(db: Session = Depends(get_db)):
	sessions = db.execute(
		select(UserSession).order_by(UserSession.last_seen_at.desc(), UserSession.id.desc())
	).scalars().all()

	# Most recently seen session per parent
	latest: Dict[int, UserSession] = {}
	for s in sessions:
		latest.setdefault(s.parent_id, s)
	unique_sessions = list(latest.values())

	parent_ids = [s.parent_id for s in unique_sessions]
	child_ids = [s.children_id for s in unique_sessions if s.children_id is not None]
	parents = {}
	if parent_ids:
		parents = {p.id: p for p in db.execute(select(Parent).where(Parent.id.in_(parent_ids))).scalars()}
	children = {}
	if child_ids:
		children = {c.id: c for c in db.execute(select(Child).where(Child.id.in_(child_ids))).scalars()}

	now = utcnow()
	active_threshold = now - timedelta(hours=24)
	stuck_threshold = now - timedelta(hours=72)

	items = []
	active = done = stuck = 0
	for s in unique_sessions:
		parent = parents.get(s.parent_id)
		child = children.get(s.children_id) if s.children_id is not None else None
		last_seen = as_utc(s.last_seen_at)
		if last_seen >= active_threshold:
			active += 1
		if s.status == "done":
			done += 1
		elif last_seen < stuck_threshold:
			stuck += 1
		items.append(
			{
				"sessionId": s.id,
				"parentId": s.parent_id,
				"parentFullName": parent.fullname if parent else f"Parent #{s.parent_id}",
				"parentPhone": parent.phone if parent else "—",
				"childId": child.id if child else None,
				"childFullName": child.fullname if child else None,
				"status": s.status,
				"step": s.step,
				"stepLabel": step_label(s.step),
				"startedAt": iso_utc(s.started_at),
				"lastSeenAt": iso_utc(s.last_seen_at),
			}
		)

	summary = {"uniqueParents": len(items), "active24h": active, "done": done, "stuck": stuck}
	return {"summary": summary, "items": items}
