from __future__ import annotations
from datetime import date, timedelta
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..db import as_utc, get_db, iso_utc, utcnow
from ..models import Child, Lead, Parent
from .auth import require_admin

router = APIRouter(prefix="/user", tags=["users"], dependencies=[Depends(require_admin)])

LANGUAGE_LABELS = {"ru": "Русский", "kz": "Казахский", "both": "Два языка"}


def calculate_age(birth_date: Optional[date], today: Optional[date] = None) -> Optional[int]:
	if birth_date is None:
		return None
	today = today or utcnow().date()
	age = today.year - birth_date.year
	if (today.month, today.day) < (birth_date.month, birth_date.day):
		age -= 1
	return age if age >= 0 else None


@router.get("/all")
async def user_stats(db: Session = Depends(get_db)):
	since = utcnow() - timedelta(days=30)
	total_users = db.execute(select(func.count()).select_from(Parent)).scalar_one()
	new_users = db.execute(select(func.count()).select_from(Parent).where(Parent.created_at >= since)).scalar_one()
	hot_parents = select(Lead.parent_id).where(Lead.status == "hot")
	hot_leads = db.execute(select(func.count(func.distinct(Lead.parent_id))).where(Lead.status == "hot")).scalar_one()
	# A parent with any hot lead counts as hot only
	warm_leads = db.execute(
		select(func.count(func.distinct(Lead.parent_id))).where(Lead.status == "warm", Lead.parent_id.not_in(hot_parents))
	).scalar_one()
	return {
		"totalUsers": int(total_users or 0),
		"newUsers30d": int(new_users or 0),
		"warmLeads": int(warm_leads or 0),
		"hotLeads": int(hot_leads or 0),
	}


@router.get("/list")
async def list_leads(db: Session = Depends(get_db)):
	leads = db.execute(select(Lead.parent_id, Lead.status)).all()
	if not leads:
		return {"items": []}
	status_by_parent: Dict[int, str] = {}
	for parent_id, status in leads:
		if status_by_parent.get(parent_id) != "hot":
			status_by_parent[parent_id] = status
	parent_ids = list(status_by_parent)
	parents = db.execute(select(Parent).where(Parent.id.in_(parent_ids))).scalars().all()
	children = db.execute(select(Child).where(Child.parent_id.in_(parent_ids)).order_by(Child.id)).scalars().all()
	children_by_parent: Dict[int, List[Child]] = {}
	for child in children:
		children_by_parent.setdefault(child.parent_id, []).append(child)

	items = []
	for parent in sorted(parents, key=lambda p: as_utc(p.created_at), reverse=True):
		children_list = [
			{
				"id": c.id,
				"fullName": c.fullname,
				"birthDate": c.birth_date.isoformat() if c.birth_date else None,
				"language": LANGUAGE_LABELS.get(c.language, c.language),
				"age": calculate_age(c.birth_date),
			}
			for c in children_by_parent.get(parent.id, [])
		]
		items.append(
			{
				"parentId": parent.id,
				"parentFullName": parent.fullname,
				"childrenCount": len(children_list),
				"createdAt": iso_utc(parent.created_at),
				"status": status_by_parent[parent.id],
				"children": children_list,
			}
		)
	return {"items": items}


@router.get("/timeline")
async def timeline(db: Session = Depends(get_db)):
	parent_by_date: Dict[str, int] = {}
	for (created_at,) in db.execute(select(Parent.created_at)).all():
		key = as_utc(created_at).date().isoformat()
		parent_by_date[key] = parent_by_date.get(key, 0) + 1
	child_by_date: Dict[str, int] = {}
	for (created_at,) in db.execute(select(Child.created_at)).all():
		key = as_utc(created_at).date().isoformat()
		child_by_date[key] = child_by_date.get(key, 0) + 1

	rows = [
		{"date": d, "parents": parent_by_date.get(d, 0), "children": child_by_date.get(d, 0)}
		for d in sorted(set(parent_by_date) | set(child_by_date))
	]
	return {
		"totalParents": sum(r["parents"] for r in rows),
		"totalChildren": sum(r["children"] for r in rows),
		"timeline": rows,
	}
