from __future__ import annotations
import re
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..db import as_utc, get_db, utcnow
from ..models import Lead, Parent, TestResultRule, TestSession
from .auth import require_admin

router = APIRouter(prefix="/analytics", tags=["analytics"], dependencies=[Depends(require_admin)])

MONTHS_SHORT_RU = ["янв.", "февр.", "март", "апр.", "май", "июнь", "июль", "авг.", "сент.", "окт.", "нояб.", "дек."]
MONTHS_LONG_RU = [
	"январь", "февраль", "март", "апрель", "май", "июнь",
	"июль", "август", "сентябрь", "октябрь", "ноябрь", "декабрь",
]
UNCATEGORIZED_LABEL = "Без категории"
PALETTE = ["var(--chart-1)", "var(--chart-2)", "var(--chart-3)", "var(--chart-4)", "var(--chart-5)", "var(--chart-1)"]

Range = Tuple[datetime, datetime]


def percent_change(current: int, previous: int) -> Optional[float]:
	if previous <= 0:
		return None
	return (current - previous) / previous * 100


def parse_year(raw: Optional[str], fallback: int) -> int:
	try:
		year = int(raw) if raw is not None else fallback
	except ValueError:
		return fallback
	if year < 2000 or year > 2100:
		return fallback
	return year


def parse_month(raw: Optional[str], fallback: str) -> str:
	if not raw or not re.fullmatch(r"\d{4}-\d{2}", raw):
		return fallback
	month = int(raw[5:])
	if month < 1 or month > 12:
		return fallback
	return raw


def _month_key(d: datetime) -> str:
	return f"{d.year:04d}-{d.month:02d}"


def year_range(year: int) -> Range:
	return datetime(year, 1, 1, tzinfo=timezone.utc), datetime(year + 1, 1, 1, tzinfo=timezone.utc)


def month_range(month_value: str) -> Range:
	year, month = int(month_value[:4]), int(month_value[5:])
	start = datetime(year, month, 1, tzinfo=timezone.utc)
	end = datetime(year + 1, 1, 1, tzinfo=timezone.utc) if month == 12 else datetime(year, month + 1, 1, tzinfo=timezone.utc)
	return start, end


def previous_month(month_value: str) -> str:
	start, _ = month_range(month_value)
	prev = start - timedelta(days=1)
	return _month_key(prev)


def _within(d: datetime, r: Range) -> bool:
	return r[0] <= d < r[1]


def _created_rows(db: Session, model, start: datetime, end: datetime, *columns) -> List[Any]:
	stmt = select(model.created_at, *columns).where(model.created_at >= start, model.created_at < end)
	return db.execute(stmt).all()


def _trend(current: int, previous: int) -> Dict[str, Any]:
	return {
		"current": current,
		"previous": previous,
		"changePct": percent_change(current, previous),
		"hasEnoughData": previous > 0,
	}


def match_rule_label(rules: List[TestResultRule], score: int) -> str:
	for rule in rules:
		if rule.min_score <= score <= rule.max_score:
			return rule.label
	return UNCATEGORIZED_LABEL


def build_overview(db: Session, year: int, month_value: str) -> Dict[str, Any]:
	year_current = year_range(year)
	year_prev = year_range(year - 1)
	month_current = month_range(month_value)
	month_prev = month_range(previous_month(month_value))

	month_keys = [f"{year:04d}-{m:02d}" for m in range(1, 13)]
	leads_by_month: Dict[str, Dict[str, int]] = {k: {"warm": 0, "hot": 0} for k in month_keys}
	parents_by_month: Dict[str, int] = {k: 0 for k in month_keys}

	leads_current_year = leads_prev_year = 0
	for created_at, status in _created_rows(db, Lead, year_prev[0], year_current[1], Lead.status):
		d = as_utc(created_at)
		if _within(d, year_current):
			leads_current_year += 1
			leads_by_month[_month_key(d)]["hot" if status == "hot" else "warm"] += 1
		elif _within(d, year_prev):
			leads_prev_year += 1

	parents_current_year = parents_prev_year = 0
	for (created_at,) in _created_rows(db, Parent, year_prev[0], year_current[1]):
		d = as_utc(created_at)
		if _within(d, year_current):
			parents_current_year += 1
			parents_by_month[_month_key(d)] += 1
		elif _within(d, year_prev):
			parents_prev_year += 1

	sessions = db.execute(
		select(TestSession.test_id, TestSession.score, TestSession.completed_at).where(
			TestSession.status == "complete",
			TestSession.completed_at >= year_prev[0],
			TestSession.completed_at < year_current[1],
		)
	).all()
	test_ids = {s.test_id for s in sessions}
	rules_by_test: Dict[int, List[TestResultRule]] = {}
	if test_ids:
		rules = db.execute(
			select(TestResultRule).where(TestResultRule.test_id.in_(test_ids)).order_by(TestResultRule.id)
		).scalars()
		for rule in rules:
			rules_by_test.setdefault(rule.test_id, []).append(rule)

	results_current: Dict[str, int] = {}
	results_current_year = results_prev_year = 0
	for s in sessions:
		if s.completed_at is None:
			continue
		d = as_utc(s.completed_at)
		if _within(d, year_current):
			results_current_year += 1
			label = match_rule_label(rules_by_test.get(s.test_id, []), s.score)
			results_current[label] = results_current.get(label, 0) + 1
		elif _within(d, year_prev):
			results_prev_year += 1

	results_distribution = [
		{"key": f"result_{idx + 1}", "label": label, "value": value, "color": PALETTE[idx % len(PALETTE)]}
		for idx, (label, value) in enumerate(results_current.items())
	]

	days: List[date] = []
	day = month_current[0].date()
	while day < month_current[1].date():
		days.append(day)
		day += timedelta(days=1)
	day_keys = [f"{d.day:02d}" for d in days]
	parents_by_day: Dict[str, int] = {k: 0 for k in day_keys}
	leads_by_day: Dict[str, Dict[str, int]] = {k: {"warm": 0, "hot": 0} for k in day_keys}

	parents_current_month = parents_previous_month = 0
	for (created_at,) in _created_rows(db, Parent, month_prev[0], month_current[1]):
		d = as_utc(created_at)
		if _within(d, month_current):
			parents_current_month += 1
			parents_by_day[f"{d.day:02d}"] += 1
		elif _within(d, month_prev):
			parents_previous_month += 1

	warm_current = hot_current = warm_previous = hot_previous = 0
	for created_at, status in _created_rows(db, Lead, month_prev[0], month_current[1], Lead.status):
		d = as_utc(created_at)
		if _within(d, month_current):
			if status == "hot":
				leads_by_day[f"{d.day:02d}"]["hot"] += 1
				hot_current += 1
			else:
				leads_by_day[f"{d.day:02d}"]["warm"] += 1
				warm_current += 1
		elif _within(d, month_prev):
			if status == "hot":
				hot_previous += 1
			else:
				warm_previous += 1

	current_total = warm_current + hot_current
	previous_total = warm_previous + hot_previous
	start = month_current[0]
	return {
		"selectedYear": year,
		"selectedMonth": month_value,
		"yearRangeLabel": f"01.01.{year} - 31.12.{year}",
		"monthRangeLabel": f"{MONTHS_LONG_RU[start.month - 1]} {start.year}",
		"leadsByMonth": [
			{"month": MONTHS_SHORT_RU[i], "warm": leads_by_month[k]["warm"], "hot": leads_by_month[k]["hot"]}
			for i, k in enumerate(month_keys)
		],
		"uniqueParentsByMonth": [
			{"month": MONTHS_SHORT_RU[i], "parents": parents_by_month[k]} for i, k in enumerate(month_keys)
		],
		"resultsDistribution": results_distribution,
		"parentsByDay": [{"day": k, "parents": parents_by_day[k]} for k in day_keys],
		"leadsByDay": [{"day": k, "warm": leads_by_day[k]["warm"], "hot": leads_by_day[k]["hot"]} for k in day_keys],
		"trends": {
			"yearlyLeads": _trend(leads_current_year, leads_prev_year),
			"yearlyParents": _trend(parents_current_year, parents_prev_year),
			"yearlyResults": _trend(results_current_year, results_prev_year),
			"monthlyParents": _trend(parents_current_month, parents_previous_month),
			"monthlyLeads": {
				"currentWarm": warm_current,
				"currentHot": hot_current,
				"currentTotal": current_total,
				"previousWarm": warm_previous,
				"previousHot": hot_previous,
				"previousTotal": previous_total,
				"changePct": percent_change(current_total, previous_total),
				"hasEnoughData": previous_total > 0,
			},
		},
	}


@router.get("/overview")
async def overview(year: Optional[str] = None, month: Optional[str] = None, db: Session = Depends(get_db)):
	now = utcnow()
	selected_year = parse_year(year, now.year)
	selected_month = parse_month(month, _month_key(now))
	return build_overview(db, selected_year, selected_month)
