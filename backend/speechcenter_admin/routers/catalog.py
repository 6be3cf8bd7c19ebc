from __future__ import annotations
import logging
from typing import Any, Dict, List, Optional, Type, TypeVar

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from ..db import get_db, iso_utc, utcnow
from ..models import Answer, Question, Test, TestResultRule
from .auth import require_admin

router = APIRouter(prefix="/tests", tags=["tests"], dependencies=[Depends(require_admin)])
logger = logging.getLogger(__name__)


class _CamelModel(BaseModel):
	model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


M = TypeVar("M", bound=_CamelModel)


# Incoming values are loosely typed on purpose: the editor form posts whatever
# the inputs hold and gets a readable 400 back instead of a schema error.
class AnswerInput(_CamelModel):
	text_ru: Any = ""
	text_kz: Any = ""
	points: Any = 0


class QuestionInput(_CamelModel):
	text_ru: Any = ""
	text_kz: Any = ""
	answers: Any = None


class RuleInput(_CamelModel):
	min_score: Any = None
	max_score: Any = None
	label: Any = ""
	text_ru: Any = ""
	text_kz: Any = ""


class CatalogTestPayload(_CamelModel):
	name: Any = ""
	age_from: Any = None
	age_to: Any = None
	questions: Any = None
	rules: Any = None


def _items(value: Any, model: Type[M]) -> List[M]:
	"""Parse a list field item by item; a non-list is empty and a non-object item is blank."""
	if not isinstance(value, list):
		return []
	return [model.model_validate(item if isinstance(item, dict) else {}) for item in value]


def _text(value: Any) -> str:
	return "" if value is None else str(value).strip()


def _as_int(value: Any) -> Optional[int]:
	"""Integer value of a form field, None when it is not a whole number."""
	if isinstance(value, bool) or value is None:
		return None
	if isinstance(value, int):
		return value
	if isinstance(value, float):
		return int(value) if value.is_integer() else None
	if isinstance(value, str):
		raw = value.strip()
		if not raw:
			return None
		try:
			number = float(raw)
		except ValueError:
			return None
		return int(number) if number.is_integer() else None
	return None


def normalize_payload(payload: CatalogTestPayload) -> Dict[str, Any]:
	return {
		"name": _text(payload.name),
		"age_from": _as_int(payload.age_from),
		"age_to": _as_int(payload.age_to),
		"questions": [
			{
				"text_ru": _text(q.text_ru),
				"text_kz": _text(q.text_kz),
				"answers": [
					{"text_ru": _text(a.text_ru), "text_kz": _text(a.text_kz), "points": _as_int(a.points)}
					for a in _items(q.answers, AnswerInput)
				],
			}
			for q in _items(payload.questions, QuestionInput)
		],
		"rules": [
			{
				"min_score": _as_int(r.min_score),
				"max_score": _as_int(r.max_score),
				"label": _text(r.label),
				"text_ru": _text(r.text_ru),
				"text_kz": _text(r.text_kz),
			}
			for r in _items(payload.rules, RuleInput)
		],
	}


def validate_payload(data: Dict[str, Any]) -> Optional[str]:
	"""First validation failure as a user-facing message, None when valid."""
	if not data["name"]:
		return "Enter the test name."
	age_from, age_to = data["age_from"], data["age_to"]
	if age_from is None or age_to is None:
		return "Age range bounds must be whole numbers."
	if age_from < 0 or age_to < 0 or age_from >= age_to:
		return "Age range is invalid: 'from' must be less than 'to'."
	questions = data["questions"]
	if not questions:
		return "Add at least one question."
	if any(not q["text_ru"] or not q["text_kz"] for q in questions):
		return "Every question needs Russian and Kazakh text."
	if any(len(q["answers"]) < 2 for q in questions):
		return "Every question needs at least 2 answers."
	if any(not a["text_ru"] or not a["text_kz"] or a["points"] is None for q in questions for a in q["answers"]):
		return "Every answer needs both languages and a whole number of points."
	rules = data["rules"]
	if not rules:
		return "Add at least one result rule."
	for r in rules:
		if not r["label"] or not r["text_ru"] or not r["text_kz"]:
			return "Check the result rules: bounds and texts are required."
		if r["min_score"] is None or r["max_score"] is None or r["min_score"] > r["max_score"]:
			return "Check the result rules: bounds and texts are required."
	return None


def find_overlapping_test(db: Session, age_from: int, age_to: int, exclude_id: Optional[int] = None) -> Optional[Test]:
	stmt = select(Test).where(Test.age_from < age_to, age_from < Test.age_to)
	if exclude_id is not None:
		stmt = stmt.where(Test.id != exclude_id)
	return db.execute(stmt.order_by(Test.id).limit(1)).scalar_one_or_none()


def _overlap_response(data: Dict[str, Any], overlap: Test) -> JSONResponse:
	message = (
		f"Range {data['age_from']}-{data['age_to']} overlaps test \"{overlap.name}\" "
		f"({overlap.age_from}-{overlap.age_to})."
	)
	return JSONResponse({"code": "AGE_RANGE_OVERLAP", "message": message}, status_code=409)


def _insert_children(db: Session, test_id: int, data: Dict[str, Any]) -> None:
	for q in data["questions"]:
		question = Question(test_id=test_id, text_ru=q["text_ru"], text_kz=q["text_kz"], text_en=None)
		db.add(question)
		db.flush()
		for a in q["answers"]:
			db.add(Answer(question_id=question.id, text_ru=a["text_ru"], text_kz=a["text_kz"], text_en=None, points=a["points"]))
	for r in data["rules"]:
		db.add(
			TestResultRule(
				test_id=test_id,
				min_score=r["min_score"],
				max_score=r["max_score"],
				label=r["label"],
				text_ru=r["text_ru"],
				text_kz=r["text_kz"],
			)
		)


def _delete_children(db: Session, test_id: int) -> None:
	# Explicit deletes: SQLite ignores ON DELETE CASCADE unless foreign keys are enabled
	question_ids = db.execute(select(Question.id).where(Question.test_id == test_id)).scalars().all()
	if question_ids:
		db.execute(delete(Answer).where(Answer.question_id.in_(question_ids)))
	db.execute(delete(Question).where(Question.test_id == test_id))
	db.execute(delete(TestResultRule).where(TestResultRule.test_id == test_id))


def _parse_id(raw: str) -> int:
	test_id = _as_int(raw)
	if test_id is None or test_id <= 0:
		raise HTTPException(status_code=400, detail="Invalid test id")
	return test_id


@router.get("")
async def list_tests(db: Session = Depends(get_db)):
	tests = db.execute(select(Test).order_by(Test.age_from, Test.id)).scalars().all()
	question_counts = dict(db.execute(select(Question.test_id, func.count()).group_by(Question.test_id)).all())
	rule_counts = dict(db.execute(select(TestResultRule.test_id, func.count()).group_by(TestResultRule.test_id)).all())
	items = [
		{
			"id": t.id,
			"name": t.name,
			"ageFrom": t.age_from,
			"ageTo": t.age_to,
			"createdAt": iso_utc(t.created_at),
			"updatedAt": iso_utc(t.updated_at),
			"questionsCount": int(question_counts.get(t.id, 0)),
			"rulesCount": int(rule_counts.get(t.id, 0)),
		}
		for t in tests
	]
	return {"items": items}


@router.post("", status_code=201)
async def create_test(payload: CatalogTestPayload, db: Session = Depends(get_db)):
	data = normalize_payload(payload)
	error = validate_payload(data)
	if error:
		raise HTTPException(status_code=400, detail=error)
	overlap = find_overlapping_test(db, data["age_from"], data["age_to"])
	if overlap is not None:
		return _overlap_response(data, overlap)
	try:
		test = Test(name=data["name"], age_from=data["age_from"], age_to=data["age_to"])
		db.add(test)
		db.flush()
		_insert_children(db, test.id, data)
		db.commit()
	except Exception:
		db.rollback()
		raise
	logger.info("tests event=created id=%s name=%s", test.id, data["name"])
	return {"ok": True, "id": test.id}


@router.get("/{test_id}")
async def get_test(test_id: str, db: Session = Depends(get_db)):
	tid = _parse_id(test_id)
	test = db.get(Test, tid)
	if test is None:
		raise HTTPException(status_code=404, detail="Not found")
	questions = db.execute(select(Question).where(Question.test_id == tid).order_by(Question.id)).scalars().all()
	question_ids = [q.id for q in questions]
	answers_by_question: Dict[int, List[Answer]] = {}
	if question_ids:
		answers = db.execute(select(Answer).where(Answer.question_id.in_(question_ids)).order_by(Answer.id)).scalars()
		for a in answers:
			answers_by_question.setdefault(a.question_id, []).append(a)
	rules = db.execute(select(TestResultRule).where(TestResultRule.test_id == tid).order_by(TestResultRule.id)).scalars().all()
	return {
		"id": test.id,
		"name": test.name,
		"ageFrom": test.age_from,
		"ageTo": test.age_to,
		"questions": [
			{
				"id": q.id,
				"textRu": q.text_ru,
				"textKz": q.text_kz,
				"answers": [
					{"id": a.id, "textRu": a.text_ru, "textKz": a.text_kz, "points": a.points}
					for a in answers_by_question.get(q.id, [])
				],
			}
			for q in questions
		],
		"rules": [
			{
				"id": r.id,
				"minScore": r.min_score,
				"maxScore": r.max_score,
				"label": r.label,
				"textRu": r.text_ru,
				"textKz": r.text_kz,
			}
			for r in rules
		],
	}


@router.put("/{test_id}")
async def update_test(test_id: str, payload: CatalogTestPayload, db: Session = Depends(get_db)):
	tid = _parse_id(test_id)
	test = db.get(Test, tid)
	if test is None:
		raise HTTPException(status_code=404, detail="Not found")
	data = normalize_payload(payload)
	error = validate_payload(data)
	if error:
		raise HTTPException(status_code=400, detail=error)
	overlap = find_overlapping_test(db, data["age_from"], data["age_to"], exclude_id=tid)
	if overlap is not None:
		return _overlap_response(data, overlap)
	try:
		test.name = data["name"]
		test.age_from = data["age_from"]
		test.age_to = data["age_to"]
		test.updated_at = utcnow()
		_delete_children(db, tid)
		_insert_children(db, tid, data)
		db.commit()
	except Exception:
		db.rollback()
		raise
	logger.info("tests event=updated id=%s", tid)
	return {"ok": True}


@router.delete("/{test_id}")
async def delete_test(test_id: str, db: Session = Depends(get_db)):
	tid = _parse_id(test_id)
	test = db.get(Test, tid)
	if test is None:
		raise HTTPException(status_code=404, detail="Not found")
	try:
		_delete_children(db, tid)
		db.delete(test)
		db.commit()
	except Exception:
		db.rollback()
		raise
	logger.info("tests event=deleted id=%s", tid)
	return {"ok": True}
