from __future__ import annotations
import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..bot_control import connect_bot, reconnect_bot, resolve_bot_status, stop_bot
from ..bot_process import Pm2Supervisor, ProcessUnavailable, get_supervisor
from ..db import get_db
from ..models import Admin
from .auth import require_admin

router = APIRouter(prefix="/bot", tags=["bot"])
logger = logging.getLogger(__name__)

NO_CACHE_HEADERS = {"Cache-Control": "no-store, no-cache, must-revalidate, proxy-revalidate"}


def _unavailable(action: str, exc: ProcessUnavailable) -> HTTPException:
	message = str(exc) or f"Could not {action} the bot process"
	logger.warning("bot_control event=failed action=%s error=%s", action, message)
	return HTTPException(status_code=503, detail=message)


@router.post("/connect")
async def connect(
	admin: Admin = Depends(require_admin),
	db: Session = Depends(get_db),
	supervisor: Pm2Supervisor = Depends(get_supervisor),
):
	try:
		token = await connect_bot(db, supervisor)
	except ProcessUnavailable as exc:
		raise _unavailable("start", exc)
	logger.info("bot_control event=requested action=connect admin=%s token=%s", admin.email, token)
	return {"ok": True, "token": token}


@router.post("/reconnect")
async def reconnect(
	admin: Admin = Depends(require_admin),
	db: Session = Depends(get_db),
	supervisor: Pm2Supervisor = Depends(get_supervisor),
):
	try:
		token = await reconnect_bot(db, supervisor)
	except ProcessUnavailable as exc:
		raise _unavailable("restart", exc)
	logger.info("bot_control event=requested action=reconnect admin=%s token=%s", admin.email, token)
	return {"ok": True, "token": token}


@router.post("/stop")
async def stop(
	admin: Admin = Depends(require_admin),
	db: Session = Depends(get_db),
	supervisor: Pm2Supervisor = Depends(get_supervisor),
):
	try:
		await stop_bot(db, supervisor)
	except ProcessUnavailable as exc:
		raise _unavailable("stop", exc)
	logger.info("bot_control event=requested action=stop admin=%s", admin.email)
	return {"ok": True}


@router.get("/status")
async def status(
	admin: Admin = Depends(require_admin),
	db: Session = Depends(get_db),
	supervisor: Pm2Supervisor = Depends(get_supervisor),
):
	payload = await resolve_bot_status(db, supervisor)
	return JSONResponse(payload, headers=NO_CACHE_HEADERS)
