from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .db import Base, engine, SessionLocal, ensure_schema
from .cleanup import purge_expired_sessions
from .settings import settings
from .routers import health
from .routers import auth
from .routers import bot
from .routers import catalog
from .routers import analytics
from .routers import users
from .routers import sessions
import asyncio
import logging

logging.basicConfig(
	level=getattr(logging, settings.log_level.upper(), logging.INFO),
	format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Speech Center Admin API")
app.include_router(health.router)
app.include_router(auth.router)
app.include_router(bot.router)
app.include_router(catalog.router)
app.include_router(analytics.router)
app.include_router(users.router)
app.include_router(sessions.router)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
	# The dashboard reads error text from "message"
	return JSONResponse({"message": exc.detail}, status_code=exc.status_code, headers=getattr(exc, "headers", None))


def _purge_sessions() -> None:
	db = SessionLocal()
	try:
		removed = purge_expired_sessions(db)
		if removed:
			logger.info("cleanup event=expired_sessions_purged count=%s", removed)
	except Exception:
		logger.exception("cleanup event=failed")
	finally:
		db.close()


async def _cleanup_watcher():
	# Startup already ran one pass
	while True:
		await asyncio.sleep(settings.session_cleanup_interval_seconds)
		_purge_sessions()


@app.on_event("startup")
async def startup_event():
	# Initialize DB schema
	Base.metadata.create_all(bind=engine)
	# Apply lightweight migrations for tables created by older releases
	try:
		ensure_schema()
	except Exception:
		logger.exception("startup event=ensure_schema_failed")
	db = SessionLocal()
	try:
		auth.ensure_seed_admin(db)
	finally:
		db.close()
	_purge_sessions()
	# Start periodic cleanup loop
	asyncio.create_task(_cleanup_watcher())
