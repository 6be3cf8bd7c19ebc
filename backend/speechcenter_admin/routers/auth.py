from datetime import datetime, timedelta
from typing import Optional
import hashlib
import logging
import uuid

from fastapi import APIRouter, HTTPException, Depends, Request, Response
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel
from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from ..settings import settings
from ..db import get_db, utcnow
from ..models import Admin, AdminSession
from ..rate_limit import LoginRateLimiter

router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger(__name__)

logging.getLogger('passlib').setLevel(logging.ERROR)
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=settings.bcrypt_rounds)

login_limiter = LoginRateLimiter(
	window_seconds=settings.login_window_seconds,
	max_attempts=settings.login_max_attempts,
	block_seconds=settings.login_block_seconds,
)


class LoginRequest(BaseModel):
	email: Optional[str] = None
	password: Optional[str] = None


def hash_password(password: str) -> str:
	return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
	return pwd_context.verify(plain_password, hashed_password)


def hash_session_id(session_id: str) -> str:
	return hashlib.sha256(session_id.encode("utf-8")).hexdigest()


def create_session_token(admin_id: int, session_id: str, expires_at: datetime) -> str:
	to_encode = {"sub": str(admin_id), "jti": session_id, "exp": expires_at}
	return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def _session_id_from_cookie(request: Request) -> Optional[str]:
	token = request.cookies.get(settings.auth_cookie)
	if not token:
		return None
	try:
		payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
	except JWTError:
		return None
	jti = payload.get("jti")
	return jti if isinstance(jti, str) and jti else None


def get_authorized_admin(request: Request, db: Session) -> Optional[Admin]:
	"""Admin owning the live session named by the request cookie, if any."""
	session_id = _session_id_from_cookie(request)
	if session_id is None:
		return None
	stmt = (
		select(Admin)
		.join(AdminSession, AdminSession.admin_id == Admin.id)
		.where(AdminSession.token_hash == hash_session_id(session_id), AdminSession.expires_at > utcnow())
		.limit(1)
	)
	return db.execute(stmt).scalar_one_or_none()


def require_admin(request: Request, db: Session = Depends(get_db)) -> Admin:
	admin = get_authorized_admin(request, db)
	if admin is None:
		raise HTTPException(status_code=401, detail="Unauthorized")
	return admin


def _client_ip(request: Request) -> str:
	forwarded = request.headers.get("x-forwarded-for")
	if forwarded:
		return forwarded.split(",")[0].strip() or "unknown"
	real_ip = request.headers.get("x-real-ip")
	if real_ip:
		return real_ip
	return request.client.host if request.client else "unknown"


def ensure_seed_admin(db: Session) -> None:
	email = (settings.seed_admin_email or "").strip().lower()
	password = settings.seed_admin_password
	if not email or not password:
		return
	if db.execute(select(Admin.id).where(Admin.email == email)).first() is not None:
		return
	db.add(Admin(email=email, password_hash=hash_password(password)))
	db.commit()
	logger.info("auth event=seed_admin_created email=%s", email)


@router.post("/login")
async def login(req: LoginRequest, request: Request, response: Response, db: Session = Depends(get_db)):
	email = (req.email or "").strip().lower()
	password = req.password or ""
	if not email or not password:
		raise HTTPException(status_code=400, detail="email and password are required")

	ip = _client_ip(request)
	email_key = f"email:{email}|ip:{ip}"
	ip_key = f"ip:{ip}"
	retry_after = max(login_limiter.retry_after(email_key), login_limiter.retry_after(ip_key))
	if retry_after > 0:
		raise HTTPException(
			status_code=429,
			detail="Too many attempts. Try again later.",
			headers={"Retry-After": str(retry_after)},
		)

	admin = db.execute(select(Admin).where(Admin.email == email)).scalar_one_or_none()
	if admin is None or not verify_password(password, admin.password_hash):
		login_limiter.register_failure(email_key)
		login_limiter.register_failure(ip_key)
		logger.info("auth event=login_failed email=%s ip=%s", email, ip)
		raise HTTPException(status_code=401, detail="Incorrect email or password")
	login_limiter.clear(email_key)
	login_limiter.clear(ip_key)

	session_id = uuid.uuid4().hex
	expires_at = utcnow() + timedelta(days=settings.session_days)
	db.execute(update(Admin).where(Admin.id == admin.id).values(last_login_at=utcnow()))
	db.add(AdminSession(admin_id=admin.id, token_hash=hash_session_id(session_id), expires_at=expires_at))
	db.commit()

	response.set_cookie(
		key=settings.auth_cookie,
		value=create_session_token(admin.id, session_id, expires_at),
		httponly=True,
		secure=settings.cookie_secure,
		samesite="lax",
		path="/",
		expires=expires_at,
	)
	logger.info("auth event=login email=%s", email)
	return {"ok": True}


@router.get("/login")
async def login_probe():
	return {"ok": True}


@router.post("/logout")
async def logout(request: Request, response: Response, db: Session = Depends(get_db)):
	session_id = _session_id_from_cookie(request)
	if session_id is not None:
		db.execute(delete(AdminSession).where(AdminSession.token_hash == hash_session_id(session_id)))
		db.commit()
	response.delete_cookie(
		key=settings.auth_cookie,
		path="/",
		httponly=True,
		secure=settings.cookie_secure,
		samesite="lax",
	)
	return {"ok": True}


@router.get("/me")
async def me(admin: Admin = Depends(require_admin)):
	return {"ok": True, "admin": {"id": admin.id, "email": admin.email}}


@router.post("/register")
async def register():
	raise HTTPException(status_code=403, detail="Public registration is disabled. Contact an administrator.")
