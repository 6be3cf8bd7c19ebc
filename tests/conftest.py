from __future__ import annotations

import json
import os
from collections.abc import Iterator
from pathlib import Path

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["JWT_SECRET_KEY"] = "test-secret"
os.environ.pop("SEED_ADMIN_EMAIL", None)
os.environ.pop("SEED_ADMIN_PASSWORD", None)

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from speechcenter_admin.bot_process import Pm2Supervisor, get_supervisor
from speechcenter_admin.bot_runtime import reset_ensured
from speechcenter_admin.db import Base, SessionLocal, engine
from speechcenter_admin.main import app
from speechcenter_admin.models import Admin
from speechcenter_admin.routers.auth import hash_password, login_limiter

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "secret-pass"


class RecordingSupervisor(Pm2Supervisor):
	"""Pm2Supervisor whose pm2 calls are recorded instead of executed.

	``pm2_status`` is the status pm2 reports for the bot entry; None means the
	entry is absent from ``pm2 jlist``.
	"""

	def __init__(self, pm2_status: str | None = None) -> None:
		super().__init__("speechcenter-bot", Path("/srv/speechcenter/ecosystem.config.cjs"), timeout_s=1.0)
		self.pm2_status = pm2_status
		self.list_error: Exception | None = None
		self.action_error: Exception | None = None
		self.calls: list[tuple[str, ...]] = []

	async def _run(self, *args: str) -> str:
		self.calls.append(args)
		if args[0] == "jlist":
			if self.list_error is not None:
				raise self.list_error
			entries = [{"name": "other-app", "pm2_env": {"status": "online"}}]
			if self.pm2_status is not None:
				entries.append({"name": self.process_name, "pm2_env": {"status": self.pm2_status}})
			return json.dumps(entries)
		if self.action_error is not None:
			raise self.action_error
		return ""

	@property
	def actions(self) -> list[tuple[str, ...]]:
		return [c for c in self.calls if c[0] != "jlist"]


@pytest.fixture(autouse=True)
def _fresh_database() -> Iterator[None]:
	Base.metadata.drop_all(bind=engine)
	Base.metadata.create_all(bind=engine)
	reset_ensured()
	login_limiter.reset()
	yield
	app.dependency_overrides.clear()


@pytest.fixture
def db() -> Iterator[Session]:
	session = SessionLocal()
	try:
		yield session
	finally:
		session.close()


@pytest.fixture
def supervisor() -> RecordingSupervisor:
	fake = RecordingSupervisor()
	app.dependency_overrides[get_supervisor] = lambda: fake
	return fake


@pytest.fixture
def admin(db: Session) -> Admin:
	row = Admin(email=ADMIN_EMAIL, password_hash=hash_password(ADMIN_PASSWORD))
	db.add(row)
	db.commit()
	return row


@pytest.fixture
def client() -> TestClient:
	return TestClient(app)


@pytest.fixture
def auth_client(admin: Admin) -> TestClient:
	test_client = TestClient(app)
	response = test_client.post("/auth/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
	assert response.status_code == 200
	return test_client
