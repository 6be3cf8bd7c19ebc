from __future__ import annotations

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import update
from sqlalchemy.orm import Session

from speechcenter_admin.bot_process import ProcessUnavailable
from speechcenter_admin.bot_runtime import RUNTIME_STATE_ID, ensure_runtime_state, read_runtime_state
from speechcenter_admin.db import utcnow
from speechcenter_admin.models import BotRuntimeState

from conftest import RecordingSupervisor


@pytest.mark.parametrize(
	("method", "path"),
	[("post", "/bot/connect"), ("post", "/bot/reconnect"), ("post", "/bot/stop"), ("get", "/bot/status")],
)
def test_bot_routes_require_admin(client: TestClient, supervisor: RecordingSupervisor, method, path) -> None:
	response = getattr(client, method)(path)

	assert response.status_code == 401
	assert response.json() == {"message": "Unauthorized"}
	assert supervisor.calls == []


def test_unauthorized_connect_changes_nothing(client: TestClient, supervisor: RecordingSupervisor, db: Session) -> None:
	ensure_runtime_state(db)
	before = read_runtime_state(db)

	client.post("/bot/connect")

	after = read_runtime_state(db)
	assert after.updated_at == before.updated_at
	assert after.control is None
	assert supervisor.actions == []


def test_connect_returns_token(auth_client: TestClient, supervisor: RecordingSupervisor, db: Session) -> None:
	response = auth_client.post("/bot/connect")

	assert response.status_code == 200
	body = response.json()
	assert body["ok"] is True
	assert body["token"]
	assert supervisor.actions[0][0] == "start"
	control = read_runtime_state(db).control
	assert control.action == "connect"
	assert control.token == body["token"]


def test_reconnect_returns_new_token(auth_client: TestClient, supervisor: RecordingSupervisor, db: Session) -> None:
	supervisor.pm2_status = "online"
	first = auth_client.post("/bot/connect").json()["token"]

	response = auth_client.post("/bot/reconnect")

	assert response.status_code == 200
	token = response.json()["token"]
	assert token != first
	assert read_runtime_state(db).control.action == "reconnect"
	assert supervisor.actions == [("restart", "speechcenter-bot", "--update-env")]


def test_stop_then_status_reports_offline(auth_client: TestClient, supervisor: RecordingSupervisor, db: Session) -> None:
	supervisor.pm2_status = "online"
	ensure_runtime_state(db)
	db.execute(
		update(BotRuntimeState)
		.where(BotRuntimeState.id == RUNTIME_STATE_ID)
		.values(status="connected", qr_data_url="data:image/png;base64,QR", heartbeat_at=utcnow() - timedelta(seconds=30))
	)
	db.commit()

	response = auth_client.post("/bot/stop")

	assert response.status_code == 200
	assert response.json() == {"ok": True}
	assert supervisor.actions == [("stop", "speechcenter-bot")]
	state = read_runtime_state(db)
	assert state.status == "stopped"
	assert state.qr_data_url is None

	status = auth_client.get("/bot/status").json()
	assert status["status"] == "offline"
	assert status["qrDataUrl"] is None


def test_status_reports_live_worker(auth_client: TestClient, supervisor: RecordingSupervisor, db: Session) -> None:
	supervisor.pm2_status = "online"
	ensure_runtime_state(db)
	db.execute(
		update(BotRuntimeState)
		.where(BotRuntimeState.id == RUNTIME_STATE_ID)
		.values(status="waiting_qr", qr_data_url="data:image/png;base64,QR", heartbeat_at=utcnow())
	)
	db.commit()

	response = auth_client.get("/bot/status")

	assert response.status_code == 200
	assert "no-store" in response.headers["cache-control"]
	body = response.json()
	assert body["status"] == "waiting_qr"
	assert body["qrDataUrl"] == "data:image/png;base64,QR"
	assert body["process"] == {"manager": "pm2", "available": True, "state": "online"}
	assert set(body) == {"status", "qrDataUrl", "lastError", "heartbeatAt", "updatedAt", "process"}


def test_status_with_pm2_down_still_succeeds(auth_client: TestClient, supervisor: RecordingSupervisor) -> None:
	supervisor.list_error = ProcessUnavailable("pm2 could not be executed: not found")

	response = auth_client.get("/bot/status")

	assert response.status_code == 200
	assert response.json()["process"]["available"] is False


@pytest.mark.parametrize("path", ["/bot/connect", "/bot/reconnect", "/bot/stop"])
def test_pm2_unavailable_returns_503(auth_client: TestClient, supervisor: RecordingSupervisor, db: Session, path) -> None:
	supervisor.pm2_status = "online"
	supervisor.list_error = ProcessUnavailable("boom")

	response = auth_client.post(path)

	assert response.status_code == 503
	assert response.json() == {"message": "pm2 is not installed or not available in PATH"}
	assert read_runtime_state(db).control is None


def test_failed_start_returns_503_with_detail(auth_client: TestClient, supervisor: RecordingSupervisor) -> None:
	supervisor.action_error = ProcessUnavailable("pm2 start timed out after 15s")

	response = auth_client.post("/bot/connect")

	assert response.status_code == 503
	assert response.json()["message"] == "pm2 start timed out after 15s"
