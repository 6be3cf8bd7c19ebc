from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import pytest

from speechcenter_admin.bot_process import Pm2Supervisor, ProcessUnavailable

from conftest import RecordingSupervisor

ECOSYSTEM = "/srv/speechcenter/ecosystem.config.cjs"


@pytest.mark.parametrize(
	("pm2_status", "state", "message"),
	[
		("online", "online", None),
		("stopped", "stopped", None),
		("stopping", "stopped", None),
		("errored", "stopped", None),
		("launching", "unknown", "pm2 status: launching"),
		(None, "missing", None),
	],
)
def test_status_mapping(pm2_status, state, message) -> None:
	supervisor = RecordingSupervisor(pm2_status)

	status = asyncio.run(supervisor.get_status())

	assert status.available is True
	assert status.state == state
	assert status.message == message
	assert status.manager == "pm2"


def test_status_ignores_other_processes() -> None:
	supervisor = RecordingSupervisor(None)

	status = asyncio.run(supervisor.get_status())

	# "other-app" is online but is not the bot
	assert status.state == "missing"


def test_status_degrades_when_pm2_unavailable() -> None:
	supervisor = RecordingSupervisor("online")
	supervisor.list_error = ProcessUnavailable("pm2 could not be executed: not found")

	status = asyncio.run(supervisor.get_status())

	assert status.available is False
	assert status.state == "unknown"
	assert "not found" in status.message


def test_status_degrades_on_unparseable_output() -> None:
	class GarbageSupervisor(RecordingSupervisor):
		async def _run(self, *args: str) -> str:
			return "pm2 daemon spawned\nnot json"

	status = asyncio.run(GarbageSupervisor().get_status())

	assert status.available is False
	assert status.state == "unknown"


def test_status_degrades_on_non_list_output() -> None:
	class ObjectSupervisor(RecordingSupervisor):
		async def _run(self, *args: str) -> str:
			return '{"name": "speechcenter-bot"}'

	status = asyncio.run(ObjectSupervisor().get_status())

	assert status.available is False
	assert status.message == "unexpected pm2 jlist output"


def test_ensure_online_starts_missing_process_from_ecosystem() -> None:
	supervisor = RecordingSupervisor(None)

	asyncio.run(supervisor.ensure_online())

	assert supervisor.actions == [("start", ECOSYSTEM, "--only", "speechcenter-bot", "--update-env")]


@pytest.mark.parametrize("pm2_status", ["stopped", "errored", "launching"])
def test_ensure_online_restarts_registered_process(pm2_status) -> None:
	supervisor = RecordingSupervisor(pm2_status)

	asyncio.run(supervisor.ensure_online())

	assert supervisor.actions == [("restart", "speechcenter-bot", "--update-env")]


def test_ensure_online_leaves_online_process_alone() -> None:
	supervisor = RecordingSupervisor("online")

	asyncio.run(supervisor.ensure_online())

	assert supervisor.actions == []


def test_restart_restarts_online_process() -> None:
	supervisor = RecordingSupervisor("online")

	asyncio.run(supervisor.restart())

	assert supervisor.actions == [("restart", "speechcenter-bot", "--update-env")]


def test_restart_starts_missing_process() -> None:
	supervisor = RecordingSupervisor(None)

	asyncio.run(supervisor.restart())

	assert supervisor.actions == [("start", ECOSYSTEM, "--only", "speechcenter-bot", "--update-env")]


def test_stop_online_process() -> None:
	supervisor = RecordingSupervisor("online")

	asyncio.run(supervisor.stop())

	assert supervisor.actions == [("stop", "speechcenter-bot")]


@pytest.mark.parametrize("pm2_status", [None, "stopped"])
def test_stop_is_noop_for_missing_or_stopped(pm2_status) -> None:
	supervisor = RecordingSupervisor(pm2_status)

	asyncio.run(supervisor.stop())

	assert supervisor.actions == []


@pytest.mark.parametrize("operation", ["ensure_online", "restart", "stop"])
def test_actions_raise_when_pm2_unavailable(operation) -> None:
	supervisor = RecordingSupervisor("online")
	supervisor.list_error = ProcessUnavailable("boom")

	with pytest.raises(ProcessUnavailable, match="not installed or not available in PATH"):
		asyncio.run(getattr(supervisor, operation)())

	assert supervisor.actions == []


def test_failed_action_propagates() -> None:
	supervisor = RecordingSupervisor(None)
	supervisor.action_error = ProcessUnavailable("pm2 start exited with code 1: script not found")

	with pytest.raises(ProcessUnavailable, match="exited with code 1"):
		asyncio.run(supervisor.ensure_online())


def test_run_reports_missing_binary(tmp_path: Path) -> None:
	supervisor = Pm2Supervisor("speechcenter-bot", tmp_path / "ecosystem.config.cjs", binary=str(tmp_path / "no-pm2"))

	with pytest.raises(ProcessUnavailable, match="could not be executed"):
		asyncio.run(supervisor._run("jlist"))

	status = asyncio.run(supervisor.get_status())
	assert status.available is False
	assert status.state == "unknown"


def test_run_reports_non_zero_exit(tmp_path: Path) -> None:
	supervisor = Pm2Supervisor("speechcenter-bot", tmp_path / "ecosystem.config.cjs", binary=sys.executable)

	with pytest.raises(ProcessUnavailable, match="exited with code 3: no daemon"):
		asyncio.run(supervisor._run("-c", "import sys; sys.stderr.write('no daemon'); sys.exit(3)"))


def test_run_times_out(tmp_path: Path) -> None:
	supervisor = Pm2Supervisor("speechcenter-bot", tmp_path / "ecosystem.config.cjs", binary=sys.executable, timeout_s=0.2)

	with pytest.raises(ProcessUnavailable, match="timed out"):
		asyncio.run(supervisor._run("-c", "import time; time.sleep(5)"))


def test_run_returns_stdout(tmp_path: Path) -> None:
	supervisor = Pm2Supervisor("speechcenter-bot", tmp_path / "ecosystem.config.cjs", binary=sys.executable, cwd=tmp_path)

	out = asyncio.run(supervisor._run("-c", "print('[]')"))

	assert out.strip() == "[]"
