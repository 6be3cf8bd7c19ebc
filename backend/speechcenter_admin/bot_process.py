"""pm2 adapter for the bot worker process.

Process state (is the OS process running) is reported separately from the
bot's logical state in ``bot_runtime_state``: a process can be ``online``
while the bot is waiting for a QR scan, and the row can still say
``connected`` after the process vanished.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import BaseModel

from .settings import settings

logger = logging.getLogger(__name__)

ProcessState = Literal["online", "stopped", "missing", "unknown"]

_STOPPED_STATUSES = {"stopped", "stopping", "errored"}


class ProcessUnavailable(RuntimeError):
	"""pm2 is missing, failed, or did not answer in time."""


class BotProcessStatus(BaseModel):
	manager: Literal["pm2"] = "pm2"
	available: bool
	state: ProcessState
	message: Optional[str] = None


class Pm2Supervisor:
	def __init__(
		self,
		process_name: str,
		ecosystem_path: Path,
		*,
		binary: str = "pm2",
		cwd: Optional[Path] = None,
		timeout_s: float = 15.0,
	) -> None:
		self.process_name = process_name
		self.ecosystem_path = ecosystem_path
		self.binary = binary
		self.cwd = cwd
		self.timeout_s = timeout_s

	@classmethod
	def from_settings(cls) -> "Pm2Supervisor":
		return cls(
			settings.bot_process_name,
			settings.ecosystem_path,
			binary=settings.pm2_binary,
			cwd=settings.supervisor_cwd,
			timeout_s=settings.supervisor_timeout_seconds,
		)

	async def _run(self, *args: str) -> str:
		try:
			proc = await asyncio.create_subprocess_exec(
				self.binary,
				*args,
				cwd=str(self.cwd) if self.cwd else None,
				env=os.environ.copy(),
				stdout=asyncio.subprocess.PIPE,
				stderr=asyncio.subprocess.PIPE,
			)
		except OSError as exc:
			raise ProcessUnavailable(f"{self.binary} could not be executed: {exc}") from exc
		try:
			stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout_s)
		except asyncio.TimeoutError:
			proc.kill()
			await proc.wait()
			raise ProcessUnavailable(f"{self.binary} {args[0]} timed out after {self.timeout_s:g}s")
		if proc.returncode != 0:
			detail = stderr.decode(errors="replace").strip() or stdout.decode(errors="replace").strip()
			raise ProcessUnavailable(f"{self.binary} {args[0]} exited with code {proc.returncode}: {detail}")
		return stdout.decode(errors="replace")

	def _find_entry(self, raw: str) -> Optional[dict[str, Any]]:
		items = json.loads(raw or "[]")
		if not isinstance(items, list):
			raise ValueError("unexpected pm2 jlist output")
		for item in items:
			if isinstance(item, dict) and item.get("name") == self.process_name:
				return item
		return None

	async def get_status(self) -> BotProcessStatus:
		"""Snapshot of the managed process. Never raises."""
		try:
			entry = self._find_entry(await self._run("jlist"))
		except Exception as exc:  # noqa: BLE001
			message = str(exc) or "pm2 unavailable"
			logger.warning("bot_process event=status_failed name=%s error=%s", self.process_name, message)
			return BotProcessStatus(available=False, state="unknown", message=message)
		if entry is None:
			return BotProcessStatus(available=True, state="missing")

		status = (entry.get("pm2_env") or {}).get("status") or "unknown"
		if status == "online":
			return BotProcessStatus(available=True, state="online")
		if status in _STOPPED_STATUSES:
			return BotProcessStatus(available=True, state="stopped")
		return BotProcessStatus(available=True, state="unknown", message=f"pm2 status: {status}")

	async def _require_available(self) -> BotProcessStatus:
		status = await self.get_status()
		if not status.available:
			raise ProcessUnavailable("pm2 is not installed or not available in PATH")
		return status

	async def _start(self) -> None:
		logger.info("bot_process event=start name=%s ecosystem=%s", self.process_name, self.ecosystem_path)
		await self._run("start", str(self.ecosystem_path), "--only", self.process_name, "--update-env")

	async def _restart(self) -> None:
		logger.info("bot_process event=restart name=%s", self.process_name)
		await self._run("restart", self.process_name, "--update-env")

	async def ensure_online(self) -> None:
		status = await self._require_available()
		if status.state == "online":
			return
		if status.state == "missing":
			await self._start()
			return
		await self._restart()

	async def restart(self) -> None:
		"""Start or restart the process, even when it is already online."""
		status = await self._require_available()
		if status.state == "missing":
			await self._start()
			return
		await self._restart()

	async def stop(self) -> None:
		status = await self._require_available()
		if status.state in ("missing", "stopped"):
			return
		logger.info("bot_process event=stop name=%s", self.process_name)
		await self._run("stop", self.process_name)


def get_supervisor() -> Pm2Supervisor:
	return Pm2Supervisor.from_settings()
