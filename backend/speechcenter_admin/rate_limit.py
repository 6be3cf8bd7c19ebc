from __future__ import annotations
import math
import threading
import time
from dataclasses import dataclass
from typing import Dict, Optional


@dataclass
class _Attempts:
	started_at: float
	attempts: int
	blocked_until: float = 0.0


class LoginRateLimiter:
	"""Counts failed logins per key inside a sliding window.

	Once ``max_attempts`` failures land in one window the key is blocked for
	``block_seconds``. State is process-local and lost on restart.
	"""

	def __init__(self, *, window_seconds: float, max_attempts: int, block_seconds: float) -> None:
		self.window_seconds = window_seconds
		self.max_attempts = max_attempts
		self.block_seconds = block_seconds
		self._store: Dict[str, _Attempts] = {}
		self._lock = threading.Lock()

	def retry_after(self, key: str, now: Optional[float] = None) -> int:
		"""Seconds until ``key`` may try again, 0 when not blocked."""
		now = time.monotonic() if now is None else now
		with self._lock:
			state = self._store.get(key)
			if state is None:
				return 0
			if state.blocked_until > now:
				return math.ceil(state.blocked_until - now)
			if now - state.started_at > self.window_seconds:
				del self._store[key]
			return 0

	def register_failure(self, key: str, now: Optional[float] = None) -> None:
		now = time.monotonic() if now is None else now
		with self._lock:
			self._sweep(now)
			state = self._store.get(key)
			if state is None or now - state.started_at > self.window_seconds:
				self._store[key] = _Attempts(started_at=now, attempts=1)
				return
			state.attempts += 1
			if state.attempts >= self.max_attempts:
				state.blocked_until = now + self.block_seconds

	def _sweep(self, now: float) -> None:
		# Caller holds the lock
		expired = [
			k for k, s in self._store.items()
			if s.blocked_until <= now and now - s.started_at > self.window_seconds
		]
		for k in expired:
			del self._store[k]

	def clear(self, key: str) -> None:
		with self._lock:
			self._store.pop(key, None)

	def reset(self) -> None:
		with self._lock:
			self._store.clear()
