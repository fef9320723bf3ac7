"""In-memory registry of live MCP sessions."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Dict, List, Optional
from uuid import uuid4

from models.session_models import Session
from services.mcp.server import ScreenerServer
from services.realtime.transports import TransportHandle

logger = logging.getLogger(__name__)

DEFAULT_SESSION_TTL = 600.0


class SessionRegistry:
	"""Map session ids to their transport, server and last activity.

	The registry subscribes to each transport's close event, so a handle that
	closes for any reason (client disconnect, DELETE, reaping, shutdown) drops
	its entry in the same step. Entries are always popped before their
	transport is closed, which keeps `remove` idempotent and means no caller
	ever sees a session whose transport is already closed.
	"""

	def __init__(self, ttl_seconds: float = DEFAULT_SESSION_TTL, clock: Callable[[], float] = time.monotonic) -> None:
		self.ttl_seconds = ttl_seconds
		self._clock = clock
		self._sessions: Dict[str, Session] = {}

	def __len__(self) -> int:
		return len(self._sessions)

	def __contains__(self, session_id: object) -> bool:
		return session_id in self._sessions

	def create(self, transport: TransportHandle, server: ScreenerServer) -> str:
		"""Register a transport and return its session id."""
		session_id = transport.session_id or uuid4().hex
		if session_id in self._sessions:
			raise ValueError(f"Session {session_id} is already registered")
		transport.bind(session_id)
		self._sessions[session_id] = Session(
			session_id=session_id,
			transport=transport,
			server=server,
			last_activity=self._clock(),
		)
		transport.add_close_listener(self._on_transport_closed)
		logger.info("Session initialized: %s (%s)", session_id, transport.kind.value)
		return session_id

	def touch(self, session_id: str) -> None:
		"""Mark activity on a session; silently ignores unknown ids."""
		session = self._sessions.get(session_id)
		if session is not None:
			session.last_activity = self._clock()

	def lookup(self, session_id: Optional[str]) -> Optional[Session]:
		if not session_id:
			return None
		return self._sessions.get(session_id)

	async def remove(self, session_id: str) -> None:
		"""Drop a session and close its transport; safe to call repeatedly."""
		session = self._sessions.pop(session_id, None)
		if session is None:
			return
		await self._close_quietly(session)

	async def reap(self, now: Optional[float] = None, ttl: Optional[float] = None) -> List[str]:
		"""Remove every session idle for longer than `ttl`; never raises."""
		now = self._clock() if now is None else now
		ttl = self.ttl_seconds if ttl is None else ttl
		expired = [s for s in self._sessions.values() if s.idle_for(now) > ttl]
		reaped: List[str] = []
		for session in expired:
			if self._sessions.pop(session.session_id, None) is None:
				continue
			logger.info(
				"Reaping idle session: %s (inactive %ds)", session.session_id, round(session.idle_for(now))
			)
			await self._close_quietly(session)
			reaped.append(session.session_id)
		return reaped

	async def close_all(self) -> None:
		"""Close every session during shutdown; errors are logged, never raised."""
		sessions = list(self._sessions.values())
		self._sessions.clear()
		for session in sessions:
			await self._close_quietly(session)

	async def run_periodic_reaper(self, interval_seconds: float = 60) -> None:
		"""
		Reap idle sessions at the given interval until cancelled.

		Args:
			interval_seconds: Seconds to sleep between sweeps.
		"""
		while True:
			try:
				await asyncio.sleep(interval_seconds)
				await self.reap()
			except asyncio.CancelledError:
				break
			except Exception as exc:
				logger.error("Session reaper failed: %s", exc)

	def _on_transport_closed(self, session_id: Optional[str]) -> None:
		if session_id and self._sessions.pop(session_id, None) is not None:
			logger.info("Session closed: %s", session_id)

	async def _close_quietly(self, session: Session) -> None:
		try:
			await session.transport.close()
		except Exception as exc:
			logger.error("Error closing session %s: %s", session.session_id, exc)
