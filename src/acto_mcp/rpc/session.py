"""Session lifecycle for the MCP client.

A session moves between two states:

    Uninitialized --initialize ok--> Active --session error--> Uninitialized

There is no terminal state; the next ``ensure_active()`` re-enters Active.
While Active, a keep-alive task pings the server when the session has been
idle for at least one keep-alive interval but not yet past the server's
session timeout.
"""

import asyncio
import contextlib
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import structlog

from acto_mcp.config import get_settings
from acto_mcp.rpc.errors import McpClientError, SessionError

logger = structlog.get_logger(__name__)

Handshake = Callable[[], Awaitable[str | None]]
Pinger = Callable[[], Awaitable[object]]


@dataclass
class Session:
    """State of one logical connection to an MCP server."""

    session_token: str | None = None
    initialized: bool = False
    last_activity_at: float = 0.0
    request_sequence: int = 0

    def next_request_id(self) -> int:
        """Allocate the next JSON-RPC id. Never reset, not even on invalidate."""
        self.request_sequence += 1
        return self.request_sequence


class SessionManager:
    """Owns the session state, the initialize guard and the keep-alive task.

    The actual network exchanges are supplied by the client: ``handshake``
    performs ``initialize`` and returns the server-assigned session id,
    ``pinger`` sends a ``ping`` over the current session.
    """

    def __init__(
        self,
        handshake: Handshake,
        pinger: Pinger,
        keepalive_interval: float | None = None,
        session_timeout: float | None = None,
        clock: Callable[[], float] = time.monotonic,
        name: str = "mcp",
    ):
        settings = get_settings()
        self._handshake = handshake
        self._pinger = pinger
        self._keepalive_interval = (
            keepalive_interval
            if keepalive_interval is not None
            else settings.mcp_keepalive_interval
        )
        self._session_timeout = (
            session_timeout if session_timeout is not None else settings.mcp_session_timeout
        )
        self._clock = clock

        self.session = Session(last_activity_at=clock())
        self._initializing: asyncio.Task[None] | None = None
        self._keepalive_task: asyncio.Task[None] | None = None
        self._ping_failures = 0

        self._logger = logger.bind(server=name)

    @property
    def is_active(self) -> bool:
        return self.session.initialized

    @property
    def session_token(self) -> str | None:
        return self.session.session_token

    @property
    def keepalive_running(self) -> bool:
        return self._keepalive_task is not None and not self._keepalive_task.done()

    def next_request_id(self) -> int:
        return self.session.next_request_id()

    def touch(self) -> None:
        """Record traffic on the session."""
        self.session.last_activity_at = self._clock()

    async def ensure_active(self) -> None:
        """Make sure the session is initialized.

        Concurrent callers share a single in-flight handshake and all see its
        outcome. A failed handshake propagates to every waiter and is not
        retried here.
        """
        if self.session.initialized:
            return

        if self._initializing is None or self._initializing.done():
            self._initializing = asyncio.create_task(self._initialize())
        initializing = self._initializing

        try:
            # Shielded so one waiter being cancelled does not abort the others
            await asyncio.shield(initializing)
        finally:
            if initializing.done() and self._initializing is initializing:
                self._initializing = None

    async def _initialize(self) -> None:
        self._logger.debug("session_initializing")
        token = await self._handshake()
        if not token:
            raise SessionError("Server did not assign a session id")

        self.session.session_token = token
        self.session.initialized = True
        self._ping_failures = 0
        self.touch()
        self._logger.info("session_initialized", session_id=token)
        self.start_keepalive()

    def invalidate(self) -> None:
        """Forget the current session. Safe to call more than once."""
        if self.session.initialized:
            self._logger.info("session_invalidated", session_id=self.session.session_token)
        self.session.session_token = None
        self.session.initialized = False
        self.stop_keepalive()

    # === Keep-alive ===

    def start_keepalive(self) -> None:
        """Start the keep-alive task if it is enabled and not already running."""
        if self._keepalive_interval <= 0 or self.keepalive_running:
            return
        self._keepalive_task = asyncio.create_task(self._keepalive_loop())

    def stop_keepalive(self) -> None:
        if self._keepalive_task is not None:
            self._keepalive_task.cancel()
            self._keepalive_task = None

    async def _keepalive_loop(self) -> None:
        while True:
            await asyncio.sleep(self._keepalive_interval)
            await self.keepalive_tick()

    async def keepalive_tick(self) -> bool:
        """Ping the server if the session is idle but not yet expired.

        Returns True when a ping was sent and succeeded. A failed ping is
        logged and leaves the session untouched; only a real call decides
        that a session is gone.
        """
        if not self.session.initialized:
            return False

        idle = self._clock() - self.session.last_activity_at
        if idle < self._keepalive_interval:
            return False
        if idle >= self._session_timeout:
            self._logger.debug("keepalive_skipped", reason="past_session_timeout", idle=idle)
            return False

        try:
            await self._pinger()
        except McpClientError as e:
            self._ping_failures += 1
            self._logger.warning(
                "keepalive_ping_failed",
                error=str(e),
                consecutive_failures=self._ping_failures,
            )
            return False
        except Exception as e:
            # Anything else would end the keep-alive task unnoticed
            self._ping_failures += 1
            self._logger.error(
                "keepalive_ping_error",
                error=str(e),
                error_type=type(e).__name__,
                consecutive_failures=self._ping_failures,
            )
            return False

        self._ping_failures = 0
        self.touch()
        self._logger.debug("keepalive_ping_ok", idle=idle)
        return True

    async def close(self) -> None:
        """Stop background work owned by the session."""
        task = self._keepalive_task
        self.stop_keepalive()
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task
