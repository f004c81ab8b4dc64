"""
Per-organization channel session registry.

Tracks one transport per organization with explicit create/destroy
lifecycle, serialized per organization, and fans events out to every
subscribed handler.
"""

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from database.models import SessionStatus
from database.repositories import ChannelSessionRepository
from database.session import session_scope

from .base import ChannelTransport

logger = logging.getLogger(__name__)

EVENT_MESSAGE = "message"
EVENT_STATUS = "status"
EVENTS = (EVENT_MESSAGE, EVENT_STATUS)

Handler = Callable[[str, Any], Union[None, Awaitable[None]]]


class SessionRegistry:
    """Registry of live transports keyed by org id."""

    def __init__(self, session_factory=None):
        """
        Args:
            session_factory: Optional async session factory; when given,
                session status changes are written to ``channel_sessions``
        """
        self.session_factory = session_factory
        self._transports: Dict[str, ChannelTransport] = {}
        self._session_ids: Dict[str, str] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._handlers: Dict[str, List[Handler]] = {event: [] for event in EVENTS}

    def _lock(self, org_id: str) -> asyncio.Lock:
        lock = self._locks.get(org_id)
        if lock is None:
            lock = self._locks[org_id] = asyncio.Lock()
        return lock

    async def create(self, org_id: str, transport: ChannelTransport, **session_fields) -> Optional[str]:
        """
        Start ``transport`` for ``org_id``, replacing any existing one.

        Returns:
            The persisted channel session id, or None without storage
        """
        async with self._lock(org_id):
            existing = self._transports.pop(org_id, None)
            if existing is not None:
                logger.warning(f"Session already exists for org {org_id}, replacing it")
                await self._stop_quietly(org_id, existing)

            session_id = await self._persist(org_id, SessionStatus.INITIALIZING.value, **session_fields)
            self._transports[org_id] = transport
            try:
                await transport.start()
            except Exception:
                logger.exception(f"Transport start failed for org {org_id}", extra={"org_id": org_id})
                self._transports.pop(org_id, None)
                await self._persist(org_id, SessionStatus.ERROR.value)
                await self.dispatch(EVENT_STATUS, org_id, SessionStatus.ERROR.value)
                raise

            status = transport.status.value
            await self._persist(org_id, status)
            if session_id:
                self._session_ids[org_id] = session_id
        await self.dispatch(EVENT_STATUS, org_id, status)
        return session_id

    async def destroy(self, org_id: str) -> None:
        async with self._lock(org_id):
            transport = self._transports.pop(org_id, None)
            self._session_ids.pop(org_id, None)
            if transport is not None:
                await self._stop_quietly(org_id, transport)
            await self._persist(org_id, SessionStatus.DISCONNECTED.value)
        await self.dispatch(EVENT_STATUS, org_id, SessionStatus.DISCONNECTED.value)

    async def close(self) -> None:
        for org_id in list(self._transports):
            await self.destroy(org_id)

    def get_transport(self, org_id: str) -> Optional[ChannelTransport]:
        return self._transports.get(org_id)

    def get_session_id(self, org_id: str) -> Optional[str]:
        return self._session_ids.get(org_id)

    def get_status(self, org_id: str) -> str:
        transport = self._transports.get(org_id)
        return transport.status.value if transport else SessionStatus.DISCONNECTED.value

    def active_sessions(self) -> List[Dict[str, str]]:
        return [
            {"org_id": org_id, "status": transport.status.value}
            for org_id, transport in self._transports.items()
        ]

    def subscribe(self, event: str, handler: Handler) -> None:
        if event not in self._handlers:
            raise ValueError(f"Unknown event: {event}")
        self._handlers[event].append(handler)

    def unsubscribe(self, event: str, handler: Handler) -> None:
        handlers = self._handlers.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    async def dispatch(self, event: str, org_id: str, payload: Any) -> None:
        """Call every handler for ``event``; handler failures are logged only."""
        for handler in list(self._handlers.get(event, [])):
            try:
                result = handler(org_id, payload)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(f"Handler for '{event}' failed", extra={"org_id": org_id})

    async def _stop_quietly(self, org_id: str, transport: ChannelTransport) -> None:
        try:
            await transport.stop()
        except Exception:
            logger.exception(f"Transport stop failed for org {org_id}", extra={"org_id": org_id})

    async def _persist(self, org_id: str, status: str, **fields) -> Optional[str]:
        if self.session_factory is None:
            return None
        try:
            async with session_scope(self.session_factory) as session:
                channel = await ChannelSessionRepository(session).upsert_for_org(
                    org_id, status=status, **fields
                )
                return channel.id
        except Exception:
            logger.exception(f"Failed to persist session status for org {org_id}", extra={"org_id": org_id})
            return None
