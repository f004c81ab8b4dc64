"""
Abstract messaging transport for Groundline Support Bot.

Base types shared by every channel integration.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from llm.errors import TransportNotReadyError

logger = logging.getLogger(__name__)


class TransportStatus(str, Enum):
    INITIALIZING = "initializing"
    READY = "ready"
    DISCONNECTED = "disconnected"
    ERROR = "error"


@dataclass
class InboundMessage:
    """One customer message as delivered by a transport."""
    id: str
    sender: str  # phone identifier, possibly with a transport suffix
    body: str
    timestamp: int  # epoch seconds
    has_media: bool = False
    media_type: Optional[str] = None
    media_bytes: Optional[bytes] = None
    media_filename: Optional[str] = None
    media_mime_type: Optional[str] = None
    sender_name: Optional[str] = None

    def media_meta(self) -> Optional[Dict[str, Any]]:
        """Descriptor persisted with the message (no raw bytes)."""
        if not self.has_media:
            return None
        return {
            "type": self.media_type,
            "filename": self.media_filename,
            "mime_type": self.media_mime_type,
            "size": len(self.media_bytes) if self.media_bytes else None,
        }


class ChannelTransport(ABC):
    """Carries messages for one organization's channel session."""

    def __init__(self):
        self._status = TransportStatus.INITIALIZING

    @property
    def status(self) -> TransportStatus:
        return self._status

    @property
    def is_ready(self) -> bool:
        return self._status == TransportStatus.READY

    def _require_ready(self):
        if not self.is_ready:
            raise TransportNotReadyError(f"Transport is {self._status.value}, not ready")

    @abstractmethod
    async def send_message(self, to: str, text: str) -> None:
        """Send a text message; raise if not ready or delivery fails."""
        ...

    @abstractmethod
    async def start(self) -> None:
        ...

    @abstractmethod
    async def stop(self) -> None:
        ...
