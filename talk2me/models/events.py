"""Event models carried on the event bus."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Any, Dict

from .session import ConversationMode


@dataclass
class WakeEvent:
    """Wake phrase was detected by the wake-word source."""
    source: str
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class WakeStatusEvent:
    """Loaded/listening status reported by the wake-word source."""
    is_loaded: bool
    is_listening: bool
    error: Optional[str] = None


@dataclass
class ConnectionEvent:
    """Transport connection opened or closed."""
    is_open: bool
    url: str
    reconnect_scheduled: bool = False


@dataclass
class ServerMessage:
    """A parsed inbound event from the remote service."""
    event: str
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RawMessageEvent:
    """An inbound text frame exactly as received."""
    payload: str
    sequence_number: int


@dataclass
class RecordingStatusEvent:
    """Recording session lifecycle event.

    kind is one of "started", "stopped", "completed", "discarded", "failed".
    """
    kind: str
    session_id: int
    reason: str = ""
    duration_ms: int = 0
    error: Optional[Any] = None  # CaptureErrorKind when kind == "failed"


@dataclass
class ModeChangedEvent:
    """Conversation mode transition."""
    previous: ConversationMode
    current: ConversationMode
    reason: str = ""


@dataclass
class TranscriptEvent:
    """Reply transcript accumulated so far."""
    text: str
    latest_fragment: str = ""
