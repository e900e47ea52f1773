"""Data models for the Talk2Me application."""

from .audio import AudioFrame, CaptureStats
from .session import VADPhase, ConversationMode, RecordingSession
from .playback import PlaybackItem
from .events import (
    WakeEvent,
    WakeStatusEvent,
    ConnectionEvent,
    ServerMessage,
    RawMessageEvent,
    RecordingStatusEvent,
    ModeChangedEvent,
    TranscriptEvent,
)

__all__ = [
    "AudioFrame",
    "CaptureStats",
    "VADPhase",
    "ConversationMode",
    "RecordingSession",
    "PlaybackItem",
    # Bus events
    "WakeEvent",
    "WakeStatusEvent",
    "ConnectionEvent",
    "ServerMessage",
    "RawMessageEvent",
    "RecordingStatusEvent",
    "ModeChangedEvent",
    "TranscriptEvent",
]
