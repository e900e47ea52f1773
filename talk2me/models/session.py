"""Session-related data models."""

from dataclasses import dataclass
from enum import Enum


class VADPhase(Enum):
    """Phase of the voice activity detector within one recording."""
    IDLE = "idle"
    WAITING_FOR_SPEECH = "waiting_for_speech"
    SPEAKING = "speaking"
    SILENCE_AFTER_SPEECH = "silence_after_speech"


class ConversationMode(Enum):
    """Authoritative mode of the conversation."""
    STANDBY = "standby"        # waiting for wake trigger
    LISTENING = "listening"    # session open, microphone not capturing
    RECORDING = "recording"    # capturing an utterance
    PROCESSING = "processing"  # utterance sent, waiting for the reply
    STREAMING = "streaming"    # playing back reply fragments


@dataclass
class RecordingSession:
    """Information about an active recording session."""
    session_id: int
    start_timestamp: float
    has_detected_speech: bool = False
    silent_frame_count: int = 0
    frames_sent: int = 0
