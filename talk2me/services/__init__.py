"""Services layer for Talk2Me session coordination."""

from .recording_service import RecordingSessionController
from .conversation import ConversationStateMachine

__all__ = [
    "RecordingSessionController",
    "ConversationStateMachine",
]
