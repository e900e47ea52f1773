"""Wire contract with the remote speech service.

Text frames are JSON objects ``{"event": str, "data": object}``; binary frames
are raw little-endian 16-bit PCM, mono, 16 kHz.
"""

import json
import base64
import binascii
import logging
from typing import Optional, Dict, Any

from ..models.events import ServerMessage

logger = logging.getLogger(__name__)

# Outbound events
CLIENT_TRIGGER = "client:trigger"
CLIENT_RECORD = "client:record"
CLIENT_RECORD_END = "client:record:end"

# Inbound events
ON_TRIGGER_AUDIO = "on:trigger:audio"
ON_RECORD_ENDED = "on:record:ended"
ON_LLM_PROCESSING = "on:llm:processing"
ON_STREAM_START = "on:stream:start"
ON_STREAM_CHUNK = "on:stream:chunk"
ON_STREAM_COMPLETE = "on:stream:complete"

SERVER_EVENTS = frozenset({
    ON_TRIGGER_AUDIO,
    ON_RECORD_ENDED,
    ON_LLM_PROCESSING,
    ON_STREAM_START,
    ON_STREAM_CHUNK,
    ON_STREAM_COMPLETE,
})


def encode_client_event(event: str, data: Optional[Dict[str, Any]] = None) -> str:
    """Serialize an outbound event frame."""
    return json.dumps({"event": event, "data": data or {}})


def parse_server_message(payload: str) -> Optional[ServerMessage]:
    """Parse an inbound text frame.

    Returns None for invalid JSON, a non-object frame, or a missing/blank
    ``event`` field. A non-object ``data`` is replaced by an empty dict.
    """
    try:
        message = json.loads(payload)
    except (TypeError, ValueError) as e:
        logger.warning(f"Ignoring malformed server message: {e}")
        return None

    if not isinstance(message, dict):
        logger.warning(f"Ignoring non-object server message: {type(message).__name__}")
        return None

    event = message.get("event")
    if not isinstance(event, str) or not event:
        logger.warning(f"Ignoring server message without event field: {str(message)[:100]}")
        return None

    data = message.get("data")
    if not isinstance(data, dict):
        data = {}
    return ServerMessage(event=event, data=data)


def decode_audio(encoded: Any) -> Optional[bytes]:
    """Decode a base64 audio field; None if absent or invalid."""
    if not isinstance(encoded, str) or not encoded:
        return None
    try:
        return base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as e:
        logger.warning(f"Invalid base64 audio payload: {e}")
        return None
