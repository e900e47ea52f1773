"""Transport layer to the remote speech service."""

from .websocket import Transport, ConnectionState
from .protocol import parse_server_message, encode_client_event, decode_audio

__all__ = [
    "Transport",
    "ConnectionState",
    "parse_server_message",
    "encode_client_event",
    "decode_audio",
]
