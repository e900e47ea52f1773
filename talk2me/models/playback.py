"""Playback data models."""

from dataclasses import dataclass


@dataclass
class PlaybackItem:
    """One reply fragment waiting to be played."""
    audio_payload: bytes  # encoded audio (mp3/wav/...), already base64-decoded
    text: str = ""
