"""Audio capture, voice activity detection and playback module."""

from .capture import AudioCapture, CaptureUnavailable, CaptureErrorKind
from .vad import VoiceActivityDetector, VADConfig
from .playback import AudioPlayer, AudioPlaybackQueue, PlaybackError

__all__ = [
    'AudioCapture',
    'CaptureUnavailable',
    'CaptureErrorKind',
    'VoiceActivityDetector',
    'VADConfig',
    'AudioPlayer',
    'AudioPlaybackQueue',
    'PlaybackError',
]
