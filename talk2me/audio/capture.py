"""Microphone capture built on PyAudio, delivering frames to the event loop."""

import time
import asyncio
import logging
from collections import deque
from datetime import datetime
from enum import Enum
from typing import Optional, List

import pyaudio

from ..models.audio import AudioFrame, CaptureStats
from .pcm import pcm16_to_float


logger = logging.getLogger(__name__)

# PortAudio error codes that mean the requested input does not exist
_DEVICE_NOT_FOUND_CODES = {-9996, -9998, -9985}
_PERMISSION_HINTS = ("permission", "denied", "not allowed", "access denied")


class CaptureErrorKind(Enum):
    """Why the capture device could not be acquired."""
    PERMISSION_DENIED = "permission_denied"
    DEVICE_NOT_FOUND = "device_not_found"
    UNKNOWN = "unknown"


class CaptureUnavailable(Exception):
    """Raised by AudioCapture.acquire() when the microphone cannot be opened."""

    def __init__(self, kind: CaptureErrorKind, message: str = ""):
        super().__init__(message or kind.value)
        self.kind = kind


def classify_capture_error(error: Exception) -> CaptureErrorKind:
    """Map a PortAudio/OS error to a CaptureErrorKind."""
    if isinstance(error, PermissionError):
        return CaptureErrorKind.PERMISSION_DENIED

    codes = {arg for arg in error.args if isinstance(arg, int)}
    if codes & _DEVICE_NOT_FOUND_CODES:
        return CaptureErrorKind.DEVICE_NOT_FOUND

    text = " ".join(str(arg) for arg in error.args).lower()
    if any(hint in text for hint in _PERMISSION_HINTS):
        return CaptureErrorKind.PERMISSION_DENIED
    if "no default input device" in text or "invalid input device" in text:
        return CaptureErrorKind.DEVICE_NOT_FOUND
    return CaptureErrorKind.UNKNOWN


class AudioCapture:
    """Mono 16-bit microphone capture.

    PortAudio calls back on its own thread; each chunk is handed to the
    event loop with call_soon_threadsafe and buffered until the recording
    loop drains it with read_pending().
    """

    def __init__(
        self,
        sample_rate: int = 16000,
        chunk_size: int = 1024,
        channels: int = 1,
        format: int = pyaudio.paInt16,
        input_device_index: Optional[int] = None,
        max_pending_frames: int = 64,
    ):
        """Initialize audio capture with specified parameters.

        Args:
            sample_rate: Audio sample rate (16kHz expected by the remote service)
            chunk_size: Size of each audio chunk in samples
            channels: Number of audio channels (1 for mono)
            format: Audio format (16-bit signed int)
            input_device_index: PortAudio device index, None for the default input
            max_pending_frames: Frames kept between two reads before the oldest are dropped
        """
        self.sample_rate = sample_rate
        self.chunk_size = chunk_size
        self.channels = channels
        self.format = format
        self.input_device_index = input_device_index

        self.is_active = False
        self.pending_frames = deque(maxlen=max_pending_frames)
        self.dropped_frames = 0

        # Statistics tracking
        self.start_time: Optional[datetime] = None
        self.total_frames = 0

        self.pyaudio_instance: Optional[pyaudio.PyAudio] = None
        self.stream = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    async def acquire(self) -> None:
        """Open the input stream.

        Raises:
            CaptureUnavailable: permission denied, no device, or other open failure
        """
        if self.is_active:
            logger.warning("Capture already active")
            return

        self._loop = asyncio.get_running_loop()
        self.pending_frames.clear()
        self.dropped_frames = 0
        self.total_frames = 0

        self.stream = await self._loop.run_in_executor(None, self.__open_audio_stream)
        self.is_active = True
        self.start_time = datetime.now()
        logger.info(f"Audio capture started: {self.sample_rate}Hz, "
                    f"{self.chunk_size} samples/chunk")

    def __open_audio_stream(self):
        self.pyaudio_instance = pyaudio.PyAudio()
        try:
            if self.input_device_index is None:
                # Raises IOError when the host has no input device at all
                self.pyaudio_instance.get_default_input_device_info()
            return self.pyaudio_instance.open(
                format=self.format,
                channels=self.channels,
                rate=self.sample_rate,
                input=True,
                input_device_index=self.input_device_index,
                frames_per_buffer=self.chunk_size,
                stream_callback=self._stream_callback,
            )
        except (OSError, ValueError) as e:
            self.__terminate()
            kind = classify_capture_error(e)
            logger.error(f"Failed to open audio input ({kind.value}): {e}")
            raise CaptureUnavailable(kind, str(e)) from e

    def _stream_callback(self, in_data, frame_count, time_info, status):
        """PortAudio thread: forward the chunk to the event loop."""
        loop = self._loop
        if loop is None or loop.is_closed():
            return (None, pyaudio.paComplete)
        try:
            loop.call_soon_threadsafe(self._on_chunk, in_data, time.time())
        except RuntimeError:
            # Loop shut down between the check and the call
            return (None, pyaudio.paComplete)
        return (None, pyaudio.paContinue)

    def _on_chunk(self, data: bytes, timestamp: float) -> None:
        if not self.is_active:
            return
        self.total_frames += 1
        if len(self.pending_frames) == self.pending_frames.maxlen:
            self.dropped_frames += 1
        self.pending_frames.append(AudioFrame(
            samples=pcm16_to_float(data),
            timestamp=timestamp,
            frame_number=self.total_frames,
            sample_rate=self.sample_rate,
        ))

    def read_pending(self) -> List[AudioFrame]:
        """Return and clear every frame captured since the previous call."""
        frames = list(self.pending_frames)
        self.pending_frames.clear()
        return frames

    def release(self) -> None:
        """Stop the stream and free PortAudio. Safe to call repeatedly."""
        if not self.is_active and self.stream is None:
            return

        self.is_active = False
        stream, self.stream = self.stream, None
        try:
            if stream is not None:
                stream.stop_stream()
                stream.close()
        except OSError as e:
            logger.warning(f"Error closing audio stream: {e}")
        finally:
            self.__terminate()
            self.pending_frames.clear()
        logger.info(f"Audio capture released. Total frames: {self.total_frames}, "
                    f"dropped: {self.dropped_frames}")

    def __terminate(self) -> None:
        if self.pyaudio_instance:
            self.pyaudio_instance.terminate()
            self.pyaudio_instance = None

    def get_stats(self) -> CaptureStats:
        """Get current capture statistics."""
        duration = 0.0
        if self.start_time:
            duration = (datetime.now() - self.start_time).total_seconds()

        return CaptureStats(
            is_active=self.is_active,
            duration_seconds=duration,
            sample_rate=self.sample_rate,
            chunk_size=self.chunk_size,
            total_frames=self.total_frames,
        )

    def __del__(self):
        """Ensure resources are cleaned up on deletion."""
        if self.is_active:
            self.release()
