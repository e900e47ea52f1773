"""Unit tests for AudioCapture class."""

import asyncio

import numpy as np
import pytest
import pyaudio

from talk2me.audio.capture import (
    AudioCapture,
    CaptureUnavailable,
    CaptureErrorKind,
    classify_capture_error,
)
from talk2me.models.audio import CaptureStats


def pcm_chunk(value: int, size: int = 1024) -> bytes:
    return np.full(size, value, dtype='<i2').tobytes()


@pytest.mark.unit
class TestClassifyCaptureError:

    @pytest.mark.parametrize("error, kind", [
        (PermissionError("no access"), CaptureErrorKind.PERMISSION_DENIED),
        (OSError("[Errno -9996] Invalid input device (no default output device)", -9996),
         CaptureErrorKind.DEVICE_NOT_FOUND),
        (OSError("Invalid number of channels", -9998), CaptureErrorKind.DEVICE_NOT_FOUND),
        (OSError("Device unavailable", -9985), CaptureErrorKind.DEVICE_NOT_FOUND),
        (OSError("No Default Input Device Available"), CaptureErrorKind.DEVICE_NOT_FOUND),
        (OSError("Microphone access denied by system"), CaptureErrorKind.PERMISSION_DENIED),
        (OSError("Error accessing stream", -9988), CaptureErrorKind.UNKNOWN),
        (OSError("Unanticipated host error", -9999), CaptureErrorKind.UNKNOWN),
        (ValueError("something odd"), CaptureErrorKind.UNKNOWN),
    ])
    def test_classification(self, error, kind):
        assert classify_capture_error(error) == kind


@pytest.mark.unit
class TestAudioCapture:
    """Test cases for AudioCapture class."""

    def test_initialization(self):
        """Test AudioCapture initialization with default parameters."""
        capture = AudioCapture()

        assert capture.sample_rate == 16000
        assert capture.chunk_size == 1024
        assert capture.channels == 1
        assert capture.is_active is False
        assert capture.total_frames == 0
        assert capture.read_pending() == []

    @pytest.mark.asyncio
    async def test_acquire_opens_callback_stream(self, mock_pyaudio):
        capture = AudioCapture()
        await capture.acquire()

        assert capture.is_active is True
        kwargs = mock_pyaudio['instance'].open.call_args.kwargs
        assert kwargs['input'] is True
        assert kwargs['rate'] == 16000
        assert kwargs['frames_per_buffer'] == 1024
        assert kwargs['stream_callback'] == capture._stream_callback
        capture.release()

    @pytest.mark.asyncio
    async def test_acquire_without_input_device(self, mock_pyaudio):
        mock_pyaudio['instance'].get_default_input_device_info.side_effect = \
            OSError("No Default Input Device Available")
        capture = AudioCapture()

        with pytest.raises(CaptureUnavailable) as excinfo:
            await capture.acquire()

        assert excinfo.value.kind == CaptureErrorKind.DEVICE_NOT_FOUND
        assert capture.is_active is False
        mock_pyaudio['instance'].terminate.assert_called_once()

    @pytest.mark.asyncio
    async def test_acquire_permission_denied(self, mock_pyaudio):
        mock_pyaudio['instance'].open.side_effect = OSError("Permission denied")
        capture = AudioCapture()

        with pytest.raises(CaptureUnavailable) as excinfo:
            await capture.acquire()
        assert excinfo.value.kind == CaptureErrorKind.PERMISSION_DENIED

    @pytest.mark.asyncio
    async def test_callback_delivers_frames_on_loop(self, mock_pyaudio):
        capture = AudioCapture()
        await capture.acquire()

        result = capture._stream_callback(pcm_chunk(16384), 1024, {}, 0)
        assert result == (None, pyaudio.paContinue)
        await asyncio.sleep(0)

        frames = capture.read_pending()
        assert len(frames) == 1
        assert frames[0].frame_number == 1
        assert frames[0].samples == pytest.approx(np.full(1024, 0.5))
        assert capture.read_pending() == []
        capture.release()

    @pytest.mark.asyncio
    async def test_pending_frames_bounded(self, mock_pyaudio):
        capture = AudioCapture(max_pending_frames=2)
        await capture.acquire()

        for value in (1, 2, 3):
            capture._on_chunk(pcm_chunk(value), 0.0)

        frames = capture.read_pending()
        assert [f.frame_number for f in frames] == [2, 3]
        assert capture.dropped_frames == 1
        capture.release()

    @pytest.mark.asyncio
    async def test_release_is_idempotent(self, mock_pyaudio):
        capture = AudioCapture()
        await capture.acquire()

        capture.release()
        capture.release()

        assert capture.is_active is False
        mock_pyaudio['stream'].stop_stream.assert_called_once()
        mock_pyaudio['stream'].close.assert_called_once()
        mock_pyaudio['instance'].terminate.assert_called_once()

    @pytest.mark.asyncio
    async def test_frames_after_release_ignored(self, mock_pyaudio):
        capture = AudioCapture()
        await capture.acquire()
        capture.release()

        capture._on_chunk(pcm_chunk(100), 0.0)
        assert capture.read_pending() == []

    @pytest.mark.asyncio
    async def test_get_stats(self, mock_pyaudio):
        capture = AudioCapture()
        await capture.acquire()
        capture._on_chunk(pcm_chunk(0), 0.0)

        stats = capture.get_stats()
        assert isinstance(stats, CaptureStats)
        assert stats.is_active is True
        assert stats.total_frames == 1
        assert stats.sample_rate == 16000
        assert stats.chunk_size == 1024
        assert stats.duration_seconds >= 0
        capture.release()
