"""Reply audio playback: a decoding player and a strictly ordered playback queue."""

import io
import asyncio
import logging
import threading
from collections import deque
from typing import Optional, Callable, Deque

import numpy as np
import pyaudio
import soundfile as sf

from ..models.playback import PlaybackItem

logger = logging.getLogger(__name__)


class PlaybackError(Exception):
    """A reply fragment could not be decoded or played."""


class AudioPlayer:
    """Decodes an encoded audio payload and plays it on the default output.

    Decoding and the blocking PortAudio writes run in the default executor;
    cancelling play() stops the output after the current block.
    """

    def __init__(self, block_size: int = 1024, output_device_index: Optional[int] = None):
        self.block_size = block_size
        self.output_device_index = output_device_index

    async def play(self, payload: bytes) -> None:
        """Play one payload to completion.

        Raises:
            PlaybackError: payload is empty, undecodable, or the output failed
        """
        loop = asyncio.get_running_loop()
        samples, sample_rate = await loop.run_in_executor(None, self.decode, payload)

        stop_event = threading.Event()
        try:
            await loop.run_in_executor(None, self._write_blocking, samples, sample_rate, stop_event)
        except asyncio.CancelledError:
            stop_event.set()
            raise

    def decode(self, payload: bytes):
        """Decode payload bytes into (float32 samples, sample_rate)."""
        if not payload:
            raise PlaybackError("Empty audio payload")
        try:
            samples, sample_rate = sf.read(io.BytesIO(payload), dtype='float32', always_2d=True)
        except (RuntimeError, ValueError, TypeError) as e:
            # soundfile raises LibsndfileError (a RuntimeError) for unknown formats
            raise PlaybackError(f"Could not decode audio payload: {e}") from e
        return samples, sample_rate

    def _write_blocking(self, samples: np.ndarray, sample_rate: int,
                        stop_event: threading.Event) -> None:
        pyaudio_instance = pyaudio.PyAudio()
        stream = None
        try:
            stream = pyaudio_instance.open(
                format=pyaudio.paFloat32,
                channels=samples.shape[1],
                rate=sample_rate,
                output=True,
                output_device_index=self.output_device_index,
            )
            for start in range(0, len(samples), self.block_size):
                if stop_event.is_set():
                    break
                stream.write(samples[start:start + self.block_size].tobytes())
        except OSError as e:
            raise PlaybackError(f"Audio output failed: {e}") from e
        finally:
            try:
                if stream is not None:
                    stream.stop_stream()
                    stream.close()
            except OSError as e:
                logger.warning(f"Error closing audio output: {e}")
            finally:
                pyaudio_instance.terminate()


class AudioPlaybackQueue:
    """FIFO of reply fragments played one at a time.

    A new item never preempts the current one. A failed item counts as
    finished so the queue keeps moving. The completion callback fires once
    per draining cycle and is then cleared together with the change callback.
    """

    def __init__(self, player: AudioPlayer):
        self.player = player
        self.queue: Deque[PlaybackItem] = deque()
        self.current: Optional[PlaybackItem] = None
        self.is_playing = False
        self.on_changed: Optional[Callable[[str], None]] = None
        self.on_completed: Optional[Callable[[], None]] = None
        self._task: Optional[asyncio.Task] = None
        self.played_count = 0
        self.failed_count = 0

    def set_callbacks(self,
                      on_changed: Optional[Callable[[str], None]] = None,
                      on_completed: Optional[Callable[[], None]] = None) -> None:
        """Register callbacks; a None argument keeps the existing one."""
        if on_changed is not None:
            self.on_changed = on_changed
        if on_completed is not None:
            self.on_completed = on_completed

    def enqueue(self, item: PlaybackItem,
                on_changed: Optional[Callable[[str], None]] = None) -> None:
        """Append an item and start playing if idle."""
        logger.debug(f"Enqueue playback item: queue={len(self.queue)}, "
                     f"playing={self.is_playing}, text_length={len(item.text)}, "
                     f"audio_bytes={len(item.audio_payload)}")
        self.queue.append(item)
        if on_changed is not None:
            self.on_changed = on_changed
        self._play_next()

    def _play_next(self) -> None:
        if self.is_playing or not self.queue:
            if not self.is_playing and not self.queue and self.on_completed:
                logger.info("Playback queue drained")
                on_completed = self.on_completed
                self.on_changed = None
                self.on_completed = None
                on_completed()
            return

        item = self.queue.popleft()
        self.current = item
        self.is_playing = True
        logger.debug(f"Playing item: '{item.text[:50]}' ({len(self.queue)} remaining)")

        if self.on_changed:
            try:
                self.on_changed(item.text)
            except Exception as e:
                logger.error(f"Item changed callback failed: {e}", exc_info=True)

        self._task = asyncio.ensure_future(self._play(item))

    async def _play(self, item: PlaybackItem) -> None:
        try:
            await self.player.play(item.audio_payload)
            self.played_count += 1
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.failed_count += 1
            logger.error(f"Playback failed for '{item.text[:50]}': {e}")

        if self.current is item:
            self._cleanup()
            self._play_next()

    def _cleanup(self) -> None:
        self.current = None
        self.is_playing = False
        self._task = None

    def clear(self) -> None:
        """Abort the current item and drop everything pending."""
        self.queue.clear()
        task = self._task
        self._cleanup()
        if task is not None and not task.done():
            task.cancel()

    def stop(self) -> None:
        """clear() and forget the callbacks."""
        self.clear()
        self.on_changed = None
        self.on_completed = None

    def __len__(self) -> int:
        return len(self.queue)
