"""Energy-threshold voice activity detector."""

import time
import logging
from dataclasses import dataclass
from typing import Callable, Dict, Any

import numpy as np

from ..models.session import VADPhase
from .pcm import rms as frame_rms

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VADConfig:
    """Voice activity detection settings.

    silence_frame_threshold and check_interval_ms are the same constants the
    recording loop polls with, so N silent frames equal N check intervals.
    """
    enabled: bool = True
    rms_threshold: float = 0.01
    silence_frame_threshold: int = 15
    min_audio_duration_ms: int = 400
    max_recording_duration_ms: int = 10000
    check_interval_ms: int = 150


class VoiceActivityDetector:
    """Classifies audio frames as speech/silence and tracks the recording phase."""

    def __init__(self, config: VADConfig = None, clock: Callable[[], float] = time.monotonic):
        """Initialize the detector.

        Args:
            config: Detection thresholds (defaults if None)
            clock: Monotonic time source in seconds
        """
        self.config = config or VADConfig()
        self.clock = clock
        self.phase = VADPhase.IDLE
        self.has_detected_speech = False
        self.silent_frame_count = 0
        self.recording_start_time: float = 0.0

    def start_recording(self) -> None:
        """Reset timing and counters and wait for speech."""
        self.recording_start_time = self.clock()
        self.phase = VADPhase.WAITING_FOR_SPEECH
        self.has_detected_speech = False
        self.silent_frame_count = 0
        logger.debug("VAD recording started")

    def reset(self) -> None:
        """Return to IDLE."""
        self.has_detected_speech = False
        self.silent_frame_count = 0
        self.phase = VADPhase.IDLE

    def elapsed_ms(self) -> float:
        """Milliseconds since start_recording()."""
        return (self.clock() - self.recording_start_time) * 1000.0

    def process_audio(self, samples: np.ndarray) -> bool:
        """Feed one frame and return True while the speaker is talking."""
        if not self.config.enabled:
            return True

        level = frame_rms(samples)

        if level > self.config.rms_threshold:
            self.has_detected_speech = True
            self.silent_frame_count = 0
            if self.phase != VADPhase.SPEAKING:
                self.phase = VADPhase.SPEAKING
                logger.debug(f"Speech started (RMS: {level:.4f})")
        elif self.has_detected_speech:
            # Leading silence never counts
            self.silent_frame_count += 1
            if (self.phase == VADPhase.SPEAKING
                    and self.silent_frame_count >= self.config.silence_frame_threshold):
                self.phase = VADPhase.SILENCE_AFTER_SPEECH
                logger.debug(f"Silence after speech ({self.silent_frame_count} frames)")

        return self.phase == VADPhase.SPEAKING

    def should_stop(self) -> bool:
        """True once max duration is reached or silence followed speech."""
        if self.phase == VADPhase.IDLE:
            return False

        duration = self.elapsed_ms()
        if duration >= self.config.max_recording_duration_ms:
            logger.info(f"Max recording duration reached ({duration:.0f}ms)")
            return True

        return self.phase == VADPhase.SILENCE_AFTER_SPEECH

    def has_valid_speech(self) -> bool:
        """True iff speech was detected and the recording is long enough."""
        duration = self.elapsed_ms()

        if self.config.enabled and not self.has_detected_speech:
            logger.info("No speech detected during recording")
            return False

        if duration < self.config.min_audio_duration_ms:
            logger.info(f"Recording too short: {duration:.0f}ms "
                        f"(min: {self.config.min_audio_duration_ms}ms)")
            return False

        return True

    def get_debug_info(self) -> Dict[str, Any]:
        """Snapshot of detector state for diagnostics."""
        return {
            "phase": self.phase.value,
            "has_detected_speech": self.has_detected_speech,
            "silent_frame_count": self.silent_frame_count,
            "recording_duration_ms": self.elapsed_ms() if self.phase != VADPhase.IDLE else 0.0,
            "rms_threshold": self.config.rms_threshold,
        }
