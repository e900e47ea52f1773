"""Audio-related data models."""

from dataclasses import dataclass

import numpy as np


@dataclass
class AudioFrame:
    """A single captured audio frame with timestamp.

    Samples are normalized floats in [-1, 1], mono.
    """
    samples: np.ndarray
    timestamp: float  # Time when this frame was captured
    frame_number: int
    sample_rate: int = 16000

    @property
    def duration_ms(self) -> int:
        """Duration of this frame in milliseconds."""
        if self.sample_rate <= 0:
            return 0
        return int(len(self.samples) * 1000 / self.sample_rate)


@dataclass
class CaptureStats:
    """Audio capture statistics."""
    is_active: bool
    duration_seconds: float
    sample_rate: int
    chunk_size: int
    total_frames: int
