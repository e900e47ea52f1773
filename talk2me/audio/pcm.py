"""PCM conversion helpers shared by capture, VAD and transport."""

import numpy as np


def pcm16_to_float(data: bytes) -> np.ndarray:
    """Convert little-endian 16-bit PCM bytes to float32 samples in [-1, 1]."""
    if not data:
        return np.zeros(0, dtype=np.float32)
    samples = np.frombuffer(data, dtype='<i2')
    return samples.astype(np.float32) / 32768.0


def float_to_pcm16(samples: np.ndarray) -> bytes:
    """Encode float samples as little-endian 16-bit PCM.

    Samples are clamped to [-1, 1]; negative values scale by 0x8000 and
    positive values by 0x7FFF so both extremes stay representable.
    """
    clipped = np.clip(np.asarray(samples, dtype=np.float32), -1.0, 1.0)
    scaled = np.where(clipped < 0, clipped * 0x8000, clipped * 0x7FFF)
    return scaled.astype('<i2').tobytes()


def rms(samples: np.ndarray) -> float:
    """Root-mean-square energy of a frame (0.0 for an empty frame)."""
    samples = np.asarray(samples, dtype=np.float64)
    if samples.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(samples * samples)))
