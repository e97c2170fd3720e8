"""Tone generation for the mock synthesizer and the test suite."""

import numpy as np

PCM_PEAK = 32767


def generate_sine_wave(
    frequency: int, duration_ms: int, sample_rate: int, amplitude: float = 0.5
) -> bytes:
    """Render a mono tone as little-endian int16 PCM.

    Raises:
        ValueError: On a non-positive rate or frequency, a frequency above
            Nyquist, or a negative duration
    """
    if sample_rate <= 0 or frequency <= 0:
        raise ValueError(
            f"Sample rate and frequency must be positive, got {sample_rate}/{frequency}"
        )
    if 2 * frequency > sample_rate:
        raise ValueError(f"{frequency}Hz is above Nyquist for {sample_rate}Hz audio")
    if duration_ms < 0:
        raise ValueError(f"Duration must be non-negative, got {duration_ms}ms")

    frames = sample_rate * duration_ms // 1000
    phase = 2.0 * np.pi * frequency / sample_rate * np.arange(frames)
    tone = np.clip(amplitude * np.sin(phase), -1.0, 1.0)
    return np.round(tone * PCM_PEAK).astype("<i2").tobytes()
