"""WAV container helpers for 16-bit PCM audio."""

import io
import wave
from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray


@dataclass(frozen=True)
class WavInfo:
    """Decoded WAV payload."""

    samples: NDArray[np.int16]  # shape (frames, channels)
    sample_rate: int
    channels: int

    @property
    def duration_ms(self) -> int:
        if self.sample_rate <= 0:
            return 0
        return int(len(self.samples) * 1000 / self.sample_rate)


def is_wav(data: bytes) -> bool:
    """Check for a RIFF/WAVE header."""
    return len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WAVE"


def read_wav(data: bytes) -> WavInfo:
    """Decode a 16-bit PCM WAV file.

    Args:
        data: Complete WAV file bytes

    Returns:
        Samples as an int16 array of shape (frames, channels)

    Raises:
        ValueError: If the data is not a 16-bit PCM WAV file
    """
    if not is_wav(data):
        raise ValueError("Audio is not a WAV file")

    try:
        with wave.open(io.BytesIO(data), "rb") as reader:
            channels = reader.getnchannels()
            sample_width = reader.getsampwidth()
            sample_rate = reader.getframerate()
            frames = reader.readframes(reader.getnframes())
    except (wave.Error, EOFError) as e:
        raise ValueError(f"Invalid WAV file: {e}") from e

    if sample_width != 2:
        raise ValueError(f"Only 16-bit PCM WAV is supported, got {sample_width * 8}-bit")
    if channels < 1:
        raise ValueError("WAV file has no channels")

    usable = len(frames) - (len(frames) % (2 * channels))
    samples = np.frombuffer(frames[:usable], dtype="<i2").astype(np.int16)
    return WavInfo(
        samples=samples.reshape(-1, channels), sample_rate=sample_rate, channels=channels
    )


def write_wav(pcm: bytes, sample_rate: int, channels: int = 1) -> bytes:
    """Wrap little-endian 16-bit PCM in a WAV container."""
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as writer:
        writer.setnchannels(channels)
        writer.setsampwidth(2)
        writer.setframerate(sample_rate)
        writer.writeframes(pcm)
    return buffer.getvalue()
