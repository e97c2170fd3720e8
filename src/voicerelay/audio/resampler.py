"""Audio resampling for speech recognition preprocessing.

Converts 16-bit PCM between sample rates with scipy's polyphase filter,
which keeps speech intelligible at the 16kHz rate recognizers expect.
"""

import logging
from math import gcd

import numpy as np
from numpy.typing import NDArray
from scipy import signal

logger = logging.getLogger(__name__)


class AudioResampler:
    """Polyphase resampler for mono 16-bit PCM.

    Example:
        ```python
        resampler = AudioResampler(source_rate=44100, target_rate=16000)
        pcm_16k = resampler.process(pcm_44k)
        ```
    """

    def __init__(self, source_rate: int, target_rate: int) -> None:
        """Initialize resampler.

        Args:
            source_rate: Source sample rate in Hz (e.g., 44100)
            target_rate: Target sample rate in Hz (e.g., 16000)

        Raises:
            ValueError: If sample rates are invalid
        """
        if source_rate <= 0 or target_rate <= 0:
            raise ValueError(
                f"Sample rates must be positive: source={source_rate}, target={target_rate}"
            )

        self._source_rate = source_rate
        self._target_rate = target_rate
        divisor = gcd(source_rate, target_rate)
        self._up = target_rate // divisor
        self._down = source_rate // divisor

        logger.debug(f"Resampler initialized: {source_rate}Hz → {target_rate}Hz")

    @property
    def source_rate(self) -> int:
        return self._source_rate

    @property
    def target_rate(self) -> int:
        return self._target_rate

    @property
    def ratio(self) -> float:
        return self._target_rate / self._source_rate

    def process(self, pcm: bytes) -> bytes:
        """Resample little-endian 16-bit mono PCM.

        Raises:
            ValueError: If the byte count is not a multiple of 2
        """
        if len(pcm) % 2 != 0:
            raise ValueError(
                f"PCM size must be a multiple of 2 bytes (16-bit samples), got {len(pcm)} bytes"
            )
        samples = np.frombuffer(pcm, dtype="<i2").astype(np.int16)
        return self.process_samples(samples).astype("<i2").tobytes()

    def process_samples(self, samples: NDArray[np.int16]) -> NDArray[np.int16]:
        """Resample an int16 sample array."""
        if self._up == self._down or samples.size == 0:
            return samples.astype(np.int16)

        resampled = signal.resample_poly(samples.astype(np.float32), self._up, self._down)
        return np.clip(
            resampled, np.iinfo(np.int16).min, np.iinfo(np.int16).max
        ).astype(np.int16)
