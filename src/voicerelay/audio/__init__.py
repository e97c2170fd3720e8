"""Audio utilities: WAV containers, resampling, transcoding and test signals."""

from .resampler import AudioResampler
from .synthesis import generate_sine_wave
from .transcoder import FFmpegTranscoder, WavTranscoder
from .wav import WavInfo, is_wav, read_wav, write_wav

__all__ = [
    "AudioResampler",
    "FFmpegTranscoder",
    "WavInfo",
    "WavTranscoder",
    "generate_sine_wave",
    "is_wav",
    "read_wav",
    "write_wav",
]
