"""Audio transcoders producing the normalized recognition format.

Both implementations output a WAV file holding mono, 16-bit signed
little-endian PCM at the configured sample rate (16kHz by default):

- FFmpegTranscoder: any container ffmpeg can read (m4a/AAC from mobile
  recorders, mp3, ogg, wav). Runs ffmpeg as a subprocess.
- WavTranscoder: WAV input only, converted in-process with numpy/scipy.
  Useful where no ffmpeg binary is available.
"""

import asyncio
import logging
import shutil
import tempfile
from pathlib import Path

import numpy as np

from voicerelay.audio.resampler import AudioResampler
from voicerelay.audio.wav import read_wav, write_wav
from voicerelay.providers.base import ProviderError

logger = logging.getLogger(__name__)


class FFmpegTranscoder:
    """Transcode arbitrary containers with the ffmpeg CLI.

    Input is written to a temporary file rather than piped, since MP4/M4A
    files keep their index at the end and cannot be demuxed from a pipe.
    """

    name = "ffmpeg"

    def __init__(
        self,
        ffmpeg_path: str = "ffmpeg",
        sample_rate: int = 16000,
        channels: int = 1,
        timeout_s: float = 30.0,
    ) -> None:
        self._ffmpeg_path = ffmpeg_path
        self._sample_rate = sample_rate
        self._channels = channels
        self._timeout_s = timeout_s

    @staticmethod
    def is_available(ffmpeg_path: str = "ffmpeg") -> bool:
        return shutil.which(ffmpeg_path) is not None

    def build_command(self, source: Path, target: Path) -> list[str]:
        return [
            self._ffmpeg_path,
            "-hide_banner",
            "-loglevel",
            "error",
            "-y",
            "-i",
            str(source),
            "-ac",
            str(self._channels),
            "-ar",
            str(self._sample_rate),
            "-acodec",
            "pcm_s16le",
            "-f",
            "wav",
            str(target),
        ]

    async def transcode(self, audio: bytes) -> bytes:
        if not audio:
            raise ProviderError("Audio payload is empty", provider=self.name)

        with tempfile.TemporaryDirectory(prefix="voicerelay-") as workdir:
            source = Path(workdir) / "input"
            target = Path(workdir) / "output.wav"
            source.write_bytes(audio)

            try:
                process = await asyncio.create_subprocess_exec(
                    *self.build_command(source, target),
                    stdout=asyncio.subprocess.DEVNULL,
                    stderr=asyncio.subprocess.PIPE,
                )
            except OSError as e:
                raise ProviderError(f"Failed to start ffmpeg: {e}", provider=self.name) from e

            try:
                _, stderr = await asyncio.wait_for(process.communicate(), timeout=self._timeout_s)
            except TimeoutError as e:
                process.kill()
                await process.wait()
                raise ProviderError(
                    f"ffmpeg timed out after {self._timeout_s}s", provider=self.name
                ) from e

            if process.returncode != 0 or not target.exists():
                detail = stderr.decode("utf-8", errors="replace").strip().splitlines()
                reason = detail[-1] if detail else f"exit code {process.returncode}"
                logger.warning(
                    "ffmpeg transcode failed",
                    extra={"returncode": process.returncode, "stderr": reason},
                )
                raise ProviderError(f"ffmpeg failed: {reason}", provider=self.name)

            return target.read_bytes()


class WavTranscoder:
    """Normalize WAV input in-process (downmix + polyphase resample)."""

    name = "wav"

    def __init__(self, sample_rate: int = 16000) -> None:
        self._sample_rate = sample_rate

    async def transcode(self, audio: bytes) -> bytes:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.transcode_sync, audio)

    def transcode_sync(self, audio: bytes) -> bytes:
        try:
            info = read_wav(audio)
        except ValueError as e:
            raise ProviderError(str(e), provider=self.name) from e

        if info.channels > 1:
            mono = info.samples.astype(np.int32).mean(axis=1).astype(np.int16)
        else:
            mono = info.samples[:, 0]

        if info.sample_rate != self._sample_rate:
            mono = AudioResampler(info.sample_rate, self._sample_rate).process_samples(mono)

        return write_wav(mono.astype("<i2").tobytes(), self._sample_rate, channels=1)
