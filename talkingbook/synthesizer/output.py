"""
Audio encoding for talkingbook.

The synthesizer writes WAV; talking books are usually distributed as MP3.
Encoding is delegated to FFmpeg through an FFmpegRunner so tests never
need FFmpeg installed.
"""

import logging
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from talkingbook.synthesizer.protocols import FFmpegRunner, RunResult

logger = logging.getLogger("talkingbook.ffmpeg")


class SubprocessFFmpegRunner:
    """Runs an FFmpeg binary (``ffmpeg`` on PATH by default)."""

    def __init__(self, binary: str = "ffmpeg") -> None:
        self.binary = binary

    def run(self, args: list[str]) -> RunResult:
        command = [self.binary, *args]
        logger.debug(f"FFMPEG_RUN: {' '.join(command)}")
        try:
            proc = subprocess.run(command, capture_output=True, text=True)
        except FileNotFoundError:
            return RunResult(returncode=-1, stderr=f"{self.binary} not found on PATH")
        return RunResult(returncode=proc.returncode, stdout=proc.stdout, stderr=proc.stderr)

    def available(self) -> bool:
        return shutil.which(self.binary) is not None and self.run(["-version"]).returncode == 0


@dataclass
class EncodingResult:
    """Where the distributable audio ended up."""
    output_path: Path
    encoded: bool
    source_kept: bool = True


def mp3_args(wav_path: Path, mp3_path: Path, bitrate_kbps: int) -> list[str]:
    """FFmpeg arguments for a constant-bitrate mono MP3."""
    return [
        "-y",
        "-i", str(wav_path),
        "-c:a", "libmp3lame",
        "-b:a", f"{bitrate_kbps}k",
        "-ac", "1",
        str(mp3_path),
    ]


def encode_mp3(
    wav_path: Path,
    mp3_path: Optional[Path] = None,
    bitrate_kbps: int = 48,
    *,
    runner: Optional[FFmpegRunner] = None,
    keep_wav: bool = False,
) -> EncodingResult:
    """
    Encode a WAV file to MP3.

    Args:
        wav_path: Source WAV file.
        mp3_path: Output path (default: WAV path with .mp3 suffix).
        bitrate_kbps: Constant bitrate in kbit/s.
        runner: Injected FFmpegRunner (defaults to SubprocessFFmpegRunner).
        keep_wav: Keep the WAV file after a successful encode.

    Raises:
        RuntimeError: If FFmpeg fails; the WAV file is left in place.
    """
    runner = runner or SubprocessFFmpegRunner()
    wav_path = Path(wav_path)
    mp3_path = Path(mp3_path) if mp3_path else wav_path.with_suffix(".mp3")

    result = runner.run(mp3_args(wav_path, mp3_path, bitrate_kbps))
    if result.returncode != 0:
        stderr_tail = "\n".join(result.stderr.strip().splitlines()[-20:])
        logger.error(f"ENCODE_FAIL: source={wav_path} returncode={result.returncode}")
        raise RuntimeError(f"FFmpeg MP3 conversion failed: {stderr_tail}")

    logger.info(f"ENCODE_OK: {wav_path.name} -> {mp3_path.name} bitrate={bitrate_kbps}k")
    if not keep_wav:
        wav_path.unlink(missing_ok=True)
    return EncodingResult(output_path=mp3_path, encoded=True, source_kept=keep_wav)
