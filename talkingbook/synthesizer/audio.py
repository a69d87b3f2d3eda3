"""
Cumulative WAV writer.

Block audio is appended in synthesis order; the total duration after each
append is the ground truth used for drift correction.
"""

from __future__ import annotations

import logging
import wave
from datetime import timedelta
from pathlib import Path

from talkingbook.synthesizer.protocols import AudioFormat

logger = logging.getLogger("talkingbook.synthesizer")


class WaveWriter:
    """
    Appends raw PCM to a WAV file and tracks its total duration.

    Usage:
        with WaveWriter(path, AudioFormat(22050)) as writer:
            writer.append(pcm_bytes)
            print(writer.total_duration)
    """

    def __init__(self, path: str | Path, audio_format: AudioFormat) -> None:
        self.path = Path(path)
        self.audio_format = audio_format
        self.frames = 0
        self._pending = b""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._wav = wave.open(str(self.path), "wb")
        self._wav.setnchannels(audio_format.channels)
        self._wav.setsampwidth(audio_format.sample_width)
        self._wav.setframerate(audio_format.sample_rate)

    @property
    def total_duration(self) -> timedelta:
        return timedelta(seconds=self.frames / self.audio_format.sample_rate)

    @property
    def closed(self) -> bool:
        return self._wav is None

    def append(self, pcm: bytes) -> timedelta:
        """
        Append raw PCM frames.

        A trailing partial frame is held back until the next append.

        Returns:
            Total duration after the append.
        """
        if self._wav is None:
            raise ValueError(f"Writer for {self.path} is closed")
        data = self._pending + pcm
        frame_size = self.audio_format.frame_size
        usable = len(data) - len(data) % frame_size
        self._pending = data[usable:]
        if usable:
            self._wav.writeframesraw(data[:usable])
            self.frames += usable // frame_size
        return self.total_duration

    def append_silence(self, duration: timedelta) -> timedelta:
        frames = int(round(duration.total_seconds() * self.audio_format.sample_rate))
        return self.append(b"\x00" * frames * self.audio_format.frame_size)

    def close(self) -> None:
        if self._wav is None:
            return
        if self._pending:
            logger.warning(f"AUDIO_PARTIAL_FRAME: dropped {len(self._pending)} bytes in {self.path}")
            self._pending = b""
        self._wav.close()
        self._wav = None

    def __enter__(self) -> "WaveWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def wav_duration(path: str | Path) -> timedelta:
    """Duration of a WAV file."""
    with wave.open(str(path), "rb") as wf:
        return timedelta(seconds=wf.getnframes() / wf.getframerate())
