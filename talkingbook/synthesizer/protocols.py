"""
Synthesizer protocols: lightweight interfaces for voice engines and FFmpeg.

These allow the synthesis pipeline to be tested without a real speech
service or FFmpeg installed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable, Optional, Protocol, runtime_checkable

BEGIN_TAG = "B"
END_TAG = "E"


@dataclass(frozen=True)
class AudioFormat:
    """PCM format shared by the voice engine and the audio writer."""
    sample_rate: int = 22050
    sample_width: int = 2
    channels: int = 1

    @property
    def frame_size(self) -> int:
        return self.sample_width * self.channels


@dataclass(frozen=True)
class BoundaryEvent:
    """
    A bookmark reached by the voice engine.

    Bookmark names are a tag (B/E) followed by the fragment sequence
    number, e.g. ``B000003``. ``audio_offset`` is relative to the start of
    the audio returned by the same call.
    """
    bookmark: str
    audio_offset: timedelta

    @property
    def tag(self) -> str:
        return self.bookmark[:1]

    @property
    def key(self) -> str:
        return self.bookmark[1:]

    @property
    def sequence(self) -> Optional[int]:
        return int(self.key) if self.key.isdigit() else None


@dataclass
class SpeechResult:
    """Raw PCM audio and the bookmark events of one synthesis call."""
    audio: bytes
    events: list[BoundaryEvent] = field(default_factory=list)


class VoiceEngineError(RuntimeError):
    """The voice engine could not synthesize a block."""


@runtime_checkable
class VoiceEngine(Protocol):
    """
    Interface for a speech engine.

    ``synthesize`` blocks until all audio and bookmark events of the SSML
    document are available.
    """

    name: str

    def synthesize(self, ssml: str, audio_format: AudioFormat) -> SpeechResult: ...


# (percent 0..100, message) -> continue requested
ProgressCallback = Callable[[int, str], bool]


@dataclass
class RunResult:
    """Result of running an external command."""
    returncode: int
    stdout: str = ""
    stderr: str = ""


@runtime_checkable
class FFmpegRunner(Protocol):
    """Interface for running FFmpeg commands."""

    def run(self, args: list[str]) -> RunResult: ...
