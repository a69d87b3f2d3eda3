"""
FakeVoiceEngine: deterministic silence plus scripted bookmark events.

No external service. Every spoken fragment lasts ``fragment_duration``;
bookmark offsets can be scaled to simulate engine timing drift.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Optional

from lxml import etree

from talkingbook.synthesizer.protocols import (
    AudioFormat,
    BoundaryEvent,
    SpeechResult,
    VoiceEngineError,
)

FRAGMENT_DURATION = timedelta(milliseconds=500)


@dataclass
class SpeakCall:
    """Record of a synthesize() call for assertions."""
    ssml: str
    marks: list[str]
    texts: list[str]
    audio_format: AudioFormat


def parse_marks(ssml: str) -> tuple[list[str], list[str]]:
    """Mark names and the text spoken after each begin mark."""
    root = etree.fromstring(ssml.encode("utf-8"))
    marks = []
    texts = []
    for elem in root.iter():
        if isinstance(elem.tag, str) and etree.QName(elem).localname == "mark":
            name = elem.get("name", "")
            marks.append(name)
            if name.startswith("B"):
                texts.append((elem.tail or "").strip())
    return marks, texts


class FakeVoiceEngine:
    """
    Deterministic voice engine for tests.

    - Returns silence PCM, ``fragment_duration`` per fragment.
    - Reports B/E bookmarks at fragment boundaries, scaled by ``event_scale``.
    - ``drop_marks`` suppresses named bookmarks.
    - ``script(marks, audio_duration)`` replaces the generated events.
    - Raises VoiceEngineError on call index ``fail_on_call``.
    """

    def __init__(
        self,
        name: str = "fake",
        fragment_duration: timedelta = FRAGMENT_DURATION,
        event_scale: float = 1.0,
        drop_marks: Optional[set[str]] = None,
        script: Optional[Callable[[list[str], timedelta], list[BoundaryEvent]]] = None,
        fail_on_call: int = -1,
        fail_error: str = "Fake voice failure",
    ) -> None:
        self.name = name
        self.fragment_duration = fragment_duration
        self.event_scale = event_scale
        self.drop_marks = drop_marks or set()
        self.script = script
        self.fail_on_call = fail_on_call
        self.fail_error = fail_error
        self.calls: list[SpeakCall] = []

    @property
    def call_count(self) -> int:
        return len(self.calls)

    def synthesize(self, ssml: str, audio_format: AudioFormat) -> SpeechResult:
        call_index = len(self.calls)
        marks, texts = parse_marks(ssml)
        self.calls.append(SpeakCall(ssml=ssml, marks=marks, texts=texts, audio_format=audio_format))

        if call_index == self.fail_on_call:
            raise VoiceEngineError(self.fail_error)

        fragments = sum(1 for m in marks if m.startswith("B"))
        audio_duration = self.fragment_duration * fragments
        frames = int(round(audio_duration.total_seconds() * audio_format.sample_rate))
        audio = b"\x00" * frames * audio_format.frame_size

        if self.script is not None:
            events = self.script(marks, audio_duration)
        else:
            events = []
            for mark in marks:
                if mark in self.drop_marks:
                    continue
                index = int(mark[1:])
                position = index if mark.startswith("B") else index + 1
                offset = self.fragment_duration * position * self.event_scale
                events.append(BoundaryEvent(bookmark=mark, audio_offset=offset))

        return SpeechResult(audio=audio, events=events)
