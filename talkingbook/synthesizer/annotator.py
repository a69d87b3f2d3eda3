"""
Block synchronization: turns one engine call into fragment clip timings.

Each block element is spoken in a single engine call so prosody stays
natural. Every text fragment is wrapped in a begin/end bookmark pair; the
bookmark events reported by the engine become SyncAnnotations, which are
then chained into a contiguous timeline and stretched to the real length
of the audio the engine returned.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Optional

from lxml import etree

from talkingbook.models import BlockSynthesis, SyncAnnotation, TextFragment
from talkingbook.synthesizer.audio import WaveWriter
from talkingbook.synthesizer.protocols import (
    BEGIN_TAG,
    END_TAG,
    SpeechResult,
    VoiceEngine,
)
from talkingbook.xhtml import iter_text_fragments, normalize_whitespace

logger = logging.getLogger("talkingbook.synthesizer")

SSML_NS = "http://www.w3.org/2001/10/synthesis"
XML_LANG = "{http://www.w3.org/XML/1998/namespace}lang"


def bookmark_key(index: int) -> str:
    return f"{index:06d}"


def build_ssml(fragments: list[TextFragment], language: str = "") -> str:
    """
    SSML document speaking the fragments, each between B/E marks.

    Fragment k gets the marks ``B{k:06d}`` and ``E{k:06d}``.
    """
    speak = etree.Element(f"{{{SSML_NS}}}speak", nsmap={None: SSML_NS})
    speak.set("version", "1.0")
    if language:
        speak.set(XML_LANG, language)
    last = None
    for index, fragment in enumerate(fragments):
        key = bookmark_key(index)
        begin = etree.SubElement(speak, f"{{{SSML_NS}}}mark", name=f"{BEGIN_TAG}{key}")
        begin.tail = normalize_whitespace(fragment.text)
        last = etree.SubElement(speak, f"{{{SSML_NS}}}mark", name=f"{END_TAG}{key}")
    if last is None:
        speak.text = ""
    return etree.tostring(speak, encoding="unicode")


def rescale(value: timedelta, start_offset: timedelta, factor: float) -> timedelta:
    """Stretch an offset away from ``start_offset`` by ``factor``."""
    return start_offset + (value - start_offset) * factor


class SyncAnnotator:
    """
    Synthesizes block elements and annotates their text fragments.

    Usage:
        annotator = SyncAnnotator(engine)
        block = annotator.synthesize_element(paragraph, writer, "speech.wav")
        for anno in block.annotations:
            print(anno.fragment.text, anno.clip_begin, anno.clip_end)
    """

    def __init__(
        self,
        engine: VoiceEngine,
        drift_warning_threshold: float = 0.1,
    ) -> None:
        self.engine = engine
        self.drift_warning_threshold = drift_warning_threshold

    @property
    def engine_name(self) -> str:
        return getattr(self.engine, "name", type(self.engine).__name__)

    def synthesize_element(
        self,
        element,
        writer: WaveWriter,
        src: str = "",
        language: str = "",
    ) -> BlockSynthesis:
        """
        Speak one block element and append its audio to ``writer``.

        Args:
            element: Block element to synthesize.
            writer: Cumulative audio writer (owned by the caller).
            src: Audio identifier recorded on the annotations.
            language: Language tag placed on the SSML document.

        Returns:
            BlockSynthesis with contiguous annotations spanning exactly the
            audio this call appended.
        """
        if element is None:
            raise ValueError("element is required")

        start_offset = writer.total_duration
        fragments = list(iter_text_fragments(element))
        block = BlockSynthesis(
            element=element,
            start_offset=start_offset,
            language=language,
            engine_name=self.engine_name,
        )
        if not fragments:
            return block

        annotations = [
            SyncAnnotation(src=src, fragment=fragment, element=fragment.parent)
            for fragment in fragments
        ]
        result = self.engine.synthesize(build_ssml(fragments, language), writer.audio_format)

        observed_begin, observed_end = self._collect_events(result, len(annotations), start_offset)

        actual_end = writer.append(result.audio)

        self._chain(annotations, observed_end, start_offset)
        self._correct_drift(annotations, start_offset, actual_end, element)

        block.annotations = annotations
        block.duration = actual_end - start_offset
        logger.debug(
            f"BLOCK_EVENTS: engine={self.engine_name} fragments={len(annotations)} "
            f"begins={len(annotations) - observed_begin.count(None)} "
            f"ends={len(annotations) - observed_end.count(None)}"
        )
        return block

    # -- event handling ----------------------------------------------------

    @staticmethod
    def _collect_events(
        result: SpeechResult,
        count: int,
        start_offset: timedelta,
    ) -> tuple[list[Optional[timedelta]], list[Optional[timedelta]]]:
        """First begin/end offset per fragment, shifted by ``start_offset``."""
        begins: list[Optional[timedelta]] = [None] * count
        ends: list[Optional[timedelta]] = [None] * count
        for event in result.events:
            index = event.sequence
            if index is None or not 0 <= index < count or event.key != bookmark_key(index):
                continue
            offset = start_offset + event.audio_offset
            if event.tag == BEGIN_TAG and begins[index] is None:
                begins[index] = offset
            elif event.tag == END_TAG and ends[index] is None:
                ends[index] = offset
        return begins, ends

    @staticmethod
    def _chain(
        annotations: list[SyncAnnotation],
        observed_end: list[Optional[timedelta]],
        start_offset: timedelta,
    ) -> None:
        """
        Build a contiguous timeline from the observed end offsets.

        Engine begin offsets are discarded: each fragment begins where the
        previous one ends, and the first at ``start_offset``.
        """
        begin = start_offset
        for anno, end in zip(annotations, observed_end):
            anno.clip_begin = begin
            anno.clip_end = end if end is not None and end >= begin else begin
            begin = anno.clip_end

    def _correct_drift(
        self,
        annotations: list[SyncAnnotation],
        start_offset: timedelta,
        actual_end: timedelta,
        element,
    ) -> None:
        """Stretch the timeline so the last clip ends where the audio ends."""
        last = annotations[-1]
        last_end = last.clip_end
        if last_end == actual_end:
            return
        if last_end == start_offset:
            last.clip_end = actual_end
            return

        # Bookmark offsets slide relative to the audio; assumed linear over one call
        factor = (actual_end - start_offset) / (last_end - start_offset)

        def stretch(value: timedelta) -> timedelta:
            # Exact at the end point, whatever the microsecond rounding does
            if value == last_end:
                return actual_end
            return rescale(value, start_offset, factor)

        for anno in annotations:
            anno.clip_begin = stretch(anno.clip_begin)
            anno.clip_end = stretch(anno.clip_end)

        if abs(factor - 1.0) > self.drift_warning_threshold:
            logger.warning(
                f"DRIFT_FACTOR: engine={self.engine_name} factor={factor:.4f} "
                f"block={element.get('id')!r} start={start_offset.total_seconds():.3f}s"
            )
