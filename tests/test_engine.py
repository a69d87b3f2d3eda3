"""
Synthesis orchestrator tests: block walking, progress, cancellation, failure.

All tests are hermetic: no speech service, no FFmpeg, no network.
"""

from __future__ import annotations

import json
import logging
from datetime import timedelta
from pathlib import Path

import pytest

from talkingbook.models import SynthesisConfig, SynthesisState
from talkingbook.resolver.documents import DocumentResolver
from talkingbook.synthesizer.audio import wav_duration
from talkingbook.synthesizer.engine import (
    BLOCK_ID_PREFIX,
    SynthesisError,
    SynthesisLog,
    collect_blocks,
    synthesize_document,
    synthesize_publication,
)
from talkingbook.synthesizer.protocols import VoiceEngineError
from talkingbook.synthesizer.voices import VoiceNotFoundError, VoiceSelector
from talkingbook.xhtml import local_name

from tests.fakes.fake_voice import FakeVoiceEngine
from tests.fakes.sample_documents import SAMPLE_FRAGMENTS, SAMPLE_XHTML

HALF = timedelta(milliseconds=500)
TOTAL = HALF * sum(SAMPLE_FRAGMENTS)


def _voices(engine=None) -> VoiceSelector:
    return VoiceSelector.for_engine(engine or FakeVoiceEngine())


# ---------------------------------------------------------------------------
# Block collection
# ---------------------------------------------------------------------------

class TestCollectBlocks:
    def test_blocks_in_document_order(self, sample_content: Path):
        doc = DocumentResolver().load(sample_content)
        blocks = collect_blocks(doc)
        assert [local_name(b) for b in blocks] == ["h1", "p", "span", "p", "h2", "p"]

    def test_loose_text_in_container_warns(self, tmp_path: Path, caplog):
        path = tmp_path / "mixed.html"
        path.write_text(
            '<html xmlns="http://www.w3.org/1999/xhtml"><body>'
            '<div>Loose text<p>Para</p></div></body></html>',
            encoding="utf-8",
        )
        doc = DocumentResolver().load(path)
        with caplog.at_level(logging.WARNING, logger="talkingbook.synthesizer"):
            blocks = collect_blocks(doc)
        assert len(blocks) == 1
        assert "MIXED_CONTENT_SKIPPED" in caplog.text


# ---------------------------------------------------------------------------
# synthesize_document
# ---------------------------------------------------------------------------

class TestSynthesizeDocument:
    def test_done_with_contiguous_timeline(self, sample_content: Path, tmp_path: Path):
        result = synthesize_document(sample_content, tmp_path / "out", voices=_voices())

        assert result.state == SynthesisState.DONE
        assert result.is_complete
        assert len(result.blocks) == result.total_blocks == 6
        assert [len(b.annotations) for b in result.blocks] == SAMPLE_FRAGMENTS
        assert result.duration == TOTAL
        assert result.audio_path == tmp_path / "out" / "speech.wav"
        assert wav_duration(result.audio_path) == TOTAL

        annos = [a for b in result.blocks for a in b.annotations]
        assert annos[0].clip_begin == timedelta(0)
        for prev, nxt in zip(annos, annos[1:]):
            assert prev.clip_end == nxt.clip_begin
        assert annos[-1].clip_end == TOTAL

    def test_annotation_side_table(self, sample_content: Path, tmp_path: Path):
        result = synthesize_document(sample_content, tmp_path / "out", voices=_voices())
        table = result.annotations
        assert len(table) == sum(SAMPLE_FRAGMENTS)
        h1 = result.document.get("h1_1")
        assert [a for f, a in table.items() if f.element is h1][0].clip_end == HALF

    def test_block_ids_generated(self, sample_content: Path, tmp_path: Path):
        result = synthesize_document(sample_content, tmp_path / "out", voices=_voices())
        ids = [b.element.get("id") for b in result.blocks]
        assert ids[:3] == ["h1_1", "p1", "page1"]
        generated = [i for i in ids if i.startswith(BLOCK_ID_PREFIX)]
        assert len(generated) == 2
        for block_id in generated:
            assert result.document.get(block_id) is not None

    def test_generated_ids_avoid_existing(self, tmp_path: Path):
        path = tmp_path / "clash.html"
        path.write_text(
            '<html xmlns="http://www.w3.org/1999/xhtml"><body>'
            f'<p id="{BLOCK_ID_PREFIX}00001">One</p><p>Two</p></body></html>',
            encoding="utf-8",
        )
        result = synthesize_document(path, tmp_path / "out", voices=_voices())
        assert result.blocks[1].element.get("id") == f"{BLOCK_ID_PREFIX}00002"

    def test_engine_per_language(self, sample_content: Path, tmp_path: Path):
        english = FakeVoiceEngine(name="english")
        danish = FakeVoiceEngine(name="danish")
        voices = VoiceSelector({"da-DK": danish}, default=english)
        voices.register("da", danish)

        result = synthesize_document(sample_content, tmp_path / "out", voices=voices)

        assert danish.call_count == 1
        assert english.call_count == 5
        assert result.blocks[-1].language == "da"
        assert result.blocks[-1].engine_name == "danish"
        assert result.blocks[0].language == "en"

    def test_config_language_fallback(self, tmp_path: Path):
        path = tmp_path / "nolang.html"
        path.write_text(
            '<html xmlns="http://www.w3.org/1999/xhtml"><body><p>Hej</p></body></html>',
            encoding="utf-8",
        )
        engine = FakeVoiceEngine()
        config = SynthesisConfig(language="da")
        result = synthesize_document(path, tmp_path / "out", voices=_voices(engine), config=config)
        assert result.blocks[0].language == "da"
        assert 'xml:lang="da"' in engine.calls[0].ssml

    def test_audio_format_from_config(self, sample_content: Path, tmp_path: Path):
        engine = FakeVoiceEngine()
        config = SynthesisConfig(sample_rate=16000, audio_name="book.wav")
        result = synthesize_document(sample_content, tmp_path / "out", voices=_voices(engine), config=config)
        assert engine.calls[0].audio_format.sample_rate == 16000
        assert result.audio_path.name == "book.wav"
        assert wav_duration(result.audio_path) == TOTAL

    def test_progress_reported_per_block(self, sample_content: Path, tmp_path: Path):
        seen = []

        def progress(percent, message):
            seen.append((percent, message))
            return True

        synthesize_document(sample_content, tmp_path / "out", voices=_voices(), progress_callback=progress)

        assert len(seen) == 6
        assert [p for p, _ in seen] == sorted(p for p, _ in seen)
        assert seen[-1][0] == 100
        assert seen[0][1] == "h1: Chapter One"

    def test_cancellation_after_block(self, sample_content: Path, tmp_path: Path):
        engine = FakeVoiceEngine()
        calls = []

        def progress(percent, message):
            calls.append(percent)
            return len(calls) < 2

        result = synthesize_document(
            sample_content, tmp_path / "out", voices=_voices(engine), progress_callback=progress,
        )

        assert result.state == SynthesisState.CANCELLED
        assert not result.is_complete
        assert len(result.blocks) == 2
        assert engine.call_count == 2
        assert result.duration == HALF * 4
        assert wav_duration(result.audio_path) == result.duration

    def test_returning_none_does_not_cancel(self, sample_content: Path, tmp_path: Path):
        result = synthesize_document(
            sample_content, tmp_path / "out", voices=_voices(), progress_callback=lambda p, m: None,
        )
        assert result.state == SynthesisState.DONE

    def test_failure_removes_audio(self, sample_content: Path, tmp_path: Path):
        engine = FakeVoiceEngine(fail_on_call=2)
        with pytest.raises(SynthesisError) as exc_info:
            synthesize_document(sample_content, tmp_path / "out", voices=_voices(engine))

        error = exc_info.value
        assert isinstance(error.__cause__, VoiceEngineError)
        assert error.summary.failed_block_index == 2
        assert error.summary.synthesized == 2
        assert error.summary.state == SynthesisState.FAILED.value
        assert error.summary.failed_block_preview == "1"
        assert not (tmp_path / "out" / "speech.wav").exists()

    def test_failure_is_logged(self, sample_content: Path, tmp_path: Path, caplog):
        engine = FakeVoiceEngine(fail_on_call=0)
        with caplog.at_level(logging.ERROR, logger="talkingbook.synthesizer"):
            with pytest.raises(SynthesisError):
                synthesize_document(sample_content, tmp_path / "out", voices=_voices(engine))
        record = [r.getMessage() for r in caplog.records if "BLOCK_FAIL" in r.getMessage()][0]
        payload = json.loads(record.split("BLOCK_FAIL: ", 1)[1])
        assert payload["status"] == "error"
        assert payload["block_id"] == "h1_1"
        assert payload["error_message"] == "Fake voice failure"

    def test_dtbook_source_rejected(self, tmp_path: Path):
        path = tmp_path / "book.xml"
        path.write_text(
            '<dtbook xmlns="http://www.daisy.org/z3986/2005/dtbook/"><book><bodymatter>'
            '<level1><h1>One</h1><p>Text.</p></level1></bodymatter></book></dtbook>',
            encoding="utf-8",
        )
        engine = FakeVoiceEngine()
        with pytest.raises(ValueError, match="Unsupported root element"):
            synthesize_document(path, tmp_path / "out", voices=_voices(engine))
        assert engine.call_count == 0
        assert not (tmp_path / "out" / "speech.wav").exists()

    def test_missing_voice_fails_run(self, sample_content: Path, tmp_path: Path):
        voices = VoiceSelector({"en": FakeVoiceEngine()})
        with pytest.raises(SynthesisError) as exc_info:
            synthesize_document(sample_content, tmp_path / "out", voices=voices)
        assert isinstance(exc_info.value.__cause__, VoiceNotFoundError)
        assert exc_info.value.summary.failed_block_index == 5

    def test_shared_resolver_reuses_document(self, sample_content: Path, tmp_path: Path):
        resolver = DocumentResolver()
        result = synthesize_document(sample_content, tmp_path / "out", voices=_voices(), resolver=resolver)
        assert resolver.load(sample_content) is result.document

    def test_observer_error_removes_audio(self, sample_content: Path, tmp_path: Path):
        def progress(percent, message):
            if percent > 20:
                raise RuntimeError("observer broke")
            return True

        with pytest.raises(RuntimeError, match="observer broke"):
            synthesize_document(sample_content, tmp_path / "out", voices=_voices(), progress_callback=progress)
        assert not (tmp_path / "out" / "speech.wav").exists()

    def test_interrupt_during_engine_call_removes_audio(self, sample_content: Path, tmp_path: Path):
        def script(marks, duration):
            raise KeyboardInterrupt

        with pytest.raises(KeyboardInterrupt):
            synthesize_document(sample_content, tmp_path / "out", voices=_voices(FakeVoiceEngine(script=script)))
        assert not (tmp_path / "out" / "speech.wav").exists()


# ---------------------------------------------------------------------------
# synthesize_publication
# ---------------------------------------------------------------------------

def _two_documents(tmp_path: Path) -> list[Path]:
    paths = []
    for name in ("one.html", "two.html"):
        path = tmp_path / "src" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(SAMPLE_XHTML, encoding="utf-8")
        paths.append(path)
    return paths


class TestSynthesizePublication:
    def test_one_audio_file_per_document(self, tmp_path: Path):
        publication = synthesize_publication(_two_documents(tmp_path), tmp_path / "out", voices=_voices())

        assert publication.state == SynthesisState.DONE
        assert [d.audio_path.name for d in publication.documents] == ["one.wav", "two.wav"]
        for doc in publication.documents:
            assert doc.state == SynthesisState.DONE
            assert doc.blocks[0].start_offset == timedelta(0)
            assert wav_duration(doc.audio_path) == TOTAL
        assert publication.duration == TOTAL * 2

    def test_same_file_names_get_distinct_audio(self, tmp_path: Path):
        paths = []
        for folder in ("a", "b"):
            path = tmp_path / "src" / folder / "index.html"
            path.parent.mkdir(parents=True)
            path.write_text(SAMPLE_XHTML, encoding="utf-8")
            paths.append(path)

        publication = synthesize_publication(paths, tmp_path / "out", voices=_voices())

        audio = [d.audio_path for d in publication.documents]
        assert [p.name for p in audio] == ["index.wav", "index_2.wav"]
        for path in audio:
            assert wav_duration(path) == TOTAL

    def test_progress_spans_publication(self, tmp_path: Path):
        seen = []

        def progress(percent, message):
            seen.append(percent)
            return True

        synthesize_publication(_two_documents(tmp_path), tmp_path / "out", voices=_voices(), progress_callback=progress)
        assert len(seen) == 12
        assert seen[5] == 50
        assert seen[-1] == 100

    def test_cancel_stops_later_documents(self, tmp_path: Path):
        engine = FakeVoiceEngine()
        publication = synthesize_publication(
            _two_documents(tmp_path),
            tmp_path / "out",
            voices=_voices(engine),
            progress_callback=lambda p, m: False,
        )
        assert publication.state == SynthesisState.CANCELLED
        assert len(publication.documents) == 1
        assert engine.call_count == 1
        assert not (tmp_path / "out" / "two.wav").exists()

    def test_failure_in_second_document(self, tmp_path: Path):
        engine = FakeVoiceEngine(fail_on_call=7)
        with pytest.raises(SynthesisError) as exc_info:
            synthesize_publication(_two_documents(tmp_path), tmp_path / "out", voices=_voices(engine))
        assert exc_info.value.summary.failed_document.endswith("two.html")
        assert exc_info.value.summary.failed_block_index == 1
        assert (tmp_path / "out" / "one.wav").exists()
        assert not (tmp_path / "out" / "two.wav").exists()


class TestSynthesisLog:
    def test_to_json(self):
        entry = SynthesisLog(document="file:///a.html", block_index=3, block_tag="p", block_id="p3")
        data = json.loads(entry.to_json())
        assert data["block_index"] == 3
        assert data["status"] == "pending"
