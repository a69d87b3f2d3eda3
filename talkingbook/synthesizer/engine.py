"""
Synthesis engine for talkingbook.

Walks the block elements of content documents and speaks them one at a
time through the SyncAnnotator. Each block's start offset depends on the
audio written for every block before it, so blocks run strictly in order
and a failed block fails the whole run.

Cancellation is cooperative: the progress callback is consulted after each
finished block and never interrupts an engine call.
"""

import json
import logging
import time
from dataclasses import dataclass, asdict, field
from datetime import timedelta
from pathlib import Path
from typing import Iterable, Optional

from talkingbook.models import (
    BlockSynthesis,
    SynthesisConfig,
    SynthesisState,
    SyncAnnotation,
    TextFragment,
)
from talkingbook.resolver.documents import CachedDocument, DocumentResolver, unique_file_name
from talkingbook.synthesizer.annotator import SyncAnnotator
from talkingbook.synthesizer.audio import WaveWriter
from talkingbook.synthesizer.protocols import AudioFormat, ProgressCallback
from talkingbook.synthesizer.voices import VoiceSelector
from talkingbook.xhtml import describe, element_language, iter_block_elements, local_name

# Structured logger for synthesis operations
logger = logging.getLogger("talkingbook.synthesizer")

BLOCK_ID_PREFIX = "tbsyn_"


# ---------------------------------------------------------------------------
# Structured logging
# ---------------------------------------------------------------------------

@dataclass
class SynthesisLog:
    """Structured log entry for one block."""
    document: str
    block_index: int
    block_tag: str
    block_id: str
    fragment_count: int = 0
    language: str = ""
    engine: str = ""
    start_offset_s: float = 0.0
    duration_s: float = 0.0
    elapsed_s: float = 0.0
    status: str = "pending"  # pending | success | error
    error_message: str = ""
    text_preview: str = ""

    def to_json(self) -> str:
        return json.dumps(asdict(self), ensure_ascii=False)

    def log(self):
        if self.status == "error":
            logger.error(f"BLOCK_FAIL: {self.to_json()}")
        else:
            logger.debug(f"BLOCK_OK: {self.to_json()}")


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass
class SynthesisSummary:
    """Per-run accounting, attached to SynthesisError on failure."""
    total_blocks: int = 0
    synthesized: int = 0
    audio_seconds: float = 0.0
    state: str = SynthesisState.PENDING.value
    failed_document: str = ""
    failed_block_index: int = -1
    failed_block_preview: str = ""
    error: str = ""


class SynthesisError(RuntimeError):
    """Synthesis failed; no talking book is assembled from the partial audio."""

    def __init__(self, message: str, summary: Optional[SynthesisSummary] = None):
        super().__init__(message)
        self.summary = summary


@dataclass
class DocumentSynthesis:
    """
    Audio and timing produced for one content document.

    Attributes:
        document: The loaded content document (block ids added in place)
        audio_path: WAV file holding the audio of all synthesized blocks
        blocks: Synthesized blocks in document order
        state: DONE, or CANCELLED when the run stopped early
        total_blocks: Number of blocks the document has
    """
    document: CachedDocument
    audio_path: Path
    blocks: list[BlockSynthesis] = field(default_factory=list)
    state: SynthesisState = SynthesisState.PENDING
    total_blocks: int = 0

    @property
    def duration(self) -> timedelta:
        if not self.blocks:
            return timedelta(0)
        return self.blocks[-1].end_offset

    @property
    def annotations(self) -> dict[TextFragment, SyncAnnotation]:
        """Side table: fragment → annotation."""
        return {
            anno.fragment: anno
            for block in self.blocks
            for anno in block.annotations
        }

    @property
    def is_complete(self) -> bool:
        return self.state == SynthesisState.DONE


@dataclass
class PublicationSynthesis:
    """Results of a multi-document run."""
    documents: list[DocumentSynthesis] = field(default_factory=list)
    state: SynthesisState = SynthesisState.PENDING

    @property
    def duration(self) -> timedelta:
        return sum((d.duration for d in self.documents), timedelta(0))


# ---------------------------------------------------------------------------
# Block preparation
# ---------------------------------------------------------------------------

def collect_blocks(document: CachedDocument) -> list:
    """Block elements of a document, in document order."""
    def on_skipped(container):
        logger.warning(
            f"MIXED_CONTENT_SKIPPED: document={document.uri} "
            f"element={local_name(container)!r} id={container.get('id')!r}"
        )
    return list(iter_block_elements(document.root, on_skipped_text=on_skipped))


def ensure_block_ids(document: CachedDocument, blocks: Iterable) -> int:
    """
    Give every block an id so timing files can reference it.

    New ids are added to the document's id index. Returns how many ids
    were generated.
    """
    counter = 0
    generated = 0
    for block in blocks:
        if block.get("id"):
            continue
        while True:
            counter += 1
            candidate = f"{BLOCK_ID_PREFIX}{counter:05d}"
            if candidate not in document.ids:
                break
        block.set("id", candidate)
        document.ids[candidate] = block
        generated += 1
    return generated


# ---------------------------------------------------------------------------
# Block loop
# ---------------------------------------------------------------------------

class _BlockRunner:
    """Shared block loop for document and publication runs."""

    def __init__(
        self,
        voices: VoiceSelector,
        config: SynthesisConfig,
        progress_callback: Optional[ProgressCallback],
        total_blocks: int,
    ) -> None:
        self.voices = voices
        self.config = config
        self.progress_callback = progress_callback
        self.summary = SynthesisSummary(total_blocks=total_blocks)
        self.state = SynthesisState.PENDING
        self._annotators: dict[int, SyncAnnotator] = {}

    def _annotator_for(self, language: str) -> SyncAnnotator:
        engine = self.voices.select(language)
        annotator = self._annotators.get(id(engine))
        if annotator is None:
            annotator = SyncAnnotator(engine, self.config.drift_warning_threshold)
            self._annotators[id(engine)] = annotator
        return annotator

    def _percent(self) -> int:
        if self.summary.total_blocks == 0:
            return 100
        return int(100 * self.summary.synthesized / self.summary.total_blocks)

    def run(
        self,
        result: DocumentSynthesis,
        blocks: list,
        writer: WaveWriter,
        src: str,
    ) -> SynthesisState:
        """
        Synthesize blocks into ``writer``; returns CANCELLED or DONE.

        Raises:
            SynthesisError: If any block fails.
        """
        self.state = SynthesisState.SYNTHESIZING
        document = result.document
        default_language = self.config.language

        for index, block in enumerate(blocks):
            language = element_language(block, default_language)
            entry = SynthesisLog(
                document=document.uri,
                block_index=index,
                block_tag=local_name(block),
                block_id=block.get("id") or "",
                language=language,
                start_offset_s=writer.total_duration.total_seconds(),
            )
            start = time.time()
            try:
                annotator = self._annotator_for(language)
                entry.engine = annotator.engine_name
                block_result = annotator.synthesize_element(block, writer, src, language)
            except Exception as e:
                entry.status = "error"
                entry.error_message = str(e)
                entry.elapsed_s = time.time() - start
                entry.text_preview = " ".join("".join(block.itertext()).split())[:80]
                entry.log()

                self.state = SynthesisState.FAILED
                self.summary.state = self.state.value
                self.summary.failed_document = document.uri
                self.summary.failed_block_index = index
                self.summary.failed_block_preview = entry.text_preview
                self.summary.error = str(e)
                raise SynthesisError(
                    f"Block {index} ({describe(block)!r}) of {document.uri} failed: {e}",
                    summary=self.summary,
                ) from e

            result.blocks.append(block_result)
            self.summary.synthesized += 1
            self.summary.audio_seconds += block_result.duration.total_seconds()

            entry.fragment_count = len(block_result.annotations)
            entry.duration_s = block_result.duration.total_seconds()
            entry.elapsed_s = time.time() - start
            entry.status = "success"
            entry.log()

            if self.progress_callback is not None:
                if self.progress_callback(self._percent(), describe(block)) is False:
                    self.state = SynthesisState.CANCELLED
                    self.summary.state = self.state.value
                    return self.state

        return SynthesisState.DONE


def _open_document(resolver: DocumentResolver, content_path: Path) -> tuple[CachedDocument, list]:
    document = resolver.load(content_path)
    if local_name(document.root) != "html":
        # DTBook sources have to be converted to XHTML first
        raise ValueError(
            f"Unsupported root element {document.root.tag!r} in {document.uri}: "
            "only XHTML content documents can be synthesized"
        )
    blocks = collect_blocks(document)
    generated = ensure_block_ids(document, blocks)
    if generated:
        logger.debug(f"BLOCK_IDS_GENERATED: document={document.uri} count={generated}")
    return document, blocks


def _run_document(
    runner: _BlockRunner,
    document: CachedDocument,
    blocks: list,
    audio_path: Path,
    audio_format: AudioFormat,
) -> DocumentSynthesis:
    result = DocumentSynthesis(
        document=document,
        audio_path=audio_path,
        total_blocks=len(blocks),
    )
    writer = WaveWriter(audio_path, audio_format)
    finished = False
    try:
        result.state = runner.run(result, blocks, writer, audio_path.name)
        finished = True
    except BaseException:
        result.state = SynthesisState.FAILED
        raise
    finally:
        writer.close()
        # Only DONE and CANCELLED runs leave audio behind
        if not finished:
            audio_path.unlink(missing_ok=True)
    return result


def _audio_format(config: SynthesisConfig) -> AudioFormat:
    return AudioFormat(
        sample_rate=config.sample_rate,
        sample_width=config.sample_width,
        channels=config.channels,
    )


# ---------------------------------------------------------------------------
# Document runs
# ---------------------------------------------------------------------------

def synthesize_document(
    content_path: Path,
    output_dir: Path,
    *,
    voices: VoiceSelector,
    config: Optional[SynthesisConfig] = None,
    progress_callback: Optional[ProgressCallback] = None,
    resolver: Optional[DocumentResolver] = None,
    audio_name: Optional[str] = None,
) -> DocumentSynthesis:
    """
    Synthesize every block of one content document into a single WAV file.

    Args:
        content_path: XHTML content document.
        output_dir: Directory receiving the audio file.
        voices: Engine selection by block language.
        config: Run configuration (defaults to SynthesisConfig()).
        progress_callback: Callback(percent, message) -> continue requested.
            Returning False cancels after the block that just finished.
        resolver: Document cache for this run (a fresh one by default).
        audio_name: Audio file name (default: config.audio_name).

    Returns:
        DocumentSynthesis with state DONE or CANCELLED.

    Raises:
        SynthesisError: If a block fails; the partial audio is removed.
        DuplicateIdError: If the content document repeats an id.
        ValueError: If the document is not XHTML (e.g. DTBook).
    """
    config = config or SynthesisConfig()
    if resolver is None:
        resolver = DocumentResolver()
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    audio_path = output_dir / (audio_name or config.audio_name)

    document, blocks = _open_document(resolver, Path(content_path))
    runner = _BlockRunner(voices, config, progress_callback, total_blocks=len(blocks))

    logger.info(
        f"SYNTHESIS_START: document={document.uri} blocks={len(blocks)} "
        f"audio={audio_path} language={config.language}"
    )
    started = time.time()
    result = _run_document(runner, document, blocks, audio_path, _audio_format(config))
    _log_finish(result.state, runner.summary, time.time() - started)
    return result


def synthesize_publication(
    content_paths: list[Path],
    output_dir: Path,
    *,
    voices: VoiceSelector,
    config: Optional[SynthesisConfig] = None,
    progress_callback: Optional[ProgressCallback] = None,
    resolver: Optional[DocumentResolver] = None,
) -> PublicationSynthesis:
    """
    Synthesize several content documents in reading order.

    Each document gets its own audio file (``<stem>.wav``, ``<stem>_2.wav``
    when two documents share a file name); progress is
    reported over the blocks of the whole publication. Cancellation stops
    the publication after the current block, leaving later documents out.

    Raises:
        SynthesisError: If any block fails.
    """
    config = config or SynthesisConfig()
    if resolver is None:
        resolver = DocumentResolver()
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    opened = [_open_document(resolver, Path(p)) for p in content_paths]
    total = sum(len(blocks) for _, blocks in opened)
    runner = _BlockRunner(voices, config, progress_callback, total_blocks=total)
    publication = PublicationSynthesis()

    logger.info(
        f"SYNTHESIS_START: documents={len(opened)} blocks={total} output={output_dir}"
    )
    started = time.time()
    audio_format = _audio_format(config)
    publication.state = SynthesisState.SYNTHESIZING
    used_names: set[str] = set()
    for document, blocks in opened:
        audio_path = output_dir / unique_file_name(f"{document.path.stem}.wav", used_names)
        result = _run_document(runner, document, blocks, audio_path, audio_format)
        publication.documents.append(result)
        if result.state == SynthesisState.CANCELLED:
            publication.state = SynthesisState.CANCELLED
            break
    else:
        publication.state = SynthesisState.DONE

    _log_finish(publication.state, runner.summary, time.time() - started)
    return publication


def _log_finish(state: SynthesisState, summary: SynthesisSummary, elapsed: float) -> None:
    summary.state = state.value
    if state == SynthesisState.CANCELLED:
        logger.info(
            f"SYNTHESIS_CANCELLED: synthesized={summary.synthesized}/{summary.total_blocks} "
            f"audio={summary.audio_seconds:.1f}s elapsed={elapsed:.1f}s"
        )
    else:
        logger.info(
            f"SYNTHESIS_DONE: synthesized={summary.synthesized}/{summary.total_blocks} "
            f"audio={summary.audio_seconds:.1f}s elapsed={elapsed:.1f}s"
        )
