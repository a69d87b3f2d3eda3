"""
Daisy 2.02 fileset assembly.

Turns a DocumentSynthesis into a playable fileset:
- the content document, with fragment spans and heading links to SMIL
- one SMIL file per heading section (par = text reference + audio clip)
- ncc.html listing headings and page numbers
- the audio file (optionally encoded to MP3)

After writing, every content heading is cross-referenced to its NCC
heading to verify the navigation links.
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Optional
from urllib.parse import quote

from lxml import etree

from talkingbook.daisy.timing import (
    format_clip,
    format_hhmmss,
    format_smil_duration,
    new_smil_document,
    new_xhtml_document,
    set_meta,
)
from talkingbook.models import BlockSynthesis, NavigationMatch, SynthesisConfig, SynthesisState
from talkingbook.resolver.documents import DocumentResolver, unique_file_name
from talkingbook.resolver.navigation import HeadingCrossReferencer
from talkingbook.synthesizer.engine import DocumentSynthesis, PublicationSynthesis
from talkingbook.synthesizer.output import encode_mp3
from talkingbook.synthesizer.protocols import FFmpegRunner
from talkingbook.xhtml import (
    XHTML_NS,
    document_title,
    heading_level,
    is_heading,
    is_page_number,
    local_name,
    page_number_class,
    qualified,
)

logger = logging.getLogger("talkingbook.daisy")

NCC_FILENAME = "ncc.html"


def _generator() -> str:
    from talkingbook import __version__
    return f"talkingbook {__version__}"


@dataclass
class ParEntry:
    """One SMIL par: a text reference and its audio clip."""
    par_id: str
    text_id: str
    target_id: str
    clip_begin: timedelta
    clip_end: timedelta


@dataclass
class Section:
    """Blocks sharing one SMIL file (a heading and what follows it)."""
    number: int
    blocks: list[BlockSynthesis] = field(default_factory=list)
    pars: list[ParEntry] = field(default_factory=list)
    # block element -> id of the SMIL text element of its first par
    block_links: dict = field(default_factory=dict)

    @property
    def smil_name(self) -> str:
        return f"{self.number:04d}.smil"

    @property
    def duration(self) -> timedelta:
        if not self.pars:
            return timedelta(0)
        return self.pars[-1].clip_end - self.pars[0].clip_begin


@dataclass
class FilesetResult:
    """Paths and checks of a written fileset."""
    output_dir: Path
    ncc_path: Optional[Path] = None
    content_path: Optional[Path] = None
    audio_path: Optional[Path] = None
    smil_paths: list[Path] = field(default_factory=list)
    total_duration: timedelta = timedelta(0)
    navigation: list[NavigationMatch] = field(default_factory=list)

    @property
    def unresolved_headings(self) -> list[NavigationMatch]:
        return [m for m in self.navigation if not m.resolved]


# ---------------------------------------------------------------------------
# Content document edits
# ---------------------------------------------------------------------------

def _unique_id(ids: dict, base: str) -> str:
    candidate = base
    n = 1
    while candidate in ids:
        n += 1
        candidate = f"{base}_{n}"
    return candidate


def wrap_fragment(fragment, span_id: str):
    """Move a text fragment into a new ``span`` carrying ``span_id``."""
    span = etree.Element(qualified(fragment.parent, "span"))
    span.set("id", span_id)
    elem = fragment.element
    if fragment.is_tail:
        span.text = elem.tail
        elem.tail = None
        parent = elem.getparent()
        parent.insert(parent.index(elem) + 1, span)
    else:
        span.text = elem.text
        elem.text = None
        elem.insert(0, span)
    return span


def link_to_smil(element, href: str) -> None:
    """Make the content of a heading or page span a link to its SMIL text."""
    for anchor in element.iter():
        if local_name(anchor) == "a":
            anchor.set("href", href)
            return
    anchor = etree.Element(qualified(element, "a"), href=href)
    anchor.text = element.text
    element.text = None
    for child in list(element):
        anchor.append(child)
    element.append(anchor)


def _label(element) -> str:
    return " ".join("".join(element.itertext()).split())


# ---------------------------------------------------------------------------
# Sections and pars
# ---------------------------------------------------------------------------

def plan_sections(synthesis: DocumentSynthesis) -> list[Section]:
    """
    Group blocks into SMIL sections and assign text targets.

    Single-fragment blocks are referenced by their own id; fragments of
    multi-fragment blocks are wrapped in spans with generated ids.
    """
    ids = synthesis.document.ids
    sections: list[Section] = []
    counter = 0
    for block in synthesis.blocks:
        if not block.annotations:
            continue
        if not sections or is_heading(block.element):
            sections.append(Section(number=len(sections) + 1))
        section = sections[-1]
        section.blocks.append(block)

        block_id = block.element.get("id")
        for k, anno in enumerate(block.annotations):
            if len(block.annotations) == 1:
                target_id = block_id
            else:
                target_id = _unique_id(ids, f"{block_id}_{k + 1}")
                ids[target_id] = wrap_fragment(anno.fragment, target_id)
            counter += 1
            entry = ParEntry(
                par_id=f"par_{counter}",
                text_id=f"tx_{counter}",
                target_id=target_id,
                clip_begin=anno.clip_begin,
                clip_end=anno.clip_end,
            )
            section.pars.append(entry)
            section.block_links.setdefault(block.element, entry.text_id)
    return sections


def build_smil(
    section: Section,
    content_name: str,
    audio_src: str,
    elapsed: timedelta,
    config: SynthesisConfig,
    title: str,
) -> etree._ElementTree:
    """SMIL 1.0 document for one section."""
    tree = new_smil_document()
    set_meta(tree, "dc:title", title)
    if config.identifier:
        set_meta(tree, "dc:identifier", config.identifier)
    set_meta(tree, "ncc:generator", _generator())
    set_meta(tree, "ncc:totalElapsedTime", format_hhmmss(elapsed))
    set_meta(tree, "ncc:timeInThisSmil", format_hhmmss(section.duration))

    seq = tree.getroot().find("body/seq")
    seq.set("dur", format_smil_duration(section.duration))
    for entry in section.pars:
        par = etree.SubElement(seq, "par", endsync="last", id=entry.par_id)
        etree.SubElement(par, "text", src=f"{quote(content_name)}#{entry.target_id}", id=entry.text_id)
        etree.SubElement(
            par,
            "audio",
            src=quote(audio_src),
            id=f"au_{entry.par_id[4:]}",
            **{
                "clip-begin": format_clip(entry.clip_begin),
                "clip-end": format_clip(entry.clip_end),
            },
        )
    return tree


def build_ncc(
    sections: list[Section],
    title: str,
    total: timedelta,
    file_count: int,
    config: SynthesisConfig,
) -> etree._ElementTree:
    """Navigation control center listing headings and page numbers."""
    tree = new_xhtml_document()
    root = tree.getroot()
    head = root.find(f"{{{XHTML_NS}}}head")
    title_elem = etree.SubElement(head, f"{{{XHTML_NS}}}title")
    title_elem.text = title
    body = root.find(f"{{{XHTML_NS}}}body")

    depth = 0
    toc_items = 0
    pages = {"page-front": 0, "page-normal": 0, "page-special": 0}
    nav_counter = 0

    def add_item(tag: str, text: str, href: str, css_class: Optional[str] = None):
        nonlocal nav_counter, toc_items
        nav_counter += 1
        toc_items += 1
        item = etree.SubElement(body, f"{{{XHTML_NS}}}{tag}", id=f"nav_{nav_counter}")
        if css_class:
            item.set("class", css_class)
        anchor = etree.SubElement(item, f"{{{XHTML_NS}}}a", href=href)
        anchor.text = text
        return item

    # The first NCC item must be the title heading
    opening = sections[0]
    if not is_heading(opening.blocks[0].element):
        depth = 1
        add_item("h1", title, f"{opening.smil_name}#{opening.pars[0].text_id}", "title")

    for section in sections:
        for block in section.blocks:
            element = block.element
            href = f"{section.smil_name}#{section.block_links[element]}"
            if is_heading(element):
                level = heading_level(element)
                depth = max(depth, level)
                css_class = "title" if nav_counter == 0 else None
                add_item(f"h{level}", _label(element), href, css_class)
            elif is_page_number(element):
                page_class = page_number_class(element)
                pages[page_class] += 1
                add_item("span", _label(element), href, page_class)

    set_meta(tree, "dc:title", title)
    set_meta(tree, "dc:format", "Daisy 2.02")
    if config.identifier:
        set_meta(tree, "dc:identifier", config.identifier)
    if config.creator:
        set_meta(tree, "dc:creator", config.creator)
    if config.language:
        set_meta(tree, "dc:language", config.language)
    set_meta(tree, "ncc:charset", "utf-8")
    set_meta(tree, "ncc:generator", _generator())
    set_meta(tree, "ncc:multimediaType", "audioFullText")
    set_meta(tree, "ncc:totalTime", format_hhmmss(total))
    set_meta(tree, "ncc:depth", str(depth))
    set_meta(tree, "ncc:tocItems", str(toc_items))
    set_meta(tree, "ncc:pageFront", str(pages["page-front"]))
    set_meta(tree, "ncc:pageNormal", str(pages["page-normal"]))
    set_meta(tree, "ncc:pageSpecial", str(pages["page-special"]))
    set_meta(tree, "ncc:files", str(file_count))
    return tree


def _write(tree: etree._ElementTree, path: Path) -> Path:
    tree.write(str(path), xml_declaration=True, encoding="UTF-8", pretty_print=True)
    return path


def _place_audio(
    synthesis: DocumentSynthesis,
    output_dir: Path,
    config: SynthesisConfig,
    runner: Optional[FFmpegRunner],
) -> Path:
    audio_path = synthesis.audio_path
    if audio_path.parent.resolve() != output_dir.resolve():
        target = output_dir / audio_path.name
        shutil.copy(audio_path, target)
        audio_path = target
    if config.encode_mp3:
        encoded = encode_mp3(
            audio_path,
            bitrate_kbps=config.mp3_bitrate,
            runner=runner,
            keep_wav=config.keep_wav,
        )
        audio_path = encoded.output_path
    return audio_path


def _content_name(synthesis: DocumentSynthesis) -> str:
    name = synthesis.document.path.name
    if name.lower() in ("ncc.htm", "ncc.html"):
        return "content.html"
    return name


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def build_fileset(
    synthesis: DocumentSynthesis,
    output_dir: Path,
    config: Optional[SynthesisConfig] = None,
    *,
    runner: Optional[FFmpegRunner] = None,
    allow_partial: bool = False,
) -> FilesetResult:
    """
    Write a Daisy 2.02 fileset for a synthesized document.

    The content tree of ``synthesis`` is edited in place (fragment spans,
    heading links), so a synthesis can be built once.

    Args:
        synthesis: Result of synthesize_document.
        output_dir: Fileset directory.
        config: Metadata and audio encoding settings.
        runner: Injected FFmpegRunner for MP3 encoding.
        allow_partial: Build even if the synthesis was cancelled.

    Raises:
        ValueError: If the synthesis is incomplete (and allow_partial is
            False) or has no synthesized blocks.
    """
    config = config or SynthesisConfig()
    if synthesis.state != SynthesisState.DONE and not allow_partial:
        raise ValueError(
            f"Synthesis is {synthesis.state.value}; refusing to build a partial fileset. "
            f"Pass allow_partial=True to build the synthesized blocks only."
        )
    if not synthesis.blocks:
        raise ValueError("Nothing was synthesized; cannot build a fileset.")

    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    result = FilesetResult(output_dir=output_dir)

    title = config.title or document_title(synthesis.document.root) or synthesis.document.path.stem
    content_name = _content_name(synthesis)

    audio_path = _place_audio(synthesis, output_dir, config, runner)
    result.audio_path = audio_path

    sections = plan_sections(synthesis)

    elapsed = timedelta(0)
    for section in sections:
        tree = build_smil(section, content_name, audio_path.name, elapsed, config, title)
        result.smil_paths.append(_write(tree, output_dir / section.smil_name))
        elapsed += section.duration
        for element, text_id in section.block_links.items():
            if is_heading(element) or is_page_number(element):
                link_to_smil(element, f"{section.smil_name}#{text_id}")
    result.total_duration = synthesis.duration

    result.content_path = _write(synthesis.document.tree, output_dir / content_name)

    file_count = 2 + len(result.smil_paths) + 1
    ncc = build_ncc(sections, title, result.total_duration, file_count, config)
    result.ncc_path = _write(ncc, output_dir / NCC_FILENAME)

    logger.info(
        f"FILESET_WRITTEN: dir={output_dir} smil={len(result.smil_paths)} "
        f"duration={format_hhmmss(result.total_duration)} audio={audio_path.name}"
    )

    result.navigation = verify_navigation(result.content_path)
    for match in result.unresolved_headings:
        logger.warning(f"NAV_UNRESOLVED: heading={match.content_uri}")
    return result


def verify_navigation(content_path: Path) -> list[NavigationMatch]:
    """Cross-reference the headings of a written content document to the NCC."""
    resolver = DocumentResolver()
    try:
        return HeadingCrossReferencer(resolver).map_headings(content_path)
    finally:
        resolver.clear()


def build_overlays(
    publication: PublicationSynthesis,
    output_dir: Path,
    config: Optional[SynthesisConfig] = None,
    *,
    runner: Optional[FFmpegRunner] = None,
) -> list[Path]:
    """
    Write one SMIL overlay per document of a publication.

    Each document's content copy and audio are written next to its
    overlay. Returns the overlay paths in reading order.
    """
    config = config or SynthesisConfig()
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    overlays = []
    used_names: set[str] = set()
    elapsed = timedelta(0)
    for synthesis in publication.documents:
        if not synthesis.blocks:
            continue
        title = document_title(synthesis.document.root) or synthesis.document.path.stem
        content_name = unique_file_name(_content_name(synthesis), used_names)
        audio_path = _place_audio(synthesis, output_dir, config, runner)

        section = Section(number=len(overlays) + 1)
        for planned in plan_sections(synthesis):
            section.blocks.extend(planned.blocks)
            section.pars.extend(planned.pars)
        smil_path = output_dir / unique_file_name(f"{Path(content_name).stem}.smil", used_names)
        tree = build_smil(section, content_name, audio_path.name, elapsed, config, title)
        overlays.append(_write(tree, smil_path))
        _write(synthesis.document.tree, output_dir / content_name)
        elapsed += synthesis.duration
    logger.info(f"OVERLAYS_WRITTEN: dir={output_dir} count={len(overlays)}")
    return overlays
