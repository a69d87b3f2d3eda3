"""
EPUB publication loader for talkingbook.

Extracts the spine XHTML documents of an EPUB (reading order) into a work
directory so they can be synthesized like any other content document.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from talkingbook.resolver.documents import unique_file_name

logger = logging.getLogger("talkingbook.parser")


@dataclass
class Publication:
    """An extracted EPUB: metadata plus content documents in reading order."""
    source: Path
    title: str = ""
    creator: str = ""
    language: str = ""
    identifier: str = ""
    documents: list[Path] = field(default_factory=list)


def _first_metadata(book, name: str) -> str:
    values = book.get_metadata("DC", name)
    if values:
        return str(values[0][0]).strip()
    return ""


def extract_publication(epub_path: Path, work_dir: Path) -> Publication:
    """
    Extract the spine documents of an EPUB.

    Args:
        epub_path: Path to the EPUB file
        work_dir: Directory receiving the XHTML documents

    Returns:
        Publication with metadata and document paths in reading order

    Raises:
        ImportError: If ebooklib is not installed
        FileNotFoundError: If the EPUB doesn't exist
    """
    try:
        import ebooklib
        from ebooklib import epub
    except ImportError:
        raise ImportError(
            "ebooklib is required for EPUB input. "
            "Install with: pip install ebooklib"
        )

    epub_path = Path(epub_path)
    if not epub_path.exists():
        raise FileNotFoundError(f"EPUB not found: {epub_path}")

    work_dir = Path(work_dir)
    work_dir.mkdir(parents=True, exist_ok=True)

    book = epub.read_epub(str(epub_path))
    publication = Publication(
        source=epub_path,
        title=_first_metadata(book, "title"),
        creator=_first_metadata(book, "creator"),
        language=_first_metadata(book, "language"),
        identifier=_first_metadata(book, "identifier"),
    )

    used: set[str] = set()
    for spine_item in book.spine:
        item_id = spine_item[0] if isinstance(spine_item, tuple) else spine_item
        linear = spine_item[1] if isinstance(spine_item, tuple) and len(spine_item) > 1 else "yes"
        item: Optional[object] = book.get_item_with_id(item_id)
        if item is None or item.get_type() != ebooklib.ITEM_DOCUMENT:
            continue
        if str(linear).lower() == "no":
            logger.info(f"SPINE_SKIPPED: non-linear item {item.get_name()!r}")
            continue

        target = work_dir / unique_file_name(item.get_name(), used)
        target.write_bytes(item.get_content())
        publication.documents.append(target)

    logger.info(
        f"EPUB_EXTRACTED: source={epub_path.name} documents={len(publication.documents)} "
        f"title={publication.title!r} language={publication.language or '-'}"
    )
    return publication
