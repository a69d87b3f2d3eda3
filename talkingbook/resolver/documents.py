"""
Document resolver: loads XML documents by URI and resolves id fragments.

Documents are cached for the lifetime of one run. Cache keys ignore letter
case, query strings and percent-encoding, so the same file reached through
different spellings maps to one parsed document.

Call DocumentResolver.clear() between independent runs. A resolver must not
be shared by runs executing concurrently.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Optional, Union
from urllib.parse import unquote, urljoin, urlsplit, urlunsplit
from urllib.request import url2pathname

from lxml import etree

logger = logging.getLogger("talkingbook.resolver")

Location = Union[str, Path]


class DuplicateIdError(Exception):
    """Raised when two elements of one document share an id."""

    def __init__(self, element_id: str, document_uri: str) -> None:
        self.element_id = element_id
        self.document_uri = document_uri
        super().__init__(
            f"Multiple elements found in {document_uri} with same id {element_id!r}"
        )


# ---------------------------------------------------------------------------
# URI helpers
# ---------------------------------------------------------------------------

def to_uri(location: Location) -> str:
    """Absolute URI for a path or URI (fragments are kept)."""
    if isinstance(location, Path):
        return location.resolve().as_uri()
    text = str(location)
    parts = urlsplit(text)
    # Single-letter schemes are Windows drive letters
    if parts.scheme and len(parts.scheme) > 1:
        return text
    path, _, fragment = text.partition("#")
    uri = Path(path).resolve().as_uri()
    return f"{uri}#{fragment}" if fragment else uri


def strip_fragment(uri: str) -> str:
    parts = urlsplit(uri)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, parts.query, ""))


def uri_fragment(uri: str) -> Optional[str]:
    """Percent-decoded fragment of a URI, None if it has none."""
    fragment = urlsplit(uri).fragment
    return unquote(fragment) if fragment else None


def normalize_uri(location: Location) -> str:
    """
    Cache key for a document location.

    The query and fragment are dropped, the rest is percent-decoded and
    lower-cased.
    """
    parts = urlsplit(to_uri(location))
    return unquote(urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))).lower()


def unique_file_name(name: str, used: set[str]) -> str:
    """
    File name not yet in ``used`` (compared case-insensitively).

    Collisions get a numeric suffix: ``index.html``, ``index_2.html``. The
    chosen name is added to ``used``.
    """
    base = PurePosixPath(name).name or "document.xhtml"
    candidate = base
    n = 1
    while candidate.lower() in used:
        n += 1
        stem, dot, suffix = base.rpartition(".")
        candidate = f"{stem}_{n}.{suffix}" if dot else f"{base}_{n}"
    used.add(candidate.lower())
    return candidate


def uri_to_path(uri: str) -> Path:
    """Local file path of a file URI."""
    parts = urlsplit(uri)
    if parts.scheme != "file":
        raise ValueError(f"Only file URIs can be loaded, got {uri!r}")
    return Path(url2pathname(parts.path))


def is_same_file(uri1: Optional[Location], uri2: Optional[Location]) -> bool:
    """True if both locations reference the same document."""
    if uri1 is None or uri2 is None:
        return False
    return normalize_uri(uri1) == normalize_uri(uri2)


# ---------------------------------------------------------------------------
# Cached documents
# ---------------------------------------------------------------------------

@dataclass
class CachedDocument:
    """A parsed document and its id index."""
    uri: str
    key: str
    tree: etree._ElementTree
    ids: dict[str, etree._Element] = field(default_factory=dict)

    @property
    def root(self) -> etree._Element:
        return self.tree.getroot()

    @property
    def path(self) -> Path:
        return uri_to_path(self.uri)

    def get(self, element_id: str) -> Optional[etree._Element]:
        return self.ids.get(element_id)


def _build_parser() -> etree.XMLParser:
    return etree.XMLParser(resolve_entities=False, no_network=True, load_dtd=False)


def index_ids(tree: etree._ElementTree, document_uri: str) -> dict[str, etree._Element]:
    """
    Build the id → element index of a document.

    Raises:
        DuplicateIdError: If an id is carried by more than one element.
    """
    ids: dict[str, etree._Element] = {}
    for elem in tree.getroot().iter():
        if not isinstance(elem.tag, str):
            continue
        element_id = elem.get("id")
        if element_id is None:
            continue
        if element_id in ids:
            raise DuplicateIdError(element_id, document_uri)
        ids[element_id] = elem
    return ids


class DocumentResolver:
    """
    Per-run cache of loaded documents.

    Usage:
        resolver = DocumentResolver()
        doc = resolver.load("book/content.html")
        elem = resolver.resolve_uri_to_element(doc.uri + "#h1_1")
        resolver.clear()
    """

    def __init__(self) -> None:
        self._documents: dict[str, CachedDocument] = {}
        self._by_root: dict[etree._Element, CachedDocument] = {}

    def __len__(self) -> int:
        return len(self._documents)

    def __contains__(self, location: Location) -> bool:
        return normalize_uri(location) in self._documents

    def load(self, location: Location) -> CachedDocument:
        """
        Load a document, parsing it only the first time it is referenced.

        Raises:
            DuplicateIdError: If the document carries an id twice.
            FileNotFoundError: If the document does not exist.
        """
        key = normalize_uri(location)
        cached = self._documents.get(key)
        if cached is not None:
            return cached

        uri = strip_fragment(to_uri(location))
        path = uri_to_path(uri)
        if not path.exists():
            raise FileNotFoundError(f"Document not found: {path}")

        tree = etree.parse(str(path), _build_parser())
        document = CachedDocument(uri=uri, key=key, tree=tree, ids=index_ids(tree, uri))
        self._documents[key] = document
        self._by_root[tree.getroot()] = document
        logger.debug(f"DOCUMENT_LOADED: uri={uri} ids={len(document.ids)}")
        return document

    def resolve_uri_to_element(self, location: Location) -> Optional[etree._Element]:
        """
        Element referenced by the fragment of a URI.

        The referenced document is loaded into the cache as a side effect.
        Returns None if the URI has no fragment or no element carries that id.
        """
        document = self.load(location)
        fragment = uri_fragment(to_uri(location))
        if fragment is None:
            return None
        return document.get(fragment)

    def resolve_reference(self, base: Location, href: str) -> Optional[etree._Element]:
        """Resolve an href found in the document at ``base``."""
        if not href:
            return None
        return self.resolve_uri_to_element(urljoin(to_uri(base), href))

    def document_of(self, element: etree._Element) -> Optional[CachedDocument]:
        """The cached document owning an element."""
        return self._by_root.get(element.getroottree().getroot())

    def uri_of(self, element: etree._Element) -> Optional[str]:
        """URI of the document owning an element."""
        document = self.document_of(element)
        if document is not None:
            return document.uri
        url = element.getroottree().docinfo.URL
        return to_uri(url) if url else None

    def clear(self) -> None:
        """Drop all cached documents and id indexes."""
        logger.debug(f"DOCUMENT_CACHE_CLEAR: documents={len(self._documents)}")
        self._documents.clear()
        self._by_root.clear()
