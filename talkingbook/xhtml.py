"""
XHTML content document helpers.

Knows the structural vocabulary the synthesizer cares about:
- Heading hierarchy (h1-h6) and sub-heading lookup
- Page-number marker spans
- Block elements (one engine call each) and their leaf text fragments
- Language of an element (xml:lang / lang inheritance)
"""

from __future__ import annotations

import re
from typing import Iterator, Optional

from lxml import etree

from talkingbook.models import TextFragment

XHTML_NS = "http://www.w3.org/1999/xhtml"
XML_LANG = "{http://www.w3.org/XML/1998/namespace}lang"

HEADING_LOCAL_NAMES = ("h1", "h2", "h3", "h4", "h5", "h6")

PAGE_NUMBER_CLASSES = frozenset({"page-front", "page-normal", "page-special"})

# Content that is never spoken
SKIP_TAGS = {"head", "script", "style", "title", "meta", "link"}

# Elements that stay inside the block that contains them
INLINE_TAGS = {
    "a", "abbr", "acronym", "b", "bdo", "big", "br", "cite", "code", "dfn",
    "em", "font", "i", "img", "kbd", "label", "mark", "q", "s", "samp",
    "small", "span", "strike", "strong", "sub", "sup", "time", "tt", "u", "var",
}

_WHITESPACE_RE = re.compile(r"\s+")


def local_name(elem) -> str:
    """Local name of an element; empty for comments and processing instructions."""
    if elem is None or not isinstance(elem.tag, str):
        return ""
    return etree.QName(elem).localname


def qualified(reference, name: str) -> str:
    """Tag name in the same namespace as ``reference``."""
    namespace = etree.QName(reference).namespace if isinstance(reference.tag, str) else None
    return f"{{{namespace}}}{name}" if namespace else name


def is_heading(elem) -> bool:
    return local_name(elem) in HEADING_LOCAL_NAMES


def heading_level(elem) -> int:
    """1-6 for headings, 0 otherwise."""
    name = local_name(elem)
    if name in HEADING_LOCAL_NAMES:
        return HEADING_LOCAL_NAMES.index(name) + 1
    return 0


def sub_heading_name(tag: str) -> Optional[str]:
    """
    Tag of the sub-heading of a heading tag.

    h2 for h1, h3 for h2 and so on, keeping the namespace. None for h6 and
    for anything that is not a heading.
    """
    qname = etree.QName(tag)
    if qname.localname not in HEADING_LOCAL_NAMES:
        return None
    index = HEADING_LOCAL_NAMES.index(qname.localname)
    if index + 1 >= len(HEADING_LOCAL_NAMES):
        return None
    sub = HEADING_LOCAL_NAMES[index + 1]
    return f"{{{qname.namespace}}}{sub}" if qname.namespace else sub


def is_paragraph(elem) -> bool:
    return local_name(elem) == "p"


def is_heading_or_paragraph(elem) -> bool:
    return is_paragraph(elem) or is_heading(elem)


def is_page_number(elem) -> bool:
    """True for a span whose class list holds a page-number marker class."""
    if local_name(elem) != "span":
        return False
    classes = (elem.get("class") or "").split()
    return any(c in PAGE_NUMBER_CLASSES for c in classes)


def page_number_class(elem) -> Optional[str]:
    """The page-number marker class of a page span, if any."""
    for c in (elem.get("class") or "").split():
        if c in PAGE_NUMBER_CLASSES:
            return c
    return None


def normalize_whitespace(text: str) -> str:
    """Collapse whitespace runs to single spaces (edges are kept as one space)."""
    return _WHITESPACE_RE.sub(" ", text)


def get_body(root):
    """The body element of a content document (the root if there is none)."""
    for elem in root.iter():
        if local_name(elem) == "body":
            return elem
    return root


def document_title(root) -> str:
    """Title from head/title, falling back to the first heading."""
    for elem in root.iter():
        if local_name(elem) == "title" and (elem.text or "").strip():
            return " ".join(elem.text.split())
    for elem in root.iter():
        if is_heading(elem):
            text = " ".join("".join(elem.itertext()).split())
            if text:
                return text
    return ""


def element_language(elem, default: str = "") -> str:
    """Language of an element, inherited from the nearest ancestor declaring one."""
    current = elem
    while current is not None:
        lang = current.get(XML_LANG) or current.get("lang")
        if lang:
            return lang
        current = current.getparent()
    return default


def describe(elem, max_len: int = 60) -> str:
    """Short human-readable description of a block for progress messages."""
    text = " ".join("".join(elem.itertext()).split())
    if len(text) > max_len:
        text = text[: max_len - 3] + "..."
    return f"{local_name(elem)}: {text}" if text else local_name(elem)


# ---------------------------------------------------------------------------
# Text fragments
# ---------------------------------------------------------------------------

def iter_text_fragments(element) -> Iterator[TextFragment]:
    """
    Non-blank leaf text fragments of an element, in document order.

    Text inside skipped elements (script, style, ...) is not yielded, but the
    tail following such an element is.
    """
    if element.text and element.text.strip():
        yield TextFragment(element, is_tail=False)
    for child in element:
        if isinstance(child.tag, str) and local_name(child) not in SKIP_TAGS:
            yield from iter_text_fragments(child)
        if child.tail and child.tail.strip():
            yield TextFragment(child, is_tail=True)


def has_text(element) -> bool:
    return next(iter_text_fragments(element), None) is not None


# ---------------------------------------------------------------------------
# Block elements
# ---------------------------------------------------------------------------

def _is_block_child(elem) -> bool:
    return isinstance(elem.tag, str) and local_name(elem) not in INLINE_TAGS


def _has_block_children(elem) -> bool:
    return any(_is_block_child(child) for child in elem)


def _is_block(elem) -> bool:
    if is_heading_or_paragraph(elem) or is_page_number(elem):
        return True
    return not _has_block_children(elem)


def iter_block_elements(root, on_skipped_text=None) -> Iterator:
    """
    Block elements of a content document body, in document order.

    A block is a heading, a paragraph, a page-number span, or any other
    element without block-level children. Containers are descended into.
    ``on_skipped_text(container)`` is called for containers holding text
    directly next to block children (that text is not synthesized).
    """
    yield from _walk(get_body(root), on_skipped_text)


def _walk(container, on_skipped_text) -> Iterator:
    if on_skipped_text is not None and _has_loose_text(container):
        on_skipped_text(container)
    for child in container:
        if not isinstance(child.tag, str) or local_name(child) in SKIP_TAGS:
            continue
        if _is_block(child):
            if has_text(child):
                yield child
        else:
            yield from _walk(child, on_skipped_text)


def _has_loose_text(container) -> bool:
    if (container.text or "").strip():
        return True
    return any((child.tail or "").strip() for child in container)
