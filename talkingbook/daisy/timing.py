"""
Daisy 2.02 timing values and skeleton documents.

SMIL 1.0 clip values look like ``npt=12.340s``. Playback tooling only
accepts that exact shape, so parsing is strict.
"""

from __future__ import annotations

import logging
import re
from datetime import timedelta
from typing import Optional

from lxml import etree

logger = logging.getLogger("talkingbook.daisy")

_CLIP_RE = re.compile(r"^npt=(?P<seconds>(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?)s$")


class MalformedClipError(ValueError):
    """Raised when a clip value is not of the form npt=<seconds>s."""

    def __init__(self, text: object) -> None:
        self.text = text
        super().__init__(f"Value {text!r} is not a valid Daisy 2.02 smil clip value")


def parse_clip(text: str) -> timedelta:
    """
    Parse a SMIL clip value.

    Args:
        text: Value such as ``npt=1.5s`` (surrounding whitespace is ignored)

    Returns:
        The clip offset as a timedelta.

    Raises:
        MalformedClipError: If the value does not match ``npt=<seconds>s``.
    """
    if not isinstance(text, str):
        raise MalformedClipError(text)
    match = _CLIP_RE.match(text.strip())
    if match is None:
        raise MalformedClipError(text)
    return timedelta(seconds=float(match.group("seconds")))


def parse_clip_or_none(text: str) -> Optional[timedelta]:
    """Lenient variant for legacy files: logs and returns None on bad input."""
    try:
        return parse_clip(text)
    except MalformedClipError as e:
        logger.warning(f"CLIP_SKIPPED: {e}")
        return None


def format_clip(duration: timedelta) -> str:
    """Format a clip offset as ``npt=<seconds>s`` with millisecond precision."""
    return f"npt={duration.total_seconds():.3f}s"


def format_smil_duration(duration: timedelta) -> str:
    """Format a duration for a SMIL ``dur`` attribute."""
    return f"{duration.total_seconds():.3f}s"


def format_hhmmss(duration: timedelta) -> str:
    """Round to whole seconds and format as hh:mm:ss (hours may exceed 99)."""
    total = int(round(duration.total_seconds()))
    hours, rest = divmod(total, 3600)
    minutes, seconds = divmod(rest, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


# ---------------------------------------------------------------------------
# Skeleton documents
# ---------------------------------------------------------------------------

XHTML_SKELETON = """<?xml version="1.0" encoding="UTF-8" standalone="yes"?>
<!DOCTYPE html PUBLIC "-//W3C//DTD XHTML 1.0 Transitional//EN" "http://www.w3.org/TR/xhtml1/DTD/xhtml1-transitional.dtd">
<html xmlns="http://www.w3.org/1999/xhtml">
<head>
<meta http-equiv="Content-type" content="text/html; charset=utf-8"/>
</head>
<body/>
</html>
"""

SMIL_SKELETON = """<?xml version="1.0" encoding="UTF-8" standalone="yes"?>
<!DOCTYPE smil PUBLIC "-//W3C//DTD SMIL 1.0//EN" "http://www.w3.org/TR/REC-smil/SMIL10.dtd">
<smil>
<head>
<meta name="dc:format" content="Daisy 2.02"/>
<layout>
<region id="txtView"/>
</layout>
</head>
<body>
<seq/>
</body>
</smil>
"""

_SKELETON_PARSER = etree.XMLParser(remove_blank_text=True, load_dtd=False, no_network=True, resolve_entities=False)


def new_xhtml_document() -> etree._ElementTree:
    """Fresh copy of the XHTML skeleton."""
    return etree.ElementTree(etree.fromstring(XHTML_SKELETON.encode("utf-8"), _SKELETON_PARSER))


def new_smil_document() -> etree._ElementTree:
    """Fresh copy of the SMIL 1.0 skeleton."""
    return etree.ElementTree(etree.fromstring(SMIL_SKELETON.encode("utf-8"), _SKELETON_PARSER))


def get_or_create_meta(tree: etree._ElementTree, name: str):
    """Existing or newly appended ``meta[@name]`` in the document head."""
    root = tree.getroot()
    namespace = etree.QName(root).namespace
    prefix = f"{{{namespace}}}" if namespace else ""
    head = root.find(f"{prefix}head")
    if head is None:
        return None
    for meta in head.findall(f"{prefix}meta"):
        if meta.get("name") == name:
            return meta
    meta = etree.SubElement(head, f"{prefix}meta", name=name)
    return meta


def set_meta(tree: etree._ElementTree, name: str, content: str) -> None:
    meta = get_or_create_meta(tree, name)
    if meta is not None:
        meta.set("content", content)
