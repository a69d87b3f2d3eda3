"""
Daisy 2.02 output for talkingbook.

Handles:
- npt clip values and hh:mm:ss times
- SMIL and XHTML skeleton documents
- Fileset assembly (content, SMIL, NCC)
"""

from talkingbook.daisy.builder import FilesetResult, build_fileset, build_overlays
from talkingbook.daisy.timing import MalformedClipError, format_clip, parse_clip

__all__ = [
    "FilesetResult",
    "build_fileset",
    "build_overlays",
    "MalformedClipError",
    "format_clip",
    "parse_clip",
]
