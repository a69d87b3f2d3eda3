"""
talkingbook input loaders.

Supported formats:
- XHTML content documents (loaded directly by the resolver)
- EPUB (.epub)
"""

from talkingbook.parser.epub import Publication, extract_publication

__all__ = ["Publication", "extract_publication"]
