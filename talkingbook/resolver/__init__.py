"""
Cross-document resolution for talkingbook.

Handles:
- Per-run document cache with id indexes
- URI to element resolution
- Content heading to NCC heading cross-referencing
"""

from talkingbook.resolver.documents import CachedDocument, DocumentResolver, DuplicateIdError
from talkingbook.resolver.navigation import HeadingCrossReferencer, is_navigation_uri

__all__ = [
    "CachedDocument",
    "DocumentResolver",
    "DuplicateIdError",
    "HeadingCrossReferencer",
    "is_navigation_uri",
]
