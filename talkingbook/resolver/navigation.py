"""
Heading cross-referencing between content documents and the NCC.

Content headings link to SMIL timing structures, and so do NCC headings,
but they never link to each other. Finding the NCC heading of a content
heading therefore takes two hops:

    content heading --a@href--> SMIL text/par <--a@href-- NCC heading
"""

from __future__ import annotations

import logging
from pathlib import PurePosixPath
from typing import Optional
from urllib.parse import unquote, urljoin, urlsplit

from talkingbook.models import NavigationMatch
from talkingbook.resolver.documents import (
    DocumentResolver,
    Location,
    to_uri,
    uri_to_path,
)
from talkingbook.xhtml import get_body, is_heading, local_name

logger = logging.getLogger("talkingbook.resolver")

NAVIGATION_FILENAMES = ("ncc.htm", "ncc.html")


def is_navigation_uri(location: Location) -> bool:
    """True if a location points to a file named ncc.htm or ncc.html (any case)."""
    path = unquote(urlsplit(to_uri(location)).path)
    return PurePosixPath(path).name.lower() in NAVIGATION_FILENAMES


def _hrefs(element):
    for anchor in element.iter():
        if local_name(anchor) == "a" and anchor.get("href"):
            yield anchor.get("href")


class HeadingCrossReferencer:
    """Finds NCC headings for content headings through a DocumentResolver."""

    def __init__(self, resolver: DocumentResolver) -> None:
        self.resolver = resolver

    def find_navigation_heading(self, heading) -> NavigationMatch:
        """
        Find the NCC heading corresponding to a content heading.

        Returns an unresolved NavigationMatch when the heading has no link,
        the link does not lead to a SMIL par, no NCC sits next to the SMIL
        file, or no NCC heading links back to the par.
        """
        content_uri = self._element_uri(heading)
        unresolved = NavigationMatch(content_uri=content_uri)

        href = next(_hrefs(heading), None)
        if href is None:
            return unresolved

        base = self.resolver.uri_of(heading)
        target = self._resolve(base, href)
        if target is None:
            return unresolved

        par = target.getparent() if local_name(target) == "text" else target
        if par is None or local_name(par) != "par":
            return unresolved

        navigation = self._load_navigation(self.resolver.uri_of(par))
        if navigation is None:
            return unresolved

        text_children = [child for child in par if local_name(child) == "text"]
        for candidate in get_body(navigation.root):
            if not is_heading(candidate) or candidate.get("id") is None:
                continue
            for nav_href in _hrefs(candidate):
                linked = self._resolve(navigation.uri, nav_href)
                if linked is None:
                    continue
                if linked is par or any(linked is text for text in text_children):
                    return NavigationMatch(
                        content_uri=content_uri,
                        navigation_uri=navigation.uri,
                        navigation_id=candidate.get("id"),
                    )
        return unresolved

    def map_headings(self, content_location: Location) -> list[NavigationMatch]:
        """Cross-reference every heading of a content document."""
        document = self.resolver.load(content_location)
        return [
            self.find_navigation_heading(elem)
            for elem in document.root.iter()
            if is_heading(elem)
        ]

    # -- internals ----------------------------------------------------------

    def _element_uri(self, element) -> str:
        uri = self.resolver.uri_of(element) or ""
        element_id = element.get("id")
        return f"{uri}#{element_id}" if element_id else uri

    def _resolve(self, base: Optional[str], href: str):
        """Resolve an href; a link to a missing document counts as unresolved."""
        location = urljoin(base, href) if base else href
        try:
            return self.resolver.resolve_uri_to_element(location)
        except FileNotFoundError:
            logger.debug(f"NAV_TARGET_MISSING: href={href!r} base={base}")
            return None

    def _load_navigation(self, smil_uri: Optional[str]):
        if not smil_uri:
            return None
        directory = uri_to_path(smil_uri).parent
        if not directory.is_dir():
            return None
        for entry in sorted(directory.iterdir()):
            if entry.is_file() and entry.name.lower() in NAVIGATION_FILENAMES:
                return self.resolver.load(entry)
        return None
