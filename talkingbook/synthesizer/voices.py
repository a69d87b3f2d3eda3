"""
Voice selection: maps document languages to voice engines.

Lookup order for a language tag such as ``da-DK``:
exact tag, primary subtag (``da``), then the default engine.
"""

from __future__ import annotations

import logging
from typing import Optional

from talkingbook.synthesizer.protocols import VoiceEngine

logger = logging.getLogger("talkingbook.synthesizer")


class VoiceNotFoundError(Exception):
    """Raised when no engine is available for a language and there is no default."""

    def __init__(self, language: str, available: list[str]) -> None:
        self.language = language
        self.available = available
        super().__init__(
            f"No voice engine for language {language!r}. "
            f"Available: {', '.join(available) or 'none'}"
        )


def normalize_language(language: str) -> str:
    """Canonical key for language lookups."""
    return (language or "").strip().replace("_", "-").casefold()


class VoiceSelector:
    """
    Strategy for picking the engine that speaks a block.

    Usage:
        selector = VoiceSelector({"da": danish, "en-GB": british}, default=british)
        engine = selector.select("da-DK")   # -> danish
    """

    def __init__(
        self,
        engines: Optional[dict[str, VoiceEngine]] = None,
        default: Optional[VoiceEngine] = None,
    ) -> None:
        self.engines: dict[str, VoiceEngine] = {}
        for language, engine in (engines or {}).items():
            self.register(language, engine)
        self.default = default

    @classmethod
    def for_engine(cls, engine: VoiceEngine) -> "VoiceSelector":
        """Selector that uses one engine for every language."""
        return cls(default=engine)

    def register(self, language: str, engine: VoiceEngine) -> None:
        self.engines[normalize_language(language)] = engine

    def languages(self) -> list[str]:
        return sorted(self.engines)

    def select(self, language: str) -> VoiceEngine:
        """
        Engine for a language tag.

        Raises:
            VoiceNotFoundError: If nothing matches and no default is set.
        """
        key = normalize_language(language)
        if key in self.engines:
            return self.engines[key]
        primary = key.split("-")[0]
        if primary in self.engines:
            return self.engines[primary]
        if self.default is not None:
            return self.default
        raise VoiceNotFoundError(language, self.languages())
