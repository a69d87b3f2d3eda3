"""
Core data models for talkingbook.

These are the units that flow through the system:
- TextFragment: A leaf text slot inside a content element
- SyncAnnotation: Clip timing attached to a TextFragment
- BlockSynthesis: Result of synthesizing one block element
- NavigationMatch: Result of cross-referencing a heading into the NCC
- SynthesisConfig: Run-level settings
"""

from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from pathlib import Path
from typing import Any, Optional
import json


class SynthesisState(Enum):
    """Lifecycle of a synthesis run."""
    PENDING = "pending"
    SYNTHESIZING = "synthesizing"
    CANCELLED = "cancelled"
    FAILED = "failed"
    DONE = "done"


@dataclass(frozen=True)
class TextFragment:
    """
    A leaf text slot of a content element.

    lxml keeps text in two places: ``element.text`` (before the first child)
    and ``child.tail`` (after a child). A fragment names one of those slots.

    Attributes:
        element: The element owning the slot
        is_tail: True if the slot is ``element.tail``
    """
    element: Any
    is_tail: bool = False

    @property
    def text(self) -> str:
        value = self.element.tail if self.is_tail else self.element.text
        return value or ""

    @property
    def parent(self) -> Any:
        """The element whose content the fragment belongs to."""
        if self.is_tail:
            return self.element.getparent()
        return self.element


@dataclass
class SyncAnnotation:
    """
    Clip timing for one text fragment.

    Attributes:
        src: Audio identifier (file name the clip lives in)
        fragment: The annotated text fragment
        element: Owning element (back-reference for lookup only)
        clip_begin: Offset where narration of the fragment starts
        clip_end: Offset where narration of the fragment ends
    """
    src: str
    fragment: TextFragment
    element: Any
    clip_begin: timedelta = timedelta(0)
    clip_end: timedelta = timedelta(0)

    @property
    def duration(self) -> timedelta:
        return self.clip_end - self.clip_begin


@dataclass
class BlockSynthesis:
    """
    Result of one engine call over a block element.

    Attributes:
        element: The synthesized block element
        annotations: Fragment annotations in document order
        start_offset: Writer duration before the call
        duration: Audio appended by the call
        language: Language the engine was selected for
        engine_name: Name of the engine that spoke the block
    """
    element: Any
    annotations: list[SyncAnnotation] = field(default_factory=list)
    start_offset: timedelta = timedelta(0)
    duration: timedelta = timedelta(0)
    language: str = ""
    engine_name: str = ""

    @property
    def end_offset(self) -> timedelta:
        return self.start_offset + self.duration


@dataclass(frozen=True)
class NavigationMatch:
    """
    Maps a content heading to its navigation (NCC) heading.

    ``navigation_uri`` and ``navigation_id`` are None when unresolved.
    """
    content_uri: str
    navigation_uri: Optional[str] = None
    navigation_id: Optional[str] = None

    @property
    def resolved(self) -> bool:
        return self.navigation_uri is not None and self.navigation_id is not None

    @property
    def navigation_href(self) -> Optional[str]:
        if not self.resolved:
            return None
        return f"{self.navigation_uri}#{self.navigation_id}"


@dataclass
class SynthesisConfig:
    """
    Run-level configuration.

    Attributes:
        sample_rate: Audio sample rate requested from the voice engine
        sample_width: Bytes per sample (2 = 16-bit PCM)
        channels: Audio channel count
        language: Fallback language for blocks without xml:lang/lang
        encode_mp3: Encode the final audio to MP3 with ffmpeg
        mp3_bitrate: MP3 bitrate in kbit/s
        keep_wav: Keep the WAV file next to the MP3
        identifier: dc:identifier for the produced fileset
        title: dc:title override (defaults to the content document title)
        creator: dc:creator for the produced fileset
        drift_warning_threshold: Warn when a drift factor differs from 1 by more
        audio_name: File name of the cumulative WAV file
    """
    sample_rate: int = 22050
    sample_width: int = 2
    channels: int = 1
    language: str = "en"
    encode_mp3: bool = False
    mp3_bitrate: int = 48
    keep_wav: bool = False
    identifier: str = ""
    title: str = ""
    creator: str = ""
    drift_warning_threshold: float = 0.1
    audio_name: str = "speech.wav"

    def to_dict(self) -> dict:
        """Serialize to dictionary."""
        return {
            "sample_rate": self.sample_rate,
            "sample_width": self.sample_width,
            "channels": self.channels,
            "language": self.language,
            "encode_mp3": self.encode_mp3,
            "mp3_bitrate": self.mp3_bitrate,
            "keep_wav": self.keep_wav,
            "identifier": self.identifier,
            "title": self.title,
            "creator": self.creator,
            "drift_warning_threshold": self.drift_warning_threshold,
            "audio_name": self.audio_name,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SynthesisConfig":
        """Deserialize from dictionary."""
        return cls(
            sample_rate=data.get("sample_rate", 22050),
            sample_width=data.get("sample_width", 2),
            channels=data.get("channels", 1),
            language=data.get("language", "en"),
            encode_mp3=data.get("encode_mp3", False),
            mp3_bitrate=data.get("mp3_bitrate", 48),
            keep_wav=data.get("keep_wav", False),
            identifier=data.get("identifier", ""),
            title=data.get("title", ""),
            creator=data.get("creator", ""),
            drift_warning_threshold=data.get("drift_warning_threshold", 0.1),
            audio_name=data.get("audio_name", "speech.wav"),
        )

    @classmethod
    def load(cls, path: str | Path) -> "SynthesisConfig":
        """Load configuration from a JSON file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path, "r", encoding="utf-8") as f:
            return cls.from_dict(json.load(f))

    def save(self, path: str | Path) -> Path:
        """Write configuration to a JSON file."""
        path = Path(path)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2, ensure_ascii=False)
        return path
