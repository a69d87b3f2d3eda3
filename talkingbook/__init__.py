"""
talkingbook - synthesized talking books with text synchronization

Speaks XHTML content documents through a voice engine, records where every
text fragment starts and ends in the audio, and writes Daisy 2.02 filesets
(content, SMIL timing, NCC navigation).

Example:
    from talkingbook import VoiceSelector, synthesize_document, build_fileset
    from talkingbook.synthesizer.azure_engine import get_default_engine

    voices = VoiceSelector.for_engine(get_default_engine("en-GB-RyanNeural"))
    synthesis = synthesize_document("book.html", "out", voices=voices)
    build_fileset(synthesis, "out")
"""

__version__ = "0.1.0"

from talkingbook.models import (
    BlockSynthesis,
    NavigationMatch,
    SynthesisConfig,
    SynthesisState,
    SyncAnnotation,
    TextFragment,
)
from talkingbook.resolver import DocumentResolver, HeadingCrossReferencer
from talkingbook.synthesizer import (
    SynthesisError,
    VoiceSelector,
    synthesize_document,
    synthesize_publication,
)
from talkingbook.daisy import build_fileset

__all__ = [
    "BlockSynthesis",
    "NavigationMatch",
    "SynthesisConfig",
    "SynthesisState",
    "SyncAnnotation",
    "TextFragment",
    "DocumentResolver",
    "HeadingCrossReferencer",
    "SynthesisError",
    "VoiceSelector",
    "synthesize_document",
    "synthesize_publication",
    "build_fileset",
]
