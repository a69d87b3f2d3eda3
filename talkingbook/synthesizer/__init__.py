"""
Synthesizer module for talkingbook.

Handles:
- Block-by-block speech synthesis with bookmark timing
- Drift correction against the real audio length
- Voice selection by language
- WAV to MP3 encoding
"""

from talkingbook.synthesizer.engine import (
    DocumentSynthesis,
    PublicationSynthesis,
    SynthesisError,
    SynthesisSummary,
    synthesize_document,
    synthesize_publication,
)
from talkingbook.synthesizer.annotator import SyncAnnotator
from talkingbook.synthesizer.output import encode_mp3, EncodingResult
from talkingbook.synthesizer.protocols import AudioFormat, BoundaryEvent, SpeechResult, VoiceEngine
from talkingbook.synthesizer.voices import VoiceNotFoundError, VoiceSelector

__all__ = [
    "DocumentSynthesis",
    "PublicationSynthesis",
    "SynthesisError",
    "SynthesisSummary",
    "synthesize_document",
    "synthesize_publication",
    "SyncAnnotator",
    "encode_mp3",
    "EncodingResult",
    "AudioFormat",
    "BoundaryEvent",
    "SpeechResult",
    "VoiceEngine",
    "VoiceNotFoundError",
    "VoiceSelector",
]
