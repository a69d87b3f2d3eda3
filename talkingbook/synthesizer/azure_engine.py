"""
Azure Speech voice engine (lazy import, no top-level SDK dependency).

Wraps azure-cognitiveservices-speech to satisfy the VoiceEngine protocol.
SSML ``mark`` elements are rewritten to Azure ``bookmark`` elements, and
``bookmark_reached`` events become BoundaryEvents.
"""

from __future__ import annotations

import logging
import os
from datetime import timedelta
from typing import Optional

from lxml import etree

from talkingbook.synthesizer.annotator import SSML_NS
from talkingbook.synthesizer.protocols import (
    AudioFormat,
    BoundaryEvent,
    SpeechResult,
    VoiceEngineError,
)

logger = logging.getLogger("talkingbook.synthesizer")

# Raw (headerless) mono 16-bit output formats by sample rate
_RAW_FORMATS = {
    8000: "Raw8Khz16BitMonoPcm",
    16000: "Raw16Khz16BitMonoPcm",
    22050: "Raw22050Hz16BitMonoPcm",
    24000: "Raw24Khz16BitMonoPcm",
    44100: "Raw44100Hz16BitMonoPcm",
    48000: "Raw48Khz16BitMonoPcm",
}

# Audio offsets are reported in ticks of 100 ns
_TICKS_PER_MICROSECOND = 10


def to_azure_ssml(ssml: str, voice_name: str) -> str:
    """Wrap the speak content in a voice element and use Azure bookmarks."""
    speak = etree.fromstring(ssml.encode("utf-8"))
    voice = etree.Element(f"{{{SSML_NS}}}voice", name=voice_name)
    voice.text = speak.text
    speak.text = None
    for child in list(speak):
        if isinstance(child.tag, str) and etree.QName(child).localname == "mark":
            bookmark = etree.SubElement(voice, f"{{{SSML_NS}}}bookmark", mark=child.get("name", ""))
            bookmark.tail = child.tail
            speak.remove(child)
        else:
            voice.append(child)
    speak.append(voice)
    return etree.tostring(speak, encoding="unicode")


class AzureVoiceEngine:
    """VoiceEngine backed by Azure Cognitive Services Speech."""

    def __init__(
        self,
        voice_name: str,
        key: Optional[str] = None,
        region: Optional[str] = None,
    ) -> None:
        try:
            import azure.cognitiveservices.speech as speechsdk
        except ImportError:
            raise ImportError(
                "azure-cognitiveservices-speech is required for Azure synthesis. "
                "Install with: pip install 'talkingbook[azure]'"
            )
        self._sdk = speechsdk
        self.voice_name = voice_name
        self.name = f"azure:{voice_name}"
        self._key = key or os.environ.get("AZURE_SPEECH_KEY", "")
        self._region = region or os.environ.get("AZURE_SPEECH_REGION", "")
        if not self._key or not self._region:
            raise ValueError(
                "Azure Speech key and region are required "
                "(set AZURE_SPEECH_KEY and AZURE_SPEECH_REGION)"
            )

    def synthesize(self, ssml: str, audio_format: AudioFormat) -> SpeechResult:
        sdk = self._sdk
        format_name = _RAW_FORMATS.get(audio_format.sample_rate)
        if format_name is None or audio_format.sample_width != 2 or audio_format.channels != 1:
            raise VoiceEngineError(
                f"Azure cannot produce {audio_format}; "
                f"supported sample rates: {sorted(_RAW_FORMATS)} (mono, 16-bit)"
            )

        speech_config = sdk.SpeechConfig(subscription=self._key, region=self._region)
        speech_config.set_speech_synthesis_output_format(
            getattr(sdk.SpeechSynthesisOutputFormat, format_name)
        )
        synthesizer = sdk.SpeechSynthesizer(speech_config=speech_config, audio_config=None)

        events: list[BoundaryEvent] = []

        def on_bookmark(evt) -> None:
            # Delivered before speak_ssml_async(...).get() returns
            events.append(BoundaryEvent(
                bookmark=evt.text,
                audio_offset=timedelta(microseconds=evt.audio_offset / _TICKS_PER_MICROSECOND),
            ))

        synthesizer.bookmark_reached.connect(on_bookmark)
        azure_ssml = to_azure_ssml(ssml, self.voice_name)
        result = synthesizer.speak_ssml_async(azure_ssml).get()

        if result.reason != sdk.ResultReason.SynthesizingAudioCompleted:
            details = result.cancellation_details.error_details if result.cancellation_details else "no details"
            logger.error(f"AZURE_SYNTH_FAIL: reason={result.reason} details={details}")
            logger.debug(f"AZURE_SYNTH_FAIL_SSML: {azure_ssml}")
            raise VoiceEngineError(f"Azure synthesis failed ({result.reason}): {details}")

        return SpeechResult(audio=bytes(result.audio_data), events=events)


def get_default_engine(voice_name: Optional[str] = None) -> AzureVoiceEngine:
    """Create the Azure engine for a voice (``AZURE_SPEECH_VOICE`` by default)."""
    voice_name = voice_name or os.environ.get("AZURE_SPEECH_VOICE", "en-US-JennyNeural")
    return AzureVoiceEngine(voice_name)
