"""Test fakes for talkingbook synthesizer tests."""

from tests.fakes.fake_voice import FakeVoiceEngine
from tests.fakes.fake_ffmpeg import FakeFFmpegRunner

__all__ = ["FakeVoiceEngine", "FakeFFmpegRunner"]
