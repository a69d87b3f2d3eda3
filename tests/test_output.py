"""Tests for WAV -> MP3 encoding through an FFmpegRunner."""

from __future__ import annotations

from pathlib import Path

import pytest

from talkingbook.synthesizer.output import SubprocessFFmpegRunner, encode_mp3, mp3_args
from talkingbook.synthesizer.protocols import FFmpegRunner

from tests.fakes.fake_ffmpeg import FakeFFmpegRunner


def _wav(tmp_path: Path) -> Path:
    path = tmp_path / "speech.wav"
    path.write_bytes(b"RIFF")
    return path


class TestMp3Args:
    def test_args(self, tmp_path: Path):
        args = mp3_args(tmp_path / "a.wav", tmp_path / "a.mp3", 32)
        assert args[0] == "-y"
        assert args[args.index("-i") + 1] == str(tmp_path / "a.wav")
        assert args[args.index("-b:a") + 1] == "32k"
        assert args[-1] == str(tmp_path / "a.mp3")


class TestEncodeMp3:
    def test_success_removes_wav(self, tmp_path: Path):
        wav = _wav(tmp_path)
        runner = FakeFFmpegRunner()
        result = encode_mp3(wav, runner=runner)
        assert result.output_path == tmp_path / "speech.mp3"
        assert result.encoded
        assert not result.source_kept
        assert not wav.exists()
        assert len(runner.calls) == 1

    def test_keep_wav(self, tmp_path: Path):
        wav = _wav(tmp_path)
        result = encode_mp3(wav, tmp_path / "book.mp3", runner=FakeFFmpegRunner(), keep_wav=True)
        assert result.output_path.name == "book.mp3"
        assert result.source_kept
        assert wav.exists()

    def test_failure_raises_with_stderr(self, tmp_path: Path):
        wav = _wav(tmp_path)
        runner = FakeFFmpegRunner(fail_on_call=0, stderr="line 1\nUnknown encoder 'libmp3lame'")
        with pytest.raises(RuntimeError, match="Unknown encoder"):
            encode_mp3(wav, runner=runner)
        assert wav.exists()


class TestSubprocessRunner:
    def test_satisfies_protocol(self):
        assert isinstance(SubprocessFFmpegRunner(), FFmpegRunner)
        assert isinstance(FakeFFmpegRunner(), FFmpegRunner)

    def test_missing_binary(self):
        runner = SubprocessFFmpegRunner(binary="definitely-not-ffmpeg-xyz")
        result = runner.run(["-version"])
        assert result.returncode == -1
        assert "not found" in result.stderr
        assert not runner.available()
