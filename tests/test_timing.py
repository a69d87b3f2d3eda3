"""Tests for Daisy 2.02 clip values, hh:mm:ss times and skeleton documents."""

from __future__ import annotations

import logging
from datetime import timedelta

import pytest

from talkingbook.daisy.timing import (
    MalformedClipError,
    format_clip,
    format_hhmmss,
    format_smil_duration,
    get_or_create_meta,
    new_smil_document,
    new_xhtml_document,
    parse_clip,
    parse_clip_or_none,
    set_meta,
)


class TestParseClip:
    @pytest.mark.parametrize("text, seconds", [
        ("npt=1.5s", 1.5),
        ("npt=0s", 0.0),
        ("npt=12.340s", 12.34),
        ("npt=.25s", 0.25),
        ("  npt=3.000s\n", 3.0),
    ])
    def test_valid(self, text, seconds):
        assert parse_clip(text) == timedelta(seconds=seconds)

    @pytest.mark.parametrize("text", [
        "1.5s",
        "npt=1.5",
        "npt=-1s",
        "npt=1.5 s",
        "npt=abcs",
        "",
    ])
    def test_malformed(self, text):
        with pytest.raises(MalformedClipError) as exc_info:
            parse_clip(text)
        assert exc_info.value.text == text

    def test_none_is_malformed(self):
        with pytest.raises(MalformedClipError):
            parse_clip(None)

    def test_malformed_is_value_error(self):
        with pytest.raises(ValueError):
            parse_clip("bogus")

    def test_lenient_variant_logs(self, caplog):
        with caplog.at_level(logging.WARNING, logger="talkingbook.daisy"):
            assert parse_clip_or_none("bogus") is None
        assert "CLIP_SKIPPED" in caplog.text
        assert parse_clip_or_none("npt=2s") == timedelta(seconds=2)


class TestFormatting:
    def test_format_clip_milliseconds(self):
        assert format_clip(timedelta(seconds=1.5)) == "npt=1.500s"
        assert format_clip(timedelta(0)) == "npt=0.000s"

    def test_formatted_clip_parses_back(self):
        value = timedelta(seconds=83, milliseconds=250)
        assert parse_clip(format_clip(value)) == value

    def test_smil_duration(self):
        assert format_smil_duration(timedelta(seconds=3)) == "3.000s"

    @pytest.mark.parametrize("seconds, expected", [
        (0, "00:00:00"),
        (59.4, "00:00:59"),
        (3599.4, "00:59:59"),
        (3661, "01:01:01"),
        (101 * 3600 + 5, "101:00:05"),
    ])
    def test_hhmmss(self, seconds, expected):
        assert format_hhmmss(timedelta(seconds=seconds)) == expected


class TestSkeletons:
    def test_smil_skeleton(self):
        tree = new_smil_document()
        root = tree.getroot()
        assert root.tag == "smil"
        assert root.find("body/seq") is not None
        assert get_or_create_meta(tree, "dc:format").get("content") == "Daisy 2.02"

    def test_xhtml_skeleton_namespace(self):
        root = new_xhtml_document().getroot()
        assert root.tag == "{http://www.w3.org/1999/xhtml}html"

    def test_skeletons_are_fresh_copies(self):
        a = new_smil_document()
        set_meta(a, "ncc:timeInThisSmil", "00:00:01")
        b = new_smil_document()
        heads = [m.get("name") for m in b.getroot().find("head").findall("meta")]
        assert "ncc:timeInThisSmil" not in heads

    def test_set_meta_replaces(self):
        tree = new_xhtml_document()
        set_meta(tree, "dc:title", "First")
        set_meta(tree, "dc:title", "Second")
        head = tree.getroot().find("{http://www.w3.org/1999/xhtml}head")
        metas = [m for m in head if m.get("name") == "dc:title"]
        assert len(metas) == 1
        assert metas[0].get("content") == "Second"
