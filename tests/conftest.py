"""Shared fixtures: sample content documents and hand-built filesets."""

from __future__ import annotations

from pathlib import Path

import pytest

from tests.fakes.sample_documents import SAMPLE_XHTML, write_fileset


@pytest.fixture
def sample_content(tmp_path: Path) -> Path:
    path = tmp_path / "src" / "sample.html"
    path.parent.mkdir(parents=True)
    path.write_text(SAMPLE_XHTML, encoding="utf-8")
    return path


@pytest.fixture
def fileset_content(tmp_path: Path) -> Path:
    return write_fileset(tmp_path / "fileset")
