"""Unit tests for core.validation module."""

from __future__ import annotations

import pytest

from fileingest.core.config import IngestSettings
from fileingest.core.content_loader import RawFile
from fileingest.core.validation import (
    filter_duplicates,
    format_file_size,
    validate_content_uri,
    validate_raw_file,
)


@pytest.mark.parametrize(
    ("size", "expected"),
    [
        (0, "0 Bytes"),
        (500, "500 Bytes"),
        (1024, "1 KB"),
        (1536, "1.5 KB"),
        (10 * 1024 * 1024, "10 MB"),
        (3 * 1024**3, "3 GB"),
    ],
)
def test_format_file_size(size, expected):
    assert format_file_size(size) == expected


class TestValidateRawFile:
    """Tests for validate_raw_file."""

    def test_accepts_png(self, raw_png):
        raw = raw_png()
        result = validate_raw_file(raw)
        assert result.ok
        assert result.value is raw

    def test_rejects_type(self, raw_png):
        result = validate_raw_file(raw_png("notes.txt", b"hello", "text/plain"))
        assert not result.ok
        assert "not allowed" in result.message

    def test_rejects_oversize(self):
        raw = RawFile(name="huge.png", content_type="image/png", size=11 * 1024 * 1024, data=b"x")
        result = validate_raw_file(raw)
        assert not result.ok
        assert "limit is 10 MB" in result.message

    def test_custom_limits(self, raw_png):
        settings = IngestSettings(max_file_size=10, allowed_types=("image/png",))
        assert not validate_raw_file(raw_png(), settings).ok
        assert not validate_raw_file(raw_png("a.jpg", b"x", "image/jpeg"), settings).ok

    def test_rejects_empty_and_sourceless(self):
        empty = validate_raw_file(RawFile.from_bytes("e.png", b""))
        sourceless = validate_raw_file(RawFile(name="s.png", content_type="image/png", size=3))
        assert not empty.ok and "file is empty" in empty.issues
        assert not sourceless.ok and "file has no content source" in sourceless.issues

    def test_collects_every_issue(self):
        raw = RawFile(name=" ", content_type="text/plain", size=0)
        result = validate_raw_file(raw)
        assert not result.ok
        assert len(result.issues) == 4


class TestValidateContentUri:
    """Tests for validate_content_uri."""

    def test_valid(self):
        assert validate_content_uri("data:image/png;base64,iVBORw0KGgo=").ok

    @pytest.mark.parametrize(
        "value",
        [
            None,
            "",
            "https://cdn.example.com/a.png",
            "data:image/png,plain",
            "data:image/png;base64,",
            "data:image/png;base64,@@@@",
        ],
    )
    def test_invalid(self, value):
        assert not validate_content_uri(value).ok


class TestFilterDuplicates:
    """Tests for filter_duplicates."""

    def test_existing_in_flight_and_batch_duplicates(self, raw_png):
        files = [raw_png("a.png"), raw_png("b.png"), raw_png("c.png"), raw_png("d.png"), raw_png("d.png")]
        result = filter_duplicates(files, existing_names=["a.png"], in_flight_names=["b.png"])

        assert [f.name for f in result.unique] == ["c.png", "d.png"]
        assert result.duplicates == ["a.png", "b.png", "d.png"]

    def test_no_duplicates(self, raw_png):
        result = filter_duplicates([raw_png("a.png")])
        assert len(result.unique) == 1
        assert result.duplicates == []
