"""Unit tests for the id codec and IdentityRegistry."""

from __future__ import annotations

import pytest

from fileingest.core.identity import (
    IdentityRegistry,
    RegistryOperation,
    create_placeholder,
    extract_id,
    generate_id,
    is_placeholder,
    parse_placeholder,
    validate_id,
)
from fileingest.core.model import FileStatus


class TestGenerateId:
    """Tests for generate_id."""

    def test_format(self):
        file_id = generate_id("photo.png")
        assert file_id.startswith("file-photo.png-")
        assert validate_id(file_id).is_valid

    def test_strips_unsafe_characters(self):
        file_id = generate_id("my photo (1)_x.png")
        assert file_id.startswith("file-myphoto1x.png-")
        assert validate_id(file_id).is_valid

    def test_name_fragment_truncated(self):
        file_id = generate_id("a" * 120 + ".png")
        fragment = file_id[len("file-") :].split("-")[0]
        assert len(fragment) == 50

    def test_empty_name_still_valid(self):
        assert validate_id(generate_id("")).is_valid

    def test_ten_thousand_ids_are_unique(self):
        ids = {generate_id("same.png") for _ in range(10_000)}
        assert len(ids) == 10_000


class TestValidateId:
    """Tests for validate_id."""

    def test_non_string(self):
        result = validate_id(42)
        assert not result.is_valid
        assert not result.is_recoverable

    def test_empty(self):
        result = validate_id("")
        assert not result.is_valid
        assert result.sanitized_id == ""

    def test_whitespace_is_recoverable(self):
        result = validate_id("  file-a-1-x ")
        assert not result.is_valid
        assert result.is_recoverable
        assert result.sanitized_id == "file-a-1-x"

    def test_disallowed_characters_stripped(self):
        result = validate_id("file-a b/c-1")
        assert not result.is_valid
        assert result.sanitized_id == "file-abc-1"

    def test_too_long_truncated(self):
        result = validate_id("file-" + "x" * 300)
        assert not result.is_valid
        assert len(result.sanitized_id) == 200
        assert result.is_recoverable

    def test_custom_max_length(self):
        assert not validate_id("file-" + "x" * 30, max_length=20).is_valid

    def test_unknown_prefix(self):
        result = validate_id("upload-123")
        assert not result.is_valid
        assert not result.is_recoverable
        assert any("prefix" in issue for issue in result.issues)

    def test_placeholder_prefix_accepted(self):
        assert validate_id("placeholder-abc").is_valid


class TestPlaceholderCodec:
    """Tests for the placeholder token codec."""

    @pytest.mark.parametrize(
        ("file_id", "file_name"),
        [
            ("file-photo.png-1700000000000-abc123", "photo.png"),
            ("file-my-dashed-name.jpg-1-x", "my-dashed-name.jpg"),
            ("file-a", ""),
            ("file-weird--double-dash", "---"),
            ("placeholder-nested-id", "x.png"),
        ],
    )
    def test_extract_inverts_create(self, file_id, file_name):
        token = create_placeholder(file_id, file_name)
        assert is_placeholder(token)
        assert extract_id(token) == file_id

    def test_generated_ids_round_trip(self):
        for name in ["a.png", "b-c.png", "δ.png", "x" * 80]:
            file_id = generate_id(name)
            assert extract_id(create_placeholder(file_id, name)) == file_id

    def test_parse_exposes_fields(self):
        token = create_placeholder("file-a-1-x", "my photo-1.png", timestamp=1234)
        info = parse_placeholder(token)
        assert info is not None
        assert info.file_id == "file-a-1-x"
        assert info.file_name == "myphoto1.png"
        assert info.timestamp == 1234
        assert info.is_processing

    def test_name_is_truncated_and_defaulted(self):
        long_info = parse_placeholder(create_placeholder("file-a", "n" * 100))
        empty_info = parse_placeholder(create_placeholder("file-a", "!!!"))
        assert long_info is not None and len(long_info.file_name) == 30
        assert empty_info is not None and empty_info.file_name == "file"

    def test_invalid_id_yields_empty_token(self):
        assert create_placeholder("bad id!", "a.png") == ""

    def test_recognition_without_decoding(self):
        assert is_placeholder("placeholder-anything-processing")
        assert not is_placeholder("placeholder-anything")
        assert not is_placeholder("https://cdn.example.com/a.png")
        assert not is_placeholder(None)

    def test_extract_from_non_token(self):
        assert extract_id("https://cdn.example.com/a.png") == ""
        assert parse_placeholder("placeholder-nofields-processing") is None
        assert parse_placeholder(None) is None
        assert parse_placeholder(42) is None
        assert extract_id(["placeholder-x-processing"]) == ""


class TestIdentityRegistry:
    """Tests for IdentityRegistry."""

    def _token(self, file_id: str, name: str) -> str:
        return create_placeholder(file_id, name)

    def test_register_in_flight(self):
        registry = IdentityRegistry()
        token = self._token("file-a-1-x", "a.png")

        assert registry.register("file-a-1-x", "a.png", token)

        mapping = registry.get_by_id("file-a-1-x")
        assert mapping is not None
        assert mapping.status == FileStatus.PENDING
        assert mapping.placeholder_url == token
        assert registry.get_id_by_name("a.png") == "file-a-1-x"
        assert registry.get_id_by_placeholder(token) == "file-a-1-x"
        # No final url yet.
        assert registry.get_id_by_url(token) is None
        assert registry.check_consistency() == []

    def test_register_final_url(self):
        registry = IdentityRegistry()
        assert registry.register("file-b-1-x", "b.png", "https://cdn/b.png")

        mapping = registry.get_by_id("file-b-1-x")
        assert mapping is not None
        assert mapping.status == FileStatus.COMPLETED
        assert is_placeholder(mapping.placeholder_url)
        assert registry.get_id_by_url("https://cdn/b.png") == "file-b-1-x"

    def test_unknown_lookups_return_none(self):
        registry = IdentityRegistry()
        assert registry.get_by_id("file-nope") is None
        assert registry.get_id_by_name("nope") is None
        assert registry.get_id_by_url("nope") is None
        assert registry.get_id_by_placeholder("nope") is None

    def test_duplicate_id_rejected(self):
        registry = IdentityRegistry()
        assert registry.register("file-a-1-x", "a.png", "https://cdn/a.png")
        assert not registry.register("file-a-1-x", "other.png", "https://cdn/o.png")
        assert registry.get_id_by_name("other.png") is None

    def test_invalid_id_rejected(self):
        registry = IdentityRegistry()
        assert not registry.register("nope", "a.png", "https://cdn/a.png")
        assert len(registry) == 0

    def test_shared_names_are_all_indexed(self):
        registry = IdentityRegistry()
        registry.register("file-a-1-x", "same.png", "https://cdn/1.png")
        registry.register("file-a-2-x", "same.png", "https://cdn/2.png")

        assert registry.get_id_by_name("same.png") == "file-a-1-x"
        registry.remove("file-a-1-x")
        assert registry.get_id_by_name("same.png") == "file-a-2-x"
        assert registry.check_consistency() == []

    def test_update_moves_indexes(self):
        registry = IdentityRegistry()
        token = self._token("file-a-1-x", "a.png")
        registry.register("file-a-1-x", "a.png", token)

        assert registry.update(
            "file-a-1-x",
            file_name="renamed.png",
            url="data:image/png;base64,AAAA",
            status=FileStatus.COMPLETED,
        )

        assert registry.get_id_by_name("a.png") is None
        assert registry.get_id_by_name("renamed.png") == "file-a-1-x"
        assert registry.get_id_by_url("data:image/png;base64,AAAA") == "file-a-1-x"
        # Placeholder index is kept for the mapping's lifetime.
        assert registry.get_id_by_placeholder(token) == "file-a-1-x"
        mapping = registry.get_by_id("file-a-1-x")
        assert mapping is not None and mapping.original_file_name == "a.png"
        assert registry.check_consistency() == []

    def test_update_unknown_id(self):
        assert not IdentityRegistry().update("file-missing", status=FileStatus.ERROR)

    def test_update_rejects_regression(self):
        registry = IdentityRegistry()
        registry.register("file-a-1-x", "a.png", "https://cdn/a.png")
        assert not registry.update("file-a-1-x", status=FileStatus.PROCESSING)
        mapping = registry.get_by_id("file-a-1-x")
        assert mapping is not None and mapping.status == FileStatus.COMPLETED

    def test_remove_clears_every_index(self):
        registry = IdentityRegistry()
        token = self._token("file-a-1-x", "a.png")
        registry.register("file-a-1-x", "a.png", token)
        registry.update("file-a-1-x", url="https://cdn/a.png", status=FileStatus.COMPLETED)

        assert registry.remove("file-a-1-x")
        assert not registry.remove("file-a-1-x")
        assert registry.get_id_by_name("a.png") is None
        assert registry.get_id_by_url("https://cdn/a.png") is None
        assert registry.get_id_by_placeholder(token) is None
        assert registry.check_consistency() == []

    def test_failed_batch_rolls_back(self):
        registry = IdentityRegistry()
        registry.register("file-keep-1-x", "keep.png", "https://cdn/keep.png")
        before = registry.mappings()

        ok = registry.apply(
            [
                RegistryOperation("register", "file-new-1-x", "new.png", "https://cdn/new.png"),
                RegistryOperation("update", "file-keep-1-x", file_name="changed.png"),
                RegistryOperation("remove", "file-missing"),
            ]
        )

        assert not ok
        assert registry.mappings() == before
        assert registry.get_by_id("file-new-1-x") is None
        assert registry.get_id_by_name("keep.png") == "file-keep-1-x"
        assert registry.get_id_by_name("changed.png") is None
        assert registry.get_id_by_url("https://cdn/new.png") is None
        assert registry.check_consistency() == []

    def test_successful_batch(self):
        registry = IdentityRegistry()
        ok = registry.apply(
            [
                RegistryOperation("register", "file-a-1-x", "a.png", "https://cdn/a.png"),
                RegistryOperation("register", "file-b-1-x", "b.png", "https://cdn/b.png"),
                RegistryOperation("remove", "file-a-1-x"),
            ]
        )
        assert ok
        assert list(registry.mappings()) == ["file-b-1-x"]

    def test_stats(self):
        registry = IdentityRegistry()
        registry.register("file-a-1-x", "a.png", self._token("file-a-1-x", "a.png"))
        registry.register("file-b-1-x", "b.png", "https://cdn/b.png")

        stats = registry.stats()
        assert stats.total_mappings == 2
        assert stats.name_mappings == 2
        assert stats.url_mappings == 1
        assert stats.placeholder_mappings == 2
        assert stats.status_counts["pending"] == 1
        assert stats.status_counts["completed"] == 1
        assert stats.oldest_mapping <= stats.newest_mapping

    def test_destroy_empties_registry(self):
        registry = IdentityRegistry()
        registry.register("file-a-1-x", "a.png", "https://cdn/a.png")
        registry.destroy()
        assert len(registry) == 0
        assert registry.stats().total_mappings == 0
