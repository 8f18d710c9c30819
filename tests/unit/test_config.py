"""Unit tests for core.config module."""

from pathlib import Path

import pytest

from fileingest.core.config import (
    ConfigResolver,
    IngestSettings,
    coerce_bool,
    coerce_int,
    coerce_str_list,
    resolve_ingest_settings,
)
from fileingest.core.errors import ConfigError


class TestConfigResolver:
    """Tests for ConfigResolver."""

    def test_cli_priority(self, tmp_path):
        """CLI args beat every other source."""
        user_config = tmp_path / "config.yaml"
        user_config.write_text("loader:\n  max_concurrent: 3\n")

        resolver = ConfigResolver(
            cli_args={"loader": {"max_concurrent": 1}},
            user_config_path=user_config,
            system_config_path=tmp_path / "none.yaml",
        )

        assert resolver.resolve("loader.max_concurrent") == (1, "cli")

    def test_dotted_cli_key(self, tmp_path):
        resolver = ConfigResolver(
            cli_args={"loader.max_concurrent": 5},
            user_config_path=tmp_path / "none.yaml",
            system_config_path=tmp_path / "none.yaml",
        )
        assert resolver.resolve("loader.max_concurrent") == (5, "cli")

    def test_env_priority(self, tmp_path, monkeypatch):
        """ENV overrides config files."""
        user_config = tmp_path / "config.yaml"
        user_config.write_text("loader:\n  max_concurrent: 3\n")
        monkeypatch.setenv("FILEINGEST_LOADER_MAX_CONCURRENT", "4")

        resolver = ConfigResolver(
            cli_args={},
            user_config_path=user_config,
            system_config_path=tmp_path / "none.yaml",
        )

        assert resolver.resolve("loader.max_concurrent") == ("4", "env")

    def test_user_overrides_system(self, tmp_path):
        user_config = tmp_path / "user.yaml"
        user_config.write_text("bridge:\n  backup_key: user.key\n")
        system_config = tmp_path / "system.yaml"
        system_config.write_text("bridge:\n  backup_key: system.key\n  backup_max_age_seconds: 60\n")

        resolver = ConfigResolver(user_config_path=user_config, system_config_path=system_config)

        assert resolver.resolve("bridge.backup_key") == ("user.key", "user_config")
        assert resolver.resolve("bridge.backup_max_age_seconds") == (60, "system_config")

    def test_defaults(self, config_resolver):
        assert config_resolver.resolve("validation.max_file_size") == (10 * 1024 * 1024, "default")
        assert config_resolver.resolve("diagnostics.enabled") == (False, "default")

    def test_missing_key(self, config_resolver):
        with pytest.raises(ConfigError):
            config_resolver.resolve("no.such.key")
        assert config_resolver.resolve_or("no.such.key", 7) == (7, "fallback")

    def test_broken_yaml(self, tmp_path):
        user_config = tmp_path / "config.yaml"
        user_config.write_text("loader: [unclosed\n")
        resolver = ConfigResolver(user_config_path=user_config, system_config_path=tmp_path / "x.yaml")
        with pytest.raises(ConfigError):
            resolver.resolve("loader.chunk_size")

    def test_schema_and_validation(self, config_resolver):
        assert "loader.max_concurrent" in config_resolver.list_known_keys()
        assert config_resolver.get_key_schema("loader.max_concurrent").type == "int"
        assert config_resolver.get_key_schema("made.up").unknown

        config_resolver.validate_value("loader.max_concurrent", 3)
        with pytest.raises(ConfigError):
            config_resolver.validate_value("loader.max_concurrent", True)
        with pytest.raises(ConfigError):
            config_resolver.validate_value("validation.allowed_types", "image/png")

    def test_resolve_all_reports_sources(self, tmp_path):
        resolver = ConfigResolver(
            cli_args={"logging": {"level": "debug"}},
            user_config_path=tmp_path / "none.yaml",
            system_config_path=tmp_path / "none.yaml",
        )
        resolved = resolver.resolve_all()
        assert resolved["logging.level"].source == "cli"
        assert resolved["storage.path"].source == "default"


class TestLoggingPolicy:
    """Tests for resolve_logging_policy."""

    def test_default_policy(self, config_resolver):
        policy = config_resolver.resolve_logging_policy()
        assert policy.level_name == "normal"
        assert policy.emit_info
        assert not policy.emit_debug

    def test_invalid_level(self, tmp_path):
        resolver = ConfigResolver(
            cli_args={"logging": {"level": "loud"}},
            user_config_path=tmp_path / "none.yaml",
            system_config_path=tmp_path / "none.yaml",
        )
        with pytest.raises(ConfigError):
            resolver.resolve_logging_policy()


class TestCoercion:
    """Tests for typed coercion helpers."""

    def test_bool(self):
        assert coerce_bool("k", "yes") is True
        assert coerce_bool("k", "0") is False
        with pytest.raises(ConfigError):
            coerce_bool("k", "maybe")

    def test_int(self):
        assert coerce_int("k", "12") == 12
        with pytest.raises(ConfigError):
            coerce_int("k", "-1")
        with pytest.raises(ConfigError):
            coerce_int("k", "ten")
        with pytest.raises(ConfigError):
            coerce_int("k", False)

    def test_str_list(self):
        assert coerce_str_list("k", "image/png, image/gif,") == ("image/png", "image/gif")
        assert coerce_str_list("k", ["a"]) == ("a",)
        with pytest.raises(ConfigError):
            coerce_str_list("k", 3)


class TestIngestSettings:
    """Tests for resolve_ingest_settings."""

    def test_defaults_match_dataclass(self, config_resolver):
        settings = resolve_ingest_settings(config_resolver)
        defaults = IngestSettings()
        assert settings.max_concurrent == defaults.max_concurrent
        assert settings.max_file_size == defaults.max_file_size
        assert settings.allowed_types == defaults.allowed_types
        assert settings.backup_max_age_seconds == 300
        assert settings.storage_path.endswith("state.json")

    def test_env_strings_are_coerced(self, tmp_path, monkeypatch):
        monkeypatch.setenv("FILEINGEST_LOADER_MAX_CONCURRENT", "2")
        monkeypatch.setenv("FILEINGEST_VALIDATION_ALLOWED_TYPES", "image/png,image/gif")
        monkeypatch.setenv("FILEINGEST_DIAGNOSTICS_ENABLED", "true")
        resolver = ConfigResolver(
            user_config_path=tmp_path / "none.yaml",
            system_config_path=tmp_path / "none.yaml",
        )

        settings = resolve_ingest_settings(resolver)

        assert settings.max_concurrent == 2
        assert settings.allowed_types == ("image/png", "image/gif")
        assert settings.diagnostics_enabled is True

    @pytest.mark.parametrize(
        "cli_args",
        [
            {"loader": {"chunk_size": 0}},
            {"registry": {"max_id_length": 8}},
            {"validation": {"allowed_types": []}},
            {"bridge": {"backup_key": "  "}},
        ],
    )
    def test_bad_values_raise(self, tmp_path, cli_args):
        resolver = ConfigResolver(
            cli_args=cli_args,
            user_config_path=tmp_path / "none.yaml",
            system_config_path=tmp_path / "none.yaml",
        )
        with pytest.raises(ConfigError):
            resolve_ingest_settings(resolver)


def test_default_paths_live_under_home(tmp_path, monkeypatch):
    monkeypatch.setenv("HOME", str(tmp_path))
    resolver = ConfigResolver(system_config_path=tmp_path / "none.yaml")
    value, _source = resolver.resolve("storage.path")
    assert Path(value).is_relative_to(tmp_path)
