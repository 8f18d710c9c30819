"""Unit tests for diagnostics envelope and JSONL sink."""

from __future__ import annotations

import json
import re
from pathlib import Path

from fileingest.core.config import ConfigResolver
from fileingest.core.diagnostics import (
    build_envelope,
    emit,
    install_jsonl_sink,
    is_diagnostics_enabled,
    is_envelope,
    uninstall_jsonl_sink,
)
from fileingest.core.events import EventBus


def _resolver(tmp_path: Path, **cli) -> ConfigResolver:
    return ConfigResolver(
        cli_args=cli,
        user_config_path=tmp_path / "user.yaml",
        system_config_path=tmp_path / "system.yaml",
    )


def test_envelope_shape():
    env = build_envelope(event="store.added", component="store", operation="add", data={"a": 1})
    assert is_envelope(env)
    assert re.fullmatch(r"\d{4}-\d\d-\d\dT\d\d:\d\d:\d\dZ", env["timestamp"])
    assert not is_envelope({"event": "x"})
    assert not is_envelope({**env, "data": []})


def test_emit_publishes_envelope():
    bus = EventBus()
    seen = []
    bus.subscribe("bridge.merged", seen.append)
    emit(bus, "bridge.merged", component="bridge", operation="merge", data={"added": 1})
    assert is_envelope(seen[0])
    assert seen[0]["data"] == {"added": 1}


def test_enabled_flag(tmp_path, monkeypatch):
    assert not is_diagnostics_enabled(_resolver(tmp_path))
    assert is_diagnostics_enabled(_resolver(tmp_path, diagnostics={"enabled": True}))
    monkeypatch.setenv("FILEINGEST_DIAGNOSTICS_ENABLED", "garbage")
    assert not is_diagnostics_enabled(_resolver(tmp_path))


def test_disabled_does_not_create_jsonl(tmp_path):
    out_path = tmp_path / "diag" / "d.jsonl"
    bus = EventBus()
    install_jsonl_sink(bus, resolver=_resolver(tmp_path, diagnostics={"path": str(out_path)}))

    bus.publish("evt", {"k": "v"})

    assert not out_path.exists()


def test_enabled_writes_jsonl_and_wraps_non_envelope(tmp_path):
    out_path = tmp_path / "diag" / "d.jsonl"
    bus = EventBus()
    resolver = _resolver(tmp_path, diagnostics={"enabled": True, "path": str(out_path)})
    assert install_jsonl_sink(bus, resolver=resolver)
    assert not install_jsonl_sink(bus, resolver=resolver)

    emit(bus, "store.added", component="store", operation="add", data={"file_id": "file-a"})
    bus.publish("plain", {"b": 2})

    lines = out_path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 2
    first, second = (json.loads(line) for line in lines)
    assert first["component"] == "store"
    assert first["data"] == {"file_id": "file-a"}
    assert second["event"] == "plain"
    assert second["component"] == "unknown"
    assert second["data"] == {"b": 2}


def test_uninstall_allows_reinstall(tmp_path):
    bus = EventBus()
    resolver = _resolver(tmp_path)
    assert install_jsonl_sink(bus, resolver=resolver)
    bus.clear()
    uninstall_jsonl_sink(bus)
    assert install_jsonl_sink(bus, resolver=resolver)
