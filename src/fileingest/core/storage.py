"""Durable key-value storage used for main-image backups."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Protocol, runtime_checkable

from fileingest.core.errors import StorageError
from fileingest.core.logging import get_logger

_LOGGER = get_logger(__name__)


@runtime_checkable
class KeyValueStorage(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...

    def keys(self) -> list[str]: ...


class MemoryStorage:
    """Process-local storage; the default when no state file is configured."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)


def _atomic_write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(text, encoding="utf-8")
    tmp.replace(path)


class JsonFileStorage:
    """String map persisted as one JSON object, rewritten atomically on change."""

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path).expanduser()

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except OSError as e:
            raise StorageError(f"Failed to read state file {self._path}: {e}") from e
        except json.JSONDecodeError as e:
            raise StorageError(
                f"State file {self._path} is not valid JSON: {e}",
                "Delete or repair the state file",
            ) from e
        if not isinstance(raw, dict):
            raise StorageError(f"State file {self._path} must contain a JSON object")
        return {str(k): v for k, v in raw.items() if isinstance(v, str)}

    def _write(self, data: dict[str, str]) -> None:
        try:
            _atomic_write_text(self._path, json.dumps(data, indent=2, sort_keys=True))
        except OSError as e:
            raise StorageError(f"Failed to write state file {self._path}: {e}") from e

    def get(self, key: str) -> str | None:
        return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        data = self._read()
        data[key] = value
        self._write(data)
        _LOGGER.debug("state key written", key=key, path=str(self._path))

    def remove(self, key: str) -> None:
        data = self._read()
        if data.pop(key, None) is not None:
            self._write(data)
            _LOGGER.debug("state key removed", key=key, path=str(self._path))

    def keys(self) -> list[str]:
        return list(self._read())
