"""Bridge between the store and parallel ``urls``/``names`` arrays.

Owns the main image reference and its persisted backup record.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from fileingest.core.config import IngestSettings
from fileingest.core.diagnostics import emit
from fileingest.core.errors import StorageError
from fileingest.core.identity import is_placeholder
from fileingest.core.logging import get_logger
from fileingest.core.model import now_ms
from fileingest.core.storage import KeyValueStorage, MemoryStorage
from fileingest.core.store import OrderedFileStore

_LOGGER = get_logger(__name__)

_STORE_CHANGE_EVENTS = ("store.updated", "store.removed", "store.cleared")


class MainImageBackup(BaseModel):
    mainImage: str
    timestamp: int


def fallback_name(url: str, index: int) -> str:
    """Display name for an external url that arrived without one."""
    if url.startswith("data:"):
        return f"image-{index + 1}"
    path = url.split("?", 1)[0].split("#", 1)[0].rstrip("/")
    segment = path.rsplit("/", 1)[-1]
    return segment or f"image-{index + 1}"


class LegacyBridge:
    def __init__(
        self,
        store: OrderedFileStore,
        storage: KeyValueStorage | None = None,
        settings: IngestSettings | None = None,
    ) -> None:
        self._store = store
        self._storage = storage if storage is not None else MemoryStorage()
        self._settings = settings or IngestSettings()
        self._main_image = ""
        self._initialized = False
        self._recovery_attempted = False
        for event in _STORE_CHANGE_EVENTS:
            store.bus.subscribe(event, self._on_store_change)

    @property
    def main_image(self) -> str:
        return self._main_image

    @property
    def initialized(self) -> bool:
        return self._initialized

    def _emit(self, event: str, operation: str, data: dict[str, Any]) -> None:
        emit(self._store.bus, event, component="bridge", operation=operation, data=data)

    def _is_live(self, url: str) -> bool:
        return self._store.get_by_url(url) is not None

    # -- arrays ------------------------------------------------------------

    def merge(self, urls: Sequence[str], names: Sequence[str]) -> int:
        """Add external entries whose url is not in the store yet.

        Never removes anything, so repeating a merge is a no-op.

        Returns:
            Number of entries added.
        """
        added = 0
        for index, url in enumerate(urls):
            if not isinstance(url, str) or not url or is_placeholder(url):
                continue
            if self._store.registry.get_id_by_url(url) is not None or self._is_live(url):
                continue
            name = names[index] if index < len(names) else ""
            if not isinstance(name, str) or not name.strip():
                name = fallback_name(url, index)
            if self._store.add(name, url):
                added += 1

        if added:
            _LOGGER.verbose("merged external entries", added=added, offered=len(urls))
            self._emit("bridge.merged", "merge", {"added": added, "offered": len(urls)})
        return added

    def initialize(self, urls: Sequence[str], names: Sequence[str]) -> int:
        """One merge pass per bridge lifetime, then one recovery attempt."""
        if self._initialized:
            return 0
        self._initialized = True
        added = self.merge(urls, names)
        self.recover_main_image()
        return added

    # -- main image --------------------------------------------------------

    def set_main_image(self, url: str) -> bool:
        if not isinstance(url, str) or not url or is_placeholder(url):
            _LOGGER.warning("main image must be a final url", url=url)
            return False
        if not self._is_live(url):
            _LOGGER.warning("main image url is not in the store", url=url)
            return False

        self._main_image = url
        record = MainImageBackup(mainImage=url, timestamp=now_ms())
        try:
            self._storage.set(self._settings.backup_key, record.model_dump_json())
        except StorageError as e:
            _LOGGER.warning(f"main image backup not written: {e.message}")
        self._emit("bridge.main_image", "set_main_image", {"set": True})
        return True

    def clear_main_image(self) -> None:
        if not self._main_image:
            return
        self._main_image = ""
        try:
            self._storage.remove(self._settings.backup_key)
        except StorageError as e:
            _LOGGER.warning(f"main image backup not removed: {e.message}")
        self._emit("bridge.main_image", "clear_main_image", {"set": False})

    def _on_store_change(self, _data: dict[str, Any]) -> None:
        if self._main_image and not self._is_live(self._main_image):
            _LOGGER.debug("main image no longer live; clearing")
            self.clear_main_image()

    def _read_backup(self, key: str) -> MainImageBackup | None:
        raw = self._storage.get(key)
        if raw is None:
            return None
        try:
            return MainImageBackup.model_validate_json(raw)
        except PydanticValidationError as e:
            _LOGGER.warning("corrupted main image backup", key=key, errors=e.error_count())
            return None

    def recover_main_image(self, now: int | None = None) -> str:
        """Restore the main image from its backup record, at most once.

        Args:
            now: Current time in epoch milliseconds (defaults to the clock).

        Returns:
            The restored url, or "" when nothing was restored.
        """
        if self._recovery_attempted:
            return ""
        self._recovery_attempted = True
        if self._main_image:
            return ""

        try:
            record = self._read_backup(self._settings.backup_key)
        except StorageError as e:
            _LOGGER.warning(f"main image backup unreadable: {e.message}")
            return ""
        if record is None:
            return ""

        age_ms = (now_ms() if now is None else now) - record.timestamp
        if age_ms < 0 or age_ms > self._settings.backup_max_age_seconds * 1000:
            _LOGGER.debug("main image backup is stale", age_ms=age_ms)
            return ""
        if is_placeholder(record.mainImage) or not self._is_live(record.mainImage):
            _LOGGER.debug("main image backup does not point at a live entry")
            return ""

        self._main_image = record.mainImage
        _LOGGER.verbose("main image recovered from backup")
        self._emit("bridge.main_image", "recover_main_image", {"set": True})
        return record.mainImage

    def cleanup_persisted_state(self, now: int | None = None) -> int:
        """Remove corrupted, expired or placeholder-carrying backup records.

        Records are the backup key itself and any ``<backup_key>.<suffix>`` key.

        Returns:
            Number of records removed.
        """
        current = now_ms() if now is None else now
        max_age_ms = self._settings.cleanup_max_age_seconds * 1000
        key = self._settings.backup_key
        removed = 0
        try:
            for candidate in self._storage.keys():
                if candidate != key and not candidate.startswith(f"{key}."):
                    continue
                record = self._read_backup(candidate)
                stale = (
                    record is None
                    or is_placeholder(record.mainImage)
                    or current - record.timestamp > max_age_ms
                )
                if stale:
                    self._storage.remove(candidate)
                    removed += 1
        except StorageError as e:
            _LOGGER.warning(f"persisted state cleanup stopped: {e.message}")

        if removed:
            _LOGGER.info("removed stale main image backups", removed=removed)
        return removed

    def destroy(self) -> None:
        for event in _STORE_CHANGE_EVENTS:
            self._store.bus.unsubscribe(event, self._on_store_change)
        self._main_image = ""
