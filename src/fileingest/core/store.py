"""Ordered file store.

Entries live in an id-keyed dict; insertion order is kept in a separate id
list so that url/name projections follow display order. Every mutation keeps
the identity registry in lockstep and publishes a ``store.*`` event carrying a
diagnostics envelope.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from typing import Any

from fileingest.core.diagnostics import emit
from fileingest.core.events import EventBus
from fileingest.core.identity import (
    DEFAULT_MAX_ID_LENGTH,
    IdentityRegistry,
    generate_id,
    is_placeholder,
    validate_id,
)
from fileingest.core.logging import get_logger
from fileingest.core.model import (
    FileEntry,
    FileStatus,
    IN_FLIGHT_STATUSES,
    LegacyArrays,
    can_transition,
)

_LOGGER = get_logger(__name__)

_UPDATABLE_FIELDS = frozenset({"file_name", "url", "status", "upload_progress"})


def _check_progress(value: Any) -> bool:
    if value is None:
        return True
    return isinstance(value, int) and not isinstance(value, bool) and 0 <= value <= 100


class OrderedFileStore:
    def __init__(
        self,
        registry: IdentityRegistry | None = None,
        bus: EventBus | None = None,
        *,
        max_id_length: int = DEFAULT_MAX_ID_LENGTH,
    ) -> None:
        self._registry = registry if registry is not None else IdentityRegistry(max_id_length)
        self._bus = bus if bus is not None else EventBus()
        self._max_id_length = max_id_length
        self._entries: dict[str, FileEntry] = {}
        self._order: list[str] = []

    @property
    def registry(self) -> IdentityRegistry:
        return self._registry

    @property
    def bus(self) -> EventBus:
        return self._bus

    def _emit(self, event: str, operation: str, data: dict[str, Any]) -> None:
        emit(self._bus, event, component="store", operation=operation, data=data)

    # -- mutation ----------------------------------------------------------

    def add(self, file_name: str, url: str, file_id: str | None = None) -> str:
        """Append an entry and return its id ("" when rejected).

        A placeholder url starts the entry ``pending``; a real url starts it
        ``completed``.
        """
        if not isinstance(file_name, str) or not file_name.strip():
            _LOGGER.warning("rejected add with empty file name", url=url)
            return ""
        if not isinstance(url, str) or not url:
            _LOGGER.warning("rejected add with empty url", file_name=file_name)
            return ""

        if file_id is not None:
            usable = validate_id(file_id, self._max_id_length).is_valid and file_id not in self._entries
            if not usable:
                _LOGGER.debug("supplied file id not usable; generating", file_id=file_id)
                file_id = None
        if file_id is None:
            file_id = generate_id(file_name)
            while file_id in self._entries:
                file_id = generate_id(file_name)

        status = FileStatus.PENDING if is_placeholder(url) else FileStatus.COMPLETED
        entry = FileEntry(id=file_id, file_name=file_name, url=url, status=status)

        registered = self._registry.register(
            file_id,
            file_name,
            url,
            placeholder_url=url if is_placeholder(url) else None,
            status=status,
        )
        if not registered:
            _LOGGER.warning("registry refused new entry", file_id=file_id)
            return ""

        self._entries[file_id] = entry
        self._order.append(file_id)
        _LOGGER.debug("entry added", file_id=file_id, status=status.value)
        self._emit(
            "store.added",
            "add",
            {"file_id": file_id, "file_name": file_name, "status": status.value, "index": len(self._order) - 1},
        )
        return file_id

    def update(self, file_id: str, **changes: Any) -> bool:
        """Apply field changes to one entry.

        Returns False (entry untouched) for an unknown id, an unknown field, an
        invalid value, a status regression, or a result that would put a real
        url on an in-flight entry or a placeholder on a completed one.
        """
        current = self._entries.get(file_id) if isinstance(file_id, str) else None
        if current is None:
            _LOGGER.debug("update for unknown id", file_id=file_id)
            return False

        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            _LOGGER.warning("update with unknown fields", file_id=file_id, fields=sorted(unknown))
            return False

        if "file_name" in changes:
            name = changes["file_name"]
            if not isinstance(name, str) or not name.strip():
                return False
        if "url" in changes:
            url = changes["url"]
            if not isinstance(url, str) or not url:
                return False
        if "status" in changes:
            try:
                changes["status"] = FileStatus(changes["status"])
            except ValueError:
                _LOGGER.warning("update with unknown status", file_id=file_id, status=changes["status"])
                return False
        if "upload_progress" in changes and not _check_progress(changes["upload_progress"]):
            _LOGGER.warning(
                "update with invalid progress", file_id=file_id, progress=changes["upload_progress"]
            )
            return False

        updated = current.with_changes(**changes)

        if not can_transition(current.status, updated.status):
            _LOGGER.warning(
                "rejected status regression",
                file_id=file_id,
                current=current.status.value,
                requested=updated.status.value,
            )
            return False
        if updated.status in IN_FLIGHT_STATUSES and not is_placeholder(updated.url):
            _LOGGER.warning("in-flight entry must keep a placeholder url", file_id=file_id)
            return False
        if updated.status == FileStatus.COMPLETED and is_placeholder(updated.url):
            _LOGGER.warning("completed entry cannot carry a placeholder url", file_id=file_id)
            return False

        registry_changes: dict[str, Any] = {}
        if updated.file_name != current.file_name:
            registry_changes["file_name"] = updated.file_name
        if updated.url != current.url:
            registry_changes["url"] = updated.url
        if updated.status != current.status:
            registry_changes["status"] = updated.status
        if registry_changes and not self._registry.update(file_id, **registry_changes):
            _LOGGER.warning("registry refused update", file_id=file_id)
            return False

        self._entries[file_id] = updated
        self._emit(
            "store.updated",
            "update",
            {
                "file_id": file_id,
                "fields": sorted(changes),
                "status": updated.status.value,
                "previous_url": current.url,
                "url_changed": updated.url != current.url,
            },
        )
        return True

    def remove(self, file_id: str) -> bool:
        if not isinstance(file_id, str):
            return False
        entry = self._entries.pop(file_id, None)
        if entry is None:
            return False
        self._order.remove(file_id)
        if not self._registry.remove(file_id):
            _LOGGER.warning("registry had no mapping for removed entry", file_id=file_id)
        _LOGGER.debug("entry removed", file_id=file_id)
        self._emit("store.removed", "remove", {"file_id": file_id, "url": entry.url})
        return True

    def clear_all(self) -> None:
        count = len(self._entries)
        self._entries.clear()
        self._order.clear()
        self._registry.clear()
        self._emit("store.cleared", "clear", {"cleared": count})

    def reorder(self, ids: Iterable[str]) -> bool:
        """Replace the display order; all-or-nothing."""
        new_order = list(ids)
        if not all(isinstance(fid, str) for fid in new_order):
            _LOGGER.warning("reorder rejected: ids must be strings")
            return False
        if len(new_order) != len(set(new_order)):
            _LOGGER.warning("reorder rejected: duplicate ids")
            return False
        if set(new_order) != set(self._order):
            _LOGGER.warning(
                "reorder rejected: ids do not match entries",
                given=len(new_order),
                current=len(self._order),
            )
            return False
        self._order = new_order
        self._emit("store.reordered", "reorder", {"order": list(new_order)})
        return True

    # -- queries -----------------------------------------------------------

    def get_by_id(self, file_id: str) -> FileEntry | None:
        if not isinstance(file_id, str):
            return None
        return self._entries.get(file_id)

    def get_by_status(self, status: FileStatus | str) -> list[FileEntry]:
        return [e for e in self.entries() if e.status == status]

    def get_by_url(self, url: str) -> FileEntry | None:
        for entry in self.entries():
            if entry.url == url:
                return entry
        return None

    def entries(self) -> list[FileEntry]:
        return [self._entries[fid] for fid in self._order]

    def get_urls(self) -> list[str]:
        return [self._entries[fid].url for fid in self._order]

    def get_names(self) -> list[str]:
        return [self._entries[fid].file_name for fid in self._order]

    def to_legacy_arrays(self) -> LegacyArrays:
        return LegacyArrays(urls=self.get_urls(), names=self.get_names())

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, file_id: object) -> bool:
        return isinstance(file_id, str) and file_id in self._entries

    def __iter__(self) -> Iterator[FileEntry]:
        return iter(self.entries())

    @property
    def total_files(self) -> int:
        return len(self._entries)

    @property
    def completed_files(self) -> int:
        return sum(1 for e in self._entries.values() if e.status == FileStatus.COMPLETED)

    @property
    def has_active_uploads(self) -> bool:
        return any(e.is_in_flight for e in self._entries.values())
