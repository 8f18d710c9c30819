"""File entry value type, status transitions and validation results."""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class FileStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


IN_FLIGHT_STATUSES = frozenset({FileStatus.PENDING, FileStatus.PROCESSING})
TERMINAL_STATUSES = frozenset({FileStatus.COMPLETED, FileStatus.ERROR})

_ALLOWED_TRANSITIONS: dict[FileStatus, set[FileStatus]] = {
    FileStatus.PENDING: {FileStatus.PROCESSING, FileStatus.COMPLETED, FileStatus.ERROR},
    FileStatus.PROCESSING: {FileStatus.COMPLETED, FileStatus.ERROR},
    FileStatus.COMPLETED: set(),
    FileStatus.ERROR: set(),
}


def can_transition(current: FileStatus, new: FileStatus) -> bool:
    """Return True for a forward move or a same-status update."""
    return new == current or new in _ALLOWED_TRANSITIONS[current]


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True, slots=True)
class FileEntry:
    id: str
    file_name: str
    url: str
    status: FileStatus = FileStatus.PENDING
    created_at: int = field(default_factory=now_ms)
    upload_progress: int | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_in_flight(self) -> bool:
        return self.status in IN_FLIGHT_STATUSES

    def with_changes(self, **changes: Any) -> FileEntry:
        # The id never changes.
        changes.pop("id", None)
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "file_name": self.file_name,
            "url": self.url,
            "status": self.status.value,
            "created_at": self.created_at,
            "upload_progress": self.upload_progress,
        }


@dataclass(frozen=True, slots=True)
class LegacyArrays:
    """Order-aligned url and name lists consumed by presentation code."""

    urls: list[str]
    names: list[str]


# ---------------------------------------------------------------------------
# Discriminated validation result
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Valid(Generic[T]):
    value: T
    ok: bool = True


@dataclass(frozen=True, slots=True)
class Invalid:
    issues: tuple[str, ...]
    ok: bool = False

    @property
    def message(self) -> str:
        return "; ".join(self.issues)


Validation = Valid[T] | Invalid
