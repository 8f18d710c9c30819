"""Per-file upload progress and status, as consumed by presentation code."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from fileingest.core.logging import get_logger

_LOGGER = get_logger(__name__)


class UploadStatus(StrEnum):
    UPLOADING = "uploading"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class UploadSummary:
    total: int
    completed: int
    errors: int
    in_progress: int


def _clamp(progress: int | float) -> int:
    return max(0, min(100, int(round(progress))))


class UploadProgressTracker:
    """Tracks ``uploading {id -> progress}`` and ``upload_status {id -> status}``.

    ``uploading`` only holds files that are still loading. ``success`` and
    ``error`` are final for an id until it is forgotten.
    """

    def __init__(self) -> None:
        self._progress: dict[str, int] = {}
        self._status: dict[str, UploadStatus] = {}
        self._names: dict[str, str] = {}

    def start(self, file_id: str, file_name: str = "") -> bool:
        if file_id in self._status:
            return False
        self._progress[file_id] = 0
        self._status[file_id] = UploadStatus.UPLOADING
        self._names[file_id] = file_name
        return True

    def update(self, file_id: str, progress: int | float) -> bool:
        if self._status.get(file_id) != UploadStatus.UPLOADING:
            return False
        self._progress[file_id] = _clamp(progress)
        return True

    def complete(self, file_id: str) -> bool:
        if self._status.get(file_id) != UploadStatus.UPLOADING:
            return False
        self._progress.pop(file_id, None)
        self._status[file_id] = UploadStatus.SUCCESS
        return True

    def fail(self, file_id: str) -> bool:
        if self._status.get(file_id) != UploadStatus.UPLOADING:
            return False
        self._progress.pop(file_id, None)
        self._status[file_id] = UploadStatus.ERROR
        _LOGGER.debug("upload marked failed", file_id=file_id, file_name=self._names.get(file_id, ""))
        return True

    def forget(self, file_id: str) -> None:
        self._progress.pop(file_id, None)
        self._status.pop(file_id, None)
        self._names.pop(file_id, None)

    def reset(self) -> None:
        self._progress.clear()
        self._status.clear()
        self._names.clear()

    @property
    def uploading(self) -> dict[str, int]:
        return dict(self._progress)

    @property
    def upload_status(self) -> dict[str, str]:
        return {fid: status.value for fid, status in self._status.items()}

    @property
    def is_uploading(self) -> bool:
        return any(s == UploadStatus.UPLOADING for s in self._status.values())

    def status_of(self, file_id: str) -> UploadStatus | None:
        return self._status.get(file_id)

    def summary(self) -> UploadSummary:
        statuses = list(self._status.values())
        return UploadSummary(
            total=len(statuses),
            completed=statuses.count(UploadStatus.SUCCESS),
            errors=statuses.count(UploadStatus.ERROR),
            in_progress=statuses.count(UploadStatus.UPLOADING),
        )
