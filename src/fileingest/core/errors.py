"""Error hierarchy with friendly messages."""

from __future__ import annotations

from collections.abc import Sequence


class FileIngestError(Exception):
    """Base exception for all fileingest errors."""

    def __init__(self, message: str, suggestion: str | None = None) -> None:
        self.message = message
        self.suggestion = suggestion
        super().__init__(message)

    def __str__(self) -> str:
        if self.suggestion:
            return f"{self.message}\nSuggestion: {self.suggestion}"
        return self.message


class ValidationError(FileIngestError):
    """Malformed id, file name, raw file or decoded content."""

    def __init__(
        self,
        message: str,
        issues: Sequence[str] = (),
        suggestion: str | None = None,
    ) -> None:
        super().__init__(message, suggestion)
        self.issues: tuple[str, ...] = tuple(issues)


class ReadError(FileIngestError):
    """Underlying content read failed."""

    def __init__(self, file_name: str, reason: str) -> None:
        super().__init__(
            f"Failed to read '{file_name}': {reason}",
            "Check that the file still exists and is readable",
        )
        self.file_name = file_name


class AbortError(FileIngestError):
    """A content read was aborted before it finished."""

    def __init__(self, file_name: str) -> None:
        super().__init__(f"Reading '{file_name}' was aborted")
        self.file_name = file_name


class RegistryError(FileIngestError):
    """Mutation referencing an unknown or conflicting file id."""

    def __init__(self, file_id: str, message: str | None = None) -> None:
        super().__init__(message or f"Unknown file id '{file_id}'")
        self.file_id = file_id


class ConfigError(FileIngestError):
    """Configuration error."""

    pass


class StorageError(FileIngestError):
    """Key-value storage backend failed."""

    pass
