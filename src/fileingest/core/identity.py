"""File identity: id generation, the placeholder token codec and the registry.

Placeholder grammar::

    placeholder-<fileId>-<sanitizedFileName>-<timestampMillis>-processing

The sanitized name never contains ``-``, so the last three fields are fixed
and the id is everything between the prefix and them. That makes the token a
total encoding of ``(file_id, file_name, timestamp)``:
``extract_id(create_placeholder(i, n)) == i`` for every valid id.

The registry keeps four indexes (id, name, url, placeholder) that change
together or not at all.
"""

from __future__ import annotations

import re
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from typing import Literal

from fileingest.core.errors import RegistryError, ValidationError
from fileingest.core.logging import get_logger
from fileingest.core.model import FileStatus, can_transition, now_ms

_LOGGER = get_logger(__name__)

ID_PREFIX = "file-"
PLACEHOLDER_PREFIX = "placeholder-"
PLACEHOLDER_SUFFIX = "-processing"
DEFAULT_MAX_ID_LENGTH = 200

_ID_ALLOWED = re.compile(r"^[A-Za-z0-9._-]+$")
_ID_DISALLOWED = re.compile(r"[^A-Za-z0-9._-]")
_ID_NAME_DISALLOWED = re.compile(r"[^A-Za-z0-9.-]")
_TOKEN_NAME_DISALLOWED = re.compile(r"[^A-Za-z0-9._]")
_PLACEHOLDER_PATTERN = re.compile(
    r"^placeholder-(?P<file_id>.+)-(?P<file_name>[^-]+)-(?P<timestamp>\d+)-processing$"
)


# ---------------------------------------------------------------------------
# Ids
# ---------------------------------------------------------------------------


def generate_id(file_name: str) -> str:
    """Return ``file-<name fragment>-<millis>-<entropy>``.

    The name fragment keeps ``[A-Za-z0-9.-]`` and at most 50 characters; 48
    random bits make collisions within one millisecond negligible.
    """
    fragment = _ID_NAME_DISALLOWED.sub("", file_name or "")[:50] if isinstance(file_name, str) else ""
    entropy = uuid.uuid4().hex[:12]
    if not fragment:
        return f"{ID_PREFIX}{now_ms()}-{entropy}"
    return f"{ID_PREFIX}{fragment}-{now_ms()}-{entropy}"


@dataclass(frozen=True, slots=True)
class IdValidation:
    is_valid: bool
    file_id: object
    sanitized_id: str
    issues: tuple[str, ...]

    @property
    def is_recoverable(self) -> bool:
        """True when ``sanitized_id`` is itself a usable id."""
        return bool(self.sanitized_id) and self.sanitized_id.startswith(
            (ID_PREFIX, PLACEHOLDER_PREFIX)
        )


def validate_id(file_id: object, max_length: int = DEFAULT_MAX_ID_LENGTH) -> IdValidation:
    """Check format and length; sanitize what can be sanitized.

    Recoverable: surrounding whitespace, excess length, disallowed characters.
    Unrecoverable: non-string, empty, missing ``file-``/``placeholder-`` prefix.
    """
    issues: list[str] = []

    if not isinstance(file_id, str):
        return IdValidation(False, file_id, "", ("file id is not a string",))

    sanitized = file_id.strip()
    if sanitized != file_id:
        issues.append("file id has surrounding whitespace")

    if not sanitized:
        issues.append("file id is empty")
        return IdValidation(False, file_id, "", tuple(issues))

    if not _ID_ALLOWED.match(sanitized):
        issues.append("file id contains disallowed characters")
        sanitized = _ID_DISALLOWED.sub("", sanitized)

    if len(sanitized) > max_length:
        issues.append(f"file id is longer than {max_length} characters")
        sanitized = sanitized[:max_length]

    if not sanitized.startswith((ID_PREFIX, PLACEHOLDER_PREFIX)):
        issues.append("file id has an unknown prefix")

    result = IdValidation(not issues, file_id, sanitized, tuple(issues))
    if issues:
        _LOGGER.debug("file id validation failed", file_id=file_id, issues=", ".join(issues))
    return result


# ---------------------------------------------------------------------------
# Placeholder codec
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class PlaceholderInfo:
    file_id: str
    file_name: str
    timestamp: int
    is_processing: bool


def sanitize_token_name(file_name: str) -> str:
    fragment = _TOKEN_NAME_DISALLOWED.sub("", file_name or "")[:30]
    return fragment or "file"


def is_placeholder(url: object) -> bool:
    return isinstance(url, str) and url.startswith(PLACEHOLDER_PREFIX) and url.endswith(
        PLACEHOLDER_SUFFIX
    )


def create_placeholder(file_id: str, file_name: str, timestamp: int | None = None) -> str:
    """Encode ``(file_id, file_name, timestamp)`` as an in-flight token.

    Returns "" when the id cannot be used even after sanitizing.
    """
    validation = validate_id(file_id)
    if validation.is_valid:
        valid_id = file_id
    elif validation.is_recoverable:
        valid_id = validation.sanitized_id
    else:
        _LOGGER.warning("cannot build placeholder for invalid id", file_id=file_id)
        return ""

    ts = now_ms() if timestamp is None else int(timestamp)
    if ts < 0:
        _LOGGER.warning("negative placeholder timestamp", file_id=file_id, timestamp=ts)
        return ""
    return f"{PLACEHOLDER_PREFIX}{valid_id}-{sanitize_token_name(file_name)}-{ts}{PLACEHOLDER_SUFFIX}"


def parse_placeholder(token: object) -> PlaceholderInfo | None:
    if not isinstance(token, str) or not is_placeholder(token):
        return None
    match = _PLACEHOLDER_PATTERN.match(token)
    if match is None:
        _LOGGER.debug("placeholder does not match grammar", token=token)
        return None
    return PlaceholderInfo(
        file_id=match.group("file_id"),
        file_name=match.group("file_name"),
        timestamp=int(match.group("timestamp")),
        is_processing=token.endswith(PLACEHOLDER_SUFFIX),
    )


def extract_id(token: object) -> str:
    info = parse_placeholder(token)
    return info.file_id if info is not None else ""


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class IdentityMapping:
    file_id: str
    file_name: str
    original_file_name: str
    url: str
    placeholder_url: str
    status: FileStatus
    created_at: int
    last_updated: int

    @property
    def has_final_url(self) -> bool:
        return bool(self.url) and not is_placeholder(self.url)


@dataclass(frozen=True, slots=True)
class RegistryOperation:
    """One step of a batch passed to ``IdentityRegistry.apply``."""

    kind: Literal["register", "update", "remove"]
    file_id: str
    file_name: str | None = None
    url: str | None = None
    placeholder_url: str | None = None
    status: FileStatus | None = None


@dataclass(frozen=True, slots=True)
class RegistryStats:
    total_mappings: int
    name_mappings: int
    url_mappings: int
    placeholder_mappings: int
    status_counts: dict[str, int] = field(default_factory=dict)
    oldest_mapping: int = 0
    newest_mapping: int = 0


def _bucket_add(index: dict[str, list[str]], key: str, file_id: str) -> None:
    bucket = index.setdefault(key, [])
    if file_id not in bucket:
        bucket.append(file_id)


def _bucket_discard(index: dict[str, list[str]], key: str, file_id: str) -> None:
    bucket = index.get(key)
    if not bucket:
        return
    if file_id in bucket:
        bucket.remove(file_id)
    if not bucket:
        del index[key]


class IdentityRegistry:
    """Four-way index over file identities, owned by one session.

    Names and urls are not unique across files (two uploads may share a
    display name, identical content yields identical data URIs), so those
    indexes hold ordered buckets and lookups return the oldest id.
    """

    def __init__(self, max_id_length: int = DEFAULT_MAX_ID_LENGTH) -> None:
        self._max_id_length = max_id_length
        self._by_id: dict[str, IdentityMapping] = {}
        self._by_name: dict[str, list[str]] = {}
        self._by_url: dict[str, list[str]] = {}
        self._by_placeholder: dict[str, str] = {}

    # -- mutation ----------------------------------------------------------

    def register(
        self,
        file_id: str,
        file_name: str,
        url: str,
        placeholder_url: str | None = None,
        status: FileStatus | None = None,
    ) -> bool:
        op = RegistryOperation("register", file_id, file_name, url, placeholder_url, status)
        return self.apply([op])

    def update(
        self,
        file_id: str,
        *,
        file_name: str | None = None,
        url: str | None = None,
        status: FileStatus | None = None,
    ) -> bool:
        return self.apply([RegistryOperation("update", file_id, file_name, url, None, status)])

    def remove(self, file_id: str) -> bool:
        return self.apply([RegistryOperation("remove", file_id)])

    def apply(self, operations: Iterable[RegistryOperation]) -> bool:
        """Run a batch atomically; on any failure restore the prior state."""
        ops = list(operations)
        snapshot = self._snapshot()
        try:
            for op in ops:
                if op.kind == "register":
                    self._register(op)
                elif op.kind == "update":
                    self._update(op)
                elif op.kind == "remove":
                    self._remove(op.file_id)
                else:
                    raise RegistryError(op.file_id, f"Unknown registry operation '{op.kind}'")
        except (RegistryError, ValidationError) as e:
            self._restore(snapshot)
            _LOGGER.warning(
                "registry batch rolled back",
                operations=len(ops),
                error=f"{type(e).__name__}: {e.message}",
            )
            return False

        _LOGGER.debug("registry batch applied", operations=len(ops), total=len(self._by_id))
        return True

    def clear(self) -> None:
        count = len(self._by_id)
        self._by_id.clear()
        self._by_name.clear()
        self._by_url.clear()
        self._by_placeholder.clear()
        _LOGGER.debug("registry cleared", cleared=count)

    def destroy(self) -> None:
        """End of session lifecycle; the registry holds nothing afterwards."""
        self.clear()

    # -- lookup ------------------------------------------------------------

    def get_by_id(self, file_id: str) -> IdentityMapping | None:
        return self._by_id.get(file_id)

    def get_id_by_name(self, file_name: str) -> str | None:
        bucket = self._by_name.get(file_name)
        return bucket[0] if bucket else None

    def get_id_by_url(self, url: str) -> str | None:
        bucket = self._by_url.get(url)
        return bucket[0] if bucket else None

    def get_id_by_placeholder(self, placeholder_url: str) -> str | None:
        return self._by_placeholder.get(placeholder_url)

    def mappings(self) -> dict[str, IdentityMapping]:
        return dict(self._by_id)

    def __len__(self) -> int:
        return len(self._by_id)

    def __contains__(self, file_id: object) -> bool:
        return file_id in self._by_id

    def stats(self) -> RegistryStats:
        status_counts = {status.value: 0 for status in FileStatus}
        created = [m.created_at for m in self._by_id.values()]
        for mapping in self._by_id.values():
            status_counts[mapping.status.value] += 1
        return RegistryStats(
            total_mappings=len(self._by_id),
            name_mappings=sum(len(b) for b in self._by_name.values()),
            url_mappings=sum(len(b) for b in self._by_url.values()),
            placeholder_mappings=len(self._by_placeholder),
            status_counts=status_counts,
            oldest_mapping=min(created) if created else 0,
            newest_mapping=max(created) if created else 0,
        )

    def check_consistency(self) -> list[str]:
        """Return a list of index inconsistencies (empty when healthy)."""
        problems: list[str] = []
        for file_id, m in self._by_id.items():
            if file_id not in self._by_name.get(m.file_name, []):
                problems.append(f"{file_id}: missing from name index")
            if self._by_placeholder.get(m.placeholder_url) != file_id:
                problems.append(f"{file_id}: missing from placeholder index")
            in_url = file_id in self._by_url.get(m.url, [])
            if m.has_final_url and not in_url:
                problems.append(f"{file_id}: missing from url index")
            if not m.has_final_url and in_url:
                problems.append(f"{file_id}: placeholder-only mapping in url index")

        indexed = {fid for b in self._by_name.values() for fid in b}
        indexed |= {fid for b in self._by_url.values() for fid in b}
        indexed |= set(self._by_placeholder.values())
        for orphan in sorted(indexed - set(self._by_id)):
            problems.append(f"{orphan}: indexed but not registered")
        return problems

    # -- internals ---------------------------------------------------------

    def _register(self, op: RegistryOperation) -> None:
        validation = validate_id(op.file_id, self._max_id_length)
        if not validation.is_valid:
            raise ValidationError(f"Invalid file id '{op.file_id}'", validation.issues)
        if op.file_id in self._by_id:
            raise RegistryError(op.file_id, f"File id '{op.file_id}' is already registered")
        if not op.file_name:
            raise ValidationError("File name must not be empty")

        url = op.url or ""
        placeholder_url = op.placeholder_url or (
            url if is_placeholder(url) else create_placeholder(op.file_id, op.file_name)
        )
        if not is_placeholder(placeholder_url):
            raise ValidationError(f"Not a placeholder token: '{placeholder_url}'")
        owner = self._by_placeholder.get(placeholder_url)
        if owner is not None:
            raise RegistryError(op.file_id, f"Placeholder already owned by '{owner}'")

        status = op.status or (FileStatus.PENDING if is_placeholder(url) else FileStatus.COMPLETED)
        ts = now_ms()
        mapping = IdentityMapping(
            file_id=op.file_id,
            file_name=op.file_name,
            original_file_name=op.file_name,
            url=url,
            placeholder_url=placeholder_url,
            status=status,
            created_at=ts,
            last_updated=ts,
        )
        self._by_id[op.file_id] = mapping
        _bucket_add(self._by_name, mapping.file_name, op.file_id)
        self._by_placeholder[placeholder_url] = op.file_id
        if mapping.has_final_url:
            _bucket_add(self._by_url, url, op.file_id)

    def _update(self, op: RegistryOperation) -> None:
        current = self._by_id.get(op.file_id)
        if current is None:
            raise RegistryError(op.file_id)

        changes: dict[str, object] = {}
        if op.file_name is not None:
            if not op.file_name:
                raise ValidationError("File name must not be empty")
            changes["file_name"] = op.file_name
        if op.url is not None:
            if not op.url:
                raise ValidationError("Url must not be empty")
            changes["url"] = op.url
        if op.status is not None:
            if not can_transition(current.status, op.status):
                raise ValidationError(
                    f"Illegal status transition {current.status.value} -> {op.status.value}"
                )
            changes["status"] = op.status

        updated = replace(current, last_updated=now_ms(), **changes)

        if updated.file_name != current.file_name:
            _bucket_discard(self._by_name, current.file_name, op.file_id)
            _bucket_add(self._by_name, updated.file_name, op.file_id)
        if updated.url != current.url:
            if current.has_final_url:
                _bucket_discard(self._by_url, current.url, op.file_id)
            if updated.has_final_url:
                _bucket_add(self._by_url, updated.url, op.file_id)
        self._by_id[op.file_id] = updated

    def _remove(self, file_id: str) -> None:
        current = self._by_id.pop(file_id, None)
        if current is None:
            raise RegistryError(file_id)
        _bucket_discard(self._by_name, current.file_name, file_id)
        if self._by_placeholder.get(current.placeholder_url) == file_id:
            del self._by_placeholder[current.placeholder_url]
        if current.has_final_url:
            _bucket_discard(self._by_url, current.url, file_id)

    def _snapshot(self) -> tuple[dict, dict, dict, dict]:
        return (
            dict(self._by_id),
            {k: list(v) for k, v in self._by_name.items()},
            {k: list(v) for k, v in self._by_url.items()},
            dict(self._by_placeholder),
        )

    def _restore(self, snapshot: tuple[dict, dict, dict, dict]) -> None:
        self._by_id, self._by_name, self._by_url, self._by_placeholder = snapshot
