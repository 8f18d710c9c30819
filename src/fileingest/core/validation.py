"""Input checks applied before a file is admitted and after it is decoded."""

from __future__ import annotations

import base64
import binascii
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

from fileingest.core.config import IngestSettings
from fileingest.core.model import Invalid, Valid, Validation

if TYPE_CHECKING:
    from fileingest.core.content_loader import RawFile

_DATA_URI = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+);base64,(?P<payload>.*)$", re.DOTALL)

_SIZE_UNITS = ("Bytes", "KB", "MB", "GB")


def format_file_size(size: int) -> str:
    """Render a byte count as ``"1.5 MB"``; zero is ``"0 Bytes"``."""
    if size <= 0:
        return "0 Bytes"
    value = float(size)
    unit = 0
    while value >= 1024 and unit < len(_SIZE_UNITS) - 1:
        value /= 1024
        unit += 1
    text = f"{value:.2f}".rstrip("0").rstrip(".")
    return f"{text} {_SIZE_UNITS[unit]}"


def validate_raw_file(raw_file: RawFile, settings: IngestSettings | None = None) -> Validation[RawFile]:
    settings = settings or IngestSettings()
    issues: list[str] = []

    if not raw_file.name or not raw_file.name.strip():
        issues.append("file name is empty")
    if raw_file.content_type.lower() not in settings.allowed_types:
        allowed = ", ".join(settings.allowed_types)
        issues.append(f"type '{raw_file.content_type}' is not allowed (allowed: {allowed})")
    if raw_file.size <= 0:
        issues.append("file is empty")
    elif raw_file.size > settings.max_file_size:
        issues.append(
            f"file is {format_file_size(raw_file.size)}, "
            f"limit is {format_file_size(settings.max_file_size)}"
        )
    if raw_file.data is None and raw_file.path is None:
        issues.append("file has no content source")

    if issues:
        return Invalid(tuple(issues))
    return Valid(raw_file)


def validate_content_uri(uri: object) -> Validation[str]:
    """Accept only ``data:<mime>;base64,<payload>`` with a decodable payload."""
    if not isinstance(uri, str):
        return Invalid(("content is not a string",))
    match = _DATA_URI.match(uri)
    if match is None:
        return Invalid(("content is not a base64 data URI",))
    payload = match.group("payload")
    if not payload:
        return Invalid(("data URI payload is empty",))
    try:
        base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        return Invalid(("data URI payload is not valid base64",))
    return Valid(uri)


@dataclass(frozen=True, slots=True)
class DuplicateFilterResult:
    unique: list[RawFile]
    duplicates: list[str]


def filter_duplicates(
    files: Sequence[RawFile],
    existing_names: Iterable[str] = (),
    in_flight_names: Iterable[str] = (),
) -> DuplicateFilterResult:
    """Drop files whose name is already present, in flight, or repeated in the batch."""
    seen = set(existing_names) | set(in_flight_names)
    unique: list[RawFile] = []
    duplicates: list[str] = []
    for raw in files:
        if raw.name in seen:
            duplicates.append(raw.name)
            continue
        seen.add(raw.name)
        unique.append(raw)
    return DuplicateFilterResult(unique=unique, duplicates=duplicates)
