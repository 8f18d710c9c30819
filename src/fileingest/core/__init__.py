"""fileingest core: store, identity, loading and the legacy array bridge."""

from fileingest.core.bridge import LegacyBridge, MainImageBackup
from fileingest.core.config import ConfigResolver, IngestSettings, resolve_ingest_settings
from fileingest.core.content_loader import ContentLoader, LoadHandle, LoadState, RawFile
from fileingest.core.errors import (
    AbortError,
    ConfigError,
    FileIngestError,
    ReadError,
    RegistryError,
    StorageError,
    ValidationError,
)
from fileingest.core.events import EventBus
from fileingest.core.identity import (
    IdentityMapping,
    IdentityRegistry,
    IdValidation,
    PlaceholderInfo,
    create_placeholder,
    extract_id,
    generate_id,
    is_placeholder,
    parse_placeholder,
    validate_id,
)
from fileingest.core.logging import (
    VerbosityLevel,
    get_logger,
    get_verbosity,
    set_colors,
    set_verbosity,
)
from fileingest.core.model import FileEntry, FileStatus, Invalid, LegacyArrays, Valid
from fileingest.core.progress import UploadProgressTracker, UploadStatus, UploadSummary
from fileingest.core.session import IngestSession, RejectedFile, SubmitResult
from fileingest.core.storage import JsonFileStorage, KeyValueStorage, MemoryStorage
from fileingest.core.store import OrderedFileStore
from fileingest.core.validation import (
    DuplicateFilterResult,
    filter_duplicates,
    format_file_size,
    validate_content_uri,
    validate_raw_file,
)

__all__ = [
    # Model
    "FileEntry",
    "FileStatus",
    "LegacyArrays",
    "Valid",
    "Invalid",
    # Identity
    "IdentityRegistry",
    "IdentityMapping",
    "IdValidation",
    "PlaceholderInfo",
    "generate_id",
    "validate_id",
    "create_placeholder",
    "extract_id",
    "parse_placeholder",
    "is_placeholder",
    # Store / bridge
    "OrderedFileStore",
    "LegacyBridge",
    "MainImageBackup",
    # Loading
    "ContentLoader",
    "LoadHandle",
    "LoadState",
    "RawFile",
    # Validation
    "DuplicateFilterResult",
    "filter_duplicates",
    "format_file_size",
    "validate_content_uri",
    "validate_raw_file",
    # Progress
    "UploadProgressTracker",
    "UploadStatus",
    "UploadSummary",
    # Session
    "IngestSession",
    "SubmitResult",
    "RejectedFile",
    # Storage
    "KeyValueStorage",
    "MemoryStorage",
    "JsonFileStorage",
    # Config
    "ConfigResolver",
    "IngestSettings",
    "resolve_ingest_settings",
    # Events
    "EventBus",
    # Errors
    "FileIngestError",
    "ValidationError",
    "ReadError",
    "AbortError",
    "RegistryError",
    "ConfigError",
    "StorageError",
    # Logging
    "VerbosityLevel",
    "get_logger",
    "set_verbosity",
    "get_verbosity",
    "set_colors",
]
