"""Ingest session: owns the bus, registry, store, loader, tracker and bridge.

Load events drive the store::

    start     -> status=processing, upload_progress=0
    progress  -> upload_progress=<pct>
    success   -> url=<data uri>, status=completed, upload_progress=100
    failure   -> status=error (once)

``submit`` must be called from a running event loop; ``ingest`` is the
awaitable convenience wrapper.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass, field
from functools import partial
from typing import Any

from fileingest.core.bridge import LegacyBridge
from fileingest.core.config import ConfigResolver, IngestSettings, resolve_ingest_settings
from fileingest.core.content_loader import ContentLoader, LoadHandle, RawFile
from fileingest.core.diagnostics import install_jsonl_sink, uninstall_jsonl_sink
from fileingest.core.errors import FileIngestError
from fileingest.core.events import EventBus
from fileingest.core.identity import IdentityRegistry, create_placeholder, generate_id
from fileingest.core.logging import get_logger
from fileingest.core.model import FileStatus, LegacyArrays
from fileingest.core.progress import UploadProgressTracker
from fileingest.core.storage import JsonFileStorage, KeyValueStorage
from fileingest.core.store import OrderedFileStore
from fileingest.core.validation import filter_duplicates, validate_raw_file

_LOGGER = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class RejectedFile:
    file_id: str
    file_name: str
    issues: tuple[str, ...]


@dataclass(slots=True)
class SubmitResult:
    accepted_ids: list[str] = field(default_factory=list)
    duplicates: list[str] = field(default_factory=list)
    rejected: list[RejectedFile] = field(default_factory=list)


class IngestSession:
    def __init__(
        self,
        settings: IngestSettings | None = None,
        storage: KeyValueStorage | None = None,
        bus: EventBus | None = None,
    ) -> None:
        self.settings = settings or IngestSettings()
        self.bus = bus if bus is not None else EventBus()
        self.registry = IdentityRegistry(self.settings.max_id_length)
        self.store = OrderedFileStore(
            self.registry, self.bus, max_id_length=self.settings.max_id_length
        )
        self.loader = ContentLoader(
            chunk_size=self.settings.chunk_size,
            max_concurrent=self.settings.max_concurrent,
        )
        self.progress = UploadProgressTracker()
        self.bridge = LegacyBridge(self.store, storage, self.settings)
        self._handles: dict[str, LoadHandle] = {}
        self._destroyed = False

    @classmethod
    def from_config(
        cls,
        resolver: ConfigResolver | None = None,
        storage: KeyValueStorage | None = None,
    ) -> IngestSession:
        """Build a session from resolved configuration.

        Uses ``JsonFileStorage`` at ``storage.path`` unless a storage is given
        and installs the diagnostics JSONL sink on the session bus.

        Raises:
            ConfigError: If configuration values are invalid.
        """
        resolver = resolver or ConfigResolver()
        settings = resolve_ingest_settings(resolver)
        if storage is None:
            storage = JsonFileStorage(settings.storage_path)
        session = cls(settings=settings, storage=storage)
        install_jsonl_sink(session.bus, resolver=resolver)
        return session

    # -- submission --------------------------------------------------------

    def submit(self, files: Sequence[RawFile]) -> SubmitResult:
        """Admit files and start one load per accepted file."""
        result = SubmitResult()
        if self._destroyed:
            _LOGGER.warning("submit on destroyed session ignored")
            return result

        entries = self.store.entries()
        failed: dict[str, list[str]] = {}
        for e in entries:
            if e.status == FileStatus.ERROR:
                failed.setdefault(e.file_name, []).append(e.id)
        filtered = filter_duplicates(
            files,
            existing_names=[e.file_name for e in entries if e.status == FileStatus.COMPLETED],
            in_flight_names=[e.file_name for e in entries if e.is_in_flight],
        )
        result.duplicates.extend(filtered.duplicates)
        if filtered.duplicates:
            _LOGGER.info("skipped duplicate files", count=len(filtered.duplicates))

        for raw in filtered.unique:
            # A resubmitted name replaces its failed entries.
            for stale_id in failed.pop(raw.name, []):
                self.remove(stale_id)
                _LOGGER.debug("dropped failed entry for retry", file_id=stale_id, file_name=raw.name)

            file_id = generate_id(raw.name)
            added = self.store.add(raw.name, create_placeholder(file_id, raw.name), file_id=file_id)
            if not added:
                result.rejected.append(RejectedFile("", raw.name, ("could not register file",)))
                continue

            self.progress.start(added, raw.name)
            validation = validate_raw_file(raw, self.settings)
            if not validation.ok:
                self.store.update(added, status=FileStatus.ERROR)
                self.progress.fail(added)
                result.rejected.append(RejectedFile(added, raw.name, validation.issues))
                _LOGGER.warning("file rejected", file_name=raw.name, issues=validation.message)
                continue

            self._handles[added] = self.loader.load(
                raw,
                added,
                on_progress=partial(self._on_progress, added),
                on_success=partial(self._on_success, added),
                on_error=partial(self._on_error, added),
                on_start=partial(self._on_start, added),
            )
            result.accepted_ids.append(added)

        _LOGGER.verbose(
            "files submitted",
            accepted=len(result.accepted_ids),
            duplicates=len(result.duplicates),
            rejected=len(result.rejected),
        )
        return result

    async def ingest(self, files: Sequence[RawFile]) -> SubmitResult:
        """Submit files and wait until every started load has finished."""
        result = self.submit(files)
        await self.wait_all()
        return result

    async def wait_all(self) -> None:
        handles = list(self._handles.values())
        if handles:
            await asyncio.gather(*(h.wait() for h in handles))

    # -- load events -------------------------------------------------------

    def _on_start(self, file_id: str) -> None:
        self.store.update(file_id, status=FileStatus.PROCESSING, upload_progress=0)

    def _on_progress(self, file_id: str, pct: int) -> None:
        self.store.update(file_id, upload_progress=pct)
        self.progress.update(file_id, pct)

    def _on_success(self, file_id: str, uri: str) -> None:
        self._handles.pop(file_id, None)
        if not self.store.update(file_id, url=uri, status=FileStatus.COMPLETED, upload_progress=100):
            _LOGGER.debug("loaded content for entry that is gone", file_id=file_id)
            return
        self.progress.complete(file_id)
        _LOGGER.verbose("file loaded", file_id=file_id)

    def _on_error(self, file_id: str, error: FileIngestError) -> None:
        self._handles.pop(file_id, None)
        if self.store.update(file_id, status=FileStatus.ERROR):
            self.progress.fail(file_id)
        _LOGGER.warning("file failed", file_id=file_id, error=error.message)

    # -- control -----------------------------------------------------------

    def cancel(self, file_id: str) -> bool:
        """Abort a running load and drop its entry."""
        handle = self._handles.pop(file_id, None) if isinstance(file_id, str) else None
        if handle is None or handle.done():
            return False
        handle.cancel()
        self.store.remove(file_id)
        self.progress.forget(file_id)
        return True

    def cancel_all(self) -> int:
        return sum(1 for file_id in list(self._handles) if self.cancel(file_id))

    def remove(self, file_id: str) -> bool:
        if not isinstance(file_id, str):
            return False
        handle = self._handles.pop(file_id, None)
        if handle is not None:
            handle.cancel()
        self.progress.forget(file_id)
        return self.store.remove(file_id)

    def sync_external(self, urls: Sequence[str], names: Sequence[str]) -> int:
        """First call seeds the store from external arrays; later calls merge."""
        if not self.bridge.initialized:
            return self.bridge.initialize(urls, names)
        return self.bridge.merge(urls, names)

    # -- views -------------------------------------------------------------

    def legacy_arrays(self) -> LegacyArrays:
        return self.store.to_legacy_arrays()

    def status_map(self) -> dict[str, Any]:
        return {
            "uploading": self.progress.uploading,
            "upload_status": self.progress.upload_status,
        }

    @property
    def main_image(self) -> str:
        return self.bridge.main_image

    def set_main_image(self, url: str) -> bool:
        return self.bridge.set_main_image(url)

    def set_main_image_by_name(self, file_name: str) -> bool:
        file_id = self.registry.get_id_by_name(file_name)
        entry = self.store.get_by_id(file_id) if file_id else None
        if entry is None or entry.status != FileStatus.COMPLETED:
            _LOGGER.warning("no completed entry with that name", file_name=file_name)
            return False
        return self.bridge.set_main_image(entry.url)

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    def destroy(self) -> None:
        if self._destroyed:
            return
        self._destroyed = True
        cancelled = self.cancel_all()
        self.bridge.destroy()
        self.store.clear_all()
        self.registry.destroy()
        self.progress.reset()
        self.bus.clear()
        uninstall_jsonl_sink(self.bus)
        _LOGGER.debug("session destroyed", cancelled=cancelled)

    def __enter__(self) -> IngestSession:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.destroy()
