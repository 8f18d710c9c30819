"""Cancellable asynchronous content loading.

A load reads a raw file's bytes (in chunks, reporting progress), encodes them
as a ``data:`` URI, validates the result and hands it to ``on_success``.

Lifecycle::

    idle -> reading -> succeeded | failed | aborted

Once a handle is cancelled no callback fires for that load, even if the read
was already finished and delivery was about to happen.
"""

from __future__ import annotations

import asyncio
import base64
import mimetypes
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import Any

from fileingest.core.errors import AbortError, FileIngestError, ReadError, ValidationError
from fileingest.core.logging import get_logger
from fileingest.core.validation import validate_content_uri

_LOGGER = get_logger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024

ProgressCallback = Callable[[int], None]
SuccessCallback = Callable[[str], None]
ErrorCallback = Callable[[FileIngestError], None]
StartCallback = Callable[[], None]


@dataclass(frozen=True, slots=True)
class RawFile:
    """A user-supplied file: metadata plus either in-memory bytes or a path."""

    name: str
    content_type: str
    size: int
    data: bytes | None = None
    path: Path | None = None

    @classmethod
    def from_path(cls, path: Path | str, content_type: str | None = None) -> RawFile:
        p = Path(path).expanduser()
        try:
            size = p.stat().st_size
        except OSError as e:
            raise ReadError(p.name, str(e)) from e
        guessed, _enc = mimetypes.guess_type(p.name)
        return cls(
            name=p.name,
            content_type=content_type or guessed or "application/octet-stream",
            size=size,
            path=p,
        )

    @classmethod
    def from_bytes(cls, name: str, data: bytes, content_type: str | None = None) -> RawFile:
        guessed, _enc = mimetypes.guess_type(name)
        return cls(
            name=name,
            content_type=content_type or guessed or "application/octet-stream",
            size=len(data),
            data=data,
        )


class LoadState(StrEnum):
    IDLE = "idle"
    READING = "reading"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ABORTED = "aborted"


_FINAL_LOAD_STATES = frozenset({LoadState.SUCCEEDED, LoadState.FAILED, LoadState.ABORTED})


class LoadHandle:
    """Handle returned by ``ContentLoader.load``.

    Calling the handle (or ``cancel()``) aborts the load. Repeated calls and
    calls after the load finished are no-ops.
    """

    def __init__(self, file_id: str, file_name: str) -> None:
        self.file_id = file_id
        self.file_name = file_name
        self._state = LoadState.IDLE
        self._cancelled = False
        self._task: asyncio.Task[None] | None = None

    @property
    def state(self) -> LoadState:
        return self._state

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def done(self) -> bool:
        return self._state in _FINAL_LOAD_STATES

    def cancel(self) -> None:
        if self._cancelled or self.done():
            return
        # Flag first: any delivery racing with teardown checks it.
        self._cancelled = True
        self._state = LoadState.ABORTED
        if self._task is not None and not self._task.done():
            self._task.cancel()
        _LOGGER.debug("load cancelled", file_id=self.file_id)

    def __call__(self) -> None:
        self.cancel()

    async def wait(self) -> LoadState:
        """Wait for the load to finish and return its final state."""
        if self._task is not None:
            try:
                await asyncio.shield(self._task)
            except asyncio.CancelledError:
                if not self._task.cancelled():
                    raise
        return self._state

    def __repr__(self) -> str:
        return f"LoadHandle(file_id={self.file_id!r}, state={self._state.value!r})"


def encode_data_uri(content_type: str, data: bytes) -> str:
    return f"data:{content_type};base64,{base64.b64encode(data).decode('ascii')}"


class ContentLoader:
    """Runs loads as tasks on the running event loop.

    ``max_concurrent`` caps how many loads read at the same time
    (0 = unbounded); queued loads stay ``idle`` until a slot frees up.
    """

    def __init__(self, *, chunk_size: int = DEFAULT_CHUNK_SIZE, max_concurrent: int = 0) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if max_concurrent < 0:
            raise ValueError("max_concurrent must be >= 0")
        self._chunk_size = chunk_size
        self._max_concurrent = max_concurrent
        self._semaphore: asyncio.Semaphore | None = None
        self._semaphore_loop: asyncio.AbstractEventLoop | None = None

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    def _get_semaphore(self) -> asyncio.Semaphore | None:
        if self._max_concurrent == 0:
            return None
        loop = asyncio.get_running_loop()
        if self._semaphore is None or self._semaphore_loop is not loop:
            self._semaphore = asyncio.Semaphore(self._max_concurrent)
            self._semaphore_loop = loop
        return self._semaphore

    def load(
        self,
        raw_file: RawFile,
        file_id: str,
        on_progress: ProgressCallback | None = None,
        on_success: SuccessCallback | None = None,
        on_error: ErrorCallback | None = None,
        *,
        on_start: StartCallback | None = None,
    ) -> LoadHandle:
        """Start loading ``raw_file``; must be called from a running event loop."""
        handle = LoadHandle(file_id, raw_file.name)
        callbacks = {
            "start": on_start,
            "progress": on_progress,
            "success": on_success,
            "error": on_error,
        }
        handle._task = asyncio.get_running_loop().create_task(
            self._run(handle, raw_file, callbacks), name=f"fileingest-load-{file_id}"
        )
        _LOGGER.debug("load scheduled", file_id=file_id, file_name=raw_file.name)
        return handle

    async def _run(
        self,
        handle: LoadHandle,
        raw_file: RawFile,
        callbacks: dict[str, Any],
    ) -> None:
        try:
            semaphore = self._get_semaphore()
            if semaphore is None:
                await self._load(handle, raw_file, callbacks)
            else:
                async with semaphore:
                    await self._load(handle, raw_file, callbacks)
        except asyncio.CancelledError:
            if handle.cancelled:
                return
            # Cancelled from outside (loop shutdown, timeout): still an abort.
            handle._state = LoadState.ABORTED
            self._deliver(handle, callbacks["error"], AbortError(raw_file.name))
            handle._cancelled = True
            raise

    async def _load(self, handle: LoadHandle, raw_file: RawFile, callbacks: dict[str, Any]) -> None:
        if handle.cancelled:
            return
        handle._state = LoadState.READING
        self._deliver(handle, callbacks["start"])

        try:
            data = await self._read(handle, raw_file, callbacks["progress"])
        except ReadError as e:
            self._fail(handle, callbacks["error"], e)
            return
        if handle.cancelled:
            return

        uri = encode_data_uri(raw_file.content_type, data)
        result = validate_content_uri(uri)
        if not result.ok:
            self._fail(
                handle,
                callbacks["error"],
                ValidationError(f"Invalid content for '{raw_file.name}'", result.issues),
            )
            return

        handle._state = LoadState.SUCCEEDED
        _LOGGER.verbose("load succeeded", file_id=handle.file_id, size=len(data))
        self._deliver(handle, callbacks["success"], uri)

    async def _read(
        self,
        handle: LoadHandle,
        raw_file: RawFile,
        on_progress: ProgressCallback | None,
    ) -> bytes:
        total = raw_file.size
        loaded = 0
        last_pct: int | None = None
        chunks: list[bytes] = []

        def _report() -> None:
            nonlocal last_pct
            if total <= 0:
                return
            pct = max(0, min(100, round(loaded / total * 100)))
            if pct != last_pct:
                last_pct = pct
                self._deliver(handle, on_progress, pct)

        if raw_file.data is not None:
            view = memoryview(raw_file.data)
            for start in range(0, len(view), self._chunk_size):
                await asyncio.sleep(0)
                if handle.cancelled:
                    return b""
                chunk = bytes(view[start : start + self._chunk_size])
                chunks.append(chunk)
                loaded += len(chunk)
                _report()
            return b"".join(chunks)

        if raw_file.path is None:
            raise ReadError(raw_file.name, "no content source")

        loop = asyncio.get_running_loop()

        def _advance(size: int) -> None:
            nonlocal loaded
            loaded += size
            _report()

        try:
            return await asyncio.to_thread(
                self._read_path,
                handle,
                raw_file.path,
                lambda size: loop.call_soon_threadsafe(_advance, size),
            )
        except OSError as e:
            raise ReadError(raw_file.name, str(e)) from e

    def _read_path(self, handle: LoadHandle, path: Path, on_chunk: Callable[[int], None]) -> bytes:
        # Runs in a worker thread; stops at the next chunk once the handle is cancelled.
        chunks: list[bytes] = []
        with path.open("rb") as fh:
            while not handle.cancelled:
                chunk = fh.read(self._chunk_size)
                if not chunk:
                    break
                chunks.append(chunk)
                on_chunk(len(chunk))
        return b"".join(chunks)

    def _fail(self, handle: LoadHandle, on_error: ErrorCallback | None, error: FileIngestError) -> None:
        if handle.cancelled:
            return
        handle._state = LoadState.FAILED
        _LOGGER.warning("load failed", file_id=handle.file_id, error=error.message)
        self._deliver(handle, on_error, error)

    def _deliver(self, handle: LoadHandle, callback: Callable[..., None] | None, *args: Any) -> None:
        if callback is None or handle.cancelled:
            return
        try:
            callback(*args)
        except Exception as e:
            _LOGGER.error(
                f"load callback failed: {type(e).__name__}: {e}",
                file_id=handle.file_id,
            )
