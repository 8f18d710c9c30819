"""Command-line adapter.

Implements:
  fileingest ingest FILE... [--state PATH] [--external JSON] [--main-image NAME]
                            [--json] [--verbosity LEVEL] [--max-concurrent N]
  fileingest cleanup [--state PATH]

UI only: all state handling is delegated to IngestSession.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from fileingest import __version__
from fileingest.core.config import ConfigResolver
from fileingest.core.content_loader import RawFile
from fileingest.core.errors import ConfigError, FileIngestError, ReadError
from fileingest.core.logging import apply_logging_policy, get_logger
from fileingest.core.model import FileEntry, FileStatus
from fileingest.core.session import IngestSession, SubmitResult
from fileingest.core.validation import format_file_size

_LOGGER = get_logger(__name__)

_VERBOSITY_CHOICES = ("quiet", "normal", "verbose", "debug")
_STATUS_STYLES = {
    FileStatus.PENDING: "yellow",
    FileStatus.PROCESSING: "blue",
    FileStatus.COMPLETED: "green",
    FileStatus.ERROR: "red",
}


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="fileingest", description="Ordered, cancellable file intake.")
    p.add_argument("--version", action="version", version=f"fileingest {__version__}")
    sub = p.add_subparsers(dest="cmd")

    ingest = sub.add_parser("ingest", help="load files and print the resulting entries")
    ingest.add_argument("files", nargs="+", metavar="FILE")
    ingest.add_argument("--state", dest="state_path", default=None)
    ingest.add_argument(
        "--external",
        dest="external",
        default=None,
        help='JSON document (or path to one) shaped {"urls": [...], "names": [...]}',
    )
    ingest.add_argument("--main-image", dest="main_image", default=None, metavar="NAME")
    ingest.add_argument("--json", dest="as_json", action="store_true", default=False)
    ingest.add_argument("--verbosity", choices=_VERBOSITY_CHOICES, default=None)
    ingest.add_argument("--max-concurrent", dest="max_concurrent", type=int, default=None)

    cleanup = sub.add_parser("cleanup", help="remove stale persisted main image backups")
    cleanup.add_argument("--state", dest="state_path", default=None)
    cleanup.add_argument("--verbosity", choices=_VERBOSITY_CHOICES, default=None)
    return p


def _cli_overrides(ns: argparse.Namespace) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    verbosity = ns.verbosity
    if verbosity is None and getattr(ns, "as_json", False):
        # Keep stdout parseable.
        verbosity = "quiet"
    if verbosity is not None:
        overrides.setdefault("logging", {})["level"] = verbosity
    if ns.state_path is not None:
        overrides.setdefault("storage", {})["path"] = ns.state_path
    if getattr(ns, "max_concurrent", None) is not None:
        overrides.setdefault("loader", {})["max_concurrent"] = ns.max_concurrent
    return overrides


def _load_external(value: str) -> tuple[list[str], list[str]]:
    text = value
    if not value.lstrip().startswith("{"):
        try:
            text = Path(value).expanduser().read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(f"Cannot read external document {value}: {e}") from e
    try:
        doc = json.loads(text)
    except json.JSONDecodeError as e:
        raise ConfigError(f"External document is not valid JSON: {e}") from e
    if not isinstance(doc, dict):
        raise ConfigError("External document must be a JSON object")
    urls = doc.get("urls", [])
    names = doc.get("names", [])
    if not isinstance(urls, list) or not isinstance(names, list):
        raise ConfigError("External 'urls' and 'names' must be lists")
    return [str(u) for u in urls], [str(n) for n in names]


def _preview_url(url: str, limit: int = 48) -> str:
    if url.startswith("data:"):
        head = url.split(",", 1)[0]
        return f"{head},... ({len(url)} chars)"
    if len(url) <= limit:
        return url
    return url[: limit - 3] + "..."


def _entry_row(entry: FileEntry) -> dict[str, Any]:
    row = entry.to_dict()
    row["url"] = _preview_url(entry.url)
    return row


def _render_table(console: Console, entries: list[FileEntry], main_image: str) -> None:
    table = Table(title="fileingest entries")
    table.add_column("#", justify="right")
    table.add_column("Name")
    table.add_column("Status")
    table.add_column("Progress", justify="right")
    table.add_column("Url")
    table.add_column("Main", justify="center")

    for index, entry in enumerate(entries, start=1):
        style = _STATUS_STYLES.get(entry.status, "")
        progress = "-" if entry.upload_progress is None else f"{entry.upload_progress}%"
        table.add_row(
            str(index),
            escape(entry.file_name),
            f"[{style}]{entry.status.value}[/{style}]" if style else entry.status.value,
            progress,
            escape(_preview_url(entry.url)),
            "*" if main_image and entry.url == main_image else "",
        )
    console.print(table)


async def _run_ingest(
    session: IngestSession,
    files: Sequence[RawFile],
    external: tuple[list[str], list[str]] | None,
) -> SubmitResult:
    if external is not None:
        session.sync_external(*external)
    return await session.ingest(files)


def _cmd_ingest(ns: argparse.Namespace, resolver: ConfigResolver) -> int:
    console = Console()
    err_console = Console(stderr=True)

    external = _load_external(ns.external) if ns.external else None
    _LOGGER.debug("ingest command", files=len(ns.files), external=external is not None)

    raw_files: list[RawFile] = []
    missing: list[str] = []
    for name in ns.files:
        try:
            raw_files.append(RawFile.from_path(name))
        except ReadError as e:
            missing.append(name)
            err_console.print(f"[bold red]error[/bold red] {escape(e.message)}")

    with IngestSession.from_config(resolver) as session:
        result = asyncio.run(_run_ingest(session, raw_files, external))

        if ns.main_image and not session.set_main_image_by_name(ns.main_image):
            err_console.print(f"[bold yellow]warning[/bold yellow] main image '{escape(ns.main_image)}' not set")

        ours = [session.store.get_by_id(fid) for fid in result.accepted_ids]
        rejected_ids = [r.file_id for r in result.rejected]
        ok = (
            not missing
            and not rejected_ids
            and all(e is not None and e.status == FileStatus.COMPLETED for e in ours)
        )

        entries = session.store.entries()
        main_image = session.main_image
        summary = session.progress.summary()

        if ns.as_json:
            doc = {
                "entries": [_entry_row(e) for e in entries],
                "main_image": _preview_url(main_image) if main_image else "",
                "duplicates": result.duplicates,
                "rejected": [
                    {"file_id": r.file_id, "file_name": r.file_name, "issues": list(r.issues)}
                    for r in result.rejected
                ],
                "missing": missing,
                "summary": {
                    "total": summary.total,
                    "completed": summary.completed,
                    "errors": summary.errors,
                    "in_progress": summary.in_progress,
                },
            }
            print(json.dumps(doc, indent=2, sort_keys=True))
        else:
            _render_table(console, entries, main_image)
            for dup in result.duplicates:
                console.print(f"[yellow]duplicate skipped:[/yellow] {escape(dup)}")
            for rej in result.rejected:
                console.print(f"[red]rejected:[/red] {escape(rej.file_name)}: {escape('; '.join(rej.issues))}")
            total_size = sum(r.size for r in raw_files)
            console.print(
                f"{summary.completed}/{summary.total} loaded ({format_file_size(total_size)} read)"
            )

    return 0 if ok else 1


def _cmd_cleanup(ns: argparse.Namespace, resolver: ConfigResolver) -> int:
    with IngestSession.from_config(resolver) as session:
        removed = session.bridge.cleanup_persisted_state()
    Console().print(f"removed {removed} stale record(s)")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    ns = parser.parse_args(list(argv) if argv is not None else None)
    if ns.cmd is None:
        parser.print_help()
        return 1

    resolver = ConfigResolver(cli_args=_cli_overrides(ns))
    try:
        apply_logging_policy(resolver.resolve_logging_policy())
        if ns.cmd == "ingest":
            return _cmd_ingest(ns, resolver)
        return _cmd_cleanup(ns, resolver)
    except FileIngestError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return 130


def run() -> None:
    """Console script entry point."""
    sys.exit(main())
