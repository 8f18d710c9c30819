"""Package entry point: ``python -m fileingest ...``."""

from __future__ import annotations

from fileingest.cli import run

if __name__ == "__main__":
    run()
