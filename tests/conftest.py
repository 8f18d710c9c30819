"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Add src to path (for 'fileingest.*' imports without an install)
repo_root = Path(__file__).parent.parent
sys.path.insert(0, str(repo_root / "src"))

# 1x1 transparent PNG
PNG_BYTES = bytes.fromhex(
    "89504e470d0a1a0a0000000d4948445200000001000000010806000000"
    "1f15c4890000000d49444154789c6300010000000500010d0a2db40000"
    "000049454e44ae426082"
)


@pytest.fixture(autouse=True)
def _quiet_logging():
    """Keep global verbosity and the log bus from leaking between tests."""
    from fileingest.core.log_bus import get_log_bus
    from fileingest.core.logging import VerbosityLevel, set_log_sink, set_verbosity

    set_verbosity(VerbosityLevel.QUIET)
    yield
    set_log_sink(None)
    get_log_bus().clear()
    set_verbosity(VerbosityLevel.NORMAL)


@pytest.fixture
def png_bytes():
    return PNG_BYTES


@pytest.fixture
def temp_image_file(tmp_path):
    """Create a small PNG on disk.

    Args:
        tmp_path: pytest temporary directory

    Returns:
        Path to the PNG file
    """
    image = tmp_path / "photo.png"
    image.write_bytes(PNG_BYTES)
    return image


@pytest.fixture
def raw_png():
    """In-memory RawFile factory."""
    from fileingest.core.content_loader import RawFile

    def _make(name="photo.png", data=PNG_BYTES, content_type="image/png"):
        return RawFile.from_bytes(name, data, content_type)

    return _make


@pytest.fixture
def memory_storage():
    from fileingest.core.storage import MemoryStorage

    return MemoryStorage()


@pytest.fixture
def store():
    """Create an OrderedFileStore with its own registry and bus."""
    from fileingest.core.store import OrderedFileStore

    return OrderedFileStore()


@pytest.fixture
def session(memory_storage):
    """Create an IngestSession backed by in-memory storage; destroyed afterwards."""
    from fileingest.core.session import IngestSession

    s = IngestSession(storage=memory_storage)
    yield s
    s.destroy()


@pytest.fixture
def config_resolver(tmp_path):
    """Create ConfigResolver isolated from the real user/system config files.

    Returns:
        ConfigResolver instance
    """
    from fileingest.core.config import ConfigResolver

    return ConfigResolver(
        cli_args={},
        user_config_path=tmp_path / "user.yaml",
        system_config_path=tmp_path / "system.yaml",
    )
