"""
Pytest configuration and fixtures for toolhost-resilience tests.
"""

import sys
from pathlib import Path
import pytest

# Add src directory to Python path to allow importing toolhost_resilience
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))


# Configure anyio to only use asyncio (not trio)
@pytest.fixture
def anyio_backend():
    return "asyncio"


class FakeClock:
    """Millisecond clock advanced by hand."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class TickingClock(FakeClock):
    """Clock that moves forward by one millisecond on every read."""

    def __call__(self) -> int:
        self.now += 1
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def ticking_clock() -> TickingClock:
    return TickingClock()


@pytest.fixture
def workspace_data() -> dict:
    """A valid workspace mapping with two files."""
    return {
        "id": "ws-1",
        "name": "Poster design",
        "type": "creative",
        "files": [
            {"id": "f-1", "name": "logo.png", "type": "image/png", "size": 2048,
             "url": "https://cdn.example.com/logo.png",
             "metadata": {"dimensions": {"width": 512, "height": 512}}},
            {"id": "f-2", "name": "notes.md", "type": "text/markdown", "size": 120},
        ],
        "tools": ["photopea", "svg-edit"],
        "settings": {"theme": "dark"},
    }
