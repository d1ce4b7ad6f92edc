"""Pytest configuration and fixtures."""

import json
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))


@pytest.fixture
def event_file(tmp_path: Path) -> Callable[[dict[str, Any]], Path]:
    """Write a GitHub event payload and return its path."""

    def _write(payload: dict[str, Any]) -> Path:
        path = tmp_path / "event.json"
        path.write_text(json.dumps(payload), encoding="utf-8")
        return path

    return _write
