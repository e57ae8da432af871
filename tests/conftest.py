from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import Callable, Dict

import pytest

# Keep the repository free of Python bytecode and __pycache__ artifacts during tests.
sys.dont_write_bytecode = True

TESTS_ROOT = Path(__file__).resolve().parent
REPO_ROOT = TESTS_ROOT.parent
SRC_ROOT = REPO_ROOT / "src"

# Make src/ importable as 'flun'
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from flun.core.stdlib_logging import reset_logging_for_tests  # noqa: E402
from flun.data import clear_caches  # noqa: E402


@pytest.fixture(autouse=True)
def _isolate_flun_state(monkeypatch: pytest.MonkeyPatch):
    """Strip FLUN_* overrides and reset cached data between tests."""
    for key in list(os.environ):
        if key.startswith("FLUN_"):
            monkeypatch.delenv(key, raising=False)
    clear_caches()
    yield
    clear_caches()
    reset_logging_for_tests()
    # configure_logging may lower propagation-visible levels; restore for caplog.
    logging.getLogger("flun").setLevel(logging.NOTSET)


@pytest.fixture
def template_root(tmp_path: Path) -> Path:
    root = tmp_path / "templates"
    root.mkdir()
    return root


@pytest.fixture
def write_template(template_root: Path) -> Callable[[str, str], Path]:
    """Write a file under the template root, creating parent directories."""

    def _write(relative: str, content: str) -> Path:
        path = template_root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def write_templates(write_template: Callable[[str, str], Path]) -> Callable[[Dict[str, str]], None]:
    def _write_all(files: Dict[str, str]) -> None:
        for relative, content in files.items():
            write_template(relative, content)

    return _write_all
