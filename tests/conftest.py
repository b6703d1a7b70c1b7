import os
import sys

import pytest

REPO_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


def _ensure_paths():
    if REPO_ROOT not in sys.path:
        sys.path.insert(0, REPO_ROOT)


_ensure_paths()


@pytest.fixture(autouse=True)
def isolated_cache(monkeypatch, tmp_path):
    """Keep inventory caches out of the real home directory."""
    monkeypatch.setenv("HUDAPP_CACHE_DIR", str(tmp_path / "cache"))
    yield
