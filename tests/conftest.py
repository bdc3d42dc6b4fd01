from __future__ import annotations

import shutil
import sys
from collections.abc import Iterator
from pathlib import Path
from uuid import uuid4

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from chopstrainer.content_loader import load_dimensions  # noqa: E402
from chopstrainer.dimensions import DimensionRegistry  # noqa: E402
from chopstrainer.progress import ProfileStore, ProgressStore  # noqa: E402
from chopstrainer.settings import DEFAULT_SETTINGS  # noqa: E402


def _tmp_path_fixture() -> Iterator[Path]:
    """Provide per-test temporary directory path inside the workspace.

    Overrides pytest's builtin ``tmp_path`` fixture so temporary files live
    under the project working directory at ``.tmp_pytest/``.
    """
    base = ROOT / ".tmp_pytest"
    base.mkdir(parents=True, exist_ok=True)
    path = base / str(uuid4())
    path.mkdir(parents=True, exist_ok=False)
    try:
        yield path
    finally:
        shutil.rmtree(path, ignore_errors=True)
        try:
            next(base.iterdir())
        except StopIteration:
            base.rmdir()
        except FileNotFoundError:
            pass


tmp_path = pytest.fixture(name="tmp_path")(_tmp_path_fixture)


@pytest.fixture
def registry() -> DimensionRegistry:
    """Bundled dimension registry."""
    return load_dimensions()


@pytest.fixture
def progress() -> Iterator[ProgressStore]:
    """In-memory progress store."""
    store = ProgressStore(":memory:")
    yield store
    store.close()


@pytest.fixture
def profile_store(progress: ProgressStore) -> ProfileStore:
    """Statistics view bound to a fresh profile with default tiers."""
    profile = progress.create_profile("tester")
    return ProfileStore(progress, profile.id, DEFAULT_SETTINGS.dimension_tiers)
