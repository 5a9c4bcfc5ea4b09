"""Test fixtures for the rulebook retrieval engine."""

from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

MOVEMENT = (
    "Movement. Each knight moves two squares forward and then one square sideways "
    "during the movement phase."
)
TRADING = (
    "Trading. Merchants exchange goods at the market; a merchant holding saffron "
    "may trade it for three gold coins."
)
COMBAT = (
    "Combat. Archers attack from range while soldiers defend the castle walls "
    "against invading armies."
)


@pytest.fixture(autouse=True)
def reset_state(monkeypatch: pytest.MonkeyPatch) -> None:
    """Isolate environment overrides and cached settings between tests."""
    for key in list(os.environ):
        if key.startswith("RBRAG_"):
            monkeypatch.delenv(key, raising=False)

    from rulebook_rag.core.config import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "rag_index.db"


@pytest.fixture
def settings(db_path: Path):
    from rulebook_rag.core.config import Settings

    # paragraph-sized windows so each paragraph of ``rulebook_text`` is its own chunk
    return Settings(db_path=db_path, chunk_size=150, chunk_overlap=0, chunk_lookback=100)


@pytest.fixture
def vector_settings(settings):
    return settings.model_copy(update={"backend": "vector"})


@pytest.fixture
def store(db_path: Path):
    from rulebook_rag.db.index_store import IndexStore

    index_store = IndexStore.open(db_path)
    yield index_store
    index_store.close()


@pytest.fixture(scope="session")
def rulebook_text() -> str:
    return "\n\n".join([MOVEMENT, TRADING, COMBAT])


@pytest.fixture(scope="session")
def expansion_text() -> str:
    return "Expansion rules. Dragons may fly over castle walls but never trade saffron."
