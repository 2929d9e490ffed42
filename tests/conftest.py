"""
Shared fixtures: isolate settings, database and blob store per test.
"""

import pytest
from custody_ledger.api.deps import reset_manager
from custody_ledger.config import get_settings
from custody_ledger.storage import set_db


@pytest.fixture
def settings_env(tmp_path, monkeypatch):
    """Point every path and the database at a temporary directory."""
    monkeypatch.setenv("CUSTODY_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("CUSTODY_BLOB_DIR", str(tmp_path / "data" / "blobs"))
    monkeypatch.setenv("CUSTODY_DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'custody.db'}")
    get_settings.cache_clear()
    set_db(None)
    reset_manager()

    yield get_settings()

    get_settings.cache_clear()
    set_db(None)
    reset_manager()
