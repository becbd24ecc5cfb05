"""
Pytest configuration and global fixtures
"""
import pytest
import tempfile
from pathlib import Path
from fastapi.testclient import TestClient

from chatvault import config
from chatvault import main
from chatvault.db import DB
from chatvault.ingest_chatgpt import import_bytes
from chatvault.query import RecentList
from tests.fixtures.mock_data import MockExports, as_bytes


@pytest.fixture
def temp_db_path():
    """Create temporary database path"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield str(Path(tmpdir) / "conversations.sqlite3")


@pytest.fixture
def db(temp_db_path):
    """Open unit of work on an empty store"""
    with DB(temp_db_path) as database:
        yield database


@pytest.fixture
def simple_export_bytes():
    return as_bytes(MockExports.simple_export())


@pytest.fixture
def full_export_bytes():
    return as_bytes(MockExports.full_export())


@pytest.fixture
def populated_db_path(temp_db_path, full_export_bytes):
    """Store loaded from the full sample export"""
    import_bytes(full_export_bytes, temp_db_path)
    return temp_db_path


@pytest.fixture
def client(temp_db_path, monkeypatch):
    """Test client bound to a temporary store with fresh recency lists"""
    monkeypatch.setattr(config, "DB_PATH", Path(temp_db_path))
    monkeypatch.setattr(config, "DATA_DIR", Path(temp_db_path).parent)
    monkeypatch.setattr(main, "recent_folders", RecentList(3))
    monkeypatch.setattr(main, "recent_tags", RecentList(3))
    with TestClient(main.app) as test_client:
        yield test_client
