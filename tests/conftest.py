"""
Global test fixtures.

Every test that touches storage gets its own SQLite file under tmp_path, so
concurrent sessions behave like production (WAL, busy timeout) and tests never
share state.
"""
import os
import sys

import pytest

# project root first on sys.path
_project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from core.config import settings  # noqa: E402
from core.container import Container  # noqa: E402
from core.database import Database  # noqa: E402
from core.db_init import init_db  # noqa: E402
from core.event_bus import EventBus  # noqa: E402


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"


@pytest.fixture
async def database(db_url):
    database = Database(db_url)
    await init_db(database)
    yield database
    await database.close()


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
async def container(db_url):
    container = Container(db_url=db_url)
    await container.start()
    yield container
    await container.close()


@pytest.fixture(autouse=True)
def _test_settings(monkeypatch):
    """Fast retries and the default thresholds regardless of the local .env"""
    monkeypatch.setattr(settings, "DB_LOCK_RETRIES", 3)
    monkeypatch.setattr(settings, "IDENTITY_AUTO_MIGRATE", True)
    monkeypatch.setattr(settings, "NOTIFY_MATCH_DISTANCE", 3)
    monkeypatch.setattr(settings, "NOTIFY_GOOD_MATCH_DISTANCE", 2)
