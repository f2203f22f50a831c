"""Shared fixtures: settings, a throwaway database and a recording sleep."""

import pytest

from onescript.config import Settings
from onescript.db.database import Database

from .helpers import RecordingSleep


@pytest.fixture
def settings(tmp_path):
    return Settings(
        google_api_key="test-key",
        database_path=str(tmp_path / "test.db"),
        upload_dir=str(tmp_path / "uploads"),
        min_request_delay=0.0,
        backoff_base=1.0,
        backoff_jitter=1.0,
        sweep_interval=3600.0,
    )


@pytest.fixture
async def db(tmp_path):
    database = Database(str(tmp_path / "sources.db"))
    await database.connect()
    yield database
    await database.close()


@pytest.fixture
def fake_sleep():
    return RecordingSleep()
