"""
Pytest configuration and fixtures.

Every test gets its own SQLite database file under tmp_path so that several
sessions can share it.
"""
import uuid

import pytest
import pytest_asyncio

from occ_repro.core.config import Settings
from occ_repro.models import Database, Person


@pytest.fixture
def settings(tmp_path):
    """Settings pointing at a fresh SQLite file, with fast retries"""
    return Settings(
        _env_file=None,
        connection_string=f"sqlite:///{tmp_path / 'occ.db'}",
        command_timeout=10.0,
        retry_attempts=5,
        retry_min_wait=0.01,
        retry_max_wait=0.05,
    )


@pytest_asyncio.fixture
async def database(settings):
    """Database with the schema created"""
    db = Database(settings)
    await db.create_schema()
    yield db
    await db.dispose()


def make_person(**overrides) -> Person:
    values = {
        "name": "John Doe",
        "phone_number": "555-555-5555",
        "social_security_number": "123-45-6789",
        "row_version": uuid.uuid4(),
    }
    values.update(overrides)
    return Person(**values)
