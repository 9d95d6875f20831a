"""
Integration tests for PersonRepository against a real SQLite database.
"""
import uuid

import pytest
import pytest_asyncio

from occ_repro.models import Person
from occ_repro.services.person_repository import PersonRepository

from tests.conftest import make_person


@pytest_asyncio.fixture
async def db(database):
    async with database.session_factory() as session:
        yield session
        await session.rollback()


class TestInsertAndSelect:
    """Test insert and lookups."""

    @pytest.mark.asyncio
    async def test_insert_assigns_id(self, db):
        repository = PersonRepository(db)
        person_id = await repository.insert(make_person())
        await db.commit()

        assert isinstance(person_id, int)
        assert await repository.count() == 1

    @pytest.mark.asyncio
    async def test_insert_assigns_token_when_missing(self, db):
        repository = PersonRepository(db)
        person = Person(name="Jane Roe", phone_number="555-000-0000")
        await repository.insert(person)
        await db.commit()

        assert isinstance(person.row_version, uuid.UUID)
        assert await repository.select_token(person.person_id) == person.row_version

    @pytest.mark.asyncio
    async def test_select_by_id_reads_stored_state(self, db):
        repository = PersonRepository(db)
        person = make_person()
        person_id = await repository.insert(person)
        await db.commit()

        loaded = await repository.select_by_id(person_id)

        assert loaded is not person
        assert loaded.values() == person.values()

    @pytest.mark.asyncio
    async def test_select_by_id_missing(self, db):
        assert await PersonRepository(db).select_by_id(999) is None

    @pytest.mark.asyncio
    async def test_select_token_missing(self, db):
        assert await PersonRepository(db).select_token(999) is None


class TestConditionalUpdate:
    """Test the conditioned update."""

    @pytest_asyncio.fixture
    async def stored(self, db):
        person = make_person()
        await PersonRepository(db).insert(person)
        await db.commit()
        return person

    @pytest.mark.asyncio
    async def test_matching_token_updates_row(self, db, stored):
        repository = PersonRepository(db)
        new_token = uuid.uuid4()

        rows = await repository.conditional_update(
            stored.person_id,
            {"phone_number": "555-555-5556", "row_version": new_token},
            expected_token=stored.row_version,
        )
        await db.commit()

        assert rows == 1
        loaded = await repository.select_by_id(stored.person_id)
        assert loaded.phone_number == "555-555-5556"
        assert loaded.row_version == new_token

    @pytest.mark.asyncio
    async def test_stale_token_affects_no_rows(self, db, stored):
        repository = PersonRepository(db)

        rows = await repository.conditional_update(
            stored.person_id,
            {"phone_number": "555-555-5556", "row_version": uuid.uuid4()},
            expected_token=uuid.uuid4(),
        )

        assert rows == 0
        loaded = await repository.select_by_id(stored.person_id)
        assert loaded.phone_number == "555-555-5555"
        assert loaded.row_version == stored.row_version

    @pytest.mark.asyncio
    async def test_checked_values_must_match(self, db, stored):
        repository = PersonRepository(db)

        rows = await repository.conditional_update(
            stored.person_id,
            {"phone_number": "555-555-5556", "row_version": uuid.uuid4()},
            expected_token=stored.row_version,
            expected_values={"name": "Someone Else", "social_security_number": "123-45-6789"},
        )

        assert rows == 0

    @pytest.mark.asyncio
    async def test_null_checked_value_matches_null_column(self, db):
        repository = PersonRepository(db)
        person = make_person(name=None)
        await repository.insert(person)
        await db.commit()

        rows = await repository.conditional_update(
            person.person_id,
            {"phone_number": "555-555-5556", "row_version": uuid.uuid4()},
            expected_token=person.row_version,
            expected_values={"name": None, "social_security_number": "123-45-6789"},
        )

        assert rows == 1

    @pytest.mark.asyncio
    async def test_missing_row_affects_no_rows(self, db):
        rows = await PersonRepository(db).conditional_update(
            404,
            {"phone_number": "555-555-5556", "row_version": uuid.uuid4()},
            expected_token=uuid.uuid4(),
        )
        assert rows == 0
