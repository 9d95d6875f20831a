"""Person repository: the backend operations the session builds on"""

import logging
import uuid
from typing import Any, Mapping

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from occ_repro.models.person import Person

logger = logging.getLogger("occ-repro.services.person_repository")


class PersonRepository:
    """
    SQL operations on the people table.

    The repository never commits; transaction boundaries belong to the caller.
    Records it returns are detached from the session's identity map.
    """

    def __init__(self, db: AsyncSession):
        self._db = db

    async def insert(self, person: Person) -> int:
        """
        Insert a new person.

        Assigns an initial token if the record has none.

        Args:
            person: Transient person record

        Returns:
            Generated person id
        """
        if person.row_version is None:
            person.row_version = uuid.uuid4()

        self._db.add(person)
        await self._db.flush()
        self._db.expunge(person)

        logger.debug(
            f"Inserted person {person.person_id}",
            extra={"person_id": person.person_id, "row_version": str(person.row_version)},
        )
        return person.person_id

    async def select_by_id(self, person_id: int) -> Person | None:
        """
        Read the persisted state of a person.

        Always hits the database, never the identity map.

        Args:
            person_id: Person id

        Returns:
            Detached person or None if not found
        """
        result = await self._db.execute(
            select(Person)
            .where(Person.person_id == person_id)
            .execution_options(populate_existing=True)
        )
        person = result.scalar_one_or_none()
        if person is not None:
            self._db.expunge(person)
        return person

    async def select_token(self, person_id: int) -> uuid.UUID | None:
        """
        Read only the current version token of a person.

        Returns:
            Stored token or None if the row does not exist
        """
        result = await self._db.execute(
            select(Person.row_version).where(Person.person_id == person_id)
        )
        return result.scalar_one_or_none()

    async def conditional_update(
        self,
        person_id: int,
        values: Mapping[str, Any],
        expected_token: uuid.UUID,
        expected_values: Mapping[str, Any] | None = None,
    ) -> int:
        """
        Update a person only if its stored state still matches.

        The WHERE clause requires the stored token to equal expected_token and
        every column in expected_values to equal the given value (NULL-safe).

        Args:
            person_id: Person id
            values: Columns to write, including the new token
            expected_token: Token the row must still hold
            expected_values: Concurrency-checked columns and their load-time values

        Returns:
            Number of rows affected, 0 signals a conflict
        """
        conditions = [
            Person.person_id == person_id,
            Person.row_version == expected_token,
        ]
        for field, expected in (expected_values or {}).items():
            column = getattr(Person, field)
            if expected is None:
                conditions.append(column.is_(None))
            else:
                conditions.append(column == expected)

        result = await self._db.execute(
            update(Person)
            .where(*conditions)
            .values(**dict(values))
            .execution_options(synchronize_session=False)
        )
        rows_affected = result.rowcount

        logger.debug(
            f"Conditional update of person {person_id} affected {rows_affected} row(s)",
            extra={
                "person_id": person_id,
                "expected_token": str(expected_token),
                "rows_affected": rows_affected,
            },
        )
        return rows_affected

    async def count(self) -> int:
        """Number of stored people"""
        result = await self._db.execute(select(func.count()).select_from(Person))
        return result.scalar_one()
