"""
Lost-update reproduction scenarios.

run_scenario replays the classic sequence: two sessions load the same person,
the first saves, the second resets its token to the original value and saves.
run_parallel_scenario lets several sessions load and save concurrently.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from occ_repro.core.config import Settings
from occ_repro.core.exceptions import ConcurrencyConflictError
from occ_repro.models.database import Database
from occ_repro.models.person import Person
from occ_repro.services.concurrency_context import ConcurrencyContext

logger = logging.getLogger("occ-repro.services.scenario")

NAME = "John Doe"
SOCIAL_SECURITY_NUMBER = "123-45-6789"
ORIGINAL_PHONE = "555-555-5555"
FIRST_PHONE = "555-555-5556"
SECOND_PHONE = "555-555-5557"


class Outcome(str, Enum):
    CONFLICT_DETECTED = "conflict_detected"
    LOST_UPDATE = "lost_update"


@dataclass
class ScenarioResult:
    """What the sequential scenario observed"""

    outcome: Outcome
    person_id: int
    original_token: uuid.UUID
    first_token: uuid.UUID
    final_phone: Optional[str]
    final_token: uuid.UUID
    conflict: Optional[ConcurrencyConflictError] = None

    @property
    def conflict_detected(self) -> bool:
        return self.outcome is Outcome.CONFLICT_DETECTED


@dataclass
class EditorResult:
    """One concurrent editor's load-mutate-save attempt"""

    editor: int
    phone_number: str
    saved: bool
    conflict: Optional[ConcurrencyConflictError] = None


@dataclass
class ParallelResult:
    """What the concurrent scenario observed"""

    person_id: int
    editors: List[EditorResult] = field(default_factory=list)
    final_phone: Optional[str] = None

    @property
    def saved(self) -> int:
        return sum(1 for editor in self.editors if editor.saved)

    @property
    def conflicts(self) -> int:
        return sum(1 for editor in self.editors if not editor.saved)

    @property
    def outcome(self) -> Outcome:
        if self.saved > 1:
            return Outcome.LOST_UPDATE
        return Outcome.CONFLICT_DETECTED


async def seed_person(database: Database, settings: Settings) -> Person:
    """Recreate the schema and insert the scenario's person"""
    await database.reset_schema()

    person = Person(
        name=NAME,
        phone_number=ORIGINAL_PHONE,
        social_security_number=SOCIAL_SECURITY_NUMBER,
        row_version=uuid.uuid4(),
    )
    async with ConcurrencyContext(database.session_factory, settings) as ctx:
        await ctx.insert(person)
    return person


async def read_person(database: Database, settings: Settings, person_id: int) -> Person:
    async with ConcurrencyContext(database.session_factory, settings) as ctx:
        return await ctx.load(person_id)


async def run_scenario(database: Database, settings: Settings) -> ScenarioResult:
    """
    Run the sequential lost-update scenario.

    Args:
        database: Target database, its schema is recreated
        settings: Harness settings, token_source decides the outcome

    Returns:
        ScenarioResult with the observed outcome

    Raises:
        RecordNotFoundError: If the seeded person cannot be loaded back
    """
    original = await seed_person(database, settings)
    person_id = original.person_id
    original_token = original.row_version

    logger.info(
        f"Scenario started for person {person_id}",
        extra={"person_id": person_id, "token_source": settings.token_source.value},
    )

    conflict = None
    async with ConcurrencyContext(database.session_factory, settings) as first, \
            ConcurrencyContext(database.session_factory, settings) as second:
        person1 = await first.load(person_id)
        person2 = await second.load(person_id)

        person1.phone_number = FIRST_PHONE
        await first.save()
        first_token = person1.row_version

        # The stale editor asserts the token it started from
        person2.row_version = original_token
        person2.phone_number = SECOND_PHONE

        try:
            await second.save()
            outcome = Outcome.LOST_UPDATE
        except ConcurrencyConflictError as e:
            conflict = e
            outcome = Outcome.CONFLICT_DETECTED

    final = await read_person(database, settings, person_id)

    if outcome is Outcome.LOST_UPDATE:
        logger.error(
            f"Lost update: second save overwrote phone {FIRST_PHONE} with {final.phone_number}",
            extra={"person_id": person_id, "final_token": str(final.row_version)},
        )
    else:
        logger.info(
            "Conflict detected: second save was rejected",
            extra={"person_id": person_id, "final_token": str(final.row_version)},
        )

    return ScenarioResult(
        outcome=outcome,
        person_id=person_id,
        original_token=original_token,
        first_token=first_token,
        final_phone=final.phone_number,
        final_token=final.row_version,
        conflict=conflict,
    )


async def run_parallel_scenario(
    database: Database,
    settings: Settings,
    editors: int = 2,
) -> ParallelResult:
    """
    Run concurrent load-mutate-save editors against one person.

    Every editor loads the row, waits until all editors have loaded it, then
    changes the phone number and saves, all at the same time.

    Args:
        database: Target database, its schema is recreated
        settings: Harness settings
        editors: Number of concurrent editors

    Returns:
        ParallelResult with each editor's outcome
    """
    if editors < 2:
        raise ValueError("At least two editors are required")

    original = await seed_person(database, settings)
    person_id = original.person_id
    barrier = asyncio.Barrier(editors)

    async def edit(editor: int) -> EditorResult:
        phone_number = f"555-555-{5600 + editor:04d}"
        async with ConcurrencyContext(database.session_factory, settings) as ctx:
            person = await ctx.load(person_id)
            await asyncio.wait_for(barrier.wait(), timeout=settings.command_timeout)

            person.phone_number = phone_number
            try:
                await ctx.save()
            except ConcurrencyConflictError as e:
                return EditorResult(editor, phone_number, saved=False, conflict=e)
            return EditorResult(editor, phone_number, saved=True)

    try:
        async with asyncio.TaskGroup() as group:
            tasks = [group.create_task(edit(editor)) for editor in range(editors)]
    except ExceptionGroup as e:
        # The group cancels the other editors; surface the first failure
        raise e.exceptions[0] from e

    results = [task.result() for task in tasks]
    final = await read_person(database, settings, person_id)

    result = ParallelResult(
        person_id=person_id,
        editors=list(results),
        final_phone=final.phone_number,
    )
    logger.info(
        f"Parallel scenario finished: {result.saved} saved, {result.conflicts} conflicted",
        extra={"person_id": person_id, "outcome": result.outcome.value},
    )
    return result
