"""
Concurrency context: a unit of work with optimistic concurrency checks.

Tracks the people loaded through it, remembers their state as of load time
and saves changes with conditioned updates. A save whose condition no longer
matches the stored row fails with ConcurrencyConflictError.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, TypeVar

from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import make_transient

from occ_repro.core.config import Settings, TokenSource
from occ_repro.core.exceptions import (
    BackendTimeoutError,
    ConcurrencyConflictError,
    RecordNotFoundError,
)
from occ_repro.models.person import Person
from occ_repro.services.person_repository import PersonRepository
from occ_repro.services.retry_service import call_with_retry

logger = logging.getLogger("occ-repro.services.concurrency_context")

T = TypeVar("T")


class EntryState(str, Enum):
    """Lifecycle of a record inside one context"""

    UNMODIFIED = "unmodified"
    MODIFIED = "modified"
    SAVED = "saved"
    CONFLICTED = "conflicted"


@dataclass(eq=False)
class TrackedEntry:
    """
    A record tracked by a context together with its load-time snapshot.

    The snapshot is private to the context: assigning to record.row_version
    changes the record, never the snapshot.
    """

    record: Person
    snapshot: Dict[str, Any] = field(default_factory=dict)
    state: EntryState = EntryState.UNMODIFIED

    @property
    def person_id(self) -> int:
        return self.record.person_id

    @property
    def original_token(self) -> uuid.UUID:
        return self.snapshot["row_version"]

    def original_values(self) -> Dict[str, Any]:
        return dict(self.snapshot)

    def checked_values(self) -> Dict[str, Any]:
        """Load-time values of the concurrency-checked columns"""
        return {name: self.snapshot[name] for name in Person.CONCURRENCY_CHECKED}

    def changed_fields(self) -> Dict[str, Any]:
        """Fields (token included) whose current value differs from the snapshot"""
        current = self.record.values()
        return {
            name: value
            for name, value in current.items()
            if value != self.snapshot.get(name)
        }

    def detect_changes(self) -> EntryState:
        if self.state is EntryState.CONFLICTED:
            return self.state
        self.state = EntryState.MODIFIED if self.changed_fields() else EntryState.UNMODIFIED
        return self.state

    def accept(self, state: EntryState = EntryState.UNMODIFIED) -> None:
        """Take the record's current values as the new snapshot"""
        self.snapshot = self.record.values()
        self.state = state


class ConcurrencyContext:
    """
    Unit of work over one database session.

    Usage:
        >>> async with ConcurrencyContext(database.session_factory, settings) as ctx:
        ...     person = await ctx.load(person_id)
        ...     person.phone_number = "555-555-5556"
        ...     await ctx.save()

    Leaving the context closes the session. Unsaved changes are discarded and
    an exception inside the block rolls back the open transaction.

    Attributes:
        settings: Harness settings (token source, timeout, retries)
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        settings: Settings,
    ):
        self._session_factory = session_factory
        self.settings = settings
        self._session: Optional[AsyncSession] = None
        self._repository: Optional[PersonRepository] = None
        self._entries: Dict[int, TrackedEntry] = {}

    async def __aenter__(self) -> "ConcurrencyContext":
        self._session = self._session_factory()
        self._repository = PersonRepository(self._session)
        logger.debug("ConcurrencyContext: New session created")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._session is None:
            return

        try:
            if exc_type is not None:
                logger.warning(
                    f"ConcurrencyContext: Exception occurred ({exc_type.__name__}), "
                    f"rolling back transaction"
                )
            await self._session.rollback()
        finally:
            await self._session.close()
            logger.debug("ConcurrencyContext: Session closed")
            self._session = None
            self._repository = None
            self._entries.clear()

    @property
    def session(self) -> AsyncSession:
        """
        Current database session.

        Raises:
            RuntimeError: If the context has not been entered
        """
        if self._session is None:
            raise RuntimeError(
                "ConcurrencyContext is not in context. "
                "Use 'async with ConcurrencyContext(...) as ctx:'"
            )
        return self._session

    @property
    def repository(self) -> PersonRepository:
        if self._repository is None:
            raise RuntimeError(
                "ConcurrencyContext is not in context. "
                "Use 'async with ConcurrencyContext(...) as ctx:'"
            )
        return self._repository

    # ==================== Tracking ====================

    def entry(self, record: Person) -> TrackedEntry:
        """
        Tracking information for a record loaded through this context.

        Raises:
            ValueError: If the record is not tracked here
        """
        entry = self._entries.get(record.person_id)
        if entry is None or entry.record is not record:
            raise ValueError(f"Person {record.person_id} is not tracked by this context")
        return entry

    @property
    def entries(self) -> List[TrackedEntry]:
        return list(self._entries.values())

    def detect_changes(self) -> List[TrackedEntry]:
        """
        Compare every tracked record with its snapshot.

        Returns:
            Entries that a save would write
        """
        pending = []
        for entry in self._entries.values():
            state = entry.detect_changes()
            if state in (EntryState.MODIFIED, EntryState.CONFLICTED):
                pending.append(entry)
        return pending

    def _track(self, record: Person) -> TrackedEntry:
        entry = TrackedEntry(record=record)
        entry.accept()
        self._entries[record.person_id] = entry
        return entry

    # ==================== Operations ====================

    async def _with_retry(self, func: Callable[..., Awaitable[T]], *args) -> T:
        return await call_with_retry(
            func,
            *args,
            max_attempts=self.settings.retry_attempts,
            min_wait=self.settings.retry_min_wait,
            max_wait=self.settings.retry_max_wait,
            on_transient=self.session.rollback,
        )

    async def insert(self, person: Person) -> int:
        """
        Persist a new person and start tracking it.

        Args:
            person: New person; gets a token if it has none

        Returns:
            Generated person id

        Raises:
            TransientBackendError: If the backend kept failing
        """
        person_id = await self._with_retry(self._insert_attempt, person, person.person_id)
        self._track(person)

        logger.info(
            f"Person {person_id} inserted",
            extra={"person_id": person_id, "row_version": str(person.row_version)},
        )
        return person_id

    async def _insert_attempt(self, person: Person, person_id: Optional[int]) -> int:
        if inspect(person).detached:
            # Flushed by an attempt that was rolled back
            make_transient(person)
            person.person_id = person_id

        new_id = await self.repository.insert(person)
        await self.session.commit()
        return new_id

    async def _read(self, person_id: int) -> Optional[Person]:
        """Select a person and end the read transaction"""
        person = await self.repository.select_by_id(person_id)
        await self.session.rollback()
        return person

    async def load(self, person_id: int) -> Person:
        """
        Load a person and remember its current state.

        Loading an id that is already tracked refreshes the tracked record in
        place and returns it. No transaction stays open after the read.

        Raises:
            RecordNotFoundError: If the person does not exist
            TransientBackendError: If the backend kept failing
        """
        tracked = self._entries.get(person_id)
        if tracked is not None:
            await self.reload(tracked.record)
            return tracked.record

        person = await self._with_retry(self._read, person_id)
        if person is None:
            raise RecordNotFoundError(person_id)

        self._track(person)
        logger.debug(
            f"Person {person_id} loaded",
            extra={"person_id": person_id, "row_version": str(person.row_version)},
        )
        return person

    async def reload(self, record: Person) -> Person:
        """
        Overwrite a tracked record with the stored state.

        Discards local changes and clears a conflict.

        Raises:
            RecordNotFoundError: If the row no longer exists
        """
        entry = self.entry(record)
        fresh = await self._with_retry(self._read, record.person_id)
        if fresh is None:
            raise RecordNotFoundError(record.person_id)

        for name, value in fresh.values().items():
            setattr(record, name, value)
        entry.accept()

        logger.debug(
            f"Person {record.person_id} reloaded",
            extra={"person_id": record.person_id, "row_version": str(record.row_version)},
        )
        return record

    async def save(self) -> int:
        """
        Write all modified records in one transaction.

        Each record is written with a conditioned update and a fresh token.
        Transient backend errors are retried; each attempt is bounded by
        settings.command_timeout.

        Returns:
            Number of records written

        Raises:
            ConcurrencyConflictError: If any conditioned update matched no row
            TransientBackendError: If the backend kept failing
        """
        pending = self.detect_changes()
        if not pending:
            logger.debug("ConcurrencyContext: Nothing to save")
            return 0

        # Tokens of the last attempt that reached commit
        committing: Dict[int, uuid.UUID] = {}
        written = await self._with_retry(self._timed_save_attempt, pending, committing)

        for entry, token in written:
            entry.record.row_version = token
            entry.accept(EntryState.SAVED)
            logger.info(
                f"Person {entry.person_id} saved",
                extra={"person_id": entry.person_id, "row_version": str(token)},
            )
        return len(written)

    async def _timed_save_attempt(
        self, pending: List[TrackedEntry], committing: Dict[int, uuid.UUID]
    ) -> List[Tuple[TrackedEntry, uuid.UUID]]:
        timeout = self.settings.command_timeout
        try:
            return await asyncio.wait_for(
                self._save_attempt(pending, committing), timeout=timeout
            )
        except asyncio.TimeoutError as e:
            raise BackendTimeoutError("save", timeout) from e

    async def _save_attempt(
        self, pending: List[TrackedEntry], committing: Dict[int, uuid.UUID]
    ) -> List[Tuple[TrackedEntry, uuid.UUID]]:
        written = []
        for entry in pending:
            expected = await self._expected_token(entry)
            new_token = uuid.uuid4()

            values = {
                name: value
                for name, value in entry.changed_fields().items()
                if name != "row_version"
            }
            values["row_version"] = new_token

            rows_affected = 0
            if expected is not None:
                rows_affected = await self.repository.conditional_update(
                    entry.person_id,
                    values,
                    expected_token=expected,
                    expected_values=entry.checked_values(),
                )

            if rows_affected == 0:
                await self.session.rollback()
                current = await self.repository.select_token(entry.person_id)
                await self.session.rollback()

                if current is not None and current == committing.get(entry.person_id):
                    # The previous attempt committed before it was interrupted
                    logger.info(
                        f"Save of person {entry.person_id} already committed",
                        extra={"person_id": entry.person_id, "row_version": str(current)},
                    )
                    return [(each, committing[each.person_id]) for each in pending]

                entry.state = EntryState.CONFLICTED
                logger.warning(
                    f"Concurrency conflict on person {entry.person_id}",
                    extra={
                        "person_id": entry.person_id,
                        "expected_token": str(expected),
                        "current_token": str(current),
                        "token_source": self.settings.token_source.value,
                    },
                )
                raise ConcurrencyConflictError(entry.person_id, expected, current)

            written.append((entry, new_token))

        committing.clear()
        committing.update((entry.person_id, token) for entry, token in written)
        await self.session.commit()
        return written

    async def _expected_token(self, entry: TrackedEntry) -> Optional[uuid.UUID]:
        source = self.settings.token_source
        if source is TokenSource.RECORD:
            return entry.record.row_version
        if source is TokenSource.SERVER:
            return await self.repository.select_token(entry.person_id)
        return entry.original_token
