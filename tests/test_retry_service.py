"""
Tests for retry service with exponential backoff.
"""
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

from occ_repro.core.exceptions import (
    BackendTimeoutError,
    ConcurrencyConflictError,
    TransientBackendError,
)
from occ_repro.services.retry_service import call_with_retry, is_transient_db_error


def locked_error() -> OperationalError:
    return OperationalError("UPDATE people", {}, Exception("database is locked"))


class TestTransientErrorDetection:
    """Test detection of transient errors."""

    def test_operational_error_is_transient(self):
        assert is_transient_db_error(locked_error()) is True

    def test_invalidated_connection_is_transient(self):
        error = DBAPIError("SELECT 1", {}, Exception("gone"), connection_invalidated=True)
        assert is_transient_db_error(error) is True

    def test_timeout_is_transient(self):
        assert is_transient_db_error(BackendTimeoutError("save", 1.0)) is True
        assert is_transient_db_error(TimeoutError()) is True

    def test_integrity_error_is_not_transient(self):
        error = IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed"))
        assert is_transient_db_error(error) is False

    def test_conflict_is_not_transient(self):
        assert is_transient_db_error(ConcurrencyConflictError(1, None)) is False


class TestCallWithRetry:
    """Test call_with_retry."""

    @pytest.mark.asyncio
    async def test_success_without_retry(self):
        func = AsyncMock(return_value=3)
        assert await call_with_retry(func, "a", min_wait=0, max_wait=0) == 3
        func.assert_awaited_once_with("a")

    @pytest.mark.asyncio
    async def test_transient_error_is_retried(self):
        func = AsyncMock(side_effect=[locked_error(), locked_error(), "ok"])
        rollback = AsyncMock()

        result = await call_with_retry(
            func, max_attempts=3, min_wait=0, max_wait=0, on_transient=rollback
        )

        assert result == "ok"
        assert func.await_count == 3
        assert rollback.await_count == 2

    @pytest.mark.asyncio
    async def test_attempts_exhausted(self):
        func = AsyncMock(side_effect=locked_error())

        with pytest.raises(TransientBackendError) as exc_info:
            await call_with_retry(func, max_attempts=2, min_wait=0, max_wait=0)

        assert func.await_count == 2
        assert isinstance(exc_info.value.__cause__, OperationalError)

    @pytest.mark.asyncio
    async def test_conflict_is_not_retried(self):
        func = AsyncMock(side_effect=ConcurrencyConflictError(1, None))
        rollback = AsyncMock()

        with pytest.raises(ConcurrencyConflictError):
            await call_with_retry(func, max_attempts=5, min_wait=0, max_wait=0, on_transient=rollback)

        assert func.await_count == 1
        rollback.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_transient_harness_error_kept(self):
        func = AsyncMock(side_effect=BackendTimeoutError("save", 0.5))

        with pytest.raises(BackendTimeoutError):
            await call_with_retry(func, max_attempts=2, min_wait=0, max_wait=0)

        assert func.await_count == 2
