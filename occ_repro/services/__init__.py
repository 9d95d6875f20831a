"""Services: repository, concurrency context, retries and scenarios"""

from occ_repro.services.concurrency_context import (
    ConcurrencyContext,
    EntryState,
    TrackedEntry,
)
from occ_repro.services.person_repository import PersonRepository
from occ_repro.services.scenario import (
    Outcome,
    ParallelResult,
    ScenarioResult,
    run_parallel_scenario,
    run_scenario,
)

__all__ = [
    "ConcurrencyContext",
    "EntryState",
    "Outcome",
    "ParallelResult",
    "PersonRepository",
    "ScenarioResult",
    "TrackedEntry",
    "run_parallel_scenario",
    "run_scenario",
]
