"""Reconciliation sweep restoring index invariants after drift."""

import asyncio

import structlog

from unisearch.events.hub import BroadcastHub
from unisearch.events.types import EventType
from unisearch.records.registry import SourceRegistry
from unisearch.search.coordinator import SyncCoordinator, SyncOutcome
from unisearch.search.errors import ConsistencyViolation, StorageError, ValidationError
from unisearch.search.projection import project_record
from unisearch.search.schemas import OriginKey, Projection, ReconcileReport
from unisearch.search.store import IndexStore

logger = structlog.get_logger()


class Reconciler:
    """Compares live records against the index and repairs the difference.

    Repairs of registered record types go through the coordinator's refresh
    jobs, so they serialize with lifecycle events for the same record and
    always write the record's state at repair time. Entries of unregistered
    types cannot be confirmed by any source and are removed directly.

    Only one sweep runs at a time.
    """

    def __init__(
        self,
        store: IndexStore,
        registry: SourceRegistry,
        coordinator: SyncCoordinator,
        reporter: BroadcastHub | None = None,
    ) -> None:
        """Initialize reconciler.

        Args:
            store: Index store to inspect and repair.
            registry: Sources listing the live records of each type.
            coordinator: Running coordinator performing keyed repairs.
            reporter: Hub publishing consistency violations.
        """
        self._store = store
        self._registry = registry
        self._coordinator = coordinator
        self._reporter = reporter
        self._lock = asyncio.Lock()

    async def reconcile(self) -> ReconcileReport:
        """Run one full reconciliation sweep.

        Returns:
            Counts of repaired entries, removed orphans, collapsed
            duplicates and keys that could not be repaired.

        Raises:
            StorageError: If the index cannot be read.
            RuntimeError: If the coordinator is not running.
        """
        async with self._lock:
            report = ReconcileReport()

            duplicates = await asyncio.to_thread(self._store.collapse_duplicates)
            for violation in duplicates:
                report.duplicates_collapsed += len(violation.entry_ids) - 1
                await self._report(violation)

            # Index before records: a record created between the two reads is
            # then live but unindexed (repaired), never indexed-but-unlisted.
            indexed = {
                entry.origin_key: entry
                for entry in await asyncio.to_thread(self._store.entries)
            }

            unknown: list[OriginKey] = []
            candidates: dict[OriginKey, str] = {}

            for key in indexed:
                if key[0] not in self._registry:
                    unknown.append(key)

            for source in self._registry:
                origin_type = source.origin_type
                live: dict[str, Projection] = {}
                invalid: set[str] = set()
                for record in source.iter_records():
                    origin_id = str(source.record_id(record))
                    try:
                        live[origin_id] = project_record(source, record)
                    except ValidationError as e:
                        # still exists; the refresh below reports the failure
                        invalid.add(origin_id)
                        logger.warning(
                            "search_reconcile_invalid_record",
                            origin_type=origin_type,
                            origin_id=origin_id,
                            error=str(e),
                        )

                for key in indexed:
                    if key[0] != origin_type:
                        continue
                    if key[1] not in live and key[1] not in invalid:
                        candidates[key] = "orphan"

                for origin_id in invalid:
                    candidates[(origin_type, origin_id)] = "invalid"

                for origin_id, projection in live.items():
                    entry = indexed.get((origin_type, origin_id))
                    if entry is None:
                        candidates[(origin_type, origin_id)] = "missing"
                    elif entry.projection() != projection:
                        candidates[(origin_type, origin_id)] = "stale"

            for key, reason in self._coordinator.flagged.items():
                candidates.setdefault(key, "flagged")

            for key in unknown:
                await self._report(ConsistencyViolation("unknown_type", *key))
                if await asyncio.to_thread(self._store.remove, *key):
                    report.orphans_removed += 1

            for key, kind in candidates.items():
                if kind == "orphan":
                    await self._report(ConsistencyViolation("orphan", *key))
                else:
                    logger.info(
                        "search_reconcile_drift",
                        origin_type=key[0],
                        origin_id=key[1],
                        kind=kind,
                    )

            keys = list(candidates)
            outcomes = await asyncio.gather(
                *(self._coordinator.refresh(*key) for key in keys)
            )
            for key, outcome in zip(keys, outcomes):
                if outcome is SyncOutcome.REMOVED:
                    report.orphans_removed += 1
                elif outcome is SyncOutcome.UPSERTED:
                    report.repaired += 1
                elif outcome is SyncOutcome.FAILED:
                    report.failed += 1

            logger.info("search_reconcile_completed", **report.model_dump())
            return report

    async def _report(self, violation: ConsistencyViolation) -> None:
        """Log and publish a violation regardless of the repair outcome."""
        logger.warning("search_consistency_violation", **violation.as_dict())
        if self._reporter is not None:
            await self._reporter.report(
                EventType.CONSISTENCY_VIOLATION, **violation.as_dict()
            )


async def run_reconcile_schedule(reconciler: Reconciler, interval: float) -> None:
    """Run reconciliation every interval seconds until cancelled.

    A failed sweep is logged and retried at the next tick.

    Args:
        reconciler: Reconciler to run.
        interval: Seconds between sweeps.
    """
    logger.info("search_reconcile_schedule_started", interval_seconds=interval)
    try:
        while True:
            await asyncio.sleep(interval)
            try:
                await reconciler.reconcile()
            except StorageError as e:
                logger.error("search_reconcile_failed", error=str(e))
    except asyncio.CancelledError:
        logger.info("search_reconcile_schedule_stopped")
        raise
