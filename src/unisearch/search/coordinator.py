"""Synchronization coordinator applying record lifecycle events to the index."""

import asyncio
import zlib
from dataclasses import dataclass, field
from enum import Enum

import structlog

from unisearch.events.hub import BroadcastHub
from unisearch.events.types import EventType, LifecycleEvent
from unisearch.records.registry import SourceRegistry, UnknownRecordTypeError
from unisearch.search.errors import StorageError, ValidationError
from unisearch.search.projection import project_record
from unisearch.search.schemas import FlaggedKey, OriginKey, Projection, SyncStatus
from unisearch.search.store import IndexStore

logger = structlog.get_logger()


class SyncOutcome(str, Enum):
    """Effect of applying one job to the index."""

    UPSERTED = "upserted"
    UNCHANGED = "unchanged"
    REMOVED = "removed"
    ABSENT = "absent"
    FAILED = "failed"


@dataclass
class _Job:
    """Queued unit of work for one origin key.

    A job either replays a lifecycle event or, when event is None, refreshes
    the key from the record's current state in its source.
    """

    key: OriginKey
    event: LifecycleEvent | None = None
    done: asyncio.Future[SyncOutcome] | None = field(default=None, repr=False)

    @property
    def label(self) -> str:
        return self.event.type.value if self.event is not None else "refresh"


def shard_for(key: OriginKey, shards: int) -> int:
    """Stable shard index for an origin key."""
    origin_type, origin_id = key
    return zlib.crc32(f"{origin_type}\x00{origin_id}".encode()) % shards


class SyncCoordinator:
    """Keeps the index consistent with record lifecycle events.

    Jobs are routed to shard queues by origin key. Each shard applies its
    jobs one at a time, so events for one record are applied in the order
    they were submitted while different records proceed concurrently.

    Per-record transitions, derived from whether an entry exists:

    - created or updated: upsert (an update without an entry creates it,
      a repeated create only refreshes it)
    - deleted: remove (no-op when already absent)

    Storage failures are retried with exponential backoff up to
    max_attempts. Exhausted or invalid jobs are logged, reported on the
    system topic and their key is flagged for reconciliation.
    """

    def __init__(
        self,
        store: IndexStore,
        registry: SourceRegistry,
        workers: int = 4,
        max_attempts: int = 3,
        backoff_base: float = 0.05,
        backoff_max: float = 2.0,
        reporter: BroadcastHub | None = None,
    ) -> None:
        """Initialize coordinator (call start() before submitting).

        Args:
            store: Index store to write to.
            registry: Record sources, for projections and refreshes.
            workers: Number of shard queues.
            max_attempts: Attempts per job before giving up.
            backoff_base: Delay before the first retry, in seconds.
            backoff_max: Upper bound for any retry delay.
            reporter: Hub publishing failures on the system topic.
        """
        if workers < 1:
            raise ValueError("workers must be at least 1")
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        self._store = store
        self._registry = registry
        self._workers = workers
        self._max_attempts = max_attempts
        self._backoff_base = backoff_base
        self._backoff_max = backoff_max
        self._reporter = reporter

        self._queues: list[asyncio.Queue[_Job]] = []
        self._tasks: list[asyncio.Task[None]] = []
        self._flagged: dict[OriginKey, str] = {}
        self._in_flight = 0
        self._applied = 0
        self._retried = 0
        self._failed = 0

    @property
    def running(self) -> bool:
        """Whether shard workers are active."""
        return bool(self._tasks)

    @property
    def flagged(self) -> dict[OriginKey, str]:
        """Keys awaiting reconciliation, with the reason they were flagged."""
        return dict(self._flagged)

    def clear_flag(self, key: OriginKey) -> None:
        """Forget a flagged key once it has been repaired."""
        self._flagged.pop(key, None)

    def start(self) -> None:
        """Start one worker task per shard."""
        if self._tasks:
            return
        self._queues = [asyncio.Queue() for _ in range(self._workers)]
        self._tasks = [
            asyncio.create_task(self._run_shard(queue), name=f"search-sync-{i}")
            for i, queue in enumerate(self._queues)
        ]
        logger.info("search_sync_started", workers=self._workers)

    async def stop(self) -> None:
        """Cancel shard workers; queued jobs are abandoned."""
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        abandoned = 0
        for queue in self._queues:
            while not queue.empty():
                job = queue.get_nowait()
                if job.done is not None and not job.done.done():
                    job.done.cancel()
                abandoned += 1
        self._queues = []
        logger.info("search_sync_stopped", abandoned_jobs=abandoned)

    def _enqueue(self, job: _Job) -> None:
        if not self._tasks:
            raise RuntimeError("Sync coordinator is not running; call start() first")
        self._queues[shard_for(job.key, self._workers)].put_nowait(job)

    async def submit(self, event: LifecycleEvent) -> None:
        """Queue a lifecycle event for its record's shard.

        Raises:
            RuntimeError: If the coordinator is not running.
        """
        self._enqueue(_Job(key=event.origin_key, event=event))

    async def apply(self, event: LifecycleEvent) -> SyncOutcome:
        """Queue a lifecycle event and wait until it has been applied."""
        job = _Job(
            key=event.origin_key,
            event=event,
            done=asyncio.get_running_loop().create_future(),
        )
        self._enqueue(job)
        return await job.done

    async def refresh(self, origin_type: str, origin_id: object) -> SyncOutcome:
        """Re-sync one key from its record's current state.

        The record is read from its source when the job runs, after every
        event queued before it for the same key, so a refresh never
        overwrites a newer projection with an older one.

        Returns:
            UPSERTED or UNCHANGED when the record exists, REMOVED or ABSENT
            when it does not, FAILED when the refresh gave up.
        """
        job = _Job(
            key=(origin_type, str(origin_id)),
            done=asyncio.get_running_loop().create_future(),
        )
        self._enqueue(job)
        return await job.done

    async def drain(self) -> None:
        """Wait until every queued job has been processed."""
        await asyncio.gather(*(queue.join() for queue in self._queues))

    def status(self) -> SyncStatus:
        """Snapshot of counters, pending work and flagged keys."""
        pending = sum(queue.qsize() for queue in self._queues) + self._in_flight
        return SyncStatus(
            running=self.running,
            applied=self._applied,
            retried=self._retried,
            failed=self._failed,
            pending=pending,
            flagged=[
                FlaggedKey(origin_type=t, origin_id=i, reason=reason)
                for (t, i), reason in sorted(self._flagged.items())
            ],
        )

    async def _run_shard(self, queue: asyncio.Queue[_Job]) -> None:
        while True:
            job = await queue.get()
            self._in_flight += 1
            try:
                outcome = await self._process(job)
            except asyncio.CancelledError:
                if job.done is not None and not job.done.done():
                    job.done.cancel()
                raise
            else:
                if job.done is not None and not job.done.done():
                    job.done.set_result(outcome)
            finally:
                self._in_flight -= 1
                queue.task_done()

    def _backoff(self, attempt: int) -> float:
        return min(self._backoff_base * 2 ** (attempt - 1), self._backoff_max)

    async def _process(self, job: _Job) -> SyncOutcome:
        """Apply a job with bounded retries on storage failures."""
        origin_type, origin_id = job.key

        for attempt in range(1, self._max_attempts + 1):
            try:
                outcome = await asyncio.to_thread(self._apply, job)
            except StorageError as e:
                if attempt >= self._max_attempts:
                    await self._fail(job, f"storage: {e}", attempt)
                    return SyncOutcome.FAILED
                delay = self._backoff(attempt)
                self._retried += 1
                logger.warning(
                    "search_sync_retry",
                    origin_type=origin_type,
                    origin_id=origin_id,
                    job=job.label,
                    attempt=attempt,
                    delay_seconds=delay,
                    error=str(e),
                )
                await asyncio.sleep(delay)
            except (ValidationError, UnknownRecordTypeError) as e:
                await self._fail(job, f"invalid: {e}", attempt)
                return SyncOutcome.FAILED
            except Exception as e:
                logger.exception(
                    "search_sync_crashed",
                    origin_type=origin_type,
                    origin_id=origin_id,
                    job=job.label,
                )
                await self._fail(job, f"error: {e}", attempt)
                return SyncOutcome.FAILED
            else:
                self._applied += 1
                self._flagged.pop(job.key, None)
                logger.debug(
                    "search_sync_applied",
                    origin_type=origin_type,
                    origin_id=origin_id,
                    job=job.label,
                    outcome=outcome.value,
                )
                return outcome

        return SyncOutcome.FAILED

    async def _fail(self, job: _Job, reason: str, attempts: int) -> None:
        """Record a given-up job: count, flag, log and report it."""
        origin_type, origin_id = job.key
        self._failed += 1
        self._flagged[job.key] = reason
        logger.error(
            "search_sync_failed",
            origin_type=origin_type,
            origin_id=origin_id,
            job=job.label,
            attempts=attempts,
            reason=reason,
        )
        if self._reporter is not None:
            await self._reporter.report(
                EventType.SYNC_FAILED,
                origin_type=origin_type,
                origin_id=origin_id,
                job=job.label,
                attempts=attempts,
                reason=reason,
            )

    # Runs in a worker thread; only touches the store and record sources.

    def _apply(self, job: _Job) -> SyncOutcome:
        origin_type, origin_id = job.key
        event = job.event

        if event is None:
            return self._refresh_key(origin_type, origin_id)

        if event.type is EventType.RECORD_DELETED:
            return self._remove(origin_type, origin_id)

        if event.record is None:
            raise ValidationError(
                f"{event.type.value} event carries no record",
                origin_type=origin_type,
                origin_id=origin_id,
            )
        source = self._registry.get(origin_type)
        projection = project_record(source, event.record)
        return self._upsert(origin_type, origin_id, projection, event.type)

    def _refresh_key(self, origin_type: str, origin_id: str) -> SyncOutcome:
        try:
            source = self._registry.get(origin_type)
        except UnknownRecordTypeError:
            # nothing can confirm the record exists
            return self._remove(origin_type, origin_id)

        record = source.get(origin_id)
        if record is None:
            return self._remove(origin_type, origin_id)
        return self._upsert(origin_type, origin_id, project_record(source, record), None)

    def _upsert(
        self,
        origin_type: str,
        origin_id: str,
        projection: Projection,
        event_type: EventType | None,
    ) -> SyncOutcome:
        existing = self._store.find_by_origin(origin_type, origin_id)

        if existing is None and event_type is EventType.RECORD_UPDATED:
            logger.info(
                "search_sync_implicit_create",
                origin_type=origin_type,
                origin_id=origin_id,
            )
        elif existing is not None and event_type is EventType.RECORD_CREATED:
            logger.info(
                "search_sync_duplicate_create",
                origin_type=origin_type,
                origin_id=origin_id,
                entry_id=existing.id,
            )

        self._store.upsert(origin_type, origin_id, projection)
        if existing is not None and existing.projection() == projection:
            return SyncOutcome.UNCHANGED
        return SyncOutcome.UPSERTED

    def _remove(self, origin_type: str, origin_id: str) -> SyncOutcome:
        if self._store.remove(origin_type, origin_id):
            return SyncOutcome.REMOVED
        return SyncOutcome.ABSENT
