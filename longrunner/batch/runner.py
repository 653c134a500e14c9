"""
Checkpointed batch runner.

Drives a Cursor for at most `budget` items per invocation, applies an item
action to each, and either completes or pauses with a checkpoint token that
resumes exactly after the last attempted item.
"""

import inspect
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from .checkpoint import Checkpoint, decode_checkpoint, encode_checkpoint
from .cursor import ALL_RECORDS, Cursor, OrderingKey, RecordFilter, RecordSource, WorkItem, resolve_filter
from .errors import CorruptCheckpoint, InvalidFilter, ItemActionFailure

logger = logging.getLogger(__name__)

DEFAULT_JOB_TYPE = "index_mentions"


class StepOutcome(str, Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


class RunStatus(str, Enum):
    COMPLETE = "complete"
    INCOMPLETE = "incomplete"


@dataclass(frozen=True)
class StepResult:
    """Outcome of applying the action to one item."""

    item_key: OrderingKey
    outcome: StepOutcome
    reason: Optional[str] = None

    @classmethod
    def success(cls, item: WorkItem) -> "StepResult":
        return cls(item.key, StepOutcome.SUCCESS)

    @classmethod
    def skipped(cls, item: WorkItem, reason: Optional[str] = None) -> "StepResult":
        return cls(item.key, StepOutcome.SKIPPED, reason)

    @classmethod
    def failed(cls, item: WorkItem, reason: str) -> "StepResult":
        return cls(item.key, StepOutcome.FAILED, reason)


@dataclass
class RunSummary:
    """Cumulative counters. `processed` counts every consumed item."""

    processed: int = 0
    failed: int = 0
    skipped: int = 0

    @property
    def succeeded(self) -> int:
        return self.processed - self.failed - self.skipped

    def record(self, result: StepResult):
        self.processed += 1
        if result.outcome == StepOutcome.FAILED:
            self.failed += 1
        elif result.outcome == StepOutcome.SKIPPED:
            self.skipped += 1

    def to_dict(self) -> Dict[str, int]:
        return {
            'processed': self.processed,
            'failed': self.failed,
            'skipped': self.skipped,
        }


@dataclass(frozen=True)
class Job:
    """A request to process a filtered set of records. Immutable once created."""

    record_filter: RecordFilter = ALL_RECORDS
    job_type: str = DEFAULT_JOB_TYPE
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())

    def __post_init__(self):
        if isinstance(self.record_filter, list):
            object.__setattr__(self, 'record_filter', tuple(self.record_filter))


@dataclass
class RunOutcome:
    """Result of one invocation: Complete, or Paused with a checkpoint token."""

    status: RunStatus
    job: Job
    summary: RunSummary
    results: List[StepResult] = field(default_factory=list)
    checkpoint: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return self.status == RunStatus.COMPLETE

    def to_dict(self) -> Dict[str, Any]:
        data = {'status': self.status.value}
        if self.checkpoint is not None:
            data['checkpoint'] = self.checkpoint
        data['summary'] = self.summary.to_dict()
        return data


ItemAction = Callable[[WorkItem], Any]


def dispatch_by_record_type(table: Mapping[str, ItemAction]) -> ItemAction:
    """
    Build an item action from an explicit record type -> action table.

    Items whose record type has no entry fail with a recorded reason.
    """
    table = dict(table)

    def action(item: WorkItem):
        handler = table.get(item.record_type)
        if handler is None:
            raise ItemActionFailure(
                f"No action registered for record type {item.record_type!r}",
                item_key=item.key
            )
        return handler(item)

    return action


class Runner:
    """
    Runs jobs over an explicit mapping of record sources.

    Features:
    - Iteration budget per invocation
    - Opaque, deterministic checkpoint tokens for resumption
    - Item-level failures recorded, never fatal
    - Cancellation and wall-clock limits honored between items only
    - Sync and coroutine item actions
    """

    def __init__(
        self,
        sources: Mapping[str, RecordSource],
        job_types: Iterable[str] = (DEFAULT_JOB_TYPE,),
        page_size: int = 100,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize runner.

        Args:
            sources: Record type -> source mapping; its order defines the
                order of the "all" filter
            job_types: Job types this runner accepts
            page_size: Number of records fetched per source query
            clock: Monotonic clock used for time limits
        """
        self.sources = dict(sources)
        self.job_types = frozenset(job_types)
        self.page_size = page_size
        self.clock = clock

    # ---------------- Setup ----------------

    def _prepare(
        self,
        job: Optional[Job],
        budget: int,
        resume_from: Optional[str]
    ) -> Tuple[Job, Cursor, RunSummary]:
        if isinstance(budget, bool) or not isinstance(budget, int) or budget < 0:
            raise ValueError(f"budget must be a non-negative integer, got {budget!r}")

        if resume_from is None:
            if job is None:
                raise ValueError("Either a job or a checkpoint to resume from is required")
            if job.job_type not in self.job_types:
                raise ValueError(f"Unknown job type: {job.job_type!r}")
            resolve_filter(self.sources, job.record_filter)
            cursor = Cursor.open(self.sources, job.record_filter, page_size=self.page_size)
            return job, cursor, RunSummary()

        checkpoint = decode_checkpoint(resume_from, job_types=self.job_types)
        if job is not None:
            logger.warning("Resuming from checkpoint; ignoring the job passed alongside it")

        resumed_job = Job(
            record_filter=checkpoint.record_filter,
            job_type=checkpoint.job_type,
            created_at=checkpoint.created_at or datetime.now().isoformat(),
        )
        try:
            cursor = Cursor.open(
                self.sources,
                checkpoint.record_filter,
                resume_from=checkpoint.position,
                page_size=self.page_size
            )
            # A resume key of the wrong type only surfaces when the source is queried
            if checkpoint.position is not None:
                cursor.has_next()
        except (InvalidFilter, ValueError, TypeError) as e:
            raise CorruptCheckpoint(f"Checkpoint does not match registered sources: {e}") from e

        summary = RunSummary(
            processed=checkpoint.processed,
            failed=checkpoint.failed,
            skipped=checkpoint.skipped
        )
        logger.info(f"Resuming {resumed_job.job_type} after {checkpoint.position!r} "
                    f"({summary.processed} items already processed)")
        return resumed_job, cursor, summary

    def _should_pause(
        self,
        consumed: int,
        budget: int,
        started: float,
        should_stop: Optional[Callable[[], bool]],
        time_limit: Optional[float]
    ) -> bool:
        if consumed >= budget:
            return True
        if should_stop is not None and should_stop():
            logger.info(f"Stop requested after {consumed} items")
            return True
        if time_limit is not None and self.clock() - started >= time_limit:
            logger.info(f"Time limit of {time_limit}s reached after {consumed} items")
            return True
        return False

    # ---------------- Item handling ----------------

    def _coerce(self, item: WorkItem, value: Any) -> StepResult:
        if isinstance(value, StepResult):
            return value
        if isinstance(value, StepOutcome):
            return StepResult(item.key, value)
        if value is False:
            return StepResult.skipped(item)
        return StepResult.success(item)

    def _failure(self, item: WorkItem, error: Exception) -> StepResult:
        if isinstance(error, ItemActionFailure):
            reason = error.reason
        else:
            reason = str(error) or type(error).__name__
        logger.warning(f"Item {item.key!r} failed: {reason}")
        return StepResult.failed(item, reason)

    def _apply(self, action: ItemAction, item: WorkItem) -> StepResult:
        try:
            value = action(item)
        except Exception as e:
            return self._failure(item, e)

        if inspect.isawaitable(value):
            if hasattr(value, 'close'):
                value.close()
            return StepResult.failed(item, "Coroutine actions require run_async()")
        return self._coerce(item, value)

    async def _apply_async(self, action: ItemAction, item: WorkItem) -> StepResult:
        try:
            value = action(item)
            if inspect.isawaitable(value):
                value = await value
        except Exception as e:
            return self._failure(item, e)
        return self._coerce(item, value)

    # ---------------- Completion ----------------

    def _initial_remaining(self, progress_callback, cursor: Cursor) -> Optional[int]:
        # Counted once per invocation, then decremented per consumed item
        if progress_callback is None:
            return None
        return cursor.remaining_count()

    def _report(self, progress_callback, summary: RunSummary, remaining: Optional[int]) -> Optional[int]:
        if remaining is not None:
            remaining = max(remaining - 1, 0)
        if progress_callback:
            progress = summary.to_dict()
            progress['remaining'] = remaining
            progress_callback(progress)
        return remaining

    def _finish(
        self,
        job: Job,
        cursor: Cursor,
        summary: RunSummary,
        results: List[StepResult],
        budget: int,
        exhausted: bool
    ) -> RunOutcome:
        # Budget 0 only inspects: always paused, position untouched.
        if not exhausted and budget > 0:
            exhausted = not cursor.has_next()

        if exhausted:
            logger.info(f"Job {job.job_type} complete: {summary.processed} processed, "
                        f"{summary.failed} failed, {summary.skipped} skipped")
            return RunOutcome(RunStatus.COMPLETE, job, summary, results)

        checkpoint = Checkpoint(
            job_type=job.job_type,
            record_filter=job.record_filter,
            position=cursor.current_key(),
            processed=summary.processed,
            failed=summary.failed,
            skipped=summary.skipped,
            created_at=job.created_at,
        )
        logger.info(f"Job {job.job_type} paused at {checkpoint.position!r}: "
                    f"{summary.processed} processed, {summary.failed} failed")
        return RunOutcome(RunStatus.INCOMPLETE, job, summary, results, encode_checkpoint(checkpoint))

    # ---------------- Public API ----------------

    def run(
        self,
        job: Optional[Job] = None,
        action: Optional[ItemAction] = None,
        budget: int = 100,
        resume_from: Optional[str] = None,
        should_stop: Optional[Callable[[], bool]] = None,
        time_limit: Optional[float] = None,
        progress_callback: Optional[Callable[[Dict], None]] = None
    ) -> RunOutcome:
        """
        Run a job (or resume one) for at most `budget` items.

        Args:
            job: Job to start; ignored when resuming
            action: Item action; return a StepResult, None/True (success) or
                False (skipped), or raise to mark the item failed
            budget: Maximum number of items to process in this invocation
            resume_from: Checkpoint token from a previous paused outcome
            should_stop: Cancellation check called between items
            time_limit: Wall-clock limit in seconds, checked between items
            progress_callback: Called with counters after each item

        Returns:
            RunOutcome, complete or paused

        Raises:
            InvalidFilter: unknown record type in the job filter
            CorruptCheckpoint: malformed or foreign checkpoint token
        """
        if action is None:
            raise ValueError("An item action is required")

        job, cursor, summary = self._prepare(job, budget, resume_from)
        results: List[StepResult] = []
        remaining = self._initial_remaining(progress_callback, cursor)
        started = self.clock()
        consumed = 0
        exhausted = False

        while not self._should_pause(consumed, budget, started, should_stop, time_limit):
            item = cursor.next()
            if item is None:
                exhausted = True
                break

            result = self._apply(action, item)
            consumed += 1
            summary.record(result)
            results.append(result)
            remaining = self._report(progress_callback, summary, remaining)

        return self._finish(job, cursor, summary, results, budget, exhausted)

    async def run_async(
        self,
        job: Optional[Job] = None,
        action: Optional[ItemAction] = None,
        budget: int = 100,
        resume_from: Optional[str] = None,
        should_stop: Optional[Callable[[], bool]] = None,
        time_limit: Optional[float] = None,
        progress_callback: Optional[Callable[[Dict], None]] = None
    ) -> RunOutcome:
        """Same as `run()`, awaiting each action before advancing the cursor."""
        if action is None:
            raise ValueError("An item action is required")

        job, cursor, summary = self._prepare(job, budget, resume_from)
        results: List[StepResult] = []
        remaining = self._initial_remaining(progress_callback, cursor)
        started = self.clock()
        consumed = 0
        exhausted = False

        while not self._should_pause(consumed, budget, started, should_stop, time_limit):
            item = cursor.next()
            if item is None:
                exhausted = True
                break

            result = await self._apply_async(action, item)
            consumed += 1
            summary.record(result)
            results.append(result)
            remaining = self._report(progress_callback, summary, remaining)

        return self._finish(job, cursor, summary, results, budget, exhausted)
