"""
User mention indexing as a resumable long run.

Discussions and comments are enumerated in primary key order; the action for
each record re-parses its body and replaces the record's rows in the
user_mentions table. Replacing (rather than appending) keeps the action safe
to replay when a run resumes after an unconfirmed item.
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Sequence

import structlog

from ..batch import (
    ALL_RECORDS, Job, Runner, RunOutcome, StepResult, WorkItem, dispatch_by_record_type,
)
from ..logging import CorrelationContext
from ..storage.database import Database
from .parser import parse_mentions

logger = logging.getLogger(__name__)

JOB_TYPE = "index_mentions"
MENTION_RECORD_TYPES = ('discussion', 'comment')

_ID_KEYS = {
    'discussion': 'discussion_id',
    'comment': 'comment_id',
}


class DatabaseSource:
    """Record source reading one record type from the forum database."""

    def __init__(self, db: Database, record_type: str):
        self.db = db
        self.record_type = record_type
        self.id_key = _ID_KEYS[record_type]

    def _check_after_id(self, after_id: Any):
        if after_id is not None and (isinstance(after_id, bool) or not isinstance(after_id, int)):
            raise TypeError(f"{self.record_type} ids are integers, got {after_id!r}")

    def fetch_after(self, after_id: Any, limit: int) -> List[WorkItem]:
        self._check_after_id(after_id)
        records = self.db.fetch_records_after(self.record_type, after_id, limit)
        return [WorkItem(self.record_type, record[self.id_key], record) for record in records]

    def count_after(self, after_id: Any) -> int:
        self._check_after_id(after_id)
        return self.db.count_records_after(self.record_type, after_id)


class MentionIndexer:
    """Per-record-type mention indexing actions."""

    def __init__(self, db: Database):
        self.db = db

    def _load(self, item: WorkItem) -> Optional[Dict]:
        if item.payload is not None:
            return item.payload
        return self.db.get_record(item.record_type, item.record_id)

    def _index(self, item: WorkItem, record: Dict, parent_record_type: str, parent_record_id: int) -> StepResult:
        names = parse_mentions(record['body'])
        users = self.db.find_users_by_names(names)

        rows = []
        for name in names:
            user = users.get(name.lower())
            if user is None:
                continue
            rows.append({
                'user_id': user['user_id'],
                'mentioned_name': user['name'],
                'parent_record_type': parent_record_type,
                'parent_record_id': parent_record_id,
                'date_inserted': record['date_inserted'],
            })

        # Always write, so stale rows disappear when mentions are edited out.
        self.db.replace_mentions(item.record_type, item.record_id, rows)

        if not rows:
            return StepResult.skipped(item, "no mentions")
        logger.debug(f"Indexed {len(rows)} mentions for {item.record_type} {item.record_id}")
        return StepResult.success(item)

    def index_discussion(self, item: WorkItem) -> StepResult:
        record = self._load(item)
        if record is None:
            return StepResult.skipped(item, "record no longer exists")
        category_id = record.get('category_id')
        return self._index(item, record, 'category', category_id if category_id is not None else -1)

    def index_comment(self, item: WorkItem) -> StepResult:
        record = self._load(item)
        if record is None:
            return StepResult.skipped(item, "record no longer exists")
        return self._index(item, record, 'discussion', record['discussion_id'])

    def actions(self) -> Dict[str, Callable[[WorkItem], StepResult]]:
        return {
            'discussion': self.index_discussion,
            'comment': self.index_comment,
        }


def build_runner(
    db: Database,
    page_size: int = 100,
    record_types: Sequence[str] = MENTION_RECORD_TYPES
) -> Runner:
    """
    Create a Runner over the database's discussions and comments.

    Args:
        db: Forum database
        page_size: Records fetched per query
        record_types: Registered record types, in "all" order
    """
    sources = {record_type: DatabaseSource(db, record_type) for record_type in record_types}
    return Runner(sources, job_types=(JOB_TYPE,), page_size=page_size)


def _run(db: Database, runner: Optional[Runner], run_kwargs: Dict[str, Any], **event) -> RunOutcome:
    runner = runner or build_runner(db)
    action = dispatch_by_record_type(MentionIndexer(db).actions())

    with CorrelationContext(job_type=JOB_TYPE):
        struct_logger = structlog.get_logger()
        struct_logger.info("mention_indexing_started", **event)

        outcome = runner.run(action=action, **run_kwargs)

        struct_logger.info(
            "mention_indexing_finished",
            status=outcome.status.value,
            **outcome.summary.to_dict()
        )
    return outcome


def start_indexing(
    db: Database,
    record_filter=ALL_RECORDS,
    budget: int = 100,
    runner: Optional[Runner] = None,
    **run_kwargs
) -> RunOutcome:
    """
    Start (re)indexing user mentions.

    Args:
        db: Forum database
        record_filter: "all", a record type, or a list of record types
        budget: Maximum number of records in this invocation
        runner: Optional pre-built runner (defaults to `build_runner(db)`)
        **run_kwargs: Passed to Runner.run (should_stop, time_limit, ...)

    Raises:
        InvalidFilter: if the filter names an unknown record type
    """
    job = Job(record_filter=record_filter, job_type=JOB_TYPE)
    run_kwargs.update(job=job, budget=budget)
    return _run(db, runner, run_kwargs, record_filter=record_filter, budget=budget)


def resume_indexing(
    db: Database,
    checkpoint: str,
    budget: int = 100,
    runner: Optional[Runner] = None,
    **run_kwargs
) -> RunOutcome:
    """
    Continue an indexing run from a checkpoint token.

    Raises:
        CorruptCheckpoint: if the token is malformed or not an indexing token
    """
    run_kwargs.update(resume_from=checkpoint, budget=budget)
    return _run(db, runner, run_kwargs, resumed=True, budget=budget)


def format_mention(mention: Dict) -> Dict:
    """Render a mention row the way the user-mentions API returns it."""
    date_inserted = mention['date_inserted']
    return {
        'userID': mention['user_id'],
        'recordType': mention['record_type'],
        'recordID': mention['record_id'],
        'mentionedName': mention['mentioned_name'],
        'parentRecordType': mention['parent_record_type'],
        'parentRecordID': mention['parent_record_id'],
        'dateInserted': date_inserted.isoformat() if hasattr(date_inserted, 'isoformat') else date_inserted,
        'status': mention['status'],
    }
