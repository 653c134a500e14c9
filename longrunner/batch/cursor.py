"""
Resumable cursor over one or more record sources.

Items are enumerated per record type in primary key order, record types in the
order of the source mapping. The ordering key of an item is
(record_type, record_id), which only depends on persisted attributes, so the
same filter and resume key always yield the same remaining sequence.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple, Union

from .errors import InvalidFilter

logger = logging.getLogger(__name__)

ALL_RECORDS = "all"

OrderingKey = Tuple[str, Any]
RecordFilter = Union[str, Sequence[str]]


@dataclass(frozen=True)
class WorkItem:
    """A single record handed to an item action."""

    record_type: str
    record_id: Any
    payload: Any = None

    @property
    def key(self) -> OrderingKey:
        return (self.record_type, self.record_id)


class RecordSource(Protocol):
    """
    Provides records of one type in ascending primary key order.

    `fetch_after(None, n)` returns the first n records. Sources may also define
    `count_after(after_id)` to support remaining-count estimates.
    """

    def fetch_after(self, after_id: Any, limit: int) -> List[WorkItem]:
        ...


class ListSource:
    """In-memory record source, mostly for tests and dry runs."""

    def __init__(self, record_type: str, records: Union[Mapping[Any, Any], Sequence[Any]]):
        self.record_type = record_type
        if isinstance(records, Mapping):
            pairs = records.items()
        else:
            pairs = ((record_id, None) for record_id in records)
        self._records = sorted(pairs, key=lambda pair: pair[0])

    def fetch_after(self, after_id: Any, limit: int) -> List[WorkItem]:
        items = []
        for record_id, payload in self._records:
            if after_id is not None and record_id <= after_id:
                continue
            items.append(WorkItem(self.record_type, record_id, payload))
            if len(items) >= limit:
                break
        return items

    def count_after(self, after_id: Any) -> int:
        if after_id is None:
            return len(self._records)
        return sum(1 for record_id, _ in self._records if record_id > after_id)


def resolve_filter(sources: Mapping[str, RecordSource], record_filter: RecordFilter) -> Tuple[str, ...]:
    """
    Expand a record filter into an ordered tuple of record types.

    Raises:
        InvalidFilter: if the filter is empty or names an unknown record type
    """
    known = tuple(sources.keys())

    if isinstance(record_filter, str):
        if record_filter == ALL_RECORDS:
            if not known:
                raise InvalidFilter(record_filter, known)
            return known
        requested = [record_filter]
    elif isinstance(record_filter, (list, tuple)):
        requested = list(record_filter)
    else:
        raise InvalidFilter(record_filter, known)

    if not requested:
        raise InvalidFilter(record_filter, known)

    for record_type in requested:
        if not isinstance(record_type, str) or record_type not in sources:
            raise InvalidFilter(record_filter, known)

    # Keep mapping order so a filter's iteration order never depends on how the
    # caller spelled it.
    wanted = set(requested)
    return tuple(record_type for record_type in known if record_type in wanted)


class Cursor:
    """
    Stateful enumerator producing WorkItems in a stable total order.

    Use `Cursor.open()` rather than the constructor.
    """

    def __init__(
        self,
        sources: Mapping[str, RecordSource],
        record_types: Tuple[str, ...],
        resume_from: Optional[OrderingKey] = None,
        page_size: int = 100
    ):
        if page_size <= 0:
            raise ValueError(f"page_size must be positive, got {page_size}")

        self.sources = sources
        self.record_types = record_types
        self.page_size = page_size

        self._type_index = 0
        self._after_id = None
        self._buffer: List[WorkItem] = []
        self._last_key: Optional[OrderingKey] = None

        if resume_from is not None:
            record_type, record_id = resume_from
            if record_type not in record_types:
                raise ValueError(
                    f"Resume key {resume_from!r} is outside record types {record_types!r}"
                )
            self._type_index = record_types.index(record_type)
            self._after_id = record_id
            self._last_key = (record_type, record_id)

    @classmethod
    def open(
        cls,
        sources: Mapping[str, RecordSource],
        record_filter: RecordFilter,
        resume_from: Optional[OrderingKey] = None,
        page_size: int = 100
    ) -> "Cursor":
        """
        Open a cursor positioned strictly after `resume_from`.

        Raises:
            InvalidFilter: if the filter references an unknown record type
            ValueError: if the resume key does not belong to the filter
        """
        record_types = resolve_filter(sources, record_filter)
        if resume_from is not None:
            resume_from = (resume_from[0], resume_from[1])
        return cls(sources, record_types, resume_from=resume_from, page_size=page_size)

    def _fill(self) -> bool:
        """Load the next non-empty page into the buffer. Returns False when exhausted."""
        while not self._buffer and self._type_index < len(self.record_types):
            record_type = self.record_types[self._type_index]
            page = self.sources[record_type].fetch_after(self._after_id, self.page_size)
            if page:
                self._buffer = list(page)
                self._after_id = page[-1].record_id
            else:
                logger.debug(f"Record type {record_type} exhausted")
                self._type_index += 1
                self._after_id = None
        return bool(self._buffer)

    def has_next(self) -> bool:
        """Peek whether another item is available without consuming it."""
        return self._fill()

    def next(self) -> Optional[WorkItem]:
        if not self._fill():
            return None
        item = self._buffer.pop(0)
        self._last_key = item.key
        return item

    def __iter__(self):
        return self

    def __next__(self) -> WorkItem:
        item = self.next()
        if item is None:
            raise StopIteration
        return item

    def current_key(self) -> Optional[OrderingKey]:
        """Key of the last item returned (or the resume key if none yet)."""
        return self._last_key

    def remaining_count(self) -> Optional[int]:
        """
        Estimate how many items are left after the current key.

        Returns:
            Item count, or None if a source cannot count
        """
        total = 0
        current_type = self._last_key[0] if self._last_key else None
        for record_type in self.record_types:
            source = self.sources[record_type]
            count_after = getattr(source, "count_after", None)
            if count_after is None:
                return None
            if self._last_key is not None and self.record_types.index(record_type) < self.record_types.index(current_type):
                continue
            after_id = self._last_key[1] if record_type == current_type else None
            total += count_after(after_id)
        return total

    def describe(self) -> Dict[str, Any]:
        return {
            'record_types': list(self.record_types),
            'last_key': list(self._last_key) if self._last_key else None,
        }
