"""
Checkpoint tokens for resumable runs.

A checkpoint is a versioned struct holding the job (type and record filter),
the cursor position and the cumulative counters. It travels as an opaque
string: URL-safe base64 over canonical JSON. `encode_checkpoint` and
`decode_checkpoint` are pure, and encoding is deterministic, so a decoded
token re-encodes to the exact same string.
"""

import base64
import binascii
import json
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Tuple, Union

from .errors import CorruptCheckpoint

CHECKPOINT_VERSION = 1

_FIELDS = ('v', 'job_type', 'filter', 'position', 'processed', 'failed', 'skipped', 'created_at')


@dataclass(frozen=True)
class Checkpoint:
    """Snapshot of a paused job."""

    job_type: str
    record_filter: Union[str, Tuple[str, ...]]
    position: Optional[Tuple[str, Any]]
    processed: int = 0
    failed: int = 0
    skipped: int = 0
    created_at: Optional[str] = None
    version: int = CHECKPOINT_VERSION

    def to_dict(self) -> Dict[str, Any]:
        record_filter = self.record_filter
        if not isinstance(record_filter, str):
            record_filter = list(record_filter)
        return {
            'v': self.version,
            'job_type': self.job_type,
            'filter': record_filter,
            'position': list(self.position) if self.position is not None else None,
            'processed': self.processed,
            'failed': self.failed,
            'skipped': self.skipped,
            'created_at': self.created_at,
        }


def encode_checkpoint(checkpoint: Checkpoint) -> str:
    """Serialize a checkpoint into an opaque token."""
    raw = json.dumps(checkpoint.to_dict(), sort_keys=True, separators=(',', ':'))
    return base64.urlsafe_b64encode(raw.encode('utf-8')).decode('ascii')


def _is_count(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def _is_record_id(value) -> bool:
    if isinstance(value, bool):
        return False
    return isinstance(value, (int, str))


def decode_checkpoint(token: Union[str, bytes], job_types: Optional[Iterable[str]] = None) -> Checkpoint:
    """
    Parse a token produced by `encode_checkpoint`.

    Args:
        token: Opaque checkpoint token
        job_types: Job types the caller accepts (None accepts any)

    Raises:
        CorruptCheckpoint: if the token is malformed, from another version,
            or references an unknown job type
    """
    if isinstance(token, str):
        try:
            token = token.encode('ascii')
        except UnicodeEncodeError as e:
            raise CorruptCheckpoint("Checkpoint token contains non-ASCII characters") from e
    if not isinstance(token, bytes) or not token:
        raise CorruptCheckpoint("Checkpoint token is empty")

    # Standard-alphabet characters never appear in a URL-safe token
    if b'+' in token or b'/' in token:
        raise CorruptCheckpoint("Checkpoint token is not URL-safe base64")

    try:
        raw = base64.b64decode(token, altchars=b'-_', validate=True)
        data = json.loads(raw.decode('utf-8'))
    except (binascii.Error, ValueError) as e:
        raise CorruptCheckpoint(f"Checkpoint token cannot be decoded: {e}") from e

    if not isinstance(data, dict) or set(data) != set(_FIELDS):
        raise CorruptCheckpoint("Checkpoint token has an unexpected structure")

    if isinstance(data['v'], bool) or data['v'] != CHECKPOINT_VERSION:
        raise CorruptCheckpoint(f"Unsupported checkpoint version: {data['v']!r}")

    job_type = data['job_type']
    if not isinstance(job_type, str):
        raise CorruptCheckpoint("Checkpoint job type must be a string")
    if job_types is not None and job_type not in set(job_types):
        raise CorruptCheckpoint(f"Unknown job type in checkpoint: {job_type!r}")

    record_filter = data['filter']
    if isinstance(record_filter, list) and record_filter and all(isinstance(t, str) for t in record_filter):
        record_filter = tuple(record_filter)
    elif not isinstance(record_filter, str):
        raise CorruptCheckpoint("Checkpoint record filter is malformed")

    position = data['position']
    if position is not None:
        if not (isinstance(position, list) and len(position) == 2 and isinstance(position[0], str)):
            raise CorruptCheckpoint("Checkpoint position is malformed")
        if not _is_record_id(position[1]):
            raise CorruptCheckpoint(f"Checkpoint position has an invalid record id: {position[1]!r}")
        position = (position[0], position[1])

    for counter in ('processed', 'failed', 'skipped'):
        if not _is_count(data[counter]):
            raise CorruptCheckpoint(f"Checkpoint counter {counter!r} is malformed")
    if data['failed'] + data['skipped'] > data['processed']:
        raise CorruptCheckpoint("Checkpoint counters are inconsistent")

    if data['created_at'] is not None and not isinstance(data['created_at'], str):
        raise CorruptCheckpoint("Checkpoint timestamp is malformed")

    return Checkpoint(
        job_type=job_type,
        record_filter=record_filter,
        position=position,
        processed=data['processed'],
        failed=data['failed'],
        skipped=data['skipped'],
        created_at=data['created_at'],
        version=data['v'],
    )
