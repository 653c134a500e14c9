"""
User mention parsing and resumable mention indexing.
"""

from .parser import parse_mentions
from .indexer import (
    JOB_TYPE, MENTION_RECORD_TYPES, DatabaseSource, MentionIndexer,
    build_runner, start_indexing, resume_indexing, format_mention,
)

__all__ = [
    'parse_mentions',
    'JOB_TYPE', 'MENTION_RECORD_TYPES', 'DatabaseSource', 'MentionIndexer',
    'build_runner', 'start_indexing', 'resume_indexing', 'format_mention',
]
