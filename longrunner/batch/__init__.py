"""
Checkpointed batch running: cursors, checkpoint tokens and the runner.
"""

from .errors import LongRunnerError, InvalidFilter, CorruptCheckpoint, ItemActionFailure
from .cursor import ALL_RECORDS, Cursor, ListSource, WorkItem
from .checkpoint import Checkpoint, encode_checkpoint, decode_checkpoint
from .runner import (
    Job, Runner, RunOutcome, RunStatus, RunSummary, StepOutcome, StepResult,
    dispatch_by_record_type,
)
from .checkpoint_manager import CheckpointManager

__all__ = [
    'LongRunnerError', 'InvalidFilter', 'CorruptCheckpoint', 'ItemActionFailure',
    'ALL_RECORDS', 'Cursor', 'ListSource', 'WorkItem',
    'Checkpoint', 'encode_checkpoint', 'decode_checkpoint',
    'Job', 'Runner', 'RunOutcome', 'RunStatus', 'RunSummary', 'StepOutcome', 'StepResult',
    'dispatch_by_record_type',
    'CheckpointManager',
]
