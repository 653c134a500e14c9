"""
Error taxonomy for checkpointed batch runs.

Invocation-level errors (InvalidFilter, CorruptCheckpoint) abort the call and
are raised to the caller. ItemActionFailure is per-item: the runner records it
in the step results and keeps going.
"""


class LongRunnerError(Exception):
    """Base class for all batch runner errors."""


class InvalidFilter(LongRunnerError, ValueError):
    """The record filter names a record type that has no registered source."""

    def __init__(self, record_filter, known=()):
        self.record_filter = record_filter
        self.known = tuple(known)
        message = f"Invalid record filter: {record_filter!r}"
        if self.known:
            message += f" (known record types: {', '.join(self.known)})"
        super().__init__(message)


class CorruptCheckpoint(LongRunnerError, ValueError):
    """A checkpoint token could not be decoded or does not match this runner."""


class ItemActionFailure(LongRunnerError):
    """
    Raised by an item action to mark the item as failed.

    Any other exception raised by an action is treated the same way; this
    class only exists so actions can fail with an explicit reason.
    """

    def __init__(self, reason: str, item_key=None):
        self.reason = reason
        self.item_key = item_key
        super().__init__(reason)
