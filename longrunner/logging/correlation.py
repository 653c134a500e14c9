"""
Correlation context binding run identifiers to structured log entries.
"""

import uuid
from typing import Optional
import structlog


class CorrelationContext:
    """
    Binds a run ID (and job type) to structlog contextvars.

    Usage:
        with CorrelationContext(job_type="index_mentions") as ctx:
            logger.info("indexing")  # includes run_id and job_type

    The previous bindings are restored on exit, so contexts nest.
    """

    def __init__(
        self,
        run_id: Optional[str] = None,
        job_type: Optional[str] = None,
        **extra_context
    ):
        """
        Initialize correlation context.

        Args:
            run_id: Unique run identifier (auto-generated if not provided)
            job_type: Job type being run
            **extra_context: Additional context to bind
        """
        self.run_id = run_id or self._generate_run_id()
        self.job_type = job_type
        self.extra_context = extra_context
        self._tokens = None

    @staticmethod
    def _generate_run_id() -> str:
        return f"run_{uuid.uuid4().hex[:12]}"

    def __enter__(self):
        context = {'run_id': self.run_id}
        if self.job_type:
            context['job_type'] = self.job_type
        context.update(self.extra_context)

        self._tokens = structlog.contextvars.bind_contextvars(**context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._tokens is not None:
            structlog.contextvars.reset_contextvars(**self._tokens)
            self._tokens = None
        return False
