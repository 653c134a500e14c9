"""
Progress tracking for long runs, fed from the runner's progress callback.
"""

import time
from typing import Optional, Callable, Dict, Any
import structlog


class ProgressTracker:
    """
    Track processed/failed items across one invocation with rate and ETA.

    Features:
    - Percentage calculation (when the total is known)
    - ETA estimation based on current rate
    - Text progress bar
    - Accepts runner progress dicts via `on_progress`
    """

    def __init__(
        self,
        total: Optional[int] = None,
        description: str = "",
        bar_width: int = 40,
        callback: Optional[Callable[[Dict], None]] = None,
        logger: Optional[Any] = None,
        log_every: int = 1,
        initial: Optional[int] = None
    ):
        """
        Initialize progress tracker.

        Args:
            total: Total number of items, or None if unknown
            description: Description of the task
            bar_width: Width of progress bar in characters
            callback: Optional callback called with the summary on updates
            logger: Structured logger for progress events
            log_every: Log one progress event every N updates
            initial: Items already processed before tracking started
                (taken from the first runner report when omitted)
        """
        self.total = total
        self.description = description
        self.bar_width = bar_width
        self.callback = callback
        self.logger = logger or structlog.get_logger()
        self.log_every = max(log_every, 1)

        self.current = 0
        self.failed = 0
        self.skipped = 0
        self._updates = 0
        self._baseline = initial
        self.start_time = time.time()

    @property
    def percentage(self) -> Optional[float]:
        if self.total is None:
            return None
        if self.total == 0:
            return 100.0
        return min(self.current / self.total * 100, 100.0)

    def update(self, current: int, failed: int = 0, skipped: int = 0):
        """
        Set progress to absolute values.

        Args:
            current: Items processed so far
            failed: Items failed so far
            skipped: Items skipped so far
        """
        self.current = current
        self.failed = failed
        self.skipped = skipped
        self._updates += 1

        if self.callback:
            self.callback(self.get_summary())

        if self._updates % self.log_every == 0:
            self.logger.info(
                "progress_update",
                description=self.description,
                current=self.current,
                total=self.total,
                failed=self.failed
            )

    def increment(self, amount: int = 1, failed: int = 0):
        self.update(self.current + amount, self.failed + failed, self.skipped)

    def on_progress(self, progress: Dict[str, Any]):
        """
        Runner progress callback.

        The runner reports cumulative counters plus `remaining`; the total is
        (re)derived from them whenever the remaining count is known.
        """
        if self._baseline is None:
            # The runner reports after every item, so one item preceded this report
            self._baseline = max(progress['processed'] - 1, 0)
        remaining = progress.get('remaining')
        if remaining is not None:
            self.total = progress['processed'] + remaining
        self.update(progress['processed'], progress.get('failed', 0), progress.get('skipped', 0))

    @property
    def processed_since_start(self) -> int:
        """Items processed since this tracker started."""
        return max(self.current - (self._baseline or 0), 0)

    def get_rate(self) -> float:
        """Items per second since the tracker was created."""
        elapsed = time.time() - self.start_time
        if elapsed == 0:
            return 0.0
        return self.processed_since_start / elapsed

    def estimate_remaining(self) -> Optional[Dict[str, float]]:
        """
        Estimate remaining time.

        Returns:
            Dictionary with estimated_seconds, items_per_second and
            remaining_items, or None if it can't be estimated
        """
        rate = self.get_rate()
        if self.total is None or self.processed_since_start == 0 or rate == 0:
            return None

        remaining_items = max(self.total - self.current, 0)
        return {
            'estimated_seconds': remaining_items / rate,
            'items_per_second': rate,
            'remaining_items': remaining_items
        }

    def get_progress_bar(self) -> str:
        if self.total is None:
            return f"[{self.description}] {self.current} processed ({self.failed} failed)"

        filled_width = int(self.bar_width * (self.current / max(self.total, 1)))
        filled_width = min(filled_width, self.bar_width)
        bar = '#' * filled_width + '-' * (self.bar_width - filled_width)
        text = f"{bar} {self.percentage:.1f}% ({self.current}/{self.total})"
        if self.description:
            return f"[{self.description}] {text}"
        return text

    def is_complete(self) -> bool:
        return self.total is not None and self.current >= self.total

    def get_summary(self) -> Dict[str, Any]:
        elapsed = time.time() - self.start_time
        summary = {
            'description': self.description,
            'total': self.total,
            'current': self.current,
            'failed': self.failed,
            'skipped': self.skipped,
            'elapsed_seconds': round(elapsed, 2),
            'is_complete': self.is_complete()
        }
        if self.percentage is not None:
            summary['percentage'] = round(self.percentage, 2)

        eta = self.estimate_remaining()
        if eta:
            summary['estimated_remaining_seconds'] = round(eta['estimated_seconds'], 2)
            summary['items_per_second'] = round(eta['items_per_second'], 2)
        return summary

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.logger.info("progress_complete", **self.get_summary())
        return False

    def __str__(self) -> str:
        return self.get_progress_bar()
