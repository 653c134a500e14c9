"""
Tests for correlation context and progress tracking.
"""

import time

import pytest
import structlog


class TestCorrelationContext:
    """Test suite for correlation ID context manager."""

    def test_create_correlation_context(self):
        from longrunner.logging.correlation import CorrelationContext
        context = CorrelationContext(run_id="test_run_123")
        assert context.run_id == "test_run_123"

    def test_binds_and_clears_contextvars(self):
        from longrunner.logging.correlation import CorrelationContext

        structlog.contextvars.clear_contextvars()
        with CorrelationContext(run_id="ctx_456", job_type="index_mentions", budget=10) as ctx:
            bound = structlog.contextvars.get_contextvars()
            assert bound == {'run_id': 'ctx_456', 'job_type': 'index_mentions', 'budget': 10}
            assert ctx.job_type == "index_mentions"

        assert structlog.contextvars.get_contextvars() == {}

    def test_nested_contexts_restore_outer(self):
        from longrunner.logging.correlation import CorrelationContext

        structlog.contextvars.clear_contextvars()
        with CorrelationContext(run_id="outer_run"):
            with CorrelationContext(run_id="inner_run", job_type="index_mentions"):
                assert structlog.contextvars.get_contextvars()['run_id'] == "inner_run"
            assert structlog.contextvars.get_contextvars() == {'run_id': 'outer_run'}

    def test_context_cleared_on_exception(self):
        from longrunner.logging.correlation import CorrelationContext

        structlog.contextvars.clear_contextvars()
        with pytest.raises(RuntimeError):
            with CorrelationContext(run_id="failing"):
                raise RuntimeError("boom")
        assert structlog.contextvars.get_contextvars() == {}

    def test_correlation_auto_generate_run_id(self):
        from longrunner.logging.correlation import CorrelationContext

        first = CorrelationContext()
        second = CorrelationContext()
        assert first.run_id.startswith("run_")
        assert first.run_id != second.run_id


class TestProgressTracker:
    """Test suite for progress tracking."""

    def test_progress_update(self):
        from longrunner.logging.progress import ProgressTracker

        tracker = ProgressTracker(total=100, description="Indexing")
        tracker.update(25)

        assert tracker.current == 25
        assert tracker.percentage == 25.0

    def test_progress_increment(self):
        from longrunner.logging.progress import ProgressTracker

        tracker = ProgressTracker(total=10)
        tracker.increment()
        tracker.increment(failed=1)

        assert tracker.current == 2
        assert tracker.failed == 1

    def test_unknown_total(self):
        from longrunner.logging.progress import ProgressTracker

        tracker = ProgressTracker(description="Indexing")
        tracker.update(7, failed=1)

        assert tracker.percentage is None
        assert tracker.estimate_remaining() is None
        assert not tracker.is_complete()
        assert "7 processed" in str(tracker)

    def test_on_progress_derives_total(self):
        from longrunner.logging.progress import ProgressTracker

        tracker = ProgressTracker(description="Indexing")
        tracker.on_progress({'processed': 1, 'failed': 0, 'skipped': 1, 'remaining': 3})

        assert tracker.total == 4
        assert tracker.percentage == 25.0
        assert tracker.skipped == 1

        tracker.on_progress({'processed': 4, 'failed': 1, 'skipped': 1, 'remaining': 0})
        assert tracker.is_complete()

    def test_on_progress_without_remaining_keeps_total(self):
        from longrunner.logging.progress import ProgressTracker

        tracker = ProgressTracker(total=10)
        tracker.on_progress({'processed': 3, 'failed': 0, 'skipped': 0, 'remaining': None})
        assert tracker.total == 10

    def test_rate_ignores_items_from_earlier_invocations(self):
        from unittest.mock import patch
        from longrunner.logging.progress import ProgressTracker

        with patch('longrunner.logging.progress.time.time', return_value=1000.0):
            tracker = ProgressTracker(description="Indexing")
        tracker.on_progress({'processed': 501, 'failed': 0, 'skipped': 0, 'remaining': 99})
        tracker.on_progress({'processed': 502, 'failed': 0, 'skipped': 0, 'remaining': 98})

        with patch('longrunner.logging.progress.time.time', return_value=1002.0):
            assert tracker.get_rate() == 1.0
            assert tracker.estimate_remaining()['estimated_seconds'] == 98.0

    def test_initial_count_sets_rate_baseline(self):
        from unittest.mock import patch
        from longrunner.logging.progress import ProgressTracker

        with patch('longrunner.logging.progress.time.time', return_value=1000.0):
            tracker = ProgressTracker(total=1000, initial=500)
        tracker.update(510)

        with patch('longrunner.logging.progress.time.time', return_value=1005.0):
            assert tracker.get_rate() == 2.0

    def test_runner_feeds_tracker(self):
        from longrunner.batch.cursor import ListSource
        from longrunner.batch.runner import Job, Runner
        from longrunner.logging.progress import ProgressTracker

        tracker = ProgressTracker(description="Indexing")
        runner = Runner({'discussion': ListSource('discussion', [1, 2, 3, 4])})
        runner.run(Job('all'), lambda item: None, budget=2, progress_callback=tracker.on_progress)

        assert tracker.current == 2
        assert tracker.total == 4
        assert tracker.percentage == 50.0

    def test_progress_eta_estimation(self):
        from longrunner.logging.progress import ProgressTracker

        tracker = ProgressTracker(total=100)
        time.sleep(0.05)
        tracker.update(10)

        eta = tracker.estimate_remaining()
        assert eta is not None
        assert eta['remaining_items'] == 90
        assert eta['estimated_seconds'] > 0

    def test_progress_bar_display(self):
        from longrunner.logging.progress import ProgressTracker

        tracker = ProgressTracker(total=100, description="Indexing", bar_width=10)
        tracker.update(50)

        assert str(tracker) == "[Indexing] #####----- 50.0% (50/100)"

    def test_progress_with_zero_total(self):
        from longrunner.logging.progress import ProgressTracker

        tracker = ProgressTracker(total=0)
        assert tracker.percentage == 100.0
        assert tracker.is_complete()

    def test_progress_over_100_percent(self):
        from longrunner.logging.progress import ProgressTracker

        tracker = ProgressTracker(total=100)
        tracker.update(150)
        assert tracker.percentage == 100.0

    def test_progress_callback(self):
        from longrunner.logging.progress import ProgressTracker

        callback_data = []
        tracker = ProgressTracker(total=100, callback=callback_data.append)
        tracker.update(25)
        tracker.update(50)

        assert [data['current'] for data in callback_data] == [25, 50]

    def test_log_every(self):
        from unittest.mock import MagicMock
        from longrunner.logging.progress import ProgressTracker

        logger = MagicMock()
        tracker = ProgressTracker(total=10, logger=logger, log_every=5)
        for i in range(10):
            tracker.increment()

        assert logger.info.call_count == 2

    def test_progress_context_manager_logs_summary(self):
        from unittest.mock import MagicMock
        from longrunner.logging.progress import ProgressTracker

        logger = MagicMock()
        with ProgressTracker(total=3, logger=logger, log_every=100) as tracker:
            for i in range(3):
                tracker.increment()

        logger.info.assert_called_once()
        event, = logger.info.call_args[0]
        assert event == "progress_complete"
        assert logger.info.call_args[1]['is_complete'] is True

    def test_progress_summary(self):
        from longrunner.logging.progress import ProgressTracker

        tracker = ProgressTracker(total=100, description="Summary test")
        time.sleep(0.05)
        tracker.update(60, failed=5, skipped=10)

        summary = tracker.get_summary()
        assert summary['total'] == 100
        assert summary['current'] == 60
        assert summary['failed'] == 5
        assert summary['skipped'] == 10
        assert summary['percentage'] == 60.0
        assert 'elapsed_seconds' in summary
        assert 'estimated_remaining_seconds' in summary
