"""
Tests for logging configuration - structured logging with structlog.
"""

import pytest
import os
import json
import tempfile
import shutil
from pathlib import Path
from datetime import datetime


class TestLoggingConfig:
    """Test suite for logging configuration."""

    @pytest.fixture
    def temp_log_dir(self):
        log_dir = tempfile.mkdtemp()
        yield log_dir
        shutil.rmtree(log_dir, ignore_errors=True)

    @pytest.fixture
    def logger_config(self, temp_log_dir):
        from longrunner.logging.config import LoggerConfig
        config = LoggerConfig(log_dir=temp_log_dir)
        yield config
        config.reset()

    def _read_main_log(self, log_dir):
        with open(Path(log_dir) / "longrunner.log", 'r') as f:
            return f.read()

    def test_create_logger_config(self, temp_log_dir):
        from longrunner.logging.config import LoggerConfig
        config = LoggerConfig(log_dir=temp_log_dir)
        assert config.log_dir == temp_log_dir
        assert not config.is_configured

    def test_setup_writes_main_log(self, logger_config, temp_log_dir):
        logger = logger_config.setup(console_output=False)
        logger.info("run_started", job_type="index_mentions")

        assert logger_config.is_configured
        assert "run_started" in self._read_main_log(temp_log_dir)

    def test_json_output_format(self, logger_config, temp_log_dir):
        logger = logger_config.setup(json_output=True, console_output=False)
        logger.info("run_paused", processed=3)

        last_log = json.loads(self._read_main_log(temp_log_dir).splitlines()[-1])
        assert last_log['event'] == "run_paused"
        assert last_log['processed'] == 3
        assert last_log['level'] == "info"
        assert 'timestamp' in last_log

    def test_stdlib_loggers_reach_the_file(self, logger_config, temp_log_dir):
        import logging

        logger_config.setup(console_output=False)
        logging.getLogger("longrunner.batch.runner").info("Job index_mentions paused")

        assert "Job index_mentions paused" in self._read_main_log(temp_log_dir)

    def test_separate_log_file_per_job_type(self, logger_config, temp_log_dir):
        logger_config.setup(console_output=False, json_output=True)
        mentions_logger = logger_config.get_job_logger("index_mentions")
        search_logger = logger_config.get_job_logger("rebuild_search")

        mentions_logger.info("mentions_specific_message")
        search_logger.info("search_specific_message")

        with open(Path(temp_log_dir) / "index_mentions.log", 'r') as f:
            content = f.read()
        assert "mentions_specific_message" in content
        assert "search_specific_message" not in content
        assert json.loads(content.splitlines()[-1])['job_type'] == "index_mentions"

    def test_job_logger_is_cached(self, logger_config):
        assert logger_config.get_job_logger("index_mentions") is logger_config.get_job_logger("index_mentions")

    def test_context_binding(self, logger_config, temp_log_dir):
        logger = logger_config.setup(json_output=True, console_output=False)
        logger.bind(job_type="index_mentions", run_id="run_123").info("bound_event")

        last_log = json.loads(self._read_main_log(temp_log_dir).splitlines()[-1])
        assert last_log['job_type'] == 'index_mentions'
        assert last_log['run_id'] == 'run_123'

    def test_exception_logging(self, logger_config, temp_log_dir):
        logger = logger_config.setup(json_output=True, console_output=False)

        try:
            raise ValueError("Test exception")
        except ValueError:
            logger.exception("error_occurred")

        content = self._read_main_log(temp_log_dir)
        assert "error_occurred" in content
        assert "ValueError" in content
        assert "Test exception" in content

    def test_custom_processors(self, logger_config, temp_log_dir):
        def add_host(logger, name, event_dict):
            event_dict['host'] = 'worker-1'
            return event_dict

        logger = logger_config.setup(json_output=True, console_output=False, processors=[add_host])
        logger.info("custom_processor")

        last_log = json.loads(self._read_main_log(temp_log_dir).splitlines()[-1])
        assert last_log['host'] == 'worker-1'

    def test_log_directory_creation(self):
        from longrunner.logging.config import LoggerConfig

        non_existent_dir = os.path.join(tempfile.gettempdir(), f"longrunner_logs_{os.getpid()}_{datetime.now():%H%M%S%f}")
        try:
            LoggerConfig(log_dir=non_existent_dir)
            assert os.path.isdir(non_existent_dir)
        finally:
            shutil.rmtree(non_existent_dir, ignore_errors=True)

    def test_reset_logging_config(self, logger_config, temp_log_dir):
        logger1 = logger_config.setup(level="DEBUG", console_output=False)
        logger1.info("first_config")

        logger_config.reset()
        assert not logger_config.is_configured

        logger2 = logger_config.setup(level="ERROR", console_output=False)
        logger2.info("second_config")
        logger2.error("error_after_reset")

        content = self._read_main_log(temp_log_dir)
        assert "first_config" in content
        assert "second_config" not in content
        assert "error_after_reset" in content
