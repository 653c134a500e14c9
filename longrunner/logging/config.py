"""
Logging configuration with structured logging using structlog.

Library modules log through `logging.getLogger(__name__)`; structlog events
and those stdlib records share one processor chain and renderer, so a JSON
log file only ever holds JSON lines.
"""

import os
import logging
import logging.handlers
from pathlib import Path
from typing import List, Optional, Callable, Any, Dict, Sequence
import structlog

# Libraries whose INFO output drowns out run events
NOISY_LOGGERS = ("sqlalchemy.engine", "urllib3")


class LoggerConfig:
    """
    Centralized logging configuration for runners, the API and the CLI.

    Features:
    - structlog rendering for stdlib log records (ProcessorFormatter)
    - JSON or plain console rendering
    - Rotating main log file plus per-job-type log files
    - Correlation IDs merged from contextvars
    - Custom processors support
    """

    def __init__(self, log_dir: str = "logs", log_file: str = "longrunner.log"):
        """
        Initialize logger configuration.

        Args:
            log_dir: Directory for log files
            log_file: Name of the main log file inside log_dir
        """
        self.log_dir = log_dir
        self.log_file = log_file
        self._job_loggers: Dict[str, Any] = {}
        self._formatter: Optional[logging.Formatter] = None
        self._max_bytes = 10 * 1024 * 1024
        self._backup_count = 5
        self._configured = False

        Path(self.log_dir).mkdir(parents=True, exist_ok=True)

    @property
    def is_configured(self) -> bool:
        return self._configured

    @staticmethod
    def _shared_processors(extra: Sequence[Callable]) -> List[Callable]:
        return list(extra) + [
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
        ]

    def _file_handler(self, filename: str, level: int) -> logging.Handler:
        handler = logging.handlers.RotatingFileHandler(
            os.path.join(self.log_dir, filename),
            maxBytes=self._max_bytes,
            backupCount=self._backup_count
        )
        handler.setLevel(level)
        handler.setFormatter(self._formatter)
        return handler

    def setup(
        self,
        level: str = "INFO",
        json_output: bool = False,
        console_output: bool = True,
        file_output: bool = True,
        max_bytes: int = 10 * 1024 * 1024,  # 10MB
        backup_count: int = 5,
        processors: Optional[List[Callable]] = None,
        quiet_loggers: Sequence[str] = NOISY_LOGGERS
    ) -> Any:
        """
        Set up structlog on top of stdlib logging.

        Args:
            level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            json_output: Render events as JSON lines
            console_output: Log to stderr
            file_output: Log to a rotating file in log_dir
            max_bytes: Maximum size of log file before rotation
            backup_count: Number of rotated files to keep
            processors: Extra processors run before the standard chain
            quiet_loggers: Stdlib loggers capped at WARNING

        Returns:
            Configured structlog logger
        """
        numeric_level = getattr(logging, level.upper())
        self._max_bytes = max_bytes
        self._backup_count = backup_count

        shared = self._shared_processors(processors or [])
        renderer = (
            structlog.processors.JSONRenderer() if json_output
            else structlog.dev.ConsoleRenderer(colors=False)
        )
        self._formatter = structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.format_exc_info,
                renderer,
            ],
        )

        structlog.configure(
            processors=shared + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
            wrapper_class=structlog.stdlib.BoundLogger,
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=False,
        )

        root_logger = logging.getLogger()
        root_logger.setLevel(numeric_level)
        for handler in root_logger.handlers[:]:
            handler.close()
            root_logger.removeHandler(handler)

        if console_output:
            console_handler = logging.StreamHandler()
            console_handler.setLevel(numeric_level)
            console_handler.setFormatter(self._formatter)
            root_logger.addHandler(console_handler)

        if file_output:
            root_logger.addHandler(self._file_handler(self.log_file, numeric_level))

        for name in quiet_loggers:
            logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

        self._configured = True
        return structlog.get_logger()

    def get_job_logger(self, job_type: str) -> Any:
        """
        Get a logger for one job type, writing to its own file.

        Args:
            job_type: Job type (e.g. 'index_mentions')

        Returns:
            Structlog logger bound to the job type
        """
        if job_type in self._job_loggers:
            return self._job_loggers[job_type]

        if self._formatter is None:
            self._formatter = logging.Formatter('%(message)s')

        stdlib_logger = logging.getLogger(f"job.{job_type}")
        stdlib_logger.setLevel(logging.INFO)
        stdlib_logger.propagate = False
        stdlib_logger.addHandler(self._file_handler(f"{job_type}.log", logging.INFO))

        bound_logger = structlog.get_logger(f"job.{job_type}").bind(job_type=job_type)
        self._job_loggers[job_type] = bound_logger
        return bound_logger

    def reset(self):
        """Reset structlog and remove every handler this config installed."""
        structlog.reset_defaults()

        for job_type in self._job_loggers:
            stdlib_logger = logging.getLogger(f"job.{job_type}")
            for handler in stdlib_logger.handlers[:]:
                handler.close()
                stdlib_logger.removeHandler(handler)
        self._job_loggers = {}
        self._formatter = None

        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            handler.close()
            root_logger.removeHandler(handler)

        self._configured = False
