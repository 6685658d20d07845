"""Structured logging for pipeline execution."""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Dict, Union

from ..io.logging import DATE_FORMAT


class ColoredFormatter(logging.Formatter):
    """Formatter that colours the level name for terminal output."""

    def __init__(self, fmt: str, datefmt: str, colors: Dict[str, str]):
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.colors = colors

    def format(self, record):
        original = record.levelname
        color = self.colors.get(original, self.colors["RESET"])
        record.levelname = f"{color}{original}{self.colors['RESET']}"
        try:
            return super().format(record)
        finally:
            # other handlers see the plain level name
            record.levelname = original


class PipelineLogger:
    """Console and file logging for pipeline runs.

    Parameters
    ----------
    log_dir : str or Path
        Directory for log files
    log_level : str
        Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    log_name : str
        Logger name. Stage runners log to their own files in
        ``log_dir``.
    use_color : bool
        Colour level names on the console

    Attributes
    ----------
    log_file : Path
        Timestamped pipeline log file
    logger : logging.Logger
        Underlying logger

    Example
    -------
    >>> logger = PipelineLogger("output/logs", log_level="INFO")
    >>> logger.setup()
    >>> logger.log_stage_start("cluster", "Clustering")
    >>> logger.log_stage_complete("cluster", 45.2)
    """

    COLORS = {
        "DEBUG": "\033[0;36m",
        "INFO": "\033[0;34m",
        "WARNING": "\033[1;33m",
        "ERROR": "\033[0;31m",
        "CRITICAL": "\033[1;31m",
        "RESET": "\033[0m",
    }

    def __init__(
        self,
        log_dir: Union[str, Path],
        log_level: str = "INFO",
        log_name: str = "cytotraj.pipeline",
        use_color: bool = True,
    ):
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        self.log_file = self.log_dir / f"pipeline_{timestamp}.log"

        level = getattr(logging, str(log_level).upper(), None)
        if not isinstance(level, int):
            raise ValueError(f"Unknown log level: {log_level}")
        self.log_level = level
        self.use_color = use_color
        self.logger = logging.getLogger(log_name)
        self.logger.setLevel(self.log_level)
        self.logger.handlers = []

    def setup(self) -> None:
        """Attach the file handler (detailed) and console handler (concise)."""
        file_handler = logging.FileHandler(self.log_file, mode="w", encoding="utf-8")
        file_handler.setLevel(self.log_level)
        file_handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                datefmt=DATE_FORMAT,
            )
        )

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(self.log_level)
        if self.use_color:
            console_handler.setFormatter(
                ColoredFormatter(
                    fmt="%(asctime)s - %(levelname)s - %(message)s",
                    datefmt="%H:%M:%S",
                    colors=self.COLORS,
                )
            )
        else:
            console_handler.setFormatter(
                logging.Formatter("%(asctime)s - %(levelname)s - %(message)s", "%H:%M:%S")
            )

        self.logger.addHandler(file_handler)
        self.logger.addHandler(console_handler)

    def close(self) -> None:
        """Flush and detach all handlers."""
        for handler in list(self.logger.handlers):
            handler.flush()
            handler.close()
            self.logger.removeHandler(handler)

    def log_stage_start(self, stage_id: str, stage_name: str) -> None:
        """Log the start of a stage."""
        separator = "=" * 72
        self.logger.info(separator)
        self.logger.info("Starting stage %s: %s", stage_id, stage_name)
        self.logger.info(separator)

    def log_stage_complete(self, stage_id: str, duration: float) -> None:
        """Log successful completion of a stage."""
        self.logger.info(
            "Stage %s completed in %s", stage_id, self.format_duration(duration)
        )

    def log_stage_skip(self, stage_id: str, reason: str) -> None:
        """Log a skipped stage."""
        self.logger.info("[SKIP] Stage %s: %s", stage_id, reason)

    def log_stage_error(self, stage_id: str, error: str) -> None:
        """Log a stage failure."""
        self.logger.error("Stage %s failed: %s", stage_id, error)

    def log_info(self, message: str) -> None:
        self.logger.info(message)

    def log_warning(self, message: str) -> None:
        self.logger.warning(message)

    def log_error(self, message: str) -> None:
        self.logger.error(message)

    def log_debug(self, message: str) -> None:
        self.logger.debug(message)

    @staticmethod
    def format_duration(seconds: float) -> str:
        """Format a duration as "45.2s", "1m 23s" or "2h 15m"."""
        if seconds < 60:
            return f"{seconds:.1f}s"
        if seconds < 3600:
            return f"{int(seconds // 60)}m {int(seconds % 60)}s"
        return f"{int(seconds // 3600)}h {int((seconds % 3600) // 60)}m"

