"""
Planner Logging

Structured logger used as the planner's reporting sink: registration and query
errors, overlap diagnostics and the ASCII memory plan all go through it.
Output goes to the console and, optionally, to a log file.

Usage:
    from memplan.logging import PlannerLogger, get_logger

    # Console-only logger shared by every planner that isn't given one
    log = get_logger()
    log.info("Planning...")

    # Log file next to a plan dump
    with PlannerLogger(output_dir=Path("plans/"), filename_prefix="allcnn") as log:
        planner = TopologicalMemoryPlanner(scratch, 9, reporter=log)
        planner.print_memory_plan()
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional, TextIO


# Module-level logger instance
_planner_logger: Optional['PlannerLogger'] = None


def get_logger() -> 'PlannerLogger':
    """
    Get the current planner logger instance.

    Returns:
        The active PlannerLogger, or a default console-only logger if none initialized.
    """
    global _planner_logger
    if _planner_logger is None:
        _planner_logger = PlannerLogger()
    return _planner_logger


def set_logger(logger: Optional['PlannerLogger']):
    """Set the module-level planner logger (None resets to the default)."""
    global _planner_logger
    _planner_logger = logger


@dataclass
class LogConfig:
    """Configuration for planner logging."""

    # Output directory for log files
    output_dir: Optional[Path] = None

    # Prefix for log filename (e.g., "allcnn_plan")
    filename_prefix: Optional[str] = None

    # Log level for console output
    console_level: int = logging.INFO

    # Log level for file output
    file_level: int = logging.DEBUG

    # Whether to include timestamps in file output
    file_timestamps: bool = True

    # Width for section separators
    separator_width: int = 80


class PlannerLogger:
    """
    Structured logger for memory planning.

    Provides:
    - Dual output to console and file, each with its own level
    - Section headers and separators for plan dumps
    - An in-memory record of everything logged (get_content())
    """

    def __init__(
        self,
        output_dir: Optional[Path] = None,
        filename_prefix: Optional[str] = None,
        config: Optional[LogConfig] = None,
    ):
        """
        Initialize the planner logger.

        Args:
            output_dir: Directory to save log file. If None, logs to console only.
            filename_prefix: Prefix for log filename. The log file will be
                             named "{prefix}.log".
            config: Optional LogConfig for levels and formatting.
        """
        self.config = config or LogConfig()
        self.output_dir = output_dir or self.config.output_dir
        self.filename_prefix = filename_prefix or self.config.filename_prefix

        self._log_file: Optional[TextIO] = None
        self._log_path: Optional[Path] = None
        self._lines: list = []

        if self.output_dir and self.filename_prefix:
            self._setup_file_logging()

    def _setup_file_logging(self):
        """Set up file logging."""
        self.output_dir = Path(self.output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self._log_path = self.output_dir / f"{self.filename_prefix}.log"
        self._log_file = open(self._log_path, 'w')

    @property
    def log_path(self) -> Optional[Path]:
        """Get the path to the log file, if any."""
        return self._log_path

    def _write(self, message: str, level: int = logging.INFO):
        """Write a message to console and/or file according to level."""
        self._lines.append(message)

        if level >= self.config.console_level:
            print(message)

        if self._log_file and level >= self.config.file_level:
            timestamp = ""
            if self.config.file_timestamps:
                timestamp = f"[{datetime.now().strftime('%H:%M:%S.%f')[:-3]}] "
            self._log_file.write(f"{timestamp}{message}\n")
            self._log_file.flush()

    def info(self, message: str):
        """Log an informational message."""
        self._write(message)

    def debug(self, message: str):
        """Log a debug message (file only by default)."""
        self._write(message, level=logging.DEBUG)

    def warning(self, message: str):
        """Log a warning message."""
        self._write(f"WARNING: {message}", level=logging.WARNING)

    def error(self, message: str):
        """Log an error message."""
        self._write(f"ERROR: {message}", level=logging.ERROR)

    def success(self, message: str):
        """Log a success message."""
        self._write(f"[OK] {message}")

    def section(self, title: str, level: int = 1):
        """
        Print a section header.

        Args:
            title: Section title
            level: Header level (1=major, 2=minor)
        """
        width = self.config.separator_width
        self._write("")
        if level == 1:
            self._write("=" * width)
            self._write(title)
            self._write("=" * width)
        else:
            self._write(title)
            self._write("-" * width)

    def blank(self):
        """Print a blank line."""
        self._write("")

    def summary(self, title: str, **metrics):
        """
        Log a summary with key-value metrics.

        Args:
            title: Summary title
            **metrics: Key-value pairs to display
        """
        self._write("")
        self._write(f"{title}:")
        for key, value in metrics.items():
            formatted_key = key.replace("_", " ").title()
            self._write(f"  {formatted_key}: {value}")

    def get_content(self) -> str:
        """Get all logged content as a string."""
        return "\n".join(self._lines)

    def close(self):
        """Close the log file."""
        if self._log_file:
            self._log_file.close()
            self._log_file = None

    def __enter__(self) -> 'PlannerLogger':
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - close log file."""
        self.close()
        return False


def create_plan_logger(output_dir: Optional[Path], plan_name: str,
                       verbose: bool = False) -> PlannerLogger:
    """
    Create a planner logger with the standard naming convention.

    The log file will be named: {plan_name}_plan.log

    Args:
        output_dir: Directory to save the log file (None for console only)
        plan_name: Name of the graph being planned
        verbose: Also show debug messages on the console

    Returns:
        Configured PlannerLogger instance
    """
    import re

    plan_name_clean = re.sub(r'[^a-zA-Z0-9_-]', '', plan_name) or "memory"
    config = LogConfig(console_level=logging.DEBUG if verbose else logging.INFO)

    return PlannerLogger(
        output_dir=output_dir,
        filename_prefix=f"{plan_name_clean}_plan",
        config=config,
    )
