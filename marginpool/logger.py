"""
Marginpool Logging System
=========================

A unified, thread-safe logging utility for marginpool. This module integrates
with the standard Python `logging` library and the `rich` library to provide
structured, safe, and visually distinct logging outputs.

Usage:
    >>> from marginpool.logger import get_logger
    >>> logger = get_logger(__name__)
    >>> logger.info("Pool initialized")
"""

import logging
import logging.handlers
import re
import sys
import threading
import time
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.highlighter import RegexHighlighter
from rich.logging import RichHandler
from rich.theme import Theme

from .constants import (
    LOG_LEVEL,
    LOG_FORMAT,
    LOG_DATE_FORMAT,
    LOG_MAX_FILE_SIZE,
    LOG_BACKUP_COUNT,
    LOG_CONSOLE_HIGHLIGHTING,
    LOG_FILE_ENABLED,
)


# Define log file location relative to the working directory
LOG_FILE_PATH = Path("logs") / "marginpool.log"


class LogManager:
    """
    Manages logging configuration via the Singleton pattern.

    This class ensures that the logging subsystem is initialized exactly once.
    It handles the setup of 'Rich' console and rotating file handlers.

    Attributes:
        _instance (LogManager): The singleton instance.
        _lock (threading.Lock): Thread lock for atomic initialization.
    """

    _instance: Optional["LogManager"] = None
    _lock: threading.Lock = threading.Lock()


    def __new__(cls) -> "LogManager":
        """Creates or returns the existing singleton instance."""
        # Double-checked locking for thread-safe singleton initialization
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance


    def __init__(self) -> None:
        if self._initialized:
            return
        self._configured = False
        self._handlers: List[logging.Handler] = []
        self._initialized = True


    @staticmethod
    def validate_log_format(log_format: str) -> str:
        """
        Validates the syntax of a logging format string.

        Args:
            log_format (str): The logging format string (e.g., "%(asctime)s - %(message)s").

        Returns:
            str: The validated format string, or the default `LOG_FORMAT` if validation fails.
        """
        try:
            if not log_format:
                return str(LOG_FORMAT.default())

            log_format = str(log_format)

            format_specifier_pattern = r"\([a-zA-Z_][a-zA-Z0-9_]*\)[a-zA-Z]"
            for match in re.finditer(format_specifier_pattern, log_format):
                start_pos = match.start()
                if start_pos == 0 or log_format[start_pos - 1] != "%":
                    raise ValueError("Malformed format specifier.")

            # Format a dummy record to catch runtime errors
            formatter = logging.Formatter(fmt=log_format)
            record = logging.LogRecord(
                name="test", level=logging.INFO, pathname="", lineno=0,
                msg="test", args=(), exc_info=None,
            )
            formatted_output = formatter.format(record)

            if re.search(format_specifier_pattern, formatted_output):
                raise ValueError("Format specifiers not properly processed.")

            return log_format
        except (ValueError, KeyError, TypeError) as e:
            print(
                f"{time.strftime('%Y-%m-%d %H:%M:%S')} - marginpool.logger - "
                f"Validation Error: {e}. Using default.",
                file=sys.stderr,
            )
            return str(LOG_FORMAT.default())


    @staticmethod
    def validate_date_format(date_format: str) -> str:
        """
        Validates a date format string against standard strftime directives.

        Returns:
            str: The validated date format string, or default if validation fails.
        """
        if not date_format:
            return str(LOG_DATE_FORMAT.default())

        date_format = str(date_format)

        # Strictly strftime directives and standard separators
        date_format_pattern = re.compile(
            rf"^(?=.*%(?!%)(?:[EO])?(?:[-_0^#])*(?:[A-DF-HIM-NPR-VW-Za-hj-lm-npr-uw-z]))"
            rf"(?:%%|%(?:[EO])?(?:[-_0^#])*(?:[A-DF-HIM-NPR-VW-Za-hj-lm-npr-uw-z])|[0-9 \t:\-\/\.,TZ+])+$"
        )

        if not date_format_pattern.match(date_format):
            print(
                f"{time.strftime(str(LOG_DATE_FORMAT.default()))} - marginpool.logger - "
                f"Invalid date format. Using default.",
                file=sys.stderr,
            )
            return str(LOG_DATE_FORMAT.default())

        return date_format


    def configure(
        self,
        log_level: Optional[str] = None,
        log_file: Optional[Path] = None,
        console_output: bool = True,
        file_output: Optional[bool] = None,
        force: bool = False,
    ) -> None:
        """
        Configures the root logger with console and file handlers.

        Args:
            log_level (Optional[str]): Logging level (DEBUG, INFO, etc.). Defaults to env var.
            log_file (Optional[Path]): Path to log file. Defaults to `logs/marginpool.log`.
            console_output (bool): Enable console logging. Defaults to True.
            file_output (Optional[bool]): Enable rotating file logging. Defaults to LOG_FILE_ENABLED.
            force (bool): Replace the handlers of an earlier configuration. Defaults to False.
        """
        with self._lock:
            if self._configured and not force:
                return

            level_str = log_level or LOG_LEVEL
            numeric_level = getattr(logging, str(level_str).upper(), logging.INFO)

            root_logger = logging.getLogger()
            root_logger.setLevel(numeric_level)
            if self._configured:
                for handler in self._handlers:
                    root_logger.removeHandler(handler)
                    handler.close()
            else:
                root_logger.handlers.clear()
            self._handlers = []

            log_format = self.validate_log_format(LOG_FORMAT)
            date_format = self.validate_date_format(LOG_DATE_FORMAT)

            # UTC timestamps; pool time is block time, log time is wall time
            formatter = TerminalSafeFormatter(fmt=log_format, datefmt=date_format + " UTC")
            formatter.converter = time.gmtime

            if console_output:
                if LOG_CONSOLE_HIGHLIGHTING:
                    marginpool_theme = Theme(
                        {
                            "marginpool.address":        "cyan",
                            "marginpool.hash":           "dim cyan",
                            "marginpool.level_critical": "bold red reverse",
                            "marginpool.level_debug":    "bold dim",
                            "marginpool.level_error":    "bold red",
                            "marginpool.level_info":     "bold green",
                            "marginpool.level_warning":  "bold yellow",
                            "marginpool.logger_name":    "magenta",
                            "marginpool.direction":      "bold white",
                            "marginpool.number":         "bold blue",
                            "marginpool.tag":            "bold magenta",
                            "marginpool.timestamp":      "bold cyan",
                        }
                    )

                    console = Console(theme=marginpool_theme, highlight=False, stderr=True)

                    rich_handler = RichHandler(
                        console=console,
                        highlighter=MarginPoolLogHighlighter(),
                        keywords=[],
                        rich_tracebacks=True,
                        omit_repeated_times=False,
                        show_path=False,
                        show_time=False,
                        show_level=False,
                        markup=False,
                    )
                    rich_handler.setLevel(numeric_level)
                    rich_handler.setFormatter(formatter)
                    root_logger.addHandler(rich_handler)
                    self._handlers.append(rich_handler)
                else:
                    console_handler = logging.StreamHandler(sys.stderr)
                    console_handler.setLevel(numeric_level)
                    console_handler.setFormatter(formatter)
                    root_logger.addHandler(console_handler)
                    self._handlers.append(console_handler)

            if file_output is None:
                file_output = bool(LOG_FILE_ENABLED)

            if file_output:
                log_file_path = log_file or LOG_FILE_PATH
                log_file_path.parent.mkdir(parents=True, exist_ok=True)

                file_handler = logging.handlers.RotatingFileHandler(
                    filename=str(log_file_path),
                    maxBytes=LOG_MAX_FILE_SIZE,
                    backupCount=LOG_BACKUP_COUNT,
                    encoding="utf-8",
                )
                file_handler.setLevel(numeric_level)
                file_handler.setFormatter(formatter)
                root_logger.addHandler(file_handler)
                self._handlers.append(file_handler)

            self._configured = True


    def get_logger(self, name: str) -> logging.Logger:
        """
        Retrieves a configured logger instance for a specific module.

        Args:
            name (str): The name of the logger (typically `__name__`).

        Returns:
            logging.Logger: A configured standard Python logger.
        """
        if not self._configured:
            self.configure()
        return logging.getLogger(name)


    @property
    def is_configured(self) -> bool:
        """Returns True if the logging system has been successfully configured."""
        return self._configured


class TerminalSafeFormatter(logging.Formatter):
    """
    A formatter class that sanitizes log output.

    Strips ANSI escape sequences and non-printable control characters so that
    caller-supplied strings (token symbols, callback payloads) cannot
    manipulate the terminal.
    """

    # ANSI CSI sequences and single ESC chars
    _ansi_escape_re = re.compile(
        r"\x1b\[[0-?]*[ -/]*[@-~]"
        r"|\x1b[@-Z\\-_]"
    )
    # Control chars (0x00-0x1F) excluding Tab and Newline
    _control_chars_re = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
    _carriage_return_re = re.compile(r"\r")


    @classmethod
    def sanitize(cls, text: str) -> str:
        """Removes potentially dangerous characters from the provided text."""
        if not text:
            return text
        text = cls._ansi_escape_re.sub("", text)
        text = cls._carriage_return_re.sub("", text)
        text = cls._control_chars_re.sub("", text)
        return text


    def format(self, record: logging.LogRecord) -> str:
        return self.sanitize(super().format(record))


class MarginPoolLogHighlighter(RegexHighlighter):
    """Rich highlighter for pool logs: addresses, position keys, levels and amounts."""

    base_style = "marginpool."
    highlights = [
        r"(?P<hash>\b0x[0-9a-fA-F]{64}\b)",
        r"(?P<address>\b0x[0-9a-fA-F]{40}\b)",
        r"(?P<level_critical>\bCRITICAL\b)",
        r"(?P<level_debug>\bDEBUG\b)",
        r"(?P<level_error>\bERROR\b)",
        r"(?P<level_info>\bINFO\b)",
        r"\-\s+\w+\s+-\s+(?P<logger_name>[\w.]+)(?=\s-\s)",
        r"(?P<level_warning>\bWARNING\b)",
        r"(?P<direction>\bzero_for_one=(True|False)\b)",
        r"(?P<number>(?<![\w.])\d{4,}(?![\w.]))",
        r"(?P<tag>\[.*?\])",
        r"(?P<timestamp>^(.*?)UTC)",
    ]


_manager = LogManager()

def get_logger(name: str) -> logging.Logger:
    """
    Public accessor of the logging system.
    Delegates to the Singleton LogManager, ensuring configuration is applied.
    """
    return _manager.get_logger(name)


def configure_logging(
    log_level: Optional[str] = None,
    log_file: Optional[Path] = None,
    file_output: Optional[bool] = None,
) -> None:
    """
    Reconfigures the logging system, replacing the handlers installed on import.

    Intended for application entry points applying the [logging] config section.
    """
    _manager.configure(log_level=log_level, log_file=log_file, file_output=file_output, force=True)

# Auto-configure on import to ensure immediate availability
_manager.configure()
