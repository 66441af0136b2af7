"""
CrossGov Logging System
=======================

Rich console output plus an optional rotating file for the vote service,
the publisher and the relayer. Configured once, on first import.

Usage:
    >>> from crossgov.logger import get_logger
    >>> logger = get_logger(__name__)
    >>> logger.info("Relayer started")
"""

import logging
import logging.handlers
import re
import sys
import threading
import time
from pathlib import Path
from typing import Optional, Tuple

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
    LOG_TO_FILE,
)


PROJECT_ROOT = Path(__file__).parent.parent
LOG_FILE_PATH = PROJECT_ROOT / "logs" / "crossgov.log"

# Chatty third-party loggers and the level they are capped at
QUIET_LOGGERS = {
    "httpx": logging.WARNING,
    "web3": logging.WARNING,
    "web3.providers": logging.WARNING,
    "web3.RequestManager": logging.WARNING,
    "aiosqlite": logging.WARNING,
    "uvicorn.access": logging.WARNING,
    "uvicorn": logging.ERROR,
    "uvicorn.error": logging.ERROR,
}

CROSSGOV_THEME = Theme(
    {
        "crossgov.address":        "cyan",
        "crossgov.arrow":          "bold yellow",
        "crossgov.chain":          "bold magenta",
        "crossgov.hash":           "dim cyan",
        "crossgov.level_critical": "bold red reverse",
        "crossgov.level_debug":    "bold dim",
        "crossgov.level_error":    "bold red",
        "crossgov.level_info":     "bold green",
        "crossgov.level_warning":  "bold yellow",
        "crossgov.logger_name":    "magenta",
        "crossgov.proposal":       "bold white",
        "crossgov.timestamp":      "bold cyan",
        "crossgov.url":            "cyan",
    }
)


class LogManager:
    """
    Process-wide logging setup. A singleton so that the CLI, the API and
    the tests all share one set of root handlers.
    """

    _instance: Optional["LogManager"] = None
    _lock: threading.Lock = threading.Lock()

    def __new__(cls) -> "LogManager":
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._configured = False
        return cls._instance

    @staticmethod
    def resolve_formats(log_format: str, date_format: str) -> Tuple[str, str]:
        """
        Return usable (format, datefmt), falling back to the defaults for
        whichever one fails to render a sample record.
        """
        fmt = str(log_format or LOG_FORMAT.default())
        datefmt = str(date_format or LOG_DATE_FORMAT.default())
        sample = logging.LogRecord(
            name="crossgov", level=logging.INFO, pathname="", lineno=0,
            msg="sample", args=(), exc_info=None,
        )
        try:
            rendered = logging.Formatter(fmt=fmt).format(sample)
            if re.search(r"%\([a-zA-Z_]\w*\)", rendered):
                raise ValueError("unprocessed format specifier")
        except (ValueError, KeyError, TypeError) as exc:
            print(f"crossgov.logger - invalid LOG_FORMAT ({exc}); using default", file=sys.stderr)
            fmt = str(LOG_FORMAT.default())
        if "%" not in datefmt:
            print("crossgov.logger - invalid LOG_DATE_FORMAT; using default", file=sys.stderr)
            datefmt = str(LOG_DATE_FORMAT.default())
        return fmt, datefmt

    def _console_handler(self, formatter: logging.Formatter) -> logging.Handler:
        if not LOG_CONSOLE_HIGHLIGHTING:
            handler = logging.StreamHandler(sys.stdout)
        else:
            handler = RichHandler(
                console=Console(theme=CROSSGOV_THEME, highlight=False),
                highlighter=CrossGovLogHighlighter(),
                keywords=[],
                rich_tracebacks=True,
                show_path=False,
                show_time=False,
                show_level=False,
                markup=False,
            )
        handler.setFormatter(formatter)
        return handler

    def _file_handler(self, formatter: logging.Formatter, log_file: Path) -> logging.Handler:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.handlers.RotatingFileHandler(
            filename=str(log_file),
            maxBytes=LOG_MAX_FILE_SIZE,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
        handler.setFormatter(formatter)
        return handler

    def configure(
        self,
        log_level: Optional[str] = None,
        log_file: Optional[Path] = None,
        console_output: bool = True,
        file_output: Optional[bool] = None,
    ) -> None:
        """
        Install handlers on the root logger. Later calls are no-ops.

        Args:
            log_level: DEBUG, INFO, ... (default: LOG_LEVEL)
            log_file: Rotating log file (default: logs/crossgov.log)
            console_output: Log to stdout
            file_output: Log to `log_file` (default: LOG_TO_FILE)
        """
        with self._lock:
            if self._configured:
                return

            level = getattr(logging, str(log_level or LOG_LEVEL).upper(), logging.INFO)
            root = logging.getLogger()
            root.setLevel(level)
            root.handlers.clear()
            for name, cap in QUIET_LOGGERS.items():
                logging.getLogger(name).setLevel(cap)

            fmt, datefmt = self.resolve_formats(LOG_FORMAT, LOG_DATE_FORMAT)
            # timestamps are UTC regardless of host timezone
            formatter = TerminalSafeFormatter(fmt=fmt, datefmt=datefmt + " UTC")
            formatter.converter = time.gmtime

            handlers = []
            if console_output:
                handlers.append(self._console_handler(formatter))
            if bool(LOG_TO_FILE) if file_output is None else file_output:
                handlers.append(self._file_handler(formatter, log_file or LOG_FILE_PATH))
            for handler in handlers:
                handler.setLevel(level)
                root.addHandler(handler)

            self._configured = True

    def get_logger(self, name: str) -> logging.Logger:
        if not self._configured:
            self.configure()
        return logging.getLogger(name)

    @property
    def is_configured(self) -> bool:
        return self._configured


class TerminalSafeFormatter(logging.Formatter):
    """
    Strips ANSI escapes and control characters. Addresses, revert reasons
    and request paths reach the log verbatim from untrusted callers.
    """

    _escape_re = re.compile(r"\x1b\[[0-?]*[ -/]*[@-~]|\x1b[@-Z\\-_]")
    # everything below 0x20 except tab and newline, plus DEL
    _control_re = re.compile(r"[\x00-\x08\x0B-\x1F\x7F]")

    @classmethod
    def sanitize(cls, text: str) -> str:
        if not text:
            return text
        return cls._control_re.sub("", cls._escape_re.sub("", text))

    def format(self, record: logging.LogRecord) -> str:
        return self.sanitize(super().format(record))


class CrossGovLogHighlighter(RegexHighlighter):
    """Levels, proposal ids, chain tags, hashes and addresses."""

    base_style = "crossgov."
    highlights = [
        r"(?P<arrow>-->)",
        r"(?P<level_critical>\bCRITICAL\b)",
        r"(?P<level_debug>\bDEBUG\b)",
        r"(?P<level_error>\bERROR\b)",
        r"(?P<level_info>\bINFO\b)",
        r"(?P<level_warning>\bWARNING\b)",
        r"\-\s+\w+\s+-\s+(?P<logger_name>[\w.]+)(?=\s-\s)",
        r"(?P<proposal>(#|pid=)\d+)",
        r"(?P<chain>\[(A|B)\])",
        r"(?P<hash>\b0x[0-9a-fA-F]{64}\b)",
        r"(?P<address>\b0x[0-9a-fA-F]{40}\b)",
        r"(?P<timestamp>^(.*?)UTC)",
        r"(?P<url>https?://\S+)",
    ]


_manager = LogManager()


def get_logger(name: str) -> logging.Logger:
    """Module logger; configures logging on first use."""
    return _manager.get_logger(name)


_manager.configure()
