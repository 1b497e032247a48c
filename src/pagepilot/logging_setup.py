# src/pagepilot/logging_setup.py

from __future__ import annotations

import logging
import sys
from collections.abc import Iterable
from pathlib import Path

LOG_FILE_NAME = "pagepilot.log"

# HTTP stack under the AI client: request-level chatter at INFO.
DEFAULT_QUIET_LOGGERS = ("httpx", "httpcore", "openai")


class _ConsoleNoiseFilter(logging.Filter):
    """
    Decides what reaches the REPL's stderr. The file log is never filtered.

    Task, execution and AI client records pass at the handler level. The
    cache package only shows WARNING+, since its janitor and eviction logs
    would interleave with command output. Anything outside pagepilot,
    including captured `warnings`, needs ERROR+.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        name = record.name

        if name.startswith("pagepilot."):
            if name.startswith("pagepilot.cache."):
                return record.levelno >= logging.WARNING
            return True

        return record.levelno >= logging.ERROR


def setup_logging(
    *,
    log_dir: str | Path = ".local/pagepilot",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
    quiet_loggers: Iterable[str] = DEFAULT_QUIET_LOGGERS,
) -> Path:
    """
    Install pagepilot's two root handlers and return the log file path.

    stderr gets `console_level` and the noise filter; `<log_dir>/pagepilot.log`
    gets every record from `file_level` up, which is where cache evictions,
    model fallbacks and usage-recording failures end up. Loggers named in
    `quiet_loggers` are capped at WARNING so a /run does not dump HTTP
    request lines into the file.

    Replaces existing root handlers, so calling it again (tests, reloads)
    does not duplicate output.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / LOG_FILE_NAME

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)

    for h in list(root.handlers):
        root.removeHandler(h)

    fmt = logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(fmt)
    console.addFilter(_ConsoleNoiseFilter())
    root.addHandler(console)

    file_handler = logging.FileHandler(str(log_file), encoding="utf-8")
    file_handler.setLevel(file_level)
    file_handler.setFormatter(fmt)
    root.addHandler(file_handler)

    for name in quiet_loggers:
        logging.getLogger(name).setLevel(logging.WARNING)

    # warnings.warn(...) arrives as the 'py.warnings' logger.
    logging.captureWarnings(True)
    return log_file
