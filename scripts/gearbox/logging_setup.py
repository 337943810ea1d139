from __future__ import annotations

import logging
import sys
from pathlib import Path

LOG_FILE_NAME = "gearbox.log"


class _ConsoleNoiseFilter(logging.Filter):
    """
    Keep stderr readable in headless runs:
    - allow gearbox logs
    - worker-thread chatter from the registry only at WARNING+
    - third-party and captured Python warnings only at ERROR+
    """

    def filter(self, record: logging.LogRecord) -> bool:
        name = record.name

        if name.startswith("gearbox.") or name in ("gearbox", "monitor"):
            if name == "gearbox.tasks":
                return record.levelno >= logging.WARNING
            return True

        return record.levelno >= logging.ERROR


def setup_logging(
    *,
    log_dir: str | Path,
    level: str | int = logging.INFO,
    console: bool = False,
    file_level: int = logging.DEBUG,
) -> Path:
    """
    Configure the root logger with:
    - File handler: full logs for debugging
    - Console handler (headless modes only): filtered, on stderr

    The Textual screen owns the terminal, so the TUI must run with
    console=False. Call this once, before the first log call.
    Returns the log file path.
    """
    log_dir = Path(log_dir).expanduser()
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / LOG_FILE_NAME

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)

    for h in list(root.handlers):
        root.removeHandler(h)

    fmt = logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)s [%(threadName)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    fh = logging.FileHandler(str(log_file), encoding="utf-8")
    fh.setLevel(file_level)
    fh.setFormatter(fmt)
    root.addHandler(fh)

    if console:
        ch = logging.StreamHandler(sys.stderr)
        ch.setLevel(level)
        ch.setFormatter(fmt)
        ch.addFilter(_ConsoleNoiseFilter())
        root.addHandler(ch)

    # Route warnings.warn(...) into logging as 'py.warnings'
    logging.captureWarnings(True)
    return log_file
