import logging
import os
import socket
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


class _MaxLevelFilter(logging.Filter):
    def __init__(self, max_level: int) -> None:
        super().__init__()
        self._max_level = max_level

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno <= self._max_level


def configure_logging(logs_dir: Path, run_name: str, log_level: int | str = logging.INFO) -> Path:
    if isinstance(log_level, str):
        resolved = logging.getLevelName(log_level.upper())
        if not isinstance(resolved, int):
            raise ValueError(f"Unknown log level: {log_level}")
        log_level = resolved

    logs_dir.mkdir(parents=True, exist_ok=True)
    log_path = logs_dir / f"{run_name}.log"

    for handler in logging.root.handlers[:]:
        logging.root.removeHandler(handler)

    formatter = logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s")

    file_handler = logging.FileHandler(log_path, mode="w")
    file_handler.setFormatter(formatter)

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setLevel(log_level)
    stdout_handler.addFilter(_MaxLevelFilter(logging.INFO))
    stdout_handler.setFormatter(formatter)

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(logging.WARNING)
    stderr_handler.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(log_level)
    root.addHandler(file_handler)
    root.addHandler(stdout_handler)
    root.addHandler(stderr_handler)
    logging.getLogger("matplotlib").setLevel(logging.WARNING)
    logging.getLogger("PIL").setLevel(logging.WARNING)

    # Record host/time so log files from different machines can be told apart
    try:
        user = os.getenv("USER") or os.getenv("LOGNAME") or ""
        root.info(
            "Run context | run_name=%s | user=%s | cwd=%s | host=%s | pid=%d | timestamp_utc=%s",
            run_name,
            user,
            os.getcwd(),
            socket.gethostname(),
            os.getpid(),
            datetime.now(timezone.utc).isoformat(),
        )
    except OSError:
        root.debug("Run context unavailable", exc_info=True)

    return log_path


def get_logger(name: Optional[str] = None) -> logging.Logger:
    return logging.getLogger(name if name else __name__)
