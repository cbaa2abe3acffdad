import os
import sys
from pathlib import Path
from typing import Optional

from loguru import logger

FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level:<8} | {name}:{function}:{line} - {message}"


def setup_logging(logs_dir: Optional[Path] = None, console_level: Optional[str] = None) -> None:
    """Configure loguru sinks for the desktop app and the CLI.

    The desktop app logs to a rotating ``dailyflow.log`` under ``logs_dir`` and
    echoes to stderr. The CLI passes no ``logs_dir`` and a higher console
    level so that stdout stays clean for its Markdown output.
    """
    level = os.environ.get("DAILYFLOW_LOG_LEVEL", "INFO").upper()

    # Remove default handler to avoid duplicate logs if called twice
    logger.remove()
    if logs_dir is not None:
        logs_dir.mkdir(parents=True, exist_ok=True)
        logger.add(
            logs_dir / "dailyflow.log",
            rotation="10 MB",
            retention=10,
            backtrace=True,
            diagnose=False,
            level=level,
            enqueue=True,
            format=FILE_FORMAT,
        )
    logger.add(sys.stderr, level=console_level or level)
