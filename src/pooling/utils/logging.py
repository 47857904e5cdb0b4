# src/pooling/utils/logging.py
"""Console and build-log setup for the deck CLI."""

import logging
import sys
from pathlib import Path
from typing import List, Optional, Union

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Third-party loggers that flood DEBUG output with font and backend chatter
_QUIET_LOGGERS = ("matplotlib", "PIL", "urllib3")


def _parse_level(level: Union[int, str]) -> int:
    if isinstance(level, int):
        return level
    parsed = logging.getLevelName(level.upper())
    if not isinstance(parsed, int):
        raise ValueError(f"Unknown logging level: {level}")
    return parsed


def setup_logging(
    run_dir: Optional[Union[str, Path]] = None,
    log_filename: str = "build.log",
    level: Union[int, str] = logging.INFO,
) -> logging.Logger:
    """Route all log records to stdout and, with ``run_dir``, to a build log.

    Calling it again replaces the previous handlers, so the CLI can log a
    config error before the output directory is known.

    Args:
        run_dir: Deck output directory; the log goes to ``run_dir/log_filename``.
        log_filename: Name of the log file.
        level: Level as an int or a name such as ``"DEBUG"``.

    Returns:
        Root logger instance.
    """
    level = _parse_level(level)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    log_file = None
    if run_dir is not None:
        log_file = Path(run_dir) / log_filename
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    root_logger = logging.getLogger()
    for old in list(root_logger.handlers):
        root_logger.removeHandler(old)
        old.close()

    root_logger.setLevel(level)
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    if log_file is not None:
        root_logger.info(f"Logging to {log_file}")
    return root_logger
