"""
Logging setup for the SPDK disk manager.

Every module logs through ``logging.getLogger(__name__)``; this module only
wires handlers once at process start.
"""

import logging
import sys
from pathlib import Path
from typing import Optional, TextIO, Union

_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(
    component_name: str,
    level: Union[int, str] = logging.INFO,
    log_file: Optional[str] = None,
    format_string: Optional[str] = None,
    stream: Optional[TextIO] = None,
) -> logging.Logger:
    """
    Configure root logging for a component.

    Args:
        component_name: Short identifier shown in every line (e.g. 'disks')
        level: Logging level, as int or level name
        log_file: Optional file path for log output
        format_string: Custom format string (default provided)
        stream: Console stream, stdout unless given
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    if format_string is None:
        format_string = f"[%(asctime)s] [{component_name.upper()}] %(levelname)s - %(message)s"

    handlers = [logging.StreamHandler(stream or sys.stdout)]
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path))

    logging.basicConfig(
        level=level,
        format=format_string,
        datefmt=_DATE_FORMAT,
        handlers=handlers,
        force=True,
    )

    logger = logging.getLogger(component_name)
    logger.info(
        "%s logging initialized (level=%s)",
        component_name.upper(),
        logging.getLevelName(level),
    )
    return logger
