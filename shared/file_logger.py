"""
Logging setup for DevPilot services

Module loggers (orchestrator.*, api.*, shared.*) propagate to the root
logger, so handlers are installed there once at process start.
"""

import logging
import sys
from pathlib import Path
from datetime import datetime
from logging.handlers import RotatingFileHandler
from typing import Optional

FILE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
CONSOLE_FORMAT = '[%(name)s] %(levelname)s: %(message)s'


def _rotating_file_handler(log_file: Path, max_bytes: int, backup_count: int) -> logging.Handler:
    handler = RotatingFileHandler(log_file, maxBytes=max_bytes, backupCount=backup_count, encoding='utf-8')
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(fmt=FILE_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
    return handler


def setup_file_logger(
    service_name: str,
    log_level: str = "INFO",
    output_dir: Optional[str] = None,
    console_output: bool = True,
    max_bytes: int = 10 * 1024 * 1024,  # 10 MB
    backup_count: int = 5
) -> logging.Logger:
    """
    Install console and rotating-file handlers on the root logger.

    Args:
        service_name: Used for the returned logger and the log file name
        log_level: Root level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        output_dir: Directory for <service>_<timestamp>.log; no file when empty
        console_output: Also log to stdout
        max_bytes: Rotation size per file
        backup_count: Rotated files to keep

    Returns:
        The service's named logger
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    log_file = None
    if output_dir:
        directory = Path(output_dir)
        directory.mkdir(parents=True, exist_ok=True)
        log_file = directory / f"{service_name}_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"
        root.addHandler(_rotating_file_handler(log_file, max_bytes, backup_count))

    if console_output:
        console = logging.StreamHandler(sys.stdout)
        console.setLevel(level)
        console.setFormatter(logging.Formatter(fmt=CONSOLE_FORMAT))
        root.addHandler(console)

    logger = logging.getLogger(service_name)
    if log_file:
        logger.info(f"File logging initialized: {log_file}")
    return logger
