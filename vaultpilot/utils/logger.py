"""
Logging system for VaultPilot

Root logger with two handlers:
- rotating file (full timestamps, for the audit trail of every cycle)
- rich console (compact, colourised)

Per-module levels come from the `logging.modules` config section. Messages
stay ASCII.
"""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Dict, Optional

from rich.console import Console
from rich.logging import RichHandler

DEFAULT_LOG_FILE = "logs/vaultpilot.log"
DEFAULT_MAX_BYTES = 10_485_760  # 10MB

FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# HTTP/RPC client chatter (one line per request otherwise)
_QUIET_LOGGERS = ('urllib3', 'requests', 'web3', 'httpx', 'httpcore', 'sqlalchemy.engine')


def _level(name: str) -> int:
    return getattr(logging, name.upper())


def _file_handler(log_file: str, level: int, max_bytes: int, backup_count: int) -> logging.Handler:
    Path(log_file).parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        filename=log_file,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding='utf-8'
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt=FILE_FORMAT, datefmt=DATE_FORMAT))
    return handler


def _console_handler(level: int) -> logging.Handler:
    handler = RichHandler(
        console=Console(),
        rich_tracebacks=True,
        tracebacks_show_locals=False,
        show_time=False,  # Time already in file logs
        show_path=False
    )
    handler.setLevel(level)
    return handler


def setup_logging(
    log_file: str = DEFAULT_LOG_FILE,
    log_level: str = "INFO",
    max_bytes: int = DEFAULT_MAX_BYTES,
    backup_count: int = 5,
    module_levels: Optional[Dict[str, str]] = None
) -> logging.Logger:
    """
    Setup VaultPilot logging system

    Args:
        log_file: Path to log file (parent directory is created)
        log_level: Handler level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        max_bytes: Max size per log file before rotation
        backup_count: Number of rotated files to keep
        module_levels: Logger levels by name (e.g. {'vaultpilot.executor': 'DEBUG'})

    Returns:
        Root logger instance

    Example:
        >>> setup_logging(log_level='INFO', module_levels={'vaultpilot.tracker': 'DEBUG'})
        >>> get_logger(__name__).info("Scheduler started")
    """
    level = _level(log_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)  # Filtering happens in handlers
    root_logger.handlers.clear()
    root_logger.addHandler(_file_handler(log_file, level, max_bytes, backup_count))
    root_logger.addHandler(_console_handler(level))

    for module_name, module_level in (module_levels or {}).items():
        logging.getLogger(module_name).setLevel(_level(module_level))

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger = get_logger("vaultpilot.setup")
    logger.info(
        f"Logging to {log_file} at {log_level.upper()} "
        f"(rotate at {max_bytes} bytes, keep {backup_count})"
    )
    if module_levels:
        logger.debug(f"Per-module log levels: {module_levels}")

    return root_logger


def get_logger(name: str) -> logging.Logger:
    """Logger for a module (pass __name__)"""
    return logging.getLogger(name)


def setup_logging_from_config(config, log_file: Optional[str] = None) -> logging.Logger:
    """Setup logging from the 'logging' section of a loaded Config"""
    return setup_logging(
        log_file=log_file or config.get('logging.file', DEFAULT_LOG_FILE),
        log_level=config.get('logging.level', 'INFO'),
        max_bytes=config.get('logging.max_bytes', DEFAULT_MAX_BYTES),
        backup_count=config.get('logging.backup_count', 5),
        module_levels=config.get('logging.modules')
    )
