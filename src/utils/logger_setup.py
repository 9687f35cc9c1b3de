import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_DIR_DEFAULT = Path("logs")
LOG_FILE_MAX_BYTES_DEFAULT = 5 * 1024 * 1024  # 5 MB
LOG_FILE_BACKUP_COUNT_DEFAULT = 3
LOG_LEVEL_ENV_VAR = "PUFFIN_LOG_LEVEL"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(module)s.%(funcName)s:%(lineno)d] - %(message)s"


def resolve_log_level(default: int = logging.INFO, verbose: bool = False) -> int:
    """Pick the log level from ``--verbose`` or the PUFFIN_LOG_LEVEL variable."""
    if verbose:
        return logging.DEBUG
    configured = os.environ.get(LOG_LEVEL_ENV_VAR, "").strip().upper()
    level = logging.getLevelName(configured) if configured else default
    return level if isinstance(level, int) else default


def setup_logging(
    logger_name: str,
    log_level: int = logging.INFO,
    log_dir: Path = LOG_DIR_DEFAULT,
    log_file_max_bytes: int = LOG_FILE_MAX_BYTES_DEFAULT,
    log_file_backup_count: int = LOG_FILE_BACKUP_COUNT_DEFAULT,
    console_output: bool = True
):
    """
    Configures and returns a logger instance.

    Args:
        logger_name: The name for the logger (e.g., __name__ or a custom name).
        log_level: The minimum log level to capture (e.g., logging.INFO, logging.DEBUG).
        log_dir: The directory to store log files.
        log_file_max_bytes: Maximum size of a log file before rotation.
        log_file_backup_count: Number of backup log files to keep.
        console_output: Whether to also log to stderr (stdout is kept for command output).

    Returns:
        A configured logger instance.
    """
    log_dir.mkdir(parents=True, exist_ok=True)
    logger = logging.getLogger(logger_name)

    # Containers created more than once per process share one set of handlers
    if logger.handlers:
        logger.setLevel(log_level)
        return logger

    logger.setLevel(log_level)
    formatter = logging.Formatter(LOG_FORMAT)

    if console_output:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    # File Handler (Rotating)
    sanitized_logger_name = "".join(c if c.isalnum() or c in ['_', '-'] else '_' for c in logger_name)
    log_file_path = log_dir / f"{sanitized_logger_name}.log"

    file_handler = RotatingFileHandler(
        log_file_path,
        maxBytes=log_file_max_bytes,
        backupCount=log_file_backup_count,
        encoding='utf-8'
    )
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    return logger
