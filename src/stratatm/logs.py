import logging
import os
import sys
from pathlib import Path

LOG_FORMAT = '[%(asctime)s] %(levelname)-8s [%(name)s:%(funcName)s:%(lineno)d] %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def _console_level(is_debug: bool) -> int:
    """STRATATM_DEBUG wins over STRATATM_LOG_LEVEL; regular users only see warnings and errors."""
    if is_debug:
        return logging.DEBUG
    env_level = os.getenv('STRATATM_LOG_LEVEL', '').upper()
    if env_level:
        return getattr(logging, env_level, logging.WARNING)
    return logging.WARNING

def log_dir() -> Path:
    return Path(os.getenv('STRATATM_LOG_DIR') or Path.home() / ".local" / "share" / "stratatm" / "logs")

def _file_handler(directory: Path):
    # A read-only home only costs us the file log
    try:
        directory.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(directory / "stratatm.log")
    except OSError as e:
        sys.stderr.write(f"stratatm: file logging disabled ({e})\n")
        return None
    handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
    handler.setLevel(logging.DEBUG)
    return handler

def setup_logging():
    """Set up logging configuration for stratatm package with environment-based levels."""
    is_debug = os.getenv('STRATATM_DEBUG', '').lower() in ('1', 'true', 'yes')

    logger = logging.getLogger('stratatm')
    logger.setLevel(logging.DEBUG)  # Logger accepts all, handlers filter
    logger.handlers.clear()

    # File handler (always detailed)
    file_handler = _file_handler(log_dir())
    if file_handler is not None:
        logger.addHandler(file_handler)

    # Console handler goes to stderr so command output stays clean
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(logging.Formatter(
        '%(levelname)-8s [%(name)s] %(message)s' if is_debug
        else '%(levelname)s: %(message)s'
    ))
    console_handler.setLevel(_console_level(is_debug))
    logger.addHandler(console_handler)

    logger.propagate = False
    return logger

# Initialize logging when package is imported
setup_logging()

def get_logger(name: str = None):
    """Get a logger instance for a specific module."""
    if name:
        return logging.getLogger(f'stratatm.{name}')
    return logging.getLogger('stratatm')
