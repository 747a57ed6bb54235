"""
Logging configuration for TubeScribe.
Console plus rotating file output, shared by every pipeline component.
"""
import functools
import logging
import logging.handlers
import os
from datetime import datetime
from pathlib import Path

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'

COMPONENT_LOGGERS = (
    'tubescribe.api',
    'tubescribe.captions',
    'tubescribe.audio',
    'tubescribe.whisper',
    'tubescribe.pipeline',
)

_HANDLER_MARKER = "_tubescribe_handler"


def setup_logging(log_level: str = "INFO", log_file: str = "logs/tubescribe.log"):
    """
    Set up logging for the application.

    Safe to call more than once: handlers installed by a previous call are
    replaced rather than duplicated.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Path to log file; empty string disables file output

    Returns:
        Dictionary of component loggers keyed by name
    """
    # Route logs to TUBESCRIBE_DATA_DIR when available
    data_dir = os.getenv("TUBESCRIBE_DATA_DIR")
    if data_dir and log_file:
        log_file = str(Path(data_dir) / "logs" / Path(log_file).name)

    formatter = logging.Formatter(LOG_FORMAT)
    handlers = []

    if log_file:
        log_dir = Path(log_file).parent
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=10*1024*1024,  # 10MB
            backupCount=5
        )
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    handlers.append(console_handler)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    for existing in list(root_logger.handlers):
        if getattr(existing, _HANDLER_MARKER, False):
            root_logger.removeHandler(existing)
            existing.close()
    for handler in handlers:
        setattr(handler, _HANDLER_MARKER, True)
        root_logger.addHandler(handler)

    loggers = {name: logging.getLogger(name) for name in COMPONENT_LOGGERS}
    for logger in loggers.values():
        logger.setLevel(logging.NOTSET)

    return loggers


def log_function_call(func):
    """
    Decorator to log function calls with parameters and return values.
    Do not apply it to anything that receives credentials.
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        logger = logging.getLogger(f'tubescribe.{func.__module__.rsplit(".", 1)[-1]}')

        logger.debug(f"Entering {func.__name__} with args={args}, kwargs={kwargs}")

        try:
            result = func(*args, **kwargs)
            logger.debug(f"Exiting {func.__name__} with result={result}")
            return result
        except Exception as e:
            logger.error(f"Error in {func.__name__}: {e}")
            raise

    return wrapper


class PerformanceMonitor:
    """Monitor performance of pipeline operations."""

    def __init__(self, operation_name: str):
        self.operation_name = operation_name
        self.start_time = None
        self.duration = None
        self.logger = logging.getLogger('tubescribe.performance')

    def __enter__(self):
        self.start_time = datetime.now()
        self.logger.debug(f"Starting {self.operation_name}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration = (datetime.now() - self.start_time).total_seconds()
        if exc_type:
            self.logger.error(f"Failed {self.operation_name} after {self.duration:.2f}s: {exc_val}")
        else:
            self.logger.info(f"Completed {self.operation_name} in {self.duration:.2f}s")
        return False
