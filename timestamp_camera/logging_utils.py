import logging
import os
from logging.handlers import RotatingFileHandler

from .settings import MAX_LOG_FILES, MAX_LOG_SIZE_MB

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(log_dir: str, log_name: str = "timestamp_camera", level: int = logging.INFO) -> logging.Logger:
    """Attach a rotating file handler and a console handler to the package logger.

    Safe to call more than once; handlers are only added the first time.
    """
    logger = logging.getLogger("timestamp_camera")
    logger.setLevel(level)
    if logger.handlers:
        return logger

    os.makedirs(log_dir, exist_ok=True)
    log_file = os.path.join(log_dir, f"{log_name}.log")
    formatter = logging.Formatter(LOG_FORMAT)
    file_handler = RotatingFileHandler(log_file, maxBytes=MAX_LOG_SIZE_MB * 1024 * 1024, backupCount=MAX_LOG_FILES)
    file_handler.setFormatter(formatter)
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    logger.addHandler(file_handler)
    logger.addHandler(console_handler)
    return logger


def log_file_path(log_dir: str, log_name: str = "timestamp_camera") -> str:
    return os.path.join(log_dir, f"{log_name}.log")
