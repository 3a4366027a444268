"""
Logger utility - Configures application logging from ``AppConfig``.

Everything goes to the console and ``celestis.log``; errors are also kept in
``errors.log`` so they survive a chatty debug session.
"""

import logging
import logging.handlers
from pathlib import Path

from ..core.config import AppConfig

CONSOLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s"

MAIN_LOG = ("celestis.log", 10 * 1024 * 1024, 5)
ERROR_LOG = ("errors.log", 5 * 1024 * 1024, 3)

NOISY_LOGGERS = ("openai", "httpx", "httpcore", "PIL", "urllib3")

def _rotating(log_dir: Path, spec, level: int) -> logging.Handler:
    filename, max_bytes, backups = spec
    handler = logging.handlers.RotatingFileHandler(
        log_dir / filename, maxBytes=max_bytes, backupCount=backups, encoding="utf-8"
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(FILE_FORMAT))
    return handler

def setup_logging(config: AppConfig) -> Path:
    """Install the console and rotating file handlers. Returns the log directory."""
    log_dir = Path(config.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    level = logging.getLevelName(config.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler()
    # Dev mode shows everything on the console too
    console.setLevel(level if config.debug else max(level, logging.INFO))
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    root_logger.addHandler(console)

    root_logger.addHandler(_rotating(log_dir, MAIN_LOG, level))
    root_logger.addHandler(_rotating(log_dir, ERROR_LOG, logging.ERROR))

    for noisy in NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(max(level, logging.WARNING))

    logging.getLogger(__name__).info(
        f"Logging configured (level={logging.getLevelName(level)}, dir={log_dir}, debug={config.debug})"
    )
    return log_dir
