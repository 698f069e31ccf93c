import logging
import os
from typing import Any, Dict, Optional
from logging.handlers import RotatingFileHandler

from methodrag.utils.config_handler import ConfigHandler, config
from methodrag.utils.error_handler import ConfigurationError

DEFAULT_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'
DEFAULT_DATEFMT = '%Y-%m-%d %H:%M:%S'

# Libraries that log every request or index operation at INFO
QUIET_LOGGERS = ('urllib3', 'faiss', 'transformers', 'filelock')

class DuplicateFilter(logging.Filter):
    """Drop a record identical to one emitted by the same module within ``timeout`` seconds."""
    def __init__(self, timeout=1.0):
        super().__init__()
        self.timeout = timeout
        self.last_log = {}

    def filter(self, record):
        key = (record.module, record.levelno, record.msg)
        previous = self.last_log.get(key)
        self.last_log[key] = record.created
        return previous is None or record.created - previous >= self.timeout

class SyncRunFormatter(logging.Formatter):
    """Formatter that prefixes the sync run id when a record carries one."""

    def format(self, record):
        if hasattr(record, 'sync_run'):
            original = record.msg
            record.msg = f"[sync {record.sync_run}] {original}"
            try:
                return super().format(record)
            finally:
                record.msg = original
        return super().format(record)

def _build_formatters(log_config: Dict[str, Any]) -> Dict[str, logging.Formatter]:
    formatters = {
        name: SyncRunFormatter(fmt=fmt_config.get('format', DEFAULT_FORMAT),
                               datefmt=fmt_config.get('datefmt', DEFAULT_DATEFMT))
        for name, fmt_config in (log_config.get('formatters') or {}).items()
    }
    fallback = SyncRunFormatter(fmt=DEFAULT_FORMAT, datefmt=DEFAULT_DATEFMT)
    formatters.setdefault('simple', fallback)
    formatters.setdefault('detailed', fallback)
    return formatters

def setup_logger(config_path: Optional[str] = None) -> None:
    """
    Configure the root logger from the ``logging`` section of the configuration.

    A rotating file handler (detailed format) and a console handler (simple
    format) replace any handlers already installed. Sync engine records that
    carry ``extra={'sync_run': n}`` are prefixed with their run number.

    Args:
        config_path: YAML file to read; the already loaded configuration when None
    """
    try:
        if config_path is not None:
            log_config = ConfigHandler.load(config_path).get('logging') or {}
        else:
            log_config = config.get('logging', {})

        level = getattr(logging, str(log_config.get('log_level', 'INFO')).upper(), logging.INFO)
        formatters = _build_formatters(log_config)

        log_dir = log_config.get('directory', 'logs')
        os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(
            filename=os.path.join(log_dir, log_config.get('filename', 'methodrag.log')),
            maxBytes=log_config.get('max_bytes', 5 * 1024 * 1024),
            backupCount=log_config.get('backup_count', 3),
            encoding='utf-8'
        )
        file_handler.setFormatter(formatters['detailed'])

        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatters['simple'])

        root_logger = logging.getLogger()
        root_logger.setLevel(level)
        root_logger.handlers = []
        for handler in (file_handler, console_handler):
            handler.setLevel(level)
            handler.addFilter(DuplicateFilter(1.0))
            root_logger.addHandler(handler)

        for logger_name, logger_config in (log_config.get('loggers') or {}).items():
            named = logging.getLogger(logger_name)
            named.setLevel(getattr(logging, logger_config.get('level', 'INFO')))
            named.propagate = logger_config.get('propagate', True)

        for noisy in QUIET_LOGGERS:
            logging.getLogger(noisy).setLevel(logging.WARNING)

        logging.info("Logger initialized successfully")

    except (OSError, ConfigurationError) as e:
        logging.basicConfig(level=logging.INFO, format=DEFAULT_FORMAT, datefmt=DEFAULT_DATEFMT)
        logging.error(f"Failed to setup logger with config ({str(e)}), using basic configuration")

def get_logger(name: Optional[str] = None) -> logging.Logger:
    return logging.getLogger(name if name else '')
