# dbjson/logging_utils.py
"""
Logging setup for extraction runs.

Each run logs to a timestamped file like job_name_YYYYMMDD_HHMMSS.log. Errors
are counted, and copied to a separate error log that is only created once the
first error is logged.
"""

import logging
import sys
from pathlib import Path
from datetime import datetime, timedelta
from typing import Optional, Tuple, List

from .defaults import settings

logger = logging.getLogger(__name__)

_error_handler: Optional['ErrorCountHandler'] = None
_main_log_path: Optional[str] = None
_error_log_path: Optional[str] = None
_split_errors: bool = False


class ErrorCountHandler(logging.Handler):
    """Counts ERROR and CRITICAL records and creates the error log on the first one."""

    def __init__(self, error_log_path: Optional[str] = None, formatter: Optional[logging.Formatter] = None):
        super().__init__()
        self.error_count = 0
        self.error_log_path = error_log_path
        self.formatter = formatter
        self._error_file_handler = None

    def emit(self, record):
        if record.levelno < logging.ERROR:
            return
        self.error_count += 1
        if self.error_log_path and self._error_file_handler is None:
            try:
                handler = logging.FileHandler(self.error_log_path, encoding='utf-8')
            except OSError as e:
                logger.warning(f"Failed to create error log file: {e}")
                return
            handler.setLevel(logging.ERROR)
            if self.formatter:
                handler.setFormatter(self.formatter)
            logging.getLogger().addHandler(handler)
            self._error_file_handler = handler
            # the record that triggered creation has already passed the root handlers
            handler.emit(record)
            logger.debug(f"Created error log file: {self.error_log_path}")

    def close(self):
        if self._error_file_handler is not None:
            logging.getLogger().removeHandler(self._error_file_handler)
            self._error_file_handler.close()
            self._error_file_handler = None
        super().close()


def _logging_config() -> dict:
    """Logging settings from the config file layered over the defaults."""
    from .config import get_setting

    config = dict(settings.get('logging', {}))
    try:
        config.update(get_setting('logging', {}) or {})
    except FileNotFoundError:
        logger.debug("No config file found, using default logging settings")
    return config


def setup_logging(
    script_name: Optional[str] = None,
    log_dir: Optional[str] = None,
    level: Optional[str] = None,
    split_errors: Optional[bool] = None,
    console: Optional[bool] = None
) -> Tuple[str, Optional[str]]:
    """
    Configure logging for an extraction run.

    Creates log files with pattern: {script_name}_{datetime}.log
    Optionally creates separate error log: {script_name}_{datetime}_error.log

    Args:
        script_name: Base name for log files (the job name when run from the CLI)
        log_dir: Directory for log files (defaults to config setting or './logs')
        level: Logging level string - DEBUG, INFO, WARNING, ERROR (defaults to config or 'INFO')
        split_errors: Create separate error log file (defaults to config or True)
        console: Also log to stdout (defaults to config or True)

    Returns:
        Tuple of (log_file_path, error_log_path or None)

    Example
    -------
    ::

        from dbjson.logging_utils import setup_logging, errors_logged

        setup_logging('customer_orders', level='DEBUG')
        job.run(writer, source)
        if errors_logged():
            notify_operator()

    Note:
        ``logging.filename_format`` in dbjson.yml controls the file name:
        '%Y%m%d_%H%M%S' (default) gives one log per run, '%Y%m%d' one per day
        and '' a single log file that is appended to.
    """
    global _error_handler, _main_log_path, _error_log_path, _split_errors

    if script_name is None:
        script_name = Path(sys.argv[0]).stem

    logging_config = _logging_config()

    log_dir = log_dir or logging_config.get('directory', './logs')
    level = (level or logging_config.get('level', 'INFO')).upper()
    split_errors = split_errors if split_errors is not None else logging_config.get('split_errors', True)
    console = console if console is not None else logging_config.get('console', True)

    log_format = logging_config.get('format', '%(asctime)s [%(levelname)s] %(name)s: %(message)s')
    timestamp_format = logging_config.get('timestamp_format', '%Y-%m-%d %H:%M:%S')
    filename_format = logging_config.get('filename_format', '%Y%m%d_%H%M%S')

    log_dir_path = Path(log_dir)
    log_dir_path.mkdir(parents=True, exist_ok=True)

    if filename_format:
        stem = f"{script_name}_{datetime.now().strftime(filename_format)}"
    else:
        stem = script_name
    log_file = log_dir_path / f"{stem}.log"
    error_file = log_dir_path / f"{stem}_error.log" if split_errors else None

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level))

    # drop handlers from an earlier setup_logging call
    if _error_handler is not None:
        _error_handler.close()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(log_format, datefmt=timestamp_format)

    _error_handler = ErrorCountHandler(
        error_log_path=str(error_file) if error_file else None,
        formatter=formatter
    )
    _error_handler.setLevel(logging.ERROR)
    root_logger.addHandler(_error_handler)

    file_handler = logging.FileHandler(log_file, encoding='utf-8')
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)

    if console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(getattr(logging, level))
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    logging.info(f"Logging initialized: {log_file}")
    if error_file:
        logging.info(f"Error log will be created at: {error_file} (if errors occur)")

    _main_log_path = str(log_file)
    _error_log_path = str(error_file) if error_file else None
    _split_errors = bool(split_errors)

    return _main_log_path, _error_log_path


def errors_logged() -> Optional[str]:
    """
    Check if any ERROR or CRITICAL messages were logged during this run.

    Returns
    -------
    str or None
        Path to the error log (split_errors=True) or the main log
        (split_errors=False) when errors were logged; None when no errors were
        logged or setup_logging() was not called.
    """
    if _error_handler is None:
        logger.warning("errors_logged() called but setup_logging() was not called")
        return None

    if _error_handler.error_count == 0:
        return None

    if _split_errors and _error_log_path:
        return _error_log_path
    return _main_log_path


def cleanup_old_logs(
    log_dir: Optional[str] = None,
    retention_days: Optional[int] = None,
    pattern: str = "*.log",
    dry_run: bool = False
) -> List[str]:
    """
    Remove log files older than the retention period.

    Args:
        log_dir: Directory to clean (defaults to config setting or './logs')
        retention_days: Keep logs newer than this many days (defaults to config or 30)
        pattern: Glob pattern for log files (default: ``'*.log'``)
        dry_run: Only report what would be deleted

    Returns:
        List of deleted (or would-be-deleted if dry_run) file paths
    """
    logging_config = _logging_config()

    log_dir = log_dir or logging_config.get('directory', './logs')
    retention_days = retention_days or logging_config.get('retention_days', 30)

    log_dir_path = Path(log_dir)
    if not log_dir_path.exists():
        logger.warning(f"Log directory does not exist: {log_dir_path}")
        return []

    cutoff = datetime.now() - timedelta(days=retention_days)
    deleted = []

    for log_file in log_dir_path.glob(pattern):
        if not log_file.is_file():
            continue

        if datetime.fromtimestamp(log_file.stat().st_mtime) >= cutoff:
            continue
        if dry_run:
            logger.info(f"Would delete: {log_file}")
        else:
            try:
                log_file.unlink()
            except OSError as e:
                logger.warning(f"Failed to delete {log_file}: {e}")
                continue
            logger.info(f"Deleted old log: {log_file}")
        deleted.append(str(log_file))

    if not dry_run and deleted:
        logger.info(f"Cleaned up {len(deleted)} old log files")

    return deleted
