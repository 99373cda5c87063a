# tests/test_logging_utils.py
import logging
import os
import time
from pathlib import Path

import pytest

from dbjson.defaults import settings
from dbjson.logging_utils import ErrorCountHandler, cleanup_old_logs, errors_logged, setup_logging


pytestmark = pytest.mark.usefixtures('restore_root_logger')


@pytest.fixture
def temp_log_dir(tmp_path):
    """Directory for log files."""
    return str(tmp_path / 'logs')


def make_record(level, msg='test'):
    return logging.LogRecord(name='test', level=level, pathname='', lineno=0, msg=msg, args=(), exc_info=None)


class TestErrorCountHandler:
    """Test ErrorCountHandler class functionality."""

    def test_counts_errors_and_critical(self):
        """Test that handler counts ERROR and CRITICAL records."""
        handler = ErrorCountHandler()
        handler.emit(make_record(logging.ERROR))
        handler.emit(make_record(logging.INFO))
        handler.emit(make_record(logging.CRITICAL))

        assert handler.error_count == 2

    def test_ignores_lower_levels(self):
        """Test that handler ignores DEBUG, INFO, WARNING."""
        handler = ErrorCountHandler()
        for level in (logging.DEBUG, logging.INFO, logging.WARNING):
            handler.emit(make_record(level))

        assert handler.error_count == 0

    def test_error_file_created_lazily(self, tmp_path):
        """Test the error log appears with the first error and holds that record."""
        path = tmp_path / 'run_error.log'
        handler = ErrorCountHandler(str(path), logging.Formatter('%(levelname)s %(message)s'))

        handler.emit(make_record(logging.WARNING, 'just a warning'))
        assert not path.exists()

        handler.emit(make_record(logging.ERROR, 'chunk 3 failed'))
        handler.close()

        assert path.read_text(encoding='utf-8').strip() == 'ERROR chunk 3 failed'

    def test_close_removes_file_handler(self, tmp_path):
        """Test close detaches the error file handler from the root logger."""
        handler = ErrorCountHandler(str(tmp_path / 'err.log'))
        handler.emit(make_record(logging.ERROR))
        file_handler = handler._error_file_handler

        handler.close()

        assert file_handler not in logging.getLogger().handlers


class TestSetupLogging:
    """Test setup_logging()."""

    def test_log_file_created(self, temp_log_dir):
        """Test the main log is named after the script and receives messages."""
        main_log, error_log = setup_logging('customer_orders', log_dir=temp_log_dir, console=False)
        logging.getLogger('dbjson.jobs').info('extracting')

        assert Path(main_log).name.startswith('customer_orders_')
        assert error_log.endswith('_error.log')
        assert not Path(error_log).exists()
        assert 'extracting' in Path(main_log).read_text(encoding='utf-8')

    def test_single_file_format(self, temp_log_dir):
        """Test an empty filename format gives one log per script name."""
        settings['logging']['filename_format'] = ''
        main_log, error_log = setup_logging('nightly', log_dir=temp_log_dir, console=False, split_errors=False)

        assert Path(main_log).name == 'nightly.log'
        assert error_log is None

    def test_level(self, temp_log_dir):
        """Test the level argument sets the root level."""
        setup_logging('levels', log_dir=temp_log_dir, level='debug', console=False)
        assert logging.getLogger().level == logging.DEBUG

    def test_repeated_setup_replaces_handlers(self, temp_log_dir):
        """Test a second call does not stack handlers."""
        setup_logging('first', log_dir=temp_log_dir, console=False)
        setup_logging('second', log_dir=temp_log_dir, console=False)

        handlers = logging.getLogger().handlers
        assert sum(isinstance(h, ErrorCountHandler) for h in handlers) == 1
        assert sum(isinstance(h, logging.FileHandler) for h in handlers) == 1


class TestErrorsLogged:
    """Test errors_logged() function."""

    def test_no_errors_returns_none(self, temp_log_dir):
        """Test that errors_logged() returns None when no errors."""
        setup_logging('test_script', log_dir=temp_log_dir, console=False)

        logging.info("This is just info")
        logging.warning("This is a warning")

        assert errors_logged() is None

    def test_with_errors_split_true(self, temp_log_dir):
        """Test errors_logged() returns error log path when split_errors=True."""
        main_log, error_log = setup_logging('test_script', log_dir=temp_log_dir, split_errors=True, console=False)

        logging.error("This is an error")

        result = errors_logged()
        assert result == error_log
        assert Path(result).exists()

    def test_with_errors_split_false(self, temp_log_dir):
        """Test errors_logged() returns main log path when split_errors=False."""
        main_log, error_log = setup_logging('test_script', log_dir=temp_log_dir, split_errors=False, console=False)

        assert error_log is None
        logging.error("This is an error")

        assert errors_logged() == main_log

    def test_integration_pattern(self, temp_log_dir):
        """Test the integration pattern: setup, extract, check errors."""
        setup_logging('integration_test', log_dir=temp_log_dir, console=False)

        try:
            logging.info("Starting extraction")
            raise ValueError("Chunk 2 failed")
        except ValueError as e:
            logging.error(f"Extraction failed: {e}")

        error_log = errors_logged()
        with open(error_log, 'r') as f:
            content = f.read()
        assert 'ERROR' in content
        assert 'Chunk 2 failed' in content


class TestCleanupOldLogs:
    """Test cleanup_old_logs()."""

    @pytest.fixture
    def log_dir(self, tmp_path):
        old = tmp_path / 'old.log'
        new = tmp_path / 'new.log'
        other = tmp_path / 'old.txt'
        for path in (old, new, other):
            path.write_text('x')
        stale = time.time() - 40 * 86400
        os.utime(old, (stale, stale))
        os.utime(other, (stale, stale))
        return tmp_path

    def test_deletes_old_logs(self, log_dir):
        """Test only logs past the retention period are removed."""
        deleted = cleanup_old_logs(str(log_dir), retention_days=30)

        assert [Path(p).name for p in deleted] == ['old.log']
        assert not (log_dir / 'old.log').exists()
        assert (log_dir / 'new.log').exists()
        assert (log_dir / 'old.txt').exists()

    def test_dry_run(self, log_dir):
        """Test dry run reports without deleting."""
        deleted = cleanup_old_logs(str(log_dir), retention_days=30, dry_run=True)

        assert [Path(p).name for p in deleted] == ['old.log']
        assert (log_dir / 'old.log').exists()

    def test_missing_directory(self, tmp_path):
        """Test a missing directory returns an empty list."""
        assert cleanup_old_logs(str(tmp_path / 'nope')) == []
