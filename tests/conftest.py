# tests/conftest.py
"""
Shared test fixtures and configuration for pytest.
"""

import copy
import logging
import os
from pathlib import Path
from unittest.mock import patch

import pytest

from dbjson import config, logging_utils
from dbjson.database import sqlite
from dbjson.defaults import settings
from dbjson.utils import reset_format_cache

TEST_KEY = 'DsknizcyYH6K5Ow2wOrsdu75pKcOwjzn49snaTxss_k='


# Set test config file and encryption key for all tests
@pytest.fixture(autouse=True)
def setup_test_config():
    """Use tests/test.yml and a known encryption key; restore global settings afterwards."""
    saved = copy.deepcopy(settings)
    test_config = Path(__file__).parent / 'test.yml'
    config.set_config_file(str(test_config))

    with patch.dict(os.environ, {'DBJSON_ENCRYPTION_KEY': TEST_KEY}):
        yield

    settings.clear()
    settings.update(saved)
    reset_format_cache()
    config._config_manager = None


class FakeCursor:
    """DB-API cursor double serving tuples from ``rows``."""

    def __init__(self, rows=None, columns=('id',), fail_on_fetch=None, events=None):
        self.rows = list(rows or [])
        self.description = [(c, None, None, None, None, None, None) for c in columns]
        self.arraysize = 1
        self.fail_on_fetch = fail_on_fetch
        self.events = events if events is not None else []
        self.executed = []
        self.fetch_sizes = []
        self.closed = 0
        self._pos = 0

    def execute(self, sql, params=None):
        self.executed.append((sql, params))

    def fetchmany(self, size=None):
        size = size or self.arraysize
        self.fetch_sizes.append(size)
        if self.fail_on_fetch is not None and len(self.fetch_sizes) >= self.fail_on_fetch:
            raise IOError('connection reset')
        page = self.rows[self._pos:self._pos + size]
        self._pos += len(page)
        return page

    def close(self):
        self.closed += 1
        self.events.append('cursor.close')


class FakeConnection:
    """Connection double recording autocommit changes, commits and closes in ``events``."""

    def __init__(self, cursor=None, autocommit=True, server_type='unknown', fail_commit=False):
        self.events = []
        self._autocommit = autocommit
        self.cursor_obj = cursor if cursor is not None else FakeCursor()
        self.cursor_obj.events = self.events
        self.server_type = server_type
        self.fail_commit = fail_commit
        self.cursor_kwargs = None
        self.commits = 0
        self.closes = 0

    @property
    def autocommit(self):
        return self._autocommit

    @autocommit.setter
    def autocommit(self, value):
        self.events.append(f'autocommit={value}')
        self._autocommit = value

    def cursor(self, **kwargs):
        self.cursor_kwargs = kwargs
        return self.cursor_obj

    def commit(self):
        self.commits += 1
        self.events.append('commit')
        if self.fail_commit:
            raise IOError('commit failed')

    def close(self):
        self.closes += 1
        self.events.append('close')


@pytest.fixture
def fake_cursor():
    return FakeCursor(rows=[(i,) for i in range(1, 6)], columns=('id',))


@pytest.fixture
def fake_connection(fake_cursor):
    return FakeConnection(fake_cursor)


@pytest.fixture
def sales_db_path(tmp_path):
    """A sqlite file with customers, orders and changed_customers tables."""
    path = tmp_path / 'sales.db'
    db = sqlite(str(path))
    cursor = db.cursor()
    cursor.execute("CREATE TABLE customers (id TEXT PRIMARY KEY, name TEXT)")
    cursor.execute("CREATE TABLE orders (order_id INTEGER PRIMARY KEY, customer_id TEXT, sku TEXT, qty INTEGER)")
    cursor.execute("CREATE TABLE changed_customers (customer_id TEXT)")
    for row in [('C1', 'Avatar State Imports'), ('C2', 'Cabbage Corp'), ('C3', 'Ba Sing Se Tea')]:
        cursor.execute("INSERT INTO customers VALUES (?, ?)", row)
    orders = [
        (1, 'C1', 'AIR-1', 2),
        (2, 'C1', 'AIR-2', 1),
        (3, 'C2', 'CAB-1', 10),
        (4, 'C3', 'TEA-1', 4),
        (5, 'C3', 'TEA-2', 6),
        (6, 'C9', 'ORPHAN', 1),
    ]
    for row in orders:
        cursor.execute("INSERT INTO orders VALUES (?, ?, ?, ?)", row)
    for customer_id in ('C1', 'C3'):
        cursor.execute("INSERT INTO changed_customers VALUES (?)", (customer_id,))
    db.commit()
    db.close()
    return path


@pytest.fixture
def sales_db(sales_db_path):
    """Connection factory opening a new connection to the sales database on every call."""
    opened = []

    def factory():
        db = sqlite(str(sales_db_path))
        opened.append(db)
        return db

    factory.opened = opened
    return factory


@pytest.fixture
def restore_root_logger():
    """Put the root logger back the way pytest left it after setup_logging() replaced its handlers."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    if logging_utils._error_handler is not None:
        logging_utils._error_handler.close()
        logging_utils._error_handler = None
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)
