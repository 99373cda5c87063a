# dbjson/extract/scope.py
"""
Scoped acquisition around one streaming query execution.
"""

import logging
import re
from typing import Any, Dict, Optional

from ..defaults import settings

logger = logging.getLogger(__name__)

_UNSET = object()
_NOT_IDENTIFIER = re.compile(r"\W")


class CursorScope:
    """
    Context manager that owns one connection and one cursor for a single query.

    On entry the connection's auto-commit setting is captured and switched off
    (Postgres only streams through a server-side cursor inside a transaction),
    a cursor is opened and its ``arraysize`` is set to the fetch size.

    On exit, whether the body succeeded or raised, the scope:

    1. commits
    2. restores the captured auto-commit setting
    3. closes the cursor
    4. closes the connection (unless ``close_connection=False``)

    Each step runs exactly once and a failing step does not prevent the later
    ones. If the body raised, a failing commit is logged and the body's
    exception propagates. A scope cannot be entered twice.

    Parameters
    ----------
    connection : Database
        Connection to scope. Any DB-API connection works; drivers without an
        ``autocommit`` attribute skip the toggle.
    fetch_size : int, optional
        Rows per round trip. ``0`` or a negative value leaves the driver default.
        Defaults to ``settings['default_fetch_size']``.
    close_connection : bool, default True
        Close the connection when the scope ends.
    **cursor_kwargs
        Passed to ``connection.cursor()``, e.g. ``name='extract'`` for a
        psycopg2 named cursor.

    Example
    -------
    ::

        with CursorScope(db, fetch_size=500) as cursor:
            cursor.execute("SELECT * FROM orders")
            for batch in CursorBatcher(cursor, batch_size=100):
                ...
    """

    def __init__(self, connection, fetch_size: Optional[int] = None,
                 close_connection: bool = True, **cursor_kwargs):
        self.connection = connection
        if fetch_size is None:
            fetch_size = settings.get('default_fetch_size', 1000)
        self.fetch_size = fetch_size
        self.close_connection = close_connection
        self.cursor_kwargs = cursor_kwargs
        self.cursor = None
        self._original_autocommit = _UNSET
        self._entered = False
        self._released = False

    def __enter__(self):
        if self._entered:
            raise RuntimeError("CursorScope cannot be entered more than once")
        self._entered = True
        try:
            self._disable_autocommit()
            self.cursor = self.connection.cursor(**self.cursor_kwargs)
            if self.fetch_size and self.fetch_size > 0:
                self.cursor.arraysize = self.fetch_size
        except BaseException as e:
            self._release(e)
            raise
        return self.cursor

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_val is not None:
            logger.debug(f"Releasing cursor scope after {exc_type.__name__}: {exc_val}")
        self._release(exc_val)
        return False

    @property
    def original_autocommit(self) -> Any:
        """The auto-commit value captured on entry, or None if it was not toggled."""
        return None if self._original_autocommit is _UNSET else self._original_autocommit

    def _disable_autocommit(self) -> None:
        try:
            current = self.connection.autocommit
        except AttributeError:
            logger.debug(f"{self.connection} has no autocommit attribute; leaving transaction mode alone")
            return
        if callable(current):
            logger.debug(f"{self.connection} exposes autocommit as a method; leaving transaction mode alone")
            return
        self._original_autocommit = current
        self.connection.autocommit = False

    def _release(self, pending: Optional[BaseException] = None) -> None:
        if self._released:
            return
        self._released = True
        try:
            try:
                self.connection.commit()
            except Exception as e:
                if pending is None:
                    raise
                # the exception from the body is the one that propagates
                logger.error(f"Commit failed while releasing after {type(pending).__name__}: {e}")
            finally:
                self._restore_autocommit()
        finally:
            try:
                if self.cursor is not None:
                    self.cursor.close()
            finally:
                if self.close_connection:
                    self.connection.close()

    def _restore_autocommit(self) -> None:
        if self._original_autocommit is _UNSET:
            return
        self.connection.autocommit = self._original_autocommit


def server_cursor_kwargs(connection, name: str) -> Dict[str, Any]:
    """
    ``cursor()`` arguments that open a server-side cursor called ``name``.

    Only Postgres drivers stream through named cursors; every other connection
    gets no arguments. A ``name`` already set in the connection's cursor
    settings wins. ``name`` is reduced to a valid identifier.
    """
    if getattr(connection, 'server_type', None) != 'postgres':
        return {}
    if 'name' in (getattr(connection, 'cursor_settings', None) or {}):
        return {}
    return {'name': _NOT_IDENTIFIER.sub('_', name)[:63]}
