# dbjson/cursors.py
"""
Cursor classes that wrap database cursors and provide different return types.
All cursors delegate to the underlying database cursor stored in _cursor.
"""

import logging
from collections import OrderedDict
from typing import List, Any, Optional, Iterator, Sequence

from .defaults import settings
from .exceptions import StatementBuildFailure

logger = logging.getLogger(__name__)
__all__ = ['Cursor', 'DictCursor', 'ColumnCase', 'PreparedStatement']


class ColumnCase:
    """
    Column name case transformation options for result sets.

    - UPPER: Convert to uppercase (USER_ID)
    - LOWER: Convert to lowercase (user_id)
    - PRESERVE: Keep the label the database reports [default]

    Join keys are matched against column labels, so the default keeps them as
    the database returns them.

    Example:
        >>> cursor = db.cursor(column_case=ColumnCase.LOWER)
    """
    UPPER = 'upper'
    LOWER = 'lower'
    PRESERVE = 'preserve'
    DEFAULT = PRESERVE

    @classmethod
    def values(cls):
        return [getattr(cls, attr) for attr in dir(cls) if not attr.startswith('_')]


class PreparedStatement:
    """
    A statement with its parameters already bound, ready to run on a cursor.

    Statement providers build these; the extraction core only calls ``execute()``
    and then reads rows from ``cursor``.
    """

    def __init__(self, cursor, sql: str, params: Optional[Sequence[Any]] = None):
        """
        Args:
            cursor: The cursor that will execute this statement
            sql: SQL text with positional placeholders
            params: Bind values, one per placeholder (None for no binding)
        """
        self.cursor = cursor
        self.sql = sql
        self.params = params

    def execute(self) -> Any:
        """Execute the statement. Driver rejections surface as StatementBuildFailure."""
        try:
            if self.params is None:
                return self.cursor.execute(self.sql)
            return self.cursor.execute(self.sql, self.params)
        except Exception as e:
            logger.error(
                f"Error executing statement\n"
                f"SQL: {self.sql}\n"
                f"Parameter count: {0 if self.params is None else len(self.params)}"
            )
            raise StatementBuildFailure(f"Statement execution failed: {e}") from e

    def __iter__(self):
        return iter(self.cursor)

    def __getattr__(self, key: str):
        """Delegate attribute access to underlying cursor."""
        return getattr(self.cursor, key)


class Cursor:
    """
    Basic cursor that returns query results as lists.

    Wraps a driver cursor, delegating every attribute it does not own, so native
    functionality such as ``arraysize`` and ``description`` stays available.

    Example
    -------
    ::

        cursor = db.cursor('list')
        cursor.execute("SELECT id, name FROM users")
        for row in cursor:
            user_id, name = row
    """
    # Attributes that live on this class and are not delegated to the underlying cursor
    _local_attrs = [
        'connection', 'column_case', 'debug', 'placeholder', 'paramstyle',
        'record_factory', '_cursor', '_row_factory_invalid', '_closed'
    ]
    # Attributes that are allowed to be passed in from the connection/configuration layer
    WRAPPER_SETTINGS = ('column_case', 'debug', 'type', 'itersize')
    # Driver cursor() arguments a connection's cursor settings may carry (psycopg2, psycopg)
    DRIVER_SETTINGS = ('name', 'scrollable', 'withhold')

    def __init__(self,
                 connection,
                 column_case: Optional[str] = None,
                 debug: Optional[bool] = False,
                 itersize: Optional[int] = None,
                 **kwargs):
        """
        Initialize a cursor for database operations.

        Parameters
        ----------
        connection : Database
            Database connection object
        column_case : str, optional
            'preserve' (default), 'lower' or 'upper'
        debug : bool, default False
            Log queries and bind variables at DEBUG level
        itersize : int, optional
            Rows a named (server-side) cursor transfers per round trip while
            iterating; set on the driver cursor when given
        **kwargs
            Additional arguments passed to the underlying database cursor, e.g.
            ``name='extract'`` for a psycopg2 server-side cursor
        """
        self.connection = connection
        self.debug = debug
        self.record_factory = None
        self._row_factory_invalid = True
        self._closed = False
        if column_case is None:
            column_case = settings.get('default_column_case', ColumnCase.DEFAULT)
        self.column_case = column_case
        filtered_kwargs = {key: val for key, val in kwargs.items() if key not in self.WRAPPER_SETTINGS}
        try:
            if hasattr(self.connection, '_connection'):
                self._cursor = self.connection._connection.cursor(**filtered_kwargs)
            else:
                self._cursor = self.connection.cursor(**filtered_kwargs)
        except Exception as e:
            raise TypeError(f'First argument must be a database connection object: {e}')
        if itersize and hasattr(self._cursor, 'itersize'):
            self._cursor.itersize = itersize

        self.paramstyle = self.connection.interface.paramstyle
        self.placeholder = getattr(self.connection, 'placeholder', '?')

    def __getattr__(self, key: str) -> Any:
        """Delegate attribute access to underlying cursor."""
        return getattr(self._cursor, key)

    def __setattr__(self, key: str, value: Any) -> None:
        """Set attributes on this cursor or delegate to underlying cursor."""
        if key in self._local_attrs:
            self.__dict__[key] = value
        else:
            setattr(self._cursor, key, value)

    def __iter__(self) -> Iterator:
        """Make cursor iterable."""
        if self._is_ready():
            return self

    def __next__(self) -> Any:
        """Iterator protocol."""
        row = self.fetchone()
        if row is not None:
            return row
        raise StopIteration

    def _create_record_factory(self) -> None:
        """Create the function to process each row. Override in subclasses."""

        def factory(*args):
            return list(args)

        self.record_factory = factory

    def columns(self, case: Optional[str] = None) -> List[str]:
        """Return list of column names."""
        if not self.description:
            return []

        if case not in ColumnCase.values():
            case = self.column_case

        names = [c[0] or f'col_{i + 1}' for i, c in enumerate(self.description)]
        if case == ColumnCase.LOWER:
            return [name.lower() for name in names]
        elif case == ColumnCase.UPPER:
            return [name.upper() for name in names]
        return names

    def _is_ready(self) -> bool:
        """Check if cursor is ready to fetch results."""
        if self._cursor.description is None:
            raise Exception('Query has not been run or did not succeed.')

        if self.record_factory is None or self._row_factory_invalid:
            self._create_record_factory()
            self._row_factory_invalid = False

        return True

    def execute(self, query: str, bind_vars: Sequence[Any] = ()) -> None:
        """Execute a database query."""
        self._row_factory_invalid = True

        if self.debug:
            logger.debug(f'Query:\n{query}')
            logger.debug(f'Bind vars:\n{bind_vars}')

        # some adapters return a cursor instead of the Database API specified None
        _ = self._cursor.execute(query, bind_vars)
        return None

    def fetchone(self) -> Optional[Any]:
        """Fetch the next row."""
        if self._is_ready():
            row = self._cursor.fetchone()
            if row is not None:
                return self.record_factory(*row)
        return None

    def fetchmany(self, size: Optional[int] = None) -> List[Any]:
        """Fetch the next set of rows."""
        if size is None:
            size = self._cursor.arraysize

        # server-side cursors only report a description after the first fetch
        rows = self._cursor.fetchmany(size)
        if rows and self._is_ready():
            return [self.record_factory(*row) for row in rows]
        return []

    def fetchall(self) -> List[Any]:
        """Fetch all remaining rows."""
        if self._is_ready():
            return [
                self.record_factory(*row)
                for row in self._cursor.fetchall()
            ]
        return []

    def close(self) -> None:
        """Close the underlying cursor. Safe to call more than once."""
        if not self._closed:
            self._closed = True
            self._cursor.close()


class DictCursor(Cursor):
    """Cursor that returns OrderedDict objects keyed by column label."""

    def _create_record_factory(self) -> None:
        """Create factory that returns OrderedDict."""
        columns = self.columns()

        def factory(*args):
            return OrderedDict(zip(columns, args))

        self.record_factory = factory
