# dbjson/extract/driver.py
"""
Drive repeated executions of a query from chunks of identifiers read from a
second query.
"""

import logging
import uuid
from collections.abc import Mapping
from typing import Any, Callable, Iterator, List, Optional

from ..defaults import settings
from ..exceptions import StatementBuildFailure, TransientIOFailure
from ..utils import ParamStyle
from .batcher import Batch, CursorBatcher, FetchState
from .dialects import render_driving_query
from .scope import CursorScope, server_cursor_kwargs
from .statements import StatementProvider, provider_for

logger = logging.getLogger(__name__)


class DriverState:
    READING_IDS = 'reading_ids'
    DRIVING_QUERY = 'driving_query'
    DONE = 'done'

    @classmethod
    def values(cls):
        return [getattr(cls, attr) for attr in dir(cls) if not attr.startswith('_')]


class IdChunkDriver:
    """
    Two-cursor extraction: ids from one query drive a second, chunk by chunk.

    The ids query runs on its own connection inside its own ``CursorScope`` and
    stays open while the chunks run. For every chunk of ``ids_batch_size`` ids a
    new data connection is taken from ``connection_factory``, the driving query
    runs inside a fresh ``CursorScope`` and its rows are batched with a
    ``CursorBatcher`` that shares one ``FetchState``, so batch numbering and
    totals run across all chunks.

    The ids token in ``query`` is substituted once, before the first chunk runs,
    using the dialect of ``statement_provider``. An ids query that returns
    nothing still runs the driving query once with ``NULL`` in place of the token.

    States move ``READING_IDS -> DRIVING_QUERY -> READING_IDS -> ... -> DONE``.
    A failure in any chunk fails the whole invocation; counts from chunks that
    already finished are not reported.

    Parameters
    ----------
    ids_connection : Database
        Connection for the ids query. Closed when the invocation ends.
    ids_query : str
        Query returning the ids, in column ``id_column``.
    connection_factory : callable
        Returns a new data connection; called once per chunk.
    query : str
        Driving query containing the ids token.
    statement_provider : StatementProvider, optional
        Binds id lists. Chosen from the first data connection when omitted.
    batch_size : int, optional
        Rows per output batch.
    ids_batch_size : int, optional
        Ids per chunk; 0 reads every id into a single chunk.
    fetch_size : int, optional
        Rows per round trip for both cursors.
    id_column : str, optional
        Column of the ids query holding the ids (case-insensitive). A single
        column result is used whatever its name.
    paramstyle : str, optional
        Overrides the data connection's paramstyle when rendering the query.
    provider_options : dict, optional
        Passed to ``provider_for`` when no statement provider is given.
    cursor_name : str, optional
        Prefix of the server-side cursor names used on Postgres connections.
        A random name is used when omitted.

    Example
    -------
    ::

        driver = IdChunkDriver(
            ids_connection=connect('crm'),
            ids_query="select customer_id as source_id from changed_customers",
            connection_factory=lambda: connect('warehouse'),
            query="select * from orders where customer_id in (#SOURCE_IDS#)",
            ids_batch_size=500,
        )
        for batch in driver:
            writer.write(batch.payload)
        print(driver.fetch_state.total_row_count)
    """

    def __init__(self,
                 ids_connection,
                 ids_query: str,
                 connection_factory: Callable[[], Any],
                 query: str,
                 statement_provider: Optional[StatementProvider] = None,
                 batch_size: Optional[int] = None,
                 ids_batch_size: Optional[int] = None,
                 fetch_size: Optional[int] = None,
                 id_column: Optional[str] = None,
                 paramstyle: Optional[str] = None,
                 token: Optional[str] = None,
                 provider_options: Optional[dict] = None,
                 cursor_name: Optional[str] = None):
        if ids_batch_size is None:
            ids_batch_size = settings.get('default_ids_batch_size', 1000)
        if ids_batch_size < 0:
            raise ValueError(f"ids_batch_size must be >= 0, got {ids_batch_size}")
        self.ids_connection = ids_connection
        self.ids_query = ids_query
        self.connection_factory = connection_factory
        self.query = query
        self.statement_provider = statement_provider
        self.batch_size = batch_size if batch_size is not None else settings.get('default_batch_size', 100)
        self.ids_batch_size = ids_batch_size
        self.fetch_size = fetch_size if fetch_size is not None else settings.get('default_fetch_size', 1000)
        self.id_column = id_column or settings.get('default_id_column', 'source_id')
        self.paramstyle = paramstyle
        self.token = token
        self.provider_options = provider_options or {}
        self.cursor_name = cursor_name or f"dbjson_{uuid.uuid4().hex}"

        self.state: Optional[str] = None
        self.fetch_state = FetchState()
        self.chunks_executed = 0
        self.sql: Optional[str] = None
        self.number_of_binds = 0
        self._has_ids = False
        self._width = 0

    def __iter__(self) -> Iterator[Batch]:
        return self.batches()

    def _set_state(self, state: str) -> None:
        logger.debug(f"IdChunkDriver {self.state} -> {state}")
        self.state = state

    def batches(self) -> Iterator[Batch]:
        """Generator of batches across every chunk, in execution order."""
        try:
            with CursorScope(self.ids_connection, fetch_size=self.fetch_size,
                             **server_cursor_kwargs(self.ids_connection, f"{self.cursor_name}_ids")) as ids_cursor:
                ids_cursor.execute(self.ids_query)
                self._set_state(DriverState.READING_IDS)
                chunk = self._read_chunk(ids_cursor)
                self._has_ids = bool(chunk)
                self._width = len(chunk)
                if not chunk:
                    logger.info("Ids query returned no ids; running driving query once with an empty condition")
                    self._set_state(DriverState.DRIVING_QUERY)
                    yield from self._drive(None)
                while chunk:
                    self._set_state(DriverState.DRIVING_QUERY)
                    yield from self._drive(chunk)
                    self._set_state(DriverState.READING_IDS)
                    chunk = self._read_chunk(ids_cursor)
        except Exception as e:
            logger.error(
                f"Id driven extraction failed in state {self.state} after {self.chunks_executed} "
                f"completed chunk(s): {e}"
            )
            raise
        self._set_state(DriverState.DONE)
        logger.info(
            f"Id driven extraction finished: {self.chunks_executed} chunk(s), "
            f"{self.fetch_state.total_row_count} rows, {self.fetch_state.total_batch_count} batches"
        )

    def run(self, emit: Callable[[Batch, Any], None], context: Any = None) -> FetchState:
        """Hand every batch to ``emit(batch, context)`` and return the aggregate counts."""
        for batch in self.batches():
            emit(batch, context)
        return self.fetch_state

    def _read_chunk(self, cursor) -> List[Any]:
        """Read up to ``ids_batch_size`` ids (all remaining when it is 0)."""
        chunk: List[Any] = []
        column = None
        while self.ids_batch_size == 0 or len(chunk) < self.ids_batch_size:
            if self.ids_batch_size:
                size = self.ids_batch_size - len(chunk)
            else:
                size = self.fetch_size if self.fetch_size > 0 else 1000
            try:
                rows = cursor.fetchmany(size)
            except Exception as e:
                raise TransientIOFailure(f"Failed reading ids: {e}") from e
            if not rows:
                break
            if column is None:
                column = self._id_column(cursor)
            for row in rows:
                value = row[column[1]] if isinstance(row, Mapping) else row[column[0]]
                chunk.append(None if value is None else str(value))
        return chunk

    def _id_column(self, cursor):
        """(position, label) of the id column in the ids query result."""
        labels = [d[0] for d in (cursor.description or [])]
        for position, label in enumerate(labels):
            if label and label.lower() == self.id_column.lower():
                return position, label
        if len(labels) == 1:
            return 0, labels[0]
        raise StatementBuildFailure(f"Ids query has no column named '{self.id_column}'. Columns: {labels}")

    def _render(self, connection) -> None:
        paramstyle = self.paramstyle
        if paramstyle is None:
            paramstyle = getattr(getattr(connection, 'interface', None), 'paramstyle', ParamStyle.QMARK)
        self.sql, self.number_of_binds = render_driving_query(
            self.query,
            self.statement_provider.dialect,
            has_ids=self._has_ids,
            paramstyle=paramstyle,
            array_type=self.statement_provider.array_type,
            width=max(self._width, 1),
            token=self.token,
        )
        logger.debug(f"Driving query:\n{self.sql}")

    def _drive(self, chunk: Optional[List[Any]]) -> Iterator[Batch]:
        connection = self.connection_factory()
        rows_before = self.fetch_state.total_row_count
        cursor_kwargs = server_cursor_kwargs(connection, f"{self.cursor_name}_{self.chunks_executed}")
        with CursorScope(connection, fetch_size=self.fetch_size, **cursor_kwargs) as cursor:
            if self.statement_provider is None:
                self.statement_provider = provider_for(connection, **self.provider_options)
            if self.sql is None:
                self._render(connection)
            statement = self.statement_provider.prepare(
                cursor, self.sql, chunk, self.number_of_binds, self._width
            )
            statement.execute()
            yield from CursorBatcher(cursor, self.batch_size, state=self.fetch_state)
        self.chunks_executed += 1
        logger.debug(
            f"Chunk {self.chunks_executed} ({len(chunk or [])} ids) returned "
            f"{self.fetch_state.total_row_count - rows_before} rows"
        )
