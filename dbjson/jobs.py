# dbjson/jobs.py
"""
Extraction jobs: query a database and publish the rows as JSON documents.

Four jobs share one run loop:

- ``QueryToJson``: run a query, one document per batch. Optionally filter by
  ids read from a source document.
- ``QueryToJsonWithMerge``: merge the rows into the source document by join key
  and publish the merged document.
- ``FetchTableToJson``: select columns from a table, one document per batch.
- ``QueryIdsAndFetchTableToJson``: ids from a second query drive the main
  query chunk by chunk.

Every run ends with a summary document, or, on failure, a failure document
carrying the traceback in ``extraction.error``, after which the exception is
re-raised.
"""

import copy
import logging
import uuid
from typing import Any, Callable, Dict, List, Optional

from . import paths
from .defaults import settings
from .documents import (
    DocumentKind, EXTRACTION_ERROR, FETCH_COUNT, FETCH_ID, FETCH_INDEX, ROWS_COUNT,
    LineageRecorder, OutputDocument, SourceDocument
)
from .exceptions import format_failure
from .extract import (
    Batch, CursorBatcher, CursorScope, FetchState, IdChunkDriver, JoinMerger, JoinSpec,
    ElementType, StatementProvider, provider_for, render_driving_query, server_cursor_kwargs
)
from .utils import ParamStyle, to_text, validate_identifier
from .writers import DocumentWriter

logger = logging.getLogger(__name__)
__all__ = ['JobResult', 'ExtractionJob', 'QueryToJson', 'QueryToJsonWithMerge',
           'FetchTableToJson', 'QueryIdsAndFetchTableToJson', 'JobType', 'build_job']


class JobType:
    QUERY = 'query'
    QUERY_MERGE = 'query_merge'
    FETCH_TABLE = 'fetch_table'
    QUERY_IDS_FETCH_TABLE = 'query_ids_fetch_table'

    @classmethod
    def values(cls):
        return [getattr(cls, attr) for attr in dir(cls) if not attr.startswith('_')]


class JobResult:
    """Outcome of a successful run. Documents live only in the writer."""

    __slots__ = ('fetch_id', 'row_count', 'batch_count')

    def __init__(self, fetch_id: str, row_count: int, batch_count: int):
        self.fetch_id = fetch_id
        self.row_count = row_count
        self.batch_count = batch_count

    def __repr__(self) -> str:
        return f"JobResult(fetch_id={self.fetch_id!r}, rows={self.row_count}, batches={self.batch_count})"


class _RunContext:
    """Mutable state of one run. Never shared between runs."""

    def __init__(self, writer: DocumentWriter, source: Optional[SourceDocument]):
        self.writer = writer
        self.source = source
        inherited = source.attributes.get(FETCH_ID) if source is not None else None
        self.fetch_id = str(inherited) if inherited else str(uuid.uuid4())
        self.transit_uri = 'unknown'

    def attributes(self, **extra) -> Dict[str, Any]:
        attributes = dict(self.source.attributes) if self.source is not None else {}
        attributes.pop(EXTRACTION_ERROR, None)
        attributes[FETCH_ID] = self.fetch_id
        attributes.update(extra)
        return attributes


def _connection_url(connection) -> str:
    return getattr(connection, 'url', None) or str(connection)


def _paramstyle(connection) -> str:
    return getattr(getattr(connection, 'interface', None), 'paramstyle', ParamStyle.QMARK)


def _cursor_name(fetch_id: str) -> str:
    return f"dbjson_{fetch_id}"


class ExtractionJob:
    """
    Base class for extraction jobs.

    Parameters
    ----------
    connection_factory : callable
        Returns a new ``Database``; every run opens and closes its own connection.
    batch_size : int, optional
        Rows per output document. 1 publishes bare objects, 0 a single document.
    fetch_size : int, optional
        Rows per database round trip.
    statement_provider : StatementProvider, optional
        Binds id lists. Picked from the connection's server type when omitted.
    dialect : str, optional
        Forces a dialect when ``statement_provider`` is omitted.
    element_type : str
        ``'char'`` or ``'numeric'`` id elements.
    oracle_schema : str, optional
        Owner of the Oracle collection types.
    lineage : LineageRecorder, optional
        Receives fork and fetch events.
    indent : int, optional
        JSON indentation of output documents.
    write_by_batch : bool, default False
        Commit the writer after every batch so each batch is published as soon
        as it is written. A later failure then leaves the earlier batches in
        place. By default a run publishes all of its documents or none.
    name : str, optional
        Used in log messages.
    """

    def __init__(self,
                 connection_factory: Callable[[], Any],
                 batch_size: Optional[int] = None,
                 fetch_size: Optional[int] = None,
                 statement_provider: Optional[StatementProvider] = None,
                 dialect: Optional[str] = None,
                 element_type: str = ElementType.CHAR,
                 oracle_schema: Optional[str] = None,
                 lineage: Optional[LineageRecorder] = None,
                 indent: Optional[int] = None,
                 write_by_batch: bool = False,
                 name: Optional[str] = None):
        if batch_size is None:
            batch_size = settings.get('default_batch_size', 100)
        if batch_size < 0:
            raise ValueError(f"batch_size must be >= 0, got {batch_size}")
        self.connection_factory = connection_factory
        self.batch_size = batch_size
        self.fetch_size = fetch_size if fetch_size is not None else settings.get('default_fetch_size', 1000)
        self.statement_provider = statement_provider
        self.provider_options = {'dialect': dialect, 'element_type': element_type}
        if oracle_schema:
            self.provider_options['schema'] = oracle_schema
        self.lineage = lineage if lineage is not None else LineageRecorder()
        self.indent = indent
        self.write_by_batch = write_by_batch
        self.name = name or self.__class__.__name__

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r}, batch_size={self.batch_size})"

    def run(self, writer: DocumentWriter, source: Optional[SourceDocument] = None) -> JobResult:
        """
        Run the job once.

        Output documents are staged on ``writer`` and committed together with the
        summary document, or batch by batch with ``write_by_batch``. On failure
        the staged documents are rolled back, a failure document is written and
        the exception propagates.

        Args:
            writer: Destination for documents
            source: Triggering document, required by jobs that read ids or merge

        Returns:
            JobResult with the run's fetch id and counts
        """
        ctx = _RunContext(writer, source)
        logger.info(f"Starting {self.name} (fetch.id={ctx.fetch_id})")
        try:
            state = self._extract(ctx)
            summary = OutputDocument.build(
                {FETCH_ID: ctx.fetch_id, FETCH_COUNT: state.total_batch_count, ROWS_COUNT: state.total_row_count},
                ctx.attributes(**{FETCH_COUNT: state.total_batch_count}),
                kind=DocumentKind.SUMMARY,
                rows=state.total_row_count,
            )
            writer.write(summary)
            writer.commit()
        except Exception as e:
            writer.rollback()
            self._route_failure(e, ctx)
            raise
        logger.info(
            f"{self.name} finished: {state.total_row_count} rows in {state.total_batch_count} batches "
            f"(fetch.id={ctx.fetch_id})"
        )
        return JobResult(ctx.fetch_id, state.total_row_count, state.total_batch_count)

    def _extract(self, ctx: _RunContext) -> FetchState:
        raise NotImplementedError

    def _route_failure(self, exc: Exception, ctx: _RunContext) -> None:
        content = ctx.source.content if ctx.source is not None else {}
        failure = OutputDocument.build(content, ctx.attributes(**{EXTRACTION_ERROR: format_failure(exc)}),
                                       kind=DocumentKind.FAILURE)
        logger.error(f"{self.name} failed (fetch.id={ctx.fetch_id}): {exc}")
        ctx.writer.write_failure(failure)

    def _provider(self, connection) -> StatementProvider:
        if self.statement_provider is None:
            self.statement_provider = provider_for(connection, **self.provider_options)
        return self.statement_provider

    def _publish(self, ctx: _RunContext, document: OutputDocument) -> None:
        ctx.writer.write(document)
        self.lineage.fetch(document, ctx.transit_uri)
        if ctx.source is not None:
            self.lineage.fork(ctx.source, [document])

    def _emit_batch(self, batch: Batch, ctx: _RunContext) -> None:
        document = OutputDocument.build(batch.payload, ctx.attributes(**{FETCH_INDEX: batch.index}),
                                        rows=len(batch), indent=self.indent)
        self._publish(ctx, document)
        if self.write_by_batch:
            ctx.writer.commit()

    def _run_query(self, ctx: _RunContext, query: str, ids: Optional[List[Any]] = None,
                   handler: Optional[Callable[[Batch, _RunContext], None]] = None) -> FetchState:
        """
        Execute ``query`` in a CursorScope and pass each batch to ``handler``.

        When ``ids`` is not None the ids token in ``query`` is substituted and
        the ids bound; an empty list substitutes ``NULL``.
        """
        handler = handler or self._emit_batch
        connection = self.connection_factory()
        ctx.transit_uri = _connection_url(connection)
        state = FetchState()
        cursor_kwargs = server_cursor_kwargs(connection, _cursor_name(ctx.fetch_id))
        with CursorScope(connection, fetch_size=self.fetch_size, **cursor_kwargs) as cursor:
            provider = self._provider(connection)
            if ids is None:
                statement = provider.prepare(cursor, query)
            else:
                has_ids = bool(provider.convert_ids(ids))
                sql, binds = render_driving_query(
                    query, provider.dialect, has_ids=has_ids, paramstyle=_paramstyle(connection),
                    array_type=provider.array_type, width=max(len(ids), 1)
                )
                statement = provider.prepare(cursor, sql, ids if has_ids else None, binds, max(len(ids), 1))
            statement.execute()
            CursorBatcher(cursor, self.batch_size, state).drain(handler, ctx)
        return state


def _ids_at(document: Any, path: str) -> List[str]:
    """Values at ``path`` as text; arrays found at the path contribute their elements."""
    ids = []
    for value in paths.find(document, path):
        values = value if isinstance(value, list) else [value]
        for item in values:
            if item is not None and not isinstance(item, (dict, list)):
                ids.append(to_text(item))
    return ids


class QueryToJson(ExtractionJob):
    """
    Run a query and publish one document per batch.

    With ``path`` set the job needs a source document: the values at ``path``
    become the ids substituted for the ``#SOURCE_IDS#`` token in ``query``.

    Example
    -------
    ::

        job = QueryToJson(lambda: connect('warehouse'),
                          "select * from orders where customer_id in (#SOURCE_IDS#)",
                          path='$.customers[*].id', batch_size=500)
        job.run(JSONFileWriter('./out'), SourceDocument.from_file('customers.json'))
    """

    def __init__(self, connection_factory, query: str, path: Optional[str] = None, **kwargs):
        super().__init__(connection_factory, **kwargs)
        if not query:
            raise ValueError("query is required")
        self.query = query
        self.path = path

    def _extract(self, ctx):
        ids = None
        if self.path:
            if ctx.source is None:
                raise ValueError(f"{self.name} reads ids from '{self.path}' and needs a source document")
            ids = _ids_at(ctx.source.content, self.path)
            logger.debug(f"Read {len(ids)} ids from source document at {self.path}")
        return self._run_query(ctx, self.query, ids)


class QueryToJsonWithMerge(ExtractionJob):
    """
    Query rows for the parents in a source document and merge them in.

    The ids are the key values found at ``join.parent_key_path``. Rows are merged
    batch by batch with ``JoinMerger`` into a copy of the source content; the
    merged document is published once, after every batch merged cleanly. A row
    whose key matches no parent fails the run unless ``strict`` is False, in
    which case it is logged and skipped.

    Example
    -------
    ::

        job = QueryToJsonWithMerge(
            lambda: connect('warehouse'),
            "select customer_id, sku, qty from orders where customer_id in (#SOURCE_IDS#)",
            JoinSpec('$.customers[*].id', 'customer_id', insertion_key='orders',
                     cleanup_policy=CleanupPolicy.SOURCE))
        job.run(writer, SourceDocument.from_file('customers.json'))
    """

    def __init__(self, connection_factory, query: str, join: JoinSpec, strict: bool = True, **kwargs):
        super().__init__(connection_factory, **kwargs)
        if not query:
            raise ValueError("query is required")
        self.query = query
        self.join = join
        self.strict = strict

    def _extract(self, ctx):
        if ctx.source is None:
            raise ValueError(f"{self.name} merges into a source document and needs one")
        merger = JoinMerger(copy.deepcopy(ctx.source.content), self.join, self.batch_size, strict=self.strict)
        ids = merger.parent_ids()
        logger.debug(f"Merging rows for {len(ids)} parent keys")

        def merge(batch, _ctx):
            merger.merge(batch.rows)

        state = self._run_query(ctx, self.query, ids, handler=merge)
        if merger.orphan_rows:
            logger.warning(f"{merger.orphan_rows} rows had no parent node and were not merged")
        document = OutputDocument.build(merger.document, ctx.attributes(**{FETCH_COUNT: state.total_batch_count}),
                                        kind=DocumentKind.MERGED, rows=merger.merged_rows, indent=self.indent)
        self._publish(ctx, document)
        return state


class FetchTableToJson(ExtractionJob):
    """
    Publish a table (or a custom query) one batch per document.

    Args:
        connection_factory: Returns a new Database
        table: Table name, optionally schema qualified
        columns: Columns to select, all when omitted
        query: Custom query, used instead of ``table``/``columns``
        where: Condition appended to the generated query
    """

    def __init__(self, connection_factory, table: Optional[str] = None, columns: Optional[List[str]] = None,
                 query: Optional[str] = None, where: Optional[str] = None, **kwargs):
        super().__init__(connection_factory, **kwargs)
        if not query and not table:
            raise ValueError("Either table or query is required")
        self.query = query or self.build_query(table, columns, where)

    @staticmethod
    def build_query(table: str, columns: Optional[List[str]] = None, where: Optional[str] = None) -> str:
        """``select <columns> from <table> [where <where>]``"""
        validate_identifier(table)
        select_list = ', '.join(validate_identifier(col) for col in columns) if columns else '*'
        sql = f"select {select_list} from {table}"
        if where:
            sql += f" where {where}"
        return sql

    def _extract(self, ctx):
        return self._run_query(ctx, self.query)


class QueryIdsAndFetchTableToJson(ExtractionJob):
    """
    Read ids with one query and fetch matching rows with another, chunk by chunk.

    Args:
        connection_factory: Returns a new data connection (one per chunk)
        ids_connection_factory: Returns the connection for the ids query
        ids_query: Query returning the ids in ``id_column``
        query: Driving query containing the ``#SOURCE_IDS#`` token
        ids_batch_size: Ids per chunk, 0 for a single chunk
        id_column: Ids column name, ``source_id`` by default
    """

    def __init__(self, connection_factory, ids_connection_factory, ids_query: str, query: str,
                 ids_batch_size: Optional[int] = None, id_column: Optional[str] = None, **kwargs):
        super().__init__(connection_factory, **kwargs)
        if not ids_query or not query:
            raise ValueError("ids_query and query are required")
        self.ids_connection_factory = ids_connection_factory
        self.ids_query = ids_query
        self.query = query
        self.ids_batch_size = ids_batch_size
        self.id_column = id_column

    def _extract(self, ctx):
        def data_connection():
            connection = self.connection_factory()
            ctx.transit_uri = _connection_url(connection)
            return connection

        driver = IdChunkDriver(
            ids_connection=self.ids_connection_factory(),
            ids_query=self.ids_query,
            connection_factory=data_connection,
            query=self.query,
            statement_provider=self.statement_provider,
            batch_size=self.batch_size,
            ids_batch_size=self.ids_batch_size,
            fetch_size=self.fetch_size,
            id_column=self.id_column,
            provider_options=self.provider_options,
            cursor_name=_cursor_name(ctx.fetch_id),
        )
        return driver.run(self._emit_batch, ctx)


_JOB_CLASSES = {
    JobType.QUERY: QueryToJson,
    JobType.QUERY_MERGE: QueryToJsonWithMerge,
    JobType.FETCH_TABLE: FetchTableToJson,
    JobType.QUERY_IDS_FETCH_TABLE: QueryIdsAndFetchTableToJson,
}

_COMMON_OPTIONS = ('batch_size', 'fetch_size', 'dialect', 'element_type', 'oracle_schema', 'indent',
                  'write_by_batch')
_JOB_OPTIONS = {
    JobType.QUERY: ('query', 'path'),
    JobType.QUERY_MERGE: ('query', 'strict'),
    JobType.FETCH_TABLE: ('table', 'columns', 'query', 'where'),
    JobType.QUERY_IDS_FETCH_TABLE: ('ids_query', 'query', 'ids_batch_size', 'id_column'),
}


def build_job(name: str, job_config: Dict[str, Any], connect: Callable[[str], Any],
              lineage: Optional[LineageRecorder] = None) -> ExtractionJob:
    """
    Build a job from a ``jobs:`` entry of the config file.

    Args:
        name: Job name, used in logs
        job_config: The job's config mapping (``type``, ``connection`` and job options)
        connect: Opens a named connection, normally ``dbjson.config.connect``
        lineage: Lineage recorder shared by the job's runs

    Example config::

        jobs:
          changed_orders:
            type: query_ids_fetch_table
            connection: warehouse
            ids_connection: crm
            ids_query: select customer_id as source_id from changed_customers
            query: select * from orders where customer_id in (#SOURCE_IDS#)
            ids_batch_size: 500
            batch_size: 100
    """
    job_type = job_config.get('type')
    if job_type not in _JOB_CLASSES:
        raise ValueError(f"Job '{name}' has invalid type '{job_type}'. Must be one of: {JobType.values()}")
    connection_name = job_config.get('connection')
    if not connection_name:
        raise ValueError(f"Job '{name}' has no connection")

    kwargs = {key: job_config[key] for key in _COMMON_OPTIONS + _JOB_OPTIONS[job_type] if key in job_config}
    kwargs['name'] = name
    kwargs['lineage'] = lineage

    if job_type == JobType.QUERY_MERGE:
        kwargs['join'] = JoinSpec(
            parent_key_path=job_config.get('parent_key_path'),
            child_key_column=job_config.get('child_key_column'),
            insertion_path=job_config.get('insertion_path'),
            insertion_key=job_config.get('insertion_key'),
            cleanup_policy=job_config.get('cleanup_policy', 'none'),
        )
    if job_type == JobType.QUERY_IDS_FETCH_TABLE:
        ids_connection = job_config.get('ids_connection', connection_name)
        kwargs['ids_connection_factory'] = lambda: connect(ids_connection)

    return _JOB_CLASSES[job_type](lambda: connect(connection_name), **kwargs)
