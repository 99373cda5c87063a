# dbjson/extract/batcher.py
"""
Partition a row cursor into a lazy sequence of batches.
"""

import logging
from collections.abc import Mapping
from typing import Any, Callable, Dict, Iterator, List, Optional

from ..defaults import settings
from ..exceptions import TransientIOFailure

logger = logging.getLogger(__name__)

Row = Dict[str, Any]


class Batch:
    """
    One group of rows materialized together into one output document.

    ``index`` is the batch's 0-based position within its invocation and
    ``is_first`` marks the first batch an invocation produced.
    """

    __slots__ = ('rows', 'index', 'is_first', 'single')

    def __init__(self, rows: List[Row], index: int, is_first: bool, single: bool = False):
        self.rows = rows
        self.index = index
        self.is_first = is_first
        self.single = single

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self) -> Iterator[Row]:
        return iter(self.rows)

    def __repr__(self) -> str:
        return f"Batch(index={self.index}, rows={len(self.rows)}, single={self.single})"

    @property
    def payload(self) -> Any:
        """JSON shape of the batch: a bare object when batch size is 1, else an array."""
        if self.single:
            return self.rows[0]
        return self.rows


class FetchState:
    """Per-invocation counters. Owned by one invocation and discarded when it ends."""

    __slots__ = ('total_row_count', 'total_batch_count', 'buffer', 'is_first_batch')

    def __init__(self):
        self.total_row_count = 0
        self.total_batch_count = 0
        self.buffer: List[Row] = []
        self.is_first_batch = True

    def __repr__(self) -> str:
        return f"FetchState(rows={self.total_row_count}, batches={self.total_batch_count})"


class CursorBatcher:
    """
    Read a cursor and yield ``Batch`` objects of ``batch_size`` rows.

    Rows are pulled with ``fetchmany`` using the cursor's ``arraysize``; the next
    page is not fetched until the consumer asks for the next batch, so output and
    fetching never overlap. A ``batch_size`` of 0 puts every row in one batch.

    A failed fetch raises ``TransientIOFailure`` and the rows buffered so far are
    dropped: a partially filled batch is only yielded once the cursor is exhausted.

    Parameters
    ----------
    cursor
        An executed cursor. Rows may be mappings (``DictCursor``) or sequences,
        in which case keys come from ``cursor.description``.
    batch_size : int, optional
        Rows per batch, defaults to ``settings['default_batch_size']``.
    state : FetchState, optional
        Counters to update. Pass a shared state to keep numbering and totals
        running across several cursors of one invocation.

    Example
    -------
    ::

        batcher = CursorBatcher(cursor, batch_size=2)
        for batch in batcher:
            writer.write(batch.payload)
        print(batcher.state.total_row_count, batcher.state.total_batch_count)
    """

    def __init__(self, cursor, batch_size: Optional[int] = None, state: Optional[FetchState] = None):
        if batch_size is None:
            batch_size = settings.get('default_batch_size', 100)
        if batch_size < 0:
            raise ValueError(f"batch_size must be >= 0, got {batch_size}")
        self.cursor = cursor
        self.batch_size = batch_size
        self.state = state if state is not None else FetchState()
        self._columns: Optional[List[str]] = None

    def __iter__(self) -> Iterator[Batch]:
        return self.batches()

    def batches(self) -> Iterator[Batch]:
        """Generator of batches in cursor order."""
        state = self.state
        state.buffer = []
        while True:
            rows = self._fetch_page()
            if not rows:
                break
            for raw in rows:
                state.buffer.append(self._to_row(raw))
                state.total_row_count += 1
                if self.batch_size and len(state.buffer) >= self.batch_size:
                    yield self._flush()

        if state.buffer:
            yield self._flush()

    def drain(self, emit: Callable[[Batch, Any], None], context: Any = None) -> int:
        """
        Hand every batch to ``emit(batch, context)`` and return the total row count.

        ``emit`` runs before the next page is fetched. Whatever it does with the
        batch (writing, attaching metadata, recording lineage) is up to the caller.
        """
        for batch in self.batches():
            emit(batch, context)
        return self.state.total_row_count

    def _fetch_page(self) -> list:
        size = getattr(self.cursor, 'arraysize', None) or settings.get('default_fetch_size', 1000)
        try:
            return self.cursor.fetchmany(size)
        except Exception as e:
            self.state.buffer = []
            raise TransientIOFailure(f"Failed reading from cursor after {self.state.total_row_count} rows: {e}") from e

    def _flush(self) -> Batch:
        state = self.state
        batch = Batch(state.buffer, state.total_batch_count, state.is_first_batch,
                      single=self.batch_size == 1)
        state.buffer = []
        state.total_batch_count += 1
        state.is_first_batch = False
        logger.debug(f"Emitting batch {batch.index} with {len(batch)} rows")
        return batch

    def _to_row(self, raw: Any) -> Row:
        if isinstance(raw, Mapping):
            return dict(raw)
        if self._columns is None:
            description = self.cursor.description or []
            self._columns = [d[0] or f'col_{i + 1}' for i, d in enumerate(description)]
        return dict(zip(self._columns, raw))
