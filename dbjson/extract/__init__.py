# dbjson/extract/__init__.py
"""
Streaming extraction core: cursor scoping, batching, merging and id-driven chunking.
"""

from .batcher import Batch, CursorBatcher, FetchState
from .dialects import Dialect, render_driving_query
from .driver import DriverState, IdChunkDriver
from .merge import CleanupPolicy, JoinMerger, JoinSpec
from .scope import CursorScope, server_cursor_kwargs
from .statements import (
    ElementType, StatementProvider, PostgresStatementProvider,
    OracleStatementProvider, GenericStatementProvider, provider_for
)

__all__ = [
    'Batch',
    'CursorBatcher',
    'FetchState',
    'CursorScope',
    'server_cursor_kwargs',
    'Dialect',
    'render_driving_query',
    'DriverState',
    'IdChunkDriver',
    'CleanupPolicy',
    'JoinMerger',
    'JoinSpec',
    'ElementType',
    'StatementProvider',
    'PostgresStatementProvider',
    'OracleStatementProvider',
    'GenericStatementProvider',
    'provider_for',
]
