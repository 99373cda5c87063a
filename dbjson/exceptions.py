# dbjson/exceptions.py
"""
Exception hierarchy for extraction failures.

Every failure raised by the extraction core derives from ``ExtractionError`` so
jobs can route them to the failure channel in one place. Causes are always
chained with ``raise ... from``.
"""

import traceback


class ExtractionError(Exception):
    """Base class for all extraction failures."""


class TransientIOFailure(ExtractionError):
    """Reading from the cursor failed. Not retried here; the caller decides."""


class StatementBuildFailure(ExtractionError):
    """Parameters could not be bound or the driver rejected the statement."""


class MergeIntegrityFailure(ExtractionError):
    """Queried rows could not be merged into the source document."""


class KeyNodeNotExists(MergeIntegrityFailure):
    """A join key was missing from the source document or from a queried row."""


class NodeToInsertNotFound(MergeIntegrityFailure):
    """The insertion point could neither be resolved nor synthesized."""


class DialectSubstitutionFailure(ExtractionError):
    """The ids placeholder is missing or the dialect is not recognized."""


def format_failure(exc: BaseException) -> str:
    """Render an exception with its full cause chain for the ``extraction.error`` attribute."""
    return ''.join(traceback.format_exception(type(exc), exc, exc.__traceback__))
