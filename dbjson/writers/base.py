# dbjson/writers/base.py
"""
Base class for document writers with staged, all-or-nothing publication.
"""

import logging
from abc import ABC, abstractmethod

from ..documents import OutputDocument

logger = logging.getLogger(__name__)


class DocumentWriter(ABC):
    """
    Abstract base class for document writers.

    Documents passed to ``write`` are staged; nothing is visible to readers of
    the output until ``commit``. ``rollback`` discards everything staged since
    the last commit. Failure documents bypass staging so they survive the
    rollback of the invocation that produced them.

    Used as a context manager the writer commits on a clean exit and rolls back
    when the block raises.

    Example
    -------
    ::

        with JSONFileWriter('./out') as writer:
            job.run(writer=writer)
    """

    def __init__(self):
        self.documents_written = 0
        self.failures_written = 0
        self._staged_count = 0

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None:
            self.commit()
        else:
            self.rollback()
        self.close()

    def write(self, document: OutputDocument) -> None:
        """Stage one document."""
        self._stage(document)
        self._staged_count += 1

    def write_failure(self, document: OutputDocument) -> None:
        """Publish a failure document immediately."""
        self._write_failure(document)
        self.failures_written += 1

    def commit(self) -> None:
        """Publish every staged document."""
        if self._staged_count:
            self._publish()
            logger.info(f"Published {self._staged_count} document(s) with {self.__class__.__name__}")
            self.documents_written += self._staged_count
            self._staged_count = 0

    def rollback(self) -> None:
        """Discard every staged document."""
        if self._staged_count:
            logger.warning(f"Discarding {self._staged_count} staged document(s)")
        self._discard()
        self._staged_count = 0

    def close(self) -> None:
        """Release resources. Staged documents not yet committed are discarded."""
        if self._staged_count:
            self.rollback()

    @abstractmethod
    def _stage(self, document: OutputDocument) -> None:
        pass

    @abstractmethod
    def _publish(self) -> None:
        pass

    @abstractmethod
    def _discard(self) -> None:
        pass

    @abstractmethod
    def _write_failure(self, document: OutputDocument) -> None:
        pass
