# dbjson/writers/memory.py
"""
In-process document writer.
"""

from typing import List

from ..documents import DocumentKind, OutputDocument
from .base import DocumentWriter


class MemoryWriter(DocumentWriter):
    """
    Collects committed documents in ``documents`` and failures in ``failures``.

    Handy when extraction results are consumed by the same process.

    Example
    -------
    ::

        writer = MemoryWriter()
        job.run(writer=writer)
        for doc in writer.batches:
            print(doc.attributes['fetch.index'], doc.payload)
    """

    def __init__(self):
        super().__init__()
        self.documents: List[OutputDocument] = []
        self.failures: List[OutputDocument] = []
        self._pending: List[OutputDocument] = []

    @property
    def batches(self) -> List[OutputDocument]:
        """Committed documents other than summaries."""
        return [doc for doc in self.documents if doc.kind != DocumentKind.SUMMARY]

    @property
    def summaries(self) -> List[OutputDocument]:
        return [doc for doc in self.documents if doc.kind == DocumentKind.SUMMARY]

    def _stage(self, document: OutputDocument) -> None:
        self._pending.append(document)

    def _publish(self) -> None:
        self.documents.extend(self._pending)
        self._pending = []

    def _discard(self) -> None:
        self._pending = []

    def _write_failure(self, document: OutputDocument) -> None:
        self.failures.append(document)
