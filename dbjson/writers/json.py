# dbjson/writers/json.py
"""
JSON file writers for extracted documents.
"""

import json
import logging
import os
from pathlib import Path
from typing import List, Optional, Tuple, Union

from ..documents import DocumentKind, EXTRACTION_ERROR, FETCH_ID, FETCH_INDEX, OutputDocument
from .base import DocumentWriter

logger = logging.getLogger(__name__)


def _document_name(prefix: str, document: OutputDocument, extension: str = 'json') -> str:
    fetch_id = document.attributes.get(FETCH_ID, document.id)
    if document.kind == DocumentKind.SUMMARY:
        return f"{prefix}_{fetch_id}_summary.{extension}"
    if document.kind == DocumentKind.MERGED:
        return f"{prefix}_{fetch_id}_merged.{extension}"
    index = document.attributes.get(FETCH_INDEX, 0)
    return f"{prefix}_{fetch_id}_{index:05d}.{extension}"


class JSONFileWriter(DocumentWriter):
    """
    Writes each document to its own file in a directory.

    Files are named ``{prefix}_{fetch.id}_{fetch.index}.json``; the summary
    document goes to ``{prefix}_{fetch.id}_summary.json`` and a merged document
    to ``{prefix}_{fetch.id}_merged.json``. Staged documents live in hidden
    ``.tmp`` files until commit renames them into place.

    Failure documents are written to ``{prefix}_{fetch.id}_error.txt`` holding
    the ``extraction.error`` text.

    Args:
        directory: Output directory, created if missing
        prefix: File name prefix
        encoding: File encoding
    """

    def __init__(self, directory: Union[str, Path], prefix: str = 'batch', encoding: str = 'utf-8'):
        super().__init__()
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self.prefix = prefix
        self.encoding = encoding
        self.paths: List[Path] = []
        self._pending: List[Tuple[Path, Path]] = []

    def _stage(self, document: OutputDocument) -> None:
        final = self.directory / _document_name(self.prefix, document)
        temp = self.directory / f".{final.name}.tmp"
        with open(temp, 'w', encoding=self.encoding) as fp:
            fp.write(document.content)
        self._pending.append((temp, final))

    def _publish(self) -> None:
        for temp, final in self._pending:
            os.replace(temp, final)
            self.paths.append(final)
        self._pending = []

    def _discard(self) -> None:
        for temp, _ in self._pending:
            try:
                temp.unlink()
            except FileNotFoundError:
                pass
        self._pending = []

    def _write_failure(self, document: OutputDocument) -> None:
        fetch_id = document.attributes.get(FETCH_ID, document.id)
        path = self.directory / f"{self.prefix}_{fetch_id}_error.txt"
        with open(path, 'w', encoding=self.encoding) as fp:
            fp.write(str(document.attributes.get(EXTRACTION_ERROR, '')))
        logger.info(f"Wrote failure details to {path}")


class NDJSONWriter(DocumentWriter):
    """
    Appends rows of every batch document to one newline-delimited JSON file.

    Array payloads contribute one line per element, object payloads one line.
    Summary documents are logged rather than written. Rows are staged in
    ``{file}.tmp`` and the file is replaced on commit.

    Args:
        file: Output filename
        encoding: File encoding
        append: Keep rows already in ``file`` when committing
    """

    def __init__(self, file: Union[str, Path], encoding: str = 'utf-8', append: bool = False):
        super().__init__()
        self.file = Path(file)
        self.file.parent.mkdir(parents=True, exist_ok=True)
        self.encoding = encoding
        self.append = append
        self.rows_written = 0
        self._temp = self.file.with_name(f".{self.file.name}.tmp")
        self._fp = None
        self._staged_rows = 0

    def _open(self):
        if self._fp is None:
            self._fp = open(self._temp, 'w', encoding=self.encoding)
            if self.append and self.file.exists():
                with open(self.file, encoding=self.encoding) as existing:
                    for line in existing:
                        self._fp.write(line)
        return self._fp

    def _stage(self, document: OutputDocument) -> None:
        if document.kind == DocumentKind.SUMMARY:
            logger.info(f"Summary: {document.content}")
            return
        fp = self._open()
        payload = document.payload
        rows = payload if isinstance(payload, list) else [payload]
        for row in rows:
            fp.write(json.dumps(row, ensure_ascii=False) + '\n')
        self._staged_rows += len(rows)

    def _publish(self) -> None:
        if self._fp is None:
            return
        self._fp.close()
        self._fp = None
        os.replace(self._temp, self.file)
        # later commits add to what this one published
        self.append = True
        self.rows_written += self._staged_rows
        self._staged_rows = 0
        logger.info(f"Wrote {self.rows_written} rows to {self.file}")

    def _discard(self) -> None:
        if self._fp is not None:
            self._fp.close()
            self._fp = None
        if self._temp.exists():
            self._temp.unlink()
        self._staged_rows = 0

    def _write_failure(self, document: OutputDocument) -> None:
        path = self.file.with_name(f"{self.file.name}.error.txt")
        with open(path, 'w', encoding=self.encoding) as fp:
            fp.write(str(document.attributes.get(EXTRACTION_ERROR, '')))
        logger.info(f"Wrote failure details to {path}")


def writer_for(output: Optional[Union[str, Path]], output_format: str = 'json', prefix: str = 'batch') -> DocumentWriter:
    """Build a file writer from job configuration values."""
    if output is None:
        raise ValueError("An output location is required")
    if output_format == 'json':
        return JSONFileWriter(output, prefix=prefix)
    elif output_format == 'ndjson':
        return NDJSONWriter(output)
    raise ValueError(f"Unknown output format '{output_format}'. Must be 'json' or 'ndjson'")
