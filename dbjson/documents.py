# dbjson/documents.py
"""
Documents flowing into and out of extraction jobs, plus lineage recording.
"""

import json
import logging
import uuid
from collections import deque
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .utils import dumps

logger = logging.getLogger(__name__)

MIME_TYPE = 'application/json'

# attribute names
FETCH_ID = 'fetch.id'
FETCH_INDEX = 'fetch.index'
FETCH_COUNT = 'fetch.count'
ROWS_COUNT = 'rows.count'
BYTES_COUNT = 'bytes.count'
MIME_TYPE_ATTR = 'mime.type'
EXTRACTION_ERROR = 'extraction.error'


class DocumentKind:
    BATCH = 'batch'
    MERGED = 'merged'
    SUMMARY = 'summary'
    FAILURE = 'failure'

    @classmethod
    def values(cls):
        return [getattr(cls, attr) for attr in dir(cls) if not attr.startswith('_')]


class SourceDocument:
    """
    A document that triggers a job: parsed JSON content plus attributes.

    Attributes copied from the source (``fetch.id`` in particular) are carried
    onto every document the job produces.
    """

    def __init__(self, content: Any, attributes: Optional[Dict[str, Any]] = None,
                 document_id: Optional[str] = None):
        self.content = content
        self.attributes = dict(attributes or {})
        self.id = document_id or str(uuid.uuid4())

    def __repr__(self) -> str:
        return f"SourceDocument(id={self.id!r}, attributes={self.attributes!r})"

    @classmethod
    def from_text(cls, text: str, attributes: Optional[Dict[str, Any]] = None) -> 'SourceDocument':
        return cls(json.loads(text), attributes)

    @classmethod
    def from_file(cls, path: Union[str, Path], encoding: str = 'utf-8',
                  attributes: Optional[Dict[str, Any]] = None) -> 'SourceDocument':
        """Load a JSON file. The file name is recorded in the ``filename`` attribute."""
        path = Path(path)
        with open(path, encoding=encoding) as fp:
            content = json.load(fp)
        attributes = dict(attributes or {})
        attributes.setdefault('filename', path.name)
        return cls(content, attributes)


class OutputDocument:
    """A produced document: JSON text, attributes and its kind."""

    __slots__ = ('content', 'attributes', 'kind', 'id')

    def __init__(self, content: str, attributes: Dict[str, Any], kind: str = DocumentKind.BATCH):
        self.content = content
        self.attributes = attributes
        self.kind = kind
        self.id = str(uuid.uuid4())

    def __repr__(self) -> str:
        return f"OutputDocument(kind={self.kind!r}, attributes={self.attributes!r})"

    @property
    def payload(self) -> Any:
        """Parsed content."""
        return json.loads(self.content)

    @classmethod
    def build(cls, payload: Any, attributes: Dict[str, Any], kind: str = DocumentKind.BATCH,
              rows: Optional[int] = None, indent: Optional[int] = None) -> 'OutputDocument':
        """Serialize ``payload`` and fill in the standard count and mime type attributes."""
        content = dumps(payload, indent=indent)
        attributes = dict(attributes)
        if rows is not None:
            attributes[ROWS_COUNT] = rows
        attributes[BYTES_COUNT] = len(content.encode('utf-8'))
        attributes[MIME_TYPE_ATTR] = MIME_TYPE
        return cls(content, attributes, kind)


class LineageRecorder:
    """
    Records where documents came from.

    The default implementation logs each event at DEBUG and keeps the latest
    ``max_events`` of them in ``events`` (all of them when ``max_events`` is
    None). Subclasses forward events to a provenance store by overriding
    ``record``; pass ``max_events=0`` to keep nothing in memory.
    """

    def __init__(self, max_events: Optional[int] = 1000):
        self.events: deque = deque(maxlen=max_events)

    def record(self, event: Dict[str, Any]) -> None:
        self.events.append(event)

    def fork(self, parent: SourceDocument, children: List[OutputDocument]) -> None:
        """Record that ``children`` were derived from ``parent``."""
        if not children:
            return
        event = {'type': 'fork', 'parent': parent.id, 'children': [child.id for child in children]}
        self.record(event)
        logger.debug(f"Lineage: {parent.id} forked {len(children)} document(s)")

    def fetch(self, document: OutputDocument, transit_uri: str) -> None:
        """Record that ``document`` was fetched from ``transit_uri``."""
        self.record({'type': 'fetch', 'document': document.id, 'uri': transit_uri})
        logger.debug(f"Lineage: {document.id} fetched from {transit_uri}")
