# dbjson/extract/merge.py
"""
Merge queried rows into an existing JSON document by join key.
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from .. import paths
from ..defaults import settings
from ..exceptions import KeyNodeNotExists, NodeToInsertNotFound
from ..utils import to_text

logger = logging.getLogger(__name__)
__all__ = ['CleanupPolicy', 'JoinSpec', 'JoinMerger']


class CleanupPolicy:
    """
    Which join key fields to remove once rows are merged.

    - NONE: keep both
    - SOURCE: drop the child key column from every inserted row
    - TARGET: drop the key field from every matched parent node
    - BOTH: SOURCE and TARGET
    """
    NONE = 'none'
    SOURCE = 'source'
    TARGET = 'target'
    BOTH = 'both'

    @classmethod
    def values(cls):
        return [getattr(cls, attr) for attr in dir(cls) if not attr.startswith('_')]

    @classmethod
    def cleans_source(cls, policy: str) -> bool:
        return policy in (cls.SOURCE, cls.BOTH)

    @classmethod
    def cleans_target(cls, policy: str) -> bool:
        return policy in (cls.TARGET, cls.BOTH)


@dataclass
class JoinSpec:
    """
    How rows join to the source document.

    Attributes:
        parent_key_path: Path to the key field on each parent node, e.g. ``$.orders[*].customer_id``
        child_key_column: Column in the queried rows holding the matching value
        insertion_path: Path below each parent node where rows go (created if missing)
        insertion_key: Field that receives the rows; defaults to ``settings['default_insertion_key']``
            unless ``insertion_path`` addresses an array
        cleanup_policy: One of ``CleanupPolicy.values()``
    """
    parent_key_path: str
    child_key_column: str
    insertion_path: Optional[str] = None
    insertion_key: Optional[str] = None
    cleanup_policy: str = CleanupPolicy.NONE

    def __post_init__(self):
        if not self.parent_key_path:
            raise ValueError("parent_key_path is required")
        if not self.child_key_column:
            raise ValueError("child_key_column is required")
        policy = (self.cleanup_policy or CleanupPolicy.NONE).lower()
        if policy not in CleanupPolicy.values():
            raise ValueError(
                f"Invalid cleanup policy '{self.cleanup_policy}'. Must be one of: {CleanupPolicy.values()}"
            )
        self.cleanup_policy = policy
        if paths.parse(self.parent_key_path)[-1:] in ([], [paths.WILDCARD]):
            raise ValueError(f"parent_key_path must end in a field name: {self.parent_key_path}")
        if self.insertion_key is None and self.insertion_path is None:
            self.insertion_key = settings.get('default_insertion_key', 'data')


class JoinMerger:
    """
    Attach batches of rows to the parent nodes whose key matches.

    Parent nodes are the objects holding the field addressed by
    ``join.parent_key_path``. Keys are compared as text, so a numeric column
    joins to a string field. Each merged batch:

    1. groups rows by ``child_key_column``
    2. for every parent with a non-empty group, attaches the group at
       ``insertion_path`` / ``insertion_key`` (a bare object when the batch size
       is 1, otherwise appended to an array)
    3. applies the cleanup policy

    A batch is checked in full before the document is touched, so a failing
    batch leaves the document as it was.

    Parameters
    ----------
    document : dict or list
        Source document, modified in place.
    join : JoinSpec
        Join definition.
    batch_size : int, optional
        The extraction batch size. ``1`` selects single object attachment.
    strict : bool, default True
        Raise ``KeyNodeNotExists`` for rows whose key matches no parent. With
        ``strict=False`` such rows are logged, counted in ``orphan_rows`` and
        skipped.

    Raises
    ------
    KeyNodeNotExists
        ``parent_key_path`` matches nothing, a row lacks ``child_key_column``,
        or a row has no parent (unless ``strict=False``).
    NodeToInsertNotFound
        The insertion point is blocked by a non-object value or is not an array
        when no ``insertion_key`` is given.

    Example
    -------
    ::

        merger = JoinMerger({'id': 'X1'}, JoinSpec('id', 'ID', insertion_key='data'))
        merger.merge([{'ID': 'X1', 'V': 1}, {'ID': 'X1', 'V': 2}])
        merger.document
        # {'id': 'X1', 'data': [{'ID': 'X1', 'V': 1}, {'ID': 'X1', 'V': 2}]}
    """

    def __init__(self, document: Any, join: JoinSpec, batch_size: Optional[int] = None, strict: bool = True):
        if batch_size is None:
            batch_size = settings.get('default_batch_size', 100)
        self.document = document
        self.join = join
        self.single = batch_size == 1
        self.strict = strict
        self.merged_rows = 0
        self.orphan_rows = 0
        self._index: Optional[Dict[str, List[Tuple[dict, str]]]] = None
        self._insertion_steps = paths.parse(join.insertion_path) if join.insertion_path else []
        if paths.WILDCARD in self._insertion_steps:
            raise ValueError(f"insertion_path cannot contain wildcards: {join.insertion_path}")

    def _parents(self) -> Dict[str, List[Tuple[dict, str]]]:
        """Index of key text to the parent nodes holding that key, built once."""
        if self._index is None:
            located = paths.locate(self.document, self.join.parent_key_path)
            if not located:
                raise KeyNodeNotExists(
                    f"No nodes found in source document for parent key path '{self.join.parent_key_path}'"
                )
            index: Dict[str, List[Tuple[dict, str]]] = OrderedDict()
            seen = set()
            for container, field in located:
                if not isinstance(container, dict) or id(container) in seen:
                    continue
                value = container[field]
                if value is None or isinstance(value, (dict, list)):
                    continue
                key = to_text(value)
                if key is None:
                    continue
                seen.add(id(container))
                index.setdefault(key, []).append((container, field))
            self._index = index
            logger.debug(f"Indexed {len(seen)} parent nodes under {len(index)} keys")
        return self._index

    def parent_ids(self) -> List[str]:
        """Distinct parent key values in document order, as text."""
        return list(self._parents())

    def merge(self, rows: List[Dict[str, Any]]) -> int:
        """
        Merge one batch of rows. Returns the number of rows attached.

        An empty batch is a no-op.
        """
        if not rows:
            return 0
        index = self._parents()
        column = self.join.child_key_column

        groups: Dict[str, List[Dict[str, Any]]] = OrderedDict()
        for position, row in enumerate(rows):
            if column not in row:
                raise KeyNodeNotExists(f"Row {position} has no join key column '{column}'")
            groups.setdefault(to_text(row[column]), []).append(row)

        plan = []
        for key, group in groups.items():
            parents = index.get(key)
            if not parents:
                if self.strict:
                    raise KeyNodeNotExists(f"A parent node with key '{key}' was not found")
                logger.warning(f"Skipping {len(group)} row(s): no parent node with key '{key}'")
                self.orphan_rows += len(group)
                continue
            for parent, field in parents:
                self._insertion_point(parent, create=False)
                plan.append((parent, field, group))

        attached = 0
        for parent, field, group in plan:
            self._attach(self._insertion_point(parent, create=True), group)
            attached += len(group)
            if CleanupPolicy.cleans_target(self.join.cleanup_policy):
                parent.pop(field, None)
        self.merged_rows += attached
        logger.debug(f"Merged {attached} rows into {len(plan)} parent nodes")
        return attached

    def _insertion_point(self, parent: dict, create: bool) -> Any:
        """Walk ``insertion_path`` below ``parent``, creating missing objects when ``create`` is set."""
        key = self.join.insertion_key
        last = len(self._insertion_steps) - 1
        node = parent
        for position, step in enumerate(self._insertion_steps):
            if isinstance(step, int):
                if isinstance(node, list) and -len(node) <= step < len(node):
                    node = node[step]
                    continue
                raise NodeToInsertNotFound(f"Index [{step}] of insertion path '{self.join.insertion_path}' not found")
            if not isinstance(node, dict):
                raise NodeToInsertNotFound(
                    f"Insertion path '{self.join.insertion_path}' is blocked at '{step}' by a non-object value"
                )
            child = node.get(step)
            if child is None:
                if not create:
                    return None
                child = node[step] = [] if key is None and position == last else {}
            node = child

        if key is None:
            if not isinstance(node, list):
                raise NodeToInsertNotFound(
                    f"Insertion path '{self.join.insertion_path}' is not an array and no insertion key was given"
                )
        elif not isinstance(node, dict):
            raise NodeToInsertNotFound(f"Insertion point for '{key}' is not an object")
        elif not self.single and node.get(key) is not None and not isinstance(node[key], list):
            raise NodeToInsertNotFound(f"Field '{key}' exists and is not an array")
        return node

    def _attach(self, target: Any, group: List[Dict[str, Any]]) -> None:
        payload = [self._payload(row) for row in group]
        key = self.join.insertion_key
        if key is None:
            target.extend(payload)
        elif self.single and len(payload) == 1:
            target[key] = payload[0]
        else:
            existing = target.get(key)
            if isinstance(existing, list):
                existing.extend(payload)
            else:
                target[key] = payload

    def _payload(self, row: Dict[str, Any]) -> Dict[str, Any]:
        payload = dict(row)
        if CleanupPolicy.cleans_source(self.join.cleanup_policy):
            payload.pop(self.join.child_key_column, None)
        return payload
