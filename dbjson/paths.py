# dbjson/paths.py
"""
Minimal JSONPath evaluation over parsed JSON documents.

Supported syntax::

    $                   the root
    .name  ['name']     object member
    [3]                 array element (negative indexes count from the end)
    [*]  .*             every member of an object or element of an array

A path that does not start with ``$`` is relative to the root, so ``id`` and
``$.id`` are the same path. ``$.[*]`` is accepted as a synonym for ``$[*]``.
"""

import re
from typing import Any, List, Tuple, Union

__all__ = ['parse', 'find', 'locate', 'WILDCARD']

WILDCARD = object()

_TOKEN = re.compile(r"""
      \[\s*\*\s*\]                      # [*]
    | \[\s*(-?\d+)\s*\]                 # [3]
    | \[\s*'((?:[^'\\]|\\.)*)'\s*\]     # ['name']
    | \[\s*"((?:[^"\\]|\\.)*)"\s*\]     # ["name"]
    | \.\s*\*                           # .*
    | \.?([^.\[\]\s]+)                  # .name or name
    | \.(?=\[)                          # stray dot before a bracket: $.[*]
""", re.VERBOSE)

Step = Union[str, int, object]


def parse(path: str) -> List[Step]:
    """Split a path into member names, integer indexes and ``WILDCARD`` markers."""
    if path is None:
        raise ValueError("Path cannot be None")
    text = path.strip()
    if not text:
        raise ValueError("Path cannot be empty")
    if text.startswith('$'):
        text = text[1:]

    steps: List[Step] = []
    pos = 0
    while pos < len(text):
        match = _TOKEN.match(text, pos)
        if match is None or match.end() == pos:
            raise ValueError(f"Invalid path '{path}' at position {pos + 1}")
        pos = match.end()
        token = match.group(0).strip()
        index, single, double, name = match.groups()
        if token in ('.', ''):
            continue
        if index is not None:
            steps.append(int(index))
        elif single is not None:
            steps.append(single.replace("\\'", "'"))
        elif double is not None:
            steps.append(double.replace('\\"', '"'))
        elif name is not None and name != '*':
            steps.append(name)
        else:
            steps.append(WILDCARD)
    return steps


def _children(node: Any, step: Step) -> List[Tuple[Any, Union[str, int]]]:
    """(container, key) pairs addressed by one step below ``node``."""
    if step is WILDCARD:
        if isinstance(node, dict):
            return [(node, key) for key in node]
        if isinstance(node, list):
            return [(node, i) for i in range(len(node))]
        return []
    if isinstance(step, int):
        if isinstance(node, list) and -len(node) <= step < len(node):
            return [(node, step % len(node))]
        return []
    if isinstance(node, dict) and step in node:
        return [(node, step)]
    return []


def locate(document: Any, path: str) -> List[Tuple[Any, Union[str, int]]]:
    """
    Resolve a path to the ``(container, key)`` pairs that hold the matched values.

    The root itself has no container, so a path of ``$`` returns an empty list.

    Example
    -------
    ::

        doc = {'orders': [{'id': 1}, {'id': 2}]}
        [(c, k) for c, k in locate(doc, '$.orders[*].id')]
        # [({'id': 1}, 'id'), ({'id': 2}, 'id')]
    """
    steps = parse(path)
    if not steps:
        return []
    nodes = [document]
    for step in steps[:-1]:
        nodes = [container[key] for node in nodes for container, key in _children(node, step)]
    return [pair for node in nodes for pair in _children(node, steps[-1])]


def find(document: Any, path: str) -> List[Any]:
    """Return every value the path matches, in document order."""
    if not parse(path):
        return [document]
    return [container[key] for container, key in locate(document, path)]
