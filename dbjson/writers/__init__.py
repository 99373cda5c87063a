# dbjson/writers/__init__.py
"""
Document writers. All writers stage documents and publish them on commit.
"""

from .base import DocumentWriter
from .json import JSONFileWriter, NDJSONWriter, writer_for
from .memory import MemoryWriter

__all__ = [
    'DocumentWriter',
    'JSONFileWriter',
    'NDJSONWriter',
    'MemoryWriter',
    'writer_for',
]
