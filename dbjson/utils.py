# dbjson/utils.py
"""
Utility functions for dbjson.
"""

import base64
import datetime as dt
import json
import re
from decimal import Decimal
from typing import Any, Optional

from .defaults import settings

MIDNIGHT = dt.time(0, 0, 0)
# cache format strings for performance
_format_cache = None


class ParamStyle:
    """
    SQL parameter placeholder styles for different database drivers.

    - QMARK: Question mark placeholders (?, ?) - SQLite, ODBC
    - NUMERIC: Numeric placeholders (:1, :2) - Oracle
    - NAMED: Named placeholders (:name, :email) - Oracle
    - FORMAT: Printf-style (%s, %s) - MySQL (MySQLdb)
    - PYFORMAT: Python format (%(name)s) - psycopg2, psycopg

    Only positional binding is used when array parameters are substituted into a
    driving query, so ``get_placeholder`` always returns the positional form.

    Example
    -------
    ::
        >>> ParamStyle.get_placeholder('qmark')
        '?'
        >>> ParamStyle.get_placeholder('named')
        ':1'
    """
    QMARK = 'qmark'         # id = ?
    NUMERIC = 'numeric'     # id = :1
    NAMED = 'named'         # id = :id  also :1 for positional
    FORMAT = 'format'       # id = %s
    PYFORMAT = 'pyformat'   # id = %(id)s also %s for positional
    DEFAULT = NAMED

    @classmethod
    def values(cls):
        return [getattr(cls, attr) for attr in dir(cls) if not attr.startswith('_')]

    @classmethod
    def get_placeholder(cls, paramstyle: str) -> str:
        if paramstyle == cls.QMARK:
            return '?'
        elif paramstyle in (cls.FORMAT, cls.PYFORMAT):
            return '%s'
        elif paramstyle in (cls.NUMERIC, cls.NAMED):
            return ':1'
        return ''

    @classmethod
    def numbered(cls, paramstyle: str) -> bool:
        """True when every positional placeholder needs its own ordinal (:1, :2, ...)."""
        return paramstyle in (cls.NUMERIC, cls.NAMED)


def _build_format_strings():
    """Build format strings for datetime and date objects."""
    return {
        'date': settings.get('date_format', '%Y-%m-%d'),
        'datetime': settings.get('datetime_format', '%Y-%m-%d %H:%M:%S'),
        'timestamp': settings.get('timestamp_format', '%Y-%m-%d %H:%M:%S.%f'),
        'time': settings.get('time_format', '%H:%M:%S'),
        'time_micro': settings.get('time_format', '%H:%M:%S') + '.%f',
    }


def reset_format_cache():
    """Clear format cache to force rebuilding on next call."""
    global _format_cache
    _format_cache = None


def _get_format_strings():
    global _format_cache
    if _format_cache is None:
        _format_cache = _build_format_strings()
    return _format_cache


def to_string(obj: Any) -> Optional[str]:
    """
    Convert a temporal value to its configured string representation.

    Timezone-aware values are rendered in ISO 8601 so the offset is never lost.
    """
    fmts = _get_format_strings()
    if obj is None:
        return None
    elif isinstance(obj, dt.datetime):
        if obj.tzinfo:
            return obj.isoformat()
        if obj.microsecond:
            return obj.strftime(fmts['timestamp'])
        return obj.strftime(fmts['datetime'])
    elif isinstance(obj, dt.date):
        return obj.strftime(fmts['date'])
    elif isinstance(obj, dt.time):
        if obj.tzinfo:
            return obj.isoformat()
        if obj.microsecond:
            return obj.strftime(fmts['time_micro'])
        return obj.strftime(fmts['time'])
    return str(obj)


def to_text(value: Any) -> Optional[str]:
    """
    Text form of a join key value.

    Keys read from a document and keys read from a database column are compared
    by text, so ``1``, ``Decimal('1')`` and ``'1'`` all match.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, Decimal):
        if value == value.to_integral_value():
            return str(value.quantize(Decimal(1)))
        return str(value.normalize())
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dt.date, dt.time)):
        return to_string(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return base64.b64encode(bytes(value)).decode('ascii')
    return str(value)


def json_default(obj: Any) -> Any:
    """``default`` hook for ``json.dumps`` covering the types DB-API drivers return."""
    if isinstance(obj, Decimal):
        if obj == obj.to_integral_value():
            return int(obj)
        return float(obj)
    if isinstance(obj, (dt.datetime, dt.date, dt.time)):
        return to_string(obj)
    if isinstance(obj, (bytes, bytearray, memoryview)):
        return base64.b64encode(bytes(obj)).decode('ascii')
    if hasattr(obj, 'read'):
        # LOB objects
        return json_default(obj.read())
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def dumps(payload: Any, indent: Optional[int] = None) -> str:
    """Serialize a batch payload or document to JSON text."""
    return json.dumps(payload, default=json_default, ensure_ascii=False, indent=indent)


def validate_identifier(identifier: str, max_length: int = 128) -> str:
    """
    Validate that an identifier is safe to splice into generated SQL.
    Returns the identifier if valid, raises ValueError if invalid.
    """
    if '.' in identifier:
        return '.'.join(validate_identifier(part, max_length) for part in identifier.split('.'))

    if not identifier:
        raise ValueError("Invalid identifier: cannot be empty")
    if not (identifier[0].isalpha() or identifier[0] == '_'):
        raise ValueError(f"Invalid identifier: must start with a letter: {identifier}")
    if len(identifier) > max_length:
        raise ValueError(f"Invalid identifier: exceeds max length of {max_length}")

    dangerous_patterns = ['\x00', '\n', '\r', '"', "'", ';', '\x1a', '--', '/*', '*/']
    for pattern in dangerous_patterns:
        if pattern in identifier:
            raise ValueError(f"Invalid identifier: contains dangerous pattern '{pattern}': {identifier}")

    if not re.match(r'^[\w$#]+$', identifier):
        raise ValueError(f"Invalid identifier: {identifier}")

    return identifier
