# dbjson/extract/dialects.py
"""
Placeholder substitution for driving queries.

A driving query carries one token (``#SOURCE_IDS#`` by default) where a list of
identifiers belongs, typically ``WHERE id IN (#SOURCE_IDS#)``. The token is
replaced with a clause that reads the ids from a bound array parameter. Which
clause depends on the dialect the statement provider declares:

=========  ==================================================================
postgres   ``select unnest(%s)``
oracle     ``select /*+ cardinality (t 10) */ t.column_value
           from table(cast(:1 as ARRAYOFSTRINGS)) t``
generic    ``?, ?, ?`` (one placeholder per id, padded with NULL binds)
=========  ==================================================================

When there are no ids at all the token becomes ``NULL`` for every dialect, so
``IN (NULL)`` is valid SQL that matches nothing.
"""

import logging
from typing import Optional, Tuple

from ..defaults import settings
from ..exceptions import DialectSubstitutionFailure
from ..utils import ParamStyle

logger = logging.getLogger(__name__)

POSTGRES_CONDITION = 'select unnest({placeholder})'
ORACLE_CONDITION = 'select /*+ cardinality (t 10) */ t.column_value from table(cast({placeholder} as {array_type})) t'
EMPTY_CONDITION = 'NULL'


class Dialect:
    """Closed set of array-binding dialects a statement provider can declare."""
    POSTGRES = 'postgres'
    ORACLE = 'oracle'
    GENERIC = 'generic'

    @classmethod
    def values(cls):
        return [getattr(cls, attr) for attr in dir(cls) if not attr.startswith('_')]


class _Placeholders:
    """Hands out positional placeholders, numbering them for :1 style drivers."""

    def __init__(self, paramstyle: str):
        if paramstyle not in ParamStyle.values():
            raise DialectSubstitutionFailure(f"Unknown paramstyle '{paramstyle}'")
        self.paramstyle = paramstyle
        self.count = 0

    def next(self) -> str:
        self.count += 1
        if ParamStyle.numbered(self.paramstyle):
            return f':{self.count}'
        return ParamStyle.get_placeholder(self.paramstyle)


def render_driving_query(template: str,
                         dialect: str,
                         has_ids: bool = True,
                         paramstyle: str = ParamStyle.QMARK,
                         array_type: Optional[str] = None,
                         width: int = 1,
                         token: Optional[str] = None) -> Tuple[str, int]:
    """
    Replace the ids token in ``template`` with the clause for ``dialect``.

    Every occurrence of the token is replaced; each one becomes an independent
    bind of the same id list.

    Parameters
    ----------
    template : str
        SQL text containing the token.
    dialect : str
        One of ``Dialect.values()``.
    has_ids : bool
        False when the ids cursor produced nothing; renders ``NULL``.
    paramstyle : str
        DB-API paramstyle of the connection that will run the query.
    array_type : str, optional
        Oracle collection type, e.g. ``ARRAYOFSTRINGS`` or ``APP.ARRAYOFNUMBERS``.
    width : int
        Generic dialect only: placeholders per occurrence (the largest chunk size).
    token : str, optional
        Defaults to ``settings['ids_placeholder']``.

    Returns
    -------
    tuple
        ``(sql, number_of_binds)`` where ``number_of_binds`` is how many times the
        id list must be bound (0 when ``has_ids`` is False).

    Raises
    ------
    DialectSubstitutionFailure
        The token is missing, the dialect is unknown, or the generic dialect
        was given a width below 1.

    Example
    -------
    ::

        >>> render_driving_query('select * from t where id in (#SOURCE_IDS#)',
        ...                      Dialect.POSTGRES, paramstyle='pyformat')
        ('select * from t where id in (select unnest(%s))', 1)
    """
    if token is None:
        token = settings.get('ids_placeholder', '#SOURCE_IDS#')
    if not template or token not in template:
        raise DialectSubstitutionFailure(f"Driving query does not contain the placeholder token '{token}'")
    if dialect not in Dialect.values():
        raise DialectSubstitutionFailure(
            f"Unknown dialect '{dialect}'. Must be one of: {Dialect.values()}"
        )

    pieces = template.split(token)
    occurrences = len(pieces) - 1

    if not has_ids:
        logger.debug(f"No ids; substituting {EMPTY_CONDITION} for {token}")
        return EMPTY_CONDITION.join(pieces), 0

    placeholders = _Placeholders(paramstyle)
    if dialect == Dialect.POSTGRES:
        def clause():
            return POSTGRES_CONDITION.format(placeholder=placeholders.next())
    elif dialect == Dialect.ORACLE:
        if not array_type:
            array_type = settings.get('oracle_string_array_type', 'ARRAYOFSTRINGS')

        def clause():
            return ORACLE_CONDITION.format(placeholder=placeholders.next(), array_type=array_type)
    else:
        if width < 1:
            raise DialectSubstitutionFailure(f"Generic dialect needs a width of at least 1, got {width}")

        def clause():
            return ', '.join(placeholders.next() for _ in range(width))

    sql = pieces[0]
    for piece in pieces[1:]:
        sql += clause() + piece
    logger.debug(f"Substituted {occurrences} {dialect} id clause(s) into driving query")
    return sql, occurrences
