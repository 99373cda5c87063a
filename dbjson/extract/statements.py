# dbjson/extract/statements.py
"""
Statement providers bind identifier lists to driving queries.

Each provider declares the ``Dialect`` it renders for, so the driver never has
to guess the database vendor. The provider only builds parameters; the SQL text
it receives has already been through ``render_driving_query``.
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, List, Optional

from ..cursors import PreparedStatement
from ..defaults import settings
from ..exceptions import StatementBuildFailure
from .dialects import Dialect

logger = logging.getLogger(__name__)
__all__ = ['ElementType', 'StatementProvider', 'PostgresStatementProvider',
           'OracleStatementProvider', 'GenericStatementProvider', 'provider_for']


class ElementType:
    """Type of the array elements bound for the ids."""
    CHAR = 'char'
    NUMERIC = 'numeric'

    @classmethod
    def values(cls):
        return [getattr(cls, attr) for attr in dir(cls) if not attr.startswith('_')]


class StatementProvider:
    """
    Base statement provider.

    Parameters
    ----------
    element_type : str
        ``'char'`` (default) binds ids as text, ``'numeric'`` as ``Decimal``.
    """

    dialect = Dialect.GENERIC

    def __init__(self, element_type: str = ElementType.CHAR):
        if element_type not in ElementType.values():
            raise ValueError(f"Invalid element type '{element_type}'. Must be one of: {ElementType.values()}")
        self.element_type = element_type

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(element_type={self.element_type!r})"

    @property
    def array_type(self) -> Optional[str]:
        """Collection type name used in the rendered SQL, if the dialect needs one."""
        return None

    def convert_ids(self, ids: Iterable[Any]) -> List[Any]:
        """Drop null and empty ids and convert the rest to the element type."""
        values = []
        for value in ids:
            if value is None:
                continue
            text = str(value).strip()
            if not text or text.lower() == 'null':
                continue
            if self.element_type == ElementType.NUMERIC:
                try:
                    values.append(Decimal(text))
                except InvalidOperation as e:
                    raise StatementBuildFailure(f"Id '{text}' is not numeric") from e
            else:
                values.append(text)
        return values

    def prepare(self, cursor, sql: str, ids: Optional[Iterable[Any]] = None,
                number_of_binds: int = 1, width: Optional[int] = None) -> PreparedStatement:
        """
        Build a ready to execute statement.

        Args:
            cursor: Open cursor that will run the statement
            sql: Rendered SQL
            ids: Identifier chunk, or None to run ``sql`` without parameters
            number_of_binds: How many times the id list appears in ``sql``
            width: Placeholders per bind for the generic dialect

        Raises:
            StatementBuildFailure: If the ids cannot be converted or bound
        """
        if ids is None or number_of_binds == 0:
            return PreparedStatement(cursor, sql)
        values = self.convert_ids(ids)
        try:
            bound = self.bind(cursor, values, width)
        except StatementBuildFailure:
            raise
        except Exception as e:
            raise StatementBuildFailure(f"Could not bind {len(values)} ids: {e}") from e
        return PreparedStatement(cursor, sql, list(bound) * number_of_binds)

    def bind(self, cursor, values: List[Any], width: Optional[int]) -> List[Any]:
        """Parameters for one occurrence of the id list."""
        raise NotImplementedError


class PostgresStatementProvider(StatementProvider):
    """Binds the id list as a single array parameter; the driver adapts lists to arrays."""

    dialect = Dialect.POSTGRES

    @property
    def array_type(self) -> str:
        return 'numeric' if self.element_type == ElementType.NUMERIC else 'text'

    def bind(self, cursor, values, width):
        return [values]


class OracleStatementProvider(StatementProvider):
    """
    Binds the id list as a typed Oracle collection.

    The collection types must exist in the database, e.g.::

        CREATE TYPE ARRAYOFSTRINGS AS TABLE OF VARCHAR2(4000);
        CREATE TYPE ARRAYOFNUMBERS AS TABLE OF NUMBER;

    Parameters
    ----------
    element_type : str
        ``'char'`` or ``'numeric'``
    schema : str, optional
        Owner of the collection types
    type_name : str, optional
        Overrides the configured collection type name
    """

    dialect = Dialect.ORACLE

    def __init__(self, element_type: str = ElementType.CHAR, schema: Optional[str] = None,
                 type_name: Optional[str] = None):
        super().__init__(element_type)
        self.schema = schema
        self.type_name = type_name

    @property
    def array_type(self) -> str:
        name = self.type_name
        if not name:
            if self.element_type == ElementType.NUMERIC:
                name = settings.get('oracle_number_array_type', 'ARRAYOFNUMBERS')
            else:
                name = settings.get('oracle_string_array_type', 'ARRAYOFSTRINGS')
        if self.schema:
            return f'{self.schema}.{name}'
        return name

    def bind(self, cursor, values, width):
        connection = cursor.connection
        collection_type = connection.gettype(self.array_type)
        return [collection_type.newobject(values)]


class GenericStatementProvider(StatementProvider):
    """
    Binds each id as its own parameter for drivers without array support.

    The rendered SQL has ``width`` placeholders per occurrence; shorter chunks
    are padded with ``None`` so ``IN (...)`` simply gains NULL members.
    """

    dialect = Dialect.GENERIC

    def bind(self, cursor, values, width):
        if width is None:
            width = len(values)
        if len(values) > width:
            raise StatementBuildFailure(f"{len(values)} ids do not fit {width} placeholders")
        return values + [None] * (width - len(values))


_PROVIDERS = {
    Dialect.POSTGRES: PostgresStatementProvider,
    Dialect.ORACLE: OracleStatementProvider,
    Dialect.GENERIC: GenericStatementProvider,
}

_SERVER_DIALECTS = {
    'postgres': Dialect.POSTGRES,
    'oracle': Dialect.ORACLE,
}


def provider_for(database=None, dialect: Optional[str] = None, **kwargs) -> StatementProvider:
    """
    Pick a statement provider for a connection.

    Args:
        database: Database whose ``server_type`` selects the dialect
        dialect: Explicit dialect, overrides the server type
        **kwargs: Passed to the provider (element_type, schema, type_name)

    Example:
        provider = provider_for(db)                          # by server type
        provider = provider_for(dialect='oracle', schema='APP')
    """
    if dialect is None:
        server_type = getattr(database, 'server_type', None)
        dialect = _SERVER_DIALECTS.get(server_type, Dialect.GENERIC)
    if dialect not in _PROVIDERS:
        raise ValueError(f"Unknown dialect '{dialect}'. Must be one of: {Dialect.values()}")
    if dialect != Dialect.ORACLE:
        kwargs = {key: val for key, val in kwargs.items() if key == 'element_type'}
    logger.debug(f"Using {dialect} statement provider")
    return _PROVIDERS[dialect](**kwargs)
