# tests/test_statements.py
from decimal import Decimal
from unittest.mock import Mock

import pytest

from dbjson.cursors import PreparedStatement
from dbjson.exceptions import StatementBuildFailure
from dbjson.extract import (
    Dialect, ElementType, GenericStatementProvider, OracleStatementProvider,
    PostgresStatementProvider, provider_for
)


class TestConvertIds:
    """Test id filtering and conversion."""

    def test_drops_null_and_empty(self):
        """Test None, empty and 'null' ids are dropped."""
        provider = PostgresStatementProvider()
        assert provider.convert_ids(['A', None, '', '  ', 'null', 'NULL', 'B']) == ['A', 'B']

    def test_numeric(self):
        """Test numeric element type converts to Decimal."""
        provider = PostgresStatementProvider(ElementType.NUMERIC)
        assert provider.convert_ids(['1', 2, '3.5']) == [Decimal('1'), Decimal('2'), Decimal('3.5')]

    def test_numeric_rejects_text(self):
        """Test non numeric ids fail for numeric element type."""
        provider = PostgresStatementProvider(ElementType.NUMERIC)
        with pytest.raises(StatementBuildFailure):
            provider.convert_ids(['12', 'abc'])

    def test_invalid_element_type(self):
        """Test an unknown element type is rejected."""
        with pytest.raises(ValueError):
            PostgresStatementProvider('date')


class TestProviders:
    """Test parameter binding per dialect."""

    def test_postgres_binds_array(self):
        """Test postgres binds the whole list once per occurrence."""
        cursor = Mock()
        statement = PostgresStatementProvider().prepare(cursor, 'sql', ['A', 'B'], number_of_binds=2)

        assert isinstance(statement, PreparedStatement)
        assert statement.params == [['A', 'B'], ['A', 'B']]

    def test_postgres_array_type(self):
        """Test the postgres array element type name."""
        assert PostgresStatementProvider().array_type == 'text'
        assert PostgresStatementProvider(ElementType.NUMERIC).array_type == 'numeric'

    def test_oracle_builds_collection(self):
        """Test oracle creates a typed collection from the connection."""
        cursor = Mock()
        collection_type = cursor.connection.gettype.return_value
        collection_type.newobject.return_value = 'COLLECTION'

        provider = OracleStatementProvider(schema='APP')
        statement = provider.prepare(cursor, 'sql', ['A', None, 'B'])

        cursor.connection.gettype.assert_called_once_with('APP.ARRAYOFSTRINGS')
        collection_type.newobject.assert_called_once_with(['A', 'B'])
        assert statement.params == ['COLLECTION']

    def test_oracle_numeric_array_type(self):
        """Test numeric ids use the number collection type."""
        assert OracleStatementProvider(ElementType.NUMERIC).array_type == 'ARRAYOFNUMBERS'
        assert OracleStatementProvider(type_name='MY_IDS').array_type == 'MY_IDS'

    def test_oracle_gettype_failure(self):
        """Test a missing collection type surfaces as StatementBuildFailure."""
        cursor = Mock()
        cursor.connection.gettype.side_effect = Exception('ORA-04043: object does not exist')

        with pytest.raises(StatementBuildFailure, match='ORA-04043'):
            OracleStatementProvider().prepare(cursor, 'sql', ['A'])

    def test_generic_pads_to_width(self):
        """Test generic pads the ids with NULLs to the rendered width."""
        statement = GenericStatementProvider().prepare(Mock(), 'sql', ['A', 'B'], number_of_binds=1, width=4)
        assert statement.params == ['A', 'B', None, None]

    def test_generic_too_many_ids(self):
        """Test more ids than placeholders fails."""
        with pytest.raises(StatementBuildFailure):
            GenericStatementProvider().prepare(Mock(), 'sql', ['A', 'B', 'C'], width=2)

    def test_no_ids_no_params(self):
        """Test a statement without ids binds nothing."""
        statement = PostgresStatementProvider().prepare(Mock(), 'select 1')
        assert statement.params is None

    def test_zero_binds(self):
        """Test zero binds (NULL substitution) binds nothing."""
        statement = PostgresStatementProvider().prepare(Mock(), 'sql', [], number_of_binds=0)
        assert statement.params is None


class TestProviderFor:
    """Test provider selection."""

    def test_by_server_type(self):
        """Test the server type selects the provider."""
        assert isinstance(provider_for(Mock(server_type='postgres')), PostgresStatementProvider)
        assert isinstance(provider_for(Mock(server_type='oracle')), OracleStatementProvider)
        assert isinstance(provider_for(Mock(server_type='sqlite')), GenericStatementProvider)

    def test_explicit_dialect(self):
        """Test an explicit dialect overrides the server type."""
        provider = provider_for(Mock(server_type='postgres'), dialect=Dialect.ORACLE, schema='APP')
        assert provider.dialect == Dialect.ORACLE
        assert provider.schema == 'APP'

    def test_oracle_options_ignored_elsewhere(self):
        """Test oracle-only options do not break other providers."""
        provider = provider_for(dialect=Dialect.POSTGRES, schema='APP', element_type=ElementType.NUMERIC)
        assert provider.element_type == ElementType.NUMERIC

    def test_unknown_dialect(self):
        """Test an unknown dialect is rejected."""
        with pytest.raises(ValueError):
            provider_for(dialect='mysql')


class TestPreparedStatement:
    """Test statement execution."""

    def test_execute_with_params(self):
        """Test params are passed to the cursor."""
        cursor = Mock()
        PreparedStatement(cursor, 'sql', ['A']).execute()
        cursor.execute.assert_called_once_with('sql', ['A'])

    def test_execute_without_params(self):
        """Test statements without params call execute with the SQL only."""
        cursor = Mock()
        PreparedStatement(cursor, 'sql').execute()
        cursor.execute.assert_called_once_with('sql')

    def test_driver_rejection(self):
        """Test driver errors become StatementBuildFailure with the cause chained."""
        cursor = Mock()
        cursor.execute.side_effect = RuntimeError('syntax error')

        with pytest.raises(StatementBuildFailure) as exc_info:
            PreparedStatement(cursor, 'selec 1').execute()
        assert isinstance(exc_info.value.__cause__, RuntimeError)
