# tests/test_utils.py
import datetime as dt
import json
from decimal import Decimal

import pytest

from dbjson.documents import BYTES_COUNT, MIME_TYPE_ATTR, ROWS_COUNT, LineageRecorder, OutputDocument, SourceDocument
from dbjson.exceptions import StatementBuildFailure, format_failure
from dbjson.utils import ParamStyle, dumps, json_default, to_text, validate_identifier


class TestToText:
    """Test join key text conversion."""

    @pytest.mark.parametrize('value, expected', [
        (1, '1'),
        ('1', '1'),
        (Decimal('1.00'), '1'),
        (Decimal('2.50'), '2.5'),
        (3.0, '3'),
        (True, 'true'),
        (dt.date(2024, 5, 1), '2024-05-01'),
        (b'\x01\x02', 'AQI='),
        (None, None),
    ])
    def test_values(self, value, expected):
        """Test numbers, dates and bytes are rendered consistently."""
        assert to_text(value) == expected


class TestJsonDefault:
    """Test serialization of driver types."""

    def test_decimal(self):
        """Test integral decimals become ints and others floats."""
        assert json_default(Decimal('7')) == 7
        assert json_default(Decimal('7.25')) == 7.25

    def test_datetime(self):
        """Test datetimes use the configured formats."""
        assert json_default(dt.datetime(2024, 5, 1, 13, 30)) == '2024-05-01 13:30:00'

    def test_lob(self):
        """Test objects with read() are read."""
        class Lob:
            def read(self):
                return 'long text'
        assert json_default(Lob()) == 'long text'

    def test_unsupported(self):
        """Test unknown types raise TypeError."""
        with pytest.raises(TypeError):
            json_default(object())

    def test_dumps_keeps_unicode(self):
        """Test non ascii text is written as is."""
        assert dumps({'name': 'Tëa'}) == '{"name": "Tëa"}'


class TestValidateIdentifier:
    """Test identifier validation."""

    def test_valid(self):
        """Test plain and schema qualified names."""
        assert validate_identifier('app.orders') == 'app.orders'
        assert validate_identifier('_tmp$1') == '_tmp$1'

    @pytest.mark.parametrize('bad', ['', '1abc', 'a;b', 'a--b', "a'b", 'a b'])
    def test_invalid(self, bad):
        """Test unsafe names are rejected."""
        with pytest.raises(ValueError):
            validate_identifier(bad)


class TestParamStyle:
    """Test positional placeholders."""

    def test_placeholders(self):
        """Test each style maps to its positional placeholder."""
        assert ParamStyle.get_placeholder('qmark') == '?'
        assert ParamStyle.get_placeholder('pyformat') == '%s'
        assert ParamStyle.get_placeholder('named') == ':1'
        assert ParamStyle.numbered('numeric')
        assert not ParamStyle.numbered('format')


class TestDocuments:
    """Test document helpers."""

    def test_output_document_attributes(self):
        """Test build fills in counts and the mime type."""
        doc = OutputDocument.build([{'id': 'é'}], {'fetch.id': 'f1'}, rows=1)

        assert doc.attributes[ROWS_COUNT] == 1
        assert doc.attributes[BYTES_COUNT] == len(doc.content.encode('utf-8'))
        assert doc.attributes[MIME_TYPE_ATTR] == 'application/json'
        assert doc.payload == [{'id': 'é'}]

    def test_source_from_file(self, tmp_path):
        """Test loading a source document records the file name."""
        path = tmp_path / 'customers.json'
        path.write_text(json.dumps({'customers': []}))

        doc = SourceDocument.from_file(path, attributes={'fetch.id': 'f1'})
        assert doc.content == {'customers': []}
        assert doc.attributes == {'fetch.id': 'f1', 'filename': 'customers.json'}


class TestLineageRecorder:
    """Test lineage event retention."""

    def test_keeps_latest_events(self):
        """Test only the most recent max_events events are kept across runs."""
        lineage = LineageRecorder(max_events=3)
        docs = [OutputDocument.build([], {'fetch.id': 'f1'}) for _ in range(5)]
        for doc in docs:
            lineage.fetch(doc, 'sqlite://sales.db')

        assert len(lineage.events) == 3
        assert [e['document'] for e in lineage.events] == [doc.id for doc in docs[2:]]

    def test_subclass_forwards_without_keeping(self):
        """Test a subclass can forward events and keep nothing in memory."""
        forwarded = []

        class ForwardingRecorder(LineageRecorder):
            def record(self, event):
                forwarded.append(event['type'])

        lineage = ForwardingRecorder()
        source = SourceDocument({'ids': [1]})
        lineage.fork(source, [OutputDocument.build([], {'fetch.id': 'f1'})])

        assert forwarded == ['fork']
        assert len(lineage.events) == 0


class TestFormatFailure:
    """Test failure text."""

    def test_cause_chain(self):
        """Test the chained cause appears in the failure text."""
        try:
            try:
                raise RuntimeError('ORA-00942: table or view does not exist')
            except RuntimeError as e:
                raise StatementBuildFailure('statement rejected') from e
        except StatementBuildFailure as e:
            text = format_failure(e)

        assert 'ORA-00942' in text
        assert 'StatementBuildFailure: statement rejected' in text
