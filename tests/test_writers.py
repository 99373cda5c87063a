# tests/test_writers.py
import json

import pytest

from dbjson.documents import DocumentKind, EXTRACTION_ERROR, FETCH_ID, FETCH_INDEX, OutputDocument
from dbjson.writers import JSONFileWriter, MemoryWriter, NDJSONWriter, writer_for


def batch(payload, index=0, fetch_id='f1'):
    return OutputDocument.build(payload, {FETCH_ID: fetch_id, FETCH_INDEX: index}, rows=len(payload))


def summary(fetch_id='f1'):
    return OutputDocument.build({FETCH_ID: fetch_id}, {FETCH_ID: fetch_id}, kind=DocumentKind.SUMMARY)


def failure(fetch_id='f1', error='Traceback: boom'):
    return OutputDocument.build({}, {FETCH_ID: fetch_id, EXTRACTION_ERROR: error}, kind=DocumentKind.FAILURE)


class TestMemoryWriter:
    """Test the in-process writer."""

    def test_nothing_visible_before_commit(self):
        """Test staged documents appear only on commit."""
        writer = MemoryWriter()
        writer.write(batch([{'id': 1}]))
        assert writer.documents == []

        writer.commit()
        assert len(writer.documents) == 1
        assert writer.documents_written == 1

    def test_rollback(self):
        """Test rollback discards staged documents but keeps committed ones."""
        writer = MemoryWriter()
        writer.write(batch([{'id': 1}]))
        writer.commit()
        writer.write(batch([{'id': 2}], index=1))
        writer.rollback()
        writer.commit()

        assert [doc.payload for doc in writer.documents] == [[{'id': 1}]]

    def test_failures_bypass_staging(self):
        """Test failure documents are kept even when the run rolls back."""
        writer = MemoryWriter()
        writer.write(batch([{'id': 1}]))
        writer.write_failure(failure())
        writer.rollback()

        assert writer.documents == []
        assert len(writer.failures) == 1
        assert writer.failures_written == 1

    def test_batches_and_summaries(self):
        """Test the kind filters."""
        writer = MemoryWriter()
        writer.write(batch([{'id': 1}]))
        writer.write(summary())
        writer.commit()

        assert [doc.kind for doc in writer.batches] == [DocumentKind.BATCH]
        assert [doc.kind for doc in writer.summaries] == [DocumentKind.SUMMARY]

    def test_context_manager(self):
        """Test a clean block commits and a failing one rolls back."""
        with MemoryWriter() as writer:
            writer.write(batch([{'id': 1}]))
        assert len(writer.documents) == 1

        with pytest.raises(RuntimeError):
            with MemoryWriter() as failed:
                failed.write(batch([{'id': 1}]))
                raise RuntimeError('boom')
        assert failed.documents == []


class TestJSONFileWriter:
    """Test one file per document."""

    def test_files_named_by_fetch_id_and_index(self, tmp_path):
        """Test batch, merged and summary file names."""
        writer = JSONFileWriter(tmp_path, prefix='orders')
        writer.write(batch([{'id': 1}], index=0))
        writer.write(batch([{'id': 2}], index=12))
        writer.write(OutputDocument.build({'a': 1}, {FETCH_ID: 'f1'}, kind=DocumentKind.MERGED))
        writer.write(summary())
        writer.commit()

        assert sorted(p.name for p in tmp_path.iterdir()) == [
            'orders_f1_00000.json', 'orders_f1_00012.json', 'orders_f1_merged.json', 'orders_f1_summary.json'
        ]
        assert json.loads((tmp_path / 'orders_f1_00012.json').read_text()) == [{'id': 2}]
        assert len(writer.paths) == 4

    def test_staged_files_hidden(self, tmp_path):
        """Test nothing with the final name exists before commit."""
        writer = JSONFileWriter(tmp_path)
        writer.write(batch([{'id': 1}]))

        assert [p.name for p in tmp_path.iterdir()] == ['.batch_f1_00000.json.tmp']

    def test_rollback_removes_staged(self, tmp_path):
        """Test rollback leaves the directory empty."""
        writer = JSONFileWriter(tmp_path)
        writer.write(batch([{'id': 1}]))
        writer.rollback()

        assert list(tmp_path.iterdir()) == []

    def test_failure_file(self, tmp_path):
        """Test failure documents write the error text."""
        writer = JSONFileWriter(tmp_path)
        writer.write_failure(failure(error='Traceback: chunk failed'))

        assert (tmp_path / 'batch_f1_error.txt').read_text() == 'Traceback: chunk failed'

    def test_directory_created(self, tmp_path):
        """Test a missing output directory is created."""
        JSONFileWriter(tmp_path / 'a' / 'b')
        assert (tmp_path / 'a' / 'b').is_dir()


class TestNDJSONWriter:
    """Test newline-delimited output."""

    def test_rows_as_lines(self, tmp_path):
        """Test array payloads give one line per row and objects one line."""
        path = tmp_path / 'rows.ndjson'
        writer = NDJSONWriter(path)
        writer.write(batch([{'id': 1}, {'id': 2}]))
        writer.write(OutputDocument.build({'id': 3}, {FETCH_ID: 'f1'}))
        writer.write(summary())
        writer.commit()

        lines = path.read_text().splitlines()
        assert [json.loads(line) for line in lines] == [{'id': 1}, {'id': 2}, {'id': 3}]
        assert writer.rows_written == 3

    def test_later_commits_append(self, tmp_path):
        """Test a second commit keeps the rows of the first."""
        path = tmp_path / 'rows.ndjson'
        writer = NDJSONWriter(path)
        writer.write(batch([{'id': 1}]))
        writer.commit()
        writer.write(batch([{'id': 2}]))
        writer.commit()

        assert len(path.read_text().splitlines()) == 2

    def test_rollback_keeps_published(self, tmp_path):
        """Test rollback discards staged rows only."""
        path = tmp_path / 'rows.ndjson'
        path.write_text('{"id": 0}\n')
        writer = NDJSONWriter(path, append=True)
        writer.write(batch([{'id': 1}]))
        writer.rollback()

        assert path.read_text() == '{"id": 0}\n'
        assert not (tmp_path / '.rows.ndjson.tmp').exists()

    def test_failure_file(self, tmp_path):
        """Test the failure text goes next to the output file."""
        writer = NDJSONWriter(tmp_path / 'rows.ndjson')
        writer.write_failure(failure(error='boom'))

        assert (tmp_path / 'rows.ndjson.error.txt').read_text() == 'boom'


class TestWriterFor:
    """Test writer selection."""

    def test_formats(self, tmp_path):
        """Test json and ndjson formats."""
        assert isinstance(writer_for(tmp_path / 'out', 'json', prefix='job'), JSONFileWriter)
        assert isinstance(writer_for(tmp_path / 'out.ndjson', 'ndjson'), NDJSONWriter)

    def test_prefix(self, tmp_path):
        """Test the prefix reaches the JSON writer."""
        assert writer_for(tmp_path, prefix='orders').prefix == 'orders'

    def test_invalid(self, tmp_path):
        """Test unknown formats and missing output are rejected."""
        with pytest.raises(ValueError, match='Unknown output format'):
            writer_for(tmp_path, 'csv')
        with pytest.raises(ValueError):
            writer_for(None)
