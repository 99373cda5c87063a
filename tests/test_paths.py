# tests/test_paths.py
import pytest

from dbjson import paths


@pytest.fixture
def doc():
    return {
        'nation': 'Fire',
        'members': [
            {'id': 1, 'name': 'Zuko', 'tags': ['prince']},
            {'id': 2, 'name': 'Iroh', 'tags': ['general', 'tea']},
        ],
        'odd key': {'value': 42},
    }


class TestParse:
    """Test path parsing."""

    def test_dot_notation(self):
        """Test dotted member names."""
        assert paths.parse('$.a.b') == ['a', 'b']

    def test_relative_path(self):
        """Test a path without $ is relative to the root."""
        assert paths.parse('a.b') == paths.parse('$.a.b')

    def test_brackets(self):
        """Test quoted members, indexes and wildcards."""
        assert paths.parse("$['odd key'][0][*]") == ['odd key', 0, paths.WILDCARD]

    def test_dot_star(self):
        """Test .* is a wildcard."""
        assert paths.parse('$.members.*') == ['members', paths.WILDCARD]

    def test_stray_dot_before_bracket(self):
        """Test $.[*] means the same as $[*]."""
        assert paths.parse('$.[*].id') == [paths.WILDCARD, 'id']

    def test_root_only(self):
        """Test $ alone has no steps."""
        assert paths.parse('$') == []

    @pytest.mark.parametrize('bad', ['', '   ', '$.a[', '$.a]b', "$['unterminated]"])
    def test_invalid(self, bad):
        """Test malformed paths are rejected."""
        with pytest.raises(ValueError):
            paths.parse(bad)


class TestFind:
    """Test value lookup."""

    def test_member(self, doc):
        """Test a simple member lookup."""
        assert paths.find(doc, '$.nation') == ['Fire']

    def test_wildcard_field(self, doc):
        """Test a wildcard over an array."""
        assert paths.find(doc, '$.members[*].name') == ['Zuko', 'Iroh']

    def test_index(self, doc):
        """Test positive and negative indexes."""
        assert paths.find(doc, '$.members[0].id') == [1]
        assert paths.find(doc, '$.members[-1].id') == [2]

    def test_nested_arrays(self, doc):
        """Test wildcards nest."""
        assert paths.find(doc, '$.members[*].tags[*]') == ['prince', 'general', 'tea']

    def test_quoted_member(self, doc):
        """Test members with spaces."""
        assert paths.find(doc, "$['odd key'].value") == [42]

    def test_missing(self, doc):
        """Test a missing member matches nothing."""
        assert paths.find(doc, '$.members[*].email') == []
        assert paths.find(doc, '$.members[5].id') == []

    def test_root(self, doc):
        """Test $ matches the whole document."""
        assert paths.find(doc, '$') == [doc]

    def test_root_array(self):
        """Test wildcards over a root array."""
        assert paths.find([{'id': 'a'}, {'id': 'b'}], '$[*].id') == ['a', 'b']


class TestLocate:
    """Test container lookup."""

    def test_containers(self, doc):
        """Test locate returns the holding objects and keys."""
        located = paths.locate(doc, '$.members[*].id')

        assert [key for _, key in located] == ['id', 'id']
        assert located[0][0] is doc['members'][0]

    def test_mutation_through_locate(self, doc):
        """Test located pairs can be used to change the document."""
        for container, key in paths.locate(doc, '$.members[*].name'):
            container[key] = container[key].upper()
        assert paths.find(doc, '$.members[*].name') == ['ZUKO', 'IROH']

    def test_root_has_no_container(self, doc):
        """Test the root path locates nothing."""
        assert paths.locate(doc, '$') == []
