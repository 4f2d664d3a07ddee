"""
Unit tests for name resolution, tags and branches.
"""

import pytest

from minigit import base, data


@pytest.fixture
def oid(repo):
    return data.hash_object(repo, b'target')


class TestResolve:
    """Test the lookup order of symbolic names."""

    def test_unknown_name_passes_through(self, repo, oid):
        assert base.resolve(repo, oid) == oid

    def test_tag_named_like_an_id_wins(self, repo, oid):
        """A reference on disk is preferred over treating the name as an id."""
        other = data.hash_object(repo, b'other')
        base.create_tag(repo, oid, other)

        assert base.resolve(repo, oid) == other

    def test_head(self, repo, oid):
        data.update_ref(repo, 'HEAD', oid)

        assert base.resolve(repo, 'HEAD') == oid
        assert base.resolve(repo, '@') == oid

    def test_head_of_empty_repository(self, repo):
        """HEAD exists from bootstrap but holds nothing yet."""
        assert base.resolve(repo, 'HEAD') == ''
        assert base.resolve(repo, '@') == ''

    def test_full_ref_path(self, repo, oid):
        data.update_ref(repo, 'refs/tags/v1', oid)

        assert base.resolve(repo, 'refs/tags/v1') == oid
        assert base.resolve(repo, 'tags/v1') == oid

    def test_tag_before_branch(self, repo, oid):
        other = data.hash_object(repo, b'other')
        base.create_branch(repo, 'dup', other)
        base.create_tag(repo, 'dup', oid)

        assert base.resolve(repo, 'dup') == oid

    def test_branch(self, repo, oid):
        base.create_branch(repo, 'main', oid)

        assert base.resolve(repo, 'main') == oid

    def test_path_escapes_are_not_refs(self, repo, oid):
        assert base.resolve(repo, '../../etc/passwd') == '../../etc/passwd'


class TestTags:
    """Test creating and listing tags."""

    def test_create_tag_writes_ref(self, repo, oid):
        base.create_tag(repo, 'v1.0', oid)

        assert data.get_ref(repo, 'refs/tags/v1.0') == oid

    def test_retag_overwrites(self, repo, oid):
        other = data.hash_object(repo, b'other')
        base.create_tag(repo, 'v1', oid)
        base.create_tag(repo, 'v1', other)

        assert data.get_ref(repo, 'refs/tags/v1') == other

    def test_iter_tag_names(self, repo, oid):
        base.create_tag(repo, 'b', oid)
        base.create_tag(repo, 'a', oid)
        base.create_branch(repo, 'main', oid)

        assert sorted(base.iter_tag_names(repo)) == ['a', 'b']
        assert list(base.iter_branch_names(repo)) == ['main']
