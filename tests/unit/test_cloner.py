"""
Unit tests for local staging (datavault/backup/cloner.py).
"""

import os
import stat
from unittest.mock import patch

import pytest

from datavault.backup.cloner import DirectoryCloner, StagingError


def mode_of(path):
    return stat.S_IMODE(os.stat(path).st_mode)


class TestDirectoryCloner:
    """Test tree reproduction."""

    def test_clone_reproduces_tree(self, source_tree, tmp_path, local_tree):
        dst = tmp_path / 'dst'

        stats = DirectoryCloner().clone(str(source_tree), str(dst))

        assert local_tree(str(dst)) == local_tree(str(source_tree))
        assert stats.files == 3
        assert stats.directories == 3
        assert stats.bytes_copied == 3 + 0 + 1024

    def test_empty_directories_are_kept(self, source_tree, tmp_path):
        dst = tmp_path / 'dst'

        DirectoryCloner().clone(str(source_tree), str(dst))

        assert (dst / 'empty').is_dir()
        assert os.listdir(dst / 'empty') == []

    def test_permission_bits_are_preserved(self, source_tree, tmp_path):
        os.chmod(source_tree / 'a.txt', 0o640)
        os.chmod(source_tree / 'sub', 0o750)
        dst = tmp_path / 'dst'

        DirectoryCloner().clone(str(source_tree), str(dst))

        assert mode_of(dst / 'a.txt') == 0o640
        assert mode_of(dst / 'sub') == 0o750

    def test_read_only_directory_is_staged(self, source_tree, tmp_path):
        os.chmod(source_tree / 'sub' / 'deep', 0o555)
        dst = tmp_path / 'dst'

        try:
            DirectoryCloner().clone(str(source_tree), str(dst))

            assert mode_of(dst / 'sub' / 'deep') == 0o555
            assert (dst / 'sub' / 'deep' / 'c.bin').exists()
        finally:
            os.chmod(source_tree / 'sub' / 'deep', 0o755)
            if (dst / 'sub' / 'deep').exists():
                os.chmod(dst / 'sub' / 'deep', 0o755)

    def test_exclude_patterns(self, source_tree, tmp_path):
        (source_tree / '.git').mkdir()
        (source_tree / '.git' / 'HEAD').write_text('ref: refs/heads/main')
        (source_tree / 'scratch.tmp').write_text('temp')
        dst = tmp_path / 'dst'

        stats = DirectoryCloner(['.git', '*.tmp']).clone(str(source_tree), str(dst))

        assert not (dst / '.git').exists()
        assert not (dst / 'scratch.tmp').exists()
        assert (dst / 'a.txt').exists()
        assert stats.excluded == 2

    def test_symlinked_directory_is_skipped(self, source_tree, tmp_path):
        outside = tmp_path / 'outside'
        outside.mkdir()
        (outside / 'secret.txt').write_text('secret')
        os.symlink(outside, source_tree / 'link')
        dst = tmp_path / 'dst'

        stats = DirectoryCloner().clone(str(source_tree), str(dst))

        assert not os.path.lexists(dst / 'link')
        assert stats.skipped == 1

    def test_symlinked_file_is_copied_by_content(self, source_tree, tmp_path):
        os.symlink(source_tree / 'a.txt', source_tree / 'alias.txt')
        dst = tmp_path / 'dst'

        DirectoryCloner().clone(str(source_tree), str(dst))

        assert not os.path.islink(dst / 'alias.txt')
        assert (dst / 'alias.txt').read_bytes() == b'abc'


class TestDirectoryClonerFailures:
    """Test that staging is all-or-nothing."""

    def test_source_must_be_a_directory(self, tmp_path):
        with pytest.raises(StagingError, match='Source is not a directory'):
            DirectoryCloner().clone(str(tmp_path / 'missing'), str(tmp_path / 'dst'))

    def test_broken_symlink_fails_staging(self, source_tree, tmp_path):
        os.symlink(tmp_path / 'nowhere', source_tree / 'dangling')

        with pytest.raises(StagingError):
            DirectoryCloner().clone(str(source_tree), str(tmp_path / 'dst'))

    def test_unreadable_file_fails_staging(self, source_tree, tmp_path):
        with patch.object(DirectoryCloner, '_copy_file', side_effect=PermissionError(13, 'Permission denied')):
            with pytest.raises(StagingError, match='Permission denied'):
                DirectoryCloner().clone(str(source_tree), str(tmp_path / 'dst'))


class TestExcludePatterns:
    """Test exclude pattern matching."""

    def test_should_exclude_by_name_and_glob(self):
        cloner = DirectoryCloner(['.DS_Store', '*.log', '**/node_modules', 'build/*.o'])

        assert cloner._should_exclude('.DS_Store')
        assert cloner._should_exclude('app/debug.log')
        assert cloner._should_exclude('web/node_modules')
        assert cloner._should_exclude('build/main.o')
        assert not cloner._should_exclude('src/build/main.o')
        assert not cloner._should_exclude('notes.txt')

    def test_no_patterns_excludes_nothing(self):
        assert not DirectoryCloner()._should_exclude('anything')

    def test_ancestors_of_source_are_not_matched(self, tmp_path):
        source = tmp_path / 'backups' / 'docs'
        (source / 'reports').mkdir(parents=True)
        (source / 'notes.txt').write_bytes(b'n')
        (source / 'reports' / 'q1.txt').write_bytes(b'q1')
        (source / 'old-backups').mkdir()
        dst = tmp_path / 'out'

        stats = DirectoryCloner(['*backups*']).clone(str(source), str(dst))

        assert (dst / 'notes.txt').read_bytes() == b'n'
        assert (dst / 'reports' / 'q1.txt').read_bytes() == b'q1'
        assert not (dst / 'old-backups').exists()
        assert stats.files == 2
        assert stats.excluded == 1
