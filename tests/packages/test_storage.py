"""Tests for local artifact storage."""

import hashlib

import pytest

from wprecords.packages.storage import LocalStorage


@pytest.fixture
def local_storage(tmp_path):
    return LocalStorage(tmp_path / "storage")


class TestLocalStorage:
    """Test LocalStorage operations."""

    def test_write_read_exists(self, local_storage):
        """Test written files can be read back and are reported as existing."""
        assert local_storage.exists("plugin/akismet/akismet-1.0.json") is False
        local_storage.write("plugin/akismet/akismet-1.0.json", '{"a": 1}')
        assert local_storage.exists("plugin/akismet/akismet-1.0.json") is True
        assert local_storage.read("plugin/akismet/akismet-1.0.json") == '{"a": 1}'

    def test_exists_is_false_for_directories(self, local_storage):
        """Test a directory is not a stored file."""
        local_storage.write("plugin/akismet/file.txt", "x")
        assert local_storage.exists("plugin/akismet") is False

    def test_move_into_storage(self, local_storage, tmp_path):
        """Test moving an external file creates parent directories and removes the source."""
        source = tmp_path / "artifact.zip"
        source.write_bytes(b"zip bytes")

        local_storage.move(source, "plugin/akismet/akismet-1.0.zip")

        assert not source.exists()
        assert local_storage.get_absolute_path("plugin/akismet/akismet-1.0.zip").read_bytes() == b"zip bytes"

    def test_list_files(self, local_storage):
        """Test listing returns sorted relative paths of files only."""
        local_storage.write("theme/twenty/twenty-2.0.zip", "b")
        local_storage.write("theme/twenty/twenty-1.0.zip", "a")
        local_storage.write("theme/twenty/nested/ignored.txt", "c")

        assert local_storage.list_files("theme/twenty") == [
            "theme/twenty/twenty-1.0.zip",
            "theme/twenty/twenty-2.0.zip",
        ]
        assert local_storage.list_files("theme/missing") == []

    def test_checksum(self, local_storage):
        """Test checksums match hashlib digests."""
        local_storage.write("plugin/a/a-1.0.zip", "content")
        expected = hashlib.sha1(b"content").hexdigest()
        assert local_storage.checksum("sha1", "plugin/a/a-1.0.zip") == expected

    def test_checksum_of_missing_file(self, local_storage):
        """Test checksum of a missing file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            local_storage.checksum("sha1", "plugin/a/missing.zip")

    def test_delete_and_delete_directory(self, local_storage):
        """Test deleting files and whole directories; missing targets are ignored."""
        local_storage.write("plugin/a/a-1.0.zip", "x")
        local_storage.write("plugin/a/a-1.0.json", "{}")

        local_storage.delete("plugin/a/a-1.0.zip")
        local_storage.delete("plugin/a/never-existed.zip")
        assert local_storage.exists("plugin/a/a-1.0.zip") is False

        local_storage.delete_directory("plugin/a")
        local_storage.delete_directory("plugin/a")
        assert not local_storage.get_absolute_path("plugin/a").exists()

    def test_mtime(self, local_storage):
        """Test mtime is an integer timestamp."""
        local_storage.write("plugin/a/a-1.0.zip", "x")
        assert isinstance(local_storage.mtime("plugin/a/a-1.0.zip"), int)

    def test_paths_outside_root_are_rejected(self, local_storage):
        """Test storage paths cannot escape the root."""
        with pytest.raises(ValueError):
            local_storage.get_absolute_path("../outside.zip")
        with pytest.raises(ValueError):
            local_storage.write("plugin/../../outside.json", "{}")
