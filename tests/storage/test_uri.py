"""Tests for DOCSTORE URI parsing."""

import pytest

from storage import LocalDriver, create_storage, parse_storage_uri


class TestStorageUri:

    def test_parse(self):
        assert parse_storage_uri("gdrive:abc123") == ("gdrive", "abc123")
        assert parse_storage_uri("local:/tmp/docs") == ("local", "/tmp/docs")

    @pytest.mark.parametrize("uri", ["dropbox:/x", "abc123", ""])
    def test_invalid(self, uri):
        with pytest.raises(ValueError):
            parse_storage_uri(uri)

    def test_create_local(self, temp_dir):
        driver = create_storage(f"local:{temp_dir}")
        assert isinstance(driver, LocalDriver)
