"""
Unit tests for object storage and signed download URLs.
"""
from urllib.parse import parse_qs, urlparse

import pytest

from dealforge.exceptions import StorageError


class TestObjectStorage:
    """Tests for put/get/delete."""

    def test_put_and_get(self, storage):
        """Test stored bytes are returned unchanged."""
        storage.put("org/deal/source/a.txt", b"hello")

        assert storage.get("org/deal/source/a.txt") == b"hello"
        assert storage.exists("org/deal/source/a.txt") is True

    def test_missing_object(self, storage):
        """Test reading a missing key raises StorageError."""
        with pytest.raises(StorageError):
            storage.get("org/missing.docx")

    def test_delete(self, storage):
        """Test deleted objects no longer exist."""
        storage.put("k.bin", b"x")

        storage.delete("k.bin")

        assert storage.exists("k.bin") is False

    def test_key_cannot_escape_root(self, storage):
        """Test path traversal is rejected."""
        with pytest.raises(StorageError):
            storage.put("../outside.txt", b"x")


class TestSignedUrls:
    """Tests for presigned download URLs."""

    def _parts(self, url):
        parsed = urlparse(url)
        query = parse_qs(parsed.query)
        return parsed.path, int(query["expires"][0]), query["signature"][0]

    def test_url_shape(self, storage):
        """Test URLs point at the storage route with expiry and signature."""
        url = storage.presigned_url("org/deal/loan agreement.docx", ttl=60, now=1000)

        path, expires, signature = self._parts(url)
        assert path == "/api/v1/storage/org/deal/loan%20agreement.docx"
        assert expires == 1060
        assert len(signature) == 64

    def test_valid_signature(self, storage):
        """Test a fresh URL verifies."""
        _, expires, signature = self._parts(storage.presigned_url("a/b.docx", ttl=60, now=1000))

        assert storage.verify_signature("a/b.docx", expires, signature, now=1030) is True

    def test_expired_signature(self, storage):
        """Test URLs stop working after their expiry."""
        _, expires, signature = self._parts(storage.presigned_url("a/b.docx", ttl=60, now=1000))

        assert storage.verify_signature("a/b.docx", expires, signature, now=1061) is False

    def test_signature_bound_to_key(self, storage):
        """Test a signature cannot be replayed for another key."""
        _, expires, signature = self._parts(storage.presigned_url("a/b.docx", ttl=60, now=1000))

        assert storage.verify_signature("a/c.docx", expires, signature, now=1000) is False

    def test_tampered_expiry(self, storage):
        """Test extending the expiry invalidates the signature."""
        _, expires, signature = self._parts(storage.presigned_url("a/b.docx", ttl=60, now=1000))

        assert storage.verify_signature("a/b.docx", expires + 3600, signature, now=1000) is False

    def test_default_ttl(self, storage):
        """Test the storage default TTL applies."""
        _, expires, _ = self._parts(storage.presigned_url("a/b.docx", now=0))

        assert expires == 300
