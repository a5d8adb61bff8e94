"""
Unit tests for the signed HTTP connection.

Requests go to the in-memory cloud through httpx.MockTransport; a few
tests use a bare handler to simulate broken hosts.
"""

import hashlib
import logging
import time
from urllib.parse import unquote

import httpx
import pytest

from cloudfiles.core.storage.errors import (
    KeyVerificationFailed,
    MasterConnectionFailed,
    MissingSignature,
    NodeConnectionFailed,
)
from cloudfiles.infrastructure.cloud import Connection, StorageConfig, create_connection
from cloudfiles.infrastructure.cloud.mock import InMemoryCloud


def _token(url: str) -> str:
    return unquote(url.rsplit("/", 1)[1])


def _connection_with_handler(config, cipher, handler) -> Connection:
    return Connection(config, client=httpx.Client(transport=httpx.MockTransport(handler)), cipher=cipher)


# ---------------------------------------------------------------------------
# Configuration and URLs
# ---------------------------------------------------------------------------

class TestStorageConfig:

    def test_keys_are_required(self):
        with pytest.raises(ValueError):
            StorageConfig(access_key="", secret_key="secret")

    def test_scheme_follows_ssl_flag(self):
        assert StorageConfig("a", "b").scheme == "http"
        assert StorageConfig("a", "b", use_ssl=True).scheme == "https"

    def test_config_is_immutable(self):
        config = StorageConfig("a", "b")
        with pytest.raises(AttributeError):
            config.asset_domain = "example.com"


class TestUrls:
    """URL rules per access level."""

    def test_public_url_addresses_the_path_directly(self, connection):
        url = connection.url("a0", "public", "files/1/cat.png")
        assert url == "http://a0.urbanclouds.com/files/1/cat.png"

    def test_ssl_switches_scheme(self, cipher):
        conn = Connection(StorageConfig("test-access-key", "test-secret-key", use_ssl=True), cipher=cipher)
        assert conn.url("a1", "public", "x.png") == "https://a1.urbanclouds.com/x.png"
        conn.close()

    def test_protected_url_is_signed(self, connection):
        url = connection.url("a0", "protected", "files/1/cat.png")

        assert url.startswith("http://a0.urbanclouds.com/get/")
        params = connection.decrypt(_token(url))
        assert params["action"] == "get"
        assert params["path"] == "files/1/cat.png"

    def test_expiring_url_is_signed_even_for_public_files(self, connection):
        url = connection.url("a0", "public", "files/1/cat.png", expires=60)

        assert "/get/" in url
        params = connection.decrypt(_token(url))
        assert abs(params["expires_at"] - (time.time() + 60)) < 5

    def test_non_public_file_url_needs_a_signature(self, connection):
        with pytest.raises(MissingSignature):
            connection.file_url("a0", "private", "files/1/cat.png")

    def test_file_url_with_signature(self, connection):
        assert connection.file_url("a0", "private", "p", "abc") == "http://a0.urbanclouds.com/get/abc"

    @pytest.mark.parametrize("expires", [0, -30])
    def test_expires_must_be_positive(self, connection, expires):
        with pytest.raises(ValueError, match="positive"):
            connection.url("a0", "public", "files/1/cat.png", expires=expires)


# ---------------------------------------------------------------------------
# Master requests
# ---------------------------------------------------------------------------

class TestCreate:

    def test_create_uploads_file_with_checksum(self, connection, cloud, tmp_path):
        source = tmp_path / "cat.png"
        content = b"\x89PNG" + b"\x01" * 1020
        source.write_bytes(content)

        result = connection.create(str(source), "public")

        assert result["node_domains"] == ["a0", "a1"]
        assert result["path"].endswith("cat.png")
        stored = cloud.files[result["path"]]
        assert stored["content"] == content
        assert stored["md5_checksum"] == hashlib.md5(content).hexdigest()
        assert stored["original_filename"] == "cat.png"

    def test_create_accepts_file_objects(self, connection, cloud, tmp_path):
        source = tmp_path / "doc.pdf"
        source.write_bytes(b"%PDF")

        with open(source, "rb") as f:
            result = connection.create(f, "private")
            assert not f.closed

        assert result["access_level"] == "private"
        assert cloud.files[result["path"]]["content"] == b"%PDF"

    def test_create_transport_failure(self, connection, cloud):
        cloud.master_available = False

        with pytest.raises(NodeConnectionFailed):
            connection.create(b"data", "public")

    def test_create_transport_failure_with_debug_logging(self, connection, cloud, caplog):
        caplog.set_level(logging.DEBUG)
        cloud.master_available = False

        with pytest.raises(NodeConnectionFailed):
            connection.create(b"data", "public")

    def test_create_logs_original_filename(self, connection, caplog):
        caplog.set_level(logging.DEBUG, logger="cloudfiles.infrastructure.cloud.connection")

        connection.create(b"data", "public")

        assert any(getattr(r, "original_filename", None) == "upload.bin" for r in caplog.records)

    def test_create_keeps_binary_content_intact(self, connection, cloud):
        content = b"\r\n--boundary\r\n\x00\xff" * 64 + b"\r\n"

        result = connection.create(content, "public")

        assert cloud.files[result["path"]]["content"] == content

    def test_create_with_undecryptable_answer(self, config, cipher):
        conn = _connection_with_handler(config, cipher, lambda request: httpx.Response(200, text="garbage"))

        with pytest.raises(KeyVerificationFailed):
            conn.create(b"data", "public")


class TestRequest:
    """Signed calls to master sub-APIs."""

    def test_post_request_is_signed_with_access_key(self, connection, cloud):
        result = connection.request("/apis/encoding-com/jobs/create", "post", {"url": "http://x"})

        assert result["job_id"] == 1
        job = cloud.encoding_jobs[0]
        assert job["url"] == "http://x"
        assert job["access_key"] == "test-access-key"
        assert job["action"] == "apis/encoding-com/jobs/create"

    def test_get_request_carries_signature_in_url(self, connection, cloud):
        connection.request("apis/encoding-com/jobs/create", "GET", {"url": "http://y"})

        assert cloud.requests[-1].method == "GET"
        assert cloud.encoding_jobs[0]["url"] == "http://y"

    def test_master_failure(self, connection, cloud):
        cloud.master_available = False

        with pytest.raises(MasterConnectionFailed):
            connection.request("/apis/pdf/create", "post", {})

    def test_unsupported_method(self, connection):
        with pytest.raises(ValueError):
            connection.request("/apis/pdf/create", "put", {})


# ---------------------------------------------------------------------------
# Node requests
# ---------------------------------------------------------------------------

class TestNodeRequests:

    def test_get_public_file(self, connection, cloud):
        stored = cloud.add_file(b"hello", "hello.txt")

        assert connection.get("a1", "public", stored["path"]) == b"hello"

    def test_get_private_file_uses_signed_url(self, connection, cloud):
        stored = cloud.add_file(b"secret", "s.txt", access_level="private")

        assert connection.get("a0", "private", stored["path"]) == b"secret"
        assert "/get/" in str(cloud.requests[-1].url)

    def test_get_from_failing_node(self, connection, cloud):
        stored = cloud.add_file(b"hello")
        cloud.failing_nodes.add("a0")

        with pytest.raises(NodeConnectionFailed) as exc_info:
            connection.get("a0", "public", stored["path"])

        assert exc_info.value.failed_node == "a0"

    def test_transport_error_is_wrapped(self, config, cipher):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        conn = _connection_with_handler(config, cipher, refuse)

        with pytest.raises(NodeConnectionFailed):
            conn.get("a0", "public", "x")

    def test_status(self, connection):
        status = connection.status("a0")

        assert set(status) >= {"space_overall", "space_free", "load_avg"}

    def test_meta(self, connection, cloud):
        stored = cloud.add_file(b"x" * 10, "cat.png", access_level="protected")

        meta = connection.meta("a0", stored["path"])

        assert meta["access_level"] == "protected"
        assert meta["content_type"] == "image/png"
        assert meta["file_size"] == 10


class TestFanOut:
    """update and delete are sent to every replica in turn."""

    def test_update_changes_every_replica(self, connection, cloud):
        stored = cloud.add_file(b"x")

        new_path = connection.update(["a0", "a1"], stored["path"], {"access_level": "private"})

        assert new_path == stored["path"]
        assert cloud.files[stored["path"]]["access_level"] == "private"
        posts = [r for r in cloud.requests if r.method == "POST"]
        assert [r.url.host for r in posts] == ["a0.urbanclouds.com", "a1.urbanclouds.com"]

    def test_update_reports_partial_failure(self, connection, cloud):
        stored = cloud.add_file(b"x")
        cloud.failing_nodes.add("a1")

        with pytest.raises(NodeConnectionFailed) as exc_info:
            connection.update(["a0", "a1"], stored["path"], {"access_level": "private"})

        assert exc_info.value.failed_node == "a1"
        assert list(exc_info.value.succeeded_nodes) == ["a0"]

    def test_update_uses_path_from_nodes(self, config, cipher):
        def moved(request):
            return httpx.Response(200, text=cipher.encrypt({"path": "moved/cat.png"}))

        conn = _connection_with_handler(config, cipher, moved)

        assert conn.update(["a0"], "files/1/cat.png", {"access_level": "private"}) == "moved/cat.png"

    def test_delete_removes_all_replicas(self, connection, cloud):
        stored = cloud.add_file(b"x")

        assert connection.delete(["a0", "a1"], stored["path"]) is True
        assert stored["path"] not in cloud.files

    def test_delete_stops_at_first_failure(self, connection, cloud):
        stored = cloud.add_file(b"x")
        cloud.failing_nodes.add("a0")

        with pytest.raises(NodeConnectionFailed) as exc_info:
            connection.delete(["a0", "a1"], stored["path"])

        assert list(exc_info.value.succeeded_nodes) == []
        assert cloud.files[stored["path"]]["nodes"] == {"a0", "a1"}


class TestCreateConnection:

    def test_mock_mode_uses_in_memory_cloud(self, config):
        with create_connection(config, mock_mode=True) as conn:
            assert isinstance(conn.cloud, InMemoryCloud)
            result = conn.create(b"data", "public")
            assert conn.get(result["node_domains"][0], "public", result["path"]) == b"data"

