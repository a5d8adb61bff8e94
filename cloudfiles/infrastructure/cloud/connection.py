"""
Signed HTTP connection to the storage cloud.

Two kinds of hosts are involved:
- the master (``master_domain``) accepts new files, replicates them and
  exposes the processing APIs
- the nodes (``<node>.<asset_domain>``) serve and manage the replicas

Each request carries a parameter set with at least an ``action``,
encrypted into a signature with the Cipher. GET requests put the escaped
signature into the URL, POST requests send it in the form body next to
the access key. Responses are signatures as well and get decrypted.

Status codes from the hosts:
- 200 OK: request was successful
- 500 FAILED: request was unsuccessful
"""

import hashlib
import io
import logging
import os
import time
from dataclasses import dataclass
from typing import Any, BinaryIO, Optional
from urllib.parse import quote

import httpx

from ...core.storage.errors import (
    MasterConnectionFailed,
    MissingSignature,
    NodeConnectionFailed,
)
from ...core.storage.models import AccessLevel
from .cipher import Cipher

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024  # 1MB


@dataclass(frozen=True)
class StorageConfig:
    """
    Configuration for the storage cloud.

    Frozen: one instance is built at startup and shared by every
    connection in the process.
    """
    access_key: str
    secret_key: str
    asset_domain: str = "urbanclouds.com"
    master_domain: str = "master.urbanclouds.com"
    use_ssl: bool = False
    timeout_seconds: float = 30.0
    tmp_dir: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.access_key or not self.secret_key:
            raise ValueError("access_key and secret_key are required")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")

    @property
    def scheme(self) -> str:
        return "https" if self.use_ssl else "http"

    @classmethod
    def from_settings(cls, settings: Any) -> "StorageConfig":
        return cls(
            access_key=settings.storage_access_key,
            secret_key=settings.storage_secret_key,
            asset_domain=settings.storage_asset_domain,
            master_domain=settings.storage_master_domain,
            use_ssl=settings.storage_use_ssl,
            timeout_seconds=settings.storage_timeout_seconds,
            tmp_dir=settings.storage_tmp_dir or None,
        )


class Connection:
    """
    Client for the master and the storage nodes.

    All calls are blocking. Fan-out to several nodes (update, delete) is
    sequential and stops at the first failing node; nodes handled before
    that are not rolled back.
    """

    def __init__(
        self,
        config: StorageConfig,
        client: Optional[httpx.Client] = None,
        cipher: Optional[Cipher] = None,
    ) -> None:
        self._config = config
        self._cipher = cipher or Cipher(config.access_key, config.secret_key)
        self._client = client or httpx.Client(timeout=config.timeout_seconds)
        self.cloud: Optional[Any] = None

    @property
    def config(self) -> StorageConfig:
        return self._config

    @property
    def cipher(self) -> Cipher:
        return self._cipher

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "Connection":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # -----------------------------------------------------------------------
    # Signing and URLs
    # -----------------------------------------------------------------------

    def sign(self, params: dict[str, Any]) -> str:
        """Encrypt a parameter set into a raw signature (for POST bodies)."""
        return self._cipher.encrypt(params)

    def signed_token(self, params: dict[str, Any]) -> str:
        """Signature escaped for use inside a URL (for GET requests)."""
        return quote(self.sign(params), safe="")

    def decrypt(self, signature: str) -> dict[str, Any]:
        return self._cipher.decrypt(signature)

    def base_url(self, node: str) -> str:
        return f"{self._config.scheme}://{node}.{self._config.asset_domain}"

    def master_url(self) -> str:
        return f"{self._config.scheme}://{self._config.master_domain}"

    def file_url(
        self,
        node: str,
        access_level: str,
        path: str,
        signature: Optional[str] = None,
    ) -> str:
        """
        URL of a file on a node.

        Public files without a signature are addressed directly by path;
        everything else goes through ``/get/<signature>``.
        """
        if access_level == AccessLevel.PUBLIC.value and signature is None:
            return f"{self.base_url(node)}/{path.lstrip('/')}"

        if not signature:
            raise MissingSignature(f"A signature is required for {access_level} files")

        return f"{self.base_url(node)}/get/{signature}"

    def url(
        self,
        node: str,
        access_level: str,
        path: str,
        expires: Optional[int] = None,
    ) -> str:
        """
        URL of a file on a node, signed when the access level needs it.

        With ``expires`` (seconds from now) the URL is always signed and the
        node refuses it after the deadline.
        """
        if expires is not None and int(expires) <= 0:
            raise ValueError("expires must be a positive number of seconds")

        if access_level == AccessLevel.PUBLIC.value and expires is None:
            return self.file_url(node, access_level, path)

        params: dict[str, Any] = {
            "action": "get",
            "path": path,
            "access_level": access_level,
        }
        if expires is not None:
            params["expires_at"] = int(time.time()) + int(expires)

        return self.file_url(node, access_level, path, self.signed_token(params))

    # -----------------------------------------------------------------------
    # Node requests
    # -----------------------------------------------------------------------

    def get(self, node: str, access_level: str, path: str) -> bytes:
        """Download a file from one node."""
        response = self._send_to_node(node, "GET", self.url(node, access_level, path))
        return response.content

    def status(self, node: str) -> dict[str, Any]:
        """
        Current status of a node.

        Returns ``space_overall`` and ``space_free`` (GB) and ``load_avg``.
        """
        url = f"{self.base_url(node)}/status/{self.signed_token({'action': 'status'})}"
        return self.decrypt(self._send_to_node(node, "GET", url).text)

    def meta(self, node: str, path: str) -> dict[str, Any]:
        """Meta information: ``access_level``, ``content_type``, ``file_size``."""
        token = self.signed_token({"action": "meta", "path": path})
        url = f"{self.base_url(node)}/meta/{token}"
        return self.decrypt(self._send_to_node(node, "GET", url).text)

    def update(self, nodes: list[str], path: str, options: dict[str, Any]) -> str:
        """
        Update file settings (e.g. ``access_level``) on every replica.

        Returns the path reported by the nodes, which may have changed.
        """
        params = {"action": "update", "path": path}
        params.update(options)
        data = self._post_body(params)

        new_path = path
        done: list[str] = []
        for node in nodes:
            response = self._send_to_node(node, "POST", f"{self.base_url(node)}/update", data, done)
            result = self.decrypt(response.text)
            new_path = result.get("path") or new_path
            done.append(node)

        logger.info("Updated file on nodes", extra={"path": path, "new_path": new_path, "nodes": done})
        return new_path

    def delete(self, nodes: list[str], path: str) -> bool:
        """Delete the file from every replica."""
        data = self._post_body({"action": "delete", "path": path})

        done: list[str] = []
        for node in nodes:
            self._send_to_node(node, "POST", f"{self.base_url(node)}/delete", data, done)
            done.append(node)

        logger.info("Deleted file from nodes", extra={"path": path, "nodes": done})
        return True

    # -----------------------------------------------------------------------
    # Master requests
    # -----------------------------------------------------------------------

    def create(self, raw_file: Any, access_level: str) -> dict[str, Any]:
        """
        Send a new file to the master, which replicates it to the nodes.

        ``raw_file`` is a path, bytes, or a binary file object. Returns the
        decrypted answer with ``status``, ``errors``, ``path``,
        ``node_domains`` and ``access_level``.
        """
        handle, filename, owned = _open_raw_file(raw_file)

        try:
            checksum = _md5_checksum(handle)

            params = {
                "action": "create",
                "access_level": access_level,
                "md5_checksum": checksum,
                "original_filename": filename,
            }
            data = self._post_body(params)
            data.update({key: value for key, value in params.items() if key != "action"})

            url = f"{self.master_url()}/create"
            logger.debug("Sending file to master", extra={"url": url, "original_filename": filename})

            try:
                response = self._client.post(
                    url,
                    data=data,
                    files={"file": (filename, handle, "application/octet-stream")},
                )
                response.raise_for_status()
            except httpx.HTTPError as e:
                logger.error(
                    "Failed to send file to master",
                    extra={"url": url, "original_filename": filename, "error": str(e)}
                )
                raise NodeConnectionFailed(f"Create failed: {e}") from e

        finally:
            if owned:
                try:
                    handle.close()
                except OSError as e:
                    logger.warning("Could not close file", extra={"original_filename": filename, "error": str(e)})

        return self.decrypt(response.text)

    def request(self, api_path: str, method: str, params: dict[str, Any]) -> dict[str, Any]:
        """
        Signed call to a sub-API of the master (encoding jobs, PDFs...).

        The caller interprets ``status``/``errors`` of the decrypted answer.
        """
        api_path = "/" + api_path.strip("/")
        payload = dict(params)
        payload.setdefault("action", api_path.strip("/"))
        payload["access_key"] = self._config.access_key

        url = f"{self.master_url()}{api_path}"
        method = method.lower()

        try:
            if method == "get":
                response = self._client.get(f"{url}/{self.signed_token(payload)}")
            elif method == "post":
                response = self._client.post(url, data=self._post_body(payload))
            else:
                raise ValueError(f"Unsupported method: {method}")
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("Master request failed", extra={"url": url, "error": str(e)})
            raise MasterConnectionFailed(f"{api_path}: {e}") from e

        return self.decrypt(response.text)

    # -----------------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------------

    def _post_body(self, params: dict[str, Any]) -> dict[str, Any]:
        return {"signature": self.sign(params), "access_key": self._config.access_key}

    def _send_to_node(
        self,
        node: str,
        method: str,
        url: str,
        data: Optional[dict[str, Any]] = None,
        done: Optional[list[str]] = None,
    ) -> httpx.Response:
        try:
            response = self._client.request(method, url, data=data)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(
                "Node request failed",
                extra={"node": node, "method": method, "error": str(e), "succeeded_nodes": done or []}
            )
            raise NodeConnectionFailed(
                f"Request to node {node} failed: {e}",
                failed_node=node,
                succeeded_nodes=done or [],
            ) from e

        return response


def _open_raw_file(raw_file: Any) -> tuple[BinaryIO, str, bool]:
    """Return (handle, original filename, whether we opened the handle)."""
    if isinstance(raw_file, (str, os.PathLike)):
        return open(raw_file, "rb"), os.path.basename(os.fspath(raw_file)), True

    if isinstance(raw_file, (bytes, bytearray)):
        return io.BytesIO(bytes(raw_file)), "upload.bin", True

    filename = getattr(raw_file, "original_filename", None) or os.path.basename(
        str(getattr(raw_file, "name", "") or "upload.bin")
    )
    return raw_file, filename, False


def _md5_checksum(handle: BinaryIO) -> str:
    hasher = hashlib.md5()
    while True:
        chunk = handle.read(CHUNK_SIZE)
        if not chunk:
            break
        hasher.update(chunk)

    handle.seek(0)
    return hasher.hexdigest()


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

def create_connection(config: StorageConfig, mock_mode: bool = False) -> Connection:
    """
    Create a connection based on configuration.

    In mock mode the connection talks to a fresh InMemoryCloud instead of
    the network; the cloud is reachable as ``connection.cloud``.
    """
    if not mock_mode:
        return Connection(config)

    from .mock import InMemoryCloud

    cipher = Cipher(config.access_key, config.secret_key)
    cloud = InMemoryCloud(
        cipher,
        asset_domain=config.asset_domain,
        master_domain=config.master_domain,
    )
    connection = Connection(
        config,
        client=httpx.Client(transport=cloud.transport(), timeout=config.timeout_seconds),
        cipher=cipher,
    )
    connection.cloud = cloud

    logger.info("Using in-memory storage cloud (mock mode)")
    return connection
