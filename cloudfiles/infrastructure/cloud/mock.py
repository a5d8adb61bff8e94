"""
In-memory storage cloud for local development and tests.

InMemoryCloud answers the same HTTP requests as the real master and
nodes, through an httpx.MockTransport. A Connection wired to it runs the
full signing protocol without any network:

    cloud = InMemoryCloud(cipher)
    conn = Connection(config, client=httpx.Client(transport=cloud.transport()))

Files live in a dict keyed by path, together with the set of nodes still
holding a replica. Nodes can be switched off to simulate outages.
"""

import hashlib
import io
import itertools
import logging
import mimetypes
import time
from typing import Any, Optional
from urllib.parse import parse_qs, unquote

import httpx
from python_multipart import parse_form

from ...core.storage.errors import KeyVerificationFailed
from .cipher import Cipher

logger = logging.getLogger(__name__)

DEFAULT_NODES = ("a0", "a1")

PDF_CONTENT = b"%PDF-1.4 rendered"


class InMemoryCloud:
    """
    Fake master plus nodes.

    Attributes useful in tests:
        files: path -> record (content, access_level, nodes, ...)
        failing_nodes: nodes answering 500 to everything
        master_available: when False the master answers 500
        encoding_jobs: parameter sets of accepted encoding jobs
        create_errors: when set, the next create is rejected with these
    """

    def __init__(
        self,
        cipher: Cipher,
        nodes: tuple[str, ...] = DEFAULT_NODES,
        asset_domain: str = "urbanclouds.com",
        master_domain: str = "master.urbanclouds.com",
    ) -> None:
        self._cipher = cipher
        self.nodes = tuple(nodes)
        self.asset_domain = asset_domain
        self.master_domain = master_domain

        self.files: dict[str, dict[str, Any]] = {}
        self.failing_nodes: set[str] = set()
        self.master_available = True
        self.encoding_jobs: list[dict[str, Any]] = []
        self.create_errors: list[str] = []
        self.requests: list[httpx.Request] = []

        self._counter = itertools.count(1)

        logger.info("Initialized in-memory storage cloud", extra={"nodes": list(self.nodes)})

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    # -----------------------------------------------------------------------
    # Helpers for test setup
    # -----------------------------------------------------------------------

    def add_file(
        self,
        content: bytes,
        filename: str = "upload.bin",
        access_level: str = "public",
        nodes: Optional[tuple[str, ...]] = None,
    ) -> dict[str, Any]:
        """Store a file directly; returns the answer the master would give."""
        path = f"files/{next(self._counter)}/{filename}"
        self.files[path] = {
            "content": content,
            "access_level": access_level,
            "original_filename": filename,
            "content_type": mimetypes.guess_type(filename)[0] or "application/octet-stream",
            "nodes": set(nodes or self.nodes),
            "md5_checksum": hashlib.md5(content).hexdigest(),
        }
        return {
            "status": 1,
            "errors": [],
            "path": path,
            "node_domains": sorted(nodes or self.nodes),
            "access_level": access_level,
        }

    def callback_signature(self, outputs: dict[str, bytes], status: Any = 1) -> str:
        """
        Signed payload as posted by the encoding service when a job is done.

        ``outputs`` maps format name -> produced content.
        """
        payload: dict[str, Any] = {"status": status}
        for format_name, content in outputs.items():
            stored = self.add_file(content, f"{format_name}.out")
            payload[format_name] = {
                "node_domains": stored["node_domains"],
                "path": stored["path"],
                "access_level": stored["access_level"],
            }
        return self._cipher.encrypt(payload)

    def failure_signature(self, errors: list[str]) -> str:
        return self._cipher.encrypt({"status": 0, "errors": errors})

    # -----------------------------------------------------------------------
    # Request dispatch
    # -----------------------------------------------------------------------

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        host = request.url.host

        if host == self.master_domain:
            if not self.master_available:
                return httpx.Response(500, text="FAILED")
            return self._handle_master(request)

        suffix = "." + self.asset_domain
        if host.endswith(suffix):
            node = host[: -len(suffix)]
            if node in self.failing_nodes or node not in self.nodes:
                return httpx.Response(500, text="FAILED")
            return self._handle_node(node, request)

        return httpx.Response(404, text="Unknown host")

    def _handle_master(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        fields, files = _parse_form(request)

        try:
            if request.method == "GET":
                api, _, token = path.rpartition("/")
                params = self._cipher.decrypt(unquote(token))
            else:
                api = path
                params = self._cipher.decrypt(fields.get("signature", ""))
        except KeyVerificationFailed:
            return httpx.Response(403, text="FAILED")

        if api == "/create":
            return self._create(params, files)
        if api == "/apis/encoding-com/jobs/create":
            self.encoding_jobs.append(params)
            return self._signed({"status": 1, "errors": [], "job_id": len(self.encoding_jobs)})
        if api == "/apis/pdf/create":
            filename = (params.get("identifier") or "rendered") + ".pdf"
            return self._signed(self.add_file(PDF_CONTENT, filename))

        return httpx.Response(404, text="FAILED")

    def _create(self, params: dict[str, Any], files: dict[str, tuple[str, bytes]]) -> httpx.Response:
        if self.create_errors:
            errors, self.create_errors = self.create_errors, []
            return self._signed({"status": 0, "errors": errors})

        if "file" not in files:
            return self._signed({"status": 0, "errors": ["file is missing"]})

        filename, content = files["file"]
        result = self.add_file(
            content,
            params.get("original_filename") or filename,
            params.get("access_level") or "public",
        )
        self.files[result["path"]]["md5_checksum"] = params.get("md5_checksum")
        return self._signed(result)

    def _handle_node(self, node: str, request: httpx.Request) -> httpx.Response:
        action, _, rest = request.url.path.lstrip("/").partition("/")

        if request.method == "POST":
            fields, _ = _parse_form(request)
            try:
                params = self._cipher.decrypt(fields.get("signature", ""))
            except KeyVerificationFailed:
                return httpx.Response(403, text="FAILED")
            record = self._replica(node, params.get("path"))
            if record is None:
                return httpx.Response(404, text="FAILED")

            if action == "update":
                if "access_level" in params:
                    record["access_level"] = params["access_level"]
                return self._signed({"path": params["path"]})
            if action == "delete":
                record["nodes"].discard(node)
                if not record["nodes"]:
                    self.files.pop(params["path"], None)
                return httpx.Response(200, text="OK")
            return httpx.Response(404, text="FAILED")

        if action in ("get", "meta", "status"):
            try:
                params = self._cipher.decrypt(unquote(rest))
            except KeyVerificationFailed:
                return httpx.Response(403, text="FAILED")

            if action == "status":
                return self._signed({"space_overall": 2000, "space_free": 1500, "load_avg": 0.25})

            record = self._replica(node, params.get("path"))
            if record is None:
                return httpx.Response(404, text="FAILED")

            if action == "meta":
                return self._signed({
                    "access_level": record["access_level"],
                    "content_type": record["content_type"],
                    "file_size": len(record["content"]),
                })

            expires_at = params.get("expires_at")
            if expires_at is not None and int(expires_at) < time.time():
                return httpx.Response(403, text="Expired")
            return httpx.Response(200, content=record["content"])

        # direct access by path
        record = self._replica(node, request.url.path.lstrip("/"))
        if record is None:
            return httpx.Response(404, text="FAILED")
        if record["access_level"] != "public":
            return httpx.Response(403, text="FAILED")
        return httpx.Response(200, content=record["content"])

    def _replica(self, node: str, path: Optional[str]) -> Optional[dict[str, Any]]:
        record = self.files.get(path or "")
        if record is None or node not in record["nodes"]:
            return None
        return record

    def _signed(self, payload: dict[str, Any]) -> httpx.Response:
        return httpx.Response(200, text=self._cipher.encrypt(payload))


def _parse_form(request: httpx.Request) -> tuple[dict[str, str], dict[str, tuple[str, bytes]]]:
    """Decode a urlencoded or multipart body into (fields, files)."""
    body = request.read()
    content_type = request.headers.get("content-type", "")

    if not content_type.startswith("multipart/form-data"):
        parsed = parse_qs(body.decode("utf-8"), keep_blank_values=True)
        return {key: values[-1] for key, values in parsed.items()}, {}

    fields: dict[str, str] = {}
    files: dict[str, tuple[str, bytes]] = {}

    def on_field(field) -> None:
        fields[field.field_name.decode("utf-8")] = (field.value or b"").decode("utf-8")

    def on_file(file) -> None:
        file.file_object.seek(0)
        files[file.field_name.decode("utf-8")] = (
            (file.file_name or b"").decode("utf-8"),
            file.file_object.read(),
        )
        file.close()

    headers = {"Content-Type": content_type, "Content-Length": str(len(body))}
    parse_form(headers, io.BytesIO(body), on_field, on_file)

    return fields, files
