"""
Processing of asynchronous results from remote transcoding/rendering.

When an encoding or PDF job finishes, the remote service posts a signed
payload to our callback URL. The payload lists one entry per produced
output format:

    {
        "iphone": {"node_domains": ["a0", "a1"], "path": "...", "access_level": "public"},
        "webm":   {...},
        "hash": "...", "time": 1286543242,
    }

Each entry becomes a new FileMapping on the same owner, named after the
original file: ``iphone_movie.mp4``, ``webm_movie.webm``.

A callback is applied as a whole. If anything is wrong, no new mapping is
left behind and EncodingFailed is raised.
"""

import logging
import os
from typing import Any, Optional

from .errors import (
    ActiveRecordObjectInvalid,
    ActiveRecordObjectMissing,
    EncodingFailed,
    KeyVerificationFailed,
    MissingSignature,
)
from .files import MappingRepository, StorageConnection
from .models import EntityRef, FileMapping, FormatUploader, Uploader, normalize_access_level

logger = logging.getLogger(__name__)

# Bookkeeping keys of the signing protocol and the job report; never output formats.
_RESERVED_KEYS = ("action", "hash", "time", "status", "errors")

_FAILED_STATUSES = {"0", "false", "failed", "failure", "error"}


def is_failed_status(status: Any) -> bool:
    """The remote services report failure as 0/False or as a word."""
    if status is None:
        return False
    return str(status).strip().lower() in _FAILED_STATUSES


def error_messages(errors: Any) -> list[str]:
    if not errors:
        return []
    if isinstance(errors, (list, tuple)):
        return [str(e) for e in errors if e]
    return [str(errors)]


class DerivedResultProcessor:
    """
    Turn a signed callback payload into FileMappings for each variant.

    Args:
        params: raw callback parameters; must contain ``signature``
        entity: the owner of the original file, already persisted
        uploader: resolves file extensions per output format
    """

    job_name = "processing"

    def __init__(
        self,
        params: dict,
        entity: Any,
        uploader: Optional[Uploader] = None,
        *,
        connection: StorageConnection,
        repository: MappingRepository,
    ) -> None:
        self.params = {str(key): value for key, value in (params or {}).items()}
        if not self.params.get("signature"):
            raise MissingSignature("Callback parameters contain no signature")

        if entity is None:
            raise ActiveRecordObjectMissing("The object is nil")
        self.entity = EntityRef.of(entity)
        if not self.entity.persisted:
            raise ActiveRecordObjectInvalid("The object needs to be saved first")

        self.uploader = uploader or FormatUploader()
        self.status: Optional[str] = None
        self.mappings: list[FileMapping] = []

        self._connection = connection
        self._repository = repository

    @property
    def succeeded(self) -> bool:
        return self.status == "success"

    def process(self) -> list[FileMapping]:
        """Apply the callback. Returns the new mappings."""
        try:
            results = self._connection.decrypt(self.params["signature"])
        except KeyVerificationFailed:
            self.status = "failed"
            logger.critical("Callback signature did not verify", extra={"job": self.job_name})
            raise

        results = {str(key): value for key, value in results.items()}

        status = results.get("status")
        errors = error_messages(results.get("errors"))

        for key in _RESERVED_KEYS:
            results.pop(key, None)

        if is_failed_status(status) and errors:
            self._fail(f"{self.job_name} failed: {'; '.join(errors)}")

        outputs = self._outputs(results)
        if not outputs:
            self._fail(f"{self.job_name} result contains no output formats")

        original = self._repository.find_mapping(
            self.entity.object_name,
            self.entity.object_identifier,
        )
        if original is None:
            self._fail(
                f"No original file for {self.entity.object_name}#{self.entity.object_identifier}"
            )

        basename = self._basename(original)

        pending = []
        for format_name, attrs in outputs.items():
            mapping = FileMapping(
                object_name=self.entity.object_name,
                object_identifier=self.entity.object_identifier,
                identifier=f"{format_name}_{basename}.{self.uploader.extension_for(format_name)}",
                nodes=list(attrs.get("node_domains") or []),
                file_path=attrs.get("path") or "",
                access_level=normalize_access_level(attrs.get("access_level")),
            )

            problems = mapping.validation_errors()
            if problems:
                self._fail(f"Invalid mapping {mapping.identifier}: {'; '.join(problems)}")

            pending.append(mapping)

        self.mappings = self._save_all(pending)
        self.status = "success"

        logger.info(
            "Processed derived files",
            extra={
                "job": self.job_name,
                "entity": self.entity.object_name,
                "object_identifier": self.entity.object_identifier,
                "identifiers": [m.identifier for m in self.mappings],
            }
        )

        return self.mappings

    def _outputs(self, results: dict) -> dict:
        """Output formats are the nested entries; scalars such as job_id are skipped."""
        skipped = [key for key, value in results.items() if not isinstance(value, dict)]
        if skipped:
            logger.debug("Ignoring non-format entries", extra={"job": self.job_name, "keys": skipped})
        return {key: value for key, value in results.items() if isinstance(value, dict)}

    def _basename(self, original: FileMapping) -> str:
        name = original.identifier or original.filename
        return os.path.splitext(name)[0]

    def _save_all(self, mappings: list[FileMapping]) -> list[FileMapping]:
        saved: list[FileMapping] = []
        try:
            for mapping in mappings:
                saved.append(self._repository.save_mapping(mapping))
        except Exception as e:
            failing = mappings[len(saved)]
            self._rollback(saved)
            self._fail(
                f"Could not save mapping {failing.identifier} "
                f"(nodes={failing.nodes}, path={failing.file_path}): {e}"
            )
        return saved

    def _rollback(self, saved: list[FileMapping]) -> None:
        for mapping in saved:
            try:
                self._repository.delete_mapping(mapping)
            except Exception as e:
                logger.critical(
                    "Could not roll back derived mapping",
                    extra={"mapping_id": mapping.id, "error": str(e)}
                )

    def _fail(self, message: str) -> None:
        self.status = "failed"
        logger.critical(
            message,
            extra={
                "job": self.job_name,
                "entity": self.entity.object_name,
                "object_identifier": self.entity.object_identifier,
            }
        )
        raise EncodingFailed(message)


class EncodingResult(DerivedResultProcessor):
    """Callback of an encoding job; one variant per requested output format."""

    job_name = "encoding"


class PdfRenderResult(DerivedResultProcessor):
    """
    Callback of a PDF render job.

    The render service reports a single file at the top level of the
    payload; it is stored as the ``pdf`` variant.
    """

    job_name = "pdf rendering"
    format_name = "pdf"

    def _outputs(self, results: dict) -> dict:
        if "node_domains" in results:
            return {self.format_name: results}
        return super()._outputs(results)
