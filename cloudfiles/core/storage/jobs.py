"""
Requests to the processing APIs behind the master.

- EncodingJob sends a source file to the encoding service. The results
  arrive later at the callback URL; see derived.EncodingResult.
- PdfRender renders an HTML page to PDF. The master answers with the
  stored file right away.
"""

import json
import logging
from typing import Any, Optional

from .derived import error_messages, is_failed_status
from .errors import (
    ActiveRecordObjectInvalid,
    CloudStorageError,
    EncodingFailed,
    InvalidOutputFormat,
    MissingOutputFormat,
)
from .files import MappingRepository, StorageConnection, StorageFile
from .models import EntityRef, FileMapping, normalize_access_level

logger = logging.getLogger(__name__)

ENCODING_JOBS_API = "/apis/encoding-com/jobs/create"
PDF_API = "/apis/pdf/create"


class EncodingJob:
    """
    An encoding job with one or more output formats.

        job = EncodingJob(file.url(), "https://app.example.com/callbacks/encoding/video/7",
                          connection=conn)
        job.add_output_format("iphone", {"output": "iphone", "size": "480x0"})
        job.add_output_format("webm", {"output": "webm"})
        job_id = job.process()

    ``source_url`` may be a public or a protected URL of a stored file. The
    format identifiers come back as keys in the callback payload.
    """

    def __init__(
        self,
        source_url: str,
        callback_url: str,
        *,
        connection: StorageConnection,
    ) -> None:
        self.source_url = source_url
        self.callback_url = callback_url
        self._connection = connection
        self._output_formats: dict[str, dict] = {}

    @property
    def output_formats(self) -> dict[str, dict]:
        return dict(self._output_formats)

    def add_output_format(self, identifier: str, options: dict) -> bool:
        """
        Queue an output format.

        ``options`` are passed to the encoder as-is; ``output`` (flv, mp4,
        webm, iphone, thumbnail, ...) is required.
        """
        options = {str(key): value for key, value in options.items()}

        if "output" not in options:
            raise InvalidOutputFormat("output is missing")

        self._output_formats[str(identifier)] = options
        return True

    def process(self) -> Optional[str]:
        """Send the job to the master and return the remote job id."""
        if not self._output_formats:
            raise MissingOutputFormat("Add at least one output format first")

        query = {
            "callback": self.callback_url,
            "url": self.source_url,
            "encoding_jobs": json.dumps(self._output_formats),
        }

        try:
            result = self._connection.request(ENCODING_JOBS_API, "post", query)
        except CloudStorageError as e:
            logger.critical(
                "An error occurred sending the encoding request",
                extra={"source_url": self.source_url, "error": str(e)}
            )
            raise

        errors = error_messages(result.get("errors"))
        if is_failed_status(result.get("status")) and errors:
            logger.critical("Encoding job rejected", extra={"errors": errors})
            raise EncodingFailed("; ".join(errors))

        job_id = result.get("job_id")
        logger.info(
            "Encoding job queued",
            extra={"job_id": job_id, "formats": list(self._output_formats)}
        )

        return None if job_id is None else str(job_id)


class PdfRender:
    """
    Render a web page to PDF and attach it to an owner.

    Extra keyword options (page size, margins...) are forwarded to the
    render service. ``identifier`` names the stored file.
    """

    def __init__(
        self,
        url: str,
        entity: Any,
        *,
        connection: StorageConnection,
        repository: MappingRepository,
        identifier: Optional[str] = None,
        **options: Any,
    ) -> None:
        if not url or entity is None:
            raise ValueError("url and entity are required")

        self.url = url
        self.entity = EntityRef.of(entity)
        self.identifier = identifier
        self.options = options
        self._connection = connection
        self._repository = repository

    def process(self) -> StorageFile:
        params = {"source": "html", "url": self.url}
        params.update(self.options)
        if self.identifier is not None:
            params["identifier"] = self.identifier

        result = self._connection.request(PDF_API, "post", params)

        errors = error_messages(result.get("errors"))
        if is_failed_status(result.get("status")) and errors:
            logger.critical("PDF rendering failed", extra={"url": self.url, "errors": errors})
            raise EncodingFailed("; ".join(errors))

        mapping = FileMapping(
            object_name=self.entity.object_name,
            object_identifier=self.entity.object_identifier,
            identifier=self.identifier,
            nodes=list(result.get("node_domains") or []),
            file_path=result.get("path") or "",
            access_level=normalize_access_level(result.get("access_level")),
        )

        problems = mapping.validation_errors()
        if problems:
            logger.critical("Rendered PDF mapping is invalid", extra={"errors": problems})
            raise ActiveRecordObjectInvalid("; ".join(problems))

        mapping = self._repository.save_mapping(mapping)

        return StorageFile(
            entity=self.entity,
            identifier=self.identifier,
            mapping=mapping,
            connection=self._connection,
            repository=self._repository,
        )
