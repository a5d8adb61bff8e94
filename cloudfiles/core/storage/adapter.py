"""
Glue for upload libraries.

An upload library hands us an uploaded file plus an uploader (which knows
its version name and extensions) and expects back something implementing
StoredFile. Versions of an upload (thumbnails, renditions) are looked up
as ``<version>_<original identifier>``.
"""

import logging
import os
from typing import Any, Optional

from .files import MappingRepository, StorageConnection, StorageFile, temporary_file
from .models import EntityRef, Uploader

logger = logging.getLogger(__name__)


class UploadAdapter:
    """Stores and retrieves uploads for one connection/repository pair."""

    def __init__(
        self,
        *,
        connection: StorageConnection,
        repository: MappingRepository,
        tmp_dir: Optional[str] = None,
    ) -> None:
        self._connection = connection
        self._repository = repository
        self._tmp_dir = tmp_dir

    def store(self, upload: Any, entity: Any, uploader: Uploader) -> Optional[StorageFile]:
        """
        Upload a file for ``entity``.

        ``upload`` needs ``read()`` and ideally ``original_filename`` (or a
        ``name``). Returns None when the uploader is a version that should
        not be stored.
        """
        if uploader.version_name and not uploader.store_versions:
            logger.debug("Skipping version", extra={"version": uploader.version_name})
            return None

        filename = getattr(upload, "original_filename", None) or os.path.basename(
            getattr(upload, "name", None) or "upload.bin"
        )

        content = upload.read()
        with temporary_file(filename, content, self._tmp_dir) as tmp_path:
            stored = StorageFile(
                tmp_path,
                entity=entity,
                identifier=filename,
                connection=self._connection,
                repository=self._repository,
                tmp_dir=self._tmp_dir,
            )
            stored.save()

        logger.debug("Stored upload", extra={"original_filename": filename})
        return stored

    def retrieve(self, entity: Any, uploader: Uploader) -> Optional[StorageFile]:
        """Find the stored file (or version) of ``entity``; None if there is none."""
        ref = EntityRef.of(entity)
        if ref.object_identifier is None:
            return None

        original = self._repository.find_mapping(ref.object_name, ref.object_identifier)
        if original is None:
            logger.debug("File not found", extra={"entity": ref.object_name})
            return None

        if not uploader.version_name:
            return StorageFile(
                entity=ref,
                mapping=original,
                connection=self._connection,
                repository=self._repository,
                tmp_dir=self._tmp_dir,
            )

        identifier = "_".join(part for part in (uploader.version_name, original.identifier) if part)
        version = StorageFile(
            entity=ref,
            identifier=identifier,
            connection=self._connection,
            repository=self._repository,
            tmp_dir=self._tmp_dir,
        )

        return version if version.mapping is not None else None
