"""
The StorageFile façade.

A StorageFile is a short-lived object wrapping one file in the storage
cloud. It resolves the FileMapping of its owner on first use, talks to the
nodes through a connection and caches what it fetched (content, meta) for
its own lifetime.

    file = StorageFile(open("cat.png", "rb"), entity=photo,
                       connection=conn, repository=repo)
    file.save()
    file.url()

The façade never creates a mapping while resolving. Mappings are created
by save() or by the derived-result processors.
"""

import logging
import os
import random
import shutil
import tempfile
from contextlib import contextmanager
from typing import Any, Iterator, Optional, Protocol

from .errors import (
    ActiveRecordObjectInvalid,
    ActiveRecordObjectMissing,
    CloudStorageError,
    FileObjectMissing,
    MetaInformationMissing,
    MissingFileMapping,
    NodesMissing,
)
from .models import EntityRef, FileMapping, ObjectId, normalize_access_level

logger = logging.getLogger(__name__)


class MappingRepository(Protocol):
    """
    Persistence of FileMapping rows.

    Lookups by owner without an identifier return the earliest created
    mapping of that owner (the original upload). Lookups with an identifier
    return the most recently created match, so the last write wins when
    concurrent saves produced duplicates.
    """

    def find_mapping(
        self,
        object_name: str,
        object_identifier: ObjectId,
        identifier: Optional[str] = None,
    ) -> Optional[FileMapping]:
        ...

    def get_mapping(self, mapping_id: int) -> Optional[FileMapping]:
        ...

    def save_mapping(self, mapping: FileMapping) -> FileMapping:
        """Validate and persist; sets id and timestamps."""
        ...

    def delete_mapping(self, mapping: FileMapping) -> None:
        ...


class StorageConnection(Protocol):
    """Signed access to the master and the storage nodes."""

    def get(self, node: str, access_level: str, path: str) -> bytes: ...

    def create(self, raw_file: Any, access_level: str) -> dict: ...

    def meta(self, node: str, path: str) -> dict: ...

    def update(self, nodes: list[str], path: str, options: dict) -> str: ...

    def delete(self, nodes: list[str], path: str) -> bool: ...

    def url(
        self,
        node: str,
        access_level: str,
        path: str,
        expires: Optional[int] = None,
    ) -> str: ...

    def request(self, api_path: str, method: str, params: dict) -> dict: ...

    def decrypt(self, signature: str) -> dict: ...


class StoredFile(Protocol):
    """
    The operations an upload library needs from a stored file.

    StorageFile implements this; adapters should depend on nothing else.
    """

    @property
    def path(self) -> str: ...

    def read(self) -> bytes: ...

    def url(self, expires: Optional[int] = None) -> str: ...

    def delete(self) -> bool: ...

    def access_level(self, force: bool = False) -> str: ...

    def set_access_level(self, level: str) -> bool: ...


class StorageFile:
    """
    A single file in the storage cloud, bound to an owning entity.

    Pass ``raw_file`` (a path or a binary file object) to upload a new file,
    or leave it out to work with an existing one. ``identifier`` selects one
    of several files of the same owner; ``mapping`` skips the lookup.
    """

    def __init__(
        self,
        raw_file: Any = None,
        *,
        connection: StorageConnection,
        repository: MappingRepository,
        entity: Any = None,
        identifier: Optional[str] = None,
        access_level: str = "public-read",
        mapping: Optional[FileMapping] = None,
        tmp_dir: Optional[str] = None,
    ) -> None:
        self.raw_file = raw_file
        self.entity = EntityRef.of(entity) if entity is not None else None
        self.options: dict[str, Any] = {
            "access_level": access_level,
            "identifier": identifier,
        }

        self._connection = connection
        self._repository = repository
        self._tmp_dir = tmp_dir
        self._mapping = mapping
        self._lookup_done = mapping is not None
        self._content: Optional[bytes] = None
        self._meta: Optional[dict] = None

        logger.debug(
            "Initialized storage file",
            extra={
                "entity": self.entity.object_name if self.entity else None,
                "raw_file_given": raw_file is not None,
                "identifier": identifier,
                "mapping_given": mapping is not None,
            }
        )

    # -----------------------------------------------------------------------
    # Class-level helpers
    # -----------------------------------------------------------------------

    @classmethod
    def exists(
        cls,
        target: Any,
        identifier: Optional[str] = None,
        *,
        connection: StorageConnection,
        repository: MappingRepository,
    ) -> bool:
        """
        Check whether a file is stored in the cloud.

        ``target`` is either a FileMapping id or an owning entity. Returns
        False when no mapping exists. The file is actually read, so node
        failures propagate.
        """
        if isinstance(target, int) and not isinstance(target, bool):
            mapping = repository.get_mapping(target)
        else:
            ref = EntityRef.of(target)
            mapping = repository.find_mapping(ref.object_name, ref.object_identifier, identifier)

        if mapping is None:
            return False

        file = cls(mapping=mapping, connection=connection, repository=repository)
        return bool(file.read())

    # -----------------------------------------------------------------------
    # Mapping accessors
    # -----------------------------------------------------------------------

    @property
    def mapping(self) -> Optional[FileMapping]:
        if not self._lookup_done and self.entity is not None:
            if self.entity.object_identifier is not None:
                self._mapping = self._repository.find_mapping(
                    self.entity.object_name,
                    self.entity.object_identifier,
                    self.options["identifier"],
                )
            self._lookup_done = True

        return self._mapping

    @property
    def nodes(self) -> list[str]:
        return self._require_mapping().nodes

    @property
    def path(self) -> str:
        """Path of the file, identical on all nodes. Ignores the access level."""
        return self._require_mapping().file_path

    @property
    def identifier(self) -> str:
        return self._require_mapping().identifier or ""

    @property
    def filename(self) -> str:
        return self._require_mapping().filename

    # -----------------------------------------------------------------------
    # Remote operations
    # -----------------------------------------------------------------------

    def save(self) -> bool:
        """
        Upload the raw file to the master and persist the resulting mapping.

        Does nothing when a mapping already exists. That check is by
        presence only, not by content.
        """
        if self.mapping is not None:
            return True

        entity = self._validate_entity(self.entity)

        if not self.raw_file:
            logger.critical("Cannot save without a file", extra={"entity": entity.object_name})
            raise FileObjectMissing("No file given to store")

        logger.debug("Sending file to master", extra={"entity": entity.object_name})

        result = self._connection.create(
            self.raw_file,
            normalize_access_level(self.options["access_level"]),
        )

        mapping = FileMapping(
            object_name=entity.object_name,
            object_identifier=entity.object_identifier,
            identifier=self.options["identifier"],
            nodes=list(result.get("node_domains") or []),
            file_path=result.get("path") or "",
            access_level=normalize_access_level(result.get("access_level")),
        )

        errors = mapping.validation_errors()
        if errors:
            logger.critical(
                "Created file but mapping is invalid",
                extra={"errors": errors, "entity": entity.object_name}
            )
            raise ActiveRecordObjectInvalid("; ".join(errors))

        self._mapping = self._repository.save_mapping(mapping)
        self._lookup_done = True

        logger.info(
            "Stored file",
            extra={
                "entity": entity.object_name,
                "object_identifier": entity.object_identifier,
                "nodes": mapping.nodes,
                "path": mapping.file_path,
            }
        )

        return True

    close = save

    def read(self) -> bytes:
        """
        Return the file content, fetched from the first node.

        There is no fallback to other replicas. The result is cached.
        """
        mapping = self._require_nodes()

        if self._content is None:
            try:
                self._content = self._connection.get(
                    mapping.nodes[0],
                    self.access_level(),
                    mapping.file_path,
                )
            except CloudStorageError as e:
                logger.critical(
                    "Failed to read file",
                    extra={"node": mapping.nodes[0], "path": mapping.file_path, "error": str(e)}
                )
                raise

        return self._content

    def url(self, expires: Optional[int] = None) -> str:
        """
        Return a URL to the file on one of its nodes, picked at random.

        With ``expires`` (seconds) the URL is signed and stops working
        after that time, whatever the access level.
        """
        mapping = self._require_nodes()
        level = self.access_level()

        urls = [
            self._connection.url(node, level, mapping.file_path, expires=expires)
            for node in mapping.nodes
        ]

        logger.debug("Generated urls", extra={"urls": urls})

        # random pick spreads reads over the replicas
        return random.choice(urls)

    def access_level(self, force: bool = False) -> str:
        """
        Return the access level of the file.

        The locally stored value is used unless ``force`` is set or it is
        empty; then the node is asked. The remote value is not written back.
        """
        mapping = self.mapping
        if not force and mapping is not None and mapping.access_level:
            return mapping.access_level

        meta = self._load_meta(refresh=force)
        return str(meta.get("access_level", ""))

    def set_access_level(self, level: str) -> bool:
        """
        Change the access level on all nodes and in the mapping.

        The file must already be stored; the level cannot be set remotely
        before the first upload.
        """
        level = normalize_access_level(level)
        logger.debug("Setting access level", extra={"access_level": level})

        mapping = self.mapping
        if mapping is None:
            logger.critical("Cannot update access level without a mapping")
            raise MissingFileMapping("File has not been stored yet")
        if not mapping.nodes:
            logger.critical("Cannot update access level without nodes")
            raise NodesMissing()

        old_path, old_level = mapping.file_path, mapping.access_level
        try:
            new_path = self._connection.update(
                mapping.nodes,
                mapping.file_path,
                {"access_level": level},
            )
            mapping.file_path = new_path or mapping.file_path
            mapping.access_level = level
            self._repository.save_mapping(mapping)
        except Exception as e:
            # the cached mapping must keep matching the stored row
            mapping.file_path, mapping.access_level = old_path, old_level
            logger.critical(
                "Failed to update remote file and save mapping",
                extra={"path": old_path, "error": str(e)}
            )
            raise

        self._meta = None
        self.options["access_level"] = level
        return True

    def destroy(self) -> bool:
        """
        Delete the file from all nodes and drop the mapping.

        Returns False instead of raising when the remote delete or the
        mapping removal fails.
        """
        mapping = self._require_nodes()

        try:
            self._connection.delete(mapping.nodes, mapping.file_path)
            self._repository.delete_mapping(mapping)
        except Exception as e:
            logger.critical(
                "There was an error deleting the file",
                extra={"path": mapping.file_path, "nodes": mapping.nodes, "error": str(e)},
                exc_info=e,
            )
            return False

        self._mapping = None
        self._content = None
        self._meta = None
        return True

    def delete(self) -> bool:
        return self.destroy()

    def copy(self, to_entity: Any) -> "StorageFile":
        """
        Copy the file to another owner.

        The content is downloaded and uploaded again as a new file, so the
        copy gets its own mapping and its own remote object.
        """
        target = self._validate_entity(to_entity)

        try:
            content = self.read()

            with temporary_file(self.filename or "copy.bin", content, self._tmp_dir) as tmp_path:
                logger.debug("Copy written to tempfile", extra={"tmp_path": tmp_path})

                copied = StorageFile(
                    tmp_path,
                    entity=target,
                    identifier=self._require_mapping().identifier,
                    access_level=self.access_level(),
                    connection=self._connection,
                    repository=self._repository,
                    tmp_dir=self._tmp_dir,
                )
                copied.save()

        except CloudStorageError as e:
            logger.critical(
                "An error occurred while copying the file",
                extra={"target": target.object_name, "error": str(e)}
            )
            raise

        return copied

    def content_type(self) -> str:
        return str(self._load_meta().get("content_type", ""))

    def size(self) -> int:
        return int(self._load_meta().get("file_size", 0))

    # -----------------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------------

    def _require_mapping(self) -> FileMapping:
        mapping = self.mapping
        if mapping is None:
            identifier = self.options["identifier"]
            raise MissingFileMapping(f"Identifier: {identifier}" if identifier else "")
        return mapping

    def _require_nodes(self) -> FileMapping:
        mapping = self._require_mapping()
        if not mapping.nodes:
            raise NodesMissing(f"Mapping {mapping.id} has no nodes")
        return mapping

    def _load_meta(self, refresh: bool = False) -> dict:
        mapping = self._require_nodes()

        if self._meta is None or refresh:
            logger.debug("Retrieving meta information", extra={"path": mapping.file_path})
            try:
                self._meta = self._connection.meta(mapping.nodes[0], mapping.file_path)
            except CloudStorageError as e:
                logger.critical(
                    "Error getting meta data",
                    extra={"path": mapping.file_path, "error": str(e)}
                )
                self._meta = None
                raise MetaInformationMissing(str(e)) from e

        if not self._meta:
            raise MetaInformationMissing(f"No meta information for {mapping.file_path}")

        return self._meta

    @staticmethod
    def _validate_entity(entity: Any) -> EntityRef:
        if entity is None:
            raise ActiveRecordObjectMissing("The object is nil")

        ref = EntityRef.of(entity)
        if not ref.persisted:
            raise ActiveRecordObjectInvalid("The object needs to be saved first")

        return ref


@contextmanager
def temporary_file(filename: str, content: bytes, tmp_dir: Optional[str] = None) -> Iterator[str]:
    """
    Write ``content`` to a temporary file named ``filename``.

    The name is kept because the master records it as the original
    filename. Cleanup failures are only logged.
    """
    directory = tempfile.mkdtemp(dir=tmp_dir)
    path = os.path.join(directory, os.path.basename(filename))

    try:
        with open(path, "wb") as f:
            f.write(content)
        yield path
    finally:
        try:
            shutil.rmtree(directory)
        except OSError as e:
            logger.warning("Could not remove temporary file", extra={"path": path, "error": str(e)})
