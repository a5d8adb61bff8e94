"""
Domain models for files stored in the replicated storage cloud.

A FileMapping is the only thing we persist locally: which owner a file
belongs to, which nodes hold a replica and under which path. The bytes
themselves only ever live on the nodes.
"""

import os
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Protocol, Union

ObjectId = Union[int, str]


class AccessLevel(str, Enum):
    """
    Read-authorization policy of a file on the nodes.

    - PUBLIC: readable by anyone with the URL (fastest)
    - PROTECTED: readable only through a signed URL
    - PRIVATE: only the application itself may read it
    - EXPIRING: readable until a deadline, private afterwards
    """
    PUBLIC = "public"
    PROTECTED = "protected"
    PRIVATE = "private"
    EXPIRING = "expiring"


# S3-style ACL names are accepted for compatibility with upload libraries
# that were written against Amazon.
_ACCESS_LEVEL_SYNONYMS = {
    "public-read": AccessLevel.PUBLIC,
    "public": AccessLevel.PUBLIC,
    "authenticated-read": AccessLevel.PROTECTED,
    "protected": AccessLevel.PROTECTED,
    "private": AccessLevel.PRIVATE,
}


def normalize_access_level(value: Any) -> str:
    """Map any incoming access level onto the known set. Unknown means public."""
    if isinstance(value, AccessLevel):
        value = value.value
    level = _ACCESS_LEVEL_SYNONYMS.get(str(value or "").strip().lower(), AccessLevel.PUBLIC)
    return level.value


@dataclass
class FileMapping:
    """
    Maps an owning entity (+ optional identifier) to its remote replicas.

    ``identifier`` is None for the primary file of an owner. Variants
    (thumbnails, encoded renditions, rendered PDFs) carry a name such as
    ``iphone_movie.mp4``.
    """
    object_name: str = ""
    object_identifier: Optional[ObjectId] = None
    identifier: Optional[str] = None
    nodes: list[str] = field(default_factory=list)
    file_path: str = ""
    access_level: str = AccessLevel.PUBLIC.value
    id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def validation_errors(self) -> list[str]:
        """Return a list of problems; empty means the mapping may be saved."""
        errors = []
        if not self.object_name:
            errors.append("object_name can't be blank")
        if self.object_identifier is None or self.object_identifier == "":
            errors.append("object_identifier can't be blank")
        if not self.nodes:
            errors.append("nodes can't be blank")
        if not self.file_path:
            errors.append("file_path can't be blank")
        if not self.access_level:
            errors.append("access_level can't be blank")
        return errors

    @property
    def is_valid(self) -> bool:
        return not self.validation_errors()

    @property
    def is_persisted(self) -> bool:
        return self.id is not None

    @property
    def filename(self) -> str:
        """Basename of the remote path, e.g. ``1223434342.jpg``."""
        return os.path.basename(self.file_path.rstrip("/")) if self.file_path else ""


@dataclass(frozen=True)
class EntityRef:
    """
    Reference to the record a file is attached to.

    Only three things are needed from an owner: a type tag, an id and
    whether it has been persisted yet.
    """
    object_name: str
    object_identifier: Optional[ObjectId]
    persisted: bool = True

    @classmethod
    def of(cls, entity: Any) -> "EntityRef":
        """
        Build a reference from an arbitrary domain object.

        The type tag is ``entity.storage_name`` when defined, otherwise the
        lower-cased class name (``Photo`` -> ``photo``). An entity is
        considered unsaved when it has no id or flags itself as new.
        """
        if isinstance(entity, EntityRef):
            return entity

        name = getattr(entity, "storage_name", None) or type(entity).__name__.lower()
        identifier = getattr(entity, "id", None)
        persisted = identifier is not None and not getattr(entity, "is_new", False)

        return cls(object_name=str(name).lower(), object_identifier=identifier, persisted=persisted)


class Uploader(Protocol):
    """
    What the storage layer needs from an upload library's uploader.

    ``version_name`` is set when the uploader handles a version (e.g.
    "thumb") rather than the original file.
    """

    version_name: Optional[str]
    store_versions: bool

    def extension_for(self, format_name: str) -> str:
        """Resolve the file extension for an output format name."""
        ...


# Extensions for the usual encoding output formats.
DEFAULT_FORMAT_EXTENSIONS = {
    "flv": "flv",
    "fl9": "flv",
    "wmv": "wmv",
    "3gp": "3gp",
    "mp4": "mp4",
    "m4v": "m4v",
    "ipod": "mp4",
    "iphone": "mp4",
    "ipad": "mp4",
    "android": "mp4",
    "appletv": "mp4",
    "psp": "mp4",
    "ogg": "ogg",
    "webm": "webm",
    "zune": "wmv",
    "mp3": "mp3",
    "wma": "wma",
    "m4a": "m4a",
    "thumbnail": "jpg",
    "image": "jpg",
    "mpeg2": "mpg",
    "pdf": "pdf",
}


@dataclass
class FormatUploader:
    """
    Plain Uploader implementation backed by a format -> extension table.

    Formats not in the table use the format name itself as extension.
    """
    extensions: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_FORMAT_EXTENSIONS))
    version_name: Optional[str] = None
    store_versions: bool = True

    def extension_for(self, format_name: str) -> str:
        return self.extensions.get(format_name, format_name).lstrip(".")
