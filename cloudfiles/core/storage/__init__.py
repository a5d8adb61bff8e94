"""
Files attached to domain records and stored in the replicated cloud.

Contains the mapping model, the StorageFile façade and the processors for
results of remote encoding/rendering jobs.
"""

from .adapter import UploadAdapter
from .derived import DerivedResultProcessor, EncodingResult, PdfRenderResult
from .errors import (
    ActiveRecordObjectInvalid,
    ActiveRecordObjectMissing,
    CloudStorageError,
    EncodingFailed,
    FileObjectMissing,
    InvalidOutputFormat,
    KeyVerificationFailed,
    MasterConnectionFailed,
    MetaInformationMissing,
    MissingFileMapping,
    MissingOutputFormat,
    MissingSignature,
    NodeConnectionFailed,
    NodesMissing,
)
from .files import MappingRepository, StorageConnection, StorageFile, StoredFile
from .jobs import EncodingJob, PdfRender
from .models import (
    AccessLevel,
    EntityRef,
    FileMapping,
    FormatUploader,
    Uploader,
    normalize_access_level,
)

__all__ = [
    "AccessLevel",
    "ActiveRecordObjectInvalid",
    "ActiveRecordObjectMissing",
    "CloudStorageError",
    "DerivedResultProcessor",
    "EncodingFailed",
    "EncodingJob",
    "EncodingResult",
    "EntityRef",
    "FileMapping",
    "FileObjectMissing",
    "FormatUploader",
    "InvalidOutputFormat",
    "KeyVerificationFailed",
    "MappingRepository",
    "MasterConnectionFailed",
    "MetaInformationMissing",
    "MissingFileMapping",
    "MissingOutputFormat",
    "MissingSignature",
    "NodeConnectionFailed",
    "NodesMissing",
    "PdfRender",
    "PdfRenderResult",
    "StorageConnection",
    "StorageFile",
    "StoredFile",
    "UploadAdapter",
    "Uploader",
    "normalize_access_level",
]
