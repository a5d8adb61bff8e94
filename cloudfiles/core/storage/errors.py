"""
Error taxonomy for the storage cloud client.

Three families:
- local preconditions (missing mapping, missing owner, missing payload)
- transport failures talking to the master or to a storage node
- protocol failures (signatures that are missing or don't verify)

None of these are retried automatically. Callers decide.
"""

from typing import Optional, Sequence


class CloudStorageError(Exception):
    """Base class for everything raised by the storage client."""
    pass


# ---------------------------------------------------------------------------
# Local preconditions
# ---------------------------------------------------------------------------

class MissingFileMapping(CloudStorageError):
    """No FileMapping exists for the owner (and identifier)."""
    pass


class NodesMissing(CloudStorageError):
    """The mapping exists but lists no storage nodes."""
    pass


class FileObjectMissing(CloudStorageError):
    """save() was called without a raw file payload."""
    pass


class MetaInformationMissing(CloudStorageError):
    """Meta information could not be fetched from the node."""
    pass


class ActiveRecordObjectMissing(CloudStorageError):
    """No owning entity was given."""
    pass


class ActiveRecordObjectInvalid(CloudStorageError):
    """The owning entity is unsaved, or a mapping failed validation."""
    pass


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------

class NodeConnectionFailed(CloudStorageError):
    """
    A request to a storage node failed.

    For fan-out operations (update, delete) the nodes that were already
    handled are listed in ``succeeded_nodes`` and the node that broke the
    loop in ``failed_node``. Nothing is rolled back.
    """

    def __init__(
        self,
        message: str = "",
        failed_node: Optional[str] = None,
        succeeded_nodes: Sequence[str] = (),
    ) -> None:
        super().__init__(message)
        self.failed_node = failed_node
        self.succeeded_nodes = list(succeeded_nodes)


class MasterConnectionFailed(CloudStorageError):
    """A request to the master coordinator failed."""
    pass


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------

class MissingSignature(CloudStorageError):
    """A non-public URL was requested without a signature."""
    pass


class KeyVerificationFailed(CloudStorageError):
    """A signed payload could not be decrypted or its key hash is wrong."""
    pass


# ---------------------------------------------------------------------------
# Remote processing jobs
# ---------------------------------------------------------------------------

class EncodingFailed(CloudStorageError):
    """A processing callback was rejected or could not be applied."""
    pass


class InvalidOutputFormat(CloudStorageError):
    """An encoding output format is missing required keys."""
    pass


class MissingOutputFormat(CloudStorageError):
    """An encoding job was sent without any output format."""
    pass
