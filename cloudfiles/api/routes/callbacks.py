"""
Callback endpoints for asynchronous processing results.

The encoding and PDF services post a signed payload here when a job
finishes. The signature is the authentication: it only decrypts with our
keys, so these routes take no API key.

Flow:
1. Service finishes a job for photo #42
2. POST /api/v1/callbacks/encoding/photo/42 with form field "signature"
3. One FileMapping per produced format is stored on photo #42
"""

import logging
from typing import Type

from fastapi import APIRouter, Form, HTTPException, status
from pydantic import BaseModel

from ...core.storage import (
    ActiveRecordObjectInvalid,
    DerivedResultProcessor,
    EncodingFailed,
    EncodingResult,
    EntityRef,
    FormatUploader,
    KeyVerificationFailed,
    MappingRepository,
    MissingSignature,
    PdfRenderResult,
    StorageConnection,
)
from ..dependencies import ConnectionDep, EntityDep, MappingRepositoryDep, UploaderDep

logger = logging.getLogger(__name__)

router = APIRouter()


class CallbackResponse(BaseModel):
    """Outcome of a processed callback."""
    status: str
    identifiers: list[str]


def _run(
    processor_class: Type[DerivedResultProcessor],
    signature: str,
    entity: EntityRef,
    uploader: FormatUploader,
    connection: StorageConnection,
    repository: MappingRepository,
) -> CallbackResponse:
    try:
        processor = processor_class(
            {"signature": signature},
            entity,
            uploader,
            connection=connection,
            repository=repository,
        )
        mappings = processor.process()

    except MissingSignature as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    except KeyVerificationFailed:
        logger.warning(
            "Rejected callback with invalid signature",
            extra={"entity": entity.object_name, "object_identifier": entity.object_identifier}
        )
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid signature")

    except (EncodingFailed, ActiveRecordObjectInvalid) as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))

    return CallbackResponse(
        status=processor.status or "",
        identifiers=[mapping.identifier or "" for mapping in mappings],
    )


@router.post(
    "/encoding/{object_name}/{object_id}",
    response_model=CallbackResponse,
    summary="Encoding job finished",
    responses={
        403: {"description": "Signature does not verify"},
        422: {"description": "Encoding failed or result unusable; nothing stored"},
    },
)
def encoding_callback(
    entity: EntityDep,
    connection: ConnectionDep,
    repository: MappingRepositoryDep,
    uploader: UploaderDep,
    signature: str = Form(default=""),
) -> CallbackResponse:
    return _run(EncodingResult, signature, entity, uploader, connection, repository)


@router.post(
    "/pdf/{object_name}/{object_id}",
    response_model=CallbackResponse,
    summary="PDF rendering finished",
    responses={
        403: {"description": "Signature does not verify"},
        422: {"description": "Rendering failed or result unusable; nothing stored"},
    },
)
def pdf_callback(
    entity: EntityDep,
    connection: ConnectionDep,
    repository: MappingRepositoryDep,
    uploader: UploaderDep,
    signature: str = Form(default=""),
) -> CallbackResponse:
    return _run(PdfRenderResult, signature, entity, uploader, connection, repository)
