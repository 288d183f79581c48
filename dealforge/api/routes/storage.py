"""
Signed object downloads.

Serves bytes for URLs produced by ObjectStorage.presigned_url. No
organization header is needed; the signature is the credential.
"""
import mimetypes

import structlog
from fastapi import APIRouter, Depends
from fastapi.responses import Response

from dealforge.api.dependencies import get_storage
from dealforge.exceptions import InvalidSignatureError, ObjectNotFoundError
from dealforge.middleware.rate_limit import rate_limit
from dealforge.services.storage import ObjectStorage

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.get(
    "/storage/{key:path}",
    dependencies=[Depends(rate_limit("general"))],
    summary="Download signed object",
    response_class=Response,
)
async def download_object(
    key: str,
    expires: int,
    signature: str,
    storage: ObjectStorage = Depends(get_storage),
) -> Response:
    if not storage.verify_signature(key, expires, signature):
        logger.warning("storage_signature_rejected", key=key)
        raise InvalidSignatureError(key)
    if not storage.exists(key):
        raise ObjectNotFoundError(key)

    media_type = mimetypes.guess_type(key)[0] or "application/octet-stream"
    filename = key.rsplit("/", 1)[-1]
    return Response(
        content=storage.get(key),
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
