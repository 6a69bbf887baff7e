from functools import lru_cache
from uuid import UUID, uuid4

from fastapi import APIRouter, Depends, Request, status

from uploader.clients import DataAcquisitionClient
from uploader.core.config import get_settings
from uploader.logger import get_logger, log_context
from uploader.middleware import AuthContext, get_principal
from uploader.models import UploadCompleted
from uploader.services.permissions import UserManagementPermissionVerifier
from uploader.services.storage import GcsUploadStorage
from uploader.services.upload_handler import UploadHandler

router = APIRouter()
logger = get_logger(__name__)


@lru_cache()
def get_upload_handler() -> UploadHandler:
    settings = get_settings()
    return UploadHandler(
        storage=GcsUploadStorage(),
        permission_verifier=UserManagementPermissionVerifier(),
        notification_client=DataAcquisitionClient(),
        progress_interval_bytes=settings.storage.progress_log_interval_bytes,
    )


@router.post(
    "/upload/{org_guid}",
    status_code=status.HTTP_201_CREATED,
    response_model=UploadCompleted,
    summary="Uploads file as multipart content together with metadata",
    responses={
        400: {"description": "The request could not be understood by the server due to malformed syntax"},
        403: {"description": "User is not permitted to perform the requested operation"},
        500: {"description": "Service encountered an unexpected condition which prevented it from fulfilling the request"},
    },
)
async def upload(
    request: Request,
    org_guid: UUID,
    principal: AuthContext = Depends(get_principal),
    handler: UploadHandler = Depends(get_upload_handler),
):
    """
    Stream a multipart body into storage without spooling it to disk.

    The body is read straight from the ASGI receive channel, so FastAPI's
    form parsing must not be used on this route.
    """
    with log_context(request_id=uuid4().hex, org_id=str(org_guid)):
        logger.info("Received upload request.", extra={"subject": principal.subject})
        return await handler.handle(
            request.headers.get("content-type"),
            request.stream(),
            org_guid,
            principal,
        )
