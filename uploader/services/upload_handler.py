"""
Upload orchestration.

``UploadHandler.handle`` checks the request, verifies organization access,
walks the multipart body once, streams the file part straight into storage,
collects the form fields as properties, and finally reports the completed
upload to the data acquisition service with the caller's token.
"""

from __future__ import annotations

from typing import AsyncIterable, Callable, Optional
from uuid import UUID

from uploader.clients import NotificationClient
from uploader.exception import AccessDeniedError, AppException, InvalidRequestError
from uploader.logger import get_logger
from uploader.middleware.auth import AuthContext, extract_token
from uploader.models import UploadCompleted
from uploader.services.multipart_stream import MultipartStream, is_multipart_content
from uploader.services.permissions import PermissionVerifier
from uploader.services.progress import UploadProgressListener
from uploader.services.storage import UploadStorage

logger = get_logger(__name__)


class UploadHandler:
    def __init__(
        self,
        *,
        storage: UploadStorage,
        permission_verifier: PermissionVerifier,
        notification_client: NotificationClient,
        token_extractor: Callable[[AuthContext], str] = extract_token,
        progress_interval_bytes: Optional[int] = None,
    ) -> None:
        self.storage = storage
        self.permission_verifier = permission_verifier
        self.notification_client = notification_client
        self.token_extractor = token_extractor
        self.progress_interval_bytes = progress_interval_bytes

    async def handle(
        self,
        content_type: Optional[str],
        body: AsyncIterable[bytes],
        org_id: UUID,
        principal: AuthContext,
    ) -> UploadCompleted:
        if not is_multipart_content(content_type):
            raise InvalidRequestError()

        if not await self.permission_verifier.is_org_accessible(org_id, principal):
            raise AccessDeniedError(detail={"org_id": str(org_id)})

        listener = (
            UploadProgressListener(self.progress_interval_bytes)
            if self.progress_interval_bytes
            else None
        )
        parts = MultipartStream(content_type, body, listener=listener)  # type: ignore[arg-type]
        upload_completed = await self._process_upload(parts, org_id)

        try:
            await self.notification_client.upload_completed(
                upload_completed, "bearer " + self.token_extractor(principal)
            )
        except AppException:
            # The file is already stored; nothing is rolled back.
            logger.error(
                "Upload stored but data acquisition service was not notified.",
                extra={"source": upload_completed.source},
            )
            raise

        return upload_completed

    async def _process_upload(self, parts: MultipartStream, org_id: UUID) -> UploadCompleted:
        builder = UploadCompleted.builder()

        logger.info("Upload started")
        async for part in parts:
            if not part.is_form_field:
                source = await self.storage.upload(part, org_id, part.filename or "")
                builder.set_source(source)
            else:
                logger.info("Field name: %s", part.name)
                builder.set_property(part.name, await part.read_text("utf-8"))
        logger.info("Upload completed")

        return builder.build()
