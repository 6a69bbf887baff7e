from __future__ import annotations

from typing import Optional, Protocol

import httpx

from uploader.core.config import get_settings
from uploader.exception import NotificationError
from uploader.logger import get_logger
from uploader.models import UploadCompleted

logger = get_logger(__name__)

UPLOAD_CALLBACK_PATH = "/rest/das/callbacks/uploader"


class NotificationClient(Protocol):
    async def upload_completed(self, message: UploadCompleted, token: str) -> None:
        ...


class DataAcquisitionClient:
    """Tells the data acquisition service that an upload finished. One attempt per call."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        settings = get_settings()
        self.base_url = (base_url or settings.das_url).rstrip("/")
        self.timeout = timeout or settings.callback_timeout_seconds
        self._transport = transport

    async def upload_completed(self, message: UploadCompleted, token: str) -> None:
        """
        POST ``message`` as JSON to the uploader callback.

        Args:
            message: The completed upload.
            token: Full ``Authorization`` header value, e.g. ``"bearer <jwt>"``.

        Raises:
            NotificationError: On transport failure or a non-2xx response.
        """
        url = f"{self.base_url}{UPLOAD_CALLBACK_PATH}"
        headers = {"Authorization": token, "Content-Type": "application/json"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(url, content=message.model_dump_json(), headers=headers)
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise NotificationError(
                detail={"url": url, "status": exc.response.status_code},
            ) from exc
        except httpx.HTTPError as exc:
            raise NotificationError(detail={"url": url, "reason": str(exc)}) from exc

        logger.info("Data acquisition service notified.", extra={"source": message.source})
