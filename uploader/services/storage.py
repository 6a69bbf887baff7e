from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, AsyncIterable, Optional, Protocol
from uuid import UUID, uuid4

from google.api_core import exceptions as google_exceptions
from google.auth import exceptions as auth_exceptions
from google.cloud import storage
from google.cloud.storage import exceptions as storage_exceptions
from requests import exceptions as requests_exceptions
from starlette.concurrency import run_in_threadpool

from uploader.core.config import get_settings
from uploader.exception import StorageError
from uploader.logger import get_logger

logger = get_logger(__name__)

# Failures raised by the Cloud Storage client, its resumable uploads, its
# credentials lookup and its HTTP transport.
STORAGE_ERRORS = (
    google_exceptions.GoogleAPIError,
    storage_exceptions.InvalidResponse,
    auth_exceptions.GoogleAuthError,
    requests_exceptions.RequestException,
)


class UploadStorage(Protocol):
    async def upload(self, stream: AsyncIterable[bytes], org_id: UUID, filename: str) -> str:
        """Persist ``stream`` for ``org_id`` and return the upload's source name."""
        ...


class GcsUploadStorage:
    """Streams uploaded files into a Cloud Storage bucket, one chunk at a time."""

    def __init__(
        self,
        bucket_name: Optional[str] = None,
        *,
        client: Optional[storage.Client] = None,
        chunk_size: Optional[int] = None,
    ) -> None:
        settings = get_settings()
        self.bucket_name = bucket_name or settings.storage.bucket
        self.chunk_size = chunk_size or settings.storage.chunk_size
        self._client = client

    @property
    def client(self) -> storage.Client:
        if self._client is None:
            self._client = storage.Client()
        return self._client

    async def upload(self, stream: AsyncIterable[bytes], org_id: UUID, filename: str) -> str:
        blob_path = build_blob_path(org_id=org_id, filename=filename)
        logger.info("Streaming file to Cloud Storage.", extra={"bucket": self.bucket_name, "blob": blob_path})

        try:
            blob = self.client.bucket(self.bucket_name).blob(blob_path, chunk_size=self.chunk_size)
            writer = await run_in_threadpool(blob.open, "wb", content_type="application/octet-stream")
        except STORAGE_ERRORS as exc:
            raise self._failed(blob_path) from exc

        written = 0
        try:
            async for chunk in stream:
                await run_in_threadpool(writer.write, chunk)
                written += len(chunk)
            await run_in_threadpool(writer.close)
        except Exception as exc:
            # Closing (or garbage collecting) the writer would commit the bytes
            # buffered so far; only terminate() discards the resumable session.
            await run_in_threadpool(self._abort, writer, blob_path)
            if isinstance(exc, STORAGE_ERRORS):
                raise self._failed(blob_path) from exc
            raise
        except BaseException:
            self._abort(writer, blob_path)
            raise

        logger.info(
            "Upload stored.",
            extra={"gcs_uri": f"gs://{self.bucket_name}/{blob_path}", "bytes_written": written},
        )
        return filename

    @staticmethod
    def _failed(blob_path: str) -> StorageError:
        logger.exception("Failed to upload to Cloud Storage.", extra={"blob": blob_path})
        return StorageError(detail={"blob_path": blob_path})

    @staticmethod
    def _abort(writer: Any, blob_path: str) -> None:
        logger.warning("Discarding partial upload.", extra={"blob": blob_path})
        try:
            writer.terminate()
        except STORAGE_ERRORS:
            logger.warning("Failed to cancel resumable upload.", extra={"blob": blob_path}, exc_info=True)


def build_blob_path(*, org_id: UUID, filename: Optional[str]) -> str:
    safe_filename = (filename or "upload").replace("/", "_") or "upload"
    today = datetime.now(timezone.utc)
    return f"{org_id}/{today:%Y/%m/%d}/{uuid4().hex}-{safe_filename}"
