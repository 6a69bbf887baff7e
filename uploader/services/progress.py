from __future__ import annotations

from uploader.logger import get_logger

logger = get_logger(__name__)


class UploadProgressListener:
    """Logs how much of a request body has been read, once per interval."""

    def __init__(self, interval_bytes: int) -> None:
        if interval_bytes <= 0:
            raise ValueError("interval_bytes must be positive")
        self.interval_bytes = interval_bytes
        self.bytes_read = 0
        self._next_report = interval_bytes

    def update(self, count: int) -> None:
        self.bytes_read += count
        if self.bytes_read < self._next_report:
            return
        logger.info("Upload in progress.", extra={"bytes_read": self.bytes_read})
        self._next_report = (self.bytes_read // self.interval_bytes + 1) * self.interval_bytes

    def finish(self) -> None:
        logger.info("Request body fully read.", extra={"bytes_read": self.bytes_read})
