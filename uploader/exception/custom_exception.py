"""
Exception hierarchy for the uploader.

Every error the service raises on purpose derives from ``AppException``. The
instance carries a stable error code, the HTTP status to answer with, an
optional structured ``detail`` payload and the log context that was active
when it was raised. ``register_exception_handlers`` turns them into JSON
responses so endpoints never build error bodies by hand.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from uploader.logger import get_context, get_logger


class AppException(Exception):
    """
    Base class for all uploader exceptions.

    Args:
        message: Human-readable error description.
        code: Stable error code that clients can depend on.
        status_code: HTTP status code returned to the caller.
        detail: Optional structured detail payload.
        context: Extra diagnostic values merged over the current log context.
        log_level: Level used when the exception is logged.
    """

    def __init__(
        self,
        message: str,
        *,
        code: str = "app_error",
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail: Optional[Dict[str, Any]] = None,
        context: Optional[Dict[str, Any]] = None,
        log_level: str = "ERROR",
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.detail = detail
        self.context = {
            key: value
            for key, value in {**get_context(), **(context or {})}.items()
            if value is not None
        }
        self.log_level = log_level.upper()

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.detail is not None:
            payload["detail"] = self.detail
        if self.context:
            payload["context"] = self.context
        return payload

    def log(self, logger: Optional[logging.Logger] = None) -> "AppException":
        logger = logger or get_logger(__name__)
        extra: Dict[str, Any] = {
            "error_code": self.code,
            "status_code": self.status_code,
            **self.context,
        }
        if self.detail is not None:
            extra["error_detail"] = self.detail
        logger.log(getattr(logging, self.log_level, logging.ERROR), self.message, extra=extra)
        return self

    def enrich(self, **context: Any) -> "AppException":
        """Add context values that were not known where the error was raised."""
        self.context.update({key: value for key, value in context.items() if value is not None})
        return self


class ClientException(AppException):
    """4xx-class errors caused by the request."""

    def __init__(
        self,
        message: str,
        *,
        code: str = "client_error",
        status_code: int = status.HTTP_400_BAD_REQUEST,
        log_level: str = "WARNING",
        **kwargs: Any,
    ) -> None:
        super().__init__(message, code=code, status_code=status_code, log_level=log_level, **kwargs)


class ServerException(AppException):
    """5xx-class errors caused by the service or its collaborators."""

    def __init__(
        self,
        message: str,
        *,
        code: str = "server_error",
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        log_level: str = "ERROR",
        **kwargs: Any,
    ) -> None:
        super().__init__(message, code=code, status_code=status_code, log_level=log_level, **kwargs)


class InvalidRequestError(ClientException):
    """The request cannot be processed as an upload, e.g. it is not multipart."""

    def __init__(self, message: str = "No multipart content", **kwargs: Any) -> None:
        super().__init__(message, code="invalid_request", **kwargs)


class MultipartParseError(ClientException):
    """The multipart body is malformed or truncated."""

    def __init__(self, message: str = "Malformed multipart body", **kwargs: Any) -> None:
        super().__init__(message, code="malformed_multipart", **kwargs)


class AuthenticationRequiredError(ClientException):
    def __init__(self, message: str = "Authorization required", **kwargs: Any) -> None:
        super().__init__(
            message,
            code="authorization_required",
            status_code=status.HTTP_401_UNAUTHORIZED,
            **kwargs,
        )


class AccessDeniedError(ClientException):
    def __init__(
        self,
        message: str = "You do not have access to requested organization.",
        **kwargs: Any,
    ) -> None:
        super().__init__(
            message,
            code="access_denied",
            status_code=status.HTTP_403_FORBIDDEN,
            **kwargs,
        )


class StorageError(ServerException):
    def __init__(self, message: str = "Unable to store uploaded file.", **kwargs: Any) -> None:
        super().__init__(message, code="storage_upload_failed", **kwargs)


class PermissionServiceError(ServerException):
    def __init__(self, message: str = "Unable to verify organization access.", **kwargs: Any) -> None:
        super().__init__(message, code="permission_check_failed", **kwargs)


class NotificationError(ServerException):
    def __init__(
        self,
        message: str = "Unable to notify data acquisition service.",
        **kwargs: Any,
    ) -> None:
        super().__init__(message, code="notification_failed", **kwargs)


def register_exception_handlers(app: FastAPI) -> None:
    """Log every ``AppException`` and answer with its JSON representation."""

    @app.exception_handler(AppException)
    async def _handle_app_exception(request: Request, exc: AppException):
        exc.enrich(path=str(request.url.path), method=request.method)
        exc.log()
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())
