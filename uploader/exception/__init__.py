"""Uploader exception types."""

from .custom_exception import (
    AccessDeniedError,
    AppException,
    AuthenticationRequiredError,
    ClientException,
    InvalidRequestError,
    MultipartParseError,
    NotificationError,
    PermissionServiceError,
    ServerException,
    StorageError,
    register_exception_handlers,
)

__all__ = [
    "AccessDeniedError",
    "AppException",
    "AuthenticationRequiredError",
    "ClientException",
    "InvalidRequestError",
    "MultipartParseError",
    "NotificationError",
    "PermissionServiceError",
    "ServerException",
    "StorageError",
    "register_exception_handlers",
]
