"""
Pytest configuration and common fixtures for the uploader tests.
"""

from unittest.mock import AsyncMock
from uuid import UUID

import pytest

from helpers import RecordingStorage
from uploader.middleware import AuthContext
from uploader.services.upload_handler import UploadHandler


@pytest.fixture
def org_id() -> UUID:
    return UUID("6f0e7a4c-2b1d-4c55-9a3e-0d8f4b9c1e21")


@pytest.fixture
def principal() -> AuthContext:
    return AuthContext(subject="user-1", token="jwt-token", email="alice@example.com")


@pytest.fixture
def storage() -> RecordingStorage:
    return RecordingStorage()


@pytest.fixture
def permission_verifier() -> AsyncMock:
    verifier = AsyncMock()
    verifier.is_org_accessible = AsyncMock(return_value=True)
    return verifier


@pytest.fixture
def notification_client() -> AsyncMock:
    client = AsyncMock()
    client.upload_completed = AsyncMock(return_value=None)
    return client


@pytest.fixture
def upload_handler(storage, permission_verifier, notification_client) -> UploadHandler:
    return UploadHandler(
        storage=storage,
        permission_verifier=permission_verifier,
        notification_client=notification_client,
    )


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests that run the full ASGI application"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
