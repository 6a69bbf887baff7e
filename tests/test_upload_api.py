"""
Integration tests for ``POST /rest/upload/{orgGuid}`` through the ASGI app.
"""

import base64
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from helpers import MULTIPART_CONTENT_TYPE, encode_multipart, field, file_part
from uploader.api.v1.endpoints.upload import get_upload_handler
from uploader.core.config import get_settings
from uploader.exception import NotificationError
from uploader.main import create_application
from uploader.middleware import get_principal
from uploader.middleware.auth import JWKSClient

pytestmark = pytest.mark.integration

SIGNING_SECRET = b"uploader-test-signing-secret-0123456789"
SIGNING_KEY = {
    "kty": "oct",
    "kid": "test-key",
    "alg": "HS256",
    "k": base64.urlsafe_b64encode(SIGNING_SECRET).rstrip(b"=").decode(),
}


@pytest.fixture
def settings_env(monkeypatch):
    def apply(auth_required: bool):
        monkeypatch.setenv("UPLOADER_AUTH__REQUIRED", "true" if auth_required else "false")
        get_settings.cache_clear()

    yield apply
    get_settings.cache_clear()


@pytest.fixture
def client(settings_env, upload_handler, principal):
    settings_env(auth_required=False)
    app = create_application()
    app.dependency_overrides[get_upload_handler] = lambda: upload_handler
    app.dependency_overrides[get_principal] = lambda: principal
    with TestClient(app) as test_client:
        yield test_client


def post_upload(client, org_id, body, content_type=MULTIPART_CONTENT_TYPE):
    return client.post(f"/rest/upload/{org_id}", content=body, headers={"Content-Type": content_type})


class TestUploadEndpoint:
    def test_created_with_completion_message(self, client, org_id, storage, notification_client):
        body = encode_multipart([field("owner", "alice"), file_part("file", "data.csv", b"a,b\n")])

        response = post_upload(client, org_id, body)

        assert response.status_code == 201
        assert response.json() == {"source": "data.csv", "properties": {"owner": "alice"}}
        assert storage.calls == [(org_id, "data.csv", b"a,b\n")]
        message, token = notification_client.upload_completed.await_args.args
        assert message.model_dump(mode="json") == response.json()
        assert token == "bearer jwt-token"

    def test_duplicate_fields_keep_last_value(self, client, org_id):
        body = encode_multipart([field("tag", "a"), field("tag", "b")])

        response = post_upload(client, org_id, body)

        assert response.status_code == 201
        assert response.json() == {"source": None, "properties": {"tag": "b"}}

    def test_non_multipart_is_bad_request(self, client, org_id, permission_verifier):
        response = client.post(f"/rest/upload/{org_id}", json={"owner": "alice"})

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_request"
        permission_verifier.is_org_accessible.assert_not_awaited()

    def test_malformed_multipart_is_bad_request(self, client, org_id, notification_client):
        body = encode_multipart([field("owner", "alice")])[:-12]

        response = post_upload(client, org_id, body)

        assert response.status_code == 400
        assert response.json()["error"] == "malformed_multipart"
        notification_client.upload_completed.assert_not_awaited()

    def test_denied_org_is_forbidden(self, client, org_id, permission_verifier, storage, notification_client):
        permission_verifier.is_org_accessible.return_value = False
        body = encode_multipart([file_part("file", "data.csv", b"1")])

        response = post_upload(client, org_id, body)

        assert response.status_code == 403
        assert response.json()["error"] == "access_denied"
        assert response.json()["context"]["org_id"] == str(org_id)
        assert storage.calls == []
        notification_client.upload_completed.assert_not_awaited()

    def test_failed_notification_is_server_error(self, client, org_id, notification_client):
        notification_client.upload_completed.side_effect = NotificationError()
        body = encode_multipart([file_part("file", "data.csv", b"1")])

        response = post_upload(client, org_id, body)

        assert response.status_code == 500
        assert response.json()["error"] == "notification_failed"

    def test_org_guid_must_be_a_uuid(self, client):
        response = post_upload(client, "not-a-uuid", encode_multipart([field("a", "1")]))

        assert response.status_code == 422

    def test_healthcheck(self, client):
        response = client.get("/healthz")

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}


class TestUploadAuthentication:
    @pytest.fixture
    def secured_client(self, settings_env, upload_handler, monkeypatch):
        settings_env(auth_required=True)
        monkeypatch.setattr(JWKSClient, "get_key", AsyncMock(return_value=SIGNING_KEY))
        app = create_application()
        app.dependency_overrides[get_upload_handler] = lambda: upload_handler
        with TestClient(app) as test_client:
            yield test_client

    def test_missing_token_is_unauthorized(self, secured_client, org_id, storage):
        response = post_upload(secured_client, org_id, encode_multipart([field("a", "1")]))

        assert response.status_code == 401
        assert storage.calls == []

    def test_invalid_token_is_unauthorized(self, secured_client, org_id):
        response = secured_client.post(
            f"/rest/upload/{org_id}",
            content=encode_multipart([field("a", "1")]),
            headers={"Content-Type": MULTIPART_CONTENT_TYPE, "Authorization": "Bearer not-a-jwt"},
        )

        assert response.status_code == 401

    def test_valid_token_is_forwarded(self, secured_client, org_id, permission_verifier, notification_client):
        token = jwt.encode(
            {"sub": "user-42", "email": "bob@example.com"},
            SIGNING_KEY,
            algorithm="HS256",
            headers={"kid": "test-key"},
        )

        response = secured_client.post(
            f"/rest/upload/{org_id}",
            content=encode_multipart([field("owner", "bob")]),
            headers={"Content-Type": MULTIPART_CONTENT_TYPE, "Authorization": f"Bearer {token}"},
        )

        assert response.status_code == 201
        checked_org, principal = permission_verifier.is_org_accessible.await_args.args
        assert checked_org == org_id
        assert principal.subject == "user-42"
        assert principal.token == token
        _, forwarded = notification_client.upload_completed.await_args.args
        assert forwarded == f"bearer {token}"

    def test_healthcheck_needs_no_token(self, secured_client):
        assert secured_client.get("/healthz").status_code == 200
