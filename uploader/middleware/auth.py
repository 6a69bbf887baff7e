from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import httpx
from fastapi import Request
from jose import JWTError, jwt
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from uploader.core.config import get_settings
from uploader.exception import AuthenticationRequiredError
from uploader.logger import get_logger, log_context

logger = get_logger(__name__)

PUBLIC_PATHS = frozenset({"/healthz"})


@dataclass
class AuthContext:
    """The authenticated caller of a request."""

    subject: str
    token: str = field(repr=False)
    email: Optional[str] = None
    raw_claims: Dict[str, Any] | None = field(default=None, repr=False)


def extract_token(principal: Optional[AuthContext]) -> str:
    """Return the raw bearer token the caller authenticated with."""
    if principal is None or not principal.token:
        raise AuthenticationRequiredError()
    return principal.token


def get_principal(request: Request) -> AuthContext:
    """FastAPI dependency resolving the caller set by ``BearerAuthMiddleware``."""
    principal = getattr(request.state, "auth_context", None)
    if principal is None:
        raise AuthenticationRequiredError()
    return principal


class JWKSClient:
    """Caches and serves the identity provider's token signing keys."""

    def __init__(self, jwks_url: str, cache_ttl_seconds: int = 600) -> None:
        self.jwks_url = jwks_url
        self.cache_ttl = timedelta(seconds=cache_ttl_seconds)
        self._jwks: Dict[str, Any] | None = None
        self._expiry = datetime.now(timezone.utc)
        self._lock = asyncio.Lock()

    async def get_key(self, kid: Optional[str]) -> Dict[str, Any]:
        await self._ensure_fresh_keys()
        assert self._jwks is not None
        keys = self._jwks.get("keys", [])
        if kid is None and len(keys) == 1:
            return keys[0]
        for key in keys:
            if key.get("kid") == kid:
                return key
        raise JWTError(f"No signing key found for kid {kid!r}.")

    async def _ensure_fresh_keys(self) -> None:
        async with self._lock:
            if self._jwks and datetime.now(timezone.utc) < self._expiry:
                return
            async with httpx.AsyncClient(timeout=5) as client:
                response = await client.get(self.jwks_url)
                response.raise_for_status()
                self._jwks = response.json()
                self._expiry = datetime.now(timezone.utc) + self.cache_ttl
                logger.info("Refreshed token signing keys.", extra={"jwks_url": self.jwks_url})


class BearerAuthMiddleware(BaseHTTPMiddleware):
    """Validates ``Authorization: bearer`` JWTs and sets ``request.state.auth_context``."""

    def __init__(self, app, *, enforce_auth: Optional[bool] = None) -> None:  # type: ignore[override]
        super().__init__(app)
        self.settings = get_settings()
        self.enforce_auth = self.settings.auth.required if enforce_auth is None else enforce_auth
        self.jwks_client = JWKSClient(
            self.settings.auth.jwks_url,
            cache_ttl_seconds=self.settings.auth.jwks_cache_ttl_seconds,
        )

    async def dispatch(self, request: Request, call_next):
        if request.url.path in PUBLIC_PATHS:
            return await call_next(request)

        token = self._extract_token(request)
        if not token:
            if self.enforce_auth:
                return JSONResponse({"error": "authorization_required"}, status_code=401)
            return await call_next(request)

        try:
            claims = await self._decode_token(token)
        except (JWTError, httpx.HTTPError) as exc:
            logger.warning("Failed to validate bearer token: %s", exc)
            if self.enforce_auth:
                return JSONResponse({"error": "invalid_token"}, status_code=401)
            return await call_next(request)

        auth_context = AuthContext(
            subject=str(claims.get("user_id") or claims.get("sub")),
            token=token,
            email=claims.get("email"),
            raw_claims=claims,
        )
        request.state.auth_context = auth_context
        with log_context(subject=auth_context.subject):
            return await call_next(request)

    def _extract_token(self, request: Request) -> Optional[str]:
        header = request.headers.get("Authorization")
        if not header:
            return None
        scheme, _, value = header.partition(" ")
        if scheme.lower() != "bearer":
            return None
        return value.strip() or None

    async def _decode_token(self, token: str) -> Dict[str, Any]:
        headers = jwt.get_unverified_header(token)
        key = await self.jwks_client.get_key(headers.get("kid"))
        audience = self.settings.auth.audience
        return jwt.decode(
            token,
            key,
            algorithms=[key.get("alg", "RS256")],
            audience=audience,
            options={"verify_aud": audience is not None},
        )
