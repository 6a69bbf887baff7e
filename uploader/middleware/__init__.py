"""Middleware utilities for the application."""

from .auth import AuthContext, BearerAuthMiddleware, extract_token, get_principal

__all__ = ["AuthContext", "BearerAuthMiddleware", "extract_token", "get_principal"]
