"""
Bearer token authentication and tenant resolution.

Every field-assistant request needs a bearer token. A TokenResolver maps the
token to an AuthContext (tenant, user, subscription tier). A missing or
unknown token is a 401.

Usage:
    Set API_KEY in .env:  API_KEY=your-secret-key
    Clients pass:         Authorization: Bearer your-secret-key

    DEFAULT_TENANT_ID, DEFAULT_TENANT_TIER and DEFAULT_TENANT_COUNTRY describe
    the tenant that API_KEY belongs to. Multi-tenant deployments install their
    own resolver on app.state.token_resolver.

Security:
    - In production (ENV=production), API_KEY is REQUIRED unless a custom
      resolver is installed. Startup will FAIL if it's missing.
    - API key comparison uses constant-time hmac.compare_digest (no timing attack).
"""

import hashlib
import hmac
import logging
import os
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from fastapi import Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ...errors import Unauthorized

logger = logging.getLogger(__name__)

security_scheme = HTTPBearer(auto_error=False)


@dataclass
class AuthContext:
    """Authentication context propagated to the field-assistant route.

    Attributes:
        user_id: Short identifier derived from SHA-256 hash of the token (16 hex chars).
        tenant_id: Tenant the token belongs to.
        tier: Subscription tier, drives the daily query quota.
        country: Tenant country code, the fallback jurisdiction for code questions.
    """

    user_id: str
    tenant_id: str
    tier: str = "trial"
    country: str = "US"


@runtime_checkable
class TokenResolver(Protocol):
    """Maps a bearer token to an AuthContext, or None if the token is unknown."""

    def resolve(self, token: str) -> AuthContext | None: ...


def user_id_for(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()[:16]


class ApiKeyResolver:
    """Static table of API keys, each bound to one tenant."""

    def __init__(self, keys: dict[str, AuthContext] | None = None):
        self._keys = dict(keys or {})

    def add(self, api_key: str, tenant_id: str, tier: str = "trial", country: str = "US") -> None:
        self._keys[api_key] = AuthContext(
            user_id=user_id_for(api_key), tenant_id=tenant_id, tier=tier, country=country
        )

    def resolve(self, token: str) -> AuthContext | None:
        for key, context in self._keys.items():
            if hmac.compare_digest(token.encode(), key.encode()):
                return context
        return None

    @classmethod
    def from_env(cls) -> "ApiKeyResolver":
        """Resolver holding API_KEY for DEFAULT_TENANT_ID (empty if API_KEY is unset)."""
        resolver = cls()
        api_key = get_api_key()
        if api_key:
            resolver.add(
                api_key,
                tenant_id=os.environ.get("DEFAULT_TENANT_ID", "default"),
                tier=os.environ.get("DEFAULT_TENANT_TIER", "trial").strip().lower(),
                country=os.environ.get("DEFAULT_TENANT_COUNTRY", "US").strip().upper(),
            )
        return resolver


def get_api_key() -> str | None:
    """Load API key from environment."""
    return os.environ.get("API_KEY", "").strip() or None


def _is_production() -> bool:
    """Check if running in production mode."""
    env = os.environ.get("ENV", os.environ.get("ENVIRONMENT", "development"))
    return env.lower() in ("production", "prod", "staging")


def check_production_auth(custom_resolver: bool = False) -> None:
    """
    Call on startup to verify auth is configured in production.

    In production mode RAISES RuntimeError if API_KEY is not set and no
    custom resolver was supplied. In development it only logs a warning.
    """
    if custom_resolver or get_api_key() is not None:
        return
    if _is_production():
        raise RuntimeError(
            "API_KEY is required in production mode. "
            "Set API_KEY in .env or environment variables, "
            "or install a TokenResolver."
        )
    logger.warning("[Auth] No API_KEY set (dev mode). Every request will be rejected with 401.")


async def verify_api_key(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Security(security_scheme),
) -> AuthContext:
    """
    Resolve the bearer token into an AuthContext.

    Raises:
        Unauthorized: missing or unknown token.
    """
    client_host = request.client.host if request.client else "unknown"
    if credentials is None or not credentials.credentials:
        logger.warning(f"[Auth] Missing credentials from {client_host}")
        raise Unauthorized("Unauthorized")

    resolver: TokenResolver = request.app.state.token_resolver
    context = resolver.resolve(credentials.credentials)
    if context is None:
        logger.warning(f"[Auth] Unknown token from {client_host}")
        raise Unauthorized("Unauthorized")
    return context
