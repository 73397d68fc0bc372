import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any

import httpx
from jose import JWTError, jwt

from filestore.core.config import TokenValidationSettings

logger = logging.getLogger(__name__)

OPENID_CONFIGURATION_PATH = "/.well-known/openid-configuration"


class TokenError(Exception):
    """Raised when token validation fails."""


class InsufficientScopeError(TokenError):
    """Raised when a valid token lacks every allowed scope."""


class KeySourceUnavailable(Exception):
    """Raised when the identity provider's signing keys cannot be loaded."""


@dataclass(frozen=True)
class Principal:
    subject: str | None
    client_id: str | None
    scopes: frozenset[str]
    claims: dict[str, Any] = field(repr=False)


def _scopes_from_claims(claims: dict[str, Any]) -> frozenset[str]:
    raw = claims.get("scope")
    if raw is None:
        return frozenset()
    if isinstance(raw, str):
        return frozenset(raw.split())
    if isinstance(raw, (list, tuple)):
        return frozenset(str(item) for item in raw)
    raise TokenError("Invalid scope claim")


class JwksCache:
    """Fetches and caches the identity provider's signing keys."""

    def __init__(
        self,
        jwks_url: str | None = None,
        authority: str | None = None,
        ttl_seconds: int = 3600,
        *,
        min_refresh_seconds: float = 30.0,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not jwks_url and not authority:
            raise ValueError("Either jwks_url or authority is required")
        self.jwks_url = jwks_url
        self.authority = authority.rstrip("/") if authority else None
        self.ttl_seconds = ttl_seconds
        self.min_refresh_seconds = min_refresh_seconds
        self._timeout = timeout
        self._transport = transport
        self._keys: dict[str, Any] | None = None
        self._fetched_at = 0.0
        self._lock = asyncio.Lock()

    def _is_fresh(self) -> bool:
        return self._keys is not None and time.monotonic() - self._fetched_at < self.ttl_seconds

    def _may_refresh(self) -> bool:
        return self._keys is None or time.monotonic() - self._fetched_at >= self.min_refresh_seconds

    async def get_keys(self, *, force: bool = False) -> dict[str, Any]:
        """Return the cached key set, fetching it when stale.

        ``force`` refetches a fresh key set, for tokens signed with a key the
        cache has not seen yet. Forced refetches happen at most once per
        ``min_refresh_seconds``.
        """
        if self._is_fresh() and not (force and self._may_refresh()):
            return self._keys  # type: ignore[return-value]
        async with self._lock:
            stale = not self._is_fresh()
            if stale or (force and self._may_refresh()):
                self._keys = await self._fetch()
                self._fetched_at = time.monotonic()
        return self._keys  # type: ignore[return-value]

    def has_key(self, kid: str) -> bool:
        keys = (self._keys or {}).get("keys", [])
        return any(isinstance(key, dict) and key.get("kid") == kid for key in keys)

    async def _fetch(self) -> dict[str, Any]:
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            try:
                url = self.jwks_url or await self._discover_jwks_url(client)
                response = await client.get(url)
                response.raise_for_status()
                document = response.json()
            except (httpx.HTTPError, ValueError) as exc:
                logger.error("Identity provider signing keys unavailable: %s", exc)
                raise KeySourceUnavailable("Signing keys unavailable") from exc
        if not isinstance(document, dict) or not isinstance(document.get("keys"), list):
            logger.error("Identity provider returned a malformed JWKS document from %s", url)
            raise KeySourceUnavailable("Malformed JWKS document")
        logger.info("Loaded %d signing keys from %s", len(document["keys"]), url)
        return document

    async def _discover_jwks_url(self, client: httpx.AsyncClient) -> str:
        response = await client.get(f"{self.authority}{OPENID_CONFIGURATION_PATH}")
        response.raise_for_status()
        jwks_uri = response.json().get("jwks_uri")
        if not jwks_uri:
            logger.error("Identity provider at %s does not publish jwks_uri", self.authority)
            raise KeySourceUnavailable("Identity provider does not publish jwks_uri")
        self.jwks_url = jwks_uri
        return jwks_uri


class TokenValidator:
    def __init__(self, config: TokenValidationSettings, jwks: JwksCache | None = None) -> None:
        self.config = config
        if jwks is None and config.validate_signature and not config.signing_key:
            if config.jwks_url or config.authority:
                jwks = JwksCache(
                    jwks_url=config.jwks_url,
                    authority=config.authority,
                    ttl_seconds=config.jwks_cache_seconds,
                    min_refresh_seconds=config.jwks_min_refresh_seconds,
                )
            else:
                raise ValueError(
                    "Signature validation requires AUTH_SIGNING_KEY, AUTH_JWKS_URL or AUTH_AUTHORITY"
                )
        self.jwks = jwks
        if not config.validate_signature:
            logger.warning("Bearer token signature validation is DISABLED")
        if not config.validate_issuer:
            logger.warning("Bearer token issuer validation is DISABLED")

    async def _signing_key(self, token: str) -> Any:
        if not self.config.validate_signature:
            return ""
        if self.config.signing_key:
            return self.config.signing_key
        jwks: JwksCache = self.jwks  # type: ignore[assignment]
        keys = await jwks.get_keys()
        try:
            kid = jwt.get_unverified_header(token).get("kid")
        except JWTError as exc:
            raise TokenError("Invalid token") from exc
        if kid and not jwks.has_key(kid):
            logger.info("Unknown signing key %r, refreshing key set", kid)
            keys = await jwks.get_keys(force=True)
        return keys

    def _check_issuer(self, claims: dict[str, Any]) -> None:
        if not self.config.validate_issuer:
            return
        if claims.get("iss") not in self.config.allowed_issuers:
            raise TokenError("Invalid token issuer")

    def _check_scope(self, scopes: frozenset[str]) -> None:
        if not self.config.validate_scope:
            return
        allowed = self.config.allowed_scopes
        if not scopes:
            raise InsufficientScopeError("Token has no scope claim")
        if allowed and scopes.isdisjoint(allowed):
            raise InsufficientScopeError("Token scope not allowed")

    async def validate(self, token: str) -> Principal:
        cfg = self.config
        options = {
            "verify_signature": cfg.validate_signature,
            "verify_aud": cfg.validate_audience,
            "verify_iss": False,
            "verify_exp": cfg.validate_lifetime,
            "verify_nbf": cfg.validate_lifetime,
            "verify_iat": cfg.validate_lifetime,
            "require_exp": cfg.validate_lifetime,
            "leeway": cfg.leeway_seconds,
        }
        key = await self._signing_key(token)
        try:
            claims = jwt.decode(
                token,
                key,
                algorithms=cfg.algorithms,
                audience=cfg.audience if cfg.validate_audience else None,
                options=options,
            )
        except JWTError as exc:
            raise TokenError("Invalid token") from exc

        self._check_issuer(claims)
        scopes = _scopes_from_claims(claims)
        self._check_scope(scopes)
        return Principal(
            subject=claims.get("sub"),
            client_id=claims.get("client_id"),
            scopes=scopes,
            claims=claims,
        )
