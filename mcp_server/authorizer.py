"""
Authorization gate for the MCP resource server.
Owns the discovery metadata and the JWKS cache, and decides per request whether
the bearer token is valid for this resource. No token issuance here.
"""
import asyncio
import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

import httpx
import jwt

from mcp_server.config import (
    ALLOWED_ALGORITHMS,
    AUTHORIZATION_SERVER_URL,
    CLOCK_SKEW_SECONDS,
    DISCOVERY_URL,
    JWKS_COOLDOWN_SECONDS,
    JWKS_MAX_AGE_SECONDS,
    SUPPORTED_SCOPES,
)
from mcp_server.discovery import DiscoveryError, DiscoveryMetadata, fetch_discovery_metadata
from mcp_server.keys import KeyMaterialCache, KeyResolutionError

logger = logging.getLogger(__name__)

ERROR_SERVICE_UNAVAILABLE = "service_unavailable"
ERROR_UNAUTHORIZED = "unauthorized"
ERROR_INVALID_TOKEN = "invalid_token"

_BEARER_PREFIX = "Bearer "

# JWK kty each algorithm family verifies with
_KEY_TYPE_FOR_ALG_PREFIX = {"RS": "RSA", "PS": "RSA", "ES": "EC", "Ed": "OKP"}


class AuthorizerState(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    DEGRADED = "degraded"


@dataclass(frozen=True)
class AuthorizationError:
    """A failed authorization decision, ready to be rendered as an HTTP response."""

    status_code: int
    error: str
    error_description: str
    headers: Mapping[str, str] = field(default_factory=dict)

    def body(self) -> dict:
        return {"error": self.error, "error_description": self.error_description}


def service_unavailable(description: str) -> AuthorizationError:
    return AuthorizationError(503, ERROR_SERVICE_UNAVAILABLE, description)


def unauthorized(resource_id: str, authorization_server: str, scopes: list[str]) -> AuthorizationError:
    """401 for a missing or non-Bearer Authorization header, with the discovery challenge."""
    challenge = (
        f'Bearer realm="{resource_id}", '
        f'authorization_servers="{authorization_server}", '
        f'scopes="{" ".join(scopes)}"'
    )
    return AuthorizationError(
        401,
        ERROR_UNAUTHORIZED,
        "Authorization header is missing or invalid. Initiate OAuth flow.",
        headers={"WWW-Authenticate": challenge},
    )


def invalid_token(reason: str, resource_id: str) -> AuthorizationError:
    return AuthorizationError(
        401,
        ERROR_INVALID_TOKEN,
        f"JWT verification failed: {reason}",
        headers={"WWW-Authenticate": f'Bearer realm="{resource_id}", error="{ERROR_INVALID_TOKEN}"'},
    )


def resource_id_for_host(host: str | None) -> str:
    """This server's resource identifier (token audience and challenge realm)."""
    return f"https://{host or ''}"


@dataclass(frozen=True)
class _Ready:
    # Published as one object so readers never see metadata without its key cache
    metadata: DiscoveryMetadata
    key_cache: KeyMaterialCache


class Authorizer:
    """
    Process-wide auth context. Create once at startup, call initialize(), then
    share with request handlers (stored on app.state).
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        discovery_url: str = DISCOVERY_URL,
        authorization_server: str = AUTHORIZATION_SERVER_URL,
        scopes: list[str] | None = None,
        algorithms: list[str] | None = None,
        leeway: int = CLOCK_SKEW_SECONDS,
        jwks_max_age: float = JWKS_MAX_AGE_SECONDS,
        jwks_cooldown: float = JWKS_COOLDOWN_SECONDS,
    ):
        self._client = client
        self.discovery_url = discovery_url
        self.authorization_server = authorization_server
        self.scopes = list(SUPPORTED_SCOPES if scopes is None else scopes)
        self.algorithms = list(ALLOWED_ALGORITHMS if algorithms is None else algorithms)
        self.leeway = leeway
        self._jwks_max_age = jwks_max_age
        self._jwks_cooldown = jwks_cooldown
        self._ready: _Ready | None = None
        self._state = AuthorizerState.UNINITIALIZED
        self._init_lock = asyncio.Lock()

    @property
    def state(self) -> AuthorizerState:
        return self._state

    @property
    def metadata(self) -> DiscoveryMetadata | None:
        return self._ready.metadata if self._ready else None

    @property
    def key_cache(self) -> KeyMaterialCache | None:
        return self._ready.key_cache if self._ready else None

    async def initialize(self) -> None:
        """
        Fetch discovery metadata and set up the JWKS cache. Safe to call more than once:
        a ready authorizer is left alone, and a degraded one stays degraded until restart.
        Failures are logged, never raised; requests then get 503 from the readiness check.
        """
        if self._state is not AuthorizerState.UNINITIALIZED:
            return
        async with self._init_lock:
            if self._state is not AuthorizerState.UNINITIALIZED:
                return
            try:
                metadata = await fetch_discovery_metadata(self._client, self.discovery_url)
            except DiscoveryError as e:
                logger.error("Failed to initialize auth metadata from %s: %s", self.discovery_url, e)
                self._state = AuthorizerState.DEGRADED
                return
            key_cache = KeyMaterialCache(
                metadata.jwks_uri, self._client, max_age=self._jwks_max_age, cooldown=self._jwks_cooldown
            )
            self._ready = _Ready(metadata=metadata, key_cache=key_cache)
            self._state = AuthorizerState.READY
            logger.info("Auth metadata initialized. issuer=%s jwks_uri=%s", metadata.issuer, metadata.jwks_uri)

    def is_ready(self) -> bool:
        return self._ready is not None

    def check_readiness(self) -> AuthorizationError | None:
        """503 if discovery metadata was never established, else None."""
        if self.is_ready():
            return None
        logger.error("Dependency check failed: auth metadata is not initialized (state=%s)", self._state.value)
        return service_unavailable(
            "Critical Auth metadata dependency not initialized. Check server logs for failed fetch from AS."
        )

    @staticmethod
    def extract_bearer_token(headers: Mapping[str, str]) -> str | None:
        """Token from 'Authorization: Bearer <token>', or None if absent or another scheme."""
        auth_header = headers.get("authorization")
        if not auth_header or not auth_header.startswith(_BEARER_PREFIX):
            return None
        return auth_header[len(_BEARER_PREFIX):].strip()

    async def verify_token(self, token: str, resource_id: str) -> dict[str, Any]:
        """
        Verify signature (allow-listed asymmetric alg, key by kid), iss, aud, exp/nbf.
        Raises KeyResolutionError or jwt.PyJWTError.
        """
        ready = self._ready
        if ready is None:
            raise RuntimeError("verify_token called before initialize() succeeded")
        header = jwt.get_unverified_header(token)
        alg = header.get("alg")
        if alg not in self.algorithms:
            raise jwt.InvalidAlgorithmError(f"Signing algorithm '{alg}' is not allowed")
        kid = header.get("kid")
        if not kid or not isinstance(kid, str):
            raise KeyResolutionError("Token header has no 'kid'")
        signing_key = await ready.key_cache.resolve(kid)
        if signing_key.key_type != _KEY_TYPE_FOR_ALG_PREFIX.get(alg[:2]):
            raise jwt.InvalidAlgorithmError(f"Key '{kid}' cannot verify {alg} tokens")
        return jwt.decode(
            token,
            signing_key.key,
            algorithms=[alg],
            audience=resource_id,
            issuer=ready.metadata.issuer,
            leeway=self.leeway,
            options={"require": ["exp", "iss", "aud", "sub"]},
        )

    async def protect(self, headers: Mapping[str, str], resource_id: str) -> dict[str, Any] | AuthorizationError:
        """
        Authorization decision for one request: verified claims, or the error to send back.
        headers must support case-insensitive lookup (Starlette Headers does).
        """
        not_ready = self.check_readiness()
        if not_ready is not None:
            return not_ready

        token = self.extract_bearer_token(headers)
        if token is None:
            return unauthorized(resource_id, self.authorization_server, self.scopes)

        try:
            return await self.verify_token(token, resource_id)
        except (KeyResolutionError, jwt.PyJWTError) as e:
            logger.warning("JWT verification failed: %s", e)
            return invalid_token(str(e), resource_id)
