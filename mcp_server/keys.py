"""
Signing keys published at the Authorization Server's jwks_uri, cached by kid.
Keys are kept for the process lifetime; a kid miss (or a set older than max_age) triggers one refetch,
shared by all concurrent callers. Misses inside the cooldown window fail without fetching.
"""
import asyncio
import logging
import time

import httpx
import jwt
from jwt import PyJWK

logger = logging.getLogger(__name__)


class KeyResolutionError(Exception):
    """The kid could not be resolved to a verification key."""


def parse_jwks(data) -> dict[str, PyJWK]:
    """
    Build kid -> PyJWK from a JWKS document. Symmetric, encryption-only, kid-less
    and unparseable entries are skipped. Raises KeyResolutionError if nothing usable remains.
    """
    if not isinstance(data, dict) or not isinstance(data.get("keys"), list):
        raise KeyResolutionError("JWKS response does not contain a 'keys' array")
    keys: dict[str, PyJWK] = {}
    for entry in data["keys"]:
        if not isinstance(entry, dict):
            continue
        kid = entry.get("kid")
        if not kid:
            logger.debug("Skipping JWK without kid")
            continue
        if entry.get("kty") == "oct" or entry.get("use") == "enc":
            logger.debug("Skipping non-signing JWK kid=%s", kid)
            continue
        try:
            keys[kid] = PyJWK(entry)
        except (jwt.PyJWTError, ValueError, KeyError) as e:
            logger.debug("Skipping unusable JWK kid=%s: %s", kid, e)
    if not keys:
        raise KeyResolutionError("JWKS contains no usable signing keys")
    return keys


class KeyMaterialCache:
    """Lazily populated kid -> key mapping backed by a remote JWKS endpoint."""

    def __init__(self, jwks_uri: str, client: httpx.AsyncClient, max_age: float = 0, cooldown: float = 0):
        self.jwks_uri = jwks_uri
        self._client = client
        self._max_age = max_age
        self._cooldown = cooldown
        self._keys: dict[str, PyJWK] = {}
        self._fetched_at: float | None = None
        self._last_attempt: float | None = None
        self._pending: asyncio.Task | None = None

    @property
    def kids(self) -> frozenset[str]:
        return frozenset(self._keys)

    def _is_stale(self) -> bool:
        if self._fetched_at is None:
            return True
        return self._max_age > 0 and time.monotonic() - self._fetched_at > self._max_age

    def _cooling_down(self) -> bool:
        return (
            self._cooldown > 0
            and self._last_attempt is not None
            and time.monotonic() - self._last_attempt < self._cooldown
        )

    async def refresh(self) -> None:
        """Fetch the key set and replace the cached mapping. Raises KeyResolutionError."""
        self._last_attempt = time.monotonic()
        logger.info("Fetching JWKS from %s", self.jwks_uri)
        try:
            response = await self._client.get(self.jwks_uri)
        except httpx.HTTPError as e:
            raise KeyResolutionError(f"JWKS request failed: {e!r}") from e
        if not response.is_success:
            raise KeyResolutionError(f"JWKS request failed with status {response.status_code}")
        try:
            data = response.json()
        except ValueError as e:
            raise KeyResolutionError("JWKS response is not valid JSON") from e
        self._keys = parse_jwks(data)
        self._fetched_at = time.monotonic()
        logger.info("Loaded %d signing key(s) from JWKS", len(self._keys))

    async def _run_refresh(self) -> None:
        try:
            await self.refresh()
        finally:
            self._pending = None

    async def _shared_refresh(self) -> None:
        """Join the in-flight refresh or start one; every caller gets its result or error."""
        if self._pending is None:
            self._pending = asyncio.ensure_future(self._run_refresh())
        # Cancelling one waiter must not cancel the fetch others are awaiting
        await asyncio.shield(self._pending)

    async def resolve(self, kid: str) -> PyJWK:
        """
        Return the key for kid. A stale or never-loaded set is refetched; a miss on a fresh
        set refetches unless the last fetch started less than cooldown seconds ago.
        """
        if not self._is_stale():
            key = self._keys.get(kid)
            if key is not None:
                return key
            if self._pending is None and self._cooling_down():
                raise KeyResolutionError(f"No signing key found for kid '{kid}' (JWKS refetch cooling down)")
        await self._shared_refresh()
        key = self._keys.get(kid)
        if key is None:
            raise KeyResolutionError(f"No signing key found for kid '{kid}'")
        return key
