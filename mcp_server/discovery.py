"""
OIDC discovery document for the external Authorization Server.
Fetched once at startup; the Authorizer owns when and how often.
"""
import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

import httpx

logger = logging.getLogger(__name__)


class DiscoveryError(Exception):
    """Discovery document could not be fetched or is missing required fields."""


@dataclass(frozen=True)
class DiscoveryMetadata:
    issuer: str
    jwks_uri: str
    document: Mapping[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_document(cls, doc: Any) -> "DiscoveryMetadata":
        if not isinstance(doc, dict):
            raise DiscoveryError("Discovery metadata is not a JSON object.")
        jwks_uri = doc.get("jwks_uri")
        if not isinstance(jwks_uri, str) or not jwks_uri:
            raise DiscoveryError("Discovery metadata is missing 'jwks_uri'.")
        issuer = doc.get("issuer")
        if not isinstance(issuer, str) or not issuer:
            raise DiscoveryError("Discovery metadata is missing 'issuer'.")
        return cls(issuer=issuer, jwks_uri=jwks_uri, document=MappingProxyType(dict(doc)))


async def fetch_discovery_metadata(client: httpx.AsyncClient, url: str) -> DiscoveryMetadata:
    """GET the discovery document and validate it. Raises DiscoveryError on any failure."""
    logger.info("Fetching OIDC discovery from %s", url)
    try:
        response = await client.get(url)
    except httpx.HTTPError as e:
        raise DiscoveryError(f"Discovery request failed: {e!r}") from e
    if not response.is_success:
        raise DiscoveryError(f"HTTP error! status: {response.status_code}")
    try:
        doc = response.json()
    except ValueError as e:
        raise DiscoveryError("Discovery response is not valid JSON.") from e
    return DiscoveryMetadata.from_document(doc)
