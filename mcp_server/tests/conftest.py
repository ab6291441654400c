"""
Shared fixtures for mcp_server tests: signing keys, token minting, and a fake
Authorization Server served through httpx.MockTransport.
"""
import json
import time

import httpx
import jwt
import pytest
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.asymmetric.rsa import generate_private_key
from fastapi.testclient import TestClient

from mcp_server.authorizer import Authorizer
from mcp_server.main import create_app

ISSUER = "https://idp.example"
DISCOVERY_URL = f"{ISSUER}/.well-known/openid-configuration"
JWKS_URI = f"{ISSUER}/keys"
RESOURCE_ID = "https://api.example"
SCOPES = ["mcp:read", "mcp:write", "profile"]
KID = "test-key"


def _int_to_b64url(value: int) -> str:
    """Encode a positive int as base64url (JWK n/e)."""
    length = (value.bit_length() + 7) // 8
    s = jwt.utils.base64url_encode(value.to_bytes(length, "big"))
    return s.decode("utf-8") if isinstance(s, bytes) else s


def rsa_jwk(key, kid: str = KID) -> dict:
    pub = key.public_key().public_numbers()
    return {
        "kty": "RSA",
        "kid": kid,
        "alg": "RS256",
        "use": "sig",
        "n": _int_to_b64url(pub.n),
        "e": _int_to_b64url(pub.e),
    }


def ed25519_jwk(key, kid: str) -> dict:
    jwk = jwt.algorithms.OKPAlgorithm.to_jwk(key.public_key())
    jwk = json.loads(jwk) if isinstance(jwk, str) else dict(jwk)
    jwk["kid"] = kid
    return jwk


def make_token(key, *, kid=KID, algorithm="RS256", sub="user1", aud=RESOURCE_ID, iss=ISSUER, ttl=3600, **extra):
    """Build an access token; pass ttl < 0 for an expired one."""
    now = int(time.time())
    payload = {"sub": sub, "iss": iss, "aud": aud, "iat": now, "exp": now + ttl, "scope": "mcp:read"}
    payload.update(extra)
    headers = {"kid": kid} if kid is not None else None
    return jwt.encode(payload, key, algorithm=algorithm, headers=headers)


class FakeIdentityProvider:
    """Serves discovery and JWKS; records every URL requested."""

    def __init__(self, jwks: dict):
        self.jwks = jwks
        self.discovery = {
            "issuer": ISSUER,
            "jwks_uri": JWKS_URI,
            "authorization_endpoint": f"{ISSUER}/authorize",
            "token_endpoint": f"{ISSUER}/token",
        }
        self.discovery_status = 200
        self.jwks_status = 200
        self.fail_with: Exception | None = None
        self.requested: list[str] = []

    def count(self, url: str) -> int:
        return self.requested.count(url)

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requested.append(url)
        if self.fail_with is not None:
            raise self.fail_with
        if url == DISCOVERY_URL:
            if isinstance(self.discovery, str):
                return httpx.Response(self.discovery_status, text=self.discovery)
            return httpx.Response(self.discovery_status, json=self.discovery)
        if url == JWKS_URI:
            return httpx.Response(self.jwks_status, json=self.jwks)
        return httpx.Response(404)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture(scope="session")
def rsa_key():
    return generate_private_key(65537, 2048, default_backend())


@pytest.fixture(scope="session")
def ed_key():
    return Ed25519PrivateKey.generate()


@pytest.fixture
def idp(rsa_key):
    return FakeIdentityProvider({"keys": [rsa_jwk(rsa_key)]})


@pytest.fixture
def authorizer(idp):
    return Authorizer(
        idp.client(),
        discovery_url=DISCOVERY_URL,
        authorization_server=ISSUER,
        scopes=SCOPES,
        algorithms=["RS256", "EdDSA"],
        leeway=0,
        jwks_max_age=0,
    )


@pytest.fixture
def client(authorizer):
    """TestClient with lifespan (runs initialize) and Host api.example."""
    with TestClient(create_app(authorizer), base_url=RESOURCE_ID) as c:
        yield c
