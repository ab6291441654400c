"""
MCP resource server configuration.
Issuer location, scopes and algorithms are public identifiers, not secrets.
"""
import logging
import os

logger = logging.getLogger(__name__)

# Authorization Server (external OIDC provider): advertised to clients in challenges and metadata
AUTHORIZATION_SERVER_URL = os.environ.get(
    "MCP_AUTHORIZATION_SERVER_URL", "https://login.adventuresindevops.com"
).rstrip("/")

# Where the AS publishes its discovery document (issuer + jwks_uri)
DISCOVERY_URL = os.environ.get(
    "MCP_DISCOVERY_URL", f"{AUTHORIZATION_SERVER_URL}/.well-known/openid-configuration"
)

# Scopes advertised in WWW-Authenticate and protected resource metadata
SUPPORTED_SCOPES = os.environ.get("MCP_SUPPORTED_SCOPES", "mcp:read mcp:write profile").split()

# Signing algorithms accepted on access tokens. Asymmetric only.
ASYMMETRIC_ALGORITHMS = frozenset(
    {
        "RS256", "RS384", "RS512",
        "PS256", "PS384", "PS512",
        "ES256", "ES256K", "ES384", "ES512",
        "EdDSA",
    }
)


def parse_algorithms(value: str) -> list[str]:
    """Split a comma separated algorithm list, dropping anything that is not asymmetric."""
    algorithms = []
    for alg in (a.strip() for a in value.split(",")):
        if not alg:
            continue
        if alg not in ASYMMETRIC_ALGORITHMS:
            logger.warning("Ignoring signing algorithm %r: only asymmetric algorithms are allowed", alg)
            continue
        algorithms.append(alg)
    return algorithms


ALLOWED_ALGORITHMS = parse_algorithms(os.environ.get("MCP_ALLOWED_ALGORITHMS", "EdDSA,RS256,ES256"))

# Upper bound for discovery and JWKS fetches (seconds)
HTTP_TIMEOUT_SECONDS = float(os.environ.get("MCP_HTTP_TIMEOUT_SECONDS", "5"))

# Cached key set is refetched on next lookup once older than this (0 = only on kid miss)
JWKS_MAX_AGE_SECONDS = int(os.environ.get("MCP_JWKS_MAX_AGE_SECONDS", "3600"))

# After a JWKS fetch, unknown-kid misses fail without refetching for this long (0 = no cooldown)
JWKS_COOLDOWN_SECONDS = float(os.environ.get("MCP_JWKS_COOLDOWN_SECONDS", "30"))

# Leeway for exp / nbf / iat checks
CLOCK_SKEW_SECONDS = int(os.environ.get("MCP_CLOCK_SKEW_SECONDS", "30"))

LOG_LEVEL = os.environ.get("MCP_LOG_LEVEL", "INFO").upper()

# Manifest identity
SERVER_NAME = os.environ.get("MCP_SERVER_NAME", "DCR Validator MCP Server")
SERVER_VERSION = "1.0"
