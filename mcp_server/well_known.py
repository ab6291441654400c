"""
Well-known endpoints: AS metadata proxies and RFC 9728 protected resource metadata.
"""
from fastapi import APIRouter

from mcp_server.config import AUTHORIZATION_SERVER_URL, SUPPORTED_SCOPES
from mcp_server.dependencies import ReadyAuthorizer, ResourceId

router = APIRouter()


@router.get("/.well-known/oauth-authorization-server")
def oauth_authorization_server(authorizer: ReadyAuthorizer):
    """The AS discovery document as fetched at startup (503 until it has been)."""
    return dict(authorizer.metadata.document)


@router.get("/.well-known/openid-configuration")
def openid_configuration(authorizer: ReadyAuthorizer):
    """OIDC discovery; same document as oauth-authorization-server."""
    return dict(authorizer.metadata.document)


@router.get("/.well-known/oauth-protected-resource")
def oauth_protected_resource(resource_id: ResourceId):
    """This resource server's own metadata."""
    return {
        "resource": resource_id,
        "authorization_servers": [AUTHORIZATION_SERVER_URL],
        "bearer_methods_supported": ["header"],
        "scopes_supported": SUPPORTED_SCOPES,
    }
