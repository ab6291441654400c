"""
FastAPI dependencies that put the Authorizer in front of route handlers.
require_claims: full bearer-token protection. require_ready: readiness check only
(for routes that proxy AS metadata). Only authorization failures are translated here.
"""
from typing import Annotated, Any

from fastapi import Depends, Request
from fastapi.responses import JSONResponse

from mcp_server.authorizer import AuthorizationError, Authorizer, resource_id_for_host


class AuthorizationFailed(Exception):
    """Carries an AuthorizationError out of a dependency to the app's exception handler."""

    def __init__(self, error: AuthorizationError):
        super().__init__(error.error_description)
        self.error = error


async def authorization_failed_handler(request: Request, exc: AuthorizationFailed) -> JSONResponse:
    """Render the error as {error, error_description} with its status and challenge headers."""
    return JSONResponse(
        status_code=exc.error.status_code,
        content=exc.error.body(),
        headers=dict(exc.error.headers),
    )


def get_authorizer(request: Request) -> Authorizer:
    return request.app.state.authorizer


def get_resource_id(request: Request) -> str:
    """https://<Host>: the audience tokens must carry and the realm in challenges."""
    return resource_id_for_host(request.headers.get("host"))


async def require_claims(
    request: Request,
    authorizer: Annotated[Authorizer, Depends(get_authorizer)],
    resource_id: Annotated[str, Depends(get_resource_id)],
) -> dict[str, Any]:
    """Dependency: valid Bearer token for this resource -> decoded claims (also on request.state.claims)."""
    result = await authorizer.protect(request.headers, resource_id)
    if isinstance(result, AuthorizationError):
        raise AuthorizationFailed(result)
    request.state.claims = result
    return result


def require_ready(authorizer: Annotated[Authorizer, Depends(get_authorizer)]) -> Authorizer:
    """Dependency: 503 unless AS discovery metadata has been loaded."""
    error = authorizer.check_readiness()
    if error is not None:
        raise AuthorizationFailed(error)
    return authorizer


Claims = Annotated[dict[str, Any], Depends(require_claims)]
ReadyAuthorizer = Annotated[Authorizer, Depends(require_ready)]
ResourceId = Annotated[str, Depends(get_resource_id)]
