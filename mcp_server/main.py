"""
MCP Resource Server.
Validates bearer tokens issued by an external Authorization Server (discovery + JWKS)
in front of /mcp and /sse; serves MCP discovery and well-known metadata.
"""
import logging
from contextlib import asynccontextmanager
from urllib.parse import urlsplit

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response

from mcp_server.authorizer import Authorizer, AuthorizerState
from mcp_server.config import HTTP_TIMEOUT_SECONDS, LOG_LEVEL
from mcp_server.dependencies import AuthorizationFailed, authorization_failed_handler
from mcp_server.logging_utils import configure_logging, new_request_id, request_id_var
from mcp_server.mcp import router as mcp_router
from mcp_server.well_known import router as well_known_router

logger = logging.getLogger(__name__)

CORS_ALLOW_HEADERS = (
    "content-type,x-amz-date,authorization,x-api-key,x-powered-by,if-unmodified-since,origin,referer,"
    "accept,accept-language,accept-encoding,user-agent,content-length,cache-control,pragma,"
    "sec-fetch-dest,sec-fetch-mode,sec-fetch-site,sec-gpc,host"
)
CORS_ALLOW_METHODS = "DELETE,GET,HEAD,OPTIONS,PATCH,POST,PUT"
HSTS = "max-age=31556926; includeSubDomains; preload"


def request_origin(request: Request) -> str:
    """Origin header, else the origin of Referer, else '*'."""
    origin = request.headers.get("origin")
    if origin:
        return origin
    referer = request.headers.get("referer")
    if referer:
        parts = urlsplit(referer)
        if parts.scheme and parts.netloc:
            return f"{parts.scheme}://{parts.netloc}"
    return "*"


def create_app(authorizer: Authorizer | None = None) -> FastAPI:
    """
    Build the app. With no authorizer, startup creates one backed by a real httpx client
    and fetches AS discovery; tests pass their own.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Install logging, create the Authorizer (if not injected) and load AS metadata. Failure leaves it degraded."""
        configure_logging(LOG_LEVEL)
        client = None
        if app.state.authorizer is None:
            client = httpx.AsyncClient(timeout=HTTP_TIMEOUT_SECONDS)
            app.state.authorizer = Authorizer(client)
        await app.state.authorizer.initialize()
        try:
            yield
        finally:
            if client is not None:
                await client.aclose()

    app = FastAPI(title="MCP Resource Server", version="1.0.0", lifespan=lifespan)
    app.state.authorizer = authorizer
    app.add_exception_handler(AuthorizationFailed, authorization_failed_handler)
    app.include_router(well_known_router, tags=["well-known"])
    app.include_router(mcp_router, tags=["mcp"])

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        """Request id, one log line per request, CORS and HSTS headers on every response."""
        request_id = new_request_id()
        token = request_id_var.set(request_id)
        try:
            try:
                response = await call_next(request)
            except Exception:
                logger.exception("Unhandled error for %s %s", request.method, request.url.path)
                response = JSONResponse(
                    status_code=500,
                    content={"title": "Unexpected error", "errorId": request_id},
                )
            for name, value in (
                ("Access-Control-Allow-Origin", request_origin(request)),
                ("x-request-id", request_id),
                ("strict-transport-security", HSTS),
            ):
                if name not in response.headers:
                    response.headers[name] = value
            level = logging.WARNING if response.status_code >= 400 else logging.INFO
            logger.log(level, "%s %s -> %d", request.method, request.url.path, response.status_code)
            return response
        finally:
            request_id_var.reset(token)

    @app.api_route("/health", methods=["GET", "HEAD"])
    def health(request: Request):
        """Health check; reports whether AS metadata is loaded."""
        state = request.app.state.authorizer.state if request.app.state.authorizer else AuthorizerState.UNINITIALIZED
        return {
            "status": "ok" if state is AuthorizerState.READY else "degraded",
            "service": "mcp_server",
            "auth": state.value,
        }

    @app.options("/{path:path}")
    def preflight(path: str):
        """CORS preflight for any path."""
        return Response(
            status_code=200,
            headers={
                "Access-Control-Allow-Headers": CORS_ALLOW_HEADERS,
                "Access-Control-Allow-Methods": CORS_ALLOW_METHODS,
                "Access-Control-Max-Age": "3600",
                "Cache-Control": "public, max-age=3600",
            },
        )

    @app.api_route("/{path:path}", methods=["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE"], include_in_schema=False)
    def not_found(path: str):
        """Fallback for unknown paths (registered last)."""
        logger.warning("Path not found: /%s", path)
        return JSONResponse(status_code=404, content={"error": "not_found", "error_description": "Path not found"})

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "mcp_server.main:app",
        host="127.0.0.1",
        port=8080,
        log_config=None,
    )
