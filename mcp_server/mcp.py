"""
MCP discovery (manifest, tools, prompts) and the protected protocol endpoints.
Tool and prompt definitions are static.
"""
import json
import logging
import time

from fastapi import APIRouter, Request
from fastapi.responses import Response

from mcp_server.config import AUTHORIZATION_SERVER_URL, SERVER_NAME, SERVER_VERSION, SUPPORTED_SCOPES
from mcp_server.dependencies import Claims, ResourceId, get_authorizer

logger = logging.getLogger(__name__)

router = APIRouter()

TOOLS = [
    {
        "name": "get_secure_user_data",
        "description": "A secure tool that retrieves user-specific information based on the validated token claims.",
        "parameters": {
            "type": "object",
            "properties": {
                "data_key": {
                    "type": "string",
                    "description": "The specific data field to retrieve (e.g., email, status).",
                },
            },
        },
    },
    {
        "name": "calculate_payroll_tax",
        "description": "Calculates estimated payroll tax based on annual salary and state of residence.",
        "parameters": {
            "type": "object",
            "properties": {
                "annual_salary": {"type": "number", "description": "The user's total annual salary."},
                "state": {"type": "string", "description": "The state of residence (e.g., CA, NY)."},
            },
            "required": ["annual_salary", "state"],
        },
    },
]

PROMPTS = [
    {
        "name": "generate_onboarding_summary",
        "description": (
            "Generates a personalized summary of the user's account details "
            "and next steps after successful token validation."
        ),
        "input_format": {
            "type": "object",
            "properties": {
                "name": {"type": "string", "description": "The user's display name."},
            },
        },
    },
]


@router.get("/manifest.json")
def manifest(resource_id: ResourceId):
    """MCP server manifest; URLs are relative to this request's resource id."""
    return {
        "name": SERVER_NAME,
        "description": (
            "A mock MCP server to validate Dynamic Client Registration (DCR) and "
            "OAuth 2.1 token exchange with an external Authorization Server."
        ),
        "version": SERVER_VERSION,
        "contact": "support@example.com",
        "tools_url": f"{resource_id}/tools",
        "prompts_url": f"{resource_id}/prompts",
        "streaming_url": f"{resource_id}/sse",
        "auth": {
            "type": "OAuth",
            "authorization_server_url": AUTHORIZATION_SERVER_URL,
            "scopes": SUPPORTED_SCOPES,
            "resource_id": resource_id,
        },
    }


@router.get("/tools")
def tools():
    return TOOLS


@router.get("/prompts")
def prompts():
    return PROMPTS


@router.post("/mcp")
async def mcp(request: Request, claims: Claims):
    """Acknowledge an MCP request from an authenticated caller."""
    body = await request.body()
    logger.debug("Incoming MCP request body: %s", body.decode("utf-8", errors="replace"))
    issuer = get_authorizer(request).metadata.issuer
    return {
        "messages": [
            {
                "type": "text",
                "text": (
                    f"MCP Acknowledged. Token successfully validated by the external AS ({issuer}). "
                    f"User ID: {claims.get('sub')}. You can now execute protected tools."
                ),
            }
        ],
        "tool_calls": [{"tool": "get_secure_user_data", "arguments": {"data_key": "email"}}],
    }


@router.get("/sse")
def sse(claims: Claims):
    """Non-streaming stand-in for an SSE task: connection event plus final result."""
    event = {
        "id": int(time.time() * 1000),
        "status": "completed",
        "progress": 100,
        "user": claims.get("sub"),
        "message": "Mock SSE task finished. Final result provided.",
    }
    body = (
        'data: {"message": "SSE stream connected. Mocking full result now..."}\n\n'
        f"data: {json.dumps(event)}\n\n"
    )
    return Response(
        content=body,
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )
