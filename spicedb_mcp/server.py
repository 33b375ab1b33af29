"""
MCP server exposing SpiceDB authorization queries as tools, built on FastMCP v2.

Tools:
- get_schema: the schema currently written to SpiceDB
- lookup_resources: resources of a type a subject has a permission on
- lookup_subjects: subjects of a type that have a permission on a resource
- read_relationships: stored relationships matching a partial filter
- check_bulk_permissions: many permission checks in one round trip

Every tool returns a string, also on failure ("Error <operation>: ...").

Running the server:
    python -m spicedb_mcp.server

    With SPICEDB_MCP_TRANSPORT=stdio (the default) the server speaks MCP over
    stdin/stdout, which is what desktop MCP clients expect. With
    SPICEDB_MCP_TRANSPORT=streamable-http it listens on host:port with:
    - MCP endpoint at /mcp (Streamable HTTP)
    - Health check at /health
    - Readiness check at /ready (verifies SpiceDB answers)
"""

import json
import logging
import sys
import time
import uuid
from contextlib import asynccontextmanager
from typing import Annotated

import grpc
from fastmcp import FastMCP
from fastmcp.server.middleware import CallNext, Middleware, MiddlewareContext
from fastmcp.tools.tool import ToolResult
from mcp.types import CallToolRequestParams
from pydantic import Field
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from spicedb_mcp import tools
from spicedb_mcp.client import close_client, get_client
from spicedb_mcp.config import settings

# ---------------------------------------------------------------------------
# Structured JSON Logging
# ---------------------------------------------------------------------------
# One JSON object per log line. Under the stdio transport stdout carries the
# MCP protocol itself, so logs go to stderr there.


class JSONLogFormatter(logging.Formatter):
    """
    Formats log records as single-line JSON objects.

    Example output:

        {"timestamp": "2026-10-19 10:30:00,123", "level": "INFO",
         "logger": "spicedb-mcp", "message": "Tool call finished",
         "request_id": "1a2b3c4d", "tool": "lookup_subjects", "outcome": "ok"}
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        # Merge structured fields passed via logger.info("msg", extra={"tool_data": {...}})
        if hasattr(record, "tool_data"):
            log_entry.update(record.tool_data)
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry)


handler = logging.StreamHandler(sys.stderr if settings.transport == "stdio" else sys.stdout)
handler.setFormatter(JSONLogFormatter())

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    handlers=[handler],
)
logger = logging.getLogger("spicedb-mcp")


# ---------------------------------------------------------------------------
# Tool call logging middleware
# ---------------------------------------------------------------------------


class ToolCallLoggingMiddleware(Middleware):
    """
    Logs every tools/call with a short request id, its duration and outcome.

    Tools never raise, so a failed call is recognized by its "Error " text.
    A call that raises before reaching the tool (e.g. invalid arguments) is
    logged with outcome "error" as well.
    """

    async def on_call_tool(
        self,
        context: MiddlewareContext[CallToolRequestParams],
        call_next: CallNext[CallToolRequestParams, ToolResult],
    ) -> ToolResult:
        request_id = str(uuid.uuid4())[:8]
        tool_name = context.message.name
        started = time.perf_counter()

        logger.info(
            "Tool call started",
            extra={"tool_data": {"request_id": request_id, "tool": tool_name}},
        )
        outcome = "error"
        try:
            result = await call_next(context)
            text = next(
                (block.text for block in result.content if getattr(block, "type", None) == "text"),
                "",
            )
            if not text.startswith("Error "):
                outcome = "ok"
            return result
        finally:
            logger.info(
                "Tool call finished",
                extra={
                    "tool_data": {
                        "request_id": request_id,
                        "tool": tool_name,
                        "duration_ms": round((time.perf_counter() - started) * 1000, 1),
                        "outcome": outcome,
                    }
                },
            )


@asynccontextmanager
async def spicedb_lifespan(server: FastMCP):
    """Create the SpiceDB client at startup and close its channel at shutdown."""
    get_client()
    try:
        yield
    finally:
        await close_client()


mcp = FastMCP(
    name="spicedb-mcp",
    instructions=(
        "Query a SpiceDB authorization database. Start with get_schema to learn "
        "the resource types, relations and permissions that exist. Prefer "
        "lookup_resources and lookup_subjects for computed permissions, and "
        "check_bulk_permissions when several checks are needed at once."
    ),
    middleware=[ToolCallLoggingMiddleware()],
    lifespan=spicedb_lifespan,
)


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


@mcp.tool(
    description=(
        "Get the SpiceDB schema in use. When in doubt, use this first to get an "
        "overview of the existing definitions, relations and permissions before "
        "making other calls."
    )
)
async def get_schema() -> str:
    result = await tools.get_schema(get_client())
    return result.text


@mcp.tool(
    description=(
        "Look up resources a subject has a permission on. Answers questions like "
        "'On what <resourcetype> does <subject:id> have <permission>?', e.g. "
        "'On what projects does user:CTO have admin permissions?'"
    )
)
async def lookup_resources(
    resource_object_type: Annotated[str, Field(description="The resource object type")],
    permission: Annotated[str, Field(description="The permission to check")],
    subject_type: Annotated[str, Field(description="The subject type to check")],
    subject_id: Annotated[str, Field(description="The subject id to check")],
) -> str:
    result = await tools.lookup_resources(
        get_client(), resource_object_type, permission, subject_type, subject_id
    )
    return result.text


@mcp.tool(
    description=(
        "Look up subjects with a permission on a resource. Answers questions like "
        "'Who has permission on resource <x>?', e.g. 'What users can read document a?'"
    )
)
async def lookup_subjects(
    resource_type: Annotated[str, Field(description="The resource type")],
    resource_id: Annotated[str, Field(description="The resource ID")],
    permission: Annotated[str, Field(description="The permission to check")],
    subject_object_type: Annotated[str, Field(description="The subject object type to look up")],
) -> str:
    result = await tools.lookup_subjects(
        get_client(), resource_type, resource_id, permission, subject_object_type
    )
    return result.text


@mcp.tool(
    description=(
        "Read stored relationships, similar to 'zed relationship read'. All parameters "
        "are optional except resource_type. This returns direct relations only, not "
        "computed permissions: use lookup_resources or lookup_subjects for those. Use "
        "it for questions like 'What users do I have?' or 'What documents are there?'"
    )
)
async def read_relationships(
    resource_type: Annotated[str, Field(description="The resource type (required)")],
    resource_id: Annotated[str | None, Field(description="The resource ID (optional)")] = None,
    relationship_name: Annotated[
        str | None, Field(description="The relationship name to filter on (optional)")
    ] = None,
    subject_type: Annotated[str | None, Field(description="The subject type (optional)")] = None,
    subject_id: Annotated[
        str | None, Field(description="The subject ID, requires subject_type (optional)")
    ] = None,
    subject_relation: Annotated[
        str | None, Field(description="The subject relation, requires subject_type (optional)")
    ] = None,
) -> str:
    result = await tools.read_relationships(
        get_client(),
        resource_type,
        resource_id=resource_id,
        relationship_name=relationship_name,
        subject_type=subject_type,
        subject_id=subject_id,
        subject_relation=subject_relation,
    )
    return result.text


@mcp.tool(
    description=(
        "Check multiple permissions at once. Accepts a semicolon-separated list of "
        "checks in the format 'resourceType:resourceId:permission:subjectType:subjectId"
        "[:subjectRelation]'. Favor this over repeated lookups: it sends all checks "
        "in a single request. Each line reports HAS or DOES NOT HAVE, or CONDITIONALLY "
        "HAS when a caveat on the permission needs context that was not supplied."
    )
)
async def check_bulk_permissions(
    permission_checks: Annotated[
        str,
        Field(
            description=(
                "Semicolon-separated permission checks, e.g. "
                "'document:doc1:view:user:john;folder:folder1:read:user:jane'"
            )
        ),
    ],
) -> str:
    result = await tools.check_bulk_permissions(get_client(), permission_checks)
    return result.text


# ---------------------------------------------------------------------------
# Health and Readiness Endpoints (streamable-http transport only)
# ---------------------------------------------------------------------------


@mcp.custom_route("/health", methods=["GET"])
async def health_check(request: Request) -> Response:
    """Liveness probe: is the server process alive and responsive?"""
    return JSONResponse({"status": "healthy"})


@mcp.custom_route("/ready", methods=["GET"])
async def readiness_check(request: Request) -> Response:
    """Readiness probe: does SpiceDB answer a schema read?"""
    try:
        await get_client().read_schema()
    except grpc.RpcError as exc:
        logger.warning("Readiness check failed: SpiceDB did not answer")
        reason = (exc.details() if hasattr(exc, "details") else None) or "SpiceDB unreachable"
        return JSONResponse({"status": "not_ready", "reason": reason}, status_code=503)

    return JSONResponse({"status": "ready"})


# ---------------------------------------------------------------------------
# Server entry point
# ---------------------------------------------------------------------------


def main() -> None:
    if settings.transport == "stdio":
        logger.info("Starting MCP server (transport=stdio, spicedb=%s)", settings.spicedb_endpoint)
        mcp.run(transport="stdio")
        return

    logger.info(
        "Starting MCP server on %s:%d (transport=streamable-http, spicedb=%s)",
        settings.host,
        settings.port,
        settings.spicedb_endpoint,
    )
    mcp.run(
        transport="streamable-http",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
    )


if __name__ == "__main__":
    main()
