"""
The authorization-query operations exposed as MCP tools.

Each operation builds one SpiceDB request from the tool arguments, sends it
through a `SpiceDBClient`, and reduces the response to a report string. None
of them raises: every failure is classified and returned as an
`OperationResult` whose text starts with "Error <operation>: ".

The server module registers thin FastMCP wrappers around these functions;
keeping them free of FastMCP makes them directly testable against a fake
client.
"""

import logging

from spicedb_mcp.client import SpiceDBClient
from spicedb_mcp.config import settings
from spicedb_mcp.queries import (
    RelationshipQuery,
    build_check_bulk_request,
    build_lookup_resources_request,
    build_lookup_subjects_request,
    build_read_relationships_request,
    describe_query,
    parse_bulk_checks,
)
from spicedb_mcp.results import (
    OperationResult,
    classify_failure,
    reduce_bulk_check,
    reduce_lookup_resources,
    reduce_lookup_subjects,
    reduce_relationships,
    reduce_schema,
)

logger = logging.getLogger("spicedb-mcp.tools")

# Operation names as they appear in "Error <operation>: ..." messages.
GET_SCHEMA = "looking up schema"
LOOKUP_RESOURCES = "looking up resources"
LOOKUP_SUBJECTS = "looking up subjects"
READ_RELATIONSHIPS = "reading relationships"
CHECK_BULK_PERMISSIONS = "checking bulk permissions"


def _started(operation: str, **fields) -> None:
    logger.debug(
        "Operation started",
        extra={"tool_data": {"operation": operation, **fields}},
    )


def _failed(operation: str, exc: Exception) -> OperationResult:
    result = classify_failure(operation, exc)
    logger.warning(
        "Operation failed",
        extra={
            "tool_data": {
                "operation": operation,
                "error_kind": result.error_kind.value,
                "error": result.text,
            }
        },
    )
    return result


async def get_schema(client: SpiceDBClient) -> OperationResult:
    _started(GET_SCHEMA)
    try:
        schema_text = await client.read_schema()
        return OperationResult(text=reduce_schema(schema_text))
    except Exception as exc:
        return _failed(GET_SCHEMA, exc)


async def lookup_resources(
    client: SpiceDBClient,
    resource_object_type: str,
    permission: str,
    subject_type: str,
    subject_id: str,
) -> OperationResult:
    """On which resources of a type does a subject have a permission?"""
    _started(LOOKUP_RESOURCES, resource_type=resource_object_type, permission=permission)
    try:
        request = build_lookup_resources_request(
            resource_object_type,
            permission,
            subject_type,
            subject_id,
            settings.lookup_resources_consistency,
        )
        text = await reduce_lookup_resources(
            client.lookup_resources(request),
            resource_object_type,
            permission,
            subject_type,
            subject_id,
        )
        return OperationResult(text=text)
    except Exception as exc:
        return _failed(LOOKUP_RESOURCES, exc)


async def lookup_subjects(
    client: SpiceDBClient,
    resource_type: str,
    resource_id: str,
    permission: str,
    subject_object_type: str,
) -> OperationResult:
    """Which subjects of a type have a permission on a resource?"""
    _started(LOOKUP_SUBJECTS, resource=f"{resource_type}:{resource_id}", permission=permission)
    try:
        request = build_lookup_subjects_request(
            resource_type,
            resource_id,
            permission,
            subject_object_type,
            settings.lookup_subjects_consistency,
        )
        text = await reduce_lookup_subjects(
            client.lookup_subjects(request),
            resource_type,
            resource_id,
            permission,
            subject_object_type,
        )
        return OperationResult(text=text)
    except Exception as exc:
        return _failed(LOOKUP_SUBJECTS, exc)


async def read_relationships(
    client: SpiceDBClient,
    resource_type: str,
    resource_id: str | None = None,
    relationship_name: str | None = None,
    subject_type: str | None = None,
    subject_id: str | None = None,
    subject_relation: str | None = None,
) -> OperationResult:
    """
    Read the stored relationships matching a partially specified filter.

    Only `resource_type` is required; every other argument narrows the
    filter when given and is left out of the request otherwise.
    """
    _started(READ_RELATIONSHIPS, resource_type=resource_type)
    try:
        query = RelationshipQuery(
            resource_type=resource_type,
            resource_id=resource_id,
            relation=relationship_name,
            subject_type=subject_type,
            subject_id=subject_id,
            subject_relation=subject_relation,
        )
        request = build_read_relationships_request(
            query, settings.read_relationships_consistency
        )
        text = await reduce_relationships(
            client.read_relationships(request), describe_query(query)
        )
        return OperationResult(text=text)
    except Exception as exc:
        return _failed(READ_RELATIONSHIPS, exc)


async def check_bulk_permissions(
    client: SpiceDBClient, permission_checks: str
) -> OperationResult:
    """
    Answer several permission questions with a single CheckBulkPermissions call.

    A malformed record fails the whole batch before anything is sent, and a
    transport failure aborts the whole batch; there is no partial report.
    """
    _started(CHECK_BULK_PERMISSIONS)
    try:
        checks = parse_bulk_checks(permission_checks)
        request = build_check_bulk_request(checks, settings.bulk_check_consistency)
        logger.debug("Sending %d permission checks in one request", len(checks))
        response = await client.check_bulk_permissions(request)
        return OperationResult(text=reduce_bulk_check(checks, response))
    except Exception as exc:
        return _failed(CHECK_BULK_PERMISSIONS, exc)
