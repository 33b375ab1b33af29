"""
Reduction of SpiceDB responses into report strings, and failure classification.

Every tool answers with a single human-readable string, because the MCP tool
call has no separate error channel for these tools. This module owns both
halves of that contract:

- Reducers consume a unary response, an async stream of responses, or a bulk
  check pair list, and render a deterministic report. Streams are rendered in
  arrival order. An empty stream yields an explicit "No ... found" message so
  callers can tell "found nothing" apart from a failure.
- `classify_failure()` turns any exception into an `OperationResult` whose
  text is "Error <operation>: <detail>" and whose `error_kind` records which
  of the three failure classes it was.
"""

import enum
from collections.abc import AsyncIterable
from dataclasses import dataclass

import grpc
from authzed.api.v1 import (
    CheckBulkPermissionsResponse,
    CheckPermissionResponse,
    LookupResourcesResponse,
    LookupSubjectsResponse,
    ReadRelationshipsResponse,
)

from spicedb_mcp.queries import BulkCheckFormatError, BulkCheckItem


class ErrorKind(str, enum.Enum):
    TRANSPORT = "transport"  # SpiceDB unreachable or rejected the request
    FORMAT = "format"  # malformed tool input
    INTERNAL = "internal"  # anything else


@dataclass(frozen=True)
class OperationResult:
    """Outcome of a tool operation: the text for the caller plus the failure class, if any."""

    text: str
    error_kind: ErrorKind | None = None

    @property
    def ok(self) -> bool:
        return self.error_kind is None


@dataclass(frozen=True)
class RelationshipRecord:
    resource: str
    relation: str
    subject: str | None

    @classmethod
    def from_response(cls, response: ReadRelationshipsResponse) -> "RelationshipRecord":
        relationship = response.relationship
        resource = f"{relationship.resource.object_type}:{relationship.resource.object_id}"
        subject = None
        if relationship.subject.HasField("object"):
            subject_object = relationship.subject.object
            subject = f"{subject_object.object_type}:{subject_object.object_id}"
            if relationship.subject.optional_relation:
                subject += f"#{relationship.subject.optional_relation}"
        return cls(resource=resource, relation=relationship.relation, subject=subject)

    def render(self) -> str:
        return f"{self.resource} has {self.relation} relationship with {self.subject or 'N/A'}"


@dataclass(frozen=True)
class PermissionResult:
    check: BulkCheckItem
    has_permission: bool
    # Granted only once missing caveat context is supplied; has_permission is False.
    conditional: bool = False
    error: str | None = None

    def render(self) -> str:
        if self.error is not None:
            return (
                f"{self.check.subject_ref} permission '{self.check.permission}' on "
                f"{self.check.resource_ref} could not be checked: {self.error}"
            )
        if self.conditional:
            return (
                f"{self.check.subject_ref} CONDITIONALLY HAS permission "
                f"'{self.check.permission}' on {self.check.resource_ref} "
                "(caveat context missing)"
            )
        verdict = "HAS" if self.has_permission else "DOES NOT HAVE"
        return (
            f"{self.check.subject_ref} {verdict} permission "
            f"'{self.check.permission}' on {self.check.resource_ref}"
        )


# ---------------------------------------------------------------------------
# Reducers
# ---------------------------------------------------------------------------


def _report(header: str, lines: list[str]) -> str:
    return f"{header}:\n" + "\n".join(lines)


def reduce_schema(schema_text: str) -> str:
    if not schema_text.strip():
        return "No schema has been written to SpiceDB."
    return schema_text


async def reduce_lookup_resources(
    stream: AsyncIterable[LookupResourcesResponse],
    resource_object_type: str,
    permission: str,
    subject_type: str,
    subject_id: str,
) -> str:
    resource_ids = [response.resource_object_id async for response in stream]
    subject = f"{subject_type}:{subject_id}"
    if not resource_ids:
        return (
            f"No resources of type '{resource_object_type}' found with "
            f"'{permission}' permission for {subject}."
        )
    return _report(
        f"Resources of type '{resource_object_type}' with '{permission}' permission for {subject}",
        resource_ids,
    )


async def reduce_lookup_subjects(
    stream: AsyncIterable[LookupSubjectsResponse],
    resource_type: str,
    resource_id: str,
    permission: str,
    subject_object_type: str,
) -> str:
    subject_ids = [response.subject.subject_object_id async for response in stream]
    resource = f"{resource_type}:{resource_id}"
    if not subject_ids:
        return (
            f"No subjects of type '{subject_object_type}' found with "
            f"'{permission}' permission on {resource}."
        )
    return _report(
        f"Subjects of type '{subject_object_type}' with '{permission}' permission on {resource}",
        subject_ids,
    )


async def reduce_relationships(
    stream: AsyncIterable[ReadRelationshipsResponse], description: str
) -> str:
    records = [RelationshipRecord.from_response(response) async for response in stream]
    if not records:
        return f"No relationships found for {description}."
    return _report(f"Relationships for {description}", [r.render() for r in records])


def zip_bulk_results(
    checks: list[BulkCheckItem], response: CheckBulkPermissionsResponse
) -> list[PermissionResult]:
    """
    Pair each submitted check with SpiceDB's answer by position.

    SpiceDB answers in request order, so index i of the response belongs to
    check i. A length mismatch means that assumption broke and is an error.
    """
    pairs = list(response.pairs)
    if len(pairs) != len(checks):
        raise RuntimeError(
            f"SpiceDB returned {len(pairs)} results for {len(checks)} permission checks"
        )

    results = []
    for check, pair in zip(checks, pairs):
        if pair.WhichOneof("response") == "error":
            results.append(
                PermissionResult(check=check, has_permission=False, error=pair.error.message)
            )
            continue
        permissionship = pair.item.permissionship
        results.append(
            PermissionResult(
                check=check,
                has_permission=(
                    permissionship == CheckPermissionResponse.PERMISSIONSHIP_HAS_PERMISSION
                ),
                conditional=(
                    permissionship
                    == CheckPermissionResponse.PERMISSIONSHIP_CONDITIONAL_PERMISSION
                ),
            )
        )
    return results


def reduce_bulk_check(
    checks: list[BulkCheckItem], response: CheckBulkPermissionsResponse
) -> str:
    return "\n".join(result.render() for result in zip_bulk_results(checks, response))


# ---------------------------------------------------------------------------
# Failure Classifier
# ---------------------------------------------------------------------------


def _rpc_detail(exc: grpc.RpcError) -> str:
    # grpc.aio.AioRpcError and sync grpc.Call errors both expose details()/code(),
    # but the RpcError base class itself does not.
    details = exc.details() if hasattr(exc, "details") else None
    if details:
        return details
    code = exc.code() if hasattr(exc, "code") else None
    return code.name if code is not None else "SpiceDB request failed"


def classify_failure(operation: str, exc: Exception) -> OperationResult:
    """
    Convert an exception raised by a tool operation into its error result.

    Args:
        operation: Verb phrase naming the operation, e.g. "reading relationships"
        exc: The exception raised while building, sending or reducing the request
    """
    if isinstance(exc, grpc.RpcError):
        kind, detail = ErrorKind.TRANSPORT, _rpc_detail(exc)
    elif isinstance(exc, BulkCheckFormatError):
        kind, detail = ErrorKind.FORMAT, str(exc)
    else:
        kind, detail = ErrorKind.INTERNAL, str(exc) or type(exc).__name__
    return OperationResult(text=f"Error {operation}: {detail}", error_kind=kind)
