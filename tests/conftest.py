"""
Shared test fixtures for the SpiceDB MCP server test suite.

Key fixtures:
- fake_client: an in-memory stand-in for SpiceDBClient that records every
  request and replays canned `authzed` protobuf responses
- rpc_error: a factory for grpc.aio.AioRpcError, the exception a real
  SpiceDB call raises when the service is unreachable or rejects a request

Testing approach:
- test_queries.py / test_results.py: unit tests for request building, bulk
  check parsing, response reduction and failure classification.
- test_tools.py: the tool operations end to end against fake_client.
- test_client.py: deadline, metadata and retry behavior of SpiceDBClient
  against fake stubs.
- test_server.py: integration tests through the FastMCP ASGI app.
"""

import grpc
import pytest
from authzed.api.v1 import (
    CheckBulkPermissionsPair,
    CheckBulkPermissionsResponse,
    CheckBulkPermissionsResponseItem,
    CheckPermissionResponse,
    LookupResourcesResponse,
    LookupSubjectsResponse,
    ObjectReference,
    ReadRelationshipsResponse,
    Relationship,
    SubjectReference,
)
from authzed.api.v1.permission_service_pb2 import ResolvedSubject
from google.rpc.status_pb2 import Status


class FakeSpiceDBClient:
    """
    Records requests and replays canned responses, mirroring SpiceDBClient.

    Set `errors[<method name>]` to make that method raise. Like a real gRPC
    stream, streaming methods only raise once iteration starts.
    """

    def __init__(self):
        self.requests: list[tuple[str, object]] = []
        self.errors: dict[str, Exception] = {}
        self.schema_text = ""
        self.resources: list[LookupResourcesResponse] = []
        self.subjects: list[LookupSubjectsResponse] = []
        self.relationships: list[ReadRelationshipsResponse] = []
        self.bulk_response = CheckBulkPermissionsResponse()

    def _record(self, method: str, request) -> None:
        self.requests.append((method, request))
        if method in self.errors:
            raise self.errors[method]

    def calls(self, method: str) -> list:
        return [request for name, request in self.requests if name == method]

    async def _stream(self, method, request, responses):
        self._record(method, request)
        for response in responses:
            yield response

    async def read_schema(self) -> str:
        self._record("read_schema", None)
        return self.schema_text

    def lookup_resources(self, request):
        return self._stream("lookup_resources", request, self.resources)

    def lookup_subjects(self, request):
        return self._stream("lookup_subjects", request, self.subjects)

    def read_relationships(self, request):
        return self._stream("read_relationships", request, self.relationships)

    async def check_bulk_permissions(self, request):
        self._record("check_bulk_permissions", request)
        return self.bulk_response


@pytest.fixture
def fake_client():
    return FakeSpiceDBClient()


@pytest.fixture
def rpc_error():
    """
    Factory fixture creating the error a failed SpiceDB call raises.

    Usage in tests:
        fake_client.errors["read_schema"] = rpc_error(grpc.StatusCode.UNAVAILABLE, "down")
    """

    def _rpc_error(
        code: grpc.StatusCode = grpc.StatusCode.UNAVAILABLE,
        details: str = "failed to connect to all addresses",
    ) -> grpc.aio.AioRpcError:
        return grpc.aio.AioRpcError(
            code, grpc.aio.Metadata(), grpc.aio.Metadata(), details=details
        )

    return _rpc_error


# ---------------------------------------------------------------------------
# Response builders
# ---------------------------------------------------------------------------


def resource_response(resource_id: str) -> LookupResourcesResponse:
    return LookupResourcesResponse(resource_object_id=resource_id)


def subject_response(subject_id: str) -> LookupSubjectsResponse:
    return LookupSubjectsResponse(subject=ResolvedSubject(subject_object_id=subject_id))


def relationship_response(
    resource: str, relation: str, subject: str | None, subject_relation: str = ""
) -> ReadRelationshipsResponse:
    resource_type, resource_id = resource.split(":")
    relationship = Relationship(
        resource=ObjectReference(object_type=resource_type, object_id=resource_id),
        relation=relation,
    )
    if subject is not None:
        subject_type, subject_id = subject.split(":")
        relationship.subject.CopyFrom(
            SubjectReference(
                object=ObjectReference(object_type=subject_type, object_id=subject_id),
                optional_relation=subject_relation,
            )
        )
    return ReadRelationshipsResponse(relationship=relationship)


def bulk_response(*verdicts) -> CheckBulkPermissionsResponse:
    """
    Build a bulk check response from per-pair verdicts.

    True/False become HAS/NO permission items, None a CONDITIONAL one; a
    string becomes a per-pair error with that message.
    """
    response = CheckBulkPermissionsResponse()
    for verdict in verdicts:
        if isinstance(verdict, str):
            response.pairs.append(CheckBulkPermissionsPair(error=Status(code=3, message=verdict)))
            continue
        if verdict is None:
            permissionship = CheckPermissionResponse.PERMISSIONSHIP_CONDITIONAL_PERMISSION
        elif verdict:
            permissionship = CheckPermissionResponse.PERMISSIONSHIP_HAS_PERMISSION
        else:
            permissionship = CheckPermissionResponse.PERMISSIONSHIP_NO_PERMISSION
        response.pairs.append(
            CheckBulkPermissionsPair(
                item=CheckBulkPermissionsResponseItem(permissionship=permissionship)
            )
        )
    return response
