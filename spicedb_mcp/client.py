"""
Async gRPC client for the SpiceDB API.

Thin wrapper over the `authzed` generated stubs that adds what every call
needs: the preshared-key bearer token, a bounded deadline, and a single retry
when SpiceDB is transiently unavailable.

Streaming calls are only retried when the failure happens before the first
response arrived, so a caller never sees the same element twice.
"""

import functools
import logging
from collections.abc import AsyncIterator

import grpc
from authzed.api.v1 import (
    CheckBulkPermissionsRequest,
    CheckBulkPermissionsResponse,
    LookupResourcesRequest,
    LookupResourcesResponse,
    LookupSubjectsRequest,
    LookupSubjectsResponse,
    ReadRelationshipsRequest,
    ReadRelationshipsResponse,
    ReadSchemaRequest,
)
from authzed.api.v1.permission_service_pb2_grpc import PermissionsServiceStub
from authzed.api.v1.schema_service_pb2_grpc import SchemaServiceStub

from spicedb_mcp.config import DEFAULT_SPICEDB_TOKEN, Settings, settings

logger = logging.getLogger("spicedb-mcp.client")

TRANSIENT_STATUS_CODES = frozenset({grpc.StatusCode.UNAVAILABLE})


class SpiceDBClient:
    """
    The SpiceDB operations the MCP tools need.

    Construct it with `SpiceDBClient.connect()` in production; the stubs can
    be passed directly for testing.
    """

    def __init__(
        self,
        schema_stub,
        permissions_stub,
        token: str,
        timeout: float | None = 10.0,
        retry_transient_errors: bool = True,
        channel: grpc.aio.Channel | None = None,
    ):
        self._schema = schema_stub
        self._permissions = permissions_stub
        self._metadata = (("authorization", f"Bearer {token}"),)
        self._timeout = timeout
        self._attempts = 2 if retry_transient_errors else 1
        self._channel = channel

    @classmethod
    def connect(cls, config: Settings) -> "SpiceDBClient":
        if config.spicedb_tls:
            channel = grpc.aio.secure_channel(
                config.spicedb_endpoint, grpc.ssl_channel_credentials()
            )
        else:
            channel = grpc.aio.insecure_channel(config.spicedb_endpoint)
        logger.info(
            "Connecting to SpiceDB at %s (tls=%s)", config.spicedb_endpoint, config.spicedb_tls
        )
        if config.spicedb_token == DEFAULT_SPICEDB_TOKEN:
            logger.warning(
                "Using the default SpiceDB preshared key; set SPICEDB_MCP_SPICEDB_TOKEN"
            )
        return cls(
            schema_stub=SchemaServiceStub(channel),
            permissions_stub=PermissionsServiceStub(channel),
            token=config.spicedb_token,
            timeout=config.request_timeout,
            retry_transient_errors=config.retry_transient_errors,
            channel=channel,
        )

    def _should_retry(self, exc: grpc.aio.AioRpcError, attempt: int) -> bool:
        return attempt + 1 < self._attempts and exc.code() in TRANSIENT_STATUS_CODES

    async def _unary(self, method, request):
        for attempt in range(self._attempts):
            try:
                return await method(request, metadata=self._metadata, timeout=self._timeout)
            except grpc.aio.AioRpcError as exc:
                if not self._should_retry(exc, attempt):
                    raise
                logger.warning("SpiceDB unavailable, retrying: %s", exc.details())

    async def _stream(self, method, request) -> AsyncIterator:
        for attempt in range(self._attempts):
            received = False
            try:
                async for response in method(
                    request, metadata=self._metadata, timeout=self._timeout
                ):
                    received = True
                    yield response
                return
            except grpc.aio.AioRpcError as exc:
                if received or not self._should_retry(exc, attempt):
                    raise
                logger.warning("SpiceDB unavailable, retrying stream: %s", exc.details())

    async def read_schema(self) -> str:
        response = await self._unary(self._schema.ReadSchema, ReadSchemaRequest())
        return response.schema_text

    def lookup_resources(
        self, request: LookupResourcesRequest
    ) -> AsyncIterator[LookupResourcesResponse]:
        return self._stream(self._permissions.LookupResources, request)

    def lookup_subjects(
        self, request: LookupSubjectsRequest
    ) -> AsyncIterator[LookupSubjectsResponse]:
        return self._stream(self._permissions.LookupSubjects, request)

    def read_relationships(
        self, request: ReadRelationshipsRequest
    ) -> AsyncIterator[ReadRelationshipsResponse]:
        return self._stream(self._permissions.ReadRelationships, request)

    async def check_bulk_permissions(
        self, request: CheckBulkPermissionsRequest
    ) -> CheckBulkPermissionsResponse:
        return await self._unary(self._permissions.CheckBulkPermissions, request)

    async def close(self) -> None:
        if self._channel is not None:
            await self._channel.close()


@functools.lru_cache(maxsize=1)
def get_client() -> SpiceDBClient:
    """Process-wide client, created on first use inside the running event loop."""
    return SpiceDBClient.connect(settings)


async def close_client() -> None:
    """Close the process-wide client, if one was created."""
    if get_client.cache_info().currsize == 0:
        return
    client = get_client()
    get_client.cache_clear()
    await client.close()
