"""
Application configuration loaded from environment variables.

Uses pydantic-settings to define typed configuration that automatically reads
from environment variables (or a local .env file). Every variable carries the
SPICEDB_MCP_ prefix, e.g. SPICEDB_MCP_SPICEDB_TOKEN holds the preshared key
used to authenticate against SpiceDB.
"""

from enum import Enum
from typing import Literal

from pydantic_settings import BaseSettings

# Matches `spicedb serve --grpc-preshared-key testkey`; local development only.
DEFAULT_SPICEDB_TOKEN = "testkey"


class ConsistencyMode(str, Enum):
    """How fresh a SpiceDB read has to be."""

    FULL = "full"
    MINIMIZE_LATENCY = "minimize_latency"


class Settings(BaseSettings):
    """
    Server configuration with environment variable bindings.

    For example, `spicedb_endpoint` reads from SPICEDB_MCP_SPICEDB_ENDPOINT
    and `transport` from SPICEDB_MCP_TRANSPORT.
    """

    # --- MCP server settings ---

    # stdio is what desktop MCP clients spawn; streamable-http serves /mcp
    # plus the /health and /ready probes.
    transport: Literal["stdio", "streamable-http"] = "stdio"
    host: str = "127.0.0.1"
    port: int = 8080
    log_level: str = "info"

    # --- SpiceDB connection ---

    spicedb_endpoint: str = "localhost:50051"
    spicedb_token: str = DEFAULT_SPICEDB_TOKEN
    # Plaintext gRPC is the default because local SpiceDB (`spicedb serve`)
    # listens without TLS.
    spicedb_tls: bool = False

    # Deadline applied to every RPC, in seconds.
    request_timeout: float = 10.0
    # Retry a call once when SpiceDB answers UNAVAILABLE.
    retry_transient_errors: bool = True

    # --- Consistency policy, per operation ---

    lookup_resources_consistency: ConsistencyMode = ConsistencyMode.FULL
    lookup_subjects_consistency: ConsistencyMode = ConsistencyMode.FULL
    read_relationships_consistency: ConsistencyMode = ConsistencyMode.FULL
    bulk_check_consistency: ConsistencyMode = ConsistencyMode.FULL

    model_config = {
        "env_prefix": "SPICEDB_MCP_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }


# Singleton instance: import this from other modules.
settings = Settings()
