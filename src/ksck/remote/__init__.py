"""
Live ksck gateway backed by the cluster's JSON-over-HTTP API.

This package provides:

- RemoteCluster, RemoteMaster, RemoteTabletServer: gateway implementations
- MasterClient, TabletServerClient: httpx clients for the API endpoints
- Pydantic response types for API parsing
- create_remote_cluster: factory used by the CLI
"""

from ksck.remote.client import MasterClient, TabletServerClient
from ksck.remote.cluster import RemoteCluster, RemoteMaster, RemoteTabletServer
from ksck.remote.factory import create_remote_cluster, parse_master_addresses
from ksck.remote.types import (
    ChecksumRequest,
    ChecksumStepResponse,
    ConsensusStateResponse,
    MasterStatusResponse,
    TablesResponse,
    TabletServerConsensusResponse,
    TabletServersResponse,
    TabletServerStatusResponse,
    TabletsResponse,
)

__all__ = [
    # Gateway
    "RemoteCluster",
    "RemoteMaster",
    "RemoteTabletServer",
    "create_remote_cluster",
    "parse_master_addresses",
    # Clients
    "MasterClient",
    "TabletServerClient",
    # API types
    "MasterStatusResponse",
    "ConsensusStateResponse",
    "TabletServersResponse",
    "TablesResponse",
    "TabletsResponse",
    "TabletServerStatusResponse",
    "TabletServerConsensusResponse",
    "ChecksumRequest",
    "ChecksumStepResponse",
]
