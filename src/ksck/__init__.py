"""
ksck - consistency checker for replicated, partitioned clusters.

This package checks a cluster of masters and tablet servers and reports
whether every table and tablet is healthy. It includes:

- Gateway interface (Master, TabletServer, Cluster) with an in-memory
  variant (ksck.mock) and a live HTTP variant (ksck.remote)
- Ksck: the checker that fetches cluster state and classifies tablets
- ChecksumScanner: cross-replica data checksum comparison
- Report rendering with rich, and the ksck CLI
"""

from ksck.checker import (
    CheckResult,
    Ksck,
    KsckConfig,
    KsckResults,
    ReplicaSummary,
    ServerHealth,
    ServerHealthSummary,
    ServerType,
    TableSummary,
    TabletSummary,
    server_health_score,
)
from ksck.checksum import ChecksumResults, ChecksumScanner, TabletChecksumResult
from ksck.exceptions import (
    ChecksumError,
    ClusterUnavailableError,
    DiscoveryError,
    GatewayError,
    KsckError,
    WrongServerUuidError,
)
from ksck.gateway import ChecksumProgressCallbacks, Cluster, Master, TabletServer
from ksck.model import (
    CURRENT_TIMESTAMP,
    ChecksumOptions,
    ConsensusConfigType,
    ConsensusState,
    FetchState,
    RaftConfig,
    ReportedConsensusState,
    Schema,
    Table,
    Tablet,
    TabletReplica,
    TabletState,
    TabletStatus,
)

__all__ = [
    # Checker
    "Ksck",
    "KsckConfig",
    "KsckResults",
    "CheckResult",
    "ServerHealth",
    "ServerType",
    "ServerHealthSummary",
    "TableSummary",
    "TabletSummary",
    "ReplicaSummary",
    "server_health_score",
    # Checksums
    "ChecksumScanner",
    "ChecksumResults",
    "TabletChecksumResult",
    # Gateway
    "Cluster",
    "Master",
    "TabletServer",
    "ChecksumProgressCallbacks",
    # Model
    "FetchState",
    "ConsensusConfigType",
    "ConsensusState",
    "RaftConfig",
    "ReportedConsensusState",
    "Schema",
    "Table",
    "Tablet",
    "TabletReplica",
    "TabletState",
    "TabletStatus",
    "ChecksumOptions",
    "CURRENT_TIMESTAMP",
    # Exceptions
    "KsckError",
    "GatewayError",
    "WrongServerUuidError",
    "ClusterUnavailableError",
    "DiscoveryError",
    "ChecksumError",
]
