"""
Cluster model types for ksck.

This module defines the data structures a check run reconciles: tables,
tablets, replicas, tablet statuses, and consensus states as reported by
masters and tablet servers. These are internal types - pure data, no I/O.

All types use @dataclass. Pydantic models are reserved for HTTP responses
(see ksck.remote.types).

Notes:
- Tablets refer to their owning table by name, never by reference.
- Tablets and tablet servers are linked only by UUID/tablet ID, so a server
  re-fetch never invalidates tablet-side data.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum

# Type aliases for common patterns
ServerUuid = str
"""Permanent UUID of a master or tablet server."""

TabletId = str
"""Unique identifier for a tablet."""


class FetchState(str, Enum):
    """Fetch status of a master or tablet server."""

    UNINITIALIZED = "uninitialized"
    FETCH_FAILED = "fetch_failed"
    FETCHED = "fetched"


class ConsensusConfigType(str, Enum):
    """Where a consensus config came from."""

    # A config reported by the master.
    MASTER = "master"
    # A config that has been committed.
    COMMITTED = "committed"
    # A config that has not yet been committed.
    PENDING = "pending"


class TabletState(str, Enum):
    """Lifecycle state of a tablet replica on a tablet server."""

    NOT_STARTED = "NOT_STARTED"
    BOOTSTRAPPING = "BOOTSTRAPPING"
    RUNNING = "RUNNING"
    FAILED = "FAILED"
    STOPPING = "STOPPING"
    STOPPED = "STOPPED"
    SHUTDOWN = "SHUTDOWN"
    UNKNOWN = "UNKNOWN"


class TabletDataState(str, Enum):
    """State of a replica's on-disk data."""

    COPYING = "TABLET_DATA_COPYING"
    READY = "TABLET_DATA_READY"
    DELETED = "TABLET_DATA_DELETED"
    TOMBSTONED = "TABLET_DATA_TOMBSTONED"
    UNKNOWN = "TABLET_DATA_UNKNOWN"


@dataclass(frozen=True)
class ConsensusState:
    """
    A consensus membership/term snapshot as seen by one reporter.

    Attributes:
        config_type: MASTER for the master's view, COMMITTED or PENDING for
            a replica's active config
        term: Consensus term (None for master views)
        opid_index: Index of the config's committing operation, if known
        leader_uuid: UUID of the leader, if one is known
        voter_uuids: UUIDs of voting members
        non_voter_uuids: UUIDs of non-voting members
    """

    config_type: ConsensusConfigType
    term: int | None = None
    opid_index: int | None = None
    leader_uuid: str | None = None
    voter_uuids: frozenset[str] = frozenset()
    non_voter_uuids: frozenset[str] = frozenset()

    def __post_init__(self) -> None:
        # Accept any iterable of UUIDs from callers
        object.__setattr__(self, "voter_uuids", frozenset(self.voter_uuids))
        object.__setattr__(self, "non_voter_uuids", frozenset(self.non_voter_uuids))

    def matches(self, other: "ConsensusState") -> bool:
        """
        Check whether two consensus states describe the same config.

        Two states match if they have the same leader and the same set of
        voters and non-voters, and one of the following holds:
        - at least one of them is of type MASTER
        - they are configs of the same type and they have the same term
        """
        same_leader_and_peers = (
            self.leader_uuid == other.leader_uuid
            and self.voter_uuids == other.voter_uuids
            and self.non_voter_uuids == other.non_voter_uuids
        )
        if ConsensusConfigType.MASTER in (self.config_type, other.config_type):
            return same_leader_and_peers
        return (
            self.config_type == other.config_type
            and self.term == other.term
            and same_leader_and_peers
        )


@dataclass(frozen=True)
class RaftConfig:
    """A Raft membership config as reported by a server."""

    opid_index: int | None = None
    voter_uuids: tuple[str, ...] = ()
    non_voter_uuids: tuple[str, ...] = ()


@dataclass(frozen=True)
class ReportedConsensusState:
    """
    Raw consensus state reported by a master or a tablet replica.

    Attributes:
        current_term: Term the reporter is in
        leader_uuid: Leader the reporter knows about, if any
        committed_config: Last committed config
        pending_config: Config being changed to, if a change is in flight
    """

    current_term: int
    leader_uuid: str | None
    committed_config: RaftConfig
    pending_config: RaftConfig | None = None

    def as_consensus_state(self) -> ConsensusState:
        """Convert to a ConsensusState of the reporter's active config."""
        if self.pending_config is not None:
            config_type = ConsensusConfigType.PENDING
            config = self.pending_config
        else:
            config_type = ConsensusConfigType.COMMITTED
            config = self.committed_config
        return ConsensusState(
            config_type=config_type,
            term=self.current_term,
            opid_index=config.opid_index,
            leader_uuid=self.leader_uuid or None,
            voter_uuids=frozenset(config.voter_uuids),
            non_voter_uuids=frozenset(config.non_voter_uuids),
        )


@dataclass
class TabletStatus:
    """
    Status of one tablet replica as reported by its tablet server.

    Attributes:
        tablet_id: Tablet this replica belongs to
        table_name: Name of the tablet's table
        state: Replica lifecycle state
        data_state: State of the replica's data (COPYING while being copied)
        estimated_on_disk_size: On-disk size in bytes
        last_status: Last status message of the replica
    """

    tablet_id: TabletId
    table_name: str = ""
    state: TabletState = TabletState.UNKNOWN
    data_state: TabletDataState = TabletDataState.UNKNOWN
    estimated_on_disk_size: int = 0
    last_status: str = ""


@dataclass
class TabletServerInfo:
    """Everything a tablet server reports about itself in one info fetch."""

    uuid: ServerUuid
    timestamp: int
    tablets: list[TabletStatus] = field(default_factory=list)


@dataclass(frozen=True)
class ColumnSchema:
    """A single column of a table schema."""

    name: str
    type: str
    is_key: bool = False
    is_nullable: bool = False


@dataclass
class Schema:
    """Table schema, passed to checksum scans to select columns."""

    columns: list[ColumnSchema] = field(default_factory=list)

    @property
    def num_key_columns(self) -> int:
        return sum(1 for c in self.columns if c.is_key)

    def column_names(self) -> list[str]:
        return [c.name for c in self.columns]


@dataclass(frozen=True)
class TabletReplica:
    """
    Placement of a tablet replica on a tablet server, as the master sees it.

    Attributes:
        ts_uuid: UUID of the hosting tablet server
        is_leader: Whether the master believes this replica is leader
        is_voter: Whether this replica is a voting member
    """

    ts_uuid: ServerUuid
    is_leader: bool = False
    is_voter: bool = True


@dataclass(eq=False)
class Tablet:
    """
    A tablet of a table, composed of replicas.

    Attributes:
        id: Tablet ID
        table_name: Name of the owning table (lookup key, not a reference)
        replicas: Replicas in the order the master reported them
    """

    id: TabletId
    table_name: str
    replicas: list[TabletReplica] = field(default_factory=list)


@dataclass(eq=False)
class Table:
    """
    A table, composed of tablets.

    Attributes:
        name: Table name
        schema: Table schema
        num_replicas: Configured replication factor
        tablets: Tablets in discovery order
    """

    name: str
    schema: Schema
    num_replicas: int
    tablets: list[Tablet] = field(default_factory=list)

    def set_tablets(self, tablets: list[Tablet]) -> None:
        """Replace the tablet list in one step."""
        self.tablets = list(tablets)


# A snapshot timestamp indicating that the current time should be used.
CURRENT_TIMESTAMP = 0


@dataclass(frozen=True)
class ChecksumOptions:
    """
    Options for checksum scans.

    Attributes:
        timeout: Maximum total time to wait for results from all replicas
        scan_concurrency: Maximum concurrent scans per tablet server
        use_snapshot: Whether to scan at a snapshot timestamp
        snapshot_timestamp: Snapshot timestamp, or CURRENT_TIMESTAMP to use
            a tablet server's current time
    """

    timeout: timedelta = field(default_factory=lambda: timedelta(seconds=3600))
    scan_concurrency: int = 4
    use_snapshot: bool = True
    snapshot_timestamp: int = CURRENT_TIMESTAMP
