"""
Pydantic response types for the ksck HTTP API.

This module provides Pydantic models for parsing responses from:
- Master endpoints: identity, consensus state, tablet server roster,
  tables and tablet locations
- Tablet server endpoints: status, per-tablet consensus state and
  incremental checksum scans

These are API response types for external data validation. Internal
types (Table, Tablet, ReportedConsensusState, etc.) are dataclasses in
ksck.model.

Notes:
- Enum-like fields (tablet state, role) are plain strings on the wire and
  are mapped onto ksck.model enums by the client, unknown values included
- Leader UUIDs may be "" when no leader is known; the client maps "" to None
"""

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# Shared Types
# =============================================================================


class RaftConfigResponse(BaseModel):
    """Raft membership config as reported by a master or tablet replica."""

    opid_index: int | None = None
    voters: list[str] = Field(default_factory=list)
    non_voters: list[str] = Field(default_factory=list)


class ConsensusStateResponse(BaseModel):
    """
    Consensus state of a master or a tablet replica.

    Example response:
    {
        "current_term": 3,
        "leader_uuid": "ts-0",
        "committed_config": {"opid_index": 12, "voters": ["ts-0", "ts-1", "ts-2"]},
        "pending_config": null
    }
    """

    current_term: int
    leader_uuid: str = ""
    committed_config: RaftConfigResponse
    pending_config: RaftConfigResponse | None = None


# =============================================================================
# Master API Response Types
# =============================================================================
# Base path: /ksck/v1


class MasterStatusResponse(BaseModel):
    """
    Response from master GET /ksck/v1/status.

    Example response:
    {"uuid": "m0", "role": "LEADER"}
    """

    model_config = ConfigDict(extra="allow")

    uuid: str
    role: str = "UNKNOWN"  # "LEADER", "FOLLOWER", "UNKNOWN"


class TabletServerEntry(BaseModel):
    """A tablet server in the master's roster."""

    uuid: str
    address: str


class TabletServersResponse(BaseModel):
    """
    Response from master GET /ksck/v1/tablet-servers.

    Example response:
    {"tablet_servers": [{"uuid": "ts-0", "address": "ts-0:7050"}]}
    """

    tablet_servers: list[TabletServerEntry] = Field(default_factory=list)


class ColumnResponse(BaseModel):
    """A column of a table schema."""

    name: str
    type: str
    is_key: bool = False
    is_nullable: bool = False


class TableEntry(BaseModel):
    """A table as listed by the master."""

    name: str
    num_replicas: int
    columns: list[ColumnResponse] = Field(default_factory=list)


class TablesResponse(BaseModel):
    """
    Response from master GET /ksck/v1/tables.

    Example response:
    {
        "tables": [
            {
                "name": "metrics",
                "num_replicas": 3,
                "columns": [{"name": "key", "type": "INT64", "is_key": true}]
            }
        ]
    }
    """

    tables: list[TableEntry] = Field(default_factory=list)


class ReplicaLocation(BaseModel):
    """Placement of a tablet replica as the master sees it."""

    ts_uuid: str
    is_leader: bool = False
    is_voter: bool = True


class TabletLocation(BaseModel):
    """A tablet of a table with its replica placements."""

    tablet_id: str
    replicas: list[ReplicaLocation] = Field(default_factory=list)


class TabletsResponse(BaseModel):
    """
    Response from master GET /ksck/v1/tables/{name}/tablets.

    Example response:
    {
        "tablets": [
            {
                "tablet_id": "t-1",
                "replicas": [{"ts_uuid": "ts-0", "is_leader": true}]
            }
        ]
    }
    """

    tablets: list[TabletLocation] = Field(default_factory=list)


# =============================================================================
# Tablet Server API Response Types
# =============================================================================


class TabletStatusEntry(BaseModel):
    """Status of one tablet replica hosted on a tablet server."""

    tablet_id: str
    table_name: str = ""
    state: str = "UNKNOWN"
    data_state: str = "TABLET_DATA_UNKNOWN"
    estimated_on_disk_size: int = 0
    last_status: str = ""


class TabletServerStatusResponse(BaseModel):
    """
    Response from tablet server GET /ksck/v1/status.

    Example response:
    {
        "uuid": "ts-0",
        "timestamp": 6597373696000,
        "tablets": [
            {"tablet_id": "t-1", "state": "RUNNING", "data_state": "TABLET_DATA_READY"}
        ]
    }
    """

    uuid: str
    timestamp: int
    tablets: list[TabletStatusEntry] = Field(default_factory=list)


class TabletConsensusEntry(BaseModel):
    """Consensus state of one hosted tablet replica."""

    tablet_id: str
    cstate: ConsensusStateResponse


class TabletServerConsensusResponse(BaseModel):
    """Response from tablet server GET /ksck/v1/consensus."""

    tablets: list[TabletConsensusEntry] = Field(default_factory=list)


class ChecksumRequest(BaseModel):
    """Body of tablet server POST /ksck/v1/checksum."""

    tablet_id: str
    columns: list[str] = Field(default_factory=list)
    snapshot_timestamp: int | None = None


class ChecksumStepResponse(BaseModel):
    """
    One step of an incremental checksum scan.

    Returned by POST /ksck/v1/checksum (first step) and
    POST /ksck/v1/checksum/{scanner_id} (continuation). Row and byte counts
    are deltas since the previous step; checksum is cumulative.

    Example response:
    {
        "scanner_id": "sc-1",
        "has_more": true,
        "rows_checksummed": 1000,
        "disk_bytes_summed": 65536,
        "checksum": 8734211
    }
    """

    scanner_id: str = ""
    has_more: bool = False
    rows_checksummed: int = 0
    disk_bytes_summed: int = 0
    checksum: int = 0
    error: str | None = None
