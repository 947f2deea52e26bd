"""
HTTP clients for the ksck API of masters and tablet servers.

MasterClient and TabletServerClient receive an injected httpx.AsyncClient
with base_url set to the server. All methods are async and fail loudly:
HTTP errors propagate as httpx.HTTPError and malformed bodies as
pydantic.ValidationError. Mapping those onto GatewayError is the job of
the gateway classes in ksck.remote.cluster.

Responses are converted to ksck.model types so nothing outside this
package sees the wire format.
"""

from dataclasses import dataclass
from enum import Enum
from typing import TypeVar
from urllib.parse import quote

import httpx

from ksck.model import (
    ColumnSchema,
    RaftConfig,
    ReportedConsensusState,
    Schema,
    Table,
    Tablet,
    TabletDataState,
    TabletId,
    TabletReplica,
    TabletServerInfo,
    TabletState,
    TabletStatus,
)
from ksck.remote.types import (
    ChecksumRequest,
    ChecksumStepResponse,
    ConsensusStateResponse,
    MasterStatusResponse,
    RaftConfigResponse,
    TablesResponse,
    TabletServerConsensusResponse,
    TabletServersResponse,
    TabletServerStatusResponse,
    TabletsResponse,
)

API_PREFIX = "/ksck/v1"

E = TypeVar("E", bound=Enum)


def _parse_enum(enum_type: type[E], value: str, default: E) -> E:
    # Servers may be newer than this client
    try:
        return enum_type(value)
    except ValueError:
        return default


def _raft_config_from_response(config: RaftConfigResponse) -> RaftConfig:
    return RaftConfig(
        opid_index=config.opid_index,
        voter_uuids=tuple(config.voters),
        non_voter_uuids=tuple(config.non_voters),
    )


def consensus_state_from_response(cstate: ConsensusStateResponse) -> ReportedConsensusState:
    """Convert a wire consensus state to a ReportedConsensusState."""
    return ReportedConsensusState(
        current_term=cstate.current_term,
        leader_uuid=cstate.leader_uuid or None,
        committed_config=_raft_config_from_response(cstate.committed_config),
        pending_config=(
            _raft_config_from_response(cstate.pending_config)
            if cstate.pending_config is not None
            else None
        ),
    )


@dataclass
class MasterClient:
    """
    Master API client with injected httpx client.

    Attributes:
        http: Pre-configured httpx.AsyncClient with base_url set to the master.

    Example:
        async with httpx.AsyncClient(base_url="http://master-0:8051") as http:
            client = MasterClient(http=http)
            status = await client.get_status()
            print(f"Master {status.uuid} is {status.role}")
    """

    http: httpx.AsyncClient

    async def get_status(self) -> MasterStatusResponse:
        """
        Get the master's identity and role.

        Calls GET /ksck/v1/status.

        Raises:
            httpx.HTTPError: On transport or HTTP errors (4xx, 5xx responses).
            pydantic.ValidationError: On malformed response data.
        """
        response = await self.http.get(f"{API_PREFIX}/status")
        response.raise_for_status()
        return MasterStatusResponse.model_validate(response.json())

    async def get_consensus_state(self) -> ReportedConsensusState:
        """Get the master's consensus state (GET /ksck/v1/consensus)."""
        response = await self.http.get(f"{API_PREFIX}/consensus")
        response.raise_for_status()
        data = ConsensusStateResponse.model_validate(response.json())
        return consensus_state_from_response(data)

    async def get_tablet_servers(self) -> list[tuple[str, str]]:
        """
        Get the tablet server roster.

        Calls GET /ksck/v1/tablet-servers.

        Returns:
            (uuid, address) pairs in the order the master reports them.
        """
        response = await self.http.get(f"{API_PREFIX}/tablet-servers")
        response.raise_for_status()
        data = TabletServersResponse.model_validate(response.json())
        return [(ts.uuid, ts.address) for ts in data.tablet_servers]

    async def get_tables(self) -> list[Table]:
        """Get all tables, without tablets (GET /ksck/v1/tables)."""
        response = await self.http.get(f"{API_PREFIX}/tables")
        response.raise_for_status()
        data = TablesResponse.model_validate(response.json())
        return [
            Table(
                name=t.name,
                schema=Schema(
                    columns=[
                        ColumnSchema(
                            name=c.name,
                            type=c.type,
                            is_key=c.is_key,
                            is_nullable=c.is_nullable,
                        )
                        for c in t.columns
                    ]
                ),
                num_replicas=t.num_replicas,
            )
            for t in data.tables
        ]

    async def get_tablets(self, table_name: str) -> list[Tablet]:
        """
        Get the tablets of a table with their replica placements.

        Calls GET /ksck/v1/tables/{name}/tablets. The table name is
        URL-quoted since table names may contain any character.
        """
        response = await self.http.get(
            f"{API_PREFIX}/tables/{quote(table_name, safe='')}/tablets"
        )
        response.raise_for_status()
        data = TabletsResponse.model_validate(response.json())
        return [
            Tablet(
                id=t.tablet_id,
                table_name=table_name,
                replicas=[
                    TabletReplica(ts_uuid=r.ts_uuid, is_leader=r.is_leader, is_voter=r.is_voter)
                    for r in t.replicas
                ],
            )
            for t in data.tablets
        ]


@dataclass
class TabletServerClient:
    """
    Tablet server API client with injected httpx client.

    Attributes:
        http: Pre-configured httpx.AsyncClient with base_url set to the
            tablet server.
    """

    http: httpx.AsyncClient

    async def get_status(self) -> TabletServerInfo:
        """
        Get the server's identity, clock and hosted tablets.

        Calls GET /ksck/v1/status.

        Raises:
            httpx.HTTPError: On transport or HTTP errors (4xx, 5xx responses).
            pydantic.ValidationError: On malformed response data.
        """
        response = await self.http.get(f"{API_PREFIX}/status")
        response.raise_for_status()
        data = TabletServerStatusResponse.model_validate(response.json())
        return TabletServerInfo(
            uuid=data.uuid,
            timestamp=data.timestamp,
            tablets=[
                TabletStatus(
                    tablet_id=t.tablet_id,
                    table_name=t.table_name,
                    state=_parse_enum(TabletState, t.state, TabletState.UNKNOWN),
                    data_state=_parse_enum(
                        TabletDataState, t.data_state, TabletDataState.UNKNOWN
                    ),
                    estimated_on_disk_size=t.estimated_on_disk_size,
                    last_status=t.last_status,
                )
                for t in data.tablets
            ],
        )

    async def get_consensus_states(self) -> dict[TabletId, ReportedConsensusState]:
        """Get the consensus state of every hosted tablet (GET /ksck/v1/consensus)."""
        response = await self.http.get(f"{API_PREFIX}/consensus")
        response.raise_for_status()
        data = TabletServerConsensusResponse.model_validate(response.json())
        return {t.tablet_id: consensus_state_from_response(t.cstate) for t in data.tablets}

    async def start_checksum(self, request: ChecksumRequest) -> ChecksumStepResponse:
        """Open a checksum scanner and run its first step (POST /ksck/v1/checksum)."""
        response = await self.http.post(
            f"{API_PREFIX}/checksum", json=request.model_dump(exclude_none=True)
        )
        response.raise_for_status()
        return ChecksumStepResponse.model_validate(response.json())

    async def continue_checksum(self, scanner_id: str) -> ChecksumStepResponse:
        """Run the next step of an open scanner (POST /ksck/v1/checksum/{scanner_id})."""
        response = await self.http.post(f"{API_PREFIX}/checksum/{scanner_id}")
        response.raise_for_status()
        return ChecksumStepResponse.model_validate(response.json())
