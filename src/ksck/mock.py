"""
In-memory gateway variant.

MockMaster, MockTabletServer and MockCluster serve a cluster described
entirely in memory. Tests describe a cluster by populating the public
attributes and then run ksck checks against it; failures are injected by
setting the *_error attributes.

Example:
    cluster = MockCluster()
    cluster.masters = [MockMaster("master-0:7051", uuid="m0")]
    ts = MockTabletServer("ts-0", address="ts-0:7050")
    ts.tablets["t-1"] = TabletStatus("t-1", state=TabletState.RUNNING)
    cluster.tablet_servers = {ts.uuid: ts}
"""

import asyncio

from ksck.exceptions import GatewayError
from ksck.gateway import ChecksumProgressCallbacks, Cluster, Master, TabletServer
from ksck.model import (
    ChecksumOptions,
    ReportedConsensusState,
    Schema,
    ServerUuid,
    Table,
    Tablet,
    TabletId,
    TabletServerInfo,
    TabletStatus,
)


class MockMaster(Master):
    """
    Master whose answers come from its attributes.

    Attributes:
        reported_uuid: UUID returned by info fetches
        consensus_state: Consensus state returned by consensus fetches
        is_leader: Whether this master answers as leader on connect
        init_error: If set, init() fails with it
        fetch_info_error: If set, info fetches raise it
        fetch_consensus_error: If set, consensus fetches raise it
        init_count: Number of init() calls
    """

    def __init__(
        self,
        address: str,
        uuid: str,
        consensus_state: ReportedConsensusState | None = None,
        is_leader: bool = False,
        expected_uuid: str | None = None,
    ) -> None:
        super().__init__(address, expected_uuid=expected_uuid)
        self.reported_uuid = uuid
        self.consensus_state = consensus_state
        self.is_leader = is_leader
        self.init_error: GatewayError | None = None
        self.fetch_info_error: GatewayError | None = None
        self.fetch_consensus_error: GatewayError | None = None
        self.init_count = 0

    async def _init(self) -> None:
        self.init_count += 1
        if self.init_error is not None:
            raise self.init_error

    async def _fetch_info(self) -> ServerUuid:
        if self.fetch_info_error is not None:
            raise self.fetch_info_error
        return self.reported_uuid

    async def _fetch_consensus_state(self) -> ReportedConsensusState:
        if self.fetch_consensus_error is not None:
            raise self.fetch_consensus_error
        if self.consensus_state is None:
            raise GatewayError("no consensus state", address=self.address)
        return self.consensus_state


class MockTabletServer(TabletServer):
    """
    Tablet server whose answers come from its attributes.

    Attributes:
        reported_uuid: UUID returned by info fetches (defaults to uuid)
        timestamp: Current timestamp returned by info fetches
        tablets: Tablet ID to replica status
        consensus_states: Tablet ID to reported consensus state
        checksums: Tablet ID to the checksum a scan produces
        checksum_errors: Tablet ID to the error a scan reports
        rows_per_tablet: Rows reported as progress by each scan
        disk_bytes_per_tablet: Disk bytes reported as progress by each scan
        scan_delay: Seconds each scan takes
        fetch_info_error: If set, info fetches raise it
        fetch_consensus_error: If set, consensus fetches raise it
        fetch_count: Number of info fetches performed
        active_scans / max_active_scans: Scan concurrency bookkeeping
    """

    def __init__(self, uuid: ServerUuid, address: str = "", timestamp: int = 0) -> None:
        super().__init__(uuid, address=address or f"{uuid}:7050")
        self.reported_uuid = uuid
        self.timestamp = timestamp
        self.tablets: dict[TabletId, TabletStatus] = {}
        self.consensus_states: dict[TabletId, ReportedConsensusState] = {}
        self.checksums: dict[TabletId, int] = {}
        self.checksum_errors: dict[TabletId, GatewayError] = {}
        self.rows_per_tablet = 0
        self.disk_bytes_per_tablet = 0
        self.scan_delay = 0.0
        self.fetch_info_error: GatewayError | None = None
        self.fetch_consensus_error: GatewayError | None = None
        self.fetch_count = 0
        self.active_scans = 0
        self.max_active_scans = 0
        self.scanned: list[tuple[TabletId, ChecksumOptions]] = []

    async def _fetch_info(self) -> TabletServerInfo:
        self.fetch_count += 1
        if self.fetch_info_error is not None:
            raise self.fetch_info_error
        return TabletServerInfo(
            uuid=self.reported_uuid,
            timestamp=self.timestamp,
            tablets=list(self.tablets.values()),
        )

    async def _fetch_consensus_state(self) -> dict[TabletId, ReportedConsensusState]:
        if self.fetch_consensus_error is not None:
            raise self.fetch_consensus_error
        return dict(self.consensus_states)

    async def run_checksum_scan(
        self,
        tablet_id: TabletId,
        schema: Schema,
        options: ChecksumOptions,
        callbacks: ChecksumProgressCallbacks,
    ) -> None:
        self.scanned.append((tablet_id, options))
        self.active_scans += 1
        self.max_active_scans = max(self.max_active_scans, self.active_scans)
        try:
            if self.scan_delay:
                await asyncio.sleep(self.scan_delay)
            error = self.checksum_errors.get(tablet_id)
            if error is not None:
                callbacks.finished(error, 0)
                return
            callbacks.progress(self.rows_per_tablet, self.disk_bytes_per_tablet)
            callbacks.finished(None, self.checksums.get(tablet_id, 0))
        finally:
            self.active_scans -= 1


class MockCluster(Cluster):
    """
    Cluster whose discovery results come from its attributes.

    Attributes:
        roster: Tablet servers the leader master reports
        table_list: Tables the leader master reports
        tablets_by_table: Table name to the tablets the master reports
        connect_error / tablet_servers_error / tables_error: Injected errors
        tablets_errors: Table name to an injected tablet-list error
    """

    def __init__(self) -> None:
        super().__init__()
        self.roster: list[MockTabletServer] = []
        self.table_list: list[Table] = []
        self.tablets_by_table: dict[str, list[Tablet]] = {}
        self.connect_error: GatewayError | None = None
        self.tablet_servers_error: GatewayError | None = None
        self.tables_error: GatewayError | None = None
        self.tablets_errors: dict[str, GatewayError] = {}

    async def connect(self) -> None:
        if self.connect_error is not None:
            raise self.connect_error
        for master in self.masters:
            if isinstance(master, MockMaster) and master.is_leader:
                if master.fetch_info_error is None:
                    return
        raise GatewayError("no leader master found")

    async def retrieve_tablet_servers(self) -> None:
        if self.tablet_servers_error is not None:
            raise self.tablet_servers_error
        self.tablet_servers = {ts.uuid: ts for ts in self.roster}

    async def retrieve_tables_list(self) -> None:
        if self.tables_error is not None:
            raise self.tables_error
        self.tables = list(self.table_list)

    async def retrieve_tablets_list(self, table: Table) -> None:
        error = self.tablets_errors.get(table.name)
        if error is not None:
            raise error
        table.set_tablets(self.tablets_by_table.get(table.name, []))
