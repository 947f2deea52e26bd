"""
Live gateway variant speaking JSON over HTTP.

RemoteMaster, RemoteTabletServer and RemoteCluster implement the gateway
hooks on top of MasterClient and TabletServerClient. Every httpx and
pydantic failure is converted to GatewayError here, so the checker only
ever sees gateway errors.

Each server gets its own httpx.AsyncClient; RemoteCluster.close() closes
all of them. Pass a transport to route every client through it (tests use
httpx.MockTransport).
"""

import asyncio
import logging
from collections.abc import Iterator
from contextlib import contextmanager

import httpx
import pydantic

from ksck.exceptions import GatewayError
from ksck.gateway import ChecksumProgressCallbacks, Cluster, Master, TabletServer
from ksck.model import (
    ChecksumOptions,
    ReportedConsensusState,
    Schema,
    ServerUuid,
    Table,
    TabletId,
    TabletServerInfo,
)
from ksck.remote.client import MasterClient, TabletServerClient
from ksck.remote.types import ChecksumRequest

logger = logging.getLogger(__name__)

LEADER_ROLE = "LEADER"


def base_url(address: str) -> str:
    """Turn a host:port address into a base URL."""
    if "://" in address:
        return address
    return f"http://{address}"


@contextmanager
def gateway_errors(address: str) -> Iterator[None]:
    """Re-raise transport, HTTP and decoding failures as GatewayError."""
    try:
        yield
    except httpx.HTTPStatusError as e:
        raise GatewayError(
            f"HTTP {e.response.status_code} from {e.request.url.path}", address=address
        ) from e
    except httpx.HTTPError as e:
        raise GatewayError(f"{type(e).__name__}: {e}", address=address) from e
    except pydantic.ValidationError as e:
        raise GatewayError(f"malformed response: {e.error_count()} error(s)", address=address) from e
    except ValueError as e:
        # Body that is not JSON at all, e.g. a proxy's error page
        raise GatewayError(f"malformed response: {e}", address=address) from e


class RemoteMaster(Master):
    """Master reached over HTTP."""

    def __init__(
        self,
        address: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
        expected_uuid: str | None = None,
    ) -> None:
        super().__init__(address, expected_uuid=expected_uuid)
        self.timeout = timeout
        self.transport = transport
        self._client: MasterClient | None = None

    async def _init(self) -> None:
        await self._ensure_client()

    async def _ensure_client(self) -> MasterClient:
        if self._client is not None:
            return self._client
        try:
            http = httpx.AsyncClient(
                base_url=base_url(self.address), timeout=self.timeout, transport=self.transport
            )
        except httpx.InvalidURL as e:
            raise GatewayError(f"invalid address: {e}", address=self.address) from e
        self._client = MasterClient(http=http)
        return self._client

    async def _fetch_info(self) -> ServerUuid:
        client = await self._ensure_client()
        with gateway_errors(self.address):
            status = await client.get_status()
        return status.uuid

    async def _fetch_consensus_state(self) -> ReportedConsensusState:
        client = await self._ensure_client()
        with gateway_errors(self.address):
            return await client.get_consensus_state()

    async def role(self) -> str:
        """Role the master reports. Raises GatewayError."""
        client = await self._ensure_client()
        with gateway_errors(self.address):
            status = await client.get_status()
        return status.role

    @property
    def client(self) -> MasterClient:
        """Client for master-level queries. Raises GatewayError if not initialized."""
        if self._client is None:
            raise GatewayError("master is not initialized", address=self.address)
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.http.aclose()
            self._client = None


class RemoteTabletServer(TabletServer):
    """Tablet server reached over HTTP."""

    def __init__(
        self,
        uuid: ServerUuid,
        address: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(uuid, address=address)
        self.client = TabletServerClient(
            http=httpx.AsyncClient(base_url=base_url(address), timeout=timeout, transport=transport)
        )

    async def _fetch_info(self) -> TabletServerInfo:
        with gateway_errors(self.address):
            return await self.client.get_status()

    async def _fetch_consensus_state(self) -> dict[TabletId, ReportedConsensusState]:
        with gateway_errors(self.address):
            return await self.client.get_consensus_states()

    async def run_checksum_scan(
        self,
        tablet_id: TabletId,
        schema: Schema,
        options: ChecksumOptions,
        callbacks: ChecksumProgressCallbacks,
    ) -> None:
        """
        Drive an incremental checksum scan to completion.

        Each step's row and byte deltas are forwarded to callbacks.progress().
        A server-reported scan error finishes the scan with that error;
        transport failures raise GatewayError.
        """
        request = ChecksumRequest(
            tablet_id=tablet_id,
            columns=schema.column_names(),
            snapshot_timestamp=options.snapshot_timestamp if options.use_snapshot else None,
        )
        with gateway_errors(self.address):
            step = await self.client.start_checksum(request)
            while True:
                if step.error is not None:
                    callbacks.finished(GatewayError(step.error, address=self.address), 0)
                    return
                callbacks.progress(step.rows_checksummed, step.disk_bytes_summed)
                if not step.has_more:
                    break
                step = await self.client.continue_checksum(step.scanner_id)
        callbacks.finished(None, step.checksum)

    async def close(self) -> None:
        await self.client.http.aclose()


class RemoteCluster(Cluster):
    """
    Cluster reached over HTTP through its masters.

    Discovery queries go to the leader master found by connect().

    Example:
        async with RemoteCluster(["master-0:8051", "master-1:8051"]) as cluster:
            ksck = Ksck(cluster)
            results = await ksck.run()
    """

    def __init__(
        self,
        master_addresses: list[str],
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__()
        self.timeout = timeout
        self.transport = transport
        self.masters = [
            RemoteMaster(addr, timeout=timeout, transport=transport) for addr in master_addresses
        ]
        self._leader: RemoteMaster | None = None

    @property
    def leader(self) -> RemoteMaster:
        if self._leader is None:
            raise GatewayError("not connected to a leader master")
        return self._leader

    async def connect(self) -> None:
        """Find the leader master among the configured masters."""
        roles = await asyncio.gather(
            *(self._role_of(m) for m in self._remote_masters())
        )
        for master, role in zip(self._remote_masters(), roles):
            if role == LEADER_ROLE:
                self._leader = master
                logger.debug(f"Leader master is {master.address}")
                return
        self._leader = None
        addresses = ", ".join(m.address for m in self.masters)
        raise GatewayError(f"no leader master found among {addresses}")

    async def retrieve_tablet_servers(self) -> None:
        with gateway_errors(self.leader.address):
            roster = await self.leader.client.get_tablet_servers()

        servers: dict[ServerUuid, TabletServer] = {}
        for uuid, address in roster:
            existing = self.tablet_servers.get(uuid)
            if existing is not None and existing.address == address:
                servers[uuid] = existing
            else:
                servers[uuid] = RemoteTabletServer(
                    uuid, address, timeout=self.timeout, transport=self.transport
                )
        stale = [
            ts
            for uuid, ts in self.tablet_servers.items()
            if servers.get(uuid) is not ts and isinstance(ts, RemoteTabletServer)
        ]
        for ts in stale:
            await ts.close()
        self.tablet_servers = servers

    async def retrieve_tables_list(self) -> None:
        with gateway_errors(self.leader.address):
            self.tables = await self.leader.client.get_tables()

    async def retrieve_tablets_list(self, table: Table) -> None:
        with gateway_errors(self.leader.address):
            tablets = await self.leader.client.get_tablets(table.name)
        table.set_tablets(tablets)

    async def close(self) -> None:
        for master in self._remote_masters():
            await master.close()
        for ts in self.tablet_servers.values():
            if isinstance(ts, RemoteTabletServer):
                await ts.close()

    def _remote_masters(self) -> list[RemoteMaster]:
        return [m for m in self.masters if isinstance(m, RemoteMaster)]

    async def _role_of(self, master: RemoteMaster) -> str | None:
        try:
            return await master.role()
        except GatewayError as e:
            logger.debug(f"Master {master.address} did not answer: {e}")
            return None
