"""
Gateway interface between ksck and a cluster.

Master, TabletServer and Cluster hold the fetched snapshot of each server
and define the fetch operations a concrete variant provides. There are two
variants:
- ksck.mock: in-memory cluster for tests and demos
- ksck.remote: JSON-over-HTTP cluster backed by httpx

Per-server fetches never raise. A variant's hook raises GatewayError, and
the public fetch method records the failure as a FETCH_FAILED transition
and returns False. Cluster-level discovery raises GatewayError so the
checker can stop the run.

Accessors for fetched data return None while the data is not populated,
so callers must handle the unfetched case explicitly.
"""

import logging
from abc import ABC, abstractmethod
from typing import Protocol, runtime_checkable

from ksck.exceptions import GatewayError, WrongServerUuidError
from ksck.model import (
    ChecksumOptions,
    FetchState,
    ReportedConsensusState,
    Schema,
    ServerUuid,
    Table,
    TabletId,
    TabletServerInfo,
    TabletState,
    TabletStatus,
)

logger = logging.getLogger(__name__)


@runtime_checkable
class ChecksumProgressCallbacks(Protocol):
    """
    Receives progress for the checksum scan of a single replica.

    progress() is called zero or more times, then finished() exactly once.
    Implementations must be thread-safe and non-blocking.
    """

    def progress(self, delta_rows_summed: int, delta_disk_bytes_summed: int) -> None:
        """
        Report incremental progress from the server side.

        delta_disk_bytes_summed only counts data read from disk and does
        not count in-memory unflushed data.
        """
        ...

    def finished(self, error: Exception | None, checksum: int) -> None:
        """The scan of the replica is complete (error is None on success)."""
        ...


class Master(ABC):
    """
    A master server, known by address.

    Subclasses implement _init(), _fetch_info() and _fetch_consensus_state().

    Attributes:
        address: Address the master was configured with
        expected_uuid: If set, a master reporting another UUID fails its fetch
        state: Fetch state of the master's info
        fetch_error: Error that made the last info fetch fail, if any
    """

    # Masters that haven't been fetched from or that were unavailable have a
    # dummy uuid.
    DUMMY_UUID = "<unknown>"

    def __init__(self, address: str, expected_uuid: str | None = None) -> None:
        self.address = address
        self.expected_uuid = expected_uuid
        self.state = FetchState.UNINITIALIZED
        self.fetch_error: GatewayError | None = None
        self._uuid = self.DUMMY_UUID
        self._cstate: ReportedConsensusState | None = None
        self._cstate_attempted = False

    @abstractmethod
    async def _init(self) -> None:
        """Prepare the connection to the master. Raises GatewayError."""

    @abstractmethod
    async def _fetch_info(self) -> ServerUuid:
        """Return the UUID the master reports. Raises GatewayError."""

    @abstractmethod
    async def _fetch_consensus_state(self) -> ReportedConsensusState:
        """Return the master's consensus state. Raises GatewayError."""

    async def init(self) -> bool:
        """
        Prepare the connection before the first fetch. Returns True on success.

        A failure is recorded like a failed info fetch.
        """
        try:
            await self._init()
        except GatewayError as e:
            logger.warning(f"Unable to initialize master {self.address}: {e}")
            self.fetch_error = e
            self.state = FetchState.FETCH_FAILED
            return False
        return True

    async def fetch_info(self) -> bool:
        """Fetch the master's identity. Returns True on success."""
        try:
            uuid = await self._fetch_info()
            if self.expected_uuid is not None and uuid != self.expected_uuid:
                raise WrongServerUuidError(self.expected_uuid, uuid, address=self.address)
        except GatewayError as e:
            logger.warning(f"Error fetching info from master {self.address}: {e}")
            self.fetch_error = e
            self.state = FetchState.FETCH_FAILED
            return False
        self._uuid = uuid
        self.fetch_error = None
        self.state = FetchState.FETCHED
        return True

    async def fetch_consensus_state(self) -> bool:
        """Fetch the master's consensus state. Returns True on success."""
        self._cstate_attempted = True
        try:
            self._cstate = await self._fetch_consensus_state()
        except GatewayError as e:
            logger.warning(f"Error fetching consensus state from master {self.address}: {e}")
            self._cstate = None
            return False
        return True

    @property
    def uuid(self) -> str | None:
        """Master UUID; None before any fetch attempt, a placeholder if it failed."""
        if self.state == FetchState.UNINITIALIZED:
            return None
        return self._uuid

    @property
    def cstate(self) -> ReportedConsensusState | None:
        """Consensus state; None before a fetch attempt or if it failed."""
        if not self._cstate_attempted:
            return None
        return self._cstate

    @property
    def is_healthy(self) -> bool:
        return self.state == FetchState.FETCHED

    def __str__(self) -> str:
        return f"{self.uuid or self.DUMMY_UUID} ({self.address})"


class TabletServer(ABC):
    """
    A tablet server, known a priori by the UUID in the master's roster.

    Subclasses implement _fetch_info(), _fetch_consensus_state() and
    run_checksum_scan().

    Attributes:
        uuid: UUID from the master roster
        address: Address the master reported for this server
        state: Fetch state of the server's info
        fetch_error: Error that made the last info fetch fail, if any
    """

    def __init__(self, uuid: ServerUuid, address: str = "") -> None:
        self.uuid = uuid
        self.address = address
        self.state = FetchState.UNINITIALIZED
        self.fetch_error: GatewayError | None = None
        self._tablet_status_map: dict[TabletId, TabletStatus] = {}
        self._tablet_consensus_state_map: dict[
            tuple[ServerUuid, TabletId], ReportedConsensusState
        ] = {}
        self._timestamp = 0

    @abstractmethod
    async def _fetch_info(self) -> TabletServerInfo:
        """Return the server's status and tablets. Raises GatewayError."""

    @abstractmethod
    async def _fetch_consensus_state(self) -> dict[TabletId, ReportedConsensusState]:
        """Return the consensus state of every hosted tablet. Raises GatewayError."""

    @abstractmethod
    async def run_checksum_scan(
        self,
        tablet_id: TabletId,
        schema: Schema,
        options: ChecksumOptions,
        callbacks: ChecksumProgressCallbacks,
    ) -> None:
        """
        Run a checksum scan of one tablet replica.

        The scanner runs this coroutine as its own task. Results are
        delivered through callbacks; finished() must be called exactly once,
        possibly from another thread after this coroutine has returned.
        """

    async def fetch_info(self) -> bool:
        """Fetch the server's status and tablet map. Returns True on success."""
        try:
            info = await self._fetch_info()
            if info.uuid != self.uuid:
                raise WrongServerUuidError(self.uuid, info.uuid, address=self.address)
        except GatewayError as e:
            logger.warning(f"Error fetching info from tablet server {self}: {e}")
            self.fetch_error = e
            self.state = FetchState.FETCH_FAILED
            return False
        self._tablet_status_map = {t.tablet_id: t for t in info.tablets}
        self._timestamp = info.timestamp
        self.fetch_error = None
        self.state = FetchState.FETCHED
        return True

    async def fetch_consensus_state(self) -> bool:
        """Fetch consensus state of all hosted tablets. Returns True on success."""
        try:
            cstates = await self._fetch_consensus_state()
        except GatewayError as e:
            logger.warning(f"Error fetching consensus state from tablet server {self}: {e}")
            self.fetch_error = e
            self.state = FetchState.FETCH_FAILED
            return False
        self._tablet_consensus_state_map = {
            (self.uuid, tablet_id): cstate for tablet_id, cstate in cstates.items()
        }
        return True

    @property
    def is_healthy(self) -> bool:
        return self.state == FetchState.FETCHED

    @property
    def tablet_status_map(self) -> dict[TabletId, TabletStatus] | None:
        """Tablet ID to replica status; None unless fetched."""
        if self.state != FetchState.FETCHED:
            return None
        return self._tablet_status_map

    @property
    def tablet_consensus_state_map(
        self,
    ) -> dict[tuple[ServerUuid, TabletId], ReportedConsensusState] | None:
        """(server UUID, tablet ID) to consensus state; None unless fetched."""
        if self.state != FetchState.FETCHED:
            return None
        return self._tablet_consensus_state_map

    @property
    def current_timestamp(self) -> int | None:
        """Server clock at fetch time; None unless fetched."""
        if self.state != FetchState.FETCHED:
            return None
        return self._timestamp

    def replica_state(self, tablet_id: TabletId) -> TabletState | None:
        """
        State of this server's replica of a tablet.

        Returns None unless fetched, UNKNOWN if the server does not host it.
        """
        status_map = self.tablet_status_map
        if status_map is None:
            return None
        status = status_map.get(tablet_id)
        if status is None:
            return TabletState.UNKNOWN
        return status.state

    def __str__(self) -> str:
        return f"{self.uuid} ({self.address})"


class Cluster(ABC):
    """
    Connection to a cluster: its masters, tablet servers and tables.

    Subclasses implement the four discovery operations. Each raises
    GatewayError on failure. retrieve_tablets_list() must leave the
    table's tablets untouched unless it succeeds.

    Supports async context manager usage so variants can release
    connections.
    """

    def __init__(self) -> None:
        self.masters: list[Master] = []
        self.tablet_servers: dict[ServerUuid, TabletServer] = {}
        self.tables: list[Table] = []

    async def __aenter__(self) -> "Cluster":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def close(self) -> None:
        """Release any resources held by the variant."""

    @abstractmethod
    async def connect(self) -> None:
        """Connect to the cluster, i.e. locate the leader master."""

    @abstractmethod
    async def retrieve_tablet_servers(self) -> None:
        """Fetch the tablet server roster."""

    @abstractmethod
    async def retrieve_tables_list(self) -> None:
        """Fetch the list of tables."""

    @abstractmethod
    async def retrieve_tablets_list(self, table: Table) -> None:
        """Fetch the tablets of a table, replacing them only on success."""
