"""
Ksck - consistency checks against a cluster.

This module implements the checks that reconcile what the masters and the
tablet servers each report about a cluster:
- Master health and master consensus agreement
- Tablet server health (reachable, reporting the expected UUID)
- Per-tablet health: recovering, unavailable, under-replicated, or with
  replicas whose consensus configs disagree with each other or the master
- Cross-replica data checksums

Checks run in a fixed order (see Ksck.run()). Per-server failures are
recorded and never abort the checks of other servers; only failing to
reach the cluster or to discover its tables stops a run. Whatever happens,
run() returns a KsckResults that the report renderer can display.
"""

import asyncio
import fnmatch
import itertools
import logging
from dataclasses import dataclass, field, replace
from datetime import timedelta
from enum import Enum

from ksck.checksum import ChecksumResults, ChecksumScanner
from ksck.exceptions import (
    ChecksumError,
    ClusterUnavailableError,
    DiscoveryError,
    GatewayError,
    KsckError,
    WrongServerUuidError,
)
from ksck.gateway import Cluster, Master, TabletServer
from ksck.model import (
    CURRENT_TIMESTAMP,
    ChecksumOptions,
    ConsensusConfigType,
    ConsensusState,
    ServerUuid,
    Table,
    Tablet,
    TabletDataState,
    TabletId,
    TabletState,
    TabletStatus,
)

logger = logging.getLogger(__name__)


class CheckResult(str, Enum):
    """Health of a tablet, or of a table as its least healthy tablet."""

    # The tablet is healthy.
    HEALTHY = "HEALTHY"
    # The tablet has on-going tablet copies.
    RECOVERING = "RECOVERING"
    # The tablet has fewer running replicas than its table's replication
    # factor and has no on-going tablet copies.
    UNDER_REPLICATED = "UNDER_REPLICATED"
    # The tablet is missing a majority of its replicas and is unavailable
    # for writes.
    UNAVAILABLE = "UNAVAILABLE"
    # The replicas' consensus configs disagree with each other or the master's.
    CONSENSUS_MISMATCH = "CONSENSUS_MISMATCH"


class ServerHealth(str, Enum):
    """Health of a master or tablet server."""

    # The server is healthy.
    HEALTHY = "HEALTHY"
    # The server couldn't be connected to.
    UNAVAILABLE = "UNAVAILABLE"
    # The server reported an unexpected UUID.
    WRONG_SERVER_UUID = "WRONG_SERVER_UUID"


class ServerType(str, Enum):
    MASTER = "Master"
    TABLET_SERVER = "Tablet Server"


_SERVER_HEALTH_SCORES = {
    ServerHealth.HEALTHY: 0,
    ServerHealth.WRONG_SERVER_UUID: 1,
    ServerHealth.UNAVAILABLE: 2,
}


def server_health_score(health: ServerHealth) -> int:
    """
    Return the "unhealthiness level" of a server health.

    Useful for sorting or comparing; the worst health has the highest score.
    """
    return _SERVER_HEALTH_SCORES[health]


@dataclass
class ServerHealthSummary:
    """Result of a server health check."""

    uuid: str
    address: str
    health: ServerHealth


@dataclass
class TableSummary:
    """
    Per-category tablet counts of a table.

    A table's status is the health of its least healthy tablet.
    """

    name: str
    healthy_tablets: int = 0
    recovering_tablets: int = 0
    underreplicated_tablets: int = 0
    consensus_mismatch_tablets: int = 0
    unavailable_tablets: int = 0

    def total_tablets(self) -> int:
        return (
            self.healthy_tablets
            + self.recovering_tablets
            + self.underreplicated_tablets
            + self.consensus_mismatch_tablets
            + self.unavailable_tablets
        )

    def unhealthy_tablets(self) -> int:
        return self.total_tablets() - self.healthy_tablets

    def table_status(self) -> CheckResult:
        if self.unavailable_tablets > 0:
            return CheckResult.UNAVAILABLE
        if self.consensus_mismatch_tablets > 0:
            return CheckResult.CONSENSUS_MISMATCH
        if self.underreplicated_tablets > 0:
            return CheckResult.UNDER_REPLICATED
        if self.recovering_tablets > 0:
            return CheckResult.RECOVERING
        return CheckResult.HEALTHY

    def record(self, result: CheckResult) -> None:
        """Count one tablet with the given result."""
        if result == CheckResult.HEALTHY:
            self.healthy_tablets += 1
        elif result == CheckResult.RECOVERING:
            self.recovering_tablets += 1
        elif result == CheckResult.UNDER_REPLICATED:
            self.underreplicated_tablets += 1
        elif result == CheckResult.CONSENSUS_MISMATCH:
            self.consensus_mismatch_tablets += 1
        else:
            self.unavailable_tablets += 1


@dataclass
class ReplicaSummary:
    """
    What was learned about one replica while verifying its tablet.

    Attributes:
        ts_uuid: Hosting tablet server UUID
        ts_address: Hosting tablet server address (None if the server is unknown)
        ts_healthy: Whether the hosting server was fetched successfully
        is_leader: Master's view of leadership
        is_voter: Master's view of voting membership
        state: Replica state reported by the server (None if not known)
        status: Full replica status reported by the server
        consensus_state: Active consensus config reported by the replica
    """

    ts_uuid: ServerUuid
    ts_address: str | None
    ts_healthy: bool
    is_leader: bool
    is_voter: bool
    state: TabletState | None = None
    status: TabletStatus | None = None
    consensus_state: ConsensusState | None = None


@dataclass
class TabletSummary:
    """Result and supporting details of one tablet verification."""

    id: TabletId
    table_name: str
    result: CheckResult
    status: str
    master_cstate: ConsensusState
    replicas: list[ReplicaSummary] = field(default_factory=list)
    consensus_conflict: bool = False


@dataclass(frozen=True)
class KsckConfig:
    """
    Configuration of one check run; immutable once the run starts.

    Filters are glob-style patterns, e.g. 'Foo*' matches all tables whose
    name begins with 'Foo'. Empty filters match everything; with both set,
    a tablet is checked only if its table and its ID both match.

    Attributes:
        check_replica_count: Whether tablets with fewer running replicas
            than the replication factor are reported as under-replicated
        table_filters: Patterns for table names
        tablet_id_filters: Patterns for tablet IDs
        retry_interval: Pause between re-verifications of a table
        table_check_timeout: If non-zero, unhealthy tables are re-verified
            until they settle or this much time elapses
    """

    check_replica_count: bool = True
    table_filters: tuple[str, ...] = ()
    tablet_id_filters: tuple[str, ...] = ()
    retry_interval: timedelta = field(default_factory=lambda: timedelta(seconds=1))
    table_check_timeout: timedelta = field(default_factory=timedelta)

    def __post_init__(self) -> None:
        object.__setattr__(self, "table_filters", tuple(self.table_filters))
        object.__setattr__(self, "tablet_id_filters", tuple(self.tablet_id_filters))


@dataclass
class KsckResults:
    """
    Everything a check run found, ready for rendering.

    Attributes:
        master_summaries: Master health, healthiest first, then by UUID
        tserver_summaries: Tablet server health, healthiest first, then by UUID
        master_consensus_states: Master UUID to its reported consensus state
        master_consensus_conflict: Whether the masters' configs disagree
        table_summaries: Per-table results in discovery order
        tablet_summaries: Per-tablet results in discovery order
        checksum_results: Checksum outcome, if a checksum scan was run
        errors: Human-readable description of every problem found
    """

    master_summaries: list[ServerHealthSummary] = field(default_factory=list)
    tserver_summaries: list[ServerHealthSummary] = field(default_factory=list)
    master_consensus_states: dict[str, ConsensusState] = field(default_factory=dict)
    master_consensus_conflict: bool = False
    table_summaries: list[TableSummary] = field(default_factory=list)
    tablet_summaries: list[TabletSummary] = field(default_factory=list)
    checksum_results: ChecksumResults | None = None
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def matches_any_pattern(patterns: tuple[str, ...], value: str) -> bool:
    """True if patterns is empty or any glob pattern matches value."""
    if not patterns:
        return True
    return any(fnmatch.fnmatchcase(value, p) for p in patterns)


def majority_size(num_replicas: int) -> int:
    return num_replicas // 2 + 1


def _sorted_summaries(summaries: list[ServerHealthSummary]) -> list[ServerHealthSummary]:
    return sorted(summaries, key=lambda s: (server_health_score(s.health), s.uuid))


def _health_of(server: Master | TabletServer) -> ServerHealth:
    if server.is_healthy:
        return ServerHealth.HEALTHY
    if isinstance(server.fetch_error, WrongServerUuidError):
        return ServerHealth.WRONG_SERVER_UUID
    return ServerHealth.UNAVAILABLE


class Ksck:
    """
    Runs consistency checks against a cluster.

    The checks must be called in order; each depends on the data fetched
    by the ones before it. run() does this and collects every problem in
    a KsckResults.

    Example:
        async with create_remote_cluster(["master-0:8051"]) as cluster:
            ksck = Ksck(cluster, KsckConfig(table_filters=("orders*",)))
            results = await ksck.run(checksum_options=ChecksumOptions())
            render_results(results, Console())
    """

    def __init__(
        self,
        cluster: Cluster,
        config: KsckConfig | None = None,
        progress_interval: float = 5.0,
    ) -> None:
        self.cluster = cluster
        self.config = config or KsckConfig()
        self.progress_interval = progress_interval
        self.results = KsckResults()
        self._tables_fetched = False
        self._tablet_summaries: dict[TabletId, TabletSummary] = {}
        self._tserver_error: str | None = None
        self._tservers_refreshed = False

    # -------------------------------------------------------------------------
    # Cluster discovery
    # -------------------------------------------------------------------------

    async def check_cluster_running(self) -> None:
        """
        Verify that a leader master can be contacted.

        Raises:
            ClusterUnavailableError: If no master answers as leader.
        """
        try:
            await self.cluster.connect()
        except GatewayError as e:
            raise ClusterUnavailableError(f"unable to connect to the cluster: {e}") from e
        logger.info("Connected to the leader master")

    async def fetch_table_and_tablet_info(self) -> None:
        """
        Populate tablet servers, tables and tablets from the leader master.

        Raises:
            DiscoveryError: At the first failing discovery step.
        """
        steps = [
            ("connect", self.cluster.connect),
            ("retrieve_tablet_servers", self.cluster.retrieve_tablet_servers),
            ("retrieve_tables_list", self.cluster.retrieve_tables_list),
        ]
        for step, fetch in steps:
            try:
                await fetch()
            except GatewayError as e:
                raise DiscoveryError(step, e) from e
        for table in self.cluster.tables:
            try:
                await self.cluster.retrieve_tablets_list(table)
            except GatewayError as e:
                raise DiscoveryError(f"retrieve_tablets_list({table.name})", e) from e
        self._tables_fetched = True
        logger.info(
            f"Discovered {len(self.cluster.tablet_servers)} tablet server(s) "
            f"and {len(self.cluster.tables)} table(s)"
        )

    # -------------------------------------------------------------------------
    # Server checks
    # -------------------------------------------------------------------------

    async def check_master_health(self) -> list[ServerHealthSummary]:
        """
        Fetch info from every master and summarize their health.

        Per-master failures are recorded, not raised.

        Returns:
            Master health summaries, healthiest first, then by UUID.
        """
        masters = self.cluster.masters
        await asyncio.gather(*(self._connect_to_master(m) for m in masters))

        summaries = _sorted_summaries(
            [
                ServerHealthSummary(
                    uuid=m.uuid or Master.DUMMY_UUID, address=m.address, health=_health_of(m)
                )
                for m in masters
            ]
        )
        self.results.master_summaries = summaries

        bad_masters = sum(1 for s in summaries if s.health != ServerHealth.HEALTHY)
        if bad_masters:
            self._error(
                f"failed to gather info from all masters: "
                f"{bad_masters} of {len(masters)} had errors"
            )
        return summaries

    async def check_master_consensus(self) -> bool:
        """
        Fetch every master's consensus state and check they all match.

        Returns:
            True if every master reported a consensus state and all of them
            match pairwise.
        """
        masters = self.cluster.masters
        await asyncio.gather(*(m.fetch_consensus_state() for m in masters))

        cstates: dict[str, ConsensusState] = {}
        missing = 0
        for master in masters:
            if master.cstate is None:
                missing += 1
                continue
            cstates[str(master)] = master.cstate.as_consensus_state()
        self.results.master_consensus_states = cstates

        conflict = any(
            not a.matches(b) for a, b in itertools.combinations(cstates.values(), 2)
        )
        self.results.master_consensus_conflict = conflict
        if conflict:
            logger.warning("The masters' consensus configs differ")
            self._error("there are master consensus conflicts")
        if missing:
            self._error(
                f"failed to gather consensus info from all masters: "
                f"{missing} of {len(masters)} had errors"
            )
        return not conflict and not missing

    async def connect_to_tablet_server(self, ts: TabletServer) -> bool:
        """Fetch a tablet server's info, then its consensus state."""
        if not await ts.fetch_info():
            return False
        if not await ts.fetch_consensus_state():
            return False
        logger.debug(f"Fetched info from tablet server {ts}")
        return True

    async def fetch_info_from_tablet_servers(self) -> list[ServerHealthSummary]:
        """
        Fetch info from every tablet server in the master's roster.

        Per-server failures are recorded, not raised.

        Returns:
            Tablet server health summaries, healthiest first, then by UUID.
        """
        self._require_tables()
        servers = list(self.cluster.tablet_servers.values())
        if not servers:
            logger.info("The cluster doesn't have any tablet servers")
            self.results.tserver_summaries = []
            return []

        await asyncio.gather(*(self.connect_to_tablet_server(ts) for ts in servers))
        return self._summarize_tablet_servers()

    def _summarize_tablet_servers(self) -> list[ServerHealthSummary]:
        """Summarize tablet server health, replacing any earlier summary."""
        servers = list(self.cluster.tablet_servers.values())
        summaries = _sorted_summaries(
            [
                ServerHealthSummary(uuid=ts.uuid, address=ts.address, health=_health_of(ts))
                for ts in servers
            ]
        )
        self.results.tserver_summaries = summaries

        if self._tserver_error is not None:
            self.results.errors.remove(self._tserver_error)
            self._tserver_error = None
        bad_servers = sum(1 for s in summaries if s.health != ServerHealth.HEALTHY)
        if bad_servers:
            self._tserver_error = (
                f"failed to gather info for all tablet servers: "
                f"{bad_servers} of {len(servers)} had errors"
            )
            self._error(self._tserver_error)
        return summaries

    # -------------------------------------------------------------------------
    # Table and tablet checks
    # -------------------------------------------------------------------------

    async def check_tables_consistency(self) -> list[TableSummary]:
        """
        Verify every tablet of every table matching the filters.

        With a non-zero table_check_timeout in the config, each table is
        verified through verify_table_with_timeout().

        Returns:
            One TableSummary per checked table, in discovery order.
        """
        self._require_tables()
        timeout = self.config.table_check_timeout
        table_summaries: list[TableSummary] = []
        for table in self._filtered_tables():
            if timeout > timedelta(0):
                summary = await self.verify_table_with_timeout(table, timeout)
            else:
                summary = self.verify_table(table)
            if self.config.tablet_id_filters and summary.total_tablets() == 0:
                continue
            table_summaries.append(summary)

        # Retries may have fetched tablet servers again
        if self._tservers_refreshed:
            self._summarize_tablet_servers()
        self.results.table_summaries = table_summaries
        self.results.tablet_summaries = list(self._tablet_summaries.values())

        if not table_summaries:
            logger.info("The cluster doesn't have any matching tables")
            return table_summaries

        bad_tables = sum(
            1 for s in table_summaries if s.table_status() != CheckResult.HEALTHY
        )
        if bad_tables:
            self._error(f"{bad_tables} out of {len(table_summaries)} table(s) are not healthy")
        return table_summaries

    def verify_table(self, table: Table) -> TableSummary:
        """Verify the tablets of a table that match the tablet ID filters."""
        summary = TableSummary(name=table.name)
        self._tablet_summaries = {
            tablet_id: s
            for tablet_id, s in self._tablet_summaries.items()
            if s.table_name != table.name
        }
        for tablet in self._filtered_tablets(table):
            summary.record(self.verify_tablet(tablet, table.num_replicas))
        if summary.table_status() == CheckResult.HEALTHY:
            logger.debug(f"Table {table.name} is HEALTHY ({summary.total_tablets()} tablet(s))")
        else:
            logger.warning(
                f"Table {table.name} has {summary.unhealthy_tablets()} unhealthy "
                f"tablet(s): {summary.table_status().value}"
            )
        return summary

    async def verify_table_with_timeout(
        self,
        table: Table,
        timeout: timedelta,
        retry_interval: timedelta | None = None,
    ) -> TableSummary:
        """
        Re-verify a table until it settles or the timeout elapses.

        Tablets in the middle of a copy or an election look unhealthy for a
        while. Between attempts the table's tablet list and the tablet
        servers hosting its replicas are fetched again.

        Args:
            table: Table to verify
            timeout: Overall time budget
            retry_interval: Pause between attempts (defaults to the config's)

        Returns:
            The first HEALTHY or RECOVERING summary, or the last summary
            observed when the timeout elapses.
        """
        self._require_tables()
        interval = (retry_interval or self.config.retry_interval).total_seconds()
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout.total_seconds()
        while True:
            summary = self.verify_table(table)
            if summary.table_status() in (CheckResult.HEALTHY, CheckResult.RECOVERING):
                return summary
            if loop.time() + interval > deadline:
                logger.warning(
                    f"Table {table.name} is still {summary.table_status().value} "
                    f"after {timeout.total_seconds():.1f}s"
                )
                return summary
            await asyncio.sleep(interval)
            await self._refresh_table(table)

    def verify_tablet(self, tablet: Tablet, table_num_replicas: int) -> CheckResult:
        """
        Classify one tablet, given its table's replication factor.

        The first applicable result wins: RECOVERING, UNAVAILABLE,
        UNDER_REPLICATED, CONSENSUS_MISMATCH, HEALTHY.
        """
        tablet_str = f"Tablet {tablet.id} of table '{tablet.table_name}'"

        leader_uuid = next((r.ts_uuid for r in tablet.replicas if r.is_leader), None)
        master_cstate = ConsensusState(
            config_type=ConsensusConfigType.MASTER,
            leader_uuid=leader_uuid,
            voter_uuids=frozenset(r.ts_uuid for r in tablet.replicas if r.is_voter),
            non_voter_uuids=frozenset(r.ts_uuid for r in tablet.replicas if not r.is_voter),
        )

        running_voters = 0
        copying_replicas = 0
        replicas: list[ReplicaSummary] = []
        for replica in tablet.replicas:
            ts = self.cluster.tablet_servers.get(replica.ts_uuid)
            info = ReplicaSummary(
                ts_uuid=replica.ts_uuid,
                ts_address=ts.address if ts else None,
                ts_healthy=ts is not None and ts.is_healthy,
                is_leader=replica.is_leader,
                is_voter=replica.is_voter,
            )
            if ts is not None and ts.is_healthy:
                info.state = ts.replica_state(tablet.id)
                info.status = (ts.tablet_status_map or {}).get(tablet.id)
                reported = (ts.tablet_consensus_state_map or {}).get((ts.uuid, tablet.id))
                if reported is not None:
                    info.consensus_state = reported.as_consensus_state()
            replicas.append(info)

            if info.state == TabletState.RUNNING and replica.is_voter:
                running_voters += 1
            elif info.status is not None and info.status.data_state == TabletDataState.COPYING:
                copying_replicas += 1

        reported_cstates = [r.consensus_state for r in replicas if r.consensus_state is not None]
        conflicting_states = sum(1 for c in reported_cstates if not c.matches(master_cstate))
        peers_disagree = any(
            not a.matches(b) for a, b in itertools.combinations(reported_cstates, 2)
        )
        consensus_conflict = conflicting_states > 0 or peers_disagree

        if copying_replicas > 0:
            result = CheckResult.RECOVERING
            status = f"{tablet_str} is recovering: {copying_replicas} on-going tablet copies"
        elif running_voters < majority_size(table_num_replicas):
            result = CheckResult.UNAVAILABLE
            status = (
                f"{tablet_str} is unavailable: "
                f"{len(tablet.replicas) - running_voters} replica(s) not RUNNING"
            )
        elif self.config.check_replica_count and running_voters < table_num_replicas:
            result = CheckResult.UNDER_REPLICATED
            status = (
                f"{tablet_str} is under-replicated: "
                f"{table_num_replicas - running_voters} replica(s) not RUNNING"
            )
        elif consensus_conflict:
            result = CheckResult.CONSENSUS_MISMATCH
            status = (
                f"{tablet_str} is conflicted: {conflicting_states} replicas' active "
                f"configs differ from the master's"
            )
            if peers_disagree:
                status += " and the replicas disagree with each other"
        else:
            result = CheckResult.HEALTHY
            status = f"{tablet_str} is healthy."

        if result == CheckResult.HEALTHY:
            logger.debug(status)
        else:
            logger.warning(status)

        num_voters = len(master_cstate.voter_uuids)
        if self.config.check_replica_count and num_voters > table_num_replicas:
            logger.warning(
                f"{tablet_str} is over-replicated: {num_voters} voters but the "
                f"table's replication factor is {table_num_replicas}"
            )

        self._tablet_summaries[tablet.id] = TabletSummary(
            id=tablet.id,
            table_name=tablet.table_name,
            result=result,
            status=status,
            master_cstate=master_cstate,
            replicas=replicas,
            consensus_conflict=consensus_conflict,
        )
        return result

    # -------------------------------------------------------------------------
    # Checksums
    # -------------------------------------------------------------------------

    async def checksum_data(self, options: ChecksumOptions) -> ChecksumResults:
        """
        Checksum every replica of the filtered tablets and compare them.

        Args:
            options: Checksum options; a CURRENT_TIMESTAMP snapshot is resolved
                to the current timestamp of a healthy tablet server.

        Returns:
            ChecksumResults with per-replica checksums and findings.

        Raises:
            ChecksumError: If nothing matches the filters or no snapshot
                timestamp can be determined.
        """
        self._require_tables()
        tables = self._filtered_tables()
        if not tables:
            raise ChecksumError(
                f"No table found. Filter: table_filters={list(self.config.table_filters)}"
            )
        tablets = [(table, tablet) for table in tables for tablet in self._filtered_tablets(table)]
        if not any(tablet.replicas for _, tablet in tablets):
            raise ChecksumError(
                f"No tablet replicas found. "
                f"Filter: tablet_id_filters={list(self.config.tablet_id_filters)}"
            )

        if options.use_snapshot and options.snapshot_timestamp == CURRENT_TIMESTAMP:
            timestamp = next(
                (
                    ts.current_timestamp
                    for ts in self.cluster.tablet_servers.values()
                    if ts.current_timestamp is not None
                ),
                None,
            )
            if timestamp is None:
                raise ChecksumError(
                    "No tablet servers were available to fetch the current timestamp"
                )
            logger.info(f"Using snapshot timestamp: {timestamp}")
            options = replace(options, snapshot_timestamp=timestamp)

        scanner = ChecksumScanner(
            self.cluster.tablet_servers, options, progress_interval=self.progress_interval
        )
        results = await scanner.run(tablets)
        self.results.checksum_results = results

        if results.num_mismatches:
            self._error(f"{results.num_mismatches} checksum mismatches were detected")
        if results.num_errors:
            self._error(f"{results.num_errors} errors were detected")
        return results

    # -------------------------------------------------------------------------
    # Full run
    # -------------------------------------------------------------------------

    async def run(self, checksum_options: ChecksumOptions | None = None) -> KsckResults:
        """
        Run every check in order and collect the results.

        Fatal errors (cluster unreachable, discovery failure) stop the run;
        they are recorded in the results like every other problem.

        Args:
            checksum_options: If given, also run a checksum scan

        Returns:
            KsckResults, always renderable.
        """
        try:
            await self.check_cluster_running()
            await self.fetch_table_and_tablet_info()
        except (ClusterUnavailableError, DiscoveryError) as e:
            self._error(str(e))
            await self.check_master_health()
            return self.results

        await self.check_master_health()
        await self.check_master_consensus()
        await self.fetch_info_from_tablet_servers()
        await self.check_tables_consistency()

        if checksum_options is not None:
            try:
                await self.checksum_data(checksum_options)
            except ChecksumError as e:
                self._error(f"checksum scan failed: {e}")
        return self.results

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _filtered_tables(self) -> list[Table]:
        return [
            t
            for t in self.cluster.tables
            if matches_any_pattern(self.config.table_filters, t.name)
        ]

    def _filtered_tablets(self, table: Table) -> list[Tablet]:
        return [
            t
            for t in table.tablets
            if matches_any_pattern(self.config.tablet_id_filters, t.id)
        ]

    async def _refresh_table(self, table: Table) -> None:
        """Fetch a table's tablets and the servers hosting them again."""
        try:
            await self.cluster.retrieve_tablets_list(table)
        except GatewayError as e:
            logger.warning(f"Unable to refresh the tablets of table {table.name}: {e}")
        uuids = {r.ts_uuid for t in table.tablets for r in t.replicas}
        servers = [ts for uuid, ts in self.cluster.tablet_servers.items() if uuid in uuids]
        await asyncio.gather(*(self.connect_to_tablet_server(ts) for ts in servers))
        self._tservers_refreshed = True

    async def _connect_to_master(self, master: Master) -> bool:
        if not await master.init():
            return False
        return await master.fetch_info()

    def _require_tables(self) -> None:
        if not self._tables_fetched:
            raise KsckError("fetch_table_and_tablet_info() must be called first")

    def _error(self, message: str) -> None:
        logger.error(message)
        self.results.errors.append(message)
