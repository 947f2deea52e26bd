"""
Tests for Ksck cluster checks, against in-memory clusters.

These tests verify:
- Tablet classification precedence: RECOVERING, UNAVAILABLE,
  UNDER_REPLICATED, CONSENSUS_MISMATCH, HEALTHY
- Master health and master consensus checks
- Tablet server health, including WRONG_SERVER_UUID
- Table and tablet ID filters (glob patterns, intersection semantics)
- Fatal discovery failures still yield renderable results
- Re-verification with timeout settles on transient problems
"""

import logging
from datetime import timedelta

import pytest

from ksck.checker import CheckResult, Ksck, KsckConfig, ServerHealth
from ksck.exceptions import (
    ClusterUnavailableError,
    DiscoveryError,
    GatewayError,
    KsckError,
)
from ksck.model import TabletDataState, TabletState

from conftest import master_cstate, replica_cstate


async def prepare(cluster, config=None) -> Ksck:
    """Run the fetch phase of a check run."""
    ksck = Ksck(cluster, config)
    await ksck.check_cluster_running()
    await ksck.fetch_table_and_tablet_info()
    await ksck.fetch_info_from_tablet_servers()
    return ksck


def tablet_of(cluster, table_name="table-1", index=0):
    return cluster.tablets_by_table[table_name][index]


# =============================================================================
# Healthy cluster
# =============================================================================


class TestHealthyCluster:
    """Tests for a cluster without problems."""

    @pytest.mark.asyncio
    async def test_run_reports_no_errors(self, cluster):
        results = await Ksck(cluster).run()

        assert results.ok
        assert results.errors == []
        assert [s.health for s in results.master_summaries] == [ServerHealth.HEALTHY] * 3
        assert [s.health for s in results.tserver_summaries] == [ServerHealth.HEALTHY] * 3
        assert not results.master_consensus_conflict

    @pytest.mark.asyncio
    async def test_table_summary(self, make_cluster):
        cluster = make_cluster(tables={"table-1": ["tablet-1", "tablet-2"]})
        results = await Ksck(cluster).run()

        assert len(results.table_summaries) == 1
        summary = results.table_summaries[0]
        assert summary.name == "table-1"
        assert summary.healthy_tablets == 2
        assert summary.table_status() == CheckResult.HEALTHY

    @pytest.mark.asyncio
    async def test_tablet_summaries_in_discovery_order(self, make_cluster):
        cluster = make_cluster(tables={"a": ["t-2", "t-1"], "b": ["t-3"]})
        results = await Ksck(cluster).run()

        assert [t.id for t in results.tablet_summaries] == ["t-2", "t-1", "t-3"]
        assert all(t.result == CheckResult.HEALTHY for t in results.tablet_summaries)

    @pytest.mark.asyncio
    async def test_empty_cluster(self, make_cluster):
        """A cluster without tables or tablet servers is healthy."""
        cluster = make_cluster(tables={}, num_tservers=0)
        results = await Ksck(cluster).run()

        assert results.ok
        assert results.table_summaries == []
        assert results.tserver_summaries == []


# =============================================================================
# Tablet classification
# =============================================================================


class TestTabletClassification:
    """Tests for per-tablet results."""

    @pytest.mark.asyncio
    async def test_one_replica_down_is_under_replicated(self, cluster):
        """2 of 3 running voters is a majority but below the replication factor."""
        cluster.roster[2].fetch_info_error = GatewayError("connection refused")
        ksck = await prepare(cluster)

        [summary] = await ksck.check_tables_consistency()

        assert summary.underreplicated_tablets == 1
        assert summary.table_status() == CheckResult.UNDER_REPLICATED

    @pytest.mark.asyncio
    async def test_two_replicas_down_is_unavailable(self, cluster):
        """1 of 3 running voters is below a majority."""
        cluster.roster[1].fetch_info_error = GatewayError("connection refused")
        cluster.roster[2].fetch_info_error = GatewayError("connection refused")
        ksck = await prepare(cluster)

        [summary] = await ksck.check_tables_consistency()

        assert summary.unavailable_tablets == 1
        assert summary.table_status() == CheckResult.UNAVAILABLE

    @pytest.mark.asyncio
    async def test_replica_not_running_counts_as_down(self, cluster):
        """Replicas in a state other than RUNNING are not counted."""
        cluster.roster[1].tablets["tablet-1"].state = TabletState.FAILED
        cluster.roster[2].tablets["tablet-1"].state = TabletState.STOPPED
        ksck = await prepare(cluster)

        result = ksck.verify_tablet(tablet_of(cluster), 3)

        assert result == CheckResult.UNAVAILABLE

    @pytest.mark.asyncio
    async def test_replica_missing_from_server(self, cluster):
        """A server that does not host the tablet counts as not running."""
        del cluster.roster[2].tablets["tablet-1"]
        ksck = await prepare(cluster)

        assert ksck.verify_tablet(tablet_of(cluster), 3) == CheckResult.UNDER_REPLICATED
        replica = ksck._tablet_summaries["tablet-1"].replicas[2]
        assert replica.state == TabletState.UNKNOWN

    @pytest.mark.asyncio
    async def test_even_replication_factor_majority(self, make_cluster):
        """With 2 replicas a majority is both of them."""
        cluster = make_cluster(num_tservers=2, num_replicas=2)
        cluster.roster[1].fetch_info_error = GatewayError("connection refused")
        ksck = await prepare(cluster)

        assert ksck.verify_tablet(tablet_of(cluster), 2) == CheckResult.UNAVAILABLE

    @pytest.mark.asyncio
    async def test_copying_replica_is_recovering(self, cluster):
        ts = cluster.roster[2]
        ts.tablets["tablet-1"].state = TabletState.BOOTSTRAPPING
        ts.tablets["tablet-1"].data_state = TabletDataState.COPYING
        ksck = await prepare(cluster)

        [summary] = await ksck.check_tables_consistency()

        assert summary.recovering_tablets == 1
        assert summary.table_status() == CheckResult.RECOVERING

    @pytest.mark.asyncio
    async def test_recovering_takes_precedence_over_unavailable(self, cluster):
        """A tablet being copied is RECOVERING even without a running majority."""
        cluster.roster[1].fetch_info_error = GatewayError("connection refused")
        cluster.roster[2].tablets["tablet-1"].state = TabletState.BOOTSTRAPPING
        cluster.roster[2].tablets["tablet-1"].data_state = TabletDataState.COPYING
        ksck = await prepare(cluster)

        assert ksck.verify_tablet(tablet_of(cluster), 3) == CheckResult.RECOVERING

    @pytest.mark.asyncio
    async def test_leader_mismatch_is_consensus_mismatch(self, cluster):
        """A replica following another leader in the same term conflicts."""
        voters = ["ts-0", "ts-1", "ts-2"]
        cluster.roster[1].consensus_states["tablet-1"] = replica_cstate(voters, leader="ts-1")
        ksck = await prepare(cluster)

        assert ksck.verify_tablet(tablet_of(cluster), 3) == CheckResult.CONSENSUS_MISMATCH
        details = ksck._tablet_summaries["tablet-1"]
        assert details.consensus_conflict
        assert "configs differ from the master's" in details.status

    @pytest.mark.asyncio
    async def test_replicas_in_different_terms_conflict(self, cluster):
        """Replicas agreeing with the master but not with each other conflict."""
        voters = ["ts-0", "ts-1", "ts-2"]
        cluster.roster[2].consensus_states["tablet-1"] = replica_cstate(voters, term=2)
        ksck = await prepare(cluster)

        assert ksck.verify_tablet(tablet_of(cluster), 3) == CheckResult.CONSENSUS_MISMATCH
        assert "disagree with each other" in ksck._tablet_summaries["tablet-1"].status

    @pytest.mark.asyncio
    async def test_membership_mismatch_is_consensus_mismatch(self, cluster):
        cluster.roster[0].consensus_states["tablet-1"] = replica_cstate(["ts-0", "ts-1"])
        ksck = await prepare(cluster)

        assert ksck.verify_tablet(tablet_of(cluster), 3) == CheckResult.CONSENSUS_MISMATCH

    @pytest.mark.asyncio
    async def test_under_replication_takes_precedence_over_mismatch(self, cluster):
        cluster.roster[2].fetch_info_error = GatewayError("connection refused")
        cluster.roster[1].consensus_states["tablet-1"] = replica_cstate(
            ["ts-0", "ts-1", "ts-2"], leader="ts-1"
        )
        ksck = await prepare(cluster)

        assert ksck.verify_tablet(tablet_of(cluster), 3) == CheckResult.UNDER_REPLICATED

    @pytest.mark.asyncio
    async def test_replica_count_check_disabled(self, cluster):
        """Without replica counting a running majority is enough."""
        cluster.roster[2].fetch_info_error = GatewayError("connection refused")
        ksck = await prepare(cluster, KsckConfig(check_replica_count=False))

        [summary] = await ksck.check_tables_consistency()

        assert summary.table_status() == CheckResult.HEALTHY

    @pytest.mark.asyncio
    async def test_replica_count_check_disabled_still_checks_consensus(self, cluster):
        cluster.roster[1].consensus_states["tablet-1"] = replica_cstate(
            ["ts-0", "ts-1", "ts-2"], leader="ts-1"
        )
        ksck = await prepare(cluster, KsckConfig(check_replica_count=False))

        assert ksck.verify_tablet(tablet_of(cluster), 3) == CheckResult.CONSENSUS_MISMATCH

    @pytest.mark.asyncio
    async def test_over_replication_is_logged(self, cluster, caplog):
        """More voters than the replication factor is a warning, not a result."""
        cluster.table_list[0].num_replicas = 2
        ksck = await prepare(cluster)

        with caplog.at_level(logging.WARNING, logger="ksck.checker"):
            result = ksck.verify_tablet(tablet_of(cluster), 2)

        assert result == CheckResult.HEALTHY
        assert "over-replicated" in caplog.text

    @pytest.mark.asyncio
    async def test_replica_details_of_unavailable_server(self, cluster):
        cluster.roster[2].fetch_info_error = GatewayError("connection refused")
        ksck = await prepare(cluster)
        ksck.verify_tablet(tablet_of(cluster), 3)

        replicas = ksck._tablet_summaries["tablet-1"].replicas
        assert [r.ts_healthy for r in replicas] == [True, True, False]
        assert replicas[0].is_leader
        assert replicas[0].state == TabletState.RUNNING
        assert replicas[2].state is None
        assert replicas[2].consensus_state is None


# =============================================================================
# Masters
# =============================================================================


class TestMasterChecks:
    """Tests for master health and consensus."""

    @pytest.mark.asyncio
    async def test_unavailable_master(self, cluster):
        cluster.masters[2].fetch_info_error = GatewayError("connection refused")
        ksck = Ksck(cluster)

        summaries = await ksck.check_master_health()

        assert [s.health for s in summaries] == [
            ServerHealth.HEALTHY,
            ServerHealth.HEALTHY,
            ServerHealth.UNAVAILABLE,
        ]
        assert summaries[2].address == "m2:7051"
        assert summaries[2].uuid == "<unknown>"
        assert ksck.results.errors == [
            "failed to gather info from all masters: 1 of 3 had errors"
        ]

    @pytest.mark.asyncio
    async def test_master_with_wrong_uuid(self, cluster):
        cluster.masters[1].expected_uuid = "m9"
        ksck = Ksck(cluster)

        summaries = await ksck.check_master_health()

        healths = {s.address: s.health for s in summaries}
        assert healths["m1:7051"] == ServerHealth.WRONG_SERVER_UUID

    @pytest.mark.asyncio
    async def test_masters_are_initialized_before_fetch(self, cluster):
        """A master that cannot be initialized is unavailable."""
        cluster.masters[1].init_error = GatewayError("unresolvable address")
        ksck = Ksck(cluster)

        summaries = await ksck.check_master_health()

        assert [m.init_count for m in cluster.masters] == [1, 1, 1]
        healths = {s.address: s.health for s in summaries}
        assert healths["m1:7051"] == ServerHealth.UNAVAILABLE
        assert "unresolvable address" in str(cluster.masters[1].fetch_error)

    @pytest.mark.asyncio
    async def test_master_consensus_agrees(self, cluster):
        ksck = Ksck(cluster)
        assert await ksck.check_master_consensus()
        assert len(ksck.results.master_consensus_states) == 3
        assert ksck.results.errors == []

    @pytest.mark.asyncio
    async def test_master_consensus_conflict(self, cluster):
        cluster.masters[2].consensus_state = master_cstate(term=2)
        ksck = Ksck(cluster)

        assert not await ksck.check_master_consensus()
        assert ksck.results.master_consensus_conflict
        assert "there are master consensus conflicts" in ksck.results.errors

    @pytest.mark.asyncio
    async def test_master_consensus_missing(self, cluster):
        cluster.masters[1].fetch_consensus_error = GatewayError("timed out")
        ksck = Ksck(cluster)

        assert not await ksck.check_master_consensus()
        assert not ksck.results.master_consensus_conflict
        assert ksck.results.errors == [
            "failed to gather consensus info from all masters: 1 of 3 had errors"
        ]


# =============================================================================
# Tablet servers
# =============================================================================


class TestTabletServerChecks:
    """Tests for tablet server health."""

    @pytest.mark.asyncio
    async def test_unavailable_server(self, cluster):
        cluster.roster[0].fetch_info_error = GatewayError("connection refused")
        ksck = await prepare(cluster)

        summaries = ksck.results.tserver_summaries
        assert [(s.uuid, s.health) for s in summaries] == [
            ("ts-1", ServerHealth.HEALTHY),
            ("ts-2", ServerHealth.HEALTHY),
            ("ts-0", ServerHealth.UNAVAILABLE),
        ]
        assert ksck.results.errors == [
            "failed to gather info for all tablet servers: 1 of 3 had errors"
        ]

    @pytest.mark.asyncio
    async def test_wrong_server_uuid(self, cluster):
        cluster.roster[1].reported_uuid = "ts-9"
        ksck = await prepare(cluster)

        summaries = ksck.results.tserver_summaries
        assert summaries[-1].uuid == "ts-1"
        assert summaries[-1].health == ServerHealth.WRONG_SERVER_UUID

    @pytest.mark.asyncio
    async def test_ordering_by_score(self, make_cluster):
        """HEALTHY < WRONG_SERVER_UUID < UNAVAILABLE."""
        cluster = make_cluster(num_tservers=4)
        cluster.roster[0].fetch_info_error = GatewayError("connection refused")
        cluster.roster[1].reported_uuid = "other"
        ksck = await prepare(cluster)

        healths = [s.health for s in ksck.results.tserver_summaries]
        assert healths == [
            ServerHealth.HEALTHY,
            ServerHealth.HEALTHY,
            ServerHealth.WRONG_SERVER_UUID,
            ServerHealth.UNAVAILABLE,
        ]

    @pytest.mark.asyncio
    async def test_requires_discovery(self, cluster):
        ksck = Ksck(cluster)
        with pytest.raises(KsckError):
            await ksck.fetch_info_from_tablet_servers()


# =============================================================================
# Filters
# =============================================================================


class TestFilters:
    """Tests for table and tablet ID filters."""

    @pytest.mark.asyncio
    async def test_table_filter(self, make_cluster):
        cluster = make_cluster(tables={"FooBar": ["t-1"], "BarFoo": ["t-2"]})
        ksck = await prepare(cluster, KsckConfig(table_filters=("Foo*",)))

        summaries = await ksck.check_tables_consistency()

        assert [s.name for s in summaries] == ["FooBar"]

    @pytest.mark.asyncio
    async def test_tablet_filter_skips_tables_without_matches(self, make_cluster):
        cluster = make_cluster(tables={"a": ["t-1", "t-2"], "b": ["t-3"]})
        ksck = await prepare(cluster, KsckConfig(tablet_id_filters=("t-1", "t-3")))

        summaries = await ksck.check_tables_consistency()

        assert [(s.name, s.total_tablets()) for s in summaries] == [("a", 1), ("b", 1)]

    @pytest.mark.asyncio
    async def test_filters_intersect(self, make_cluster):
        """A tablet is checked only if its table and its ID both match."""
        cluster = make_cluster(tables={"FooBar": ["t-1"], "BarFoo": ["t-2"]})
        config = KsckConfig(table_filters=("Foo*",), tablet_id_filters=("t-2",))
        ksck = await prepare(cluster, config)

        assert await ksck.check_tables_consistency() == []

    @pytest.mark.asyncio
    async def test_filtered_out_problems_are_ignored(self, make_cluster):
        cluster = make_cluster(tables={"good": ["t-1"], "bad": ["t-2"]})
        cluster.roster[1].tablets["t-2"].state = TabletState.FAILED
        cluster.roster[2].tablets["t-2"].state = TabletState.FAILED
        results = await Ksck(cluster, KsckConfig(table_filters=("good",))).run()

        assert results.ok


# =============================================================================
# Fatal failures
# =============================================================================


class TestFatalFailures:
    """Tests for failures that stop a run."""

    @pytest.mark.asyncio
    async def test_cluster_unavailable(self, cluster):
        cluster.masters[0].is_leader = False
        ksck = Ksck(cluster)

        with pytest.raises(ClusterUnavailableError):
            await ksck.check_cluster_running()

    @pytest.mark.asyncio
    async def test_discovery_failure(self, cluster):
        cluster.tables_error = GatewayError("timed out")
        ksck = Ksck(cluster)

        with pytest.raises(DiscoveryError) as exc_info:
            await ksck.fetch_table_and_tablet_info()
        assert exc_info.value.step == "retrieve_tables_list"

    @pytest.mark.asyncio
    async def test_tablet_list_failure(self, cluster):
        cluster.tablets_errors["table-1"] = GatewayError("timed out")
        ksck = Ksck(cluster)

        with pytest.raises(DiscoveryError) as exc_info:
            await ksck.fetch_table_and_tablet_info()
        assert exc_info.value.step == "retrieve_tablets_list(table-1)"

    @pytest.mark.asyncio
    async def test_checks_require_discovery(self, cluster):
        with pytest.raises(KsckError):
            await Ksck(cluster).check_tables_consistency()

    @pytest.mark.asyncio
    async def test_run_with_every_master_down(self, cluster):
        """A run against a dead cluster still returns renderable results."""
        for master in cluster.masters:
            master.fetch_info_error = GatewayError("connection refused")

        results = await Ksck(cluster).run()

        assert not results.ok
        assert results.errors[0] == "unable to connect to the cluster: no leader master found"
        assert [s.health for s in results.master_summaries] == [ServerHealth.UNAVAILABLE] * 3
        assert results.table_summaries == []

    @pytest.mark.asyncio
    async def test_run_with_discovery_failure(self, cluster):
        cluster.tablet_servers_error = GatewayError("timed out")

        results = await Ksck(cluster).run()

        assert results.errors[0] == "retrieve_tablet_servers failed: timed out"
        assert len(results.master_summaries) == 3


# =============================================================================
# Re-verification with timeout
# =============================================================================


class TestVerifyTableWithTimeout:
    """Tests for re-verification of unhealthy tables."""

    @pytest.mark.asyncio
    async def test_healthy_table_returns_immediately(self, cluster):
        ksck = await prepare(cluster)
        table = cluster.tables[0]

        summary = await ksck.verify_table_with_timeout(table, timedelta(seconds=5))

        assert summary.table_status() == CheckResult.HEALTHY
        assert cluster.roster[0].fetch_count == 1

    @pytest.mark.asyncio
    async def test_recovering_table_returns_without_waiting(self, cluster):
        """A stuck copy does not block the run."""
        cluster.roster[2].tablets["tablet-1"].data_state = TabletDataState.COPYING
        cluster.roster[2].tablets["tablet-1"].state = TabletState.BOOTSTRAPPING
        ksck = await prepare(cluster)

        summary = await ksck.verify_table_with_timeout(
            cluster.tables[0], timedelta(seconds=60), retry_interval=timedelta(seconds=30)
        )

        assert summary.table_status() == CheckResult.RECOVERING

    @pytest.mark.asyncio
    async def test_persistent_problem_returns_last_summary(self, cluster):
        cluster.roster[2].fetch_info_error = GatewayError("connection refused")
        ksck = await prepare(cluster)

        summary = await ksck.verify_table_with_timeout(
            cluster.tables[0],
            timedelta(seconds=0.1),
            retry_interval=timedelta(seconds=0.02),
        )

        assert summary.table_status() == CheckResult.UNDER_REPLICATED
        # The unhealthy server was fetched again between attempts
        assert cluster.roster[2].fetch_count > 1

    @pytest.mark.asyncio
    async def test_transient_problem_settles(self, cluster):
        """A server back before the deadline makes the table healthy."""
        ts = cluster.roster[2]
        ts.fetch_info_error = GatewayError("connection refused")
        ksck = await prepare(cluster)
        ts.fetch_info_error = None

        summary = await ksck.verify_table_with_timeout(
            cluster.tables[0],
            timedelta(seconds=5),
            retry_interval=timedelta(seconds=0.01),
        )

        assert summary.table_status() == CheckResult.HEALTHY
        assert ts.is_healthy

    @pytest.mark.asyncio
    async def test_run_uses_table_check_timeout(self, cluster):
        ts = cluster.roster[2]
        ts.fetch_info_error = GatewayError("connection refused")
        config = KsckConfig(
            table_check_timeout=timedelta(seconds=5),
            retry_interval=timedelta(seconds=0.01),
        )
        ksck = await prepare(cluster, config)
        ts.fetch_info_error = None

        [summary] = await ksck.check_tables_consistency()

        assert summary.table_status() == CheckResult.HEALTHY
        assert ksck.results.tablet_summaries[0].result == CheckResult.HEALTHY

    @pytest.mark.asyncio
    async def test_recovered_server_is_reported_healthy(self, cluster):
        """Tablet server health reflects fetches made while re-verifying."""
        ts = cluster.roster[2]
        ts.fetch_info_error = GatewayError("connection refused")
        config = KsckConfig(
            table_check_timeout=timedelta(seconds=5),
            retry_interval=timedelta(seconds=0.01),
        )
        ksck = await prepare(cluster, config)
        assert ksck.results.tserver_summaries[-1].health == ServerHealth.UNAVAILABLE
        ts.fetch_info_error = None

        await ksck.check_tables_consistency()

        assert [s.health for s in ksck.results.tserver_summaries] == [ServerHealth.HEALTHY] * 3
        assert ksck.results.errors == []

    @pytest.mark.asyncio
    async def test_server_still_down_is_reported_once(self, cluster):
        cluster.roster[2].fetch_info_error = GatewayError("connection refused")
        config = KsckConfig(
            table_check_timeout=timedelta(seconds=0.05),
            retry_interval=timedelta(seconds=0.01),
        )
        ksck = await prepare(cluster, config)

        await ksck.check_tables_consistency()

        assert ksck.results.tserver_summaries[-1].health == ServerHealth.UNAVAILABLE
        assert ksck.results.errors == [
            "failed to gather info for all tablet servers: 1 of 3 had errors",
            "1 out of 1 table(s) are not healthy",
        ]

    @pytest.mark.asyncio
    async def test_dropped_tablet_leaves_no_summary(self, make_cluster):
        """A tablet the master stops reporting is not kept in the details."""
        cluster = make_cluster(tables={"table-1": ["t-1", "t-2"]})
        for ts in cluster.roster[1:]:
            ts.tablets["t-2"].state = TabletState.FAILED
        config = KsckConfig(
            table_check_timeout=timedelta(seconds=5),
            retry_interval=timedelta(seconds=0.01),
        )
        ksck = await prepare(cluster, config)
        cluster.tablets_by_table["table-1"] = cluster.tablets_by_table["table-1"][:1]

        [summary] = await ksck.check_tables_consistency()

        assert summary.table_status() == CheckResult.HEALTHY
        assert [t.id for t in ksck.results.tablet_summaries] == ["t-1"]
