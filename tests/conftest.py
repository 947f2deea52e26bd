"""
Shared fixtures for ksck tests.

make_cluster builds a healthy in-memory cluster: three masters agreeing on
one consensus config, a set of tablet servers, and tables whose tablets are
replicated on the first num_replicas servers with ts-0 as leader. Tests then
break the cluster by editing the mock objects.
"""

from collections.abc import Callable

import pytest

from ksck.mock import MockCluster, MockMaster, MockTabletServer
from ksck.model import (
    ColumnSchema,
    RaftConfig,
    ReportedConsensusState,
    Schema,
    Table,
    Tablet,
    TabletDataState,
    TabletReplica,
    TabletState,
    TabletStatus,
)

MASTER_UUIDS = ["m0", "m1", "m2"]


def master_cstate(term: int = 1, leader: str = "m0") -> ReportedConsensusState:
    return ReportedConsensusState(
        current_term=term,
        leader_uuid=leader,
        committed_config=RaftConfig(opid_index=1, voter_uuids=tuple(MASTER_UUIDS)),
    )


def replica_cstate(
    voters: list[str], leader: str | None = "ts-0", term: int = 1
) -> ReportedConsensusState:
    return ReportedConsensusState(
        current_term=term,
        leader_uuid=leader,
        committed_config=RaftConfig(opid_index=5, voter_uuids=tuple(voters)),
    )


def running(tablet_id: str, table_name: str) -> TabletStatus:
    return TabletStatus(
        tablet_id=tablet_id,
        table_name=table_name,
        state=TabletState.RUNNING,
        data_state=TabletDataState.READY,
    )


def build_cluster(
    tables: dict[str, list[str]] | None = None,
    num_tservers: int = 3,
    num_replicas: int = 3,
) -> MockCluster:
    """Build a healthy MockCluster."""
    if tables is None:
        tables = {"table-1": ["tablet-1"]}

    cluster = MockCluster()
    cluster.masters = [
        MockMaster(
            f"{uuid}:7051",
            uuid=uuid,
            consensus_state=master_cstate(),
            is_leader=(uuid == "m0"),
        )
        for uuid in MASTER_UUIDS
    ]

    servers = [
        MockTabletServer(f"ts-{i}", timestamp=1000 + i) for i in range(num_tservers)
    ]
    cluster.roster = servers

    hosts = [ts.uuid for ts in servers[:num_replicas]]
    schema = Schema(
        columns=[
            ColumnSchema(name="key", type="INT64", is_key=True),
            ColumnSchema(name="value", type="STRING", is_nullable=True),
        ]
    )
    for table_name, tablet_ids in tables.items():
        cluster.table_list.append(
            Table(name=table_name, schema=schema, num_replicas=num_replicas)
        )
        cluster.tablets_by_table[table_name] = [
            Tablet(
                id=tablet_id,
                table_name=table_name,
                replicas=[
                    TabletReplica(ts_uuid=uuid, is_leader=(uuid == "ts-0")) for uuid in hosts
                ],
            )
            for tablet_id in tablet_ids
        ]
        for ts in servers[:num_replicas]:
            for tablet_id in tablet_ids:
                ts.tablets[tablet_id] = running(tablet_id, table_name)
                ts.consensus_states[tablet_id] = replica_cstate(hosts)
                ts.checksums[tablet_id] = 42
    return cluster


@pytest.fixture
def make_cluster() -> Callable[..., MockCluster]:
    """Factory for healthy mock clusters; see build_cluster()."""
    return build_cluster


@pytest.fixture
def cluster() -> MockCluster:
    """A healthy cluster with one table of one tablet, replicated 3 times."""
    return build_cluster()
