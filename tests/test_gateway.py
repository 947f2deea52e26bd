"""
Tests for the gateway fetch state machine, using the mock variant.

These tests verify:
- Servers start UNINITIALIZED and move to FETCHED or FETCH_FAILED
- Accessors return None instead of stale or missing data
- A server answering with an unexpected UUID fails its fetch with
  WrongServerUuidError
- Consensus state maps are keyed by (server UUID, tablet ID)
"""

import pytest

from ksck.exceptions import GatewayError, WrongServerUuidError
from ksck.gateway import ChecksumProgressCallbacks
from ksck.mock import MockMaster, MockTabletServer
from ksck.model import FetchState, TabletState

from conftest import master_cstate, replica_cstate, running


@pytest.fixture
def master():
    return MockMaster("m0:7051", uuid="m0", consensus_state=master_cstate(), is_leader=True)


@pytest.fixture
def tserver():
    ts = MockTabletServer("ts-0", timestamp=1234)
    ts.tablets["tablet-1"] = running("tablet-1", "table-1")
    ts.consensus_states["tablet-1"] = replica_cstate(["ts-0"])
    return ts


# =============================================================================
# Master
# =============================================================================


class TestMasterFetch:
    """Tests for master info and consensus fetches."""

    def test_initial_state(self, master):
        """A new master has no UUID and no consensus state."""
        assert master.state == FetchState.UNINITIALIZED
        assert master.uuid is None
        assert master.cstate is None
        assert not master.is_healthy

    @pytest.mark.asyncio
    async def test_fetch_info_success(self, master):
        assert await master.fetch_info()
        assert master.state == FetchState.FETCHED
        assert master.uuid == "m0"
        assert master.fetch_error is None

    @pytest.mark.asyncio
    async def test_fetch_info_failure(self, master):
        """A failing fetch records the error and a placeholder UUID."""
        master.fetch_info_error = GatewayError("connection refused")

        assert not await master.fetch_info()
        assert master.state == FetchState.FETCH_FAILED
        assert master.uuid == MockMaster.DUMMY_UUID
        assert isinstance(master.fetch_error, GatewayError)

    @pytest.mark.asyncio
    async def test_init_failure(self, master):
        master.init_error = GatewayError("unresolvable")
        assert not await master.init()
        assert master.state == FetchState.FETCH_FAILED

    @pytest.mark.asyncio
    async def test_unexpected_uuid(self):
        """A master configured with an expected UUID rejects another one."""
        master = MockMaster("m0:7051", uuid="other", expected_uuid="m0")

        assert not await master.fetch_info()
        assert isinstance(master.fetch_error, WrongServerUuidError)
        assert master.fetch_error.reported_uuid == "other"
        assert master.fetch_error.expected_uuid == "m0"

    @pytest.mark.asyncio
    async def test_consensus_fetch(self, master):
        assert await master.fetch_consensus_state()
        assert master.cstate == master_cstate()

    @pytest.mark.asyncio
    async def test_consensus_fetch_failure_leaves_info_state(self, master):
        """A consensus failure leaves cstate None but not the info state."""
        await master.fetch_info()
        master.fetch_consensus_error = GatewayError("timed out")

        assert not await master.fetch_consensus_state()
        assert master.cstate is None
        assert master.state == FetchState.FETCHED

    def test_str(self, master):
        assert str(master) == "<unknown> (m0:7051)"


# =============================================================================
# TabletServer
# =============================================================================


class TestTabletServerFetch:
    """Tests for tablet server info and consensus fetches."""

    def test_unfetched_accessors_return_none(self, tserver):
        """Nothing is readable before the first successful fetch."""
        assert tserver.tablet_status_map is None
        assert tserver.tablet_consensus_state_map is None
        assert tserver.current_timestamp is None
        assert tserver.replica_state("tablet-1") is None

    @pytest.mark.asyncio
    async def test_fetch_populates_maps(self, tserver):
        assert await tserver.fetch_info()
        assert await tserver.fetch_consensus_state()

        assert tserver.state == FetchState.FETCHED
        assert tserver.current_timestamp == 1234
        assert set(tserver.tablet_status_map) == {"tablet-1"}
        assert set(tserver.tablet_consensus_state_map) == {("ts-0", "tablet-1")}

    @pytest.mark.asyncio
    async def test_replica_state(self, tserver):
        """Hosted tablets report their state; unknown tablets are UNKNOWN."""
        await tserver.fetch_info()

        assert tserver.replica_state("tablet-1") == TabletState.RUNNING
        assert tserver.replica_state("missing") == TabletState.UNKNOWN

    @pytest.mark.asyncio
    async def test_wrong_uuid(self, tserver):
        """A server reporting another UUID than the roster fails its fetch."""
        tserver.reported_uuid = "ts-9"

        assert not await tserver.fetch_info()
        assert tserver.state == FetchState.FETCH_FAILED
        assert isinstance(tserver.fetch_error, WrongServerUuidError)
        assert tserver.tablet_status_map is None

    @pytest.mark.asyncio
    async def test_consensus_failure_marks_server_failed(self, tserver):
        """Data of a server whose consensus fetch failed is not readable."""
        await tserver.fetch_info()
        tserver.fetch_consensus_error = GatewayError("timed out")

        assert not await tserver.fetch_consensus_state()
        assert tserver.state == FetchState.FETCH_FAILED
        assert tserver.replica_state("tablet-1") is None

    @pytest.mark.asyncio
    async def test_refetch_recovers(self, tserver):
        """A later successful fetch makes the server healthy again."""
        tserver.fetch_info_error = GatewayError("connection refused")
        assert not await tserver.fetch_info()

        tserver.fetch_info_error = None
        assert await tserver.fetch_info()
        assert tserver.is_healthy
        assert tserver.fetch_error is None


class TestChecksumCallbacksProtocol:
    """Tests for the checksum callback protocol."""

    def test_runtime_checkable(self):
        """Any object with progress() and finished() satisfies the protocol."""

        class Collector:
            def progress(self, delta_rows_summed, delta_disk_bytes_summed):
                pass

            def finished(self, error, checksum):
                pass

        assert isinstance(Collector(), ChecksumProgressCallbacks)
        assert not isinstance(object(), ChecksumProgressCallbacks)
