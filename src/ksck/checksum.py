"""
Checksum scanner for cross-replica data verification.

ChecksumScanner issues one checksum scan per tablet replica and compares
the checksums of the replicas of each tablet once they have all reported.
A difference is a data-integrity finding and is reported apart from scan
errors (unreachable servers, failed scans, timeouts).

Concurrency:
- Each replica scan runs as its own asyncio task
- An asyncio.Semaphore per tablet server bounds outstanding scans to
  ChecksumOptions.scan_concurrency. A scan is outstanding until its
  finished() callback fires, not until run_checksum_scan() returns
- Callbacks update shared state under a lock, so gateways may deliver
  them from worker threads
- A scan that raises is recorded as an error of its replica
- The overall wait is bounded by ChecksumOptions.timeout. On expiry the
  scanner stops waiting; in-flight scans are not aborted and their late
  results are ignored
"""

import asyncio
import logging
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field

from ksck.exceptions import GatewayError
from ksck.gateway import TabletServer
from ksck.model import ChecksumOptions, Schema, ServerUuid, Table, Tablet, TabletId

logger = logging.getLogger(__name__)


@dataclass
class ReplicaChecksum:
    """
    Checksum result of one replica.

    Attributes:
        ts_uuid: UUID of the tablet server hosting the replica
        ts_address: Address of that tablet server ("" if unknown)
        checksum: Checksum value, set when the scan succeeded
        error: Error message, set when the scan failed or timed out
        done: Whether a result has been recorded
    """

    ts_uuid: ServerUuid
    ts_address: str = ""
    checksum: int | None = None
    error: str | None = None
    done: bool = False


@dataclass
class TabletChecksumResult:
    """Checksum results of all replicas of one tablet."""

    tablet_id: TabletId
    table_name: str
    replicas: list[ReplicaChecksum] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return all(r.done for r in self.replicas)

    @property
    def checksums(self) -> set[int]:
        """Distinct checksums of the replicas that scanned successfully."""
        return {r.checksum for r in self.replicas if r.checksum is not None}

    @property
    def mismatch(self) -> bool:
        return len(self.checksums) > 1

    @property
    def num_errors(self) -> int:
        return sum(1 for r in self.replicas if r.error is not None)


@dataclass
class ChecksumResults:
    """
    Outcome of a checksum run.

    Attributes:
        snapshot_timestamp: Timestamp scanned at, None for non-snapshot scans
        tablets: Per-tablet results in scan order
        rows_summed: Rows checksummed across all replicas
        disk_bytes_summed: On-disk bytes read across all replicas
        timed_out: Whether the overall timeout expired before all results
    """

    snapshot_timestamp: int | None = None
    tablets: list[TabletChecksumResult] = field(default_factory=list)
    rows_summed: int = 0
    disk_bytes_summed: int = 0
    timed_out: bool = False

    @property
    def num_mismatches(self) -> int:
        return sum(1 for t in self.tablets if t.mismatch)

    @property
    def num_errors(self) -> int:
        return sum(t.num_errors for t in self.tablets)


class _ReplicaCallbacks:
    """
    ChecksumProgressCallbacks for one replica, routed into the scanner.

    finished() may be called from any thread, after run_checksum_scan()
    has returned. It wakes the task waiting on the replica through the
    event loop the scanner runs on.
    """

    def __init__(
        self,
        scanner: "ChecksumScanner",
        tablet_result: TabletChecksumResult,
        replica: ReplicaChecksum,
        loop: asyncio.AbstractEventLoop,
    ) -> None:
        self._scanner = scanner
        self._tablet_result = tablet_result
        self._replica = replica
        self._loop = loop
        self.done = asyncio.Event()

    def progress(self, delta_rows_summed: int, delta_disk_bytes_summed: int) -> None:
        self._scanner._add_progress(delta_rows_summed, delta_disk_bytes_summed)

    def finished(self, error: Exception | None, checksum: int) -> None:
        self._scanner._replica_finished(
            self._tablet_result, self._replica, error, checksum, self._wake
        )

    def _wake(self) -> None:
        self._loop.call_soon_threadsafe(self.done.set)


class ChecksumScanner:
    """
    Runs checksum scans across the replicas of a set of tablets.

    Example:
        scanner = ChecksumScanner(cluster.tablet_servers, options)
        results = await scanner.run([(table, tablet) for tablet in table.tablets])
        if results.num_mismatches:
            print("data corruption detected")
    """

    def __init__(
        self,
        tablet_servers: Mapping[ServerUuid, TabletServer],
        options: ChecksumOptions,
        progress_interval: float = 5.0,
    ) -> None:
        """
        Initialize scanner.

        Args:
            tablet_servers: Tablet servers by UUID, already fetched
            options: Checksum options; the snapshot timestamp must already
                be resolved if use_snapshot is set
            progress_interval: Seconds between progress log lines
        """
        self.tablet_servers = tablet_servers
        self.options = options
        self.progress_interval = progress_interval
        self._lock = threading.Lock()
        self._closed = False
        self._rows_summed = 0
        self._disk_bytes_summed = 0
        self._remaining = 0
        self._joined: set[int] = set()
        # Scans still running after a timeout are kept referenced here
        self._in_flight: set[asyncio.Task] = set()

    async def run(self, tablets: list[tuple[Table, Tablet]]) -> ChecksumResults:
        """
        Scan every replica of the given tablets and compare checksums.

        Args:
            tablets: (table, tablet) pairs to scan

        Returns:
            ChecksumResults; partial if the timeout expired.
        """
        loop = asyncio.get_running_loop()
        semaphores = {
            uuid: asyncio.Semaphore(self.options.scan_concurrency)
            for uuid in self.tablet_servers
        }

        results: list[TabletChecksumResult] = []
        for table, tablet in tablets:
            tablet_result = TabletChecksumResult(tablet_id=tablet.id, table_name=table.name)
            for replica in tablet.replicas:
                ts = self.tablet_servers.get(replica.ts_uuid)
                tablet_result.replicas.append(
                    ReplicaChecksum(ts_uuid=replica.ts_uuid, ts_address=ts.address if ts else "")
                )
            results.append(tablet_result)
        self._remaining = sum(len(t.replicas) for t in results)
        total = self._remaining

        tasks: list[asyncio.Task] = []
        all_callbacks: list[_ReplicaCallbacks] = []
        for (table, _), tablet_result in zip(tablets, results):
            for replica in tablet_result.replicas:
                callbacks = _ReplicaCallbacks(self, tablet_result, replica, loop)
                all_callbacks.append(callbacks)
                ts = self.tablet_servers.get(replica.ts_uuid)
                if ts is None or not ts.is_healthy:
                    callbacks.finished(
                        GatewayError("tablet server is unavailable", address=replica.ts_address or None),
                        0,
                    )
                    continue
                tasks.append(
                    asyncio.create_task(
                        self._scan_replica(
                            ts, semaphores[ts.uuid], table.schema, tablet_result.tablet_id, callbacks
                        )
                    )
                )

        start = loop.time()
        deadline = start + self.options.timeout.total_seconds()
        pending = set(tasks)
        while pending:
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            done, pending = await asyncio.wait(
                pending, timeout=min(remaining, self.progress_interval)
            )
            for task in done:
                task.result()
            if pending:
                self._log_progress(loop.time() - start, total)

        with self._lock:
            self._closed = True
            # Free the scan slots of replicas that never reported
            for callbacks in all_callbacks:
                callbacks.done.set()
            self._in_flight = pending
            if pending:
                logger.warning(
                    f"Checksum timed out after {self.options.timeout.total_seconds():.0f}s: "
                    f"{self._remaining}/{total} replicas did not report"
                )
            for tablet_result in results:
                for replica in tablet_result.replicas:
                    if not replica.done:
                        replica.error = "timed out waiting for checksum"
                        replica.done = True
                if id(tablet_result) not in self._joined:
                    self._join_tablet(tablet_result)

            return ChecksumResults(
                snapshot_timestamp=(
                    self.options.snapshot_timestamp if self.options.use_snapshot else None
                ),
                tablets=results,
                rows_summed=self._rows_summed,
                disk_bytes_summed=self._disk_bytes_summed,
                timed_out=bool(pending),
            )

    async def _scan_replica(
        self,
        ts: TabletServer,
        semaphore: asyncio.Semaphore,
        schema: Schema,
        tablet_id: TabletId,
        callbacks: _ReplicaCallbacks,
    ) -> None:
        async with semaphore:
            if self._closed:
                return
            try:
                await ts.run_checksum_scan(tablet_id, schema, self.options, callbacks)
            except GatewayError as e:
                callbacks.finished(e, 0)
            except Exception as e:
                logger.exception(f"Checksum scan of tablet {tablet_id} on {ts} failed")
                callbacks.finished(
                    GatewayError(f"{type(e).__name__}: {e}", address=ts.address), 0
                )
            # The scan holds its slot until finished() is called, which may
            # happen after run_checksum_scan() returns
            await callbacks.done.wait()

    def _add_progress(self, delta_rows: int, delta_disk_bytes: int) -> None:
        with self._lock:
            if self._closed:
                return
            self._rows_summed += delta_rows
            self._disk_bytes_summed += delta_disk_bytes

    def _replica_finished(
        self,
        tablet_result: TabletChecksumResult,
        replica: ReplicaChecksum,
        error: Exception | None,
        checksum: int,
        wake: Callable[[], None],
    ) -> None:
        with self._lock:
            if self._closed or replica.done:
                return
            if error is not None:
                replica.error = str(error)
            else:
                replica.checksum = checksum
            replica.done = True
            self._remaining -= 1
            if tablet_result.complete:
                self._join_tablet(tablet_result)
            # Under the lock, so the loop is still running
            wake()

    def _join_tablet(self, tablet_result: TabletChecksumResult) -> None:
        """Compare the replicas of a tablet. Caller holds the lock."""
        self._joined.add(id(tablet_result))
        for replica in tablet_result.replicas:
            prefix = f"T {tablet_result.tablet_id} P {replica.ts_uuid} ({replica.ts_address})"
            if replica.error is not None:
                logger.error(f"{prefix}: Error: {replica.error}")
            else:
                logger.info(f"{prefix}: Checksum: {replica.checksum}")
        if tablet_result.mismatch:
            logger.error(
                f">> Mismatch found in table {tablet_result.table_name} "
                f"tablet {tablet_result.tablet_id}"
            )

    def _log_progress(self, elapsed: float, total: int) -> None:
        with self._lock:
            logger.info(
                f"Checksum running for {elapsed:.0f}s: {self._remaining}/{total} "
                f"replicas remaining ({self._disk_bytes_summed} bytes from disk, "
                f"{self._rows_summed} rows summed)"
            )
