"""ksck CLI - consistency checker for replicated, partitioned clusters.

This module provides the ksck command line:
- check: Check cluster health, tablet consistency and optionally data checksums

Option defaults come from ksck.config.settings, so every flag can also be set
through its KSCK_ environment variable. The command exits with status 0 when
no errors were found and 1 otherwise.
"""

import asyncio
import json
import logging
from datetime import timedelta

import typer
from rich.console import Console
from rich.logging import RichHandler

from ksck.checker import Ksck, KsckConfig, KsckResults
from ksck.config import settings
from ksck.model import CURRENT_TIMESTAMP
from ksck.remote.factory import create_remote_cluster, parse_master_addresses
from ksck.report import render_results, results_to_dict

app = typer.Typer(
    name="ksck",
    help="Consistency checker for replicated, partitioned clusters",
    no_args_is_help=True,
)


@app.callback()
def callback() -> None:
    """Consistency checker for replicated, partitioned clusters."""


def _split_patterns(value: str | None) -> tuple[str, ...]:
    if not value:
        return ()
    return tuple(p.strip() for p in value.split(",") if p.strip())


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


@app.command("check")
def check(
    masters: str = typer.Argument(
        ..., help="Comma-separated master addresses (e.g., master-0:8051,master-1:8051)"
    ),
    tables: str = typer.Option(
        None, "--tables", "-t", help="Comma-separated table name patterns (glob, e.g. 'orders*')"
    ),
    tablets: str = typer.Option(
        None, "--tablets", help="Comma-separated tablet ID patterns (glob)"
    ),
    checksum_scan: bool = typer.Option(
        False, "--checksum-scan", help="Also checksum the data of every replica"
    ),
    checksum_snapshot: bool = typer.Option(
        settings.checksum_snapshot,
        "--checksum-snapshot/--no-checksum-snapshot",
        help="Checksum replicas at the same snapshot timestamp",
    ),
    snapshot_timestamp: int = typer.Option(
        CURRENT_TIMESTAMP,
        "--snapshot-timestamp",
        help="Snapshot timestamp to scan at (0 uses a tablet server's current time)",
    ),
    checksum_timeout: float = typer.Option(
        settings.checksum_timeout_seconds,
        "--checksum-timeout",
        help="Maximum seconds to wait for all checksum results",
    ),
    checksum_scan_concurrency: int = typer.Option(
        settings.checksum_scan_concurrency,
        "--checksum-scan-concurrency",
        min=1,
        help="Maximum concurrent checksum scans per tablet server",
    ),
    check_replica_count: bool = typer.Option(
        settings.check_replica_count,
        "--check-replica-count/--no-check-replica-count",
        help="Report tablets with fewer running replicas than configured",
    ),
    table_check_timeout: float = typer.Option(
        settings.table_check_timeout_seconds,
        "--table-check-timeout",
        help="Seconds to keep re-verifying unhealthy tables (0 disables)",
    ),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log progress details"),
) -> None:
    """
    Check the health and consistency of a cluster.

    Contacts every master and tablet server, verifies the replicas of every
    tablet and, with --checksum-scan, compares replica data checksums.

    Environment variables:
        KSCK_RPC_TIMEOUT_SECONDS: Per-request timeout
        KSCK_RETRY_INTERVAL_SECONDS: Delay between table re-verifications
        KSCK_PROGRESS_INTERVAL_SECONDS: Seconds between checksum progress lines
    """
    _configure_logging(verbose)

    addresses = parse_master_addresses(masters)
    if not addresses:
        print("Error: at least one master address is required")
        raise typer.Exit(1)

    config = KsckConfig(
        check_replica_count=check_replica_count,
        table_filters=_split_patterns(tables),
        tablet_id_filters=_split_patterns(tablets),
        retry_interval=timedelta(seconds=settings.retry_interval_seconds),
        table_check_timeout=timedelta(seconds=table_check_timeout),
    )
    checksum_options = None
    if checksum_scan:
        checksum_options = settings.model_copy(
            update={
                "checksum_timeout_seconds": checksum_timeout,
                "checksum_scan_concurrency": checksum_scan_concurrency,
                "checksum_snapshot": checksum_snapshot,
            }
        ).checksum_options(snapshot_timestamp=snapshot_timestamp)

    async def _check() -> KsckResults:
        async with create_remote_cluster(
            addresses, timeout=settings.rpc_timeout_seconds
        ) as cluster:
            ksck = Ksck(cluster, config, progress_interval=settings.progress_interval_seconds)
            return await ksck.run(checksum_options=checksum_options)

    results = asyncio.run(_check())

    if json_output:
        print(json.dumps(results_to_dict(results), indent=2, default=str))
    else:
        render_results(results, Console())

    if not results.ok:
        raise typer.Exit(1)


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
