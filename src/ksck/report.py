"""
Report rendering for ksck results.

This module turns KsckResults into human-facing output:
- Server health tables grouped by server type (Master, Tablet Server)
- Table summary table with per-category tablet counts and totals
- Replica details of every unhealthy tablet, with a consensus comparison
  table for tablets whose replicas disagree
- Checksum results and the final list of errors

No classification happens here; everything rendered was computed by the
checker. Rendering works for any KsckResults, including one where every
server was unreachable.

Uses Rich markup for color coding:
- Green for HEALTHY
- Yellow for RECOVERING / UNDER_REPLICATED / WRONG_SERVER_UUID
- Red for UNAVAILABLE / CONSENSUS_MISMATCH
"""

from typing import Any

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ksck.checker import (
    CheckResult,
    KsckResults,
    ServerHealth,
    ServerHealthSummary,
    ServerType,
    TableSummary,
    TabletSummary,
)
from ksck.checksum import ChecksumResults
from ksck.model import ConsensusState, TabletDataState

_RESULT_STYLES = {
    CheckResult.HEALTHY: "green",
    CheckResult.RECOVERING: "yellow",
    CheckResult.UNDER_REPLICATED: "yellow",
    CheckResult.CONSENSUS_MISMATCH: "red",
    CheckResult.UNAVAILABLE: "red",
}

_HEALTH_STYLES = {
    ServerHealth.HEALTHY: "green",
    ServerHealth.WRONG_SERVER_UUID: "yellow",
    ServerHealth.UNAVAILABLE: "red",
}


def server_health_to_string(health: ServerHealth) -> str:
    return health.value


def format_check_result(result: CheckResult) -> str:
    style = _RESULT_STYLES[result]
    return f"[{style}]{result.value}[/{style}]"


def format_server_health(health: ServerHealth) -> str:
    style = _HEALTH_STYLES[health]
    return f"[{style}]{server_health_to_string(health)}[/{style}]"


def render_server_health_summaries(
    server_type: ServerType,
    summaries: list[ServerHealthSummary],
    console: Console,
) -> None:
    """Render one table of server health for servers of one type."""
    if not summaries:
        console.print(f"No {server_type.value.lower()}s found")
        return
    table = Table(title=f"{server_type.value} Summary")
    table.add_column("UUID", style="cyan")
    table.add_column("Address")
    table.add_column("Status")
    for s in summaries:
        table.add_row(escape(s.uuid), escape(s.address), format_server_health(s.health))
    console.print(table)


def render_table_summaries(table_summaries: list[TableSummary], console: Console) -> None:
    """Render per-table tablet counts and totals."""
    if not table_summaries:
        console.print("The cluster doesn't have any matching tables")
        return
    table = Table(title="Summary by table")
    table.add_column("Name", style="cyan")
    table.add_column("Status")
    table.add_column("Total Tablets", justify="right")
    table.add_column("Healthy", justify="right")
    table.add_column("Recovering", justify="right")
    table.add_column("Under-replicated", justify="right")
    table.add_column("Unavailable", justify="right")
    table.add_column("Conflicted", justify="right")
    for s in table_summaries:
        table.add_row(
            escape(s.name),
            format_check_result(s.table_status()),
            str(s.total_tablets()),
            str(s.healthy_tablets),
            str(s.recovering_tablets),
            str(s.underreplicated_tablets),
            str(s.unavailable_tablets),
            str(s.consensus_mismatch_tablets),
        )
    console.print(table)

    total = sum(s.total_tablets() for s in table_summaries)
    unhealthy = sum(s.unhealthy_tablets() for s in table_summaries)
    console.print(f"Total tablets: {total}, unhealthy tablets: {unhealthy}")


def _format_uuids(uuids: frozenset[str]) -> str:
    return escape(", ".join(sorted(uuids))) or "-"


def _consensus_row(source: str, cstate: ConsensusState | None) -> list[str]:
    if cstate is None:
        return [escape(source), "[dim]unavailable[/dim]", "", "", "", ""]
    return [
        escape(source),
        _format_uuids(cstate.voter_uuids),
        _format_uuids(cstate.non_voter_uuids),
        escape(cstate.leader_uuid or "-"),
        "" if cstate.term is None else str(cstate.term),
        cstate.config_type.value,
    ]


def _consensus_table(title: str) -> Table:
    table = Table(title=title)
    table.add_column("Config source", style="cyan")
    table.add_column("Voters")
    table.add_column("Non-voters")
    table.add_column("Leader")
    table.add_column("Term", justify="right")
    table.add_column("Type")
    return table


def render_tablet_details(tablet_summaries: list[TabletSummary], console: Console) -> None:
    """Render the replicas of every unhealthy tablet."""
    for tablet in tablet_summaries:
        if tablet.result == CheckResult.HEALTHY:
            continue
        console.print(format_check_result(tablet.result), escape(tablet.status))
        for r in tablet.replicas:
            address = escape(r.ts_address or "unknown address")
            if not r.ts_healthy:
                state = "[red]TS unavailable[/red]"
            elif r.state is None:
                state = "unknown"
            else:
                state = r.state.value
            flags = ""
            if r.is_leader:
                flags += escape(" [LEADER]")
            if not r.is_voter:
                flags += escape(" [NONVOTER]")
            console.print(f"  {escape(r.ts_uuid)} ({address}): {state}{flags}")
            if r.status is None:
                continue
            if r.status.last_status:
                console.print(f"    Last status: {r.status.last_status}", markup=False)
            if r.status.data_state != TabletDataState.READY:
                console.print(f"    Data state:  {r.status.data_state.value}", markup=False)

        if tablet.consensus_conflict:
            table = _consensus_table(f"Consensus state of tablet {escape(tablet.id)}")
            table.add_row(*_consensus_row("master", tablet.master_cstate))
            for r in tablet.replicas:
                table.add_row(*_consensus_row(r.ts_uuid, r.consensus_state))
            console.print(table)


def render_master_consensus(results: KsckResults, console: Console) -> None:
    """Render the masters' consensus configs when they conflict."""
    if not results.master_consensus_conflict:
        return
    table = _consensus_table("Master consensus conflicts")
    for source, cstate in results.master_consensus_states.items():
        table.add_row(*_consensus_row(source, cstate))
    console.print(table)


def render_checksum_results(results: ChecksumResults, console: Console) -> None:
    """Render per-replica checksums and findings."""
    console.print("Checksum Summary")
    if results.snapshot_timestamp is not None:
        console.print(f"Using snapshot timestamp: {results.snapshot_timestamp}")
    table = Table(title="Checksums")
    table.add_column("Table", style="cyan")
    table.add_column("Tablet")
    table.add_column("Tablet Server")
    table.add_column("Result")
    for t in results.tablets:
        for r in t.replicas:
            if r.error is not None:
                outcome = f"[red]Error: {escape(r.error)}[/red]"
            else:
                outcome = f"Checksum: {r.checksum}"
            table.add_row(
                escape(t.table_name),
                escape(t.tablet_id),
                escape(f"{r.ts_uuid} ({r.ts_address})"),
                outcome,
            )
    console.print(table)
    for t in results.tablets:
        if t.mismatch:
            console.print(
                f"[red]>> Mismatch found in table {escape(t.table_name)} "
                f"tablet {escape(t.tablet_id)}[/red]"
            )
    console.print(
        f"{results.rows_summed} rows and {results.disk_bytes_summed} bytes from disk summed"
    )
    if results.timed_out:
        console.print("[yellow]Checksum timed out before all replicas reported[/yellow]")


def render_results(results: KsckResults, console: Console) -> None:
    """Render a complete report."""
    render_server_health_summaries(ServerType.MASTER, results.master_summaries, console)
    render_master_consensus(results, console)
    render_server_health_summaries(ServerType.TABLET_SERVER, results.tserver_summaries, console)
    render_tablet_details(results.tablet_summaries, console)
    render_table_summaries(results.table_summaries, console)
    if results.checksum_results is not None:
        render_checksum_results(results.checksum_results, console)

    if results.ok:
        console.print("[green]OK[/green]")
        return
    console.print("[red]==================[/red]")
    console.print("[red]Errors:[/red]")
    console.print("[red]==================[/red]")
    for error in results.errors:
        console.print(f"  {error}", markup=False)
    console.print()
    console.print("[red]FAILED[/red]")


def _cstate_to_dict(cstate: ConsensusState | None) -> dict[str, Any] | None:
    if cstate is None:
        return None
    return {
        "type": cstate.config_type.value,
        "term": cstate.term,
        "opid_index": cstate.opid_index,
        "leader_uuid": cstate.leader_uuid,
        "voter_uuids": sorted(cstate.voter_uuids),
        "non_voter_uuids": sorted(cstate.non_voter_uuids),
    }


def results_to_dict(results: KsckResults) -> dict[str, Any]:
    """Convert results to a JSON-serializable dict."""
    data: dict[str, Any] = {
        "masters": [
            {"uuid": s.uuid, "address": s.address, "health": s.health.value}
            for s in results.master_summaries
        ],
        "master_consensus_conflict": results.master_consensus_conflict,
        "master_consensus_states": {
            source: _cstate_to_dict(c) for source, c in results.master_consensus_states.items()
        },
        "tablet_servers": [
            {"uuid": s.uuid, "address": s.address, "health": s.health.value}
            for s in results.tserver_summaries
        ],
        "tables": [
            {
                "name": s.name,
                "status": s.table_status().value,
                "total_tablets": s.total_tablets(),
                "healthy_tablets": s.healthy_tablets,
                "recovering_tablets": s.recovering_tablets,
                "underreplicated_tablets": s.underreplicated_tablets,
                "consensus_mismatch_tablets": s.consensus_mismatch_tablets,
                "unavailable_tablets": s.unavailable_tablets,
            }
            for s in results.table_summaries
        ],
        "tablets": [
            {
                "id": t.id,
                "table_name": t.table_name,
                "result": t.result.value,
                "status": t.status,
                "master_cstate": _cstate_to_dict(t.master_cstate),
                "replicas": [
                    {
                        "ts_uuid": r.ts_uuid,
                        "ts_address": r.ts_address,
                        "ts_healthy": r.ts_healthy,
                        "is_leader": r.is_leader,
                        "is_voter": r.is_voter,
                        "state": r.state.value if r.state else None,
                        "consensus_state": _cstate_to_dict(r.consensus_state),
                    }
                    for r in t.replicas
                ],
            }
            for t in results.tablet_summaries
            if t.result != CheckResult.HEALTHY
        ],
        "errors": list(results.errors),
    }
    checksums = results.checksum_results
    if checksums is not None:
        data["checksum"] = {
            "snapshot_timestamp": checksums.snapshot_timestamp,
            "rows_summed": checksums.rows_summed,
            "disk_bytes_summed": checksums.disk_bytes_summed,
            "timed_out": checksums.timed_out,
            "mismatches": checksums.num_mismatches,
            "errors": checksums.num_errors,
            "tablets": [
                {
                    "tablet_id": t.tablet_id,
                    "table_name": t.table_name,
                    "mismatch": t.mismatch,
                    "replicas": [
                        {
                            "ts_uuid": r.ts_uuid,
                            "checksum": r.checksum,
                            "error": r.error,
                        }
                        for r in t.replicas
                    ],
                }
                for t in checksums.tablets
            ],
        }
    return data
