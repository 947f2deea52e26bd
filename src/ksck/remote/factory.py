"""
Factory function for creating live clusters.

Used by the CLI to build a RemoteCluster from a comma-separated master list
without importing the remote variant's internals.
"""

import httpx

from ksck.remote.cluster import RemoteCluster


def parse_master_addresses(masters: str) -> list[str]:
    """Split a comma-separated master list, dropping blanks."""
    return [addr.strip() for addr in masters.split(",") if addr.strip()]


def create_remote_cluster(
    master_addresses: list[str],
    timeout: float = 10.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> RemoteCluster:
    """
    Create a RemoteCluster for the given masters.

    Args:
        master_addresses: Master addresses ("host:port" or full URLs)
        timeout: Per-request timeout in seconds for every server
        transport: Optional httpx transport shared by every client

    Returns:
        RemoteCluster, not yet connected. Use it as an async context
        manager so its HTTP clients get closed.

    Example:
        async with create_remote_cluster(["master-0:8051"]) as cluster:
            results = await Ksck(cluster).run()
    """
    if not master_addresses:
        raise ValueError("at least one master address is required")
    return RemoteCluster(master_addresses, timeout=timeout, transport=transport)
