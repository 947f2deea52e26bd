"""
Exception classes for ksck runs.

The taxonomy follows how far a failure is allowed to travel:
- GatewayError / WrongServerUuidError: a single master or tablet server could
  not be fetched. Recorded on the entity, never propagated past its fetch.
- ClusterUnavailableError / DiscoveryError: fatal to a run.
- ChecksumError: the checksum step could not be started.

Classification findings (under-replicated tablets, consensus mismatches,
checksum mismatches) are data, not exceptions.
"""


class KsckError(Exception):
    """Base class for all ksck errors."""


class GatewayError(KsckError):
    """
    Raised by a gateway variant when a server cannot be reached or answers
    with something unusable.

    Attributes:
        address: Address of the server that failed, if known
    """

    def __init__(self, message: str, address: str | None = None) -> None:
        self.address = address
        if address:
            message = f"{address}: {message}"
        super().__init__(message)


class WrongServerUuidError(GatewayError):
    """
    Raised when a server answers but identifies itself with an unexpected UUID.

    Attributes:
        expected_uuid: UUID the master roster (or caller) expects
        reported_uuid: UUID the server reported
    """

    def __init__(
        self, expected_uuid: str, reported_uuid: str, address: str | None = None
    ) -> None:
        self.expected_uuid = expected_uuid
        self.reported_uuid = reported_uuid
        super().__init__(
            f"ID reported by server ({reported_uuid}) doesn't match "
            f"the expected ID: {expected_uuid}",
            address=address,
        )


class ClusterUnavailableError(KsckError):
    """Raised when no master answers as leader."""


class DiscoveryError(KsckError):
    """
    Raised when table, tablet, or tablet server discovery fails.

    Attributes:
        step: Discovery step that failed (e.g., "retrieve_tables_list")
    """

    def __init__(self, step: str, cause: Exception) -> None:
        self.step = step
        super().__init__(f"{step} failed: {cause}")


class ChecksumError(KsckError):
    """Raised when a checksum scan cannot be started."""
