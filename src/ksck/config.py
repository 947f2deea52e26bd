"""Environment-based configuration for ksck runs."""

from datetime import timedelta

from pydantic_settings import BaseSettings

from ksck.model import ChecksumOptions


class Settings(BaseSettings):
    """ksck configuration.

    All settings can be overridden via environment variables with
    KSCK_ prefix. For example:
        KSCK_RPC_TIMEOUT_SECONDS=30
        KSCK_CHECKSUM_SCAN_CONCURRENCY=8
    """

    # Per-request timeout of the live gateway
    rpc_timeout_seconds: float = 10.0

    # Table re-verification
    retry_interval_seconds: float = 1.0
    table_check_timeout_seconds: float = 0.0  # 0 disables re-verification

    # Checksum scans
    checksum_timeout_seconds: float = 3600.0
    checksum_scan_concurrency: int = 4
    checksum_snapshot: bool = True
    progress_interval_seconds: float = 5.0

    # Replica count verification
    check_replica_count: bool = True

    model_config = {"env_prefix": "KSCK_"}

    def checksum_options(self, snapshot_timestamp: int = 0) -> ChecksumOptions:
        """Build ChecksumOptions from these settings."""
        return ChecksumOptions(
            timeout=timedelta(seconds=self.checksum_timeout_seconds),
            scan_concurrency=self.checksum_scan_concurrency,
            use_snapshot=self.checksum_snapshot,
            snapshot_timestamp=snapshot_timestamp,
        )


settings = Settings()
