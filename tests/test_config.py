"""Tests for environment-based configuration."""

from datetime import timedelta

from ksck.config import Settings
from ksck.model import CURRENT_TIMESTAMP


class TestSettings:
    """Tests for ksck Settings."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("KSCK_CHECKSUM_SCAN_CONCURRENCY", raising=False)
        settings = Settings()

        assert settings.checksum_scan_concurrency == 4
        assert settings.checksum_snapshot is True
        assert settings.table_check_timeout_seconds == 0.0

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("KSCK_CHECKSUM_SCAN_CONCURRENCY", "8")
        monkeypatch.setenv("KSCK_CHECKSUM_SNAPSHOT", "false")

        settings = Settings()

        assert settings.checksum_scan_concurrency == 8
        assert settings.checksum_snapshot is False

    def test_checksum_options(self):
        settings = Settings(checksum_timeout_seconds=90, checksum_scan_concurrency=2)

        options = settings.checksum_options()

        assert options.timeout == timedelta(seconds=90)
        assert options.scan_concurrency == 2
        assert options.snapshot_timestamp == CURRENT_TIMESTAMP
        assert settings.checksum_options(snapshot_timestamp=12).snapshot_timestamp == 12
