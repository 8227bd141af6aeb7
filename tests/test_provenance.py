"""Tests for operation provenance tracking."""

from __future__ import annotations

from datetime import UTC
from unittest.mock import patch

import pytest

from vm_operator.provenance import (
    OPERATOR_VERSION,
    OperationProvenance,
    ProvenanceLogger,
    get_provenance_logger,
)


class TestOperationProvenance:
    """Tests for OperationProvenance dataclass."""

    def test_default_values(self) -> None:
        """Default provenance has expected values."""
        provenance = OperationProvenance(operation="create")
        assert provenance.vm_name == ""
        assert provenance.operator_version == OPERATOR_VERSION
        assert provenance.strategy == ""
        assert provenance.reboot_required is False
        assert provenance.advisories == []
        assert provenance.error is None

    def test_timestamp_is_utc(self) -> None:
        """Timestamp uses UTC timezone."""
        provenance = OperationProvenance(operation="read")
        assert provenance.timestamp.tzinfo is UTC

    def test_to_dict(self) -> None:
        """to_dict converts to serializable dictionary."""
        provenance = OperationProvenance(
            operation="update",
            vm_name="web-01",
            resource_id="pve1/qemu/101",
            reboot_required=True,
            reboot_reasons=["bios changed"],
        )
        result = provenance.to_dict()

        assert result["operation"] == "update"
        assert result["resource_id"] == "pve1/qemu/101"
        assert result["reboot_reasons"] == ["bios changed"]
        # Timestamp should be ISO format string
        assert isinstance(result["timestamp"], str)

    def test_record_error(self) -> None:
        """record_error keeps the message and the exception type."""
        provenance = OperationProvenance(operation="delete")

        provenance.record_error(TimeoutError("VM 101 did not stop"))

        assert provenance.error == "VM 101 did not stop"
        assert provenance.error_type == "TimeoutError"

    def test_finish_sets_duration(self) -> None:
        """finish computes a non-negative duration."""
        provenance = OperationProvenance(operation="create")

        provenance.finish()

        assert provenance.duration_seconds >= 0


class TestProvenanceLogger:
    """Tests for ProvenanceLogger class."""

    def test_create_provenance_basic(self) -> None:
        """create_provenance creates record with provided values."""
        logger = ProvenanceLogger()
        provenance = logger.create_provenance(
            "create", vm_name="web-01", token_user="terraform@pve"
        )

        assert provenance.operation == "create"
        assert provenance.vm_name == "web-01"
        assert provenance.token_user == "terraform@pve"
        assert provenance.operator_version == OPERATOR_VERSION

    @patch.dict("os.environ", {"OPERATOR_INSTANCE_ID": "runner-001"})
    def test_create_provenance_with_instance_id(self) -> None:
        """create_provenance includes the instance id from the environment."""
        # Create new logger to pick up env vars
        logger = ProvenanceLogger()
        provenance = logger.create_provenance("read")

        assert provenance.operator_instance_id == "runner-001"

    def test_log_provenance_success(self, caplog: pytest.LogCaptureFixture) -> None:
        """log_provenance logs info level for successful operations."""
        logger = ProvenanceLogger()
        provenance = OperationProvenance(operation="create", strategy="clone")

        with caplog.at_level("INFO"):
            logger.log_provenance(provenance)

        assert "Operation provenance" in caplog.text
        assert caplog.records[-1].levelname == "INFO"

    def test_log_provenance_error(self, caplog: pytest.LogCaptureFixture) -> None:
        """log_provenance logs error level when error present."""
        logger = ProvenanceLogger()
        provenance = OperationProvenance(
            operation="delete",
            error="VM 101 did not stop",
            error_type="StopTimeout",
        )

        with caplog.at_level("ERROR"):
            logger.log_provenance(provenance)

        assert len(caplog.records) > 0
        assert caplog.records[-1].levelname == "ERROR"

    def test_log_provenance_advisory(self, caplog: pytest.LogCaptureFixture) -> None:
        """log_provenance logs warning level when advisories were raised."""
        logger = ProvenanceLogger()
        provenance = OperationProvenance(
            operation="update",
            advisories=["VM needs to be rebooted and automatic_reboot is disabled"],
        )

        with caplog.at_level("WARNING"):
            logger.log_provenance(provenance)

        assert len(caplog.records) > 0
        assert caplog.records[-1].levelname == "WARNING"
        assert caplog.records[-1].vm_name == ""  # type: ignore[attr-defined]


class TestGetProvenanceLogger:
    """Tests for get_provenance_logger singleton function."""

    def test_returns_logger(self) -> None:
        """get_provenance_logger returns a ProvenanceLogger."""
        logger = get_provenance_logger()
        assert isinstance(logger, ProvenanceLogger)

    def test_singleton_pattern(self) -> None:
        """get_provenance_logger returns same instance on multiple calls."""
        logger1 = get_provenance_logger()
        logger2 = get_provenance_logger()
        assert logger1 is logger2
