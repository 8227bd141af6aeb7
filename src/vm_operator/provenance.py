"""Operation provenance for audit.

Every lifecycle operation (create, read, update, delete) is stamped with a
provenance record answering:
- "What happened to VM X, and when?"
- "Which creation strategy was used?"
- "Did the change require a reboot, and was it performed?"
- "Which operator version and instance made the change?"

Records are emitted as one structured log line each.
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)

# Version is set at build time or falls back to dev
OPERATOR_VERSION = os.environ.get("OPERATOR_VERSION", "dev")


@dataclass
class OperationProvenance:
    """Provenance record for a single lifecycle operation."""

    operation: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    # Identity
    operator_version: str = OPERATOR_VERSION
    operator_instance_id: str = ""
    token_user: str = ""

    # Target
    vm_name: str = ""
    resource_id: str = ""
    node: str = ""

    # Outcome
    strategy: str = ""  # clone, iso, pxe, recycle
    reboot_required: bool = False
    reboot_reasons: list[str] = field(default_factory=list)
    power_action: str = ""  # start, shutdown, stop
    advisories: list[str] = field(default_factory=list)
    absent: bool = False

    # Timing
    duration_seconds: float = 0.0

    # Error tracking
    error: str | None = None
    error_type: str | None = None

    def record_error(self, error: BaseException) -> None:
        self.error = str(error)
        self.error_type = type(error).__name__

    def finish(self) -> None:
        self.duration_seconds = (datetime.now(UTC) - self.timestamp).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result = asdict(self)
        result["timestamp"] = self.timestamp.isoformat()
        return result


class ProvenanceLogger:
    """Logs provenance records to the structured logger."""

    def __init__(self) -> None:
        self._instance_id = os.environ.get("OPERATOR_INSTANCE_ID", "")

    def create_provenance(
        self, operation: str, *, vm_name: str = "", token_user: str = ""
    ) -> OperationProvenance:
        """Start a provenance record for ``operation``."""
        return OperationProvenance(
            operation=operation,
            operator_instance_id=self._instance_id,
            token_user=token_user,
            vm_name=vm_name,
        )

    def log_provenance(self, provenance: OperationProvenance) -> None:
        """Log a completed provenance record.

        Errors are logged at ERROR and advisories at WARNING.
        """
        log_level = logging.INFO
        if provenance.error:
            log_level = logging.ERROR
        elif provenance.advisories:
            log_level = logging.WARNING

        logger.log(
            log_level,
            "Operation provenance",
            extra={
                "provenance": provenance.to_dict(),
                # Flatten key fields for easier querying
                "operation": provenance.operation,
                "resource_id": provenance.resource_id,
                "vm_name": provenance.vm_name,
                "strategy": provenance.strategy,
                "reboot_required": provenance.reboot_required,
                "operator_version": provenance.operator_version,
                "duration_seconds": provenance.duration_seconds,
            },
        )


# Global singleton for provenance logging
_provenance_logger: ProvenanceLogger | None = None


def get_provenance_logger() -> ProvenanceLogger:
    """Get the global provenance logger instance."""
    global _provenance_logger
    if _provenance_logger is None:
        _provenance_logger = ProvenanceLogger()
    return _provenance_logger
