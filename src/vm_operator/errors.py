"""Error taxonomy for VM lifecycle operations.

Every error raised by the orchestrator for a condition it detects itself is an
OperatorError. Failures reported by the compute backend pass through as
``vm_operator.client.ComputeApiError`` unless noted otherwise.
"""

from __future__ import annotations


class OperatorError(Exception):
    """Base class for lifecycle errors detected by the operator."""

    pass


class DuplicateResource(OperatorError):
    """Raised when a same-name VM blocks creation (force_create or other node)."""

    pass


class AmbiguousCreateStrategy(OperatorError):
    """Raised when none of clone, iso or pxe is requested on create."""

    pass


class InvalidBootOrder(OperatorError):
    """Raised when a network boot is requested without a network boot entry."""

    pass


class UnsupportedShrink(OperatorError):
    """Raised when a disk would have to shrink to reach the desired size."""

    pass


class StopTimeout(OperatorError):
    """Raised when a VM does not reach the stopped state before deletion."""

    pass


class GuestAgentUnavailable(OperatorError):
    """Raised when the guest agent never answers before the deadline."""

    pass


class NoAddressFound(OperatorError):
    """Raised when connection discovery cannot resolve any address."""

    pass


class MalformedId(OperatorError):
    """Raised when a resource identifier cannot be decoded."""

    pass


class UnknownAttributeError(OperatorError):
    """Raised when the backend returns a device attribute this package cannot model."""

    pass


class InsufficientPermissions(OperatorError):
    """Raised when the API token lacks privileges required for VM lifecycle."""

    def __init__(self, user_id: str, missing: list[str]) -> None:
        self.user_id = user_id
        self.missing = missing
        super().__init__(
            f"permissions for user/token {user_id} are not sufficient, "
            f"please provide also the following permissions that are missing: {missing}"
        )
