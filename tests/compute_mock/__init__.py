"""Proxmox compute API mock for testing.

Provides an in-memory implementation of the ComputeClient protocol so the
orchestrator can be exercised without a cluster.

Key Features:
- In-memory VM, pool and permission state
- Call recording with in-flight concurrency tracking
- Failure injection per method
- Guest agent start-up simulation

Usage:
    from compute_mock import MockComputeClient, MockComputeState

    state = MockComputeState()
    state.add_vm("template", "pve1", vmid=9000)
    client = MockComputeClient(state)
"""

from .client import MockComputeClient
from .context import MockComputeContext
from .state import MockComputeState, MockVm

__all__ = [
    "MockComputeClient",
    "MockComputeContext",
    "MockComputeState",
    "MockVm",
]
