"""Resource identifiers.

A VM is addressed externally by ``<node>/<kind>/<vmid>``; cluster scoped
resources such as pools use ``<kind>/<id>``. The identifier is the only value
the caller persists, so decoding must return exactly what encoding consumed.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from .errors import MalformedId

logger = logging.getLogger(__name__)

RESOURCE_ID_PATTERN = re.compile(r"^([^/]+)/([^/]+)/([0-9]+)$")
CLUSTER_ID_PATTERN = re.compile(r"^([^/]+)/([^/]+)$")

VM_KIND = "qemu"
POOL_KIND = "pools"


def encode_resource_id(location: str, kind: str, vmid: int) -> str:
    """Build a node scoped identifier."""
    return f"{location}/{kind}/{vmid}"


def decode_resource_id(resource_id: str) -> tuple[str, str, int]:
    """Split a node scoped identifier into ``(location, kind, vmid)``.

    Raises:
        MalformedId: If the identifier does not have three segments or the
            last one is not a base-10 integer.
    """
    match = RESOURCE_ID_PATTERN.match(resource_id)
    if match is None:
        raise MalformedId(
            f"invalid resource format: {resource_id}. Must be <node>/<type>/<vmid>"
        )
    return match.group(1), match.group(2), int(match.group(3))


def encode_cluster_id(kind: str, identifier: str) -> str:
    """Build a cluster scoped identifier."""
    return f"{kind}/{identifier}"


def decode_cluster_id(resource_id: str) -> tuple[str, str]:
    """Split a cluster scoped identifier into ``(kind, id)``.

    Raises:
        MalformedId: If the identifier does not have exactly two segments.
    """
    match = CLUSTER_ID_PATTERN.match(resource_id)
    if match is None:
        raise MalformedId(
            f"invalid resource format: {resource_id}. Must be <type>/<resourceid>"
        )
    return match.group(1), match.group(2)


@dataclass
class ResourceHandle:
    """Caller-owned durable handle for one VM resource.

    The orchestrator writes the identifier as soon as a VM exists, even if a
    later step of the same operation fails, and clears it when a read finds
    the VM gone.
    """

    resource_id: str = ""

    @property
    def is_set(self) -> bool:
        return bool(self.resource_id)

    def set_id(self, location: str, vmid: int, kind: str = VM_KIND) -> None:
        self.resource_id = encode_resource_id(location, kind, vmid)
        logger.debug("Resource id assigned", extra={"resource_id": self.resource_id})

    def clear(self) -> None:
        self.resource_id = ""
