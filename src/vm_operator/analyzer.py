"""Change impact analysis.

Decides whether moving a VM from one desired configuration to another needs a
reboot (shutdown and start) to take effect, given the hot-plug features
enabled on the VM.

Device lists are compared position by position. Reordering a list without
changing any value is therefore indistinguishable from changing every
position; callers get a reboot in that case.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from .models import MAX_IPCONFIG_INDEX, VmSpec

logger = logging.getLogger(__name__)

# Attributes whose change always requires a reboot
CRITICAL_ATTRIBUTES: tuple[str, ...] = (
    "bios",
    "boot",
    "bootdisk",
    "agent",
    "qemu_os",
    "balloon",
    "cpu",
    "numa",
    "machine",
    "hotplug",
    "scsihw",
    "os_type",
    "ciuser",
    "cipassword",
    "cicustom",
    "searchdomain",
    "nameserver",
    "sshkeys",
    "kvm",
    "vga",
    "serial",
    "usb",
    "hostpci",
)

CPU_ATTRIBUTES: tuple[str, ...] = ("sockets", "cores", "vcpus")
NETWORK_CRITICAL_KEYS: tuple[str, ...] = ("model", "macaddr", "queues")
DISK_CRITICAL_KEYS: tuple[str, ...] = ("ssd", "iothread", "discard", "cache", "size")
DISK_HOTPLUG_KEYS: tuple[str, ...] = ("type",)


@dataclass
class ChangeImpact:
    """Outcome of a change impact analysis."""

    reboot_required: bool = False
    reasons: list[str] = field(default_factory=list)

    def flag(self, reason: str) -> None:
        self.reboot_required = True
        self.reasons.append(reason)


def _parse_hotplug(hotplug: str) -> frozenset[str]:
    return frozenset(part.strip() for part in hotplug.split(",") if part.strip())


def _field(record: dict[str, Any] | None, key: str) -> Any:
    return None if record is None else record.get(key)


def _check_networks(
    impact: ChangeImpact,
    old: Sequence[dict[str, Any] | None],
    new: Sequence[dict[str, Any] | None],
) -> None:
    if len(old) != len(new):
        impact.flag(f"network interfaces changed from {len(old)} to {len(new)}")
        return
    for index, (before, after) in enumerate(zip(old, new, strict=True)):
        for key in NETWORK_CRITICAL_KEYS:
            if _field(before, key) != _field(after, key):
                impact.flag(f"network[{index}].{key} changed")


def _check_disks(
    impact: ChangeImpact,
    old: Sequence[dict[str, Any] | None],
    new: Sequence[dict[str, Any] | None],
    disk_hotplug: bool,
) -> None:
    if len(old) != len(new) and not disk_hotplug:
        impact.flag(f"disks changed from {len(old)} to {len(new)} without disk hotplug")
        return
    for index in range(min(len(old), len(new))):
        before, after = old[index], new[index]
        for key in DISK_CRITICAL_KEYS:
            if _field(before, key) != _field(after, key):
                impact.flag(f"disk[{index}].{key} changed")
        if disk_hotplug:
            continue
        for key in DISK_HOTPLUG_KEYS:
            if _field(before, key) != _field(after, key):
                impact.flag(f"disk[{index}].{key} changed without disk hotplug")


def assess_change_impact(old: VmSpec, new: VmSpec, hotplug: str | None = None) -> ChangeImpact:
    """Determine whether applying ``new`` over ``old`` requires a reboot.

    Args:
        old: Previously applied desired state.
        new: Desired state being applied.
        hotplug: Comma separated hot-plug features; defaults to ``new.hotplug``.

    Returns:
        ChangeImpact with one reason per triggering difference.
    """
    features = _parse_hotplug(new.hotplug if hotplug is None else hotplug)
    impact = ChangeImpact()

    for name in CRITICAL_ATTRIBUTES:
        if getattr(old, name) != getattr(new, name):
            impact.flag(f"{name} changed")

    for index in range(MAX_IPCONFIG_INDEX + 1):
        if old.ipconfig.get(index, "") != new.ipconfig.get(index, ""):
            impact.flag(f"ipconfig{index} changed")

    if old.memory != new.memory and "memory" not in features:
        impact.flag("memory changed without memory hotplug")

    if any(getattr(old, n) != getattr(new, n) for n in CPU_ATTRIBUTES) and "cpu" not in features:
        impact.flag("cpu topology changed without cpu hotplug")

    old_networks, new_networks = old.network_records(), new.network_records()
    if old_networks != new_networks and "network" not in features:
        _check_networks(impact, old_networks, new_networks)

    old_disks, new_disks = old.disk_records(), new.disk_records()
    if old_disks != new_disks:
        _check_disks(impact, old_disks, new_disks, "disk" in features)

    if impact.reboot_required:
        logger.info(
            "Change requires reboot",
            extra={"vm_name": new.name, "reasons": impact.reasons, "hotplug": sorted(features)},
        )
    return impact
