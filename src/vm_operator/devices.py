"""Device collection transforms.

Users declare devices (disks, network interfaces, PCI and USB passthrough,
serial ports) as ordered lists of attribute records. The compute API addresses
them by integer slot. These helpers convert between the two shapes.

A ``None`` record is an unused slot. ``expand_devices`` keeps it in place so
slot numbers stay aligned with list positions, and ``flatten_devices`` skips
it. Flattening is therefore not a strict inverse of expanding when unused
slots are present.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import Any

DeviceEntry = dict[str, Any]
DeviceMap = dict[int, DeviceEntry | None]

# Disk keys the update path must not send back to the backend: "file" makes the
# backend detach the existing volume, "media" is emitted twice and rejected.
UPDATE_STRIPPED_DISK_KEYS: tuple[str, ...] = ("file", "media")


def expand_devices(records: Sequence[Mapping[str, Any] | None] | None) -> DeviceMap:
    """Key an ordered list of device records by position.

    Args:
        records: Ordered device records; ``None`` entries mark unused slots.

    Returns:
        Slot map with a copy of each record. Empty input yields ``{}``.
    """
    expanded: DeviceMap = {}
    if not records:
        return expanded

    for index, record in enumerate(records):
        expanded[index] = None if record is None else dict(record)
    return expanded


def flatten_devices(devices: Mapping[int, Mapping[str, Any] | None] | None) -> list[DeviceEntry]:
    """Turn a slot map back into an ordered list, skipping unused slots."""
    flattened: list[DeviceEntry] = []
    if not devices:
        return flattened

    for slot in sorted(devices):
        device = devices[slot]
        if device is None:
            continue
        flattened.append(dict(device))
    return flattened


def drop_keys(keys: Iterable[str], records: list[DeviceEntry]) -> list[DeviceEntry]:
    """Remove ``keys`` from every record.

    Mutates the records in place and returns the same list.
    """
    keys = tuple(keys)
    for record in records:
        for key in keys:
            record.pop(key, None)
    return records


def strip_update_disk_keys(disks: DeviceMap) -> DeviceMap:
    """Strip the disk keys the backend rejects on a configuration update.

    Only the update path calls this; create and clone send the full disk
    description. Mutates ``disks`` in place.
    """
    for disk in disks.values():
        if disk is None:
            continue
        for key in UPDATE_STRIPPED_DISK_KEYS:
            disk.pop(key, None)
    return disks


def drive_name(disk: Mapping[str, Any], slot: int) -> str:
    """Backend drive key for a disk record, such as ``scsi1``.

    An explicit ``slot`` on the record wins over its position in the map.
    """
    index = disk.get("slot")
    return f"{disk.get('type', '')}{slot if index is None else index}"


def index_disks_by_drive(disks: Mapping[int, Mapping[str, Any] | None]) -> dict[str, Any]:
    """Key disk records by drive name, skipping unused slots.

    Desired and live disks are joined on this key: map positions differ
    between the two when disks declare their own slot or share an index
    across buses.
    """
    return {
        drive_name(disk, slot): disk for slot, disk in disks.items() if disk is not None
    }


def devices_set_to_map(records: Iterable[Mapping[str, Any]], id_key: str = "id") -> DeviceMap:
    """Key unordered device records by their explicit id attribute.

    Used for serial ports, which are declared as a set with explicit ids
    rather than positionally.

    Raises:
        ValueError: If two records carry the same id.
    """
    devices: DeviceMap = {}
    for record in records:
        slot = int(record[id_key])
        if slot in devices:
            raise ValueError(
                f"unable to process set, received a duplicate ID '{slot}' "
                "check your configuration file"
            )
        devices[slot] = dict(record)
    return devices
