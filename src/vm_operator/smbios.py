"""SMBIOS type 1 argument encoding."""

from __future__ import annotations

import base64
import binascii
import uuid
from collections.abc import Mapping, Sequence
from typing import Any

ENCODED_FIELDS = ("serial", "manufacturer", "product", "version", "sku", "family")


def build_smbios_args(entries: Sequence[Mapping[str, Any]] | None) -> str:
    """Render SMBIOS records as the backend's ``smbios1`` string.

    Text fields are base64 encoded and flagged with ``base64=1``. An empty
    uuid is replaced with a freshly generated one.
    """
    if not entries:
        return ""

    args: list[str] = []
    for entry in entries:
        for key, value in entry.items():
            if key == "uuid":
                args.append(f"uuid={value or uuid.uuid4()}")
            elif key in ENCODED_FIELDS:
                if not value:
                    continue
                encoded = base64.b64encode(str(value).encode("utf-8")).decode("ascii")
                args.append(f"{key}={encoded}")
    args.append("base64=1")
    return ",".join(args)


def read_smbios_args(smbios: str) -> list[dict[str, str]]:
    """Parse an ``smbios1`` string into a single-record list.

    Values that are not valid base64 are kept as-is (uuid, the base64 flag).
    """
    if not smbios:
        return []

    fields: dict[str, str] = {}
    for item in smbios.split(","):
        if not item:
            continue
        key, _, value = item.partition("=")
        try:
            fields[key] = base64.b64decode(value, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            fields[key] = value
    return [fields]
