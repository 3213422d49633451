"""Storage health and disk statistics read from sysfs."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field

_log = logging.getLogger(__name__)

UFS_DIR = "/sys/devices/platform/soc/1d84000.ufshc"
DISK_STATS_FILE = "/sys/block/sda/stat"
UFS_NAME = "UFS0"

# Number as read with the base taken from its prefix: 0x hex, 0 octal, else decimal.
_AUTO_BASE = re.compile(r"[+-]?(0[xX][0-9a-fA-F]+|0[0-7]*|[1-9][0-9]*)")


@dataclass
class StorageAttribute:
    """Identity of a storage device."""

    is_internal: bool = True
    is_boot_device: bool = True
    name: str = UFS_NAME


@dataclass
class StorageInfo:
    """Health figures of a storage device."""

    attr: StorageAttribute = field(default_factory=StorageAttribute)
    eol: int = 0
    lifetime_a: int = 0
    lifetime_b: int = 0
    version: str = ""


@dataclass
class DiskStats:
    """I/O counters of a block device, in the order of its stat file."""

    attr: StorageAttribute = field(default_factory=StorageAttribute)
    reads: int = 0
    read_merges: int = 0
    read_sectors: int = 0
    read_ticks: int = 0
    writes: int = 0
    write_merges: int = 0
    write_sectors: int = 0
    write_ticks: int = 0
    io_in_flight: int = 0
    io_ticks: int = 0
    io_in_queue: int = 0


_DISK_FIELDS = (
    "reads",
    "read_merges",
    "read_sectors",
    "read_ticks",
    "writes",
    "write_merges",
    "write_sectors",
    "write_ticks",
    "io_in_flight",
    "io_ticks",
    "io_in_queue",
)


def _read_text(path: str) -> str:
    try:
        with open(path, encoding="ascii", errors="replace") as stream:
            return stream.read()
    except OSError:
        _log.warning("Cannot read %s", path)
        return ""


def _parse_auto_base(text: str) -> int:
    match = _AUTO_BASE.match(text.lstrip())
    if match is None:
        return 0
    token = match.group(0)
    sign = -1 if token.startswith("-") else 1
    digits = token.lstrip("+-")
    if digits[:2].lower() == "0x":
        value = int(digits[2:], 16)
    elif digits.startswith("0"):
        value = int(digits, 8)
    else:
        value = int(digits, 10)
    return sign * value


def _read_value(path: str) -> int:
    return _parse_auto_base(_read_text(path))


def read_storage_info(ufs_dir=UFS_DIR) -> StorageInfo:
    """Version, end-of-life and lifetime estimates of the UFS device."""
    base = os.fspath(ufs_dir)
    version = _read_value(os.path.join(base, "version"))
    return StorageInfo(
        attr=StorageAttribute(),
        eol=_read_value(os.path.join(base, "health", "eol")),
        lifetime_a=_read_value(os.path.join(base, "health", "lifetimeA")),
        lifetime_b=_read_value(os.path.join(base, "health", "lifetimeB")),
        version=f"ufs {version:x}",
    )


def read_disk_stats(path=DISK_STATS_FILE) -> DiskStats:
    """Counters from a block device stat file; missing fields read as zero."""
    values = {}
    for name, token in zip(_DISK_FIELDS, _read_text(os.fspath(path)).split()):
        if not token.isdigit():
            break
        values[name] = int(token)
    return DiskStats(attr=StorageAttribute(), **values)