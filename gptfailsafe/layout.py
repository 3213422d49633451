"""On-disk layout of GUID partition tables and the enums used to drive updates."""

from __future__ import annotations

import enum
import struct
import zlib

GPT_SIGNATURE = b"EFI PART"

# Header field offsets.
HEADER_SIZE_OFFSET = 12
HEADER_CRC_OFFSET = 16
PRIMARY_HEADER_OFFSET = 24
BACKUP_HEADER_OFFSET = 32
FIRST_USABLE_LBA_OFFSET = 40
LAST_USABLE_LBA_OFFSET = 48
PENTRIES_OFFSET = 72
PARTITION_COUNT_OFFSET = 80
PENTRY_SIZE_OFFSET = 84
PARTITION_CRC_OFFSET = 88

# Partition entry field offsets.
TYPE_GUID_OFFSET = 0
TYPE_GUID_SIZE = 16
PTN_ENTRY_SIZE = 128
UNIQUE_GUID_OFFSET = 16
FIRST_LBA_OFFSET = 32
LAST_LBA_OFFSET = 40
ATTRIBUTE_FLAG_OFFSET = 48
PARTITION_NAME_OFFSET = 56
MAX_GPT_NAME_SIZE = 72

# A/B attributes live from bit 48 of the attribute field onwards.
AB_FLAG_OFFSET = ATTRIBUTE_FLAG_OFFSET + 6
GPT_DISK_INIT_MAGIC = 0xABCD
AB_PARTITION_ATTR_SLOT_ACTIVE = 0x1 << 2
AB_PARTITION_ATTR_BOOT_SUCCESSFUL = 0x1 << 6
AB_PARTITION_ATTR_UNBOOTABLE = 0x1 << 7
AB_SLOT_ACTIVE_VAL = 0xF
AB_SLOT_INACTIVE_VAL = 0x0
AB_SLOT_ACTIVE = 1
AB_SLOT_INACTIVE = 0
AB_SLOT_A_SUFFIX = "_a"
AB_SLOT_B_SUFFIX = "_b"

PTN_XBL = "xbl"
PTN_SWAP_LIST = (
    PTN_XBL,
    "abl",
    "aop",
    "devcfg",
    "dtbo",
    "hyp",
    "keymaster",
    "qupfw",
    "storsec",
    "tz",
    "uefisecapp",
    "vbmeta",
    "vbmeta_system",
    "xbl_config",
)
AB_PTN_LIST = PTN_SWAP_LIST + (
    "boot",
    "system",
    "vendor",
    "modem",
    "system_ext",
    "product",
)
BOOT_DEV_DIR = "/dev/block/bootdevice/by-name"


class BootUpdateStage(enum.IntEnum):
    """Stage of a fail-safe boot partition update."""

    MAIN = 1
    BACKUP = 2
    FINALIZE = 3


class GptInstance(enum.IntEnum):
    """Which copy of the partition table is addressed."""

    PRIMARY = 0
    SECONDARY = 1


class BootChain(enum.IntEnum):
    """Which set of boot-critical partitions the device boots from."""

    NORMAL = 0
    BACKUP = 1


class GptState(enum.IntEnum):
    """Health of a GPT header."""

    OK = 0
    BAD_SIGNATURE = 1
    BAD_CRC = 2


def _check_range(buf, offset: int, width: int) -> None:
    if offset < 0 or offset + width > len(buf):
        raise ValueError(
            f"field of {width} bytes at offset {offset} lies outside a buffer of {len(buf)} bytes"
        )


def get_u32(buf, offset: int) -> int:
    """Read a little-endian 32-bit unsigned integer."""
    _check_range(buf, offset, 4)
    return struct.unpack_from("<I", buf, offset)[0]


def get_u64(buf, offset: int) -> int:
    """Read a little-endian 64-bit unsigned integer."""
    _check_range(buf, offset, 8)
    return struct.unpack_from("<Q", buf, offset)[0]


def put_u32(buf: bytearray, offset: int, value: int) -> None:
    """Store the low 32 bits of ``value`` little-endian into ``buf``."""
    _check_range(buf, offset, 4)
    struct.pack_into("<I", buf, offset, value & 0xFFFFFFFF)


def header_crc(header) -> int:
    """CRC32 of a GPT header, computed with its own CRC field cleared.

    The header is not modified.
    """
    size = get_u32(header, HEADER_SIZE_OFFSET)
    scratch = bytearray(header[:size])
    if len(scratch) < size:
        raise ValueError(f"header declares {size} bytes but only {len(scratch)} are present")
    put_u32(scratch, HEADER_CRC_OFFSET, 0)
    return zlib.crc32(scratch) & 0xFFFFFFFF