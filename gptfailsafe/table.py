"""Reading, checking and rewriting GPT headers and partition entry arrays."""

from __future__ import annotations

import os
import struct
import zlib
from typing import BinaryIO, Optional

from . import debug
from .layout import (
    GPT_SIGNATURE,
    HEADER_CRC_OFFSET,
    MAX_GPT_NAME_SIZE,
    PARTITION_COUNT_OFFSET,
    PARTITION_CRC_OFFSET,
    PARTITION_NAME_OFFSET,
    PENTRIES_OFFSET,
    PENTRY_SIZE_OFFSET,
    PTN_ENTRY_SIZE,
    PTN_SWAP_LIST,
    PTN_XBL,
    BootChain,
    GptInstance,
    GptState,
    get_u32,
    get_u64,
    header_crc,
    put_u32,
)

BAK_PTN_NAME_EXT = "bak"
# ioctl request returning the logical sector size of a block device.
BLKSSZGET = 0x1268
# The signature check covers the terminating NUL, i.e. the first revision byte.
_SIGNATURE_FIELD = GPT_SIGNATURE + b"\0"


class GptError(Exception):
    """A partition table could not be read, checked or written."""


def _query_block_size(fileobj: BinaryIO) -> int:
    try:
        import fcntl
    except ImportError as exc:
        raise GptError("block size cannot be queried on this platform") from exc
    try:
        raw = fcntl.ioctl(fileobj.fileno(), BLKSSZGET, b"\0" * 4)
    except OSError as exc:
        raise GptError(f"Failed to get GPT device block size: {exc.strerror}") from exc
    return struct.unpack("I", raw)[0]


class BlockDevice:
    """A disk or disk image opened for reading and writing.

    When ``block_size`` is not given it is asked of the kernel.
    """

    def __init__(self, path, block_size: Optional[int] = None) -> None:
        self.path = os.fspath(path)
        try:
            self._file: BinaryIO = open(self.path, "r+b")
        except OSError as exc:
            raise GptError(f"Opening '{self.path}' failed: {exc.strerror}") from exc
        try:
            size = block_size if block_size is not None else _query_block_size(self._file)
            if size <= 0:
                raise GptError(f"invalid block size {size}")
        except BaseException:
            self._file.close()
            raise
        self.block_size = size

    def __enter__(self) -> "BlockDevice":
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def close(self) -> None:
        """Flush pending writes to storage and close the device."""
        if self._file.closed:
            return
        try:
            self._file.flush()
            os.fsync(self._file.fileno())
        except OSError:
            pass
        finally:
            self._file.close()

    def size(self) -> int:
        """Size of the device in bytes."""
        try:
            return self._file.seek(0, os.SEEK_END)
        except OSError as exc:
            raise GptError(f"block dev seek to end failed: {exc.strerror}") from exc

    def read(self, offset: int, length: int) -> bytes:
        """Read exactly ``length`` bytes starting at ``offset``."""
        if offset < 0:
            raise GptError(f"block dev seek {offset} failed: negative offset")
        try:
            self._file.seek(offset)
            data = self._file.read(length)
        except OSError as exc:
            raise GptError(f"block dev read failed: {exc.strerror}") from exc
        if len(data) != length:
            raise GptError(
                f"block dev read failed: got {len(data)} of {length} bytes at offset {offset}"
            )
        return data

    def write(self, offset: int, data) -> None:
        """Write ``data`` at ``offset`` and sync it to storage."""
        if offset < 0:
            raise GptError(f"block dev seek {offset} failed: negative offset")
        try:
            self._file.seek(offset)
            self._file.write(bytes(data))
            self._file.flush()
            os.fsync(self._file.fileno())
        except OSError as exc:
            raise GptError(f"block dev write failed: {exc.strerror}") from exc

    def header_offset(self, instance: GptInstance) -> int:
        """Byte offset of the primary or secondary GPT header."""
        if instance == GptInstance.PRIMARY:
            return self.block_size
        offset = self.size() - self.block_size
        if offset < 0:
            raise GptError("Getting secondary GPT header offset failed")
        return offset


def _entry_name(entries, offset: int) -> str:
    # Names are UTF-16; only the low byte of each character is looked at.
    start = offset + PARTITION_NAME_OFFSET
    raw = bytes(entries[start:start + MAX_GPT_NAME_SIZE:2])
    return raw.split(b"\0", 1)[0].decode("latin-1")


def pentry_seek(name: str, entries, start: int, entry_size: int) -> Optional[int]:
    """Offset of the first entry at or after ``start`` named ``name`` or ``name`` + "bak".

    Returns ``None`` when no entry matches.
    """
    if entry_size <= 0:
        raise ValueError(f"invalid partition entry size {entry_size}")
    wanted = (name, name + BAK_PTN_NAME_EXT)
    for offset in range(start, len(entries), entry_size):
        if offset + PARTITION_NAME_OFFSET >= len(entries):
            break
        if _entry_name(entries, offset) in wanted:
            return offset
    return None


def boot_chain_swap(entries: bytearray, entry_size: int, is_ufs: bool) -> bool:
    """Swap each boot-critical entry with its backup twin in place.

    On UFS devices the xbl partitions are left alone; they are switched
    through the boot LUN instead. Returns whether any pair was swapped.
    """
    swapped = False
    for name in PTN_SWAP_LIST:
        if is_ufs and name.startswith(PTN_XBL):
            continue
        primary = pentry_seek(name, entries, 0, entry_size)
        if primary is None:
            continue
        backup = pentry_seek(name, entries, primary + entry_size, entry_size)
        if backup is None:
            debug.error("'%s' partition not backup - skip safe update\n", name)
            continue
        first = bytes(entries[primary:primary + PTN_ENTRY_SIZE])
        entries[primary:primary + PTN_ENTRY_SIZE] = entries[backup:backup + PTN_ENTRY_SIZE]
        entries[backup:backup + PTN_ENTRY_SIZE] = first
        swapped = True
    return swapped


def _header_crc(header) -> int:
    try:
        return header_crc(header)
    except ValueError as exc:
        raise GptError(f"malformed GPT header: {exc}") from exc


def get_state(device: BlockDevice, instance: GptInstance) -> GptState:
    """Check the signature and CRC of one GPT header."""
    header = device.read(device.header_offset(instance), device.block_size)
    state = GptState.OK
    if header[:len(_SIGNATURE_FIELD)] != _SIGNATURE_FIELD:
        state = GptState.BAD_SIGNATURE
    if _header_crc(header) != get_u32(header, HEADER_CRC_OFFSET):
        state = GptState.BAD_CRC
    return state


def set_state(device: BlockDevice, instance: GptInstance, state: GptState) -> None:
    """Restore or corrupt the signature of one GPT header, keeping its CRC valid."""
    offset = device.header_offset(instance)
    header = bytearray(device.read(offset, device.block_size))
    if state == GptState.OK:
        header[:len(_SIGNATURE_FIELD)] = _SIGNATURE_FIELD
    elif state == GptState.BAD_SIGNATURE:
        header[0] = 0
    else:
        raise GptError(f"set_state: invalid state {state!r}")
    put_u32(header, HEADER_CRC_OFFSET, _header_crc(header))
    device.write(offset, header)


def set_secondary_boot_chain(device: BlockDevice, chain: BootChain, is_ufs: bool) -> bool:
    """Rewrite the secondary table from the primary entries for ``chain``.

    For the backup chain the boot-critical entries are swapped with their
    backups first. Returns ``False``, writing nothing, when the backup
    chain is asked for and no backup partitions exist.
    """
    block_size = device.block_size
    secondary_offset = device.header_offset(GptInstance.SECONDARY)

    primary = device.read(block_size, block_size)
    entries_start = get_u64(primary, PENTRIES_OFFSET) * block_size
    entry_size = get_u32(primary, PENTRY_SIZE_OFFSET)
    array_size = (get_u32(primary, PARTITION_COUNT_OFFSET) * entry_size) & 0xFFFFFFFF
    entries = bytearray(device.read(entries_start, array_size))

    if zlib.crc32(entries) & 0xFFFFFFFF != get_u32(primary, PARTITION_CRC_OFFSET):
        raise GptError("Primary GPT partition entries array CRC invalid")

    secondary = bytearray(device.read(secondary_offset, block_size))
    secondary_entries_start = get_u64(secondary, PENTRIES_OFFSET) * block_size

    if chain == BootChain.BACKUP and not boot_chain_swap(entries, entry_size, is_ufs):
        return False

    put_u32(secondary, PARTITION_CRC_OFFSET, zlib.crc32(entries))
    put_u32(secondary, HEADER_CRC_OFFSET, _header_crc(secondary))

    device.write(secondary_offset, secondary)
    device.write(secondary_entries_start, entries)
    return True