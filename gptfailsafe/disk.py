"""In-memory copy of a disk's partition tables for editing and writing back."""

from __future__ import annotations

import zlib
from dataclasses import dataclass
from typing import Optional

from .layout import (
    BOOT_DEV_DIR,
    HEADER_CRC_OFFSET,
    HEADER_SIZE_OFFSET,
    PARTITION_COUNT_OFFSET,
    PARTITION_CRC_OFFSET,
    PENTRIES_OFFSET,
    PENTRY_SIZE_OFFSET,
    GptInstance,
    get_u32,
    get_u64,
    header_crc,
    put_u32,
)
from .table import BlockDevice, GptError, pentry_seek
from .ufs import dev_path_from_partition_name


def _crc(data) -> int:
    return zlib.crc32(data) & 0xFFFFFFFF


def _entries_location(header, block_size: int) -> tuple[int, int]:
    start = get_u64(header, PENTRIES_OFFSET) * block_size
    entry_size = get_u32(header, PENTRY_SIZE_OFFSET)
    size = (get_u32(header, PARTITION_COUNT_OFFSET) * entry_size) & 0xFFFFFFFF
    return start, size


def _read_entries(device: BlockDevice, header) -> bytearray:
    start, size = _entries_location(header, device.block_size)
    return bytearray(device.read(start, size))


@dataclass
class GptDisk:
    """Headers and partition entry arrays of the disk holding a partition.

    ``backup_header`` and ``backup_entries`` are a second copy read from the
    primary table; ``commit`` writes back the primary header and entries.
    """

    header: bytearray
    header_checksum: int
    backup_header: bytearray
    backup_header_checksum: int
    entries: bytearray
    backup_entries: bytearray
    entries_size: int
    entry_size: int
    entries_checksum: int
    backup_entries_checksum: int
    devpath: str
    block_size: int

    @classmethod
    def load(
        cls,
        dev: str,
        is_ufs: bool = False,
        boot_dev_dir=BOOT_DEV_DIR,
        block_size: Optional[int] = None,
    ) -> "GptDisk":
        """Read the tables of the disk on which partition ``dev`` lives."""
        if not dev:
            raise GptError("Invalid arguments")
        devpath = dev_path_from_partition_name(dev, is_ufs, boot_dev_dir)
        with BlockDevice(devpath, block_size) as device:
            primary_offset = device.header_offset(GptInstance.PRIMARY)
            header = bytearray(device.read(primary_offset, device.block_size))
            backup_header = bytearray(device.read(primary_offset, device.block_size))
            header_size = get_u32(header, HEADER_SIZE_OFFSET)
            entries = _read_entries(device, header)
            backup_entries = _read_entries(device, backup_header)
            actual_block_size = device.block_size

        entry_size = get_u32(header, PENTRY_SIZE_OFFSET)
        return cls(
            header=header,
            header_checksum=_crc(header[:header_size]),
            backup_header=backup_header,
            backup_header_checksum=_crc(backup_header[:header_size]),
            entries=entries,
            backup_entries=backup_entries,
            entries_size=(get_u32(header, PARTITION_COUNT_OFFSET) * entry_size) & 0xFFFFFFFF,
            entry_size=entry_size,
            entries_checksum=get_u32(header, PARTITION_CRC_OFFSET),
            backup_entries_checksum=get_u32(backup_header, PARTITION_CRC_OFFSET),
            devpath=devpath,
            block_size=actual_block_size,
        )

    def entry(self, partname: str, instance=GptInstance.PRIMARY) -> Optional[memoryview]:
        """Writable view of the entry named ``partname`` (or its "bak" twin).

        Returns ``None`` when there is no such entry.
        """
        if not partname:
            raise GptError("Invalid argument")
        table = self.entries if instance == GptInstance.PRIMARY else self.backup_entries
        offset = pentry_seek(partname, table[: self.entries_size], 0, self.entry_size)
        if offset is None:
            return None
        return memoryview(table)[offset : offset + self.entry_size]

    def update_crc(self) -> None:
        """Recompute the entry array and header checksums after an edit."""
        self.entries_checksum = _crc(self.entries[: self.entries_size])
        self.backup_entries_checksum = _crc(self.backup_entries[: self.entries_size])
        put_u32(self.header, PARTITION_CRC_OFFSET, self.entries_checksum)
        put_u32(self.backup_header, PARTITION_CRC_OFFSET, self.backup_entries_checksum)
        try:
            self.header_checksum = header_crc(self.header)
            self.backup_header_checksum = header_crc(self.backup_header)
        except ValueError as exc:
            raise GptError(f"malformed GPT header: {exc}") from exc
        put_u32(self.header, HEADER_CRC_OFFSET, self.header_checksum)
        put_u32(self.backup_header, HEADER_CRC_OFFSET, self.backup_header_checksum)

    def commit(self) -> None:
        """Write the primary header and primary entry array back to the disk."""
        with BlockDevice(self.devpath, self.block_size) as device:
            offset = device.header_offset(GptInstance.PRIMARY)
            if offset <= 0:
                raise GptError("Failed to get gpt header offset")
            device.write(offset, self.header[: device.block_size])
            start, size = _entries_location(self.header, device.block_size)
            device.write(start, self.entries[:size])