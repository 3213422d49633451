import os
import zlib

import pytest

from gptfailsafe.disk import GptDisk
from gptfailsafe.layout import (
    ATTRIBUTE_FLAG_OFFSET,
    GPT_SIGNATURE,
    HEADER_CRC_OFFSET,
    PARTITION_CRC_OFFSET,
    PARTITION_NAME_OFFSET,
    GptInstance,
    GptState,
    get_u32,
    header_crc,
)
from gptfailsafe.table import BlockDevice, GptError, get_state

BLOCK = 512
BLOCKS = 16
ENTRY = 128
COUNT = 4
HEADER_SIZE = 92


def _header(my_lba, alt_lba, entries_lba, entries):
    hdr = bytearray(BLOCK)
    hdr[0:8] = GPT_SIGNATURE
    hdr[8:12] = (0x00010000).to_bytes(4, "little")
    hdr[12:16] = HEADER_SIZE.to_bytes(4, "little")
    hdr[24:32] = my_lba.to_bytes(8, "little")
    hdr[32:40] = alt_lba.to_bytes(8, "little")
    hdr[40:48] = (3).to_bytes(8, "little")
    hdr[48:56] = (13).to_bytes(8, "little")
    hdr[72:80] = entries_lba.to_bytes(8, "little")
    hdr[80:84] = COUNT.to_bytes(4, "little")
    hdr[84:88] = ENTRY.to_bytes(4, "little")
    hdr[88:92] = zlib.crc32(entries).to_bytes(4, "little")
    hdr[16:20] = zlib.crc32(hdr[:HEADER_SIZE]).to_bytes(4, "little")
    return hdr


def _build(path, names):
    entries = bytearray(COUNT * ENTRY)
    for index, name in enumerate(names):
        off = index * ENTRY
        entries[off : off + 16] = b"\x01" * 16
        raw = name.encode("utf-16-le")
        entries[off + PARTITION_NAME_OFFSET : off + PARTITION_NAME_OFFSET + len(raw)] = raw
    image = bytearray(BLOCK * BLOCKS)
    image[BLOCK : 2 * BLOCK] = _header(1, BLOCKS - 1, 2, entries)
    image[2 * BLOCK : 3 * BLOCK] = entries
    image[(BLOCKS - 2) * BLOCK : (BLOCKS - 1) * BLOCK] = entries
    image[(BLOCKS - 1) * BLOCK :] = _header(BLOCKS - 1, 1, BLOCKS - 2, entries)
    path.write_bytes(bytes(image))
    return bytes(image), bytes(entries)


@pytest.fixture
def disk_setup(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    image, entries = _build(tmp_path / "disk.img", ["abl", "ablbak", "boot", "modem"])
    by_name = tmp_path / "by-name"
    by_name.mkdir()
    os.symlink("disk.img", by_name / "boot")
    return tmp_path, by_name, image, entries


def _load(by_name):
    return GptDisk.load("boot", True, by_name, BLOCK)


def test_load_reads_layout(disk_setup):
    _, by_name, image, entries = disk_setup
    disk = _load(by_name)
    assert disk.devpath == "disk.img"
    assert disk.block_size == BLOCK
    assert disk.entry_size == ENTRY
    assert disk.entries_size == COUNT * ENTRY
    assert bytes(disk.entries) == entries
    assert bytes(disk.header) == image[BLOCK : 2 * BLOCK]
    assert disk.entries_checksum == zlib.crc32(entries)
    assert disk.header_checksum == zlib.crc32(image[BLOCK : BLOCK + HEADER_SIZE])


def test_backup_copy_comes_from_primary_table(disk_setup):
    _, by_name, _, _ = disk_setup
    disk = _load(by_name)
    assert disk.backup_header == disk.header
    assert disk.backup_entries == disk.entries
    assert disk.backup_entries_checksum == disk.entries_checksum


def test_load_missing_partition_raises(disk_setup):
    _, by_name, _, _ = disk_setup
    with pytest.raises(GptError):
        GptDisk.load("vendor", True, by_name, BLOCK)


def test_entry_finds_named_partition(disk_setup):
    _, by_name, _, entries = disk_setup
    disk = _load(by_name)
    view = disk.entry("boot", GptInstance.PRIMARY)
    assert bytes(view) == entries[2 * ENTRY : 3 * ENTRY]
    assert disk.entry("abl") is not None
    assert bytes(disk.entry("abl")) == entries[0:ENTRY]


def test_entry_missing_returns_none(disk_setup):
    _, by_name, _, _ = disk_setup
    disk = _load(by_name)
    assert disk.entry("vendor") is None


def test_entry_empty_name_raises(disk_setup):
    _, by_name, _, _ = disk_setup
    disk = _load(by_name)
    with pytest.raises(GptError):
        disk.entry("")


def test_entry_view_edits_table(disk_setup):
    _, by_name, _, _ = disk_setup
    disk = _load(by_name)
    view = disk.entry("modem", GptInstance.SECONDARY)
    view[ATTRIBUTE_FLAG_OFFSET] = 0x5A
    assert disk.backup_entries[3 * ENTRY + ATTRIBUTE_FLAG_OFFSET] == 0x5A
    assert disk.entries[3 * ENTRY + ATTRIBUTE_FLAG_OFFSET] == 0


def test_update_crc_makes_headers_consistent(disk_setup):
    _, by_name, _, _ = disk_setup
    disk = _load(by_name)
    disk.entry("boot")[ATTRIBUTE_FLAG_OFFSET + 6] = 0x4
    disk.update_crc()
    assert get_u32(disk.header, PARTITION_CRC_OFFSET) == zlib.crc32(disk.entries)
    assert disk.entries_checksum == zlib.crc32(disk.entries)
    assert get_u32(disk.header, HEADER_CRC_OFFSET) == header_crc(disk.header)
    assert disk.header_checksum == header_crc(disk.header)
    assert get_u32(disk.backup_header, HEADER_CRC_OFFSET) == header_crc(disk.backup_header)


def test_commit_round_trip(disk_setup):
    tmp_path, by_name, image, _ = disk_setup
    disk = _load(by_name)
    disk.entry("boot")[ATTRIBUTE_FLAG_OFFSET + 6] = 0x4
    disk.update_crc()
    disk.commit()

    reloaded = _load(by_name)
    assert reloaded.entries == disk.entries
    assert reloaded.header == disk.header
    with BlockDevice(tmp_path / "disk.img", BLOCK) as device:
        assert get_state(device, GptInstance.PRIMARY) == GptState.OK
    written = (tmp_path / "disk.img").read_bytes()
    assert written[(BLOCKS - 2) * BLOCK :] == image[(BLOCKS - 2) * BLOCK :]


def test_commit_without_crc_update_leaves_bad_header(disk_setup):
    tmp_path, by_name, _, _ = disk_setup
    disk = _load(by_name)
    disk.header[40] ^= 0xFF
    disk.commit()
    with BlockDevice(tmp_path / "disk.img", BLOCK) as device:
        assert get_state(device, GptInstance.PRIMARY) == GptState.BAD_CRC