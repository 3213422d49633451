# gptfailsafe

Tools for fail-safe updates of boot-critical partitions on disks that use a
GUID Partition Table (GPT), together with a few small supporting utilities.

A fail-safe update works in three stages (`BootUpdateStage`):

1. **UPDATE_MAIN**: the secondary GPT is rewritten so that it points at the
   backup copies of the boot-critical partitions (`xbl`, `abl`, `tz`, ...).
   The primary header is then invalidated, so the device boots from the
   backups while the primary copies are being written.
2. **UPDATE_BACKUP**: the primary header is restored and the secondary one is
   invalidated, so the backup copies can be written.
3. **UPDATE_FINALIZE**: the secondary GPT is pointed back at the normal boot
   chain and its header is restored.

The state of both headers on disk records which stage a disk is in, so an
interrupted update can be resumed.

## Installation

```
pip install gptfailsafe
```

The package needs only the standard library.

## Modules

- `gptfailsafe.layout`: GPT header and entry offsets, the enums
  `BootUpdateStage`, `GptInstance`, `BootChain` and `GptState`, the
  little-endian helpers `get_u32`, `get_u64` and `put_u32`, and `header_crc`.
- `gptfailsafe.table`: `BlockDevice`, a context manager over a disk or an
  image file, plus `get_state`, `set_state`, `pentry_seek`, `boot_chain_swap`
  and `set_secondary_boot_chain`. Errors are raised as `GptError`.
- `gptfailsafe.ufs`: UFS helpers such as `is_ufs_device`,
  `scsi_node_from_bootdevice`, `set_xbl_boot_partition`,
  `dev_path_from_partition_name` and `partition_map`.
- `gptfailsafe.update`: `prepare_partitions` for a single disk,
  `prepare_boot_update` for every LUN that holds boot-critical partitions, and
  `LunList`.
- `gptfailsafe.disk`: `GptDisk` loads both headers and entry arrays, gives
  access to a single partition entry, recomputes the CRCs and writes the
  result back.
- `gptfailsafe.health`: `read_storage_info` and `read_disk_stats` read UFS
  health and block-layer statistics into `StorageInfo` and `DiskStats`.
- `gptfailsafe.arraylist`, `gptfailsafe.debug`, `gptfailsafe.version`: a
  growable list that releases the items it replaces, leveled debug output,
  and version reporting.

## Example

Check the state of both headers of a disk image:

```python
from gptfailsafe.layout import GptInstance
from gptfailsafe.table import BlockDevice, get_state

with BlockDevice("disk.img", 512) as device:
    primary = get_state(device, GptInstance.PRIMARY_GPT)
    secondary = get_state(device, GptInstance.SECONDARY_GPT)
    print(primary, secondary)
```

Run the first stage of a fail-safe update on an eMMC image:

```python
from gptfailsafe.layout import BootUpdateStage
from gptfailsafe.update import prepare_partitions

prepare_partitions(BootUpdateStage.UPDATE_MAIN, "disk.img", False, 512)
```

Edit a partition entry and write the table back:

```python
from gptfailsafe.disk import GptDisk
from gptfailsafe.layout import GptInstance

disk = GptDisk.load("boot", False, "/dev/block/bootdevice/by-name", 512)
entry = disk.entry("boot", GptInstance.PRIMARY_GPT)
disk.update_crc()
disk.commit()
```

## Running the tests

```
pip install -e ".[test]"
pytest
```