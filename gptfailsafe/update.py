"""Fail-safe update of boot-critical partitions by steering the firmware between GPT copies.

An update runs in three stages. MAIN points the secondary table at the
backup partitions and corrupts the primary header, so the device boots
from the backups while the primaries are rewritten. BACKUP restores the
primary header and corrupts the secondary one, so the backups can be
rewritten. FINALIZE points the secondary table back at the primaries and
restores its header.
"""

from __future__ import annotations

import errno
import os
import struct
from typing import Iterator, Optional

from . import debug
from .layout import (
    BOOT_DEV_DIR,
    PTN_SWAP_LIST,
    PTN_XBL,
    BootChain,
    BootUpdateStage,
    GptInstance,
    GptState,
)
from .table import BlockDevice, GptError, get_state, set_secondary_boot_chain, set_state
from .ufs import (
    MMC_BLK_DEV,
    PATH_TRUNCATE_LOC,
    XBL_BY_NAME_DIR,
    set_xbl_boot_partition,
)

XBL_PRIMARY = os.path.join(XBL_BY_NAME_DIR, "xbl")
XBL_BACKUP = os.path.join(XBL_BY_NAME_DIR, "xblbak")

MAX_LUNS = 26

# UFS attribute write through the SCSI generic node.
UFS_ATTR_DATA_SIZE = 32
UFS_IOCTL_QUERY = 0x5388
UPIU_QUERY_OPCODE_WRITE_ATTR = 0x4
QUERY_ATTR_IDN_BOOT_LU_EN = 0x00
_QUERY_HEADER = struct.Struct("<IBxH")


def _set_boot_lun(sg_dev: str, boot_lun_id: int) -> None:
    """Write the bBootLunEn attribute of the UFS device behind ``sg_dev``."""
    try:
        import fcntl
    except ImportError as exc:
        raise OSError(errno.ENOSYS, "UFS query ioctl is not available on this platform") from exc
    request = bytearray(
        _QUERY_HEADER.pack(UPIU_QUERY_OPCODE_WRITE_ATTR, QUERY_ATTR_IDN_BOOT_LU_EN, UFS_ATTR_DATA_SIZE)
    )
    request += bytes(UFS_ATTR_DATA_SIZE)
    request[_QUERY_HEADER.size] = boot_lun_id
    fd = os.open(sg_dev, os.O_RDWR)
    try:
        fcntl.ioctl(fd, UFS_IOCTL_QUERY, request, True)
    finally:
        os.close(fd)


class LunList:
    """Distinct block devices (LUNs) holding boot-critical partitions."""

    def __init__(self) -> None:
        self._luns: list[str] = []

    def add(self, lun_path) -> bool:
        """Add ``lun_path`` unless a listed LUN already covers it.

        Returns whether the path was added.
        """
        path = os.fspath(lun_path)
        if not path:
            raise GptError("Invalid data")
        if not os.path.exists(path):
            raise GptError(f"Unable to access {path}. Skipping adding to list")
        if any(path.startswith(lun) for lun in self._luns):
            return False
        if len(self._luns) >= MAX_LUNS:
            raise GptError(f"LUN list is full ({MAX_LUNS} entries)")
        debug.error("LunList.add: Copying %s into lun_list[%d]\n", path, len(self._luns))
        self._luns.append(path)
        return True

    def __iter__(self) -> Iterator[str]:
        return iter(self._luns)

    def __len__(self) -> int:
        return len(self._luns)


def _switch_xbl_boot_lun(chain: BootChain) -> None:
    if not (os.path.exists(XBL_PRIMARY) and os.path.exists(XBL_BACKUP)):
        # Not fatal: the target boots through sbl, which is updated the normal way.
        debug.error("prepare_partitions: xbl part not found. Assuming sbl in use\n")
        return
    set_xbl_boot_partition(chain, _set_boot_lun)


def _internal_stage(primary: GptState, secondary: GptState) -> BootUpdateStage:
    if primary == GptState.BAD_CRC or secondary == GptState.BAD_CRC:
        raise GptError("GPT headers CRC corruption detected, aborting")
    if primary == GptState.BAD_SIGNATURE and secondary == GptState.BAD_SIGNATURE:
        raise GptError("Both GPT headers corrupted, aborting")
    if primary == GptState.OK and secondary == GptState.OK:
        return BootUpdateStage.MAIN
    if primary == GptState.BAD_SIGNATURE:
        return BootUpdateStage.BACKUP
    if secondary == GptState.BAD_SIGNATURE:
        return BootUpdateStage.FINALIZE
    raise GptError(
        f"Abnormal GPTs state: primary ({int(primary)}), secondary ({int(secondary)}), aborting"
    )


def prepare_partitions(stage, dev_path, is_ufs: bool = False, block_size: Optional[int] = None) -> None:
    """Bring the GPT on ``dev_path`` to the given update stage.

    Asking again for the stage that was last prepared does nothing.
    """
    if not dev_path:
        raise GptError("prepare_partitions: Invalid dev_path")
    try:
        stage = BootUpdateStage(stage)
    except ValueError as exc:
        raise GptError(f"prepare_partitions: invalid stage {stage!r}") from exc

    with BlockDevice(dev_path, block_size) as device:
        internal = _internal_stage(
            get_state(device, GptInstance.PRIMARY),
            get_state(device, GptInstance.SECONDARY),
        )
        if stage == internal - 1:
            return
        if stage != internal:
            raise GptError(
                f"prepare_partitions: unexpected stage {stage.name}, disk is ready for {internal.name}"
            )

        if stage == BootUpdateStage.MAIN:
            if is_ufs:
                _switch_xbl_boot_lun(BootChain.BACKUP)
            debug.error("prepare_partitions: Preparing for primary partition update\n")
            if not set_secondary_boot_chain(device, BootChain.BACKUP, is_ufs):
                # No backup partitions: leave the tables intact.
                return
            set_state(device, GptInstance.PRIMARY, GptState.BAD_SIGNATURE)
        elif stage == BootUpdateStage.BACKUP:
            if is_ufs:
                _switch_xbl_boot_lun(BootChain.NORMAL)
            debug.error("prepare_partitions: Preparing for backup partition update\n")
            set_state(device, GptInstance.PRIMARY, GptState.OK)
            set_state(device, GptInstance.SECONDARY, GptState.BAD_SIGNATURE)
        else:
            debug.error("prepare_partitions: Finalizing partitions\n")
            set_secondary_boot_chain(device, BootChain.NORMAL, is_ufs)
            set_state(device, GptInstance.SECONDARY, GptState.OK)


def _collect_luns(boot_dev_dir) -> LunList:
    luns = LunList()
    base = os.fspath(boot_dev_dir)
    for name in PTN_SWAP_LIST:
        # xbl on UFS is switched through the boot LUN, not through the GPT.
        if name.startswith(PTN_XBL):
            continue
        link = os.path.join(base, f"{name}bak")
        if not os.path.exists(link):
            continue
        try:
            real_path = os.readlink(link)
        except OSError as exc:
            debug.error("prepare_boot_update: readlink error. Skipping %s\n", exc.strerror)
            continue
        if len(real_path) < PATH_TRUNCATE_LOC + 1:
            debug.error("Unknown path.Skipping :%s:\n", real_path)
            continue
        try:
            luns.add(real_path[:PATH_TRUNCATE_LOC])
        except GptError as exc:
            debug.error("prepare_boot_update: %s\n", exc)
    return luns


def prepare_boot_update(
    stage,
    is_ufs: bool = False,
    boot_dev_dir=BOOT_DEV_DIR,
    block_size: Optional[int] = None,
) -> list:
    """Prepare every disk holding boot-critical partitions for ``stage``.

    Returns the block devices that were prepared. On UFS every LUN is
    tried even when an earlier one fails; a failure is raised at the end.
    """
    if not is_ufs:
        prepare_partitions(stage, MMC_BLK_DEV, False, block_size)
        return [MMC_BLK_DEV]

    debug.error("prepare_boot_update: Running on a UFS device\n")
    failed = []
    prepared = []
    for lun in _collect_luns(boot_dev_dir):
        debug.error("prepare_boot_update: Preparing %s for update stage %d\n", lun, int(stage))
        try:
            prepare_partitions(stage, lun, True, block_size)
        except GptError as exc:
            debug.error("prepare_boot_update: Failed to prepare %s.Continuing.. (%s)\n", lun, exc)
            failed.append(lun)
            continue
        prepared.append(lun)
    if failed:
        raise GptError(f"Failed to prepare {', '.join(failed)}")
    return prepared