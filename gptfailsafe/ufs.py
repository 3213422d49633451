"""Locating the disks behind partitions and switching the UFS boot LUN."""

from __future__ import annotations

import os
from typing import Callable, Iterable, Optional

from . import debug
from .layout import BOOT_DEV_DIR, BootChain
from .table import GptError

MMC_BLK_DEV = "/dev/block/mmcblk0"
XBL_BY_NAME_DIR = "/dev/block/platform/soc/1d84000.ufshc/by-name"
SYS_ROOT = "/sys"

# From /dev/block/sdaXXX keep /dev/block/sda: boot-critical LUNs are sda..sdz.
PATH_TRUNCATE_LOC = len("/dev/block/sda")
# From /dev/block/sda keep sda.
LUN_NAME_START_LOC = len("/dev/block/")
BOOT_LUN_A_ID = 1
BOOT_LUN_B_ID = 2

_UFS_SUFFIX = ".ufshc"


def _present(path: str) -> bool:
    # A by-name entry counts as present when the link itself exists.
    return os.path.lexists(path)


def _readlink(path: str) -> str:
    try:
        return os.readlink(path)
    except OSError as exc:
        raise GptError(f"failed to resolve link for {path}({exc.strerror})") from exc


def is_ufs_device(bootdevice: Optional[str] = None) -> bool:
    """Whether the boot device name (the ``ro.boot.bootdevice`` value) is a UFS host."""
    value = "N/A" if bootdevice is None else bootdevice
    return len(value) > len(_UFS_SUFFIX) and value.endswith(_UFS_SUFFIX)


def scsi_node_from_bootdevice(bootdev_path, sys_root=SYS_ROOT) -> str:
    """Path of the SCSI generic node (``/dev/sgN``) for the LUN behind ``bootdev_path``."""
    real_path = _readlink(os.fspath(bootdev_path))
    if len(real_path) < PATH_TRUNCATE_LOC + 1:
        raise GptError(f"Unrecognized path :{real_path}:")
    lun = real_path[LUN_NAME_START_LOC:PATH_TRUNCATE_LOC]
    sg_dir = os.path.join(os.fspath(sys_root), "block", lun, "device", "scsi_generic")
    try:
        names = sorted(os.listdir(sg_dir))
    except OSError as exc:
        raise GptError(f"Failed to open {sg_dir}({exc.strerror})") from exc
    for name in names:
        if name.startswith("."):
            continue
        if name.startswith("sg"):
            node = f"/dev/{name}"
            debug.error("scsi_node_from_bootdevice:scsi generic node is :%s:\n", node)
            return node
    raise GptError("Unable to locate scsi generic node")


def set_xbl_boot_partition(
    chain,
    set_boot_lun: Callable[[str, int], None],
    by_name_dir=XBL_BY_NAME_DIR,
    sys_root=SYS_ROOT,
) -> None:
    """Make the LUN holding the primary or backup xbl the boot LUN.

    ``set_boot_lun(sg_node, lun_id)`` performs the UFS attribute write.
    """
    base = os.fspath(by_name_dir)
    xbl_primary = os.path.join(base, "xbl")
    xbl_backup = os.path.join(base, "xblbak")
    xbl_ab_primary = os.path.join(base, "xbl_a")
    xbl_ab_secondary = os.path.join(base, "xbl_b")

    try:
        chain = BootChain(chain)
    except ValueError as exc:
        raise GptError("Invalid boot chain id") from exc

    if chain == BootChain.BACKUP:
        boot_lun_id = BOOT_LUN_B_ID
        candidates = (xbl_backup, xbl_ab_secondary)
        which = "secondary"
    else:
        boot_lun_id = BOOT_LUN_A_ID
        candidates = (xbl_primary, xbl_ab_primary)
        which = "primary"
    boot_dev = next((path for path in candidates if _present(path)), None)
    if boot_dev is None:
        raise GptError(f"Failed to locate {which} xbl")

    # Either xbl and xblbak or xbl_a and xbl_b must exist together.
    plain_pair = _present(xbl_primary) and _present(xbl_backup)
    ab_pair = _present(xbl_ab_primary) and _present(xbl_ab_secondary)
    if not plain_pair and not ab_pair:
        raise GptError("primary/secondary XBL prt not found")

    debug.error("set_xbl_boot_partition: setting %s lun as boot lun\n", boot_dev)
    sg_node = scsi_node_from_bootdevice(boot_dev, sys_root)
    try:
        set_boot_lun(sg_node, boot_lun_id)
    except OSError as exc:
        raise GptError(f"Failed to set {boot_dev} as boot partition: {exc}") from exc


def dev_path_from_partition_name(partname: str, is_ufs: bool, boot_dev_dir=BOOT_DEV_DIR) -> str:
    """Block device holding the GPT on which ``partname`` lives."""
    if not partname:
        raise GptError("Invalid argument")
    if not is_ufs:
        return MMC_BLK_DEV
    path = os.path.join(os.fspath(boot_dev_dir), partname)
    if not _present(path):
        raise GptError(f"partition {partname} not found")
    return _readlink(path)[:PATH_TRUNCATE_LOC]


def partition_map(partitions: Iterable[str], is_ufs: bool, boot_dev_dir=BOOT_DEV_DIR) -> dict:
    """Group partition names by the block device that holds them.

    Partitions that cannot be found are left out.
    """
    names = list(partitions)
    if not names:
        raise GptError("Invalid ptn list")
    result: dict[str, list[str]] = {}
    for name in names:
        try:
            device = dev_path_from_partition_name(name, is_ufs, boot_dev_dir)
        except GptError:
            continue
        result.setdefault(device, []).append(name)
    return result