# arch_prep/filesystem.py
from typing import List, Tuple

from pydantic import BaseModel, ConfigDict

from arch_prep.config.models import Layout, join_root
from arch_prep.executors.blockdev import BlockDeviceOps
from arch_prep.partitioner import PartitionTable
from arch_prep.utils.exceptions import ShellCommandError

BOOT_MOUNTPOINT = "/boot"


class PreparedDisk(BaseModel):
    """Final state: what is mounted where below the install root."""
    model_config = ConfigDict(frozen=True)

    table: PartitionTable
    mount_root: str
    mounts: Tuple[Tuple[str, str, str], ...]  # (source, target, options)


def skeleton_dirs(layout: Layout, base: str) -> List[str]:
    """Mount point directories for /boot and every secondary subvolume, below ``base``."""
    return [join_root(base, BOOT_MOUNTPOINT)] + [join_root(base, s.mountpoint) for s in layout.secondary_subvolumes]


def format_partitions(ops: BlockDeviceOps, table: PartitionTable) -> None:
    """FAT32 on the ESP, swap (activated) when present, Btrfs on root."""
    steps = [("EFI", ops.format_fat32, table.boot)]
    if table.swap:
        steps += [("swap", ops.format_swap, table.swap), ("swap", ops.swapon, table.swap)]
    steps.append(("root", ops.format_btrfs, table.root))

    for label, action, partition in steps:
        try:
            action(partition)
        except ShellCommandError:
            ops.logger.error(f"Failed to format {label} partition ({partition})")
            raise


def create_subvolumes(ops: BlockDeviceOps, table: PartitionTable, layout: Layout, mount_root: str) -> None:
    """
    Mounts the raw Btrfs volume, creates the subvolumes and the mount point
    skeleton inside '@', then unmounts it again.
    """
    ops.logger.info("Creating Btrfs subvolumes...")
    ops.mount(table.root, mount_root)
    for subvolume in layout.subvolumes:
        ops.create_subvolume(f"{mount_root.rstrip('/')}/{subvolume.name}")

    # '@' becomes '/', so the skeleton has to exist inside it
    ops.make_dirs(skeleton_dirs(layout, f"{mount_root.rstrip('/')}/{layout.root_subvolume.name}"))
    ops.unmount(mount_root)


def mount_subvolumes(ops: BlockDeviceOps, table: PartitionTable, layout: Layout,
                     mount_root: str) -> List[Tuple[str, str, str]]:
    """Mounts '@' on the install root, the ESP on /boot and each secondary subvolume at its path."""
    ops.logger.info("Mounting all filesystems...")
    mounts = []

    root = layout.root_subvolume
    mounts.append((table.root, mount_root, layout.mount_options(root)))
    mounts.append((table.boot, join_root(mount_root, BOOT_MOUNTPOINT), ""))
    for subvolume in layout.secondary_subvolumes:
        mounts.append((table.root, join_root(mount_root, subvolume.mountpoint), layout.mount_options(subvolume)))

    for source, target, options in mounts:
        ops.mount(source, target, options or None)
    return mounts


def create_filesystems(ops: BlockDeviceOps, table: PartitionTable, layout: Layout,
                       mount_root: str = "/mnt") -> PreparedDisk:
    """Formats, lays out the subvolumes and mounts the tree ready for pacstrap."""
    log = ops.logger
    log.section("Creating filesystems")

    format_partitions(ops, table)
    create_subvolumes(ops, table, layout, mount_root)
    mounts = mount_subvolumes(ops, table, layout, mount_root)

    log.info("[green]Disk preparation complete![/green]", extra={"markup": True})
    log.info("Created Btrfs subvolumes:")
    for subvolume in layout.subvolumes:
        log.info(f"- {subvolume.name} ({subvolume.mountpoint})")
    log.info("You can now proceed with manual system installation.")

    return PreparedDisk(table=table, mount_root=mount_root, mounts=tuple(mounts))
