# arch_prep/selector.py
from typing import Optional

from arch_prep.config.models import TargetDisk
from arch_prep.executors.blockdev import BlockDeviceOps
from arch_prep.ui import Prompter, disks_table
from arch_prep.utils.exceptions import OperationAborted, ShellCommandError


def normalize_device_path(raw: str) -> str:
    """'sda' -> '/dev/sda'; absolute /dev paths are kept as typed."""
    name = raw.strip()
    if name.startswith("/dev/"):
        return name
    return f"/dev/{name.lstrip('/')}"


def check_disk_usage(ops: BlockDeviceOps, prompter: Prompter, disk: str) -> bool:
    """
    Validates that the disk may be written to. Returns False when the operator
    has to pick again; raises OperationAborted when the operator refuses to
    unmount the disk's partitions.
    """
    log = ops.logger
    number = ops.device_number(disk)

    if ops.whole_disks(number) != {number}:
        log.error(f"{disk} is a partition; select the whole disk instead.")
        return False

    if number in ops.root_disks():
        log.error(f"Cannot modify {disk} - it's currently used as root filesystem!")
        log.info("Please select another disk or boot from different media")
        return False

    mounted = ops.mounted_partitions(disk)
    if not mounted:
        return True

    log.error(f"Disk {disk} has mounted partitions:")
    log.show("\n".join(f"{entry.device} {entry.mountpoint}" for entry in mounted))

    if not prompter.confirm(f"Attempt to unmount all partitions on {disk}?"):
        raise OperationAborted(stage="SELECT")

    log.info("Unmounting partitions...")
    for entry in mounted:
        try:
            if entry.is_swap:
                ops.swapoff(entry.device)
            else:
                ops.unmount_recursive(entry.mountpoint)
        except ShellCommandError as e:
            # Nested mounts are already gone after the parent's umount -R; the re-check decides.
            log.warning(f"Could not release {entry.device} ({entry.mountpoint}): exit code {e.exit_code}")

    if ops.dry_run:
        log.info(f"DRY RUN: Skipping mount re-check on {disk}")
        return True

    still_mounted = ops.mounted_partitions(disk)
    if still_mounted:
        log.error(f"Disk {disk} still has mounted partitions: "
                  f"{', '.join(entry.device for entry in still_mounted)}")
        return False
    return True


def select_disk(ops: BlockDeviceOps, prompter: Prompter) -> TargetDisk:
    """Lists the disks and asks until the operator names one that is safe to wipe."""
    ops.logger.table(disks_table(ops.list_disks()))

    selected: Optional[TargetDisk] = None
    while selected is None:
        disk = normalize_device_path(prompter.ask("Enter disk name for installation (e.g., sda, nvme0n1)"))

        if not ops.is_block_device(disk):
            ops.logger.error(f"Disk {disk} doesn't exist or is not a block device!")
            continue

        disk = ops.resolve_path(disk)

        if check_disk_usage(ops, prompter, disk):
            selected = TargetDisk(path=disk, device_number=ops.device_number(disk))

    ops.logger.info(f"Selected disk: {selected.path}")
    return selected
