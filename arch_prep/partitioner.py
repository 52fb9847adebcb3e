# arch_prep/partitioner.py
from typing import List, Optional

from pydantic import BaseModel, ConfigDict

from arch_prep.config.models import Layout, TargetDisk
from arch_prep.executors.blockdev import BlockDeviceOps
from arch_prep.utils.exceptions import ShellCommandError

# The first partition starts 1MiB in for alignment.
FIRST_PARTITION_START = "1MiB"


class PartitionSpec(BaseModel):
    """One planned parted `mkpart` call."""
    model_config = ConfigDict(frozen=True)

    number: int
    role: str  # boot, swap or root
    fs_type: str  # parted filesystem type hint
    start: str
    end: str
    size_mb: Optional[int] = None


class PartitionTable(BaseModel):
    """Partition nodes created on the target disk."""
    model_config = ConfigDict(frozen=True)

    disk: TargetDisk
    boot: str
    root: str
    swap: Optional[str] = None
    swap_size_mb: Optional[int] = None


def ram_size_mb(ops: BlockDeviceOps) -> int:
    """Total RAM in MB: MemTotal (kB) // 1024."""
    return ops.mem_total_kb() // 1024


def plan_partitions(layout: Layout, ram_mb: Optional[int] = None) -> List[PartitionSpec]:
    """
    Boot, then swap (sized to RAM, swap variant only), then root filling the disk.
    Ordinals follow creation order.
    """
    boot_mb = layout.boot_size_mb
    plan = [PartitionSpec(number=1, role="boot", fs_type="fat32",
                          start=FIRST_PARTITION_START, end=f"{boot_mb}MiB", size_mb=boot_mb)]
    root_start = boot_mb

    if layout.swap:
        if ram_mb is None or ram_mb <= 0:
            raise ValueError("A swap layout needs the RAM size in MB")
        plan.append(PartitionSpec(number=2, role="swap", fs_type="linux-swap",
                                  start=f"{boot_mb}MiB", end=f"{boot_mb + ram_mb}MiB", size_mb=ram_mb))
        root_start = boot_mb + ram_mb

    plan.append(PartitionSpec(number=len(plan) + 1, role="root", fs_type="btrfs",
                              start=f"{root_start}MiB", end="100%"))
    return plan


def partition_disk(ops: BlockDeviceOps, target: TargetDisk, layout: Layout,
                   settle_timeout: float = 10.0, poll_interval: float = 0.25) -> PartitionTable:
    """
    Creates the planned partitions, flags partition 1 as ESP, then waits
    until the kernel exposes every partition node.
    """
    log = ops.logger
    disk = target.path
    log.section(f"Creating partitions on {disk}")

    ram_mb = ram_size_mb(ops) if layout.swap else None
    plan = plan_partitions(layout, ram_mb)

    for spec in plan:
        size = f"{spec.size_mb}MB" if spec.size_mb else "remaining space"
        log.info(f"Creating {spec.role} partition ({size})...")
        try:
            ops.make_partition(disk, spec.fs_type, spec.start, spec.end)
            if spec.role == "boot":
                ops.set_esp(disk, spec.number)
        except ShellCommandError:
            log.error(f"{spec.role.capitalize()} partition failed")
            raise

    ops.refresh_partitions(disk)

    nodes = {spec.role: target.partition_path(spec.number) for spec in plan}
    for node in nodes.values():
        ops.wait_for_device(node, settle_timeout, poll_interval)

    ops.show_layout(disk)

    return PartitionTable(
        disk=target,
        boot=nodes["boot"],
        root=nodes["root"],
        swap=nodes.get("swap"),
        swap_size_mb=ram_mb,
    )
