# arch_prep/pipeline.py
from enum import Enum

from arch_prep.config.models import PrepConfig
from arch_prep.executors.blockdev import BlockDeviceOps
from arch_prep.filesystem import PreparedDisk, create_filesystems
from arch_prep.partitioner import partition_disk
from arch_prep.preparer import prepare_disk
from arch_prep.selector import select_disk
from arch_prep.ui import Prompter
from arch_prep.utils.exceptions import OperationAborted


class Stage(str, Enum):
    SELECT = "SELECT"
    CONFIRM_WIPE = "CONFIRM_WIPE"
    PARTITION = "PARTITION"
    CONFIRM_FS = "CONFIRM_FS"
    FORMAT_AND_MOUNT = "FORMAT_AND_MOUNT"
    DONE = "DONE"


def run_pipeline(ops: BlockDeviceOps, prompter: Prompter, config: PrepConfig) -> PreparedDisk:
    """
    Runs SELECT -> CONFIRM_WIPE -> PARTITION -> CONFIRM_FS -> FORMAT_AND_MOUNT.

    Each stage gets the values produced by the previous one; any exception
    stops the run before the next stage starts.
    """
    log = ops.logger
    layout = config.layout

    log.section("Disk selection")
    target = select_disk(ops, prompter)
    log.debug(f"Stage {Stage.SELECT.value} finished with {target!r}")

    # CONFIRM_WIPE happens inside prepare_disk, before anything is written.
    prepare_disk(ops, prompter, target)

    table = partition_disk(ops, target, layout,
                           settle_timeout=config.settle_timeout,
                           poll_interval=config.poll_interval)
    log.debug(f"Stage {Stage.PARTITION.value} finished with {table!r}")

    if not prompter.confirm("Continue with filesystem creation and subvolumes setup?"):
        raise OperationAborted(stage=Stage.CONFIRM_FS.value)

    prepared = create_filesystems(ops, table, layout, mount_root=config.mount_root)
    log.debug(f"Stage {Stage.DONE.value}: {len(prepared.mounts)} mounts below {prepared.mount_root}")
    return prepared
