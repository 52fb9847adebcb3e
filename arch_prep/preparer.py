# arch_prep/preparer.py
from arch_prep.config.models import TargetDisk
from arch_prep.executors.blockdev import BlockDeviceOps
from arch_prep.ui import Prompter
from arch_prep.utils.exceptions import OperationAborted, ShellCommandError

FALLBACK_WIPE_MB = 100


def prepare_disk(ops: BlockDeviceOps, prompter: Prompter, target: TargetDisk) -> None:
    """
    Erases the disk's signatures and writes a fresh GPT label.

    Declining the confirmation raises OperationAborted. A failing signature wipe
    falls back to zeroing the start of the disk; a failing label is fatal.
    """
    disk = target.path
    ops.logger.section(f"Preparing disk {disk}")

    if not prompter.confirm(f"WIPE ALL DATA on {disk} and create new partition table?"):
        raise OperationAborted(stage="CONFIRM_WIPE")

    ops.logger.info("Clearing disk...")
    try:
        ops.wipe_signatures(disk)
    except ShellCommandError as e:
        ops.logger.warning(f"Using fallback wipe method... ({e.command} exited with {e.exit_code})")
        ops.zero_head(disk, FALLBACK_WIPE_MB)

    try:
        ops.make_gpt_label(disk)
    except ShellCommandError:
        ops.logger.error("Failed to create partition table")
        raise

    ops.refresh_partitions(disk)
