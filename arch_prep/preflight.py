# arch_prep/preflight.py
import os
import shutil
from typing import Iterable, List

from arch_prep.executors.blockdev import REQUIRED_TOOLS
from arch_prep.utils.exceptions import PreflightError
from arch_prep.utils.logger import RichAppLogger

EFI_FIRMWARE_DIR = "/sys/firmware/efi"


def check_root(logger: RichAppLogger) -> None:
    """The wipe and mount steps need root privileges."""
    if os.geteuid() != 0:
        raise PreflightError("Application must run with root privileges.")
    logger.debug("Running with root privileges.")


def check_tools(logger: RichAppLogger, tools: Iterable[str] = REQUIRED_TOOLS) -> None:
    missing: List[str] = [tool for tool in tools if shutil.which(tool) is None]
    if missing:
        raise PreflightError(f"Required tools not found on PATH: {', '.join(missing)}")
    logger.debug("All required tools are available.")


def check_uefi(logger: RichAppLogger, firmware_dir: str = EFI_FIRMWARE_DIR) -> bool:
    """Only warns: the disk can be prepared from a BIOS boot for use on a UEFI machine."""
    if os.path.exists(firmware_dir):
        logger.info("System is booted in UEFI mode.")
        return True
    logger.warning("System is NOT booted in UEFI mode (likely BIOS/Legacy mode).")
    return False


def run_preflight(logger: RichAppLogger, dry_run: bool = False) -> None:
    if not dry_run:
        check_root(logger)
    check_tools(logger)
    check_uefi(logger)
