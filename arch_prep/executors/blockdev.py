# arch_prep/executors/blockdev.py
import os
import re
import shlex
import shutil
import stat
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterable, List, NamedTuple, Optional, Set, Tuple

from arch_prep.utils.exceptions import DeviceNotReadyError, PrepError
from arch_prep.utils.executor import Executor
from arch_prep.utils.logger import RichAppLogger

DeviceNumber = Tuple[int, int]

# Tools the system implementation shells out to.
REQUIRED_TOOLS = (
    "lsblk", "findmnt", "umount", "swapoff", "wipefs", "dd", "sync", "parted",
    "partprobe", "mkfs.fat", "mkswap", "swapon", "mkfs.btrfs", "btrfs", "mount", "mkdir",
)

_SUBVOL_SUFFIX = re.compile(r"\[[^\]]*\]$")


class MountedEntry(NamedTuple):
    """A partition of the target disk that is currently in use."""
    device: str
    mountpoint: str

    @property
    def is_swap(self) -> bool:
        return self.mountpoint == "[SWAP]"


def parse_lsblk_pairs(output: str) -> List[Dict[str, str]]:
    """Parses `lsblk -P` output (KEY="value" pairs, one device per line)."""
    rows = []
    for line in output.splitlines():
        if not line.strip():
            continue
        row = {}
        for token in shlex.split(line):
            key, _, value = token.partition("=")
            row[key] = value
        rows.append(row)
    return rows


class BlockDeviceOps(ABC):
    """
    Everything the preparation stages need from the host: read-only queries
    about block devices and the state-changing wipe/partition/format/mount actions.
    """

    logger: RichAppLogger
    dry_run: bool = False

    # --- QUERIES ---

    @abstractmethod
    def list_disks(self) -> List[Dict[str, str]]:
        """Whole disks as dicts with NAME, SIZE, TYPE, MODEL and TRAN keys."""

    @abstractmethod
    def is_block_device(self, path: str) -> bool: ...

    @abstractmethod
    def resolve_path(self, path: str) -> str:
        """Canonical device node for a path (follows /dev/disk/by-id and similar links)."""

    @abstractmethod
    def device_number(self, path: str) -> DeviceNumber: ...

    @abstractmethod
    def whole_disks(self, number: DeviceNumber) -> Set[DeviceNumber]:
        """Resolves a device number to the whole disk(s) it lives on."""

    @abstractmethod
    def root_disks(self) -> Set[DeviceNumber]:
        """Whole disks backing the filesystem mounted at '/'."""

    @abstractmethod
    def mounted_partitions(self, disk: str) -> List[MountedEntry]: ...

    @abstractmethod
    def mem_total_kb(self) -> int: ...

    @abstractmethod
    def show_layout(self, disk: str) -> None: ...

    # --- ACTIONS ---

    @abstractmethod
    def unmount_recursive(self, mountpoint: str) -> None: ...

    @abstractmethod
    def swapoff(self, device: str) -> None: ...

    @abstractmethod
    def wipe_signatures(self, disk: str) -> None: ...

    @abstractmethod
    def zero_head(self, disk: str, size_mb: int) -> None: ...

    @abstractmethod
    def make_gpt_label(self, disk: str) -> None: ...

    @abstractmethod
    def make_partition(self, disk: str, fs_type: str, start: str, end: str) -> None: ...

    @abstractmethod
    def set_esp(self, disk: str, number: int) -> None: ...

    @abstractmethod
    def refresh_partitions(self, disk: str) -> None: ...

    @abstractmethod
    def wait_for_device(self, path: str, timeout: float, interval: float) -> None: ...

    @abstractmethod
    def format_fat32(self, partition: str) -> None: ...

    @abstractmethod
    def format_swap(self, partition: str) -> None: ...

    @abstractmethod
    def swapon(self, partition: str) -> None: ...

    @abstractmethod
    def format_btrfs(self, partition: str) -> None: ...

    @abstractmethod
    def create_subvolume(self, path: str) -> None: ...

    @abstractmethod
    def make_dirs(self, paths: Iterable[str]) -> None: ...

    @abstractmethod
    def mount(self, source: str, target: str, options: Optional[str] = None) -> None: ...

    @abstractmethod
    def unmount(self, target: str) -> None: ...


class SystemBlockDevice(BlockDeviceOps):
    """
    BlockDeviceOps backed by the real system tools (lsblk, parted, mkfs, btrfs, mount).
    Queries always run; actions are skipped when dry_run is set.
    """

    def __init__(self, executor: Executor, dry_run: bool = False,
                 sysfs_root: str = "/sys", meminfo_path: str = "/proc/meminfo"):
        self.executor = executor
        self.logger = executor.logger
        self.dry_run = dry_run
        self._sysfs_root = sysfs_root
        self._meminfo_path = meminfo_path
        self.logger.debug(f"Block device operations initialized (dry_run={dry_run}).")

    def _run(self, description: str, command: List[str], check: bool = True):
        return self.executor.run(description=description, command=command, dryrun=self.dry_run, check=check)

    # --- QUERIES ---

    def list_disks(self) -> List[Dict[str, str]]:
        _, stdout, _ = self.executor.execute_command(["lsblk", "-dn", "-P", "-o", "NAME,SIZE,TYPE,MODEL,TRAN"])
        return [
            row for row in parse_lsblk_pairs(stdout)
            if row.get("TYPE") == "disk" or row.get("NAME", "").startswith("nvme")
        ]

    def is_block_device(self, path: str) -> bool:
        try:
            return stat.S_ISBLK(os.stat(path).st_mode)
        except OSError:
            return False

    def resolve_path(self, path: str) -> str:
        return os.path.realpath(path)

    def device_number(self, path: str) -> DeviceNumber:
        rdev = os.stat(path).st_rdev
        return os.major(rdev), os.minor(rdev)

    def _sysfs_node(self, number: DeviceNumber) -> Path:
        return Path(self._sysfs_root, "dev", "block", f"{number[0]}:{number[1]}").resolve()

    @staticmethod
    def _read_dev(node: Path) -> DeviceNumber:
        major, _, minor = (node / "dev").read_text().strip().partition(":")
        return int(major), int(minor)

    def whole_disks(self, number: DeviceNumber) -> Set[DeviceNumber]:
        node = self._sysfs_node(number)
        if not node.exists():
            return {number}
        if (node / "partition").exists():
            node = node.parent

        slaves_dir = node / "slaves"
        slaves = sorted(slaves_dir.iterdir()) if slaves_dir.is_dir() else []
        if not slaves:
            return {self._read_dev(node)}

        # device-mapper / md: follow the stack down to the physical disks
        disks: Set[DeviceNumber] = set()
        for slave in slaves:
            disks |= self.whole_disks(self._read_dev(slave.resolve()))
        return disks

    def root_disks(self) -> Set[DeviceNumber]:
        _, stdout, _ = self.executor.execute_command(["findmnt", "-n", "-o", "SOURCE", "/"], check=False)
        source = _SUBVOL_SUFFIX.sub("", stdout.strip())
        if not source or not self.is_block_device(source):
            self.logger.debug(f"Root source '{source}' is not a block device; no disk backs '/'.")
            return set()
        disks = self.whole_disks(self.device_number(source))
        self.logger.debug(f"Root filesystem {source} lives on {sorted(disks)}")
        return disks

    def mounted_partitions(self, disk: str) -> List[MountedEntry]:
        _, stdout, _ = self.executor.execute_command(["lsblk", "-lnp", "-P", "-o", "NAME,MOUNTPOINT", disk])
        return [
            MountedEntry(row["NAME"], row["MOUNTPOINT"])
            for row in parse_lsblk_pairs(stdout)
            if row.get("MOUNTPOINT")
        ]

    def mem_total_kb(self) -> int:
        try:
            with open(self._meminfo_path, "r", encoding="utf-8") as f:
                for line in f:
                    if line.startswith("MemTotal:"):
                        return int(line.split()[1])
        except (OSError, ValueError, IndexError) as e:
            raise PrepError(f"Unable to read MemTotal from {self._meminfo_path}: {e}")
        raise PrepError(f"MemTotal not found in {self._meminfo_path}")

    def show_layout(self, disk: str) -> None:
        _, stdout, _ = self.executor.execute_command(["lsblk", "-f", disk], check=False)
        self.logger.show(stdout, title="Partition table created:")

    # --- ACTIONS ---

    def unmount_recursive(self, mountpoint: str) -> None:
        self._run(f"Force unmounting {mountpoint}", ["umount", "-R", "-l", mountpoint])

    def swapoff(self, device: str) -> None:
        self._run(f"Deactivating swap on {device}", ["swapoff", device])

    def wipe_signatures(self, disk: str) -> None:
        self._run(f"Wiping filesystem signatures on {disk}", ["wipefs", "-a", disk])

    def zero_head(self, disk: str, size_mb: int) -> None:
        self._run(f"Zeroing first {size_mb}MB of {disk}",
                  ["dd", "if=/dev/zero", f"of={disk}", "bs=1M", f"count={size_mb}", "status=progress"])
        self._run("Flushing write caches", ["sync"])

    def make_gpt_label(self, disk: str) -> None:
        self._run(f"Creating GPT partition table on {disk}", ["parted", "-s", disk, "mklabel", "gpt"])

    def make_partition(self, disk: str, fs_type: str, start: str, end: str) -> None:
        self._run(f"Creating {fs_type} partition on {disk} ({start} - {end})",
                  ["parted", "-s", disk, "mkpart", "primary", fs_type, start, end])

    def set_esp(self, disk: str, number: int) -> None:
        self._run(f"Flagging partition {number} on {disk} as ESP", ["parted", "-s", disk, "set", str(number), "esp", "on"])

    def refresh_partitions(self, disk: str) -> None:
        self._run(f"Updating kernel partition table for {disk}", ["partprobe", disk], check=False)
        if shutil.which("udevadm"):
            self._run("Waiting for udev to process events", ["udevadm", "settle", "--timeout=10"], check=False)

    def wait_for_device(self, path: str, timeout: float, interval: float) -> None:
        if self.dry_run:
            self.logger.info(f"DRY RUN: Not waiting for device node {path}")
            return

        deadline = time.monotonic() + timeout
        while not self.is_block_device(path):
            if time.monotonic() >= deadline:
                raise DeviceNotReadyError(path, timeout)
            time.sleep(interval)
        self.logger.debug(f"Device node {path} is ready.")

    def format_fat32(self, partition: str) -> None:
        self._run(f"Formatting EFI partition ({partition}) as FAT32", ["mkfs.fat", "-F32", partition])

    def format_swap(self, partition: str) -> None:
        self._run(f"Formatting swap partition ({partition})", ["mkswap", partition])

    def swapon(self, partition: str) -> None:
        self._run(f"Activating swap on {partition}", ["swapon", partition])

    def format_btrfs(self, partition: str) -> None:
        self._run(f"Formatting root partition ({partition}) as Btrfs", ["mkfs.btrfs", "-f", partition])

    def create_subvolume(self, path: str) -> None:
        self._run(f"Creating Btrfs subvolume {path}", ["btrfs", "subvolume", "create", path])

    def make_dirs(self, paths: Iterable[str]) -> None:
        paths = list(paths)
        self._run(f"Creating mount point directories ({len(paths)})", ["mkdir", "-p"] + paths)

    def mount(self, source: str, target: str, options: Optional[str] = None) -> None:
        command = ["mount"]
        if options:
            command.extend(["-o", options])
        command.extend([source, target])
        self._run(f"Mounting {source} to {target} (Options: {options or 'default'})", command)

    def unmount(self, target: str) -> None:
        self._run(f"Unmounting {target}", ["umount", target])
