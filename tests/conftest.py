from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple
from unittest.mock import MagicMock

import pytest

from arch_prep.executors.blockdev import BlockDeviceOps, MountedEntry
from arch_prep.utils.exceptions import DeviceNotReadyError, ShellCommandError
from arch_prep.utils.logger import RichAppLogger

# Read-only queries; everything else FakeBlockDevice records is a state change.
QUERIES = {"list_disks", "is_block_device", "resolve_path", "device_number", "whole_disks", "root_disks",
           "mounted_partitions", "mem_total_kb", "show_layout"}


class FakeBlockDevice(BlockDeviceOps):
    """
    In-memory BlockDeviceOps. Records every action in ``calls`` and raises
    ShellCommandError for action names listed in ``fail_on`` (or matched by ``fail_if``).
    """

    def __init__(self, logger, disks: Optional[Dict[str, Tuple[int, int]]] = None,
                 partitions: Optional[Dict[str, Tuple[int, int]]] = None,
                 root: Optional[Set[Tuple[int, int]]] = None,
                 mounted: Optional[Dict[str, List[MountedEntry]]] = None,
                 mem_kb: int = 8192 * 1024,
                 fail_on: Iterable[str] = (),
                 fail_if: Optional[Callable[[tuple], bool]] = None,
                 sticky_mounts: bool = False,
                 aliases: Optional[Dict[str, str]] = None,
                 dry_run: bool = False):
        self.logger = logger
        self.dry_run = dry_run
        self.aliases = aliases or {}
        self.disks = disks if disks is not None else {"/dev/sda": (8, 0), "/dev/sdb": (8, 16), "/dev/nvme0n1": (259, 0)}
        self.partitions = partitions if partitions is not None else {"/dev/sda1": (8, 1), "/dev/sda2": (8, 2)}
        self.root = root if root is not None else {(8, 0)}
        self.mounted = {disk: list(entries) for disk, entries in (mounted or {}).items()}
        self.mem_kb = mem_kb
        self.fail_on = set(fail_on)
        self.fail_if = fail_if
        self.sticky_mounts = sticky_mounts
        self.calls: List[tuple] = []
        self.active_mounts: List[Tuple[str, str, Optional[str]]] = []

    def _record(self, name: str, *args):
        call = (name,) + args
        self.calls.append(call)
        if name in self.fail_on or (self.fail_if and self.fail_if(call)):
            raise ShellCommandError(command=" ".join([name] + [str(a) for a in args]), exit_code=1)

    def actions(self, *names: str) -> List[tuple]:
        """Recorded calls, optionally filtered by name."""
        return [c for c in self.calls if not names or c[0] in names]

    # --- QUERIES ---

    def list_disks(self):
        return [{"NAME": path.rsplit("/", 1)[-1], "SIZE": "100G", "TYPE": "disk", "MODEL": "Fake Disk", "TRAN": "sata"}
                for path in self.disks]

    def is_block_device(self, path):
        path = self.resolve_path(path)
        return path in self.disks or path in self.partitions

    def resolve_path(self, path):
        return self.aliases.get(path, path)

    def device_number(self, path):
        return self.disks.get(path) or self.partitions[path]

    def whole_disks(self, number):
        for path, part_number in self.partitions.items():
            if part_number == number:
                base = path.rstrip("0123456789")
                base = base[:-1] if base.endswith("p") and base[:-1][-1].isdigit() else base
                return {self.disks.get(base, number)}
        return {number}

    def root_disks(self):
        return set(self.root)

    def mounted_partitions(self, disk):
        return list(self.mounted.get(disk, []))

    def mem_total_kb(self):
        return self.mem_kb

    def show_layout(self, disk):
        self.calls.append(("show_layout", disk))

    # --- ACTIONS ---

    def _forget_mounts(self, predicate):
        if self.sticky_mounts:
            return
        for disk, entries in self.mounted.items():
            self.mounted[disk] = [e for e in entries if not predicate(e)]

    def unmount_recursive(self, mountpoint):
        self._record("unmount_recursive", mountpoint)
        self._forget_mounts(lambda e: e.mountpoint == mountpoint)

    def swapoff(self, device):
        self._record("swapoff", device)
        self._forget_mounts(lambda e: e.device == device and e.is_swap)

    def wipe_signatures(self, disk):
        self._record("wipe_signatures", disk)

    def zero_head(self, disk, size_mb):
        self._record("zero_head", disk, size_mb)

    def make_gpt_label(self, disk):
        self._record("make_gpt_label", disk)

    def make_partition(self, disk, fs_type, start, end):
        self._record("make_partition", disk, fs_type, start, end)

    def set_esp(self, disk, number):
        self._record("set_esp", disk, number)

    def refresh_partitions(self, disk):
        self._record("refresh_partitions", disk)

    def wait_for_device(self, path, timeout, interval):
        self.calls.append(("wait_for_device", path))
        if "wait_for_device" in self.fail_on:
            raise DeviceNotReadyError(path, timeout)

    def format_fat32(self, partition):
        self._record("format_fat32", partition)

    def format_swap(self, partition):
        self._record("format_swap", partition)

    def swapon(self, partition):
        self._record("swapon", partition)

    def format_btrfs(self, partition):
        self._record("format_btrfs", partition)

    def create_subvolume(self, path):
        self._record("create_subvolume", path)

    def make_dirs(self, paths):
        self._record("make_dirs", tuple(paths))

    def mount(self, source, target, options=None):
        self._record("mount", source, target, options)
        self.active_mounts.append((source, target, options))

    def unmount(self, target):
        self._record("unmount", target)
        self.active_mounts = [m for m in self.active_mounts if m[1] != target]


class ScriptedPrompter:
    """Answers prompts from queues and remembers what was asked."""

    def __init__(self, answers: Iterable[str] = (), confirms: Iterable[bool] = ()):
        self.answers = list(answers)
        self.confirms = list(confirms)
        self.asked: List[str] = []
        self.confirmed: List[str] = []

    def ask(self, message):
        self.asked.append(message)
        if not self.answers:
            raise AssertionError(f"Unexpected prompt: {message}")
        return self.answers.pop(0)

    def confirm(self, message):
        self.confirmed.append(message)
        if not self.confirms:
            raise AssertionError(f"Unexpected confirmation: {message}")
        return self.confirms.pop(0)


@pytest.fixture
def mock_rich_logger():
    """Provides a fully-mocked RichAppLogger instance for dependency injection."""
    mock_logger = MagicMock(spec=RichAppLogger)

    mock_context_manager = MagicMock()
    mock_context_manager.__enter__.return_value = None
    mock_context_manager.__exit__.return_value = None
    mock_logger.execution_step.return_value = mock_context_manager

    return mock_logger


@pytest.fixture
def fake_ops(mock_rich_logger):
    return FakeBlockDevice(mock_rich_logger)


def state_changes(ops: FakeBlockDevice) -> List[tuple]:
    return [c for c in ops.calls if c[0] not in QUERIES and c[0] != "wait_for_device"]
