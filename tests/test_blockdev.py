import os
from unittest.mock import MagicMock, patch

import pytest

from arch_prep.executors.blockdev import MountedEntry, SystemBlockDevice, parse_lsblk_pairs
from arch_prep.utils.exceptions import DeviceNotReadyError, PrepError
from arch_prep.utils.executor import Executor

# ======= Execute with: pytest tests/test_blockdev.py ========


@pytest.fixture
def mock_executor(mock_rich_logger):
    executor = MagicMock(spec=Executor)
    executor.logger = mock_rich_logger
    executor.run.return_value = (0, "", "")
    executor.execute_command.return_value = (0, "", "")
    return executor


@pytest.fixture
def system(mock_executor):
    return SystemBlockDevice(mock_executor)


def make_sysfs(root, name, dev, parent=None, slaves=()):
    """Builds a minimal /sys/devices tree node plus its /sys/dev/block link."""
    base = root / "devices" / (parent or "") / name
    base.mkdir(parents=True)
    (base / "dev").write_text(f"{dev}\n")
    if parent:
        (base / "partition").write_text("1\n")
    if slaves:
        (base / "slaves").mkdir()
        for slave in slaves:
            (base / "slaves" / slave.name).symlink_to(slave)
    link_dir = root / "dev" / "block"
    link_dir.mkdir(parents=True, exist_ok=True)
    (link_dir / dev).symlink_to(base)
    return base


# --- parsing ---

def test_parse_lsblk_pairs():
    output = 'NAME="sda" SIZE="931.5G" TYPE="disk" MODEL="Samsung SSD 860" TRAN="sata"\n\nNAME="loop0" SIZE="1G" TYPE="loop" MODEL="" TRAN=""\n'
    rows = parse_lsblk_pairs(output)
    assert rows[0] == {"NAME": "sda", "SIZE": "931.5G", "TYPE": "disk", "MODEL": "Samsung SSD 860", "TRAN": "sata"}
    assert rows[1]["MODEL"] == ""
    assert len(rows) == 2


def test_list_disks_filters_non_disks(system, mock_executor):
    mock_executor.execute_command.return_value = (0, (
        'NAME="sda" SIZE="100G" TYPE="disk" MODEL="Disk" TRAN="sata"\n'
        'NAME="loop0" SIZE="700M" TYPE="loop" MODEL="" TRAN=""\n'
        'NAME="sr0" SIZE="1G" TYPE="rom" MODEL="DVD" TRAN="sata"\n'
        'NAME="nvme0n1" SIZE="500G" TYPE="disk" MODEL="NVMe" TRAN="nvme"\n'
    ), "")

    assert [d["NAME"] for d in system.list_disks()] == ["sda", "nvme0n1"]
    assert mock_executor.execute_command.call_args.args[0][:2] == ["lsblk", "-dn"]


def test_mounted_partitions(system, mock_executor):
    mock_executor.execute_command.return_value = (0, (
        'NAME="/dev/sdb" MOUNTPOINT=""\n'
        'NAME="/dev/sdb1" MOUNTPOINT="/run/media/usb stick"\n'
        'NAME="/dev/sdb2" MOUNTPOINT="[SWAP]"\n'
        'NAME="/dev/sdb3" MOUNTPOINT=""\n'
    ), "")

    mounted = system.mounted_partitions("/dev/sdb")

    assert mounted == [MountedEntry("/dev/sdb1", "/run/media/usb stick"), MountedEntry("/dev/sdb2", "[SWAP]")]
    assert mounted[1].is_swap
    assert mock_executor.execute_command.call_args.args[0][-1] == "/dev/sdb"


# --- root disk resolution ---

def test_whole_disks_of_partition(tmp_path, mock_executor):
    sda = make_sysfs(tmp_path, "sda", "8:0")
    make_sysfs(tmp_path, "sda2", "8:2", parent="sda")
    ops = SystemBlockDevice(mock_executor, sysfs_root=str(tmp_path))

    assert ops.whole_disks((8, 2)) == {(8, 0)}
    assert ops.whole_disks((8, 0)) == {(8, 0)}
    assert sda.exists()


def test_whole_disks_follows_device_mapper_slaves(tmp_path, mock_executor):
    make_sysfs(tmp_path, "nvme0n1", "259:0")
    part = make_sysfs(tmp_path, "nvme0n1p2", "259:2", parent="nvme0n1")
    make_sysfs(tmp_path, "dm-0", "254:0", slaves=[part])
    ops = SystemBlockDevice(mock_executor, sysfs_root=str(tmp_path))

    assert ops.whole_disks((254, 0)) == {(259, 0)}


def test_whole_disks_unknown_device(tmp_path, mock_executor):
    ops = SystemBlockDevice(mock_executor, sysfs_root=str(tmp_path))
    assert ops.whole_disks((8, 48)) == {(8, 48)}


def test_root_disks_strips_btrfs_subvolume(system, mock_executor):
    mock_executor.execute_command.return_value = (0, "/dev/sda2[/@]\n", "")

    with patch.object(SystemBlockDevice, "is_block_device", return_value=True) as is_block, \
            patch.object(SystemBlockDevice, "device_number", return_value=(8, 2)), \
            patch.object(SystemBlockDevice, "whole_disks", return_value={(8, 0)}):
        assert system.root_disks() == {(8, 0)}

    is_block.assert_called_once_with("/dev/sda2")


def test_root_disks_live_iso(system, mock_executor):
    mock_executor.execute_command.return_value = (0, "airootfs\n", "")
    assert system.root_disks() == set()


def test_is_block_device(system, tmp_path):
    regular = tmp_path / "file"
    regular.write_text("")
    assert system.is_block_device(str(regular)) is False
    assert system.is_block_device(str(tmp_path / "missing")) is False


# --- meminfo ---

def test_resolve_path_follows_by_id_links(system, tmp_path):
    node = tmp_path / "sdb"
    node.touch()
    by_id = tmp_path / "by-id"
    by_id.mkdir()
    (by_id / "ata-Samsung_SSD_860_S3Z").symlink_to(node)

    assert system.resolve_path(str(by_id / "ata-Samsung_SSD_860_S3Z")) == os.path.realpath(node)


def test_mem_total_kb(tmp_path, mock_executor):
    meminfo = tmp_path / "meminfo"
    meminfo.write_text("MemTotal:        8388608 kB\nMemFree:         1024 kB\n")
    assert SystemBlockDevice(mock_executor, meminfo_path=str(meminfo)).mem_total_kb() == 8388608


def test_mem_total_kb_missing(tmp_path, mock_executor):
    meminfo = tmp_path / "meminfo"
    meminfo.write_text("MemFree:         1024 kB\n")
    with pytest.raises(PrepError):
        SystemBlockDevice(mock_executor, meminfo_path=str(meminfo)).mem_total_kb()
    with pytest.raises(PrepError):
        SystemBlockDevice(mock_executor, meminfo_path=str(tmp_path / "nope")).mem_total_kb()


# --- actions ---

def _commands(mock_executor):
    return [c.kwargs["command"] for c in mock_executor.run.call_args_list]


def test_partition_commands(system, mock_executor):
    system.make_gpt_label("/dev/sdb")
    system.make_partition("/dev/sdb", "fat32", "1MiB", "512MiB")
    system.set_esp("/dev/sdb", 1)

    assert _commands(mock_executor) == [
        ["parted", "-s", "/dev/sdb", "mklabel", "gpt"],
        ["parted", "-s", "/dev/sdb", "mkpart", "primary", "fat32", "1MiB", "512MiB"],
        ["parted", "-s", "/dev/sdb", "set", "1", "esp", "on"],
    ]


def test_wipe_commands(system, mock_executor):
    system.wipe_signatures("/dev/sdb")
    system.zero_head("/dev/sdb", 100)

    assert _commands(mock_executor) == [
        ["wipefs", "-a", "/dev/sdb"],
        ["dd", "if=/dev/zero", "of=/dev/sdb", "bs=1M", "count=100", "status=progress"],
        ["sync"],
    ]


def test_format_and_mount_commands(system, mock_executor):
    system.format_fat32("/dev/sdb1")
    system.format_swap("/dev/sdb2")
    system.swapon("/dev/sdb2")
    system.format_btrfs("/dev/sdb3")
    system.create_subvolume("/mnt/@")
    system.make_dirs(["/mnt/@/boot", "/mnt/@/home"])
    system.mount("/dev/sdb3", "/mnt", "compress=zstd,subvol=@")
    system.mount("/dev/sdb1", "/mnt/boot")
    system.unmount("/mnt")

    assert _commands(mock_executor) == [
        ["mkfs.fat", "-F32", "/dev/sdb1"],
        ["mkswap", "/dev/sdb2"],
        ["swapon", "/dev/sdb2"],
        ["mkfs.btrfs", "-f", "/dev/sdb3"],
        ["btrfs", "subvolume", "create", "/mnt/@"],
        ["mkdir", "-p", "/mnt/@/boot", "/mnt/@/home"],
        ["mount", "-o", "compress=zstd,subvol=@", "/dev/sdb3", "/mnt"],
        ["mount", "/dev/sdb1", "/mnt/boot"],
        ["umount", "/mnt"],
    ]


def test_unmount_commands(system, mock_executor):
    system.unmount_recursive("/media/usb")
    system.swapoff("/dev/sdb2")

    assert _commands(mock_executor) == [
        ["umount", "-R", "-l", "/media/usb"],
        ["swapoff", "/dev/sdb2"],
    ]


def test_actions_forward_dry_run(mock_executor):
    ops = SystemBlockDevice(mock_executor, dry_run=True)
    ops.format_btrfs("/dev/sdb3")
    assert mock_executor.run.call_args.kwargs["dryrun"] is True


@patch("arch_prep.executors.blockdev.shutil.which", return_value=None)
def test_refresh_partitions_without_udevadm(mock_which, system, mock_executor):
    system.refresh_partitions("/dev/sdb")
    assert _commands(mock_executor) == [["partprobe", "/dev/sdb"]]
    assert mock_executor.run.call_args.kwargs["check"] is False


# --- readiness polling ---

@patch("arch_prep.executors.blockdev.time.sleep")
def test_wait_for_device_polls_until_ready(mock_sleep, system):
    with patch.object(SystemBlockDevice, "is_block_device", side_effect=[False, False, True]):
        system.wait_for_device("/dev/sdb1", timeout=5.0, interval=0.1)
    assert mock_sleep.call_count == 2


@patch("arch_prep.executors.blockdev.time.sleep")
@patch("arch_prep.executors.blockdev.time.monotonic", side_effect=[0.0, 1.0, 2.5])
def test_wait_for_device_times_out(mock_monotonic, mock_sleep, system):
    with patch.object(SystemBlockDevice, "is_block_device", return_value=False):
        with pytest.raises(DeviceNotReadyError) as excinfo:
            system.wait_for_device("/dev/sdb1", timeout=2.0, interval=0.5)
    assert excinfo.value.path == "/dev/sdb1"
    assert mock_sleep.call_count == 1


def test_wait_for_device_dry_run(mock_executor):
    ops = SystemBlockDevice(mock_executor, dry_run=True)
    with patch.object(SystemBlockDevice, "is_block_device") as is_block:
        ops.wait_for_device("/dev/sdb1", timeout=1.0, interval=0.1)
    is_block.assert_not_called()


def test_device_number_of_regular_file_stat(system, tmp_path):
    # st_rdev of a regular file is 0 -> (0, 0)
    path = tmp_path / "f"
    path.write_text("")
    assert system.device_number(str(path)) == (os.major(0), os.minor(0))
