# arch_prep/config/models.py

from enum import Enum
from pathlib import Path
from typing import Optional, Tuple

import tomlkit
import typer
from pydantic import BaseModel, ConfigDict, Field, ValidationError, computed_field, field_validator, model_validator

from arch_prep.utils.exceptions import ConfigError


class Variant(str, Enum):
    """Partition layout variant."""
    swap = "swap"
    noswap = "noswap"


# --- 1. Layout Models ---

class Subvolume(BaseModel):
    """A Btrfs subvolume and the path it is mounted at inside the install root."""
    model_config = ConfigDict(frozen=True)

    name: str
    mountpoint: str

    @field_validator("name")
    @classmethod
    def _name_has_at_prefix(cls, value: str) -> str:
        if not value.startswith("@") or "/" in value:
            raise ValueError(f"Subvolume name must start with '@' and contain no '/': {value!r}")
        return value

    @field_validator("mountpoint")
    @classmethod
    def _mountpoint_is_absolute(cls, value: str) -> str:
        if not value.startswith("/"):
            raise ValueError(f"Subvolume mount point must be absolute: {value!r}")
        return value


class Layout(BaseModel):
    """The fixed partition and subvolume plan of one variant."""
    model_config = ConfigDict(frozen=True)

    variant: Variant
    boot_size_mb: int = Field(gt=1)
    swap: bool
    subvolumes: Tuple[Subvolume, ...]
    compression: str = "zstd"

    @model_validator(mode="after")
    def _check_subvolumes(self) -> "Layout":
        if not self.subvolumes or self.subvolumes[0] != Subvolume(name="@", mountpoint="/"):
            raise ValueError("The first subvolume must be '@' mounted at '/'")
        names = [s.name for s in self.subvolumes]
        mountpoints = [s.mountpoint for s in self.subvolumes]
        if len(set(names)) != len(names) or len(set(mountpoints)) != len(mountpoints):
            raise ValueError("Subvolume names and mount points must be unique")
        return self

    @property
    def root_subvolume(self) -> Subvolume:
        return self.subvolumes[0]

    @property
    def secondary_subvolumes(self) -> Tuple[Subvolume, ...]:
        return self.subvolumes[1:]

    def mount_options(self, subvolume: Subvolume) -> str:
        return f"compress={self.compression},subvol={subvolume.name}"


_BASE_SUBVOLUMES = (
    Subvolume(name="@", mountpoint="/"),
    Subvolume(name="@home", mountpoint="/home"),
    Subvolume(name="@snapshots", mountpoint="/.snapshots"),
)

LAYOUTS = {
    Variant.swap: Layout(
        variant=Variant.swap,
        boot_size_mb=512,
        swap=True,
        subvolumes=_BASE_SUBVOLUMES + (
            Subvolume(name="@log", mountpoint="/var/log"),
            Subvolume(name="@pkg", mountpoint="/var/cache/pacman/pkg"),
        ),
    ),
    Variant.noswap: Layout(
        variant=Variant.noswap,
        boot_size_mb=2048,
        swap=False,
        subvolumes=_BASE_SUBVOLUMES,
    ),
}


# --- 2. Top-Level Model ---

class PrepConfig(BaseModel):
    """Run configuration, optionally loaded from a TOML file and overridden by CLI options."""
    model_config = ConfigDict(extra="forbid")

    variant: Variant = Variant.swap
    mount_root: str = "/mnt"
    settle_timeout: float = Field(10.0, gt=0, description="Seconds to wait for partition device nodes.")
    poll_interval: float = Field(0.25, gt=0)
    log_directory: str = "logs"
    log_file_name: str = "arch-prep.log"
    dry_run: bool = False

    @field_validator("mount_root")
    @classmethod
    def _mount_root_is_absolute(cls, value: str) -> str:
        if not value.startswith("/"):
            raise ValueError(f"mount_root must be an absolute path: {value!r}")
        return value.rstrip("/") or "/"

    @computed_field
    @property
    def layout(self) -> Layout:
        return LAYOUTS[self.variant]

    @classmethod
    def load_config_from_file(cls, path: Path, **overrides) -> "PrepConfig":
        """Loads and validates a TOML file against the schema. ``None`` overrides are ignored."""
        try:
            content = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(f"Error reading configuration file: {e}")

        try:
            data = tomlkit.parse(content).unwrap()
        except Exception as e:
            raise ConfigError(f"Invalid TOML format in file: {e}")

        data.update({key: value for key, value in overrides.items() if value is not None})
        return cls.from_values(**data)

    @classmethod
    def from_values(cls, **values) -> "PrepConfig":
        """Builds a config, turning validation failures into ConfigError."""
        try:
            return cls(**{key: value for key, value in values.items() if value is not None})
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration: {e}")

    def display_summary(self) -> str:
        """Renders the partition and subvolume plan."""
        layout = self.layout
        s = typer.style("\nDISK PREPARATION PLAN", fg=typer.colors.BLUE, bold=True) + "\n"
        s += "----------------------------------------\n"
        s += f"  Variant:            {layout.variant.value}\n"
        s += f"  Install root:       {self.mount_root}\n"
        s += f"  P1 EFI (FAT32):     {layout.boot_size_mb} MiB -> {self.mount_root}/boot\n"
        if layout.swap:
            s += "  P2 swap:            equal to RAM\n"
        s += f"  P{3 if layout.swap else 2} root (Btrfs):   remaining space\n"
        s += f"    ╰─ {typer.style('Btrfs Subvolumes', bold=True)} ({len(layout.subvolumes)} total, compress={layout.compression}):\n"
        for subvol in layout.subvolumes:
            s += f"       • {subvol.name:<12} {subvol.mountpoint}\n"
        if self.dry_run:
            s += typer.style("  DRY RUN: no changes will be written\n", fg=typer.colors.YELLOW)
        return s


def join_root(mount_root: str, path: str) -> str:
    """Places an absolute in-system path below the install root."""
    if path == "/":
        return mount_root
    return f"{mount_root.rstrip('/')}{path}"


class TargetDisk(BaseModel):
    """The disk chosen by the operator. Immutable; passed to every later stage."""
    model_config = ConfigDict(frozen=True)

    path: str
    device_number: Optional[Tuple[int, int]] = None

    @property
    def name(self) -> str:
        return self.path.rsplit("/", 1)[-1]

    def partition_path(self, number: int) -> str:
        """Partition node name; disks whose name ends in a digit use a 'p' separator (nvme0n1p1)."""
        separator = "p" if self.path[-1].isdigit() else ""
        return f"{self.path}{separator}{number}"
