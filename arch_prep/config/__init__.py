from arch_prep.config.models import LAYOUTS, Layout, PrepConfig, Subvolume, TargetDisk, Variant

__all__ = ["LAYOUTS", "Layout", "PrepConfig", "Subvolume", "TargetDisk", "Variant"]
