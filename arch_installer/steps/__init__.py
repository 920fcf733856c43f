from .step_01_partitions import PartitionsStep
from .step_02_base import BaseInstallStep
from .step_03_configure import ConfigureSystemStep
from .step_04_desktop import DesktopStep
from .step_05_aur_helper import AurHelperStep
from .step_06_packages import PackagesStep

__all__ = [
    "PartitionsStep",
    "BaseInstallStep",
    "ConfigureSystemStep",
    "DesktopStep",
    "AurHelperStep",
    "PackagesStep",
]
