from .base import PageDriver, TargetDriver
from .registry import BUILTIN_DRIVERS, DriverFactory, DriverRegistry
from .selector import SelectorDriver, SelectorSettings

__all__ = [
    "BUILTIN_DRIVERS",
    "DriverFactory",
    "DriverRegistry",
    "PageDriver",
    "SelectorDriver",
    "SelectorSettings",
    "TargetDriver",
]
