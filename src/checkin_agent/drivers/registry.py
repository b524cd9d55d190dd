"""Static mapping from target id to driver factory, resolved once at startup."""
from __future__ import annotations

import logging
from typing import Callable, Dict, Iterable, Mapping, Optional

from ..config import TargetConfig
from ..errors import ConfigError
from .base import TargetDriver
from .selector import SelectorDriver


LOGGER = logging.getLogger("checkin_agent.drivers")

DriverFactory = Callable[[TargetConfig], TargetDriver]

BUILTIN_DRIVERS: Dict[str, DriverFactory] = {
    "selector": SelectorDriver.from_target,
}


class DriverRegistry:
    """
    Resolve the driver for each target.

    Problems with one target (unknown driver kind, invalid options) are kept
    as that target's :class:`ConfigError`; other targets stay usable.
    """

    def __init__(self) -> None:
        self._factories: Dict[str, DriverFactory] = {}
        self._errors: Dict[str, ConfigError] = {}

    @classmethod
    def from_targets(
        cls,
        targets: Iterable[TargetConfig],
        kinds: Optional[Mapping[str, DriverFactory]] = None,
    ) -> "DriverRegistry":
        registry = cls()
        available = BUILTIN_DRIVERS if kinds is None else kinds
        for target in targets:
            factory = available.get(target.driver)
            if factory is None:
                registry._reject(target.id, f"Unknown driver {target.driver!r} for target {target.id}")
                continue
            try:
                factory(target)
            except ConfigError as exc:
                registry._reject(target.id, str(exc))
                continue
            registry.register(target.id, factory)
        return registry

    def register(self, target_id: str, factory: DriverFactory) -> None:
        self._factories[target_id] = factory
        self._errors.pop(target_id, None)

    def create(self, target: TargetConfig) -> TargetDriver:
        if target.id in self._errors:
            raise self._errors[target.id]
        factory = self._factories.get(target.id)
        if factory is None:
            raise ConfigError(f"No driver registered for target {target.id}", target_id=target.id)
        return factory(target)

    @property
    def errors(self) -> Mapping[str, ConfigError]:
        return dict(self._errors)

    def __contains__(self, target_id: object) -> bool:
        return target_id in self._factories

    def _reject(self, target_id: str, message: str) -> None:
        LOGGER.error("%s", message)
        self._errors[target_id] = ConfigError(message, target_id=target_id)
