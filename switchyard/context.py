"""
Kernel Context
==============

The state every lifecycle transition and every pass shares: registry,
error reporter, event bus, condition source and the one-shot mount
latches. One context per kernel; nothing here is process-global.
"""

from __future__ import annotations

import functools
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict

from switchyard.config import KernelConfig
from switchyard.errors import ErrorReporter
from switchyard.events import EventBus
from switchyard.models.unit import Unit
from switchyard.navigation import Location, NavigationSource
from switchyard.registry import UnitRegistry


def monotonic_ms() -> float:
    return time.monotonic() * 1000.0


@dataclass
class KernelContext:
    config: KernelConfig = field(default_factory=KernelConfig)
    registry: UnitRegistry = field(default_factory=UnitRegistry)
    reporter: ErrorReporter = field(default_factory=ErrorReporter)
    events: EventBus = field(default_factory=EventBus)
    navigation: NavigationSource = field(default_factory=NavigationSource)
    clock: Callable[[], float] = monotonic_ms

    started: bool = False
    before_first_mount_fired: bool = False
    first_mount_fired: bool = False
    fragment_count: int = 0

    @property
    def location(self) -> Location:
        return self.navigation.location

    def next_fragment_id(self) -> str:
        self.fragment_count += 1
        return f"fragment-{self.fragment_count}"

    def props_for(self, unit: Unit) -> Dict[str, Any]:
        """
        Build the props mapping passed to a unit's loader and hooks.

        A fresh dict every call; ``unit.custom_props`` is never mutated.
        """
        from switchyard.fragments import mount_fragment

        custom = unit.custom_props
        if callable(custom):
            custom = custom(unit.name, self.location)

        props: Dict[str, Any] = dict(custom or {})
        props["name"] = unit.name
        props["mount_fragment"] = functools.partial(mount_fragment, self, owner=unit)
        if unit.unmount_self is not None:
            props["unmount_self"] = unit.unmount_self
        return props
