"""
Unit Registry
=============

Authoritative collection of registered units, plus the wait registry of
explicit unload requests keyed by unit name.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional

from switchyard.errors import RegistrationError
from switchyard.models.unit import Unit, UnitStatus

logger = logging.getLogger(__name__)


@dataclass
class UnloadRequest:
    """An explicit unload request. Every caller shares ``future``."""
    unit: Unit
    future: asyncio.Future

    def resolve(self) -> None:
        if not self.future.done():
            self.future.set_result(None)

    def reject(self, error: BaseException) -> None:
        if not self.future.done():
            self.future.set_exception(error)


class UnitRegistry:
    """
    Registered units in registration order.

    Exactly one unit per name. Units leave the registry only through
    ``remove``, which the kernel calls after a completed unload.
    """

    def __init__(self):
        self._units: Dict[str, Unit] = {}
        self._unload_requests: Dict[str, UnloadRequest] = {}

    def add(self, unit: Unit) -> None:
        if unit.name in self._units:
            raise RegistrationError(f"There is already a unit registered with name {unit.name}")
        self._units[unit.name] = unit
        logger.debug(f"Registered unit: {unit.name}")

    def get(self, name: str) -> Optional[Unit]:
        return self._units.get(name)

    def require(self, name: str) -> Unit:
        unit = self._units.get(name)
        if unit is None:
            raise RegistrationError(f"No unit registered with name '{name}'")
        return unit

    def remove(self, name: str) -> Unit:
        unit = self.require(name)
        del self._units[name]
        self._unload_requests.pop(name, None)
        logger.debug(f"Removed unit: {name}")
        return unit

    def units(self) -> List[Unit]:
        return list(self._units.values())

    def names(self) -> List[str]:
        return list(self._units)

    def status_of(self, name: str) -> Optional[UnitStatus]:
        unit = self._units.get(name)
        return unit.status if unit is not None else None

    def mounted_names(self) -> List[str]:
        return [unit.name for unit in self._units.values() if unit.is_active]

    def status_counts(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for unit in self._units.values():
            counts[unit.status.value] = counts.get(unit.status.value, 0) + 1
        return counts

    def __contains__(self, name: object) -> bool:
        return name in self._units

    def __iter__(self) -> Iterator[Unit]:
        return iter(list(self._units.values()))

    def __len__(self) -> int:
        return len(self._units)

    # ─────────────────────────────────────────────────────────────
    # Unload wait registry
    # ─────────────────────────────────────────────────────────────

    def add_unload_request(self, unit: Unit, future: asyncio.Future) -> UnloadRequest:
        request = UnloadRequest(unit=unit, future=future)
        self._unload_requests[unit.name] = request
        return request

    def get_unload_request(self, name: str) -> Optional[UnloadRequest]:
        return self._unload_requests.get(name)

    def pop_unload_request(self, name: str) -> Optional[UnloadRequest]:
        return self._unload_requests.pop(name, None)

    def pending_unloads(self) -> List[str]:
        return list(self._unload_requests)
