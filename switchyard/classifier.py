"""
Change Classifier
=================

Partitions the registered units into the four action buckets of a pass.
Activity is evaluated once per unit per pass.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List, Optional

from switchyard.errors import ErrorKind
from switchyard.models.unit import Unit, UnitStatus

if TYPE_CHECKING:
    from switchyard.context import KernelContext
    from switchyard.navigation import Location

logger = logging.getLogger(__name__)


@dataclass
class UnitChanges:
    """Disjoint action buckets for one pass."""
    to_unload: List[Unit] = field(default_factory=list)
    to_unmount: List[Unit] = field(default_factory=list)
    to_load: List[Unit] = field(default_factory=list)
    to_mount: List[Unit] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.to_unload) + len(self.to_unmount) + len(self.to_load) + len(self.to_mount)

    @property
    def is_empty(self) -> bool:
        return self.total == 0

    def to_dict(self) -> Dict[str, List[str]]:
        return {
            "to_unload": [unit.name for unit in self.to_unload],
            "to_unmount": [unit.name for unit in self.to_unmount],
            "to_load": [unit.name for unit in self.to_load],
            "to_mount": [unit.name for unit in self.to_mount],
        }


def should_be_active(
    ctx: "KernelContext", unit: Unit, location: Optional["Location"] = None
) -> bool:
    """
    Evaluate the unit's activity predicate.

    A predicate that raises quarantines the unit and counts as inactive.
    """
    location = location if location is not None else ctx.location
    try:
        return bool(unit.active_when(location))
    except Exception as exc:
        ctx.reporter.handle(
            exc, unit, UnitStatus.SKIP_BECAUSE_BROKEN, kind=ErrorKind.ACTIVATION, phase="activity"
        )
        return False


def compute_changes(ctx: "KernelContext", now: Optional[float] = None) -> UnitChanges:
    """Classify every registered unit against the current location."""
    changes = UnitChanges()
    now = ctx.clock() if now is None else now
    location = ctx.location
    retry_ms = ctx.config.load_error_retry_ms

    for unit in ctx.registry:
        if unit.status == UnitStatus.SKIP_BECAUSE_BROKEN:
            continue

        active = should_be_active(ctx, unit, location)
        status = unit.status

        if status == UnitStatus.LOAD_ERROR:
            if active and (unit.load_error_time is None or now - unit.load_error_time >= retry_ms):
                changes.to_load.append(unit)
        elif status in (UnitStatus.NOT_LOADED, UnitStatus.LOADING):
            if active:
                changes.to_load.append(unit)
        elif status in (UnitStatus.NOT_BOOTSTRAPPED, UnitStatus.NOT_MOUNTED):
            if not active and ctx.registry.get_unload_request(unit.name) is not None:
                changes.to_unload.append(unit)
            elif active:
                changes.to_mount.append(unit)
        elif status == UnitStatus.MOUNTED:
            if not active:
                changes.to_unmount.append(unit)

    logger.debug(f"Classified units at {location.href}: {changes.to_dict()}")
    return changes
