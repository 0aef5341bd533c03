"""Mount transition: NOT_MOUNTED -> MOUNTING -> MOUNTED."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from switchyard.lifecycles.unmount import to_unmount
from switchyard.models.events import RoutingEvent
from switchyard.models.unit import Unit, UnitStatus
from switchyard.supervisor import supervise

if TYPE_CHECKING:
    from switchyard.context import KernelContext

logger = logging.getLogger(__name__)


async def to_mount(ctx: "KernelContext", unit: Unit, hard_fail: bool = False) -> Unit:
    """
    Mount ``unit``.

    On failure the unit is treated as mounted and unmounted once so the
    hook can release whatever it acquired, then it is quarantined.
    """
    if unit.status != UnitStatus.NOT_MOUNTED:
        return unit

    if not ctx.before_first_mount_fired:
        ctx.before_first_mount_fired = True
        ctx.events.emit(RoutingEvent.BEFORE_FIRST_MOUNT)

    unit.status = UnitStatus.MOUNTING

    try:
        await supervise(ctx, unit, "mount")
    except Exception as exc:
        unit.status = UnitStatus.MOUNTED
        try:
            await to_unmount(ctx, unit, hard_fail=True)
        except Exception as cleanup_exc:
            logger.warning(f"Cleanup unmount of '{unit.name}' after failed mount failed: {cleanup_exc}")

        if hard_fail:
            raise ctx.reporter.transform(exc, unit, UnitStatus.SKIP_BECAUSE_BROKEN, phase="mount")
        ctx.reporter.handle(exc, unit, UnitStatus.SKIP_BECAUSE_BROKEN, phase="mount")
        return unit

    unit.status = UnitStatus.MOUNTED

    if not ctx.first_mount_fired:
        ctx.first_mount_fired = True
        ctx.events.emit(RoutingEvent.FIRST_MOUNT)

    return unit
