"""Bootstrap transition: NOT_BOOTSTRAPPED -> BOOTSTRAPPING -> NOT_MOUNTED."""

from __future__ import annotations

from typing import TYPE_CHECKING

from switchyard.models.unit import Unit, UnitStatus
from switchyard.supervisor import supervise

if TYPE_CHECKING:
    from switchyard.context import KernelContext


async def to_bootstrap(ctx: "KernelContext", unit: Unit, hard_fail: bool = False) -> Unit:
    """Run the bootstrap hooks once per load of ``unit``."""
    if unit.status != UnitStatus.NOT_BOOTSTRAPPED:
        return unit

    unit.status = UnitStatus.BOOTSTRAPPING

    try:
        await supervise(ctx, unit, "bootstrap")
    except Exception as exc:
        if hard_fail:
            raise ctx.reporter.transform(exc, unit, UnitStatus.SKIP_BECAUSE_BROKEN, phase="bootstrap")
        ctx.reporter.handle(exc, unit, UnitStatus.SKIP_BECAUSE_BROKEN, phase="bootstrap")
        return unit

    unit.status = UnitStatus.NOT_MOUNTED
    return unit
