"""Update transition (fragments only): MOUNTED -> UPDATING -> MOUNTED."""

from __future__ import annotations

from typing import TYPE_CHECKING

from switchyard.errors import ErrorKind, InvalidStatusError, UnitError
from switchyard.models.unit import Unit, UnitStatus
from switchyard.supervisor import supervise

if TYPE_CHECKING:
    from switchyard.context import KernelContext


async def to_update(ctx: "KernelContext", unit: Unit) -> Unit:
    """Run the update hooks. Any failure quarantines the unit and raises."""
    if unit.status != UnitStatus.MOUNTED:
        raise InvalidStatusError(
            f"Cannot update {unit.kind.value} '{unit.name}' because it is not mounted "
            f"(status {unit.status.value})"
        )
    if unit.hooks is None or not unit.hooks.has_update:
        raise UnitError(
            f"{unit.kind.value} '{unit.name}' does not export an update function",
            unit_name=unit.name,
            unit_kind=unit.kind.value,
            status=unit.status.value,
            phase="update",
            kind=ErrorKind.USER,
        )

    unit.status = UnitStatus.UPDATING

    try:
        await supervise(ctx, unit, "update")
    except Exception as exc:
        raise ctx.reporter.transform(exc, unit, UnitStatus.SKIP_BECAUSE_BROKEN, phase="update")

    unit.status = UnitStatus.MOUNTED
    return unit
