"""Unmount transition: MOUNTED -> UNMOUNTING -> NOT_MOUNTED."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Optional

from switchyard.errors import SwitchyardError
from switchyard.models.unit import Unit, UnitStatus
from switchyard.supervisor import supervise

if TYPE_CHECKING:
    from switchyard.context import KernelContext

logger = logging.getLogger(__name__)


async def _unmount_children(unit: Unit) -> Optional[Exception]:
    children = list(unit.children.values())
    if not children:
        return None

    results = await asyncio.gather(
        *(child.unmount_from_owner() for child in children), return_exceptions=True
    )
    failures = [result for result in results if isinstance(result, Exception)]
    for failure in failures[1:]:
        logger.warning(f"Additional fragment of '{unit.name}' failed to unmount: {failure}")
    return failures[0] if failures else None


async def to_unmount(ctx: "KernelContext", unit: Unit, hard_fail: bool = False) -> Unit:
    """
    Unmount ``unit`` after unmounting every live fragment it owns.

    The unit's own unmount hooks run even when a fragment failed; the
    fragment failure then quarantines the parent.
    """
    if unit.status != UnitStatus.MOUNTED:
        return unit

    unit.status = UnitStatus.UNMOUNTING

    child_error = await _unmount_children(unit)

    try:
        await supervise(ctx, unit, "unmount")
    except Exception as exc:
        if hard_fail:
            raise ctx.reporter.transform(exc, unit, UnitStatus.SKIP_BECAUSE_BROKEN, phase="unmount")
        ctx.reporter.handle(exc, unit, UnitStatus.SKIP_BECAUSE_BROKEN, phase="unmount")
        return unit

    if child_error is not None:
        parent_error = SwitchyardError(f"A fragment failed to unmount: {child_error}")
        parent_error.__cause__ = child_error
        if hard_fail:
            raise ctx.reporter.transform(
                parent_error, unit, UnitStatus.SKIP_BECAUSE_BROKEN, phase="unmount"
            )
        ctx.reporter.handle(parent_error, unit, UnitStatus.SKIP_BECAUSE_BROKEN, phase="unmount")
        return unit

    unit.status = UnitStatus.NOT_MOUNTED
    return unit
