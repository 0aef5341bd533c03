"""
Unload transition: NOT_MOUNTED | LOAD_ERROR -> UNLOADING -> NOT_LOADED.

Only units with an explicit unload request are unloaded. Completing the
unload strips the hook bundle and resolves the request.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from switchyard.models.unit import Unit, UnitStatus
from switchyard.registry import UnloadRequest
from switchyard.supervisor import supervise

if TYPE_CHECKING:
    from switchyard.context import KernelContext


def _finish_unloading(ctx: "KernelContext", unit: Unit, request: UnloadRequest) -> None:
    ctx.registry.pop_unload_request(unit.name)
    unit.strip_hooks()
    unit.status = UnitStatus.NOT_LOADED
    request.resolve()


async def to_unload(ctx: "KernelContext", unit: Unit) -> Unit:
    request = ctx.registry.get_unload_request(unit.name)
    if request is None:
        return unit

    if unit.status == UnitStatus.NOT_LOADED:
        _finish_unloading(ctx, unit, request)
        return unit

    if unit.status == UnitStatus.UNLOADING:
        # Someone else is unloading it; share their outcome
        await asyncio.wait({request.future})
        return unit

    if unit.status not in (UnitStatus.NOT_MOUNTED, UnitStatus.LOAD_ERROR):
        return unit

    skip_hook = unit.status == UnitStatus.LOAD_ERROR
    unit.status = UnitStatus.UNLOADING

    try:
        if not skip_hook:
            await supervise(ctx, unit, "unload")
    except Exception as exc:
        ctx.registry.pop_unload_request(unit.name)
        unit.strip_hooks()
        error = ctx.reporter.transform(exc, unit, UnitStatus.SKIP_BECAUSE_BROKEN, phase="unload")
        ctx.reporter.report(error)
        request.reject(error)
        return unit

    _finish_unloading(ctx, unit, request)
    return unit
