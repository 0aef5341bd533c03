"""
Load transition: NOT_LOADED | LOAD_ERROR -> LOADING -> NOT_BOOTSTRAPPED.

A loader failure leaves the unit in LOAD_ERROR (retried later). A loader
that breaks its contract, or resolves to a malformed bundle, quarantines
the unit. A malformed bundle still counts as a finished load: the unit
reaches a stable status and nothing is raised to the pass.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import TYPE_CHECKING, Any

from switchyard.errors import (
    BundleValidationError,
    ContractError,
    ErrorKind,
    TimeoutConfigError,
)
from switchyard.models.unit import HookBundle, Unit, UnitStatus

if TYPE_CHECKING:
    from switchyard.context import KernelContext

logger = logging.getLogger(__name__)


async def to_load(ctx: "KernelContext", unit: Unit, hard_fail: bool = False) -> Unit:
    """
    Load ``unit`` unless it is already loaded.

    Concurrent callers share the single in-flight load of a unit.
    """
    if unit.pending_load is not None:
        return await asyncio.shield(unit.pending_load)

    if unit.status not in (UnitStatus.NOT_LOADED, UnitStatus.LOAD_ERROR):
        return unit

    unit.status = UnitStatus.LOADING
    unit.pending_load = asyncio.ensure_future(_load(ctx, unit, hard_fail))
    return await asyncio.shield(unit.pending_load)


def _call_loader(ctx: "KernelContext", unit: Unit) -> Any:
    loading = unit.load_fn(ctx.props_for(unit))
    if not inspect.isawaitable(loading):
        raise ContractError(
            f"Loading function for {unit.kind.value} '{unit.name}' did not return an awaitable"
        )
    return loading


async def _load(ctx: "KernelContext", unit: Unit, hard_fail: bool) -> Unit:
    try:
        try:
            exports = await _call_loader(ctx, unit)
        except ContractError as exc:
            if hard_fail:
                raise ctx.reporter.transform(
                    exc, unit, UnitStatus.SKIP_BECAUSE_BROKEN, kind=ErrorKind.USER, phase="load"
                )
            ctx.reporter.handle(
                exc, unit, UnitStatus.SKIP_BECAUSE_BROKEN, kind=ErrorKind.USER, phase="load"
            )
            return unit
        except Exception as exc:
            unit.load_error_time = ctx.clock()
            if hard_fail:
                raise ctx.reporter.transform(
                    exc, unit, UnitStatus.LOAD_ERROR, kind=ErrorKind.LOAD, phase="load"
                )
            ctx.reporter.handle(exc, unit, UnitStatus.LOAD_ERROR, kind=ErrorKind.LOAD, phase="load")
            return unit

        unit.load_error_time = None

        try:
            bundle = HookBundle.from_exports(exports, defaults=unit.timeouts)
        except (BundleValidationError, TimeoutConfigError) as exc:
            logger.error(
                f"The loading function for {unit.kind.value} '{unit.name}' resolved with "
                f"{exports!r}, which {exc}"
            )
            if hard_fail:
                raise ctx.reporter.transform(
                    exc, unit, UnitStatus.SKIP_BECAUSE_BROKEN, kind=ErrorKind.USER, phase="load"
                )
            ctx.reporter.handle(
                exc, unit, UnitStatus.SKIP_BECAUSE_BROKEN, kind=ErrorKind.USER, phase="load"
            )
            return unit

        unit.hooks = bundle
        unit.status = UnitStatus.NOT_BOOTSTRAPPED
        logger.debug(f"Loaded {unit.kind.value} '{unit.name}'")
        return unit
    finally:
        unit.pending_load = None
