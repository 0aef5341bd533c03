"""
Timeout Supervisor
==================

Runs one lifecycle phase of a unit under its deadline policy.

The hooks of a phase run one after another. Past ``warning_millis`` a
warning is logged (and repeated every ``warning_millis``) while the hooks
are merely slow. Past ``millis`` the phase either fails with
HookTimeoutError (``die_on_timeout``) or logs an error and keeps waiting
until the hooks actually settle.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import TYPE_CHECKING, Any, Dict, Optional, Sequence

from switchyard.errors import ContractError, HookTimeoutError
from switchyard.models.unit import Hook, Unit

if TYPE_CHECKING:
    from switchyard.context import KernelContext

logger = logging.getLogger(__name__)


async def run_hooks(unit: Unit, phase: str, hooks: Sequence[Hook], props: Dict[str, Any]) -> None:
    """Call each hook with ``props`` and await it before starting the next."""
    for index, hook in enumerate(hooks):
        result = hook(props)
        if not inspect.isawaitable(result):
            raise ContractError(
                f"Within {unit.kind.value} '{unit.name}', the {phase} lifecycle "
                f"function at index {index} did not return an awaitable"
            )
        await result


async def supervise(ctx: "KernelContext", unit: Unit, phase: str) -> None:
    """Run ``phase`` for ``unit`` under the unit's timeout policy."""
    hooks = unit.hooks.hooks_for(phase) if unit.hooks is not None else ()
    if not hooks:
        return

    policy = unit.effective_timeouts.for_phase(phase)
    runner = asyncio.ensure_future(run_hooks(unit, phase, hooks, ctx.props_for(unit)))
    loop = asyncio.get_running_loop()
    started = loop.time()

    next_warning = policy.warning_millis if policy.warning_millis > 0 else None
    deadline_passed = False

    try:
        while not runner.done():
            checkpoints = []
            if not deadline_passed:
                checkpoints.append(policy.millis)
            if next_warning is not None and (deadline_passed or next_warning < policy.millis):
                checkpoints.append(next_warning)

            timeout: Optional[float] = None
            if checkpoints:
                elapsed_ms = (loop.time() - started) * 1000.0
                timeout = max(min(checkpoints) - elapsed_ms, 0.0) / 1000.0

            await asyncio.wait({runner}, timeout=timeout)
            if runner.done():
                break

            elapsed_ms = (loop.time() - started) * 1000.0
            if not deadline_passed and elapsed_ms >= policy.millis:
                if policy.die_on_timeout:
                    runner.cancel()
                    raise HookTimeoutError(unit.name, phase, policy.millis, True)
                deadline_passed = True
                next_warning = None
                logger.error(
                    f"{unit.kind.value} '{unit.name}' {phase} exceeded {policy.millis} ms "
                    f"(die_on_timeout is off, still waiting)"
                )
            elif next_warning is not None and elapsed_ms >= next_warning:
                logger.warning(
                    f"{unit.kind.value} '{unit.name}' {phase} still pending after "
                    f"{int(elapsed_ms)} ms"
                )
                next_warning += policy.warning_millis
    except asyncio.CancelledError:
        runner.cancel()
        raise

    runner.result()
