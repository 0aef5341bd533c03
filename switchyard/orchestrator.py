"""
Orchestrator
============

Runs reconciliation passes: classify every unit against the current
location, tear down what should no longer be active, then stand up what
should be.

Exactly one pass is in flight at a time. Triggers that arrive while a
pass runs are queued, and the whole queue is drained into one follow-up
pass whose result every queued caller shares.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from switchyard.classifier import UnitChanges, compute_changes, should_be_active
from switchyard.lifecycles import to_bootstrap, to_load, to_mount, to_unload, to_unmount
from switchyard.models.events import RoutingEvent, RoutingEventDetail
from switchyard.models.unit import Unit, UnitStatus
from switchyard.navigation import NavigationEvent

if TYPE_CHECKING:
    from switchyard.context import KernelContext

logger = logging.getLogger(__name__)


@dataclass
class PendingReroute:
    """A caller waiting on the outcome of some pass."""
    future: asyncio.Future
    event: Optional[NavigationEvent] = None

    def resolve(self, mounted: List[str]) -> None:
        if not self.future.done():
            self.future.set_result(list(mounted))

    def reject(self, error: BaseException) -> None:
        if not self.future.done():
            self.future.set_exception(error)


@dataclass
class RoutingPass:
    """The classification and URLs of one pass, plus its cancel flag."""
    changes: UnitChanges
    old_url: Optional[str] = None
    new_url: Optional[str] = None
    original_event: Optional[NavigationEvent] = None
    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True

    def detail(self, before: bool, cancellable: bool = False) -> RoutingEventDetail:
        """
        Build the payload for one notification.

        ``before`` payloads report the status each unit is headed for;
        the others report the status each unit actually ended in.
        """
        changes = self.changes
        detail = RoutingEventDetail(
            total_unit_changes=changes.total,
            original_event=self.original_event,
            old_url=self.old_url,
            new_url=self.new_url,
            navigation_is_cancelled=self.cancelled,
        )

        if before:
            for unit in changes.to_load + changes.to_mount:
                detail.add_unit(unit.name, UnitStatus.MOUNTED.value)
            for unit in changes.to_unload:
                detail.add_unit(unit.name, UnitStatus.NOT_LOADED.value)
            for unit in changes.to_unmount:
                detail.add_unit(unit.name, UnitStatus.NOT_MOUNTED.value)
        else:
            for unit in changes.to_unload + changes.to_load + changes.to_unmount + changes.to_mount:
                detail.add_unit(unit.name, unit.status.value)

        if cancellable:
            detail.cancel_navigation = self.cancel
        return detail


class Orchestrator:
    """
    Serializes reconciliation passes over one kernel context.

    ``reroute`` never runs a pass inline; it queues the caller and makes
    sure a drain task is running.
    """

    def __init__(self, ctx: "KernelContext"):
        self.ctx = ctx

        self._waiting: List[PendingReroute] = []
        self._change_underway = False
        self._drain_task: Optional[asyncio.Task] = None
        self._current_url: Optional[str] = ctx.navigation.href

        # Metrics
        self._pass_count = 0
        self._cancelled_count = 0
        self._failed_count = 0
        self._last_pass_ms = 0.0

    @property
    def change_underway(self) -> bool:
        return self._change_underway

    @property
    def waiting_count(self) -> int:
        return len(self._waiting)

    def reroute(self, event: Optional[NavigationEvent] = None) -> asyncio.Future:
        """
        Request a pass.

        Returns a future resolving to the names of the mounted units once
        a pass that started after this call has completed.
        """
        loop = asyncio.get_running_loop()
        future = loop.create_future()
        self._waiting.append(PendingReroute(future, event))

        if not self._change_underway:
            self._change_underway = True
            self._drain_task = loop.create_task(self._drain())
        else:
            logger.debug(f"Pass in flight, {len(self._waiting)} caller(s) queued")

        return future

    async def _drain(self) -> None:
        batch: List[PendingReroute] = []
        try:
            while self._waiting:
                batch, self._waiting = self._waiting, []
                try:
                    mounted = await self._perform_pass(batch)
                except Exception as exc:
                    self._failed_count += 1
                    logger.error(f"Reroute pass failed: {exc}")
                    for pending in batch:
                        pending.reject(exc)
                else:
                    for pending in batch:
                        pending.resolve(mounted)
                batch = []
        except asyncio.CancelledError:
            for pending in batch + self._waiting:
                pending.future.cancel()
            self._waiting = []
            raise
        finally:
            self._change_underway = False
            self._drain_task = None

    async def _perform_pass(self, batch: List[PendingReroute]) -> List[str]:
        ctx = self.ctx
        started_at = time.monotonic()
        self._pass_count += 1

        changes = compute_changes(ctx)
        old_url, self._current_url = self._current_url, ctx.navigation.href
        original_event = next((p.event for p in batch if p.event is not None), None)

        if not ctx.started:
            try:
                await asyncio.gather(*(to_load(ctx, unit) for unit in changes.to_load))
            finally:
                self._call_captured_listeners(batch)
            return []

        routing = RoutingPass(changes, old_url, self._current_url, original_event)

        ctx.events.emit(
            RoutingEvent.BEFORE_APP_CHANGE if changes.total else RoutingEvent.BEFORE_NO_APP_CHANGE,
            routing.detail(before=True),
        )
        ctx.events.emit(RoutingEvent.BEFORE_ROUTING, routing.detail(before=True, cancellable=True))

        if routing.cancelled:
            self._cancelled_count += 1
            ctx.events.emit(RoutingEvent.BEFORE_MOUNT_ROUTING, routing.detail(before=True))
            mounted = self._finish_up(routing, started_at)
            if old_url is not None and old_url != ctx.navigation.href:
                logger.info(f"Navigation to {self._current_url} cancelled, restoring {old_url}")
                ctx.navigation.navigate_to(old_url)
            return mounted

        teardown = asyncio.ensure_future(self._teardown(routing))
        mounting = set(changes.to_load)
        stand_up = [
            asyncio.ensure_future(self._load_then_mount(unit, teardown))
            for unit in changes.to_load
        ] + [
            asyncio.ensure_future(self._bootstrap_and_mount(unit, teardown))
            for unit in changes.to_mount
            if unit not in mounting
        ]

        try:
            try:
                await asyncio.shield(teardown)
            except Exception:
                self._call_captured_listeners(batch)
                for task in stand_up:
                    task.cancel()
                raise

            self._call_captured_listeners(batch)
            await asyncio.gather(*stand_up)
        except asyncio.CancelledError:
            teardown.cancel()
            for task in stand_up:
                task.cancel()
            raise

        return self._finish_up(routing, started_at)

    # ─────────────────────────────────────────────────────────────
    # Phases
    # ─────────────────────────────────────────────────────────────

    async def _unmount_then_unload(self, unit: Unit) -> None:
        await to_unmount(self.ctx, unit)
        await to_unload(self.ctx, unit)

    async def _teardown(self, routing: RoutingPass) -> None:
        changes = routing.changes
        await asyncio.gather(
            *(self._unmount_then_unload(unit) for unit in changes.to_unmount),
            *(to_unload(self.ctx, unit) for unit in changes.to_unload),
        )
        self.ctx.events.emit(RoutingEvent.BEFORE_MOUNT_ROUTING, routing.detail(before=True))

    async def _load_then_mount(self, unit: Unit, teardown: asyncio.Future) -> None:
        await to_load(self.ctx, unit)
        await self._bootstrap_and_mount(unit, teardown)

    async def _bootstrap_and_mount(self, unit: Unit, teardown: asyncio.Future) -> None:
        """Bootstrap right away; mount only after teardown and only if still active."""
        if should_be_active(self.ctx, unit):
            await to_bootstrap(self.ctx, unit)
            await asyncio.shield(teardown)
            if should_be_active(self.ctx, unit):
                await to_mount(self.ctx, unit)
        else:
            await asyncio.shield(teardown)

    def _finish_up(self, routing: RoutingPass, started_at: float) -> List[str]:
        ctx = self.ctx
        mounted = ctx.registry.mounted_names()
        changed = routing.changes.total

        ctx.events.emit(
            RoutingEvent.APP_CHANGE if changed else RoutingEvent.NO_APP_CHANGE,
            routing.detail(before=False),
        )
        ctx.events.emit(RoutingEvent.ROUTING, routing.detail(before=False))

        self._last_pass_ms = (time.monotonic() - started_at) * 1000.0
        logger.info(
            f"Pass {self._pass_count} complete: {changed} changes, "
            f"{len(mounted)} mounted ({self._last_pass_ms:.1f} ms)"
        )
        return mounted

    def _call_captured_listeners(self, batch: List[PendingReroute]) -> None:
        for pending in batch:
            self.ctx.navigation.call_captured_listeners(pending.event)

    def get_stats(self) -> Dict[str, Any]:
        """Get orchestrator statistics."""
        return {
            "passes": self._pass_count,
            "cancelled_passes": self._cancelled_count,
            "failed_passes": self._failed_count,
            "last_pass_ms": self._last_pass_ms,
            "change_underway": self._change_underway,
            "waiting": len(self._waiting),
        }
