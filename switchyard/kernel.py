"""
Kernel
======

The host-facing entry point. One Kernel owns one context (registry, error
reporter, event bus, navigation source) and one orchestrator.

Usage:
    kernel = Kernel()
    kernel.register_unit("navbar", load_navbar, "/")
    await kernel.start()
    await kernel.navigate_to("/settings")
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Any, Awaitable, Callable, Dict, List, Optional

from switchyard.activity import sanitize_active_when
from switchyard.config import KernelConfig
from switchyard.context import KernelContext, monotonic_ms
from switchyard.errors import ErrorHandler, ErrorKind, RegistrationError
from switchyard.events import EventBus, Listener
from switchyard.fragments import Fragment, as_loader, mount_fragment
from switchyard.lifecycles import to_bootstrap, to_unload, to_unmount
from switchyard.models.events import RoutingEvent
from switchyard.models.unit import Unit, UnitStatus
from switchyard.navigation import Location, NavigationEvent, NavigationSource
from switchyard.orchestrator import Orchestrator
from switchyard.registry import UnitRegistry, UnloadRequest

logger = logging.getLogger(__name__)

# Statuses no transition is currently moving a unit out of
_SETTLED = frozenset({
    UnitStatus.NOT_LOADED,
    UnitStatus.LOAD_ERROR,
    UnitStatus.NOT_BOOTSTRAPPED,
    UnitStatus.NOT_MOUNTED,
    UnitStatus.MOUNTED,
})


def _loop_running() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True


class Kernel:
    """
    Registers units and keeps the mounted set in line with the location.

    Everything that can start a pass (registration, start, navigation,
    explicit unloads) needs a running event loop. Registration and
    navigation outside a loop only record the change; the next pass
    picks it up.
    """

    def __init__(
        self,
        config: Optional[KernelConfig] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.config = config or KernelConfig()
        self.navigation = NavigationSource(
            initial_url=self.config.initial_url,
            url_reroute_only=self.config.url_reroute_only,
        )
        self.ctx = KernelContext(
            config=self.config,
            registry=UnitRegistry(),
            events=EventBus(),
            navigation=self.navigation,
            clock=clock or monotonic_ms,
        )
        self.orchestrator = Orchestrator(self.ctx)
        self._navigation_future: Optional[asyncio.Future] = None
        self._unloads: Dict[str, asyncio.Task] = {}
        self.navigation.subscribe(self._on_navigation)

    @property
    def registry(self) -> UnitRegistry:
        return self.ctx.registry

    @property
    def started(self) -> bool:
        return self.ctx.started

    @property
    def location(self) -> Location:
        return self.navigation.location

    # ─────────────────────────────────────────────────────────────
    # Registration
    # ─────────────────────────────────────────────────────────────

    def register_unit(
        self,
        name: str,
        load: Any,
        active_when: Any,
        custom_props: Any = None,
        timeouts: Optional[Dict[str, Any]] = None,
    ) -> Unit:
        """
        Register a unit.

        ``load`` is a loading function returning an awaitable of a hook
        bundle, or the bundle itself. ``active_when`` is a path, a
        predicate taking a Location, or a list of either.
        """
        if not isinstance(name, str) or not name:
            raise RegistrationError("The unit name must be a non-empty string")
        if name in self.ctx.registry:
            raise RegistrationError(f"There is already a unit registered with name {name}")
        if custom_props is not None and not (isinstance(custom_props, Mapping) or callable(custom_props)):
            raise RegistrationError("custom_props must be a mapping or a function")

        unit = Unit(
            name=name,
            load_fn=as_loader(load, label=f"The load argument for '{name}'"),
            active_when=sanitize_active_when(active_when),
            custom_props=custom_props if custom_props is not None else {},
            timeouts=self.config.timeouts.with_overrides(timeouts),
        )
        self.ctx.registry.add(unit)
        logger.info(f"Registered unit: {name}")

        if _loop_running():
            self._schedule(self.orchestrator.reroute())
        return unit

    async def unregister_unit(self, name: str) -> None:
        """
        Unload the unit, then remove it from the registry.

        The unit stays registered until the unload has finished; a
        failed unload raises and leaves it registered.
        """
        await self.unload_unit(name)
        self.ctx.registry.remove(name)
        logger.info(f"Unregistered unit: {name}")

    # ─────────────────────────────────────────────────────────────
    # Passes
    # ─────────────────────────────────────────────────────────────

    def start(self, url_reroute_only: Optional[bool] = None) -> asyncio.Future:
        """Allow mounting and run a pass. Returns the pass result future."""
        if url_reroute_only is not None:
            self.navigation.url_reroute_only = url_reroute_only
        self.ctx.started = True
        logger.info("Kernel started")
        return self.orchestrator.reroute()

    def trigger_change(self) -> asyncio.Future:
        """Run a pass against the current location."""
        return self.orchestrator.reroute()

    def navigate_to(self, url: str) -> Optional[asyncio.Future]:
        """
        Change the location.

        Returns the future of the pass the change queued. When the
        location did not change the future is already resolved with the
        mounted units. Returns None only when no loop is running.
        """
        self._navigation_future = None
        self.navigation.navigate_to(url)
        if self._navigation_future is None and _loop_running():
            future = asyncio.get_running_loop().create_future()
            future.set_result(self.get_mounted_units())
            return future
        return self._navigation_future

    def _on_navigation(self, event: NavigationEvent) -> None:
        if not _loop_running():
            logger.debug(f"No running loop, deferring pass for {event.url}")
            return
        self._navigation_future = self.orchestrator.reroute(event)
        self._schedule(self._navigation_future)

    def _schedule(self, future: Awaitable[Any]) -> None:
        asyncio.ensure_future(future).add_done_callback(self._log_background_failure)

    @staticmethod
    def _log_background_failure(future: asyncio.Future) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.error(f"Background pass failed: {exc}")

    # ─────────────────────────────────────────────────────────────
    # Explicit unload
    # ─────────────────────────────────────────────────────────────

    def unload_unit(self, name: str, wait_for_unmount: bool = False) -> asyncio.Future:
        """
        Request that ``name`` be unloaded.

        With ``wait_for_unmount`` the unit is unloaded by the first pass
        that finds it inactive. Otherwise it is unmounted and unloaded
        right away and any failure is raised to the caller. Concurrent
        requests for one unit share a single future and a single
        unload attempt.
        """
        unit = self.ctx.registry.get(name)
        if unit is None:
            raise RegistrationError(
                f"Could not unload unit '{name}' because no such unit has been registered"
            )

        request = self.ctx.registry.get_unload_request(name)
        if request is None:
            future = asyncio.get_running_loop().create_future()
            request = self.ctx.registry.add_unload_request(unit, future)

        if not wait_for_unmount and name not in self._unloads:
            task = asyncio.ensure_future(self._unload_immediately(unit, request))
            task.add_done_callback(self._log_background_failure)
            self._unloads[name] = task
        return request.future

    async def _unload_immediately(self, unit: Unit, request: UnloadRequest) -> None:
        ctx = self.ctx
        try:
            while not request.future.done():
                if ctx.registry.get_unload_request(unit.name) is not request:
                    break
                if unit.status == UnitStatus.SKIP_BECAUSE_BROKEN:
                    # Quarantined: no hook may run again, nothing to release
                    ctx.registry.pop_unload_request(unit.name)
                    request.resolve()
                elif unit.status not in _SETTLED:
                    logger.debug(
                        f"Unit '{unit.name}' is {unit.status.value}, unloading after the current pass"
                    )
                    await self.orchestrator.reroute()
                else:
                    # NOT_BOOTSTRAPPED has no edge to UNLOADING
                    await to_bootstrap(ctx, unit, hard_fail=True)
                    await to_unmount(ctx, unit, hard_fail=True)
                    await to_unload(ctx, unit)
        except Exception as exc:
            if ctx.registry.get_unload_request(unit.name) is request:
                ctx.registry.pop_unload_request(unit.name)
            error = ctx.reporter.transform(exc, unit, unit.status, phase="unload")
            error.kind = ErrorKind.ORCHESTRATION
            request.reject(error)
            return
        finally:
            self._unloads.pop(unit.name, None)

        future = request.future
        if future.done() and not future.cancelled() and future.exception() is None:
            self._schedule(self.orchestrator.reroute())

    # ─────────────────────────────────────────────────────────────
    # Fragments
    # ─────────────────────────────────────────────────────────────

    async def mount_root_fragment(
        self, config: Any, custom_props: Optional[Dict[str, Any]] = None
    ) -> Fragment:
        """Mount a fragment that no unit owns."""
        return await mount_fragment(self.ctx, config, custom_props)

    # ─────────────────────────────────────────────────────────────
    # Errors and notifications
    # ─────────────────────────────────────────────────────────────

    def add_error_handler(self, handler: ErrorHandler) -> None:
        self.ctx.reporter.add_handler(handler)

    def remove_error_handler(self, handler: ErrorHandler) -> bool:
        return self.ctx.reporter.remove_handler(handler)

    def subscribe(self, event: Any, listener: Listener) -> None:
        self.ctx.events.subscribe(event, listener)

    def unsubscribe(self, event: Any, listener: Listener) -> bool:
        return self.ctx.events.unsubscribe(event, listener)

    # ─────────────────────────────────────────────────────────────
    # Queries
    # ─────────────────────────────────────────────────────────────

    def get_mounted_units(self) -> List[str]:
        return self.ctx.registry.mounted_names()

    def get_unit_names(self) -> List[str]:
        return self.ctx.registry.names()

    def get_unit_status(self, name: str) -> Optional[UnitStatus]:
        return self.ctx.registry.status_of(name)

    def check_activity_functions(self, location: Any = None) -> List[str]:
        """Names of units whose predicate matches ``location`` (default: current)."""
        if location is None:
            location = self.location
        elif isinstance(location, str):
            location = Location.parse(location)
        return [unit.name for unit in self.ctx.registry if unit.active_when(location)]

    def get_stats(self) -> Dict[str, Any]:
        """Get kernel statistics."""
        return {
            "started": self.ctx.started,
            "location": self.navigation.href,
            "units": len(self.ctx.registry),
            "status_counts": self.ctx.registry.status_counts(),
            "mounted": self.get_mounted_units(),
            "pending_unloads": self.ctx.registry.pending_unloads(),
            "fragments_created": self.ctx.fragment_count,
            "errors_reported": self.ctx.reporter.reported_count,
            "routing_events": self.ctx.events.emitted_count(RoutingEvent.ROUTING),
            "orchestrator": self.orchestrator.get_stats(),
        }
