"""
Tests for reconciliation passes: ordering, serialization, cancellation
and failure isolation.
"""

import asyncio

import pytest

from switchyard.activity import sanitize_active_when
from switchyard.fragments import as_loader
from switchyard.models.events import RoutingEvent
from switchyard.models.unit import Unit, UnitStatus


S = UnitStatus

# Edges a status may follow; any status may also move to SKIP_BECAUSE_BROKEN
ALLOWED_EDGES = {
    (S.NOT_LOADED, S.LOADING),
    (S.LOAD_ERROR, S.LOADING),
    (S.LOADING, S.NOT_BOOTSTRAPPED),
    (S.LOADING, S.LOAD_ERROR),
    (S.NOT_BOOTSTRAPPED, S.BOOTSTRAPPING),
    (S.BOOTSTRAPPING, S.NOT_MOUNTED),
    (S.NOT_MOUNTED, S.MOUNTING),
    (S.MOUNTING, S.MOUNTED),
    (S.MOUNTED, S.UPDATING),
    (S.UPDATING, S.MOUNTED),
    (S.MOUNTED, S.UNMOUNTING),
    (S.UNMOUNTING, S.NOT_MOUNTED),
    (S.NOT_MOUNTED, S.UNLOADING),
    (S.LOAD_ERROR, S.UNLOADING),
    (S.UNLOADING, S.NOT_LOADED),
}


class TracedUnit(Unit):
    """Unit that records every status change as an (old, new) pair."""

    def __setattr__(self, name, value):
        if name == "status":
            old = self.__dict__.get("status")
            if old is not None and old != value:
                self.__dict__.setdefault("_transitions", []).append((old, value))
        super().__setattr__(name, value)

    @property
    def transitions(self):
        return self.__dict__.get("_transitions", [])


def traced(kernel, name, load, active_when):
    unit = TracedUnit(
        name=name,
        load_fn=as_loader(load),
        active_when=sanitize_active_when(active_when),
        timeouts=kernel.config.timeouts,
    )
    kernel.registry.add(unit)
    return unit


def record_events(kernel):
    seen = []
    for event in RoutingEvent:
        kernel.subscribe(event, lambda name, detail: seen.append((name.value, detail)))
    return seen


class TestBeforeStart:
    """Test passes that run before the kernel is started."""

    @pytest.mark.asyncio
    async def test_preloads_without_mounting(self, kernel, recorder):
        kernel.register_unit("a", recorder.loader("a"), "/")

        result = await kernel.trigger_change()

        assert result == []
        assert kernel.get_unit_status("a") == UnitStatus.NOT_BOOTSTRAPPED
        assert recorder.phases("a") == ["load"]

    @pytest.mark.asyncio
    async def test_no_routing_events_before_start(self, kernel, recorder):
        seen = record_events(kernel)
        kernel.register_unit("a", recorder.loader("a"), "/")

        await kernel.trigger_change()

        assert seen == []


class TestPass:
    """Test a started pass end to end."""

    @pytest.mark.asyncio
    async def test_start_mounts_active_units(self, kernel_at, recorder):
        kernel = kernel_at("/a")
        kernel.register_unit("a", recorder.loader("a"), "/a")
        kernel.register_unit("b", recorder.loader("b"), "/b")

        result = await kernel.start()

        assert result == ["a"]
        assert kernel.get_unit_status("a") == UnitStatus.MOUNTED
        assert kernel.get_unit_status("b") == UnitStatus.NOT_LOADED

    @pytest.mark.asyncio
    async def test_event_order(self, kernel, recorder):
        seen = record_events(kernel)
        kernel.register_unit("a", recorder.loader("a"), "/")

        await kernel.start()

        assert [name for name, _ in seen] == [
            "before-app-change",
            "before-routing-event",
            "before-mount-routing-event",
            "before-first-mount",
            "first-mount",
            "app-change",
            "routing-event",
        ]

    @pytest.mark.asyncio
    async def test_before_events_predict_statuses(self, kernel_at, recorder):
        kernel = kernel_at("/a")
        kernel.register_unit("a", recorder.loader("a"), "/a")
        kernel.register_unit("b", recorder.loader("b"), "/b")
        await kernel.start()

        seen = record_events(kernel)
        await kernel.navigate_to("/b")

        before = dict(seen)["before-app-change"]
        assert before.new_unit_statuses == {"b": "MOUNTED", "a": "NOT_MOUNTED"}
        assert before.total_unit_changes == 2
        assert before.old_url == "http://localhost/a"
        assert before.new_url == "http://localhost/b"
        assert before.original_event.type == "popstate"

        after = dict(seen)["app-change"]
        assert after.new_unit_statuses == {"b": "MOUNTED", "a": "NOT_MOUNTED"}
        assert after.units_by_new_status["NOT_MOUNTED"] == ["a"]

    @pytest.mark.asyncio
    async def test_no_change_events(self, kernel, recorder):
        kernel.register_unit("a", recorder.loader("a"), "/")
        await kernel.start()

        seen = record_events(kernel)
        await kernel.trigger_change()

        assert [name for name, _ in seen] == [
            "before-no-app-change",
            "before-routing-event",
            "before-mount-routing-event",
            "no-app-change",
            "routing-event",
        ]
        assert seen[-1][1].total_unit_changes == 0

    @pytest.mark.asyncio
    async def test_teardown_before_mount_but_load_overlaps(self, kernel_at, recorder, settle):
        kernel = kernel_at("/a")
        gate = asyncio.Event()
        kernel.register_unit("a", recorder.loader("a", gates={"unmount": gate}), "/a")
        kernel.register_unit("b", recorder.loader("b"), "/b")
        await kernel.start()

        pending = kernel.navigate_to("/b")
        await settle(lambda: recorder.count("b", "bootstrap") == 1)

        assert kernel.get_unit_status("a") == UnitStatus.UNMOUNTING
        assert recorder.count("b", "mount") == 0

        gate.set()
        assert await pending == ["b"]
        assert recorder.index("a", "unmount") < recorder.index("b", "mount")

    @pytest.mark.asyncio
    async def test_activity_rechecked_before_mount(self, kernel_at, recorder):
        kernel = kernel_at("/")
        flag = {"on": True}

        async def bootstrap(props):
            flag["on"] = False

        bundle = recorder.bundle("a")
        bundle["bootstrap"] = bootstrap
        kernel.register_unit("a", bundle, lambda location: flag["on"])

        result = await kernel.start()

        assert result == []
        assert kernel.get_unit_status("a") == UnitStatus.NOT_MOUNTED

    @pytest.mark.asyncio
    async def test_captured_listeners_called_after_teardown(self, kernel_at, recorder):
        kernel = kernel_at("/a")
        kernel.register_unit("a", recorder.loader("a"), "/a")
        kernel.register_unit("b", recorder.loader("b"), "/b")
        await kernel.start()

        kernel.navigation.add_route_listener(
            "popstate", lambda event: recorder.calls.append(("listener", event.url))
        )
        await kernel.navigate_to("/b")

        assert recorder.index("a", "unmount") < recorder.calls.index(("listener", "http://localhost/b"))


class TestSerialization:
    """Test that passes never overlap."""

    @pytest.mark.asyncio
    async def test_queued_triggers_collapse_into_one_pass(self, kernel, recorder, settle):
        gate = asyncio.Event()
        kernel.register_unit("slow", recorder.loader("slow", gates={"mount": gate}), "/")
        first = kernel.start()
        await settle(lambda: recorder.count("slow", "mount") == 1)

        passes_before = kernel.orchestrator.get_stats()["passes"]
        queued = [kernel.trigger_change() for _ in range(3)]
        assert kernel.orchestrator.waiting_count == 3

        gate.set()
        results = await asyncio.gather(first, *queued)

        assert kernel.orchestrator.get_stats()["passes"] == passes_before + 1
        assert results == [["slow"]] * 4
        assert recorder.count("slow", "mount") == 1

    @pytest.mark.asyncio
    async def test_at_most_one_pass_in_flight(self, kernel, recorder):
        depth = {"now": 0, "max": 0}

        def enter(event, detail):
            depth["now"] += 1
            depth["max"] = max(depth["max"], depth["now"])

        def leave(event, detail):
            depth["now"] -= 1

        kernel.subscribe(RoutingEvent.BEFORE_ROUTING, enter)
        kernel.subscribe(RoutingEvent.ROUTING, leave)
        for path in ("/a", "/b", "/c"):
            kernel.register_unit(path.strip("/"), recorder.loader(path), path)
        await kernel.start()

        for path in ("/a", "/b", "/c", "/a", "/c"):
            kernel.navigate_to(path)
        await kernel.trigger_change()

        assert depth == {"now": 0, "max": 1}
        assert kernel.get_mounted_units() == ["c"]

    @pytest.mark.asyncio
    async def test_change_underway_flag(self, kernel, recorder):
        kernel.register_unit("a", recorder.loader("a"), "/")
        pending = kernel.start()
        assert kernel.orchestrator.change_underway

        await pending
        await asyncio.sleep(0)
        assert not kernel.orchestrator.change_underway


class TestCancellation:
    """Test cancel_navigation from before-routing-event listeners."""

    @pytest.mark.asyncio
    async def test_cancel_leaves_statuses_and_restores_url(self, kernel, recorder):
        kernel.register_unit("home", recorder.loader("home"), lambda location: location.path == "/")
        kernel.register_unit("settings", recorder.loader("settings"), "/settings")
        await kernel.start()
        before = {name: kernel.get_unit_status(name) for name in kernel.get_unit_names()}

        cancelled = []

        def cancel_once(event, detail):
            if not cancelled:
                cancelled.append(True)
                detail.cancel_navigation()

        kernel.subscribe(RoutingEvent.BEFORE_ROUTING, cancel_once)
        seen = record_events(kernel)

        result = await kernel.navigate_to("/settings")

        assert result == ["home"]
        assert kernel.navigation.href == "http://localhost/"
        assert {name: kernel.get_unit_status(name) for name in kernel.get_unit_names()} == before
        assert recorder.count("settings", "load") == 0
        routed = next(detail for name, detail in seen if name == "routing-event")
        assert routed.navigation_is_cancelled is True

        await kernel.trigger_change()
        assert kernel.get_mounted_units() == ["home"]
        assert kernel.orchestrator.get_stats()["cancelled_passes"] == 1


class TestFailureIsolation:
    """Test that one broken unit never disturbs the others."""

    @pytest.mark.asyncio
    async def test_failed_mount_quarantines_only_that_unit(self, kernel, recorder):
        errors = []
        kernel.add_error_handler(errors.append)
        kernel.register_unit("broken", recorder.loader("broken", fail=["mount"]), "/")
        kernel.register_unit("ok", recorder.loader("ok"), "/")

        result = await kernel.start()

        assert result == ["ok"]
        assert kernel.get_unit_status("broken") == UnitStatus.SKIP_BECAUSE_BROKEN
        assert recorder.count("broken", "unmount") == 1
        assert [error.unit_name for error in errors] == ["broken"]

        await kernel.navigate_to("/elsewhere")
        await kernel.trigger_change()

        assert recorder.phases("broken") == ["load", "bootstrap", "mount", "unmount"]

    @pytest.mark.asyncio
    async def test_load_error_retried_after_backoff(self, kernel, recorder, clock):
        attempts = []

        async def flaky(props):
            attempts.append(True)
            if len(attempts) == 1:
                raise ConnectionError("network down")
            return recorder.bundle("flaky")

        kernel.register_unit("flaky", flaky, "/")
        await kernel.start()
        assert kernel.get_unit_status("flaky") == UnitStatus.LOAD_ERROR

        await kernel.trigger_change()
        clock.advance(199)
        await kernel.trigger_change()
        assert len(attempts) == 1

        clock.advance(1)
        assert await kernel.trigger_change() == ["flaky"]
        assert len(attempts) == 2

    @pytest.mark.asyncio
    async def test_throwing_predicate_does_not_fail_pass(self, kernel, recorder):
        def broken(location):
            raise RuntimeError("predicate bug")

        kernel.register_unit("bad", recorder.loader("bad"), broken)
        kernel.register_unit("good", recorder.loader("good"), "/")

        assert await kernel.start() == ["good"]
        assert kernel.get_unit_status("bad") == UnitStatus.SKIP_BECAUSE_BROKEN


class TestStatusEdges:
    """Test that statuses only ever follow the documented edges."""

    @pytest.mark.asyncio
    async def test_full_cycle_with_failures(self, kernel, recorder, clock):
        attempts = []

        async def flaky(props):
            attempts.append(True)
            if len(attempts) == 1:
                raise ConnectionError("network down")
            return recorder.bundle("flaky")

        def at_root(location):
            return location.path == "/"

        steady = traced(kernel, "steady", recorder.loader("steady"), at_root)
        broken = traced(kernel, "broken", recorder.loader("broken", fail=["mount"]), at_root)
        retried = traced(kernel, "flaky", flaky, at_root)

        await kernel.start()
        clock.advance(200)
        assert await kernel.trigger_change() == ["steady", "flaky"]

        waiting = kernel.unload_unit("steady", wait_for_unmount=True)
        await kernel.navigate_to("/elsewhere")
        assert waiting.done()
        await kernel.unload_unit("flaky")

        for unit in (steady, broken, retried):
            illegal = [
                (old.value, new.value)
                for old, new in unit.transitions
                if new != S.SKIP_BECAUSE_BROKEN and (old, new) not in ALLOWED_EDGES
            ]
            assert illegal == [], unit.name

        assert steady.transitions[-1] == (S.UNLOADING, S.NOT_LOADED)
        assert retried.status == S.NOT_LOADED
        assert (S.LOADING, S.LOAD_ERROR) in retried.transitions
        assert (S.LOAD_ERROR, S.LOADING) in retried.transitions
        assert broken.transitions == [
            (S.NOT_LOADED, S.LOADING),
            (S.LOADING, S.NOT_BOOTSTRAPPED),
            (S.NOT_BOOTSTRAPPED, S.BOOTSTRAPPING),
            (S.BOOTSTRAPPING, S.NOT_MOUNTED),
            (S.NOT_MOUNTED, S.MOUNTING),
            (S.MOUNTING, S.MOUNTED),
            (S.MOUNTED, S.UNMOUNTING),
            (S.UNMOUNTING, S.NOT_MOUNTED),
            (S.NOT_MOUNTED, S.SKIP_BECAUSE_BROKEN),
        ]
