"""
Switchyard Test Configuration
=============================

pytest configuration with markers and shared fixtures.
"""

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

import pytest

from switchyard.config import KernelConfig
from switchyard.context import KernelContext
from switchyard.fragments import as_loader
from switchyard.kernel import Kernel
from switchyard.models.unit import Unit

logger = logging.getLogger(__name__)

PHASES = ("bootstrap", "mount", "unmount", "unload")


# =============================================================================
# Pytest Markers
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "slow: tests that wait on real hook deadlines")


# =============================================================================
# Helpers
# =============================================================================

class FakeClock:
    """Millisecond clock advanced by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, millis: float) -> None:
        self.now += millis


class HookRecorder:
    """
    Builds hook bundles whose hooks record every call as (unit, phase).

    ``fail`` names phases whose hook raises after recording. ``gates``
    maps a phase to an asyncio.Event the hook waits on before settling.
    """

    def __init__(self):
        self.calls: List[Tuple[str, str]] = []

    def hook(self, name: str, phase: str, fail: bool = False, gate: Optional[asyncio.Event] = None):
        async def run(props: Dict[str, Any]) -> None:
            self.calls.append((name, phase))
            if gate is not None:
                await gate.wait()
            if fail:
                raise RuntimeError(f"{name} {phase} failed")
        return run

    def bundle(
        self,
        name: str,
        fail: Iterable[str] = (),
        gates: Optional[Dict[str, asyncio.Event]] = None,
        update: bool = False,
        timeouts: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        fail = set(fail)
        gates = gates or {}
        phases = PHASES + ("update",) if update else PHASES
        bundle: Dict[str, Any] = {
            phase: self.hook(name, phase, phase in fail, gates.get(phase)) for phase in phases
        }
        if timeouts:
            bundle["timeouts"] = timeouts
        return bundle

    def loader(self, name: str, **kwargs):
        async def load(props: Dict[str, Any]) -> Dict[str, Any]:
            self.calls.append((name, "load"))
            return self.bundle(name, **kwargs)
        return load

    def phases(self, name: str) -> List[str]:
        return [phase for unit, phase in self.calls if unit == name]

    def count(self, name: str, phase: str) -> int:
        return self.calls.count((name, phase))

    def index(self, name: str, phase: str) -> int:
        return self.calls.index((name, phase))


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def recorder():
    return HookRecorder()


@pytest.fixture
def ctx(clock):
    """Bare kernel context for driving lifecycle transitions directly."""
    return KernelContext(clock=clock)


@pytest.fixture
def make_unit(ctx):
    """Register a unit straight into the context registry."""
    def factory(name, load, active_when=None, **kwargs) -> Unit:
        unit = Unit(
            name=name,
            load_fn=as_loader(load),
            active_when=active_when or (lambda location: True),
            timeouts=ctx.config.timeouts,
            **kwargs,
        )
        ctx.registry.add(unit)
        return unit
    return factory


@pytest.fixture
def errors(ctx):
    """Errors reported through the context's reporter."""
    reported = []
    ctx.reporter.add_handler(reported.append)
    return reported


@pytest.fixture
def kernel(clock):
    return Kernel(KernelConfig(), clock=clock)


@pytest.fixture
def kernel_at():
    """Kernel factory starting at a given path."""
    def factory(path: str = "/", **config) -> Kernel:
        return Kernel(KernelConfig(initial_url=f"http://localhost{path}", **config))
    return factory


@pytest.fixture
def settle():
    """Yield to the loop until ``predicate`` holds."""
    async def wait(predicate, attempts: int = 500) -> None:
        for _ in range(attempts):
            if predicate():
                return
            await asyncio.sleep(0)
        raise AssertionError("condition never became true")
    return wait
