"""Switchyard data models."""

from switchyard.models.timeouts import LIFECYCLE_PHASES, PhaseTimeout, TimeoutPolicy
from switchyard.models.unit import HookBundle, Unit, UnitKind, UnitStatus
from switchyard.models.events import RoutingEvent, RoutingEventDetail

__all__ = [
    "LIFECYCLE_PHASES", "PhaseTimeout", "TimeoutPolicy",
    "HookBundle", "Unit", "UnitKind", "UnitStatus",
    "RoutingEvent", "RoutingEventDetail",
]
