"""
Switchyard
==========

Lifecycle orchestration for independently loaded units whose activity
depends on the current navigation location.

Architecture:
    Registry     - Registered units and explicit unload requests
    Classifier   - Splits units into unload/unmount/load/mount buckets
    Lifecycles   - Per-unit status transitions under timeout supervision
    Orchestrator - Serialized reconciliation passes

Every location change runs one pass: units that should no longer be
active are torn down, then units that should be active are stood up.
A unit whose hooks fail is quarantined without disturbing the others.
"""

from switchyard.models.timeouts import PhaseTimeout, TimeoutPolicy
from switchyard.models.unit import HookBundle, Unit, UnitKind, UnitStatus
from switchyard.models.events import RoutingEvent, RoutingEventDetail

from switchyard.errors import (
    SwitchyardError, UnitError, HookTimeoutError, BundleValidationError,
    RegistrationError, TimeoutConfigError, NavigationError, ErrorKind,
)
from switchyard.config import KernelConfig, configure_logging
from switchyard.activity import path_to_active_when
from switchyard.navigation import Location, NavigationEvent, NavigationSource
from switchyard.orchestrator import Orchestrator
from switchyard.fragments import Fragment
from switchyard.kernel import Kernel

__all__ = [
    # Models
    "PhaseTimeout", "TimeoutPolicy",
    "HookBundle", "Unit", "UnitKind", "UnitStatus",
    "RoutingEvent", "RoutingEventDetail",
    # Errors
    "SwitchyardError", "UnitError", "HookTimeoutError", "BundleValidationError",
    "RegistrationError", "TimeoutConfigError", "NavigationError", "ErrorKind",
    # Core
    "KernelConfig", "configure_logging",
    "path_to_active_when",
    "Location", "NavigationEvent", "NavigationSource",
    "Orchestrator",
    "Fragment",
    "Kernel",
]

__version__ = "0.1.0"
