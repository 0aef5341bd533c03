"""
Routing Event Models
====================

Names and payloads of the notifications emitted around each pass.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from switchyard.models.unit import UnitStatus


class RoutingEvent(str, Enum):
    """Notification names, in the order a pass emits them."""
    BEFORE_FIRST_MOUNT = "before-first-mount"
    FIRST_MOUNT = "first-mount"
    BEFORE_NO_APP_CHANGE = "before-no-app-change"
    BEFORE_APP_CHANGE = "before-app-change"
    BEFORE_ROUTING = "before-routing-event"
    BEFORE_MOUNT_ROUTING = "before-mount-routing-event"
    NO_APP_CHANGE = "no-app-change"
    APP_CHANGE = "app-change"
    ROUTING = "routing-event"


# Status buckets always present in units_by_new_status
REPORTED_STATUSES = (
    UnitStatus.MOUNTED,
    UnitStatus.NOT_MOUNTED,
    UnitStatus.NOT_LOADED,
    UnitStatus.SKIP_BECAUSE_BROKEN,
)


@dataclass
class RoutingEventDetail:
    """Payload carried by every pass notification."""
    new_unit_statuses: Dict[str, str] = field(default_factory=dict)
    units_by_new_status: Dict[str, List[str]] = field(
        default_factory=lambda: {status.value: [] for status in REPORTED_STATUSES}
    )
    total_unit_changes: int = 0
    original_event: Optional[Any] = None
    old_url: Optional[str] = None
    new_url: Optional[str] = None
    navigation_is_cancelled: bool = False

    # Only set on before-routing-event
    cancel_navigation: Optional[Callable[[], None]] = field(default=None, repr=False)

    def add_unit(self, name: str, status: str) -> None:
        self.new_unit_statuses[name] = status
        self.units_by_new_status.setdefault(status, []).append(name)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "new_unit_statuses": dict(self.new_unit_statuses),
            "units_by_new_status": {k: list(v) for k, v in self.units_by_new_status.items()},
            "total_unit_changes": self.total_unit_changes,
            "old_url": self.old_url,
            "new_url": self.new_url,
            "navigation_is_cancelled": self.navigation_is_cancelled,
        }
