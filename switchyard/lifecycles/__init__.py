"""Lifecycle transitions. Each is a no-op when the unit is not in its precondition status."""

from switchyard.lifecycles.load import to_load
from switchyard.lifecycles.bootstrap import to_bootstrap
from switchyard.lifecycles.unmount import to_unmount
from switchyard.lifecycles.mount import to_mount
from switchyard.lifecycles.unload import to_unload
from switchyard.lifecycles.update import to_update

__all__ = ["to_load", "to_bootstrap", "to_mount", "to_unmount", "to_unload", "to_update"]
