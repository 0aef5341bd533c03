"""
Unit Models
===========

Registrable units, their status machine and the hook bundles their
loaders resolve to.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence, Tuple

from switchyard.errors import BundleValidationError
from switchyard.models.timeouts import TimeoutPolicy

Hook = Callable[[Dict[str, Any]], Awaitable[Any]]
Loader = Callable[[Dict[str, Any]], Awaitable[Any]]

_MISSING = object()


class UnitStatus(str, Enum):
    """Lifecycle states. Transitional states end in -ING."""
    NOT_LOADED = "NOT_LOADED"
    LOADING = "LOADING_SOURCE_CODE"
    LOAD_ERROR = "LOAD_ERROR"
    NOT_BOOTSTRAPPED = "NOT_BOOTSTRAPPED"
    BOOTSTRAPPING = "BOOTSTRAPPING"
    NOT_MOUNTED = "NOT_MOUNTED"
    MOUNTING = "MOUNTING"
    MOUNTED = "MOUNTED"
    UPDATING = "UPDATING"
    UNMOUNTING = "UNMOUNTING"
    UNLOADING = "UNLOADING"
    SKIP_BECAUSE_BROKEN = "SKIP_BECAUSE_BROKEN"


class UnitKind(str, Enum):
    """Top-level application or nested fragment."""
    APPLICATION = "application"
    FRAGMENT = "fragment"


def is_valid_hook(value: Any) -> bool:
    """A hook is a callable or a sequence of callables."""
    if callable(value):
        return True
    if isinstance(value, (list, tuple)):
        return all(callable(item) for item in value)
    return False


def flatten_hooks(value: Any) -> Tuple[Hook, ...]:
    if value is None or value is _MISSING:
        return ()
    if callable(value):
        return (value,)
    return tuple(value)


def _export(exports: Any, key: str) -> Any:
    if isinstance(exports, Mapping):
        return exports.get(key, _MISSING)
    return getattr(exports, key, _MISSING)


@dataclass(frozen=True)
class HookBundle:
    """
    Validated lifecycle hooks for one unit.

    Built once at load time from whatever the loader resolved to (a
    mapping or any object exposing the hooks as attributes). Every phase
    is an ordered tuple of callables run one after another.
    """
    bootstrap: Tuple[Hook, ...] = ()
    mount: Tuple[Hook, ...] = ()
    unmount: Tuple[Hook, ...] = ()
    unload: Tuple[Hook, ...] = ()
    update: Optional[Tuple[Hook, ...]] = None
    timeouts: TimeoutPolicy = field(default_factory=TimeoutPolicy)

    def hooks_for(self, phase: str) -> Sequence[Hook]:
        return getattr(self, phase) or ()

    @property
    def has_update(self) -> bool:
        return self.update is not None

    @classmethod
    def from_exports(cls, exports: Any, defaults: Optional[TimeoutPolicy] = None) -> HookBundle:
        """
        Validate a loader result.

        ``mount`` and ``unmount`` are required. ``bootstrap``, ``unload``
        and ``update`` are optional but must be valid when present.
        Raises BundleValidationError (or TimeoutConfigError for a bad
        ``timeouts`` entry).
        """
        if exports is None or isinstance(exports, (str, bytes, int, float, bool)):
            raise BundleValidationError("does not export anything", code=34)

        bootstrap = _export(exports, "bootstrap")
        if bootstrap is not _MISSING and not is_valid_hook(bootstrap):
            raise BundleValidationError(
                "does not export a valid bootstrap function or list of functions", code=35
            )
        mount = _export(exports, "mount")
        if not is_valid_hook(mount):
            raise BundleValidationError(
                "does not export a mount function or list of functions", code=36
            )
        unmount = _export(exports, "unmount")
        if not is_valid_hook(unmount):
            raise BundleValidationError(
                "does not export an unmount function or list of functions", code=37
            )
        unload = _export(exports, "unload")
        if unload is not _MISSING and not is_valid_hook(unload):
            raise BundleValidationError(
                "does not export a valid unload function or list of functions", code=38
            )
        update = _export(exports, "update")
        if update is not _MISSING and not is_valid_hook(update):
            raise BundleValidationError(
                "does not export a valid update function or list of functions", code=39
            )

        overrides = _export(exports, "timeouts")
        policy = (defaults or TimeoutPolicy()).with_overrides(
            None if overrides is _MISSING else overrides
        )

        return cls(
            bootstrap=flatten_hooks(bootstrap),
            mount=flatten_hooks(mount),
            unmount=flatten_hooks(unmount),
            unload=flatten_hooks(unload),
            update=None if update is _MISSING else flatten_hooks(update),
            timeouts=policy,
        )


@dataclass(eq=False)
class Unit:
    """
    One registrable unit (application) or nested unit (fragment).

    ``status`` is only written by the lifecycle transitions, the error
    reporter and the classifier's predicate guard.
    """
    name: str
    load_fn: Loader
    active_when: Callable[[Any], bool]
    custom_props: Any = field(default_factory=dict)
    kind: UnitKind = UnitKind.APPLICATION

    status: UnitStatus = UnitStatus.NOT_LOADED
    timeouts: TimeoutPolicy = field(default_factory=TimeoutPolicy)
    hooks: Optional[HookBundle] = None
    load_error_time: Optional[float] = None

    # Nested units mounted by this one, keyed by fragment id
    children: Dict[str, Any] = field(default_factory=dict)
    owner: Optional[Unit] = None
    unmount_self: Optional[Callable[[], Awaitable[Any]]] = None

    # Single in-flight load shared by every caller
    pending_load: Optional[asyncio.Future] = field(default=None, repr=False)

    @property
    def is_active(self) -> bool:
        return self.status == UnitStatus.MOUNTED

    @property
    def is_broken(self) -> bool:
        return self.status == UnitStatus.SKIP_BECAUSE_BROKEN

    @property
    def effective_timeouts(self) -> TimeoutPolicy:
        return self.hooks.timeouts if self.hooks is not None else self.timeouts

    def strip_hooks(self) -> None:
        """Drop every hook reference so the next activation reloads."""
        self.hooks = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "kind": self.kind.value,
            "status": self.status.value,
            "load_error_time": self.load_error_time,
            "children": sorted(self.children),
            "owner": self.owner.name if self.owner is not None else None,
            "loaded": self.hooks is not None,
            "timeouts": self.effective_timeouts.to_dict(),
        }
