"""
Fragments
=========

Nested units mounted imperatively by another unit (or by the host).

A fragment never enters the registry and is never classified. Its owner
keeps a handle in ``owner.children`` so that unmounting the owner first
unmounts every fragment it still holds.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Dict, Optional

from switchyard.errors import InvalidStatusError, RegistrationError
from switchyard.lifecycles import to_bootstrap, to_load, to_mount, to_unmount, to_update
from switchyard.models.unit import Unit, UnitKind, UnitStatus

if TYPE_CHECKING:
    from switchyard.context import KernelContext

logger = logging.getLogger(__name__)


def _always_active(location: Any) -> bool:
    return True


def as_loader(config: Any, label: str = "A fragment config"):
    """A bundle becomes a loader resolving to it; a callable is used as is."""
    if isinstance(config, Mapping) or hasattr(config, "mount"):
        async def load_bundle(props: Dict[str, Any]) -> Any:
            return config
        return load_bundle
    if callable(config):
        return config
    raise RegistrationError(f"{label} must be a hook bundle or a loading function")


def _config_name(config: Any) -> Optional[str]:
    if isinstance(config, Mapping):
        return config.get("name")
    return getattr(config, "name", None) if hasattr(config, "mount") else None


class Fragment:
    """Control handle for one mounted fragment."""

    def __init__(self, ctx: "KernelContext", unit: Unit, fragment_id: str, owner: Optional[Unit]):
        self._ctx = ctx
        self.unit = unit
        self.id = fragment_id
        self.owner = owner

        loop = asyncio.get_running_loop()
        self.mounted: asyncio.Future = loop.create_future()
        self.unmounted: asyncio.Future = loop.create_future()

    @property
    def name(self) -> str:
        return self.unit.name

    @property
    def status(self) -> UnitStatus:
        return self.unit.status

    async def start(self) -> None:
        """Load, bootstrap and mount. Raises the annotated error on failure."""
        ctx = self._ctx
        try:
            await to_load(ctx, self.unit, hard_fail=True)
            if self.unit.status != UnitStatus.NOT_BOOTSTRAPPED:
                raise InvalidStatusError(
                    f"fragment '{self.name}' could not be loaded (status {self.unit.status.value})"
                )
            await to_bootstrap(ctx, self.unit, hard_fail=True)
            await to_mount(ctx, self.unit, hard_fail=True)
        except BaseException:
            self._detach()
            self.mounted.cancel()
            self.unmounted.cancel()
            raise

        self.mounted.set_result(None)
        logger.debug(f"Mounted fragment {self.id} ({self.name})")

    async def mount(self) -> None:
        """Mount again after an unmount."""
        if self.unit.status != UnitStatus.NOT_MOUNTED:
            raise InvalidStatusError(
                f"Cannot mount fragment '{self.name}' because it is {self.unit.status.value}"
            )
        self._attach()
        if self.unmounted.done():
            self.unmounted = asyncio.get_running_loop().create_future()
        try:
            await to_mount(self._ctx, self.unit, hard_fail=True)
        except BaseException:
            self._detach()
            raise
        if not self.mounted.done():
            self.mounted.set_result(None)

    async def unmount(self) -> None:
        if self.unit.status != UnitStatus.MOUNTED:
            raise InvalidStatusError(
                f"Cannot unmount fragment '{self.name}' because it is {self.unit.status.value}"
            )
        await self.unmount_from_owner()

    async def unmount_from_owner(self) -> None:
        """Unmount once any in-flight mount has settled. Used by the owner's unmount."""
        if not self.mounted.done():
            await asyncio.wait({self.mounted})
        if self.unit.status != UnitStatus.MOUNTED:
            raise InvalidStatusError(
                f"Cannot unmount fragment '{self.name}' because it is {self.unit.status.value}"
            )
        try:
            await to_unmount(self._ctx, self.unit, hard_fail=True)
        finally:
            self._detach()
        self.mounted = asyncio.get_running_loop().create_future()
        if not self.unmounted.done():
            self.unmounted.set_result(None)
        logger.debug(f"Unmounted fragment {self.id} ({self.name})")

    async def update(self, custom_props: Optional[Dict[str, Any]] = None) -> None:
        if custom_props is not None:
            self.unit.custom_props = custom_props
        await to_update(self._ctx, self.unit)

    def _attach(self) -> None:
        if self.owner is not None:
            self.owner.children[self.id] = self

    def _detach(self) -> None:
        if self.owner is not None:
            self.owner.children.pop(self.id, None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status.value,
            "owner": self.owner.name if self.owner is not None else None,
        }


def create_fragment(
    ctx: "KernelContext",
    config: Any,
    custom_props: Optional[Dict[str, Any]] = None,
    owner: Optional[Unit] = None,
) -> Fragment:
    """Build the fragment unit and its handle without starting it."""
    if custom_props is not None and not isinstance(custom_props, Mapping):
        raise RegistrationError("Fragment custom_props must be a mapping")

    loader = as_loader(config)
    fragment_id = ctx.next_fragment_id()
    unit = Unit(
        name=_config_name(config) or fragment_id,
        load_fn=loader,
        active_when=_always_active,
        custom_props=dict(custom_props or {}),
        kind=UnitKind.FRAGMENT,
        timeouts=ctx.config.timeouts,
        owner=owner,
    )
    fragment = Fragment(ctx, unit, fragment_id, owner)
    unit.unmount_self = fragment.unmount
    fragment._attach()
    return fragment


async def mount_fragment(
    ctx: "KernelContext",
    config: Any,
    custom_props: Optional[Dict[str, Any]] = None,
    owner: Optional[Unit] = None,
) -> Fragment:
    """
    Create, load, bootstrap and mount a fragment.

    ``config`` is a hook bundle (mapping or object exposing ``mount``) or a
    loading function returning an awaitable of one. Errors propagate to
    the caller; the fragment is then quarantined and detached from its
    owner.
    """
    fragment = create_fragment(ctx, config, custom_props, owner)
    await fragment.start()
    return fragment
