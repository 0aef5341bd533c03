"""
Navigation
==========

The condition source: holds the current location, applies navigation
requests and tells subscribers when the location changes.

Units can also register ``popstate``/``hashchange`` listeners here. Those
are captured rather than called directly; the orchestrator replays them
once the units that should no longer be active have been torn down.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urljoin, urlsplit, urlunsplit

from switchyard.errors import NavigationError

logger = logging.getLogger(__name__)

ROUTING_EVENT_TYPES = ("hashchange", "popstate")


@dataclass(frozen=True)
class Location:
    """A parsed URL."""
    href: str
    scheme: str = ""
    netloc: str = ""
    path: str = "/"
    query: str = ""
    fragment: str = ""

    @classmethod
    def parse(cls, href: str) -> Location:
        parts = urlsplit(href)
        return cls(
            href=href,
            scheme=parts.scheme,
            netloc=parts.netloc,
            path=parts.path or "/",
            query=parts.query,
            fragment=parts.fragment,
        )

    @property
    def origin(self) -> str:
        if not self.netloc:
            return ""
        return f"{self.scheme}://{self.netloc}"

    @property
    def route(self) -> str:
        """Path plus fragment, without origin or query."""
        if self.fragment:
            return f"{self.path}#{self.fragment}"
        return self.path

    def with_fragment(self, fragment: str) -> str:
        return urlunsplit((self.scheme, self.netloc, self.path, self.query, fragment))


@dataclass
class NavigationEvent:
    """What changed the location."""
    type: str                      # popstate | hashchange
    url: str
    state: Any = None
    trigger: Optional[str] = None  # push_state | replace_state, None when external


ChangeListener = Callable[[NavigationEvent], Any]
RouteListener = Callable[[NavigationEvent], Any]


class NavigationSource:
    """Current location plus change notification."""

    def __init__(self, initial_url: str = "http://localhost/", url_reroute_only: bool = False):
        self._href = initial_url
        self._state: Any = None
        self.url_reroute_only = url_reroute_only

        self._subscribers: List[ChangeListener] = []
        self._captured: Dict[str, List[RouteListener]] = {t: [] for t in ROUTING_EVENT_TYPES}

    @property
    def href(self) -> str:
        return self._href

    @property
    def state(self) -> Any:
        return self._state

    @property
    def location(self) -> Location:
        return Location.parse(self._href)

    # ─────────────────────────────────────────────────────────────
    # Subscribers (the orchestrator)
    # ─────────────────────────────────────────────────────────────

    def subscribe(self, listener: ChangeListener) -> None:
        self._subscribers.append(listener)

    def unsubscribe(self, listener: ChangeListener) -> bool:
        if listener in self._subscribers:
            self._subscribers.remove(listener)
            return True
        return False

    def _notify(self, event: NavigationEvent) -> None:
        logger.debug(f"Navigation {event.type} -> {event.url} ({event.trigger or 'external'})")
        for listener in list(self._subscribers):
            listener(event)

    # ─────────────────────────────────────────────────────────────
    # Location changes
    # ─────────────────────────────────────────────────────────────

    def push_state(self, url: str, state: Any = None) -> None:
        self._update_state(url, state, "push_state")

    def replace_state(self, url: str, state: Any = None) -> None:
        self._update_state(url, state, "replace_state")

    def _update_state(self, url: str, state: Any, trigger: str) -> None:
        before = self._href
        self._href = urljoin(before, url)
        self._state = state
        if not self.url_reroute_only or before != self._href:
            self._notify(NavigationEvent("popstate", self._href, state, trigger))

    def pop_state(self, url: str, state: Any = None) -> None:
        """External history traversal (back/forward)."""
        self._href = urljoin(self._href, url)
        self._state = state
        self._notify(NavigationEvent("popstate", self._href, state))

    def set_hash(self, fragment: str) -> None:
        fragment = fragment[1:] if fragment.startswith("#") else fragment
        new_href = self.location.with_fragment(fragment)
        if new_href == self._href:
            return
        self._href = new_href
        self._notify(NavigationEvent("hashchange", self._href, self._state))

    def navigate_to(self, url: str) -> None:
        """
        Move to ``url``.

        A ``#fragment`` target, or one with the same path and query,
        only changes the fragment. A target on another host is rejected.
        """
        if not isinstance(url, str) or not url:
            raise NavigationError("navigate_to must be called with a non-empty url string")

        if url.startswith("#"):
            self.set_hash(url)
            return

        current = self.location
        destination = Location.parse(urljoin(self._href, url))
        if destination.href == self._href:
            return
        if destination.netloc and destination.netloc != current.netloc:
            raise NavigationError(
                f"Cannot navigate to {url}: host differs from {current.netloc or 'current location'}"
            )
        if destination.path == current.path and destination.query == current.query:
            self.set_hash(destination.fragment)
        else:
            self.push_state(destination.href)

    # ─────────────────────────────────────────────────────────────
    # Captured route listeners
    # ─────────────────────────────────────────────────────────────

    def add_route_listener(self, event_type: str, listener: RouteListener) -> None:
        if event_type not in ROUTING_EVENT_TYPES:
            raise ValueError(f"Unsupported routing event type: {event_type}")
        if listener not in self._captured[event_type]:
            self._captured[event_type].append(listener)

    def remove_route_listener(self, event_type: str, listener: RouteListener) -> bool:
        listeners = self._captured.get(event_type, [])
        if listener in listeners:
            listeners.remove(listener)
            return True
        return False

    def call_captured_listeners(self, event: Optional[NavigationEvent]) -> None:
        if event is None or event.type not in ROUTING_EVENT_TYPES:
            return
        for listener in list(self._captured[event.type]):
            try:
                listener(event)
            except Exception:
                logger.exception(f"Captured {event.type} listener failed")
