"""
Errors
======

Exception types and the error classifier.

Every unrecoverable failure inside a unit's lifecycle ends up here: it is
annotated with the unit it came from, the unit is moved to its new status
(in practice SKIP_BECAUSE_BROKEN), and the result is either reported to
the registered error handlers or handed back to the caller to raise.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, List, Optional

if TYPE_CHECKING:
    from switchyard.models.unit import Unit, UnitStatus

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    """Classes of failure a unit can suffer."""
    USER = "user"                    # Loader broke its contract
    HOOK = "hook"                    # Lifecycle hook raised
    TIMEOUT = "timeout"              # Hook ran past a fatal deadline
    LOAD = "load"                    # Loader failed, retryable
    ACTIVATION = "activation"        # Activity predicate raised
    ORCHESTRATION = "orchestration"  # Forced unload propagated to caller


class SwitchyardError(Exception):
    """Base class for all switchyard errors."""


class RegistrationError(SwitchyardError, ValueError):
    """Bad registration arguments, duplicate or unknown unit names."""


class TimeoutConfigError(SwitchyardError, ValueError):
    """Invalid timeout policy override."""


class BundleValidationError(SwitchyardError):
    """A loader resolved to something that is not a usable hook bundle."""

    def __init__(self, message: str, code: int = 0):
        super().__init__(message)
        self.code = code


class ContractError(SwitchyardError):
    """A loader or hook did not return an awaitable."""


class InvalidStatusError(SwitchyardError):
    """An operation was requested on a unit in the wrong status."""


class NavigationError(SwitchyardError):
    """Invalid navigation target."""


class HookTimeoutError(SwitchyardError):
    """A lifecycle hook did not settle within its deadline."""

    def __init__(self, unit_name: str, phase: str, millis: int, die_on_timeout: bool):
        super().__init__(
            f"Lifecycle function {phase} for '{unit_name}' "
            f"did not settle within {millis} ms"
        )
        self.unit_name = unit_name
        self.phase = phase
        self.millis = millis
        self.die_on_timeout = die_on_timeout


class UnitError(SwitchyardError):
    """
    An error annotated with the unit that produced it.

    ``status`` is the unit status at the moment of failure, ``phase`` the
    lifecycle phase (when known). The underlying error is ``__cause__``.
    """

    def __init__(
        self,
        message: str,
        unit_name: str,
        unit_kind: str,
        status: str,
        phase: Optional[str] = None,
        kind: ErrorKind = ErrorKind.HOOK,
    ):
        super().__init__(message)
        self.unit_name = unit_name
        self.unit_kind = unit_kind
        self.status = status
        self.phase = phase
        self.kind = kind

    def to_dict(self) -> dict:
        return {
            "message": str(self),
            "unit_name": self.unit_name,
            "unit_kind": self.unit_kind,
            "status": self.status,
            "phase": self.phase,
            "kind": self.kind.value,
            "cause": repr(self.__cause__) if self.__cause__ is not None else None,
        }


def classify(error: Any, default: ErrorKind = ErrorKind.HOOK) -> ErrorKind:
    """Pick the ErrorKind for a raw error."""
    if isinstance(error, UnitError):
        return error.kind
    if isinstance(error, HookTimeoutError):
        return ErrorKind.TIMEOUT
    if isinstance(error, ContractError):
        return ErrorKind.USER
    return default


ErrorHandler = Callable[[UnitError], Any]


class ErrorReporter:
    """
    Turns raw failures into UnitErrors and reports them.

    Owned by the kernel context; there is no process-wide handler list.
    """

    def __init__(self):
        self._handlers: List[ErrorHandler] = []
        self._reported = 0

    def add_handler(self, handler: ErrorHandler) -> None:
        """Register a callable that receives every quarantine decision."""
        if not callable(handler):
            raise TypeError("error handler must be callable")
        self._handlers.append(handler)

    def remove_handler(self, handler: ErrorHandler) -> bool:
        """Remove a handler. Returns whether it was registered."""
        if handler in self._handlers:
            self._handlers.remove(handler)
            return True
        return False

    @property
    def reported_count(self) -> int:
        return self._reported

    def transform(
        self,
        error: Any,
        unit: "Unit",
        new_status: "UnitStatus",
        kind: Optional[ErrorKind] = None,
        phase: Optional[str] = None,
    ) -> UnitError:
        """
        Annotate ``error`` with ``unit`` and move the unit to ``new_status``.

        The caller decides whether to raise the result or report it.
        """
        status = unit.status.value
        if isinstance(error, UnitError) and error.unit_name == unit.name:
            result = error
        else:
            detail = str(error) if isinstance(error, BaseException) else repr(error)
            result = UnitError(
                f"{unit.kind.value} '{unit.name}' died in status {status}: {detail}",
                unit_name=unit.name,
                unit_kind=unit.kind.value,
                status=status,
                phase=phase,
                kind=kind or classify(error),
            )
            if isinstance(error, BaseException):
                result.__cause__ = error

        unit.status = new_status
        logger.debug(f"{unit.name}: {status} -> {new_status.value} ({result.kind.value})")
        return result

    def report(self, error: UnitError) -> None:
        """Send an annotated error to every handler. Never raises."""
        self._reported += 1
        if not self._handlers:
            logger.error(f"Unit quarantined: {error}")
            return

        for handler in list(self._handlers):
            try:
                handler(error)
            except Exception:
                logger.exception(f"Error handler {handler!r} failed")

    def handle(
        self,
        error: Any,
        unit: "Unit",
        new_status: "UnitStatus",
        kind: Optional[ErrorKind] = None,
        phase: Optional[str] = None,
    ) -> None:
        """Transform and report in one step (soft-fail path)."""
        self.report(self.transform(error, unit, new_status, kind=kind, phase=phase))
