"""Capture request lifecycle shared by the session and background coordinator.

A CaptureRequest tracks one shutter action:

    IDLE -> REQUESTED -> COMPLETED | FAILED | CANCELLED
    IDLE -> REQUESTED -> AWAITING_LONG_EXPOSURE -> COMPLETED | FAILED | CANCELLED

AWAITING_LONG_EXPOSURE is entered when the camera answers with error
40403 and only left through awaitTakePicture polling. Terminal states are
final; a new shutter action always gets a new request.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType

__all__ = [
    "CaptureRequest",
    "CaptureResult",
    "CaptureState",
    "CaptureStatus",
    "InvalidTransitionError",
]


class CaptureState(Enum):
    IDLE = "idle"
    REQUESTED = "requested"
    AWAITING_LONG_EXPOSURE = "awaiting_long_exposure"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL


_TERMINAL = frozenset(
    {CaptureState.COMPLETED, CaptureState.FAILED, CaptureState.CANCELLED}
)

_TRANSITIONS = MappingProxyType(
    {
        CaptureState.IDLE: frozenset({CaptureState.REQUESTED, CaptureState.CANCELLED}),
        CaptureState.REQUESTED: frozenset(
            {CaptureState.AWAITING_LONG_EXPOSURE} | _TERMINAL
        ),
        CaptureState.AWAITING_LONG_EXPOSURE: _TERMINAL,
    }
)


class CaptureStatus(Enum):
    """Outcome reported to the caller of a capture."""

    COMPLETED = "completed"
    BUSY = "busy"
    CANCELLED = "cancelled"


class InvalidTransitionError(RuntimeError):
    """A capture request was moved along an edge the lifecycle forbids."""

    pass


_request_ids = itertools.count(1)


@dataclass(slots=True)
class CaptureRequest:
    """One in-flight shutter action.

    Attributes:
        request_id: Process-unique id, for logs.
        state: Current lifecycle state.
        history: Every state the request passed through, in order.
    """

    request_id: int = field(default_factory=lambda: next(_request_ids))
    state: CaptureState = CaptureState.IDLE
    history: list[CaptureState] = field(
        default_factory=lambda: [CaptureState.IDLE]
    )

    def advance(self, state: CaptureState) -> None:
        """Move to ``state``.

        Raises:
            InvalidTransitionError: ``state`` is not reachable from the
                current state.
        """
        allowed = _TRANSITIONS.get(self.state, frozenset())
        if state not in allowed:
            raise InvalidTransitionError(
                f"Capture {self.request_id}: {self.state.value} -> {state.value}"
            )
        self.state = state
        self.history.append(state)

    @property
    def done(self) -> bool:
        return self.state.is_terminal


@dataclass(frozen=True, slots=True)
class CaptureResult:
    """What a synchronous capture returns.

    Attributes:
        status: COMPLETED, BUSY or CANCELLED.
        files: Downloaded file paths or postview URLs.
        request: The request that produced this result; None for BUSY.
    """

    status: CaptureStatus
    files: tuple[str, ...] = ()
    request: CaptureRequest | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "status": self.status.value,
            "files": list(self.files),
            "request_id": None if self.request is None else self.request.request_id,
        }
