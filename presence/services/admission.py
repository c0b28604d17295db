"""
ForbiddenState - Process-wide admission gate raised when the network throttles us.

States:
- ALLOWED: Requests may start
- FORBIDDEN: Requests are refused until the retry-after period elapses

Transitions:
- ALLOWED → FORBIDDEN: A network response reports "forbidden"
- FORBIDDEN → ALLOWED: Retry-after elapsed, or manual reset

A retry-after of 0 keeps the gate closed until reset() is called.
"""

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from loguru import logger


@dataclass(frozen=True)
class ForbiddenStatus:
    """Consistent snapshot of the admission gate."""

    is_forbidden: bool
    retry_after_ms: int = 0
    forbidden_at: datetime | None = None


ALLOWED = ForbiddenStatus(is_forbidden=False)


class ForbiddenState:
    """
    Shared admission state for all requests of a subscription.

    Usage:
        state = ForbiddenState()

        status = state.read()
        if status.is_forbidden:
            fail(retry_after=status.retry_after_ms)

        # network said 403, retry in 30s
        state.escalate(30_000)
    """

    def __init__(self, name: str = "presence"):
        self.name = name
        self._forbidden = False
        self._retry_after = timedelta(0)
        self._forbidden_at: datetime | None = None
        self._lock = threading.Lock()

    def read(self) -> ForbiddenStatus:
        """Return the current state as an immutable snapshot."""
        with self._lock:
            if not self._forbidden:
                return ALLOWED

            if self._retry_after <= timedelta(0) or self._forbidden_at is None:
                return ForbiddenStatus(
                    is_forbidden=True, retry_after_ms=0, forbidden_at=self._forbidden_at
                )

            remaining = self._forbidden_at + self._retry_after - datetime.now()
            if remaining <= timedelta(0):
                self._clear()
                logger.info(f"Admission gate '{self.name}' reopened (retry-after elapsed)")
                return ALLOWED

            return ForbiddenStatus(
                is_forbidden=True,
                retry_after_ms=int(remaining.total_seconds() * 1000),
                forbidden_at=self._forbidden_at,
            )

    def escalate(self, retry_after_ms: int) -> None:
        """Close the gate for retry_after_ms milliseconds."""
        self.set_forbidden(True, retry_after_ms)

    def set_forbidden(self, forbidden: bool, retry_after_ms: int = 0) -> None:
        """Set the gate state and its retry-after atomically."""
        with self._lock:
            if not forbidden:
                self._clear()
                logger.info(f"Admission gate '{self.name}' reopened")
                return

            self._forbidden = True
            self._retry_after = timedelta(milliseconds=max(0, retry_after_ms))
            self._forbidden_at = datetime.now()
        logger.warning(
            f"Admission gate '{self.name}' FORBIDDEN, retry after {retry_after_ms}ms"
        )

    def reset(self) -> None:
        """Manually reopen the gate."""
        self.set_forbidden(False)

    def _clear(self) -> None:
        self._forbidden = False
        self._retry_after = timedelta(0)
        self._forbidden_at = None

    def get_status(self) -> dict[str, Any]:
        """Get current status as dictionary."""
        status = self.read()
        return {
            "name": self.name,
            "forbidden": status.is_forbidden,
            "retry_after_ms": status.retry_after_ms,
            "forbidden_at": (
                status.forbidden_at.isoformat() if status.forbidden_at else None
            ),
        }
