"""Exception taxonomy.

None of these are process-fatal. Store errors are caught at the point of use
inside a turn; delivery errors are isolated per conversation address.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from parley.types import ConversationAddress


class ParleyError(Exception):
    """Base class for all parley errors."""


class StoreError(ParleyError):
    """The backing key-value store failed."""


class StoreReadError(StoreError):
    pass


class StoreWriteError(StoreError):
    pass


class ETagConflictError(StoreWriteError):
    """A versioned write lost the race against another writer."""

    def __init__(self, key: str, expected: str, actual: str | None) -> None:
        super().__init__(f"eTag conflict on {key!r}: expected {expected!r}, found {actual!r}")
        self.key = key
        self.expected = expected
        self.actual = actual


class DeliveryError(ParleyError):
    """The channel adapter could not resume or send to one conversation."""

    def __init__(self, address: ConversationAddress, reason: str) -> None:
        super().__init__(
            f"Delivery to conversation {address.conversation_id!r} failed: {reason}"
        )
        self.address = address
        self.reason = reason


class SchedulingSkipped(ParleyError):  # noqa: N818
    """The target fire time has already passed today; no timer was armed."""

    def __init__(self, delay_seconds: float) -> None:
        super().__init__(f"Alert time already passed ({-delay_seconds:.0f}s ago)")
        self.delay_seconds = delay_seconds
