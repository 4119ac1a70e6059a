"""Event sink protocol — receiver of lending events."""
from typing import Protocol

from ..events import LendingEvent


class EventSink(Protocol):
    """Abstract interface for publishing typed lending events."""

    async def publish(self, event: LendingEvent) -> None: ...
