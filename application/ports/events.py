"""
Event publisher port.

Called after a unit of work commits with the domain events it produced;
delivery and ordering to consumers (admin dashboards, badges) is the
adapter's concern. Publishing must never undo a committed transition.
"""
from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class EventPublisher(Protocol):
    async def publish(self, event: Any) -> None: ...


class NullEventPublisher:
    """Publisher used when no realtime sink is configured (CLI, Celery workers)."""

    async def publish(self, event: Any) -> None:
        return None


__all__ = ["EventPublisher", "NullEventPublisher"]
