"""
Process-wide publish/subscribe bus for billing events.

One EventBus is created at application startup and closed at shutdown.
Publishing schedules delivery as a background task and returns at once,
so a slow email never holds up the billing write that triggered it.
Handlers of one event run in subscription order; a failing handler is
logged and never breaks the publisher or the remaining handlers. Closing
the bus waits for deliveries still in flight.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional, Set

from app.models.bill import Bill, utcnow

logger = logging.getLogger(__name__)

BILL_CREATED = "bill.created"
BILL_PAID = "bill.paid"
BILL_OVERDUE = "bill.overdue"
BILL_VOIDED = "bill.voided"
BILL_FEE_APPLIED = "bill.fee_applied"


@dataclass(frozen=True)
class BillEvent:
    type: str
    bill: Bill
    occurred_at: datetime = field(default_factory=utcnow)


Handler = Callable[[BillEvent], Awaitable[None]]


class EventBus:
    def __init__(self):
        self._handlers: Dict[str, List[Handler]] = {}
        self._pending: Set[asyncio.Task] = set()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, event_type: str, handler: Handler) -> Callable[[], None]:
        """Register a handler; returns a callable that unsubscribes it."""
        if self._closed:
            raise RuntimeError("EventBus is closed")
        self._handlers.setdefault(event_type, []).append(handler)
        return lambda: self.unsubscribe(event_type, handler)

    def unsubscribe(self, event_type: str, handler: Handler) -> None:
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def handler_count(self, event_type: Optional[str] = None) -> int:
        if event_type is not None:
            return len(self._handlers.get(event_type, []))
        return sum(len(h) for h in self._handlers.values())

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def publish(self, event: BillEvent) -> int:
        """Schedule delivery of an event; returns how many handlers it goes to."""
        if self._closed:
            logger.debug(f"Dropping {event.type} for bill {event.bill.bill_id}: bus closed")
            return 0
        handlers = list(self._handlers.get(event.type, []))
        if not handlers:
            return 0
        task = asyncio.create_task(self._deliver(event, handlers), name=f"event-{event.type}")
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return len(handlers)

    async def _deliver(self, event: BillEvent, handlers: List[Handler]) -> None:
        for handler in handlers:
            try:
                await handler(event)
            except Exception as e:
                logger.error(
                    f"Handler {getattr(handler, '__qualname__', handler)} failed for {event.type} "
                    f"on bill {event.bill.bill_id}: {e}",
                    exc_info=True,
                )

    async def drain(self) -> None:
        """Wait until every scheduled delivery has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def close(self) -> None:
        self._closed = True
        await self.drain()
        self._handlers.clear()
