# Overview: Best-effort post-commit event fan-out (stock updated, low stock, order status changed).

"""
Notification sink.

Services queue events while their transaction is open. Queued events are
dispatched only after the transaction commits and are discarded on rollback,
so a sink never sees an event for work that did not happen. Delivery is
best-effort: a failing sink is logged and skipped, and never affects the
committed work.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from flask import current_app

from ..extensions import db
from retailops.time_utils import utcnow, to_utc_z


EVENT_STOCK_UPDATED = "stock.updated"
EVENT_STOCK_LOW = "stock.low"
EVENT_ORDER_STATUS_CHANGED = "order.status_changed"
EVENT_SALE_COMPLETED = "sale.completed"

_PENDING_KEY = "pending_notifications"


@dataclass(frozen=True)
class NotificationEvent:
    event_type: str
    payload: dict[str, Any]
    occurred_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "event_type": self.event_type,
            "payload": self.payload,
            "occurred_at": to_utc_z(self.occurred_at),
        }


Sink = Callable[[NotificationEvent], None]

_sinks: list[Sink] = []


def register_sink(sink: Sink) -> Sink:
    """Register a callable that receives every dispatched event. Usable as a decorator."""
    if sink not in _sinks:
        _sinks.append(sink)
    return sink


def unregister_sink(sink: Sink) -> None:
    if sink in _sinks:
        _sinks.remove(sink)


def _pending() -> list[NotificationEvent]:
    return db.session.info.setdefault(_PENDING_KEY, [])


def queue_event(event_type: str, payload: dict[str, Any]) -> NotificationEvent:
    """Queue an event for dispatch after the current transaction commits."""
    event = NotificationEvent(event_type=event_type, payload=payload)
    _pending().append(event)
    return event


def discard_pending() -> None:
    db.session.info.pop(_PENDING_KEY, None)


def dispatch_pending() -> int:
    """
    Deliver queued events to every registered sink.

    Returns the number of events dispatched. Sink exceptions are logged.
    """
    events = db.session.info.pop(_PENDING_KEY, [])
    if not events:
        return 0

    if not current_app.config.get("NOTIFICATIONS_ENABLED", True):
        return 0

    logger = current_app.logger
    for event in events:
        logger.info("notification %s %s", event.event_type, event.payload)
        for sink in list(_sinks):
            try:
                sink(event)
            except Exception:
                logger.warning(
                    "Notification sink %r failed for %s",
                    getattr(sink, "__name__", sink),
                    event.event_type,
                    exc_info=True,
                )
    return len(events)
