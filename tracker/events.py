from datetime import datetime
from typing import Callable, Dict, List, NamedTuple

__all__ = [
    'RECORD_CHANGED', 'BUDGET_ALERT', 'AUTH_STATE_CHANGED',
    'Event', 'EventBus', 'check_budget_handler', 'register_default_handlers',
]


class Event(NamedTuple):
    name: str
    ts: str
    payload: dict


Handler = Callable[[Event, dict], dict]


class EventBus:
    def __init__(self):
        self._subscribers: Dict[str, List[Handler]] = {}

    def subscribe(self, name: str, handler: Handler) -> None:
        self._subscribers.setdefault(name, []).append(handler)

    def publish(self, name: str, payload: dict) -> List[dict]:
        if name not in self._subscribers:
            return []

        event = Event(name=name, ts=datetime.now().isoformat(), payload=payload)
        return [handler(event, payload) for handler in list(self._subscribers[name])]

    def unsubscribe(self, name: str, handler: Handler) -> None:
        if handler in self._subscribers.get(name, []):
            self._subscribers[name].remove(handler)


RECORD_CHANGED = "RECORD_CHANGED"
BUDGET_ALERT = "BUDGET_ALERT"
AUTH_STATE_CHANGED = "AUTH_STATE_CHANGED"


def check_budget_handler(event: Event, payload: dict) -> dict:
    budget = payload.get("budget", 0)
    total = payload.get("total", 0)
    remaining = payload.get("remaining", budget - total)

    if budget > 0 and remaining < 0:
        return {
            "alert": f"Budget exceeded: spent {total:,.2f} of {budget:,.2f} ({-remaining:,.2f} over)",
            "budget": budget,
            "total": total,
            "over_budget": -remaining,
        }
    return {}


def register_default_handlers(bus: EventBus) -> None:
    bus.subscribe(RECORD_CHANGED, check_budget_handler)
