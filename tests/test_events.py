from tracker.events import (
    BUDGET_ALERT,
    RECORD_CHANGED,
    EventBus,
    check_budget_handler,
    register_default_handlers,
)


def test_event_bus_subscribe_publish():
    bus = EventBus()
    results = []

    def handler(event, payload):
        results.append((event.name, payload))
        return {"handled": True}

    bus.subscribe(RECORD_CHANGED, handler)
    assert bus.publish(RECORD_CHANGED, {"total": 10}) == [{"handled": True}]
    assert results == [(RECORD_CHANGED, {"total": 10})]

    bus.unsubscribe(RECORD_CHANGED, handler)
    assert bus.publish(RECORD_CHANGED, {"total": 10}) == []
    assert bus.publish(BUDGET_ALERT, {}) == []


def test_check_budget_handler():
    over = check_budget_handler(None, {"budget": 1000, "total": 1250, "remaining": -250})
    assert over["over_budget"] == 250
    assert "1,250.00" in over["alert"]

    assert check_budget_handler(None, {"budget": 1000, "total": 1000, "remaining": 0}) == {}
    assert check_budget_handler(None, {"budget": 0, "total": 50, "remaining": -50}) == {}


def test_default_handlers():
    bus = EventBus()
    register_default_handlers(bus)
    results = bus.publish(RECORD_CHANGED, {"budget": 100, "total": 150, "remaining": -50})
    assert results[0]["over_budget"] == 50
