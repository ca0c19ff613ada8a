from app.schemas.events import PaymentUpdated, RecoveryCompleted
from app.services.events import EventBus


def updated(order_code="ORD-1"):
    return PaymentUpdated(order_code=order_code, old_status="pending", new_status="completed")


class TestEventBus:
    def test_delivers_to_matching_subscribers_only(self):
        bus = EventBus()
        updates, recoveries = [], []
        bus.subscribe("payment_updated", updates.append)
        bus.subscribe("recovery_completed", recoveries.append)

        bus.publish(updated())

        assert len(updates) == 1
        assert recoveries == []

    def test_wildcard_receives_everything(self):
        bus = EventBus()
        seen = []
        bus.subscribe("*", seen.append)

        bus.publish(updated())
        bus.publish(RecoveryCompleted(total=3, recovered=1))

        assert [e.event_type for e in seen] == ["payment_updated", "recovery_completed"]

    def test_failing_subscriber_does_not_block_others(self):
        bus = EventBus()
        seen = []

        def broken(event):
            raise RuntimeError("ui went away")

        bus.subscribe("payment_updated", broken)
        bus.subscribe("payment_updated", seen.append)

        delivered = bus.publish(updated())

        assert delivered == 1
        assert len(seen) == 1

    def test_unsubscribe(self):
        bus = EventBus()
        seen = []
        unsubscribe = bus.subscribe("payment_updated", seen.append)
        unsubscribe()

        assert bus.publish(updated()) == 0
        assert seen == []

    def test_recent_history_is_bounded(self):
        bus = EventBus(history_size=2)
        for i in range(3):
            bus.publish(updated(f"ORD-{i}"))

        assert [e.order_code for e in bus.recent()] == ["ORD-1", "ORD-2"]
