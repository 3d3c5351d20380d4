"""
Event bus tests - delivery, wildcard subscriptions and handler isolation.
"""

import pytest
from unittest.mock import patch

from corpreg.core.events import (
    EventBus,
    LifecycleEvent,
    event_bus,
    publish,
    subscribe,
    unsubscribe,
    REGISTRATION_UPDATED,
    ADMIN_ACTION_COMPLETED,
)


@pytest.fixture
def bus():
    return EventBus()


class TestEventBus:

    def test_publish_reaches_type_subscribers(self, bus):
        received = []
        bus.subscribe(REGISTRATION_UPDATED, received.append)
        delivered = bus.publish(REGISTRATION_UPDATED, {"registrationId": "reg-1", "eventKind": "created"})

        assert delivered == 1
        assert len(received) == 1
        event = received[0]
        assert isinstance(event, LifecycleEvent)
        assert event.registration_id == "reg-1"
        assert event.event_kind == "created"

    def test_other_types_not_delivered(self, bus):
        received = []
        bus.subscribe(ADMIN_ACTION_COMPLETED, received.append)
        assert bus.publish(REGISTRATION_UPDATED, {"registrationId": "reg-1"}) == 0
        assert received == []

    def test_wildcard_receives_everything(self, bus):
        received = []
        bus.subscribe("*", received.append)
        bus.publish(REGISTRATION_UPDATED, {"registrationId": "reg-1"})
        bus.publish(ADMIN_ACTION_COMPLETED, {"registrationId": "reg-2", "action": "approve-payment"})
        assert [e.event_type for e in received] == [REGISTRATION_UPDATED, ADMIN_ACTION_COMPLETED]
        assert received[1].extra == {"action": "approve-payment"}

    def test_event_kind_defaults_to_type(self, bus):
        received = []
        bus.subscribe(REGISTRATION_UPDATED, received.append)
        bus.publish(REGISTRATION_UPDATED, {"registrationId": "reg-1"})
        assert received[0].event_kind == REGISTRATION_UPDATED
        assert received[0].to_payload() == {"registrationId": "reg-1", "eventKind": REGISTRATION_UPDATED}

    def test_missing_registration_id(self, bus):
        with pytest.raises(ValueError, match="registrationId"):
            bus.publish(REGISTRATION_UPDATED, {"eventKind": "created"})

    def test_failing_handler_isolated(self, bus):
        received = []

        def broken(event):
            raise RuntimeError("view crashed")

        bus.subscribe(REGISTRATION_UPDATED, broken)
        bus.subscribe(REGISTRATION_UPDATED, received.append)

        with patch("corpreg.core.events.logger") as mock_logger:
            delivered = bus.publish(REGISTRATION_UPDATED, {"registrationId": "reg-1"})

        assert delivered == 1
        assert len(received) == 1
        mock_logger.warning.assert_called_once()
        mock_logger.log_event_dispatch.assert_called_once_with(REGISTRATION_UPDATED, "reg-1", 1, 1)

    def test_unsubscribe(self, bus):
        received = []
        subscription = bus.subscribe(REGISTRATION_UPDATED, received.append)
        assert bus.unsubscribe(subscription) is True
        assert bus.unsubscribe(subscription) is False
        bus.publish(REGISTRATION_UPDATED, {"registrationId": "reg-1"})
        assert received == []
        assert bus.subscriber_count() == 0

    def test_handler_may_unsubscribe_during_dispatch(self, bus):
        calls = []
        holder = {}

        def once(event):
            calls.append(event)
            bus.unsubscribe(holder["sub"])

        holder["sub"] = bus.subscribe(REGISTRATION_UPDATED, once)
        bus.publish(REGISTRATION_UPDATED, {"registrationId": "reg-1"})
        bus.publish(REGISTRATION_UPDATED, {"registrationId": "reg-1"})
        assert len(calls) == 1

    def test_subscribe_requires_callable(self, bus):
        with pytest.raises(ValueError, match="callable"):
            bus.subscribe(REGISTRATION_UPDATED, "not_callable")


class TestGlobalBus:

    def test_module_functions_use_global_bus(self):
        received = []
        subscription = subscribe(REGISTRATION_UPDATED, received.append)
        assert event_bus.subscriber_count(REGISTRATION_UPDATED) == 1

        assert publish(REGISTRATION_UPDATED, {"registrationId": "reg-9"}) == 1
        assert received[0].registration_id == "reg-9"

        unsubscribe(subscription)
        assert event_bus.subscriber_count(REGISTRATION_UPDATED) == 0
