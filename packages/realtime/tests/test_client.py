"""End-to-end tests of the consumer facade over the in-memory transport."""

import pytest

from medsync_realtime import ChangeType, ConnectionStatus, RealtimeClient
from medsync_realtime.config import RealtimeConfig
from medsync_realtime.transport import ChannelStatus

STAFF_ID = "staff-1"
OTHER_STAFF_ID = "staff-2"


@pytest.fixture
def client(transport, timers, config):
    return RealtimeClient(transport, config, call_later=timers)


def test_exposes_status(client, transport):
    assert client.connection_status is ConnectionStatus.DISCONNECTED
    client.on_identity_change(STAFF_ID)
    transport.latest.report(ChannelStatus.SUBSCRIBED)

    assert client.connection_status is ConnectionStatus.CONNECTED
    assert client.is_connected
    assert client.identity == STAFF_ID


def test_shift_subscription_round_trip(client, transport):
    received = []
    unsubscribe = client.subscribe_to_shift_changes(received.append)
    client.on_identity_change(STAFF_ID)
    channel = transport.latest
    channel.report(ChannelStatus.SUBSCRIBED)

    channel.push("shifts", "INSERT", new={"id": "s1", "staff_id": STAFF_ID, "status": "pending"})
    unsubscribe()
    unsubscribe()
    channel.push("shifts", "DELETE", old={"id": "s1", "staff_id": STAFF_ID})

    assert len(received) == 1
    assert received[0].event_type is ChangeType.INSERT


def test_swap_requests_cover_both_directions(client, transport):
    received = []
    unsubscribe = client.subscribe_to_swap_requests(received.append)
    client.on_identity_change(STAFF_ID)
    channel = transport.latest

    channel.push("shift_swap_requests", "INSERT", new={"id": "in", "target_staff_id": STAFF_ID})
    channel.push("shift_swap_requests", "INSERT", new={"id": "out", "requester_id": STAFF_ID})
    unsubscribe()
    unsubscribe()
    channel.push("shift_swap_requests", "INSERT", new={"id": "late", "requester_id": STAFF_ID})

    assert [e.row.id for e in received] == ["in", "out"]


@pytest.mark.parametrize(
    "method, table",
    [
        ("subscribe_to_shift_responses", "shift_responses"),
        ("subscribe_to_fixed_schedules", "fixed_schedules"),
        ("subscribe_to_shift_attendance", "shift_attendance"),
    ],
)
def test_per_topic_subscribe_functions(client, transport, method, table):
    received = []
    getattr(client, method)(received.append)
    client.on_identity_change(STAFF_ID)

    transport.latest.push(table, "INSERT", new={"id": "row-1", "staff_id": STAFF_ID})
    assert [e.table for e in received] == [table]


def test_unknown_topic_returns_inactive_subscription(client, transport):
    received = []
    subscription = client.subscribe_to_topic("payroll", received.append)

    assert not subscription.active
    assert "payroll" not in client.subscriber_counts()
    subscription()

    client.on_identity_change(STAFF_ID)
    transport.latest.push("shifts", "INSERT", new={"id": "row-1", "staff_id": STAFF_ID})
    assert received == []


def test_identity_swap_delivers_only_new_identity(client, transport):
    received = []
    client.subscribe_to_shift_changes(received.append)
    client.on_identity_change(STAFF_ID)
    old = transport.latest
    old.report(ChannelStatus.SUBSCRIBED)

    client.on_identity_change(OTHER_STAFF_ID)
    old.push("shifts", "INSERT", new={"id": "old", "staff_id": STAFF_ID})
    transport.latest.push("shifts", "INSERT", new={"id": "new", "staff_id": OTHER_STAFF_ID})

    assert old.closed
    assert [e.row.id for e in received] == ["new"]
    assert len(transport.open_channels) == 1


def test_recovers_transparently_after_error(client, transport, timers):
    received = []
    client.subscribe_to_shift_changes(received.append)
    client.on_identity_change(STAFF_ID)
    transport.latest.report(ChannelStatus.SUBSCRIBED)

    transport.latest.report(ChannelStatus.CHANNEL_ERROR, "network down")
    assert client.connection_status is ConnectionStatus.ERROR
    assert client.retry_attempts == 1

    timers.fire()
    transport.latest.report(ChannelStatus.SUBSCRIBED)
    transport.latest.push("shifts", "INSERT", new={"id": "s1", "staff_id": STAFF_ID})

    assert client.is_connected
    assert client.retry_attempts == 0
    assert [e.row.id for e in received] == ["s1"]


def test_logout_resets_subscriptions(client, transport):
    client.subscribe_to_shift_changes(lambda e: None)
    client.on_identity_change(STAFF_ID)
    client.on_identity_change(None)

    assert client.connection_status is ConnectionStatus.DISCONNECTED
    assert client.subscriber_counts()["shifts"] == 0


def test_logout_can_keep_subscriptions(transport, timers):
    config = RealtimeConfig.model_validate({"lifecycle": {"reset_subscriptions_on_logout": False}})
    client = RealtimeClient(transport, config, call_later=timers)
    client.subscribe_to_shift_changes(lambda e: None)
    client.on_identity_change(STAFF_ID)
    client.on_identity_change(None)

    assert client.subscriber_counts()["shifts"] == 1


def test_foreground_after_suspension(client, transport):
    client.on_identity_change(STAFF_ID)
    transport.latest.report(ChannelStatus.SUBSCRIBED)
    client.on_app_background()
    transport.latest.report(ChannelStatus.CLOSED)

    client.on_app_foreground()
    assert len(transport.channels) == 2
    assert client.connection_status is ConnectionStatus.CONNECTING


def test_retry_delays_come_from_config(transport, timers):
    config = RealtimeConfig.model_validate({"retry": {"initial_delay_seconds": 0.25, "max_delay_seconds": 1.0}})
    client = RealtimeClient(transport, config, call_later=timers)
    client.on_identity_change(STAFF_ID)
    for _ in range(4):
        transport.latest.report(ChannelStatus.TIMED_OUT)
        timers.fire()

    assert timers.delays == [0.25, 0.5, 1.0, 1.0]


def test_status_listener(client, transport):
    seen = []
    client.add_status_listener(seen.append)
    client.on_identity_change(STAFF_ID)
    client.close()
    assert seen == [ConnectionStatus.CONNECTING, ConnectionStatus.DISCONNECTED]
