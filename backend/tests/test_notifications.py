"""Notification fan-out tests."""

import asyncio
import json

from darbna.core.pubsub import GLOBAL_TOPIC, PubSub, user_topic
from darbna.db.session import SessionLocal
from darbna.services.notifications import (
    Notification,
    NotificationEvent,
    NotificationFanout,
    Target,
    build_push_message,
)
from darbna.services.push_gateway import PushToken


class FakeConnection:
    def __init__(self):
        self.events = []

    async def send_text(self, data):
        self.events.append(json.loads(data))


class SlowConnection:
    async def send_text(self, data):
        await asyncio.sleep(1)


def _token(i):
    return f"ExponentPushToken[device{i:02d}device{i:02d}]"


def _notification(owner, event=NotificationEvent.ALERT_CREATED, target=Target.ALL_EXCEPT_OWNER):
    return Notification(
        event=event,
        target=target,
        alert_id="alert-1",
        owner_id=owner.id,
        data={"alertId": "alert-1"},
        actor_name=owner.username,
    )


def test_realtime_skips_owner_for_new_alerts(make_user, expo):
    owner = make_user("rt_owner")
    other = make_user("rt_other")
    pubsub = PubSub()
    owner_conn, other_conn = FakeConnection(), FakeConnection()
    pubsub.subscribe(GLOBAL_TOPIC, owner_conn, owner.id)
    pubsub.subscribe(GLOBAL_TOPIC, other_conn, other.id)
    fanout = NotificationFanout(pubsub, expo.gateway(), SessionLocal)

    report = asyncio.run(fanout.notify(_notification(owner)))

    assert report.realtime_delivered == 1
    assert owner_conn.events == []
    assert other_conn.events == [{"event": "new-sos-alert", "data": {"alertId": "alert-1"}}]


def test_owner_only_goes_to_private_topic(make_user, expo):
    owner = make_user("private_owner", push_token=_token(1))
    other = make_user("private_other", push_token=_token(2))
    pubsub = PubSub()
    owner_conn, other_conn = FakeConnection(), FakeConnection()
    pubsub.subscribe(GLOBAL_TOPIC, owner_conn, owner.id)
    pubsub.subscribe(user_topic(owner.id), owner_conn, owner.id)
    pubsub.subscribe(GLOBAL_TOPIC, other_conn, other.id)
    fanout = NotificationFanout(pubsub, expo.gateway(), SessionLocal)

    asyncio.run(fanout.notify(_notification(owner, NotificationEvent.HELPER_ARRIVED, Target.OWNER_ONLY)))

    assert [e["event"] for e in owner_conn.events] == ["helper-arrived"]
    assert other_conn.events == []
    assert [m["to"] for m in expo.messages] == [_token(1)]


def test_broadcast_reaches_owner_too(make_user, expo):
    owner = make_user("bc_owner", push_token=_token(3))
    make_user("bc_other", push_token=_token(4))
    fanout = NotificationFanout(PubSub(), expo.gateway(), SessionLocal)

    report = asyncio.run(fanout.notify(_notification(owner, NotificationEvent.ALERT_RESOLVED, Target.BROADCAST_ALL)))

    assert report.push_messages == 2
    assert sorted(m["to"] for m in expo.messages) == [_token(3), _token(4)]


def test_invalid_tokens_are_skipped(make_user, expo):
    owner = make_user("skip_owner")
    make_user("skip_valid", push_token=_token(5))
    make_user("skip_invalid", push_token="ExponentPushToken")
    make_user("skip_empty", push_token="")
    fanout = NotificationFanout(PubSub(), expo.gateway(), SessionLocal)

    report = asyncio.run(fanout.notify(_notification(owner)))

    assert report.push_messages == 1
    assert report.push_skipped_tokens == 1
    assert [m["to"] for m in expo.messages] == [_token(5)]


def test_push_is_sent_in_batches(make_user, expo):
    owner = make_user("batch_owner")
    for i in range(5):
        make_user(f"batch_user_{i}", push_token=_token(10 + i))
    fanout = NotificationFanout(PubSub(), expo.gateway(batch_size=2), SessionLocal)

    report = asyncio.run(fanout.notify(_notification(owner)))

    assert report.push_messages == 5
    assert sorted(len(batch) for batch in expo.requests) == [1, 2, 2]
    assert report.push_failed_batches == 0


def test_failed_batch_does_not_stop_the_others(make_user, expo):
    owner = make_user("fail_owner")
    for i in range(4):
        make_user(f"fail_user_{i}", push_token=_token(20 + i))
    expo.statuses = [500]
    fanout = NotificationFanout(PubSub(), expo.gateway(batch_size=2), SessionLocal)

    report = asyncio.run(fanout.notify(_notification(owner)))

    assert len(expo.requests) == 2
    assert report.push_failed_batches == 1


def test_stalled_client_does_not_block_realtime_or_push(make_user, expo):
    owner = make_user("slow_owner")
    other = make_user("slow_other", push_token=_token(30))
    watcher = make_user("slow_watcher")
    pubsub = PubSub(send_timeout=0.05)
    healthy = FakeConnection()
    pubsub.subscribe(GLOBAL_TOPIC, SlowConnection(), other.id)
    pubsub.subscribe(GLOBAL_TOPIC, healthy, watcher.id)
    fanout = NotificationFanout(pubsub, expo.gateway(), SessionLocal)

    first = asyncio.run(fanout.notify(_notification(owner)))
    second = asyncio.run(fanout.notify(_notification(owner)))

    assert [e["event"] for e in healthy.events] == ["new-sos-alert", "new-sos-alert"]
    assert (first.realtime_delivered, second.realtime_delivered) == (1, 1)
    assert pubsub.subscriber_count(GLOBAL_TOPIC) == 1
    assert first.push_messages == 1
    assert first.push_failed_batches == 0


def test_dispatch_handles_each_notification(make_user, expo):
    owner = make_user("multi_owner", push_token=_token(40))
    fanout = NotificationFanout(PubSub(), expo.gateway(), SessionLocal)
    notifications = [
        _notification(owner, NotificationEvent.ALERT_RESOLVED, Target.BROADCAST_ALL),
        _notification(owner, NotificationEvent.ALERT_EXPIRED, Target.OWNER_ONLY),
    ]

    reports = asyncio.run(fanout.dispatch(notifications))

    assert [r.event for r in reports] == [NotificationEvent.ALERT_RESOLVED, NotificationEvent.ALERT_EXPIRED]
    assert [m["data"]["event"] for m in expo.messages] == ["sos-alert-resolved", "sos-alert-expired"]


def test_push_templates(make_user):
    owner = make_user("template_owner")
    token = PushToken(_token(50))

    created = build_push_message(_notification(owner), token)
    assert created.title == "New SOS Alert"
    assert created.body == "template_owner has sent an emergency alert!"
    assert created.to_dict()["data"] == {"alertId": "alert-1", "event": "new-sos-alert"}

    resolved = build_push_message(
        _notification(owner, NotificationEvent.ALERT_RESOLVED, Target.BROADCAST_ALL), token
    )
    assert resolved.body == "template_owner's emergency alert has been resolved"
