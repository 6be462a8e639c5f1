import pytest

from tour_backend.conftest import FakeConnector, RecordingNotifier
from tour_backend.errors import NotConnected
from tour_backend.models import NotificationKind, StringMessage
from tour_backend.services.transport_link import TOPICS_SERVICE, TransportLink

URL = "ws://robot.test:9090"


def make_link(connector=None):
    notifier = RecordingNotifier()
    link = TransportLink(URL, notifier, reconnect_interval=1, connector=connector or FakeConnector())
    return link, notifier


@pytest.mark.asyncio
async def test_connect_requests_topics_and_standing_subscriptions():
    connector = FakeConnector()
    link, notifier = make_link(connector)
    link.add_standing_subscription("/odom", lambda msg: None, "nav_msgs/Odometry")

    assert await link.connect() is True

    assert link.connected is True
    sent = connector.last.sent
    assert sent[0]["op"] == "call_service"
    assert sent[0]["service"] == TOPICS_SERVICE
    assert connector.last.frames("subscribe", "/odom")[0]["type"] == "nav_msgs/Odometry"
    assert notifier.events == []

    # Already connected: no second socket.
    assert await link.connect() is True
    assert connector.attempts == 1


@pytest.mark.asyncio
async def test_failed_connect_is_reported_not_raised():
    link, notifier = make_link(FakeConnector(fail=True))

    assert await link.connect() is False
    assert link.connected is False
    assert notifier.events == []


@pytest.mark.asyncio
async def test_close_emits_single_disconnect():
    connector = FakeConnector()
    link, notifier = make_link(connector)
    await link.connect()

    connector.last.drop()
    assert link.connected is False
    assert len(notifier.of(NotificationKind.ROBOT_DISCONNECTED)) == 1

    connector.last.drop()
    assert len(notifier.of(NotificationKind.ROBOT_DISCONNECTED)) == 1


@pytest.mark.asyncio
async def test_reconnect_emits_reconnected_and_restores_standing_subscriptions():
    connector = FakeConnector()
    link, notifier = make_link(connector)
    link.add_standing_subscription("/amcl_pose", lambda msg: None)
    await link.connect()
    link.subscribe("/map", lambda msg: None)

    connector.last.drop()
    assert link.subscribers == {}

    await link.connect()

    assert len(notifier.of(NotificationKind.ROBOT_RECONNECTED)) == 1
    assert set(link.subscribers) == {"/amcl_pose"}
    assert connector.last.frames("subscribe", "/amcl_pose")
    assert not connector.last.frames("subscribe", "/map")


@pytest.mark.asyncio
async def test_publish_requires_connection():
    connector = FakeConnector()
    link, _ = make_link(connector)

    with pytest.raises(NotConnected):
        link.publish("/voice", StringMessage(data="hello"))

    await link.connect()
    link.publish("/voice", StringMessage(data="hello"))
    assert connector.last.frames("publish", "/voice")[0]["msg"] == {"data": "hello"}

    connector.last.drop()
    with pytest.raises(NotConnected):
        link.publish("/voice", {"data": "again"})


@pytest.mark.asyncio
async def test_write_on_closed_socket_marks_link_down():
    connector = FakeConnector()
    link, notifier = make_link(connector)
    await link.connect()
    connector.last.closed = True

    with pytest.raises(NotConnected):
        link.publish("/voice", {"data": "x"})

    assert link.connected is False
    assert len(notifier.of(NotificationKind.ROBOT_DISCONNECTED)) == 1


@pytest.mark.asyncio
async def test_inbound_publish_reaches_latest_handler():
    connector = FakeConnector()
    link, _ = make_link(connector)
    await link.connect()
    first, second = [], []
    link.subscribe("/odom", first.append)
    link.subscribe("/odom", second.append)

    connector.last.receive({"op": "publish", "topic": "/odom", "msg": {"seq": 1}})

    assert first == []
    assert second == [{"seq": 1}]
    assert link.last_ping is not None


@pytest.mark.asyncio
async def test_unsubscribe_is_safe_without_handler():
    connector = FakeConnector()
    link, _ = make_link(connector)

    link.unsubscribe("/nothing")

    await link.connect()
    link.subscribe("/odom", lambda msg: None)
    link.unsubscribe("/odom")
    link.unsubscribe("/odom")
    assert len(connector.last.frames("unsubscribe", "/odom")) == 1


@pytest.mark.asyncio
async def test_malformed_frames_are_dropped():
    connector = FakeConnector()
    link, _ = make_link(connector)
    await link.connect()
    received = []
    link.subscribe("/odom", received.append)

    connector.last.on_message_callback("not json")
    connector.last.receive({"op": "fragment", "id": "x"})
    connector.last.receive({"topic": "/odom"})
    connector.last.receive({"op": "publish", "topic": "/odom", "msg": {"ok": True}})

    assert received == [{"ok": True}]
    assert link.connected is True


@pytest.mark.asyncio
async def test_topic_listing_notifies_listeners():
    connector = FakeConnector()
    link, _ = make_link(connector)
    seen = []
    link.on_topics(seen.append)
    await link.connect()

    connector.last.receive(
        {"op": "service_response", "service": TOPICS_SERVICE, "values": {"topics": ["/odom", "/voice"]}, "result": True}
    )

    assert link.topics == ["/odom", "/voice"]
    assert seen == [["/odom", "/voice"]]
    assert link.status()["topics_count"] == 2


@pytest.mark.asyncio
async def test_handler_failure_does_not_break_dispatch():
    connector = FakeConnector()
    link, _ = make_link(connector)
    await link.connect()

    def explode(msg):
        raise ValueError("boom")

    link.subscribe("/odom", explode)
    connector.last.receive({"op": "publish", "topic": "/odom", "msg": {}})

    assert link.connected is True


@pytest.mark.asyncio
async def test_shutdown_is_not_reported_as_a_drop():
    connector = FakeConnector()
    link, notifier = make_link(connector)
    await link.connect()

    link.shutdown()

    assert connector.last.closed is True
    assert link.connected is False
    assert notifier.of(NotificationKind.ROBOT_DISCONNECTED) == []
    assert link.status()["connected"] is False
