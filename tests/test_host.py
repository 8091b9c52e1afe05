"""Tests for the in-process host: pub/sub bus, frame clock and subscriptions."""

import logging

import pytest

from nodeflow._errors import NodeEvaluationError
from nodeflow._host import Element, EventSubscription, LocalHost, LoggingSink, Message, PubSub, TextElement
from nodeflow._store import Graph, Node


class TestPubSub:
    def test_delivers_to_subscribers(self) -> None:
        bus = PubSub()
        received: list[Message] = []
        bus.subscribe("a", received.append)
        bus.publish("a", 1)
        bus.publish("b", 2)
        assert [(m.channel, m.data) for m in received] == [("a", 1)]

    def test_unsubscribe(self) -> None:
        bus = PubSub()
        received: list[Message] = []
        unsubscribe = bus.subscribe("a", received.append)
        unsubscribe()
        unsubscribe()
        bus.publish("a", 1)
        assert received == []
        assert bus.channels() == []

    def test_history_is_bounded(self) -> None:
        bus = PubSub(max_history=2)
        for i in range(3):
            bus.publish("a", i)
        assert [m.data for m in bus.history("a")] == [1, 2]
        assert [m.data for m in bus.history("a", limit=1)] == [2]
        latest = bus.latest("a")
        assert latest is not None
        assert latest.data == 2
        bus.clear_history("a")
        assert bus.latest("a") is None

    def test_failing_subscriber_does_not_block_others(self, caplog: pytest.LogCaptureFixture) -> None:
        bus = PubSub()
        received: list[Message] = []

        def broken(message: Message) -> None:
            msg = "subscriber failed"
            raise RuntimeError(msg)

        bus.subscribe("a", broken)
        bus.subscribe("a", received.append)
        with caplog.at_level(logging.ERROR):
            bus.publish("a", 1)
        assert len(received) == 1
        assert "Subscriber of channel 'a' failed" in caplog.text


class TestLocalHost:
    def test_frame_clock(self) -> None:
        host = LocalHost()
        assert host.frame() == 0
        host.clock.advance()
        assert host.frame() == 1

    def test_create_element_wraps_text(self) -> None:
        element = LocalHost().create_element("p", {"id": "x"}, ["hello", Element(type="b")])
        assert element.children == (TextElement("hello"), Element(type="b"))
        assert element.props == {"id": "x"}


class TestEventSubscription:
    def test_latest_and_callback(self) -> None:
        host = LocalHost()
        seen: list[object] = []
        subscription = EventSubscription(host, "clicks", lambda message: seen.append(message.data))
        assert not subscription.has_value
        host.publish("clicks", "first")
        assert subscription.has_value
        assert subscription.latest == "first"
        assert seen == ["first"]

    async def test_next_resolves_with_following_message(self) -> None:
        host = LocalHost()
        subscription = EventSubscription(host, "clicks")
        waiter = subscription.next()
        host.publish("clicks", 3)
        assert await waiter == 3

    async def test_close_cancels_waiters(self) -> None:
        host = LocalHost()
        subscription = EventSubscription(host, "clicks")
        waiter = subscription.next()
        subscription.close()
        assert waiter.cancelled()
        assert host.bus.subscriber_count("clicks") == 0


class TestLoggingSink:
    def test_reports_at_error_level(self, caplog: pytest.LogCaptureFixture) -> None:
        error = NodeEvaluationError("n", "main", "boom")
        with caplog.at_level(logging.ERROR):
            LoggingSink().report_error(error, Graph(id="main"), Node("n"), "main")
        assert "Node 'n' (value) of graph 'main' failed" in caplog.text
