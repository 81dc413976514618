# tests/test_receivers.py
"""Tests for message receivers."""

import logging
import queue

import pytest

from cronwire.core.scheduler.receivers import (
    BroadcastStream,
    CallbackReceiver,
    QueueReceiver,
    Receiver,
    ReceiverDirectory,
    ReceiverSelection,
    as_receiver,
)


class TestDirectReceivers:
    """Tests for CallbackReceiver and QueueReceiver."""

    def test_callback_receiver(self):
        """Test the callback is invoked with the message."""
        received = []
        receiver = CallbackReceiver(received.append)

        receiver.tell("hello")

        assert received == ["hello"]
        assert isinstance(receiver, Receiver)

    def test_queue_receiver(self):
        """Test messages are put on the queue."""
        q: queue.Queue = queue.Queue()
        receiver = QueueReceiver(q)

        receiver.tell("hello")

        assert q.get_nowait() == "hello"
        assert receiver.queue is q

    def test_full_queue_raises(self):
        """Test a full bounded queue raises instead of blocking."""
        receiver = QueueReceiver(queue.Queue(maxsize=1))
        receiver.tell("first")

        with pytest.raises(queue.Full):
            receiver.tell("second")


class TestReceiverSelection:
    """Tests for path-based receiver selection."""

    @pytest.fixture
    def directory(self) -> ReceiverDirectory:
        return ReceiverDirectory()

    def test_glob_selection(self, directory, make_recorder):
        """Test every receiver matching the pattern gets the message."""
        reports, alerts, other = make_recorder(), make_recorder(), make_recorder()
        directory.register("/user/reports", reports)
        directory.register("/user/alerts", alerts)
        directory.register("/system/other", other)

        ReceiverSelection(directory, "/user/*").tell("tick")

        assert reports.messages == ["tick"]
        assert alerts.messages == ["tick"]
        assert other.messages == []

    def test_resolved_at_delivery(self, directory, recorder):
        """Test receivers registered after the selection was created are found."""
        selection = ReceiverSelection(directory, "/user/late")
        directory.register("/user/late", recorder)

        selection.tell("tick")

        assert recorder.messages == ["tick"]

    def test_dead_letter_logged(self, directory, caplog):
        """Test a message with no matching receiver is logged and dropped."""
        with caplog.at_level(logging.WARNING):
            ReceiverSelection(directory, "/user/nobody").tell("tick")

        assert "Dead letter" in caplog.text
        assert "/user/nobody" in caplog.text

    def test_unregister(self, directory, recorder):
        """Test unregister reports whether a receiver was removed."""
        directory.register("/user/reports", recorder)

        assert directory.unregister("/user/reports") is True
        assert directory.unregister("/user/reports") is False
        assert directory.select("/user/*") == []


class TestBroadcastStream:
    """Tests for BroadcastStream."""

    def test_publish_by_type(self):
        """Test subscribers receive only messages of their type."""
        stream = BroadcastStream()
        strings, everything = [], []
        stream.subscribe(strings.append, str)
        stream.subscribe(everything.append)

        stream.publish("hello")
        stream.publish(42)

        assert strings == ["hello"]
        assert everything == ["hello", 42]

    def test_unsubscribe(self):
        """Test an unsubscribed subscriber no longer receives messages."""
        stream = BroadcastStream()
        received = []
        stream.subscribe(received.append)

        assert stream.unsubscribe(received.append) is True
        assert stream.unsubscribe(received.append) is False

        stream.publish("hello")

        assert received == []

    def test_publish_without_subscribers(self):
        """Test publishing with no subscribers is a no-op."""
        BroadcastStream().publish("hello")


class TestAsReceiver:
    """Tests for as_receiver coercion."""

    def test_receiver_returned_as_is(self, recorder):
        """Test objects with tell() are used directly."""
        assert as_receiver(recorder) is recorder

    def test_stream_returned_as_is(self):
        """Test broadcast streams are used directly."""
        stream = BroadcastStream()

        assert as_receiver(stream) is stream

    def test_queue_wrapped(self):
        """Test queues are wrapped in a QueueReceiver."""
        q: queue.Queue = queue.Queue()

        receiver = as_receiver(q)

        assert isinstance(receiver, QueueReceiver)
        assert receiver.queue is q

    def test_callable_wrapped(self):
        """Test callables are wrapped in a CallbackReceiver."""
        assert isinstance(as_receiver(print), CallbackReceiver)

    def test_unsupported_target(self):
        """Test targets that cannot accept messages are rejected."""
        with pytest.raises(TypeError, match="receiver must be"):
            as_receiver(42)
