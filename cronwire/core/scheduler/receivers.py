"""Message receivers for scheduled jobs.

Provides an abstraction layer for delivering messages from fired jobs,
allowing different message sinks (callbacks, queues, broadcast streams).
Three delivery variants are supported:

- direct: a receiver object with ``tell(message)``
- selection: a path pattern resolved against a ReceiverDirectory at delivery
- broadcast: a BroadcastStream publishing to every matching subscriber
"""

from __future__ import annotations

import fnmatch
import logging
import threading
from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class Receiver(Protocol):
    """Protocol for message sinks.

    Implementations accept one message, fire-and-forget. No reply is
    expected and no sender is attached.
    """

    def tell(self, message: Any) -> None:
        """Deliver one message.

        Args:
            message: The message to deliver.
        """
        ...


class CallbackReceiver:
    """Direct receiver invoking a callable with each message."""

    def __init__(self, callback: Callable[[Any], Any]) -> None:
        self._callback = callback

    def tell(self, message: Any) -> None:
        self._callback(message)

    def __repr__(self) -> str:
        return f"CallbackReceiver({self._callback!r})"


class QueueReceiver:
    """Direct receiver putting each message on a queue without blocking.

    Works with ``queue.Queue`` and anything else exposing ``put_nowait``.
    """

    def __init__(self, queue: Any) -> None:
        self._queue = queue

    @property
    def queue(self) -> Any:
        return self._queue

    def tell(self, message: Any) -> None:
        self._queue.put_nowait(message)

    def __repr__(self) -> str:
        return f"QueueReceiver({self._queue!r})"


class ReceiverDirectory:
    """Thread-safe registry of receivers by path, used by selections."""

    def __init__(self) -> None:
        self._receivers: dict[str, Receiver] = {}
        self._lock = threading.Lock()

    def register(self, path: str, receiver: Receiver) -> None:
        """Register a receiver under a path such as ``/user/reports``."""
        with self._lock:
            self._receivers[path] = receiver
        logger.debug("Registered receiver at %s", path)

    def unregister(self, path: str) -> bool:
        """Remove a receiver.

        Returns:
            True if a receiver was registered at the path.
        """
        with self._lock:
            return self._receivers.pop(path, None) is not None

    def select(self, pattern: str) -> list[Receiver]:
        """Get all receivers whose path matches a glob pattern."""
        with self._lock:
            return [
                receiver
                for path, receiver in self._receivers.items()
                if fnmatch.fnmatchcase(path, pattern)
            ]


class ReceiverSelection:
    """Indirect receiver resolved by path at delivery time.

    Messages for a path that matches nothing are dropped and logged as dead
    letters, the same as an unanswered fire-and-forget send.
    """

    def __init__(self, directory: ReceiverDirectory, pattern: str) -> None:
        self._directory = directory
        self._pattern = pattern

    @property
    def pattern(self) -> str:
        return self._pattern

    def tell(self, message: Any) -> None:
        targets = self._directory.select(self._pattern)
        if not targets:
            logger.warning(
                "Dead letter: no receiver matches %s for message %r",
                self._pattern,
                message,
            )
            return
        for target in targets:
            target.tell(message)

    def __repr__(self) -> str:
        return f"ReceiverSelection({self._pattern!r})"


class BroadcastStream:
    """Publish/subscribe stream classified by message type.

    A subscriber registered for a type receives every published message
    that is an instance of it.
    """

    def __init__(self) -> None:
        self._subscribers: list[tuple[Callable[[Any], Any], type]] = []
        self._lock = threading.Lock()

    def subscribe(
        self, subscriber: Callable[[Any], Any], message_type: type = object
    ) -> None:
        with self._lock:
            self._subscribers.append((subscriber, message_type))

    def unsubscribe(self, subscriber: Callable[[Any], Any]) -> bool:
        """Remove every subscription of a subscriber.

        Returns:
            True if the subscriber had at least one subscription.
        """
        with self._lock:
            before = len(self._subscribers)
            self._subscribers = [
                entry for entry in self._subscribers if entry[0] != subscriber
            ]
            return len(self._subscribers) != before

    def publish(self, message: Any) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for subscriber, message_type in subscribers:
            if isinstance(message, message_type):
                subscriber(message)


def as_receiver(target: Any) -> Receiver | BroadcastStream:
    """Coerce a delivery target into a supported receiver variant.

    Args:
        target: A Receiver, BroadcastStream, queue (``put_nowait``) or callable.

    Returns:
        The target itself or a wrapping receiver.

    Raises:
        TypeError: If the target cannot accept messages.
    """
    if isinstance(target, (BroadcastStream, Receiver)):
        return target
    if callable(getattr(target, "put_nowait", None)):
        return QueueReceiver(target)
    if callable(target):
        return CallbackReceiver(target)
    raise TypeError(
        "receiver must be a Receiver, BroadcastStream, queue or callable, "
        f"was {type(target).__name__}"
    )
