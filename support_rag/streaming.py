"""
Streaming Module

A one-shot channel between a producer thread that generates an answer and a
consumer that relays it (e.g. as Server-Sent Events).

- The producer pushes StreamEvents and finally completes the channel
- The consumer iterates until the channel completes, fails or times out
- An overall deadline bounds the whole stream; on expiry the consumer gets
  an "error" event and the channel closes
- Closing the channel (or abandoning the iteration) cancels the producer at
  its next send
"""

import json
import logging
import queue
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Optional

logger = logging.getLogger(__name__)

_END = object()


@dataclass(frozen=True)
class StreamEvent:
    """
    One event on a response stream.

    Names: "token", "message", "metadata", "message_id", "error".
    """
    name: str
    data: Any

    def to_sse(self) -> str:
        """Render as a Server-Sent-Events frame."""
        payload = self.data if isinstance(self.data, str) else json.dumps(self.data)
        lines = [f"event: {self.name}"]
        lines.extend(f"data: {line}" for line in payload.split("\n"))
        return "\n".join(lines) + "\n\n"


class ResponseChannel:
    """
    Thread-safe event channel with a deadline.

    Example:
        channel = ResponseChannel(timeout=60, error_message="Sorry...")
        channel.start(lambda ch: ch.send(StreamEvent("token", "Hi")))
        for event in channel:
            print(event.to_sse())
    """

    def __init__(
        self,
        timeout: float = 60.0,
        error_message: str = "An error occurred.",
        clock: Callable[[], float] = time.monotonic,
    ):
        self.timeout = timeout
        self.error_message = error_message
        self._clock = clock
        self._deadline = clock() + timeout
        self._queue: "queue.Queue[Any]" = queue.Queue()
        self._cancelled = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def send(self, event: StreamEvent) -> bool:
        """
        Push an event to the consumer.

        Returns:
            False if the channel was closed and the producer should stop
        """
        if self.cancelled:
            return False
        self._queue.put(event)
        return True

    def complete(self) -> None:
        """Signal that no more events will be sent."""
        self._queue.put(_END)

    def fail(self) -> None:
        """Send the fixed error event and complete."""
        self.send(StreamEvent("error", self.error_message))
        self.complete()

    def close(self) -> None:
        """Cancel the stream from the consumer side."""
        if not self.cancelled:
            self._cancelled.set()
            self._queue.put(_END)

    def start(self, producer: Callable[["ResponseChannel"], None]) -> "ResponseChannel":
        """
        Run producer(channel) on a daemon thread.

        The channel is completed when the producer returns; an exception
        escaping the producer becomes an "error" event.
        """
        def run():
            try:
                producer(self)
            except Exception as e:
                logger.error(f"Stream producer failed: {e}")
                self.send(StreamEvent("error", self.error_message))
            finally:
                self.complete()

        self._thread = threading.Thread(target=run, name="response-stream", daemon=True)
        self._thread.start()
        return self

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def __iter__(self) -> Iterator[StreamEvent]:
        try:
            while True:
                remaining = self._deadline - self._clock()
                if remaining <= 0:
                    yield self._timed_out()
                    return
                try:
                    item = self._queue.get(timeout=remaining)
                except queue.Empty:
                    yield self._timed_out()
                    return
                if item is _END:
                    return
                yield item
        finally:
            self.close()

    def _timed_out(self) -> StreamEvent:
        logger.error(f"Response stream exceeded its {self.timeout}s deadline")
        self._cancelled.set()
        return StreamEvent("error", self.error_message)
