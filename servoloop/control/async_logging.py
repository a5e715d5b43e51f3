"""Queue-based logging for the servo, dispatcher and broadcast threads.

While active, every record emitted under the ``servoloop`` logger is put on
a bounded queue and written out by a single listener thread. A full queue
drops the record and counts it instead of stalling a control tick.
"""

import logging
import queue
from logging.handlers import QueueHandler, QueueListener

# Pending records before new ones are dropped
DEFAULT_QUEUE_SIZE = 10_000


class _DroppingQueueHandler(QueueHandler):
    """QueueHandler that counts records it could not enqueue."""

    def __init__(self, log_queue: "queue.Queue[logging.LogRecord]"):
        super().__init__(log_queue)
        self.dropped = 0

    def enqueue(self, record: logging.LogRecord) -> None:
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            self.dropped += 1


def effective_handlers(logger: logging.Logger) -> list[logging.Handler]:
    """Handlers that would receive records logged on ``logger``.

    Args:
        logger: Logger whose hierarchy is walked upward.

    Returns:
        Handlers of the nearest logger (itself included) that has any,
        stopping at the first logger with ``propagate`` disabled. Empty if
        nothing in the chain would write the record.
    """
    current: logging.Logger | None = logger
    while current is not None:
        if current.handlers:
            return list(current.handlers)
        if not current.propagate:
            break
        current = current.parent
    return []


class AsyncLogHandler:
    """Moves one logger subtree onto a background writer thread.

    Usable directly through ``start``/``stop`` or as a context manager.
    The logger's own handlers and ``propagate`` flag are saved on start and
    put back on stop.

    Args:
        logger_name: Root of the subtree to reroute.
        queue_size: Maximum pending records; further records are dropped
            and counted in ``dropped``.
    """

    def __init__(self, logger_name: str = "servoloop", queue_size: int = DEFAULT_QUEUE_SIZE):
        self._logger = logging.getLogger(logger_name)
        self._queue_size = queue_size
        self._handler: _DroppingQueueHandler | None = None
        self._listener: QueueListener | None = None
        self._saved: tuple[list[logging.Handler], bool] | None = None
        self._dropped = 0

    @property
    def started(self) -> bool:
        return self._listener is not None

    @property
    def dropped(self) -> int:
        """Records discarded because the queue was full, over all runs."""
        live = self._handler.dropped if self._handler else 0
        return self._dropped + live

    def start(self) -> bool:
        """Reroute the subtree through the queue.

        Returns:
            True if the logger is now asynchronous, False if there was no
            handler to forward to (the logger is then left untouched).
        """
        if self.started:
            return True
        targets = effective_handlers(self._logger)
        if not targets:
            return False

        log_queue: queue.Queue[logging.LogRecord] = queue.Queue(self._queue_size)
        self._handler = _DroppingQueueHandler(log_queue)
        self._saved = (self._logger.handlers[:], self._logger.propagate)
        self._logger.handlers = [self._handler]
        self._logger.propagate = False

        self._listener = QueueListener(log_queue, *targets, respect_handler_level=True)
        self._listener.start()
        return True

    def stop(self) -> None:
        """Drain pending records, then restore the logger as it was."""
        if self._listener is None:
            return
        self._listener.stop()
        self._listener = None
        if self._saved is not None:
            self._logger.handlers, self._logger.propagate = self._saved
            self._saved = None
        if self._handler is not None:
            self._dropped += self._handler.dropped
            self._handler = None
        if self._dropped:
            self._logger.warning("Async logging dropped %d records (queue full)", self._dropped)

    def __enter__(self) -> "AsyncLogHandler":
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()
