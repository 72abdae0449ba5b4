"""
=============================================================================
EVENT DISPATCHER
=============================================================================

Read loops never call user callbacks directly. They post events into a
queue, and a single dispatch thread per component delivers them:

    ┌──────────────┐
    │ read loop 1  │──┐
    └──────────────┘  │     ┌─────────────────────┐     ┌──────────────────┐
    ┌──────────────┐  ├────►│   Queue of Events   │────►│ dispatch thread  │
    │ read loop 2  │──┤     │  (FIFO, unbounded)  │     │ on_connect(...)  │
    └──────────────┘  │     └─────────────────────┘     │ on_message(...)  │
    ┌──────────────┐  │                                 │ on_disconnect()  │
    │ accept loop  │──┘                                 └──────────────────┘
    └──────────────┘

=============================================================================
ORDERING
=============================================================================

One queue and one consumer means events are delivered in the order they
were posted. A read loop posts its own events in read order, so for a
single connection:

    connect → message 1 → message 2 → ... → disconnect

Events from different connections interleave in arrival order, with no
further guarantee.

=============================================================================
FAILURE CONTAINMENT
=============================================================================

A callback that raises is logged and forgotten; the dispatch thread moves
on to the next event. A slow callback delays later events for the same
component, but never blocks a socket read.

=============================================================================
SHUTDOWN
=============================================================================

    shutdown(drain=False)   pending events are discarded (server stop)
    shutdown(drain=True)    pending events are delivered first

Either way no event is delivered after the dispatch thread exits.
=============================================================================
"""

import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional


logger = logging.getLogger(__name__)


class DispatcherState(Enum):
    """Dispatch thread states, for monitoring and debugging."""
    IDLE = "idle"        # Waiting for an event
    BUSY = "busy"        # Running a callback
    STOPPED = "stopped"  # Thread exited


@dataclass
class Event:
    """
    A deferred callback invocation.

    Attributes:
        name: Event name for logging ("connect", "message", ...).
        callback: The function to call.
        args: Positional arguments for the callback.
        posted_at: Time the event was posted.
    """
    name: str
    callback: Callable[..., Any]
    args: tuple = ()
    posted_at: float = field(default_factory=time.time)


class EventDispatcher:
    """
    Single-consumer event queue with its own daemon thread.

    Usage:
        dispatcher = EventDispatcher("tcp-server")
        dispatcher.start()
        dispatcher.post("message", on_message, conn, "hello")
        dispatcher.shutdown()
    """

    def __init__(self, name: str = "events", idle_timeout: float = 0.5):
        """
        Args:
            name: Used for the thread name and log lines.
            idle_timeout: Seconds the thread waits for an event before
                          re-checking for shutdown.
        """
        self.name = name
        self.idle_timeout = idle_timeout

        self._queue: "queue.Queue[Optional[Event]]" = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self._stopped = threading.Event()
        self._accepting = False

        self.state = DispatcherState.STOPPED
        self.events_delivered = 0
        self.events_failed = 0
        self.events_discarded = 0

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def pending(self) -> int:
        """Events posted but not yet delivered."""
        return self._queue.qsize()

    def start(self) -> None:
        """Start the dispatch thread. Calling start() twice is a no-op."""
        if self._accepting:
            return

        # Fresh queue and stop flag per run; a previous dispatch thread may
        # still be holding the old ones while it exits.
        self._queue = queue.Queue()
        self._stopped = threading.Event()
        self._accepting = True
        self.state = DispatcherState.IDLE
        self._thread = threading.Thread(
            target=self._run,
            args=(self._queue, self._stopped),
            name=f"{self.name}-dispatch",
            daemon=True,
        )
        self._thread.start()

    def post(self, name: str, callback: Optional[Callable[..., Any]], *args: Any) -> bool:
        """
        Queue a callback invocation.

        Returns:
            False if the callback is None or the dispatcher is shut down,
            True if the event was queued.
        """
        if callback is None or not self._accepting:
            return False
        self._queue.put(Event(name=name, callback=callback, args=args))
        return True

    # =========================================================================
    # DISPATCH LOOP
    # =========================================================================

    def _run(self, events: "queue.Queue[Optional[Event]]", stopped: threading.Event) -> None:
        logger.debug(f"{self.name} dispatcher started")

        while not stopped.is_set():
            try:
                event = events.get(timeout=self.idle_timeout)
            except queue.Empty:
                continue

            # Poison pill
            if event is None:
                break

            # Shutdown may have happened while we waited
            if stopped.is_set():
                self.events_discarded += 1
                break

            self._deliver(event)

        if stopped is self._stopped:
            self.state = DispatcherState.STOPPED
        logger.debug(f"{self.name} dispatcher stopped")

    def _deliver(self, event: Event) -> None:
        self.state = DispatcherState.BUSY
        try:
            event.callback(*event.args)
            self.events_delivered += 1
        except Exception as e:
            logger.exception(f"{self.name}: {event.name} callback failed: {e}")
            self.events_failed += 1
        finally:
            self.state = DispatcherState.IDLE

    # =========================================================================
    # SHUTDOWN
    # =========================================================================

    def shutdown(self, drain: bool = False, timeout: Optional[float] = 2.0) -> None:
        """
        Stop the dispatch thread.

        Args:
            drain: Deliver already-queued events before stopping.
            timeout: How long to wait for the thread to exit. Ignored when
                     called from a callback (the dispatch thread itself).
        """
        if not self._accepting and self._thread is None:
            return

        self._accepting = False

        if not drain:
            self._stopped.set()
            while True:
                try:
                    if self._queue.get_nowait() is not None:
                        self.events_discarded += 1
                except queue.Empty:
                    break

        self._queue.put(None)

        thread = self._thread
        self._thread = None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)

    @property
    def stats(self) -> dict:
        return {
            "state": self.state.value,
            "pending": self.pending,
            "delivered": self.events_delivered,
            "failed": self.events_failed,
            "discarded": self.events_discarded,
        }
