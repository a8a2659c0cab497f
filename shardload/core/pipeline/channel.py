"""
Bounded multi-producer / multi-consumer event channel.

Capacity is counted in slots, not queue entries: a slot is taken when an
event is published and only given back when the consumer that claimed it
calls release(). Publishing therefore blocks until consumers have finished
(not merely dequeued) enough events, which throttles producers to the speed
of the shard writes.
"""
import itertools
import queue
import threading
from dataclasses import dataclass, field
from typing import Optional

from ...setup.logging import logger
from ..exceptions import ChannelCapacityTimeout, ChannelClosedError
from ..schemas import BatchEvent
from .progress import ProgressState


@dataclass(eq=False)
class Slot:
    """Handle of one published event, owned by whichever consumer claims it."""
    sequence: int
    event: BatchEvent
    _released: bool = field(default=False, repr=False)

    @property
    def released(self) -> bool:
        return self._released


class EventChannel:
    """
    Competitive hand-off of BatchEvents between producers and consumers.

    - publish() registers the block's pending counter, then makes the event
      claimable; it blocks while every slot is taken.
    - claim() hands each event to exactly one consumer.
    - release() frees the slot and, when the event was drained, decrements
      the pending counter.
    """

    def __init__(self, capacity: int, state: ProgressState, claim_poll_seconds: float = 0.2):
        if capacity <= 0:
            raise ValueError("Channel capacity must be positive")
        self.capacity = capacity
        self.state = state
        self.claim_poll_seconds = claim_poll_seconds
        self._slots = threading.BoundedSemaphore(capacity)
        self._queue: "queue.SimpleQueue[Slot]" = queue.SimpleQueue()
        self._sequence = itertools.count()
        self._closed = threading.Event()
        self._stats_lock = threading.Lock()
        self.published = 0
        self.released = 0

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    @property
    def in_flight(self) -> int:
        """Slots published but not yet released."""
        with self._stats_lock:
            return self.published - self.released

    def publish(self, event: BatchEvent, timeout: Optional[float] = None,
                stop_event: Optional[threading.Event] = None) -> Slot:
        """
        Publish an event, waiting for a free slot.

        Args:
            timeout: Seconds to wait for a slot before ChannelCapacityTimeout.
            stop_event: When set while waiting, publishing is abandoned with
                ChannelClosedError so producers do not hang on a stopped run.
        """
        if self.closed:
            raise ChannelClosedError("Channel is closed")

        if not self._acquire_slot(timeout, stop_event):
            raise ChannelCapacityTimeout(
                f"No free slot within {timeout}s for file {event.file_id} block {event.block_id}"
            )

        event.sequence = next(self._sequence)
        slot = Slot(event.sequence, event)
        # Counter first: the tracker must never see this block as drained
        # while the event is claimable.
        self.state.register(event.file_id, event.block_id)
        with self._stats_lock:
            self.published += 1
        self._queue.put(slot)
        return slot

    def _acquire_slot(self, timeout: Optional[float], stop_event: Optional[threading.Event]) -> bool:
        if stop_event is None:
            return self._slots.acquire(timeout=timeout)

        waited = 0.0
        while True:
            step = self.claim_poll_seconds if timeout is None else min(self.claim_poll_seconds, timeout - waited)
            if self._slots.acquire(timeout=max(step, 0.0)):
                return True
            if stop_event.is_set():
                raise ChannelClosedError("Run is stopping; event not published")
            waited += step
            if timeout is not None and waited >= timeout:
                return False

    def claim(self, timeout: Optional[float] = None,
              stop_event: Optional[threading.Event] = None) -> Optional[Slot]:
        """
        Take the next event.

        Returns None when the channel is closed and empty, when `timeout`
        elapses without an event, or once `stop_event` is set.
        """
        waited = 0.0
        while True:
            if stop_event is not None and stop_event.is_set():
                return None
            try:
                slot = self._queue.get(timeout=self.claim_poll_seconds)
            except queue.Empty:
                if self.closed and self._queue.empty():
                    return None
                waited += self.claim_poll_seconds
                if timeout is not None and waited >= timeout:
                    return None
                continue
            if stop_event is not None and stop_event.is_set():
                # Stop arrived while waiting: the event stays unclaimed and pending.
                self._queue.put(slot)
                return None
            return slot

    def claim_nowait(self) -> Optional[Slot]:
        """Take an already-published event without waiting."""
        try:
            return self._queue.get_nowait()
        except queue.Empty:
            return None

    def release(self, slot: Slot, drained: bool = True) -> None:
        """
        Give a slot back after its event was handled.

        Args:
            drained: True once the event's rows are written. A failed event is
                released with False: the slot becomes reusable but the block
                keeps its pending count, so the checkpoint cannot pass it.
        """
        if slot._released:
            raise RuntimeError(f"Slot {slot.sequence} released twice")
        slot._released = True

        if drained:
            self.state.complete(slot.event.file_id, slot.event.block_id)
        else:
            logger.warning(
                f"[EventChannel] Event {slot.sequence} (file {slot.event.file_id}, "
                f"block {slot.event.block_id}) released without draining"
            )
        with self._stats_lock:
            self.released += 1
        self._slots.release()

    def close(self) -> None:
        """Stop accepting events; consumers drain what is left and stop."""
        self._closed.set()

    def __len__(self) -> int:
        return self._queue.qsize()
