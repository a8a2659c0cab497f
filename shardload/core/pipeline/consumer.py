"""
Routing consumer workers.

A worker claims events, accumulates them up to the batch size (or until the
channel has nothing more ready), routes every row to its shard and runs one
batched write per shard and chunk. Slots are released only after the writes
for all their rows succeeded.
"""
import threading
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from tenacity import (
    RetryError,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ...setup.logging import logger
from ...utils.misc import chunked
from ..exceptions import ParseError, WriteError
from ..interfaces import ShardWriter
from ..schemas import ConsumerContext, Row, ShardInfo
from .channel import EventChannel, Slot
from .routing import ShardRouter


@dataclass
class ConsumerStats:
    events: int = 0
    rows_written: int = 0
    rows_rejected: int = 0
    writes: int = 0
    retries: int = 0


class RoutingConsumer:
    """One consumer worker thread."""

    def __init__(
        self,
        worker_id: int,
        context: ConsumerContext,
        channel: EventChannel,
        writer: ShardWriter,
        stop_event: Optional[threading.Event] = None,
        on_failure=None,
        parse_error_policy: str = "skip",
    ):
        self.worker_id = worker_id
        self.context = context
        self.channel = channel
        self.writer = writer
        self.stop_event = stop_event or threading.Event()
        self.on_failure = on_failure
        self.parse_error_policy = parse_error_policy
        self.routers = {name: ShardRouter(descriptor) for name, descriptor in context.descriptors.items()}
        self.stats = ConsumerStats()
        self.error: Optional[BaseException] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def name(self) -> str:
        return f"consumer-{self.worker_id}"

    def start(self) -> None:
        self._thread = threading.Thread(target=self.run, name=self.name, daemon=True)
        self._thread.start()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run(self) -> ConsumerStats:
        while not self.stop_event.is_set():
            slots = self._claim_batch()
            if not slots:
                break
            try:
                self._process(slots)
            except Exception as e:
                for slot in slots:
                    self.channel.release(slot, drained=False)
                self.error = e
                logger.error(f"[{self.name}] Terminating after unrecoverable error: {e}")
                if self.on_failure:
                    self.on_failure(self, e)
                break
            for slot in slots:
                self.channel.release(slot, drained=True)
            self.stats.events += len(slots)

        logger.info(
            f"[{self.name}] Finished: {self.stats.events} events, {self.stats.rows_written} rows written, "
            f"{self.stats.rows_rejected} rejected, {self.stats.retries} retries"
        )
        return self.stats

    def _claim_batch(self) -> List[Slot]:
        """Claim one event, then whatever is ready until the batch is full."""
        first = self.channel.claim(stop_event=self.stop_event)
        if first is None:
            return []
        slots = [first]
        rows = len(first.event)
        while rows < self.context.batch_size and not self.stop_event.is_set():
            slot = self.channel.claim_nowait()
            if slot is None:
                break
            slots.append(slot)
            rows += len(slot.event)
        return slots

    def _process(self, slots: List[Slot]) -> None:
        groups: Dict[Tuple[str, ShardInfo], List[Row]] = defaultdict(list)
        for slot in slots:
            event = slot.event
            router = self.routers[event.table]
            shard_rows, rejected = router.group(event.rows)
            for row, error in rejected:
                self.stats.rows_rejected += 1
                if self.parse_error_policy == "abort":
                    raise ParseError(f"Cannot route row of file {event.file_id} block {event.block_id}: {error}")
                logger.warning(f"[{self.name}] Dropping unroutable row (file {event.file_id}, block {event.block_id}): {error}")
            for shard, rows in shard_rows.items():
                groups[(event.table, shard)].extend(rows)

        for (table, shard), rows in groups.items():
            for chunk in chunked(rows, self.context.batch_size):
                self.stats.rows_written += self._write_with_retry(table, shard, list(chunk))

    def _write_with_retry(self, table: str, shard: ShardInfo, rows: List[Row]) -> int:
        descriptor = self.context.descriptor(table)
        retrying = Retrying(
            stop=stop_after_attempt(self.context.max_retries),
            wait=wait_exponential(
                multiplier=self.context.retry_min_wait_seconds,
                min=self.context.retry_min_wait_seconds,
                max=self.context.retry_max_wait_seconds,
            ),
            retry=retry_if_exception_type(Exception),
            before_sleep=self._log_retry(table, shard),
        )
        try:
            written = retrying(self.writer.write, shard, descriptor, self.context.operation, rows)
        except RetryError as e:
            cause = e.last_attempt.exception()
            raise WriteError(
                f"{self.context.operation.value} of {len(rows)} rows into {shard.physical_table} "
                f"({shard.shard_id}) failed after {self.context.max_retries} attempts: {cause}",
                table=table,
                shard_id=shard.shard_id,
            ) from cause
        self.stats.writes += 1
        return written

    def _log_retry(self, table: str, shard: ShardInfo):
        def before_sleep(retry_state):
            self.stats.retries += 1
            logger.warning(
                f"[{self.name}] Write to {table}@{shard.shard_id} attempt {retry_state.attempt_number} "
                f"failed: {retry_state.outcome.exception()}, retrying..."
            )
        return before_sleep
