"""
File-block producers.

Each producer reads one input file sequentially, cuts it into blocks of
`block_size` records and publishes one BatchEvent per block. Block ids count
every record read (malformed ones included), so the partitioning of a file is
the same on every run and a checkpoint block id always points at the same
records.
"""
import csv
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from ...setup.logging import logger
from ..exceptions import ChannelClosedError, FileReadError, ParseError
from ..schemas import BatchEvent, ProducerContext, Row
from .channel import EventChannel
from .progress import ProgressState


@dataclass
class ProducerStats:
    file_id: int
    path: str
    skipped: bool = False
    blocks_published: int = 0
    rows_published: int = 0
    records_rejected: int = 0
    finished: bool = False


class FileBlockProducer:
    """Publishes the blocks of one file onto the event channel."""

    def __init__(
        self,
        context: ProducerContext,
        file_id: int,
        table: str,
        channel: EventChannel,
        state: ProgressState,
        expected_fields: Optional[int] = None,
        stop_event: Optional[threading.Event] = None,
        publish_timeout: Optional[float] = None,
    ):
        self.context = context
        self.file_id = file_id
        self.path = str(context.files[file_id])
        self.table = table
        self.channel = channel
        self.state = state
        self.expected_fields = expected_fields
        self.stop_event = stop_event or threading.Event()
        self.publish_timeout = publish_timeout
        self.stats = ProducerStats(file_id=file_id, path=self.path)

    @property
    def start_block(self) -> int:
        return self.state.start_block_for(self.file_id)

    def run(self) -> ProducerStats:
        """
        Produce every block of the file from the resume block on.

        Raises:
            FileReadError: The file cannot be opened, read or decoded.
            ParseError: A malformed record under the abort policy.
        """
        if self.file_id < self.state.start_file_index:
            logger.info(f"[Producer] Skipping {self.path}: drained by a previous run")
            self.stats.skipped = True
            self.state.mark_done(self.file_id)
            return self.stats

        start_block = self.start_block
        if start_block:
            logger.info(f"[Producer] Resuming {self.path} at block {start_block}")

        try:
            for block_id, rows in self._iter_blocks(start_block):
                if self.stop_event.is_set():
                    logger.info(f"[Producer] Stop requested, leaving {self.path} at block {block_id}")
                    return self.stats
                if not rows:
                    continue
                self.channel.publish(
                    BatchEvent(self.file_id, block_id, self.table, rows),
                    timeout=self.publish_timeout,
                    stop_event=self.stop_event,
                )
                self.stats.blocks_published += 1
                self.stats.rows_published += len(rows)
        except ChannelClosedError:
            logger.info(f"[Producer] Channel closed while producing {self.path}")
            return self.stats
        except (OSError, UnicodeDecodeError) as e:
            raise FileReadError(f"Cannot read {self.path}: {e}") from e

        self.state.mark_done(self.file_id)
        self.stats.finished = True
        logger.info(
            f"[Producer] {self.path} read completely: {self.stats.blocks_published} blocks, "
            f"{self.stats.rows_published} rows, {self.stats.records_rejected} rejected"
        )
        return self.stats

    def _iter_records(self) -> Iterator[Tuple[int, Optional[Row]]]:
        """
        Yield (record index, row) pairs; row is None for a rejected record.
        """
        null_value = self.context.null_value
        with open(self.path, "r", encoding=self.context.encoding, newline="") as f:
            reader = csv.reader(f, delimiter=self.context.separator, strict=True)
            if self.context.has_header:
                next(reader, None)

            index = 0
            while True:
                try:
                    fields = next(reader)
                except StopIteration:
                    return
                except csv.Error as e:
                    yield index, self._reject(ParseError(str(e), self.path, index))
                    index += 1
                    continue

                if not fields:
                    # Blank line: not a record
                    continue

                if self.expected_fields is not None and len(fields) != self.expected_fields:
                    yield index, self._reject(ParseError(
                        f"Expected {self.expected_fields} fields, got {len(fields)}", self.path, index
                    ))
                else:
                    yield index, tuple(None if value == null_value else value for value in fields)
                index += 1

    def _reject(self, error: ParseError) -> None:
        if self.context.parse_error_policy == "abort":
            raise error
        self.stats.records_rejected += 1
        logger.warning(f"[Producer] Skipping malformed record: {error}")
        return None

    def _iter_blocks(self, start_block: int) -> Iterator[Tuple[int, List[Row]]]:
        """Group records into blocks, dropping the blocks before `start_block`."""
        block_size = self.context.block_size
        first_record = start_block * block_size
        current_block = start_block
        rows: List[Row] = []

        for index, row in self._iter_records():
            if index < first_record:
                continue
            block_id = index // block_size
            if block_id != current_block:
                yield current_block, rows
                current_block, rows = block_id, []
            if row is not None:
                rows.append(row)

        if rows:
            yield current_block, rows


class ProducerPool:
    """
    Runs one FileBlockProducer per file on a bounded thread pool.

    Producer failures are reported through `on_failure` as soon as they
    happen, so the run can stop the other producers early.
    """

    def __init__(self, producers: List[FileBlockProducer], max_workers: int,
                 on_failure: Optional[Callable[[FileBlockProducer, BaseException], None]] = None):
        self.producers = producers
        self.max_workers = max(1, min(max_workers, len(producers) or 1))
        self.on_failure = on_failure
        self.results: Dict[int, ProducerStats] = {}
        self.failures: Dict[int, BaseException] = {}

    def run(self) -> Dict[int, ProducerStats]:
        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="producer") as executor:
            futures = {executor.submit(producer.run): producer for producer in self.producers}
            for future in as_completed(futures):
                producer = futures[future]
                try:
                    self.results[producer.file_id] = future.result()
                except Exception as e:
                    logger.error(f"[ProducerPool] Producer for {producer.path} failed: {e}")
                    self.failures[producer.file_id] = e
                    self.results[producer.file_id] = producer.stats
                    if self.on_failure:
                        self.on_failure(producer, e)
        return self.results

    @property
    def succeeded(self) -> bool:
        return not self.failures
