"""
Migration run executor.

Wires one run together: metadata resolution, checkpoint loading, the event
channel, the consumer workers, the producer pool and the progress tracker.
"""
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

from ..setup.config import AppConfig
from ..setup.logging import logger
from .exceptions import CheckpointError, WriteError
from .interfaces import MetadataRepository, ShardWriter
from .pipeline.channel import EventChannel
from .pipeline.consumer import RoutingConsumer
from .pipeline.producer import FileBlockProducer, ProducerPool
from .pipeline.progress import ProgressState, ProgressTracker
from .schemas import ConsumerContext, Position, ProducerContext
from .services.checkpoint import CheckpointRecord, CheckpointStore, RunState
from .services.metadata import MetadataResolver, table_for_file


@dataclass
class RunResult:
    state: RunState
    checkpoint: Optional[Position] = None
    rows_written: int = 0
    rows_rejected: int = 0
    failed_files: List[str] = field(default_factory=list)
    failed_tables: List[str] = field(default_factory=list)
    incomplete_files: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    elapsed_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.state == RunState.COMPLETED


class RunSupervisor:
    """
    Shared stop signal and failure list of a run.

    Any unit that fails calls fail(); the stop event then tells producers to
    stop publishing and consumers to stop claiming.
    """

    def __init__(self):
        self.stop_event = threading.Event()
        self._lock = threading.Lock()
        self.failures: List[Tuple[str, BaseException]] = []
        self.failed_files: List[str] = []
        self.failed_tables: List[str] = []
        self.stop_requested = False

    def fail(self, unit, error: BaseException) -> None:
        name = getattr(unit, "path", None) or getattr(unit, "name", None) or type(unit).__name__
        with self._lock:
            self.failures.append((str(name), error))
            path = getattr(unit, "path", None)
            if path and path not in self.failed_files:
                self.failed_files.append(path)
            table = getattr(error, "table", None)
            if isinstance(error, WriteError) and table and table not in self.failed_tables:
                self.failed_tables.append(table)
        logger.error(f"[RunSupervisor] {name} failed, stopping the run: {error}")
        self.stop_event.set()

    def request_stop(self) -> None:
        """Operator stop: finish in-flight batches and checkpoint."""
        if not self.stop_requested:
            logger.warning("[RunSupervisor] Stop requested, draining in-flight batches...")
        self.stop_requested = True
        self.stop_event.set()

    @property
    def failed(self) -> bool:
        with self._lock:
            return bool(self.failures)

    def errors(self) -> List[str]:
        with self._lock:
            return [f"{name}: {error}" for name, error in self.failures]


def build_contexts(config: AppConfig) -> Tuple[ProducerContext, ConsumerContext]:
    producer = config.producer
    consumer = config.consumer
    producer_context = ProducerContext(
        files=[str(path) for path in producer.files],
        block_size=producer.block_size,
        separator=producer.separator,
        encoding=producer.encoding,
        has_header=producer.has_header,
        null_value=producer.null_value,
        parse_error_policy=producer.parse_error_policy,
    )
    consumer_context = ConsumerContext(
        tables=list(consumer.tables),
        operation=consumer.operation,
        batch_size=consumer.batch_size,
        max_retries=consumer.max_retries,
        retry_min_wait_seconds=consumer.retry_min_wait_seconds,
        retry_max_wait_seconds=consumer.retry_max_wait_seconds,
        columns=list(consumer.columns) if consumer.columns is not None else None,
    )
    return producer_context, consumer_context


class MigrationExecutor:
    """Runs one migration of the configured files into the sharded tables."""

    def __init__(
        self,
        config: AppConfig,
        repository: MetadataRepository,
        writer: ShardWriter,
        store: Optional[CheckpointStore] = None,
        supervisor: Optional[RunSupervisor] = None,
    ):
        self.config = config
        self.repository = repository
        self.writer = writer
        self.store = store or CheckpointStore(config.checkpoint.path)
        self.supervisor = supervisor or RunSupervisor()

    def get_name(self) -> str:
        return f"{self.config.consumer.operation.value} into {', '.join(self.config.consumer.tables)}"

    def validate_config(self) -> bool:
        errors = []
        if not self.config.producer.files:
            errors.append("No input files configured")
        if not self.config.consumer.tables:
            errors.append("No target tables configured")
        for path in self.config.producer.files:
            if not Path(path).is_file():
                errors.append(f"Input file not found: {path}")
        for error in errors:
            logger.error(f"[MigrationExecutor] {error}")
        return not errors

    def load_start_position(self, file_count: int) -> Position:
        if not self.config.checkpoint.resume:
            logger.info("[MigrationExecutor] Resume disabled, starting at the first file")
            return Position(0, 0)

        record: CheckpointRecord = self.store.load()
        position = record.position
        if position.file_index > file_count:
            raise CheckpointError(
                f"Checkpoint points at file {position.file_index} but only {file_count} files are configured"
            )
        if position.file_index == file_count:
            logger.info("[MigrationExecutor] Checkpoint says every file was already drained")
        return position

    def run(self) -> RunResult:
        """
        Execute the run until every file is drained, a unit fails or a stop
        is requested.

        Raises:
            MetadataError: If the table descriptors cannot be resolved.
            CheckpointError: If an existing checkpoint cannot be used.
        """
        start_time = time.perf_counter()
        producer_context, consumer_context = build_contexts(self.config)

        resolver = MetadataResolver(self.repository, self.config.database.schema_name)
        consumer_context.descriptors = resolver.resolve(
            consumer_context.tables, consumer_context.columns, consumer_context.operation
        )
        file_tables = [table_for_file(path, consumer_context.tables) for path in producer_context.files]

        start = self.load_start_position(len(producer_context.files))
        producer_context.next_file_index = start.file_index
        producer_context.next_block_index = start.block_index

        state = ProgressState(len(producer_context.files), start)
        channel = EventChannel(self.config.channel.capacity, state, self.config.channel.claim_poll_seconds)
        tracker = ProgressTracker(
            state,
            producer_context,
            self.store,
            interval_seconds=self.config.checkpoint.interval_seconds,
            initial_delay_seconds=self.config.checkpoint.initial_delay_seconds,
            force_drain_timeout_seconds=self.config.checkpoint.force_drain_timeout_seconds,
        )

        stop_event = self.supervisor.stop_event
        consumers = [
            RoutingConsumer(
                worker_id,
                consumer_context,
                channel,
                self.writer,
                stop_event=stop_event,
                on_failure=self.supervisor.fail,
                parse_error_policy=producer_context.parse_error_policy,
            )
            for worker_id in range(self.config.consumer.workers)
        ]
        producers = [
            FileBlockProducer(
                producer_context,
                file_id,
                table,
                channel,
                state,
                expected_fields=len(consumer_context.descriptor(table).fields),
                stop_event=stop_event,
                publish_timeout=self.config.channel.publish_timeout_seconds,
            )
            for file_id, table in enumerate(file_tables)
        ]
        pool = ProducerPool(producers, self.config.producer.workers, on_failure=self.supervisor.fail)

        logger.info(
            f"[MigrationExecutor] Starting {self.get_name()}: {len(producers)} files from {producer_context.resume_position}, "
            f"{len(consumers)} consumers, {pool.max_workers} producers, channel capacity {channel.capacity}"
        )

        tracker.start()
        for consumer in consumers:
            consumer.start()
        try:
            pool.run()
        except Exception as e:
            self.supervisor.fail(self, e)
        finally:
            channel.close()
            for consumer in consumers:
                consumer.join()

        if self.supervisor.failed:
            position = tracker.stop(force=False, run_state=RunState.FAILED)
        elif self.supervisor.stop_requested:
            position = tracker.stop(force=False, run_state=RunState.STOPPED)
        else:
            position = tracker.stop(force=True)

        result = RunResult(
            state=tracker.final_state,
            checkpoint=position,
            rows_written=sum(consumer.stats.rows_written for consumer in consumers),
            rows_rejected=(
                sum(consumer.stats.rows_rejected for consumer in consumers)
                + sum(producer.stats.records_rejected for producer in producers)
            ),
            failed_files=list(self.supervisor.failed_files),
            failed_tables=list(self.supervisor.failed_tables),
            incomplete_files=[producer_context.files[file_id] for file_id in state.incomplete_files()],
            errors=self.supervisor.errors(),
            elapsed_seconds=time.perf_counter() - start_time,
        )
        if position is None:
            result.state = RunState.FAILED
            result.errors.append("Final checkpoint could not be written")

        self._report(result)
        return result

    @staticmethod
    def _report(result: RunResult) -> None:
        logger.info(
            f"[MigrationExecutor] Run {result.state.value}: {result.rows_written} rows written, "
            f"{result.rows_rejected} rejected, checkpoint {result.checkpoint}, "
            f"{result.elapsed_seconds:.2f}s"
        )
        if result.failed_files:
            logger.error(f"[MigrationExecutor] Failed files: {result.failed_files}")
        if result.failed_tables:
            logger.error(f"[MigrationExecutor] Failed tables: {result.failed_tables}")
        if result.incomplete_files:
            logger.warning(f"[MigrationExecutor] Files not completed: {result.incomplete_files}")
