"""
Pending-counter bookkeeping and the periodic progress tracker.

Producers register a counter for every block before publishing it, consumers
decrement it once the block's rows are durably written, and the tracker turns
the counters into the lowest (file, block) that is not fully drained.

A scan reads each file's state without stopping producers or consumers. The
view can be stale, but it is never ahead of reality: the checkpoint it yields
never skips a block that still has pending events.
"""
import threading
import time
from typing import Dict, List, Optional

from ...setup.logging import logger
from ..schemas import Position, ProducerContext
from ..services.checkpoint.service import CheckpointRecord, CheckpointStore, RunState


class BlockCounter:
    """Number of unconsumed events still referencing one block."""

    __slots__ = ("_value", "_lock")

    def __init__(self):
        self._value = 0
        self._lock = threading.Lock()

    def increment(self, amount: int = 1) -> int:
        with self._lock:
            self._value += amount
            return self._value

    def decrement(self, amount: int = 1) -> int:
        with self._lock:
            if self._value - amount < 0:
                raise RuntimeError("Pending counter would drop below zero")
            self._value -= amount
            return self._value

    @property
    def value(self) -> int:
        return self._value


class FileProgress:
    """Counters and done flag of one input file."""

    def __init__(self, start_block: int = 0):
        self.start_block = start_block
        self.blocks: Dict[int, BlockCounter] = {}
        # First block id not registered yet; blocks below it were produced
        self.frontier = start_block
        self.done = threading.Event()
        self.lock = threading.Lock()


class ProgressState:
    """
    Shared run state: the pending-counter table and the file done flags.

    Created by the run and handed to every producer, consumer and the
    tracker. Blocks of files before `start` were drained by an earlier run.
    """

    def __init__(self, file_count: int, start: Optional[Position] = None):
        self.file_count = file_count
        self.start = start or Position(0, 0)
        self._files: List[FileProgress] = [
            FileProgress(self.start.block_index if index == self.start.file_index else 0)
            for index in range(file_count)
        ]

    @property
    def start_file_index(self) -> int:
        return self.start.file_index

    def start_block_for(self, file_id: int) -> int:
        return self._files[file_id].start_block

    def register(self, file_id: int, block_id: int, count: int = 1) -> None:
        """Add `count` pending events for a block before they are published."""
        progress = self._files[file_id]
        with progress.lock:
            counter = progress.blocks.get(block_id)
            if counter is None:
                counter = progress.blocks[block_id] = BlockCounter()
            counter.increment(count)
            progress.frontier = max(progress.frontier, block_id + 1)

    def complete(self, file_id: int, block_id: int, count: int = 1) -> int:
        """Mark `count` events of a block as drained; returns what is left."""
        return self._files[file_id].blocks[block_id].decrement(count)

    def pending(self, file_id: int, block_id: int) -> int:
        counter = self._files[file_id].blocks.get(block_id)
        return counter.value if counter is not None else 0

    def mark_done(self, file_id: int) -> None:
        self._files[file_id].done.set()

    def is_done(self, file_id: int) -> bool:
        return self._files[file_id].done.is_set()

    def snapshot(self, file_id: int) -> tuple:
        """
        Copy a file's counters.

        Returns:
            (block id -> pending count, frontier block id)
        """
        progress = self._files[file_id]
        with progress.lock:
            blocks = list(progress.blocks.items())
            frontier = progress.frontier
        return {block_id: counter.value for block_id, counter in blocks}, frontier

    def pending_total(self) -> int:
        total = 0
        for file_id in range(self.file_count):
            counters, _ = self.snapshot(file_id)
            total += sum(counters.values())
        return total

    def incomplete_files(self) -> List[int]:
        """Files of this run that are still producing or have undrained blocks."""
        incomplete = []
        for file_id in range(self.start.file_index, self.file_count):
            done = self.is_done(file_id)
            counters, _ = self.snapshot(file_id)
            if not done or any(value > 0 for value in counters.values()):
                incomplete.append(file_id)
        return incomplete

    def wait_drained(self, timeout: Optional[float] = None, poll_interval: float = 0.05) -> bool:
        """Block until every counter is zero. Returns False on timeout."""
        deadline = None if timeout is None else time.monotonic() + timeout
        while self.pending_total() > 0:
            if deadline is not None and time.monotonic() >= deadline:
                return False
            time.sleep(poll_interval)
        return True

    def resume_position(self) -> Position:
        """
        Lowest position that is not known to be drained.

        Files are visited in index order from the run's start file:
        - a file with pending blocks resumes at its smallest pending block;
        - a drained file that is still producing resumes at its frontier;
        - a drained, done file is passed over.
        Past the last file the position is (file_count, 0).
        """
        for file_id in range(self.start.file_index, self.file_count):
            # Read the flag first: once set, every block of the file is
            # already registered, so the snapshot below is complete.
            done = self.is_done(file_id)
            counters, frontier = self.snapshot(file_id)

            pending_blocks = [block_id for block_id, value in counters.items() if value > 0]
            if pending_blocks:
                return Position(file_id, min(pending_blocks))
            if not done:
                return Position(file_id, frontier)

        return Position(self.file_count, 0)


class ProgressTracker:
    """
    Periodically computes the resume position and persists it.

    Runs on its own thread with a fixed delay between scans, so a slow scan
    never overlaps the next one. Scan errors are logged and retried on the
    next tick; nothing is raised into the pipeline.
    """

    def __init__(
        self,
        state: ProgressState,
        context: ProducerContext,
        store: CheckpointStore,
        interval_seconds: float = 60.0,
        initial_delay_seconds: float = 30.0,
        force_drain_timeout_seconds: float = 300.0,
    ):
        self.state = state
        self.context = context
        self.store = store
        self.interval_seconds = interval_seconds
        self.initial_delay_seconds = initial_delay_seconds
        self.force_drain_timeout_seconds = force_drain_timeout_seconds
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.last_position: Optional[Position] = None
        self.final_state: Optional[RunState] = None
        self.scan_count = 0

    def start(self) -> None:
        if self._thread is not None:
            raise RuntimeError("Progress tracker already started")
        # The run's start position is on disk before any event is written.
        self.store.save(CheckpointRecord.at(self.state.start))
        self.last_position = self.state.start
        self._thread = threading.Thread(target=self._run, name="progress-tracker", daemon=True)
        self._thread.start()

    def _run(self) -> None:
        if self._stop_event.wait(self.initial_delay_seconds):
            return
        while True:
            self.tick()
            if self._stop_event.wait(self.interval_seconds):
                return

    def tick(self, run_state: RunState = RunState.RUNNING) -> Optional[Position]:
        """One scan-and-save cycle; errors are logged, never raised."""
        try:
            return self.checkpoint(run_state)
        except Exception as e:
            logger.error(f"[ProgressTracker] Progress scan failed, retrying next tick: {e}")
            return None

    def scan(self) -> Position:
        position = self.state.resume_position()
        self.context.next_file_index = position.file_index
        self.context.next_block_index = position.block_index
        self.scan_count += 1
        return position

    def checkpoint(self, run_state: RunState = RunState.RUNNING) -> Position:
        position = self.scan()
        self.store.save(CheckpointRecord.at(position, run_state))
        self.last_position = position

        if position.file_index >= self.state.file_count:
            logger.info("[ProgressTracker] All files processed")
        logger.info(f"[ProgressTracker] Next file {position.file_index}, next block {position.block_index}")
        return position

    def stop(self, force: bool = False, run_state: Optional[RunState] = None) -> Optional[Position]:
        """
        Stop the periodic scans and write the terminal checkpoint.

        Args:
            force: Wait for every pending counter to reach zero first.
            run_state: State recorded with the final position. Defaults to
                completed for a forced stop and stopped otherwise.
        """
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join()

        if force:
            if not self.state.wait_drained(self.force_drain_timeout_seconds):
                logger.error(
                    f"[ProgressTracker] {self.state.pending_total()} events still pending after "
                    f"{self.force_drain_timeout_seconds}s; final checkpoint reflects the drained prefix only"
                )
                run_state = RunState.FAILED
        if run_state is None:
            run_state = RunState.COMPLETED if force else RunState.STOPPED

        self.final_state = run_state
        return self.tick(run_state)
