"""
Checkpoint persistence.

The checkpoint is a small JSON document holding the next (file, block)
position to resume from and the state of the run that wrote it. It has a
single writer (the progress tracker) and is read once at startup.
"""
import json
import os
import threading
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ....setup.logging import logger
from ....utils.files import atomic_write_text
from ...exceptions import CheckpointError
from ...schemas import Position


class RunState(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    STOPPED = "stopped"


class CheckpointRecord(BaseModel):
    """Persisted resume position. Field aliases match the on-disk format."""

    model_config = ConfigDict(populate_by_name=True)

    next_file_index: int = Field(default=0, ge=0, alias="nextFileIndex")
    next_block_index: int = Field(default=0, ge=0, alias="nextBlockIndex")
    run_state: RunState = Field(default=RunState.RUNNING, alias="runState")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")

    @property
    def position(self) -> Position:
        return Position(self.next_file_index, self.next_block_index)

    @classmethod
    def at(cls, position: Position, run_state: RunState = RunState.RUNNING) -> "CheckpointRecord":
        return cls(
            next_file_index=position.file_index,
            next_block_index=position.block_index,
            run_state=run_state,
            updated_at=datetime.now(),
        )


class CheckpointStore:
    """Atomic JSON checkpoint file."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._lock = threading.Lock()

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> CheckpointRecord:
        """
        Read the checkpoint. A missing file means a fresh run at (0, 0).

        Raises:
            CheckpointError: If the file exists but is not a valid checkpoint.
        """
        if not self.path.exists():
            logger.info(f"[Checkpoint] No checkpoint at {self.path}, starting fresh")
            return CheckpointRecord()

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                record = CheckpointRecord.model_validate(json.load(f))
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            raise CheckpointError(f"Cannot read checkpoint {self.path}: {e}") from e

        logger.info(
            f"[Checkpoint] Loaded {self.path}: next position {record.position}, "
            f"previous run {record.run_state.value}"
        )
        return record

    def save(self, record: CheckpointRecord) -> None:
        """Persist a record with write-to-temp-then-rename semantics."""
        payload = record.model_dump_json(by_alias=True, indent=2)
        with self._lock:
            atomic_write_text(str(self.path), payload)
        logger.debug(f"[Checkpoint] Saved {record.position} ({record.run_state.value})")

    def clear(self) -> None:
        """Remove the checkpoint so the next run starts from (0, 0)."""
        with self._lock:
            if self.path.exists():
                os.remove(self.path)
                logger.info(f"[Checkpoint] Removed {self.path}")
