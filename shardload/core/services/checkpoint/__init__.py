from .service import CheckpointRecord, CheckpointStore, RunState

__all__ = ["CheckpointRecord", "CheckpointStore", "RunState"]
