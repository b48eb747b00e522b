from dataclasses import dataclass, field
from pathlib import Path


@dataclass(frozen=True)
class BatchPlannerError(Exception):
    """Base exception for errors in the batch_planner package."""


@dataclass(frozen=True)
class EstimationError(BatchPlannerError):
    """Raised when a file's token estimate cannot be used for planning."""

    path: str
    reason: str

    def __str__(self) -> str:
        return f"{self.path}: {self.reason}"


@dataclass(frozen=True)
class BoundaryDetectionError(BatchPlannerError):
    """Raised inside boundary detection when no segmentation can be produced."""

    path: str
    reason: str

    def __str__(self) -> str:
        return f"{self.path}: {self.reason}"


@dataclass(frozen=True)
class InvalidBatchError(BatchPlannerError):
    """Raised when a strategy produced a batch that breaks the batch contract."""

    batch_id: str
    problems: tuple[str, ...] = field(default_factory=tuple)

    def __str__(self) -> str:
        return f"invalid batch {self.batch_id}: {'; '.join(self.problems)}"


@dataclass(frozen=True)
class InvalidTaskTransitionError(BatchPlannerError):
    """Raised when a task status change is not allowed from its current status."""

    task_id: str
    current: str
    requested: str

    def __str__(self) -> str:
        return f"task {self.task_id}: cannot move from {self.current} to {self.requested}"


@dataclass(frozen=True)
class PlanningCancelledError(BatchPlannerError):
    """Raised when the caller cancels a planning run."""

    message: str = "Planning run was cancelled; partial batches were discarded."

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True)
class ManifestError(BatchPlannerError):
    """Raised when a manifest of analysed files cannot be loaded."""

    path: Path
    reason: str

    def __str__(self) -> str:
        return f"{self.path}: {self.reason}"
