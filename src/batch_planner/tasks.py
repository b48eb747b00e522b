"""Lifecycle wrapper around planned batches.

The planner only ever creates pending tasks; status changes belong to
whatever executes them and go through :meth:`Task.transition`.
"""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING, Any, Self

from pydantic import BaseModel, ConfigDict, Field

from batch_planner.config import BatchKind
from batch_planner.exceptions import InvalidTaskTransitionError
from batch_planner.file_manipulation import now_iso
from batch_planner.models import Batch

if TYPE_CHECKING:
    from collections.abc import Sequence


class TaskStatus(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


ALLOWED_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.IN_PROGRESS, TaskStatus.CANCELLED}),
    TaskStatus.IN_PROGRESS: frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.FAILED: frozenset(),
    TaskStatus.CANCELLED: frozenset(),
}

# Per-kind defaults merged under the batch's own processing hints.
KIND_DEFAULTS: dict[BatchKind, dict[str, Any]] = {
    BatchKind.COMBINED: {"priority": 5, "category": "file_batch", "requires_context": False},
    BatchKind.SINGLE: {"priority": 7, "category": "single_file", "requires_context": False},
    BatchKind.CHUNK: {"priority": 8, "category": "large_file_chunk", "requires_context": True},
}

DURATION_MULTIPLIER: dict[BatchKind, float] = {
    BatchKind.COMBINED: 1.2,
    BatchKind.SINGLE: 1.0,
    BatchKind.CHUNK: 1.3,
}


class TaskTiming(BaseModel):
    model_config = ConfigDict(frozen=True)

    created_at: str
    started_at: str | None = None
    completed_at: str | None = None
    estimated_duration_seconds: int = Field(default=0, ge=0)


class Task(BaseModel):
    """A batch accepted for execution, with its status and timing.

    Tasks are immutable: every status change returns a new Task.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    status: TaskStatus = TaskStatus.PENDING
    batch: Batch
    processing_hints: dict[str, Any] = Field(default_factory=dict)
    timing: TaskTiming
    depends_on: tuple[str, ...] = ()
    error: str | None = None

    def transition(self, status: TaskStatus, *, at: str | None = None, error: str | None = None) -> Self:
        """Move to ``status``, stamping start or completion time.

        Args:
            status (TaskStatus): the requested status
            at (str | None): timestamp to record; defaults to now
            error (str | None): failure description, kept on the new task

        Raises:
            InvalidTaskTransitionError: if the move is not allowed from the current status.

        Returns:
            Self: the updated task
        """
        if status not in ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTaskTransitionError(task_id=self.id, current=self.status, requested=status)
        stamp = at or now_iso()
        timing = self.timing
        if status == TaskStatus.IN_PROGRESS:
            timing = timing.model_copy(update={"started_at": stamp})
        else:
            timing = timing.model_copy(update={"completed_at": stamp})
        return self.model_copy(update={"status": status, "timing": timing, "error": error or self.error})

    def start(self) -> Self:
        return self.transition(TaskStatus.IN_PROGRESS)

    def complete(self) -> Self:
        return self.transition(TaskStatus.COMPLETED)

    def fail(self, error: str) -> Self:
        return self.transition(TaskStatus.FAILED, error=error)

    def cancel(self) -> Self:
        return self.transition(TaskStatus.CANCELLED)

    @property
    def is_terminal(self) -> bool:
        return not ALLOWED_TRANSITIONS[self.status]


def estimate_duration_seconds(batch: Batch) -> int:
    """Rough execution time: a base cost plus token and file terms, scaled by kind."""
    base = 30 + min(batch.estimated_tokens / 1000, 60) + 10 * len(batch.members)
    return round(base * DURATION_MULTIPLIER[batch.kind])


def make_task(
    task_id: str,
    batch: Batch,
    *,
    depends_on: Sequence[str] = (),
    created_at: str | None = None,
) -> Task:
    """Wrap one batch into a pending task.

    Args:
        task_id (str): the task id
        batch (Batch): the batch to execute
        depends_on (Sequence[str]): ids of tasks that must finish first
        created_at (str | None): creation timestamp; defaults to now

    Returns:
        Task: a pending task owning the batch
    """
    hints = {**KIND_DEFAULTS[batch.kind], **batch.metadata.processing_hints}
    return Task(
        id=task_id,
        batch=batch,
        processing_hints=hints,
        timing=TaskTiming(
            created_at=created_at or now_iso(),
            estimated_duration_seconds=estimate_duration_seconds(batch),
        ),
        depends_on=tuple(depends_on),
    )


def wrap_batches(batches: Sequence[Batch], prefix: str = "task", created_at: str | None = None) -> list[Task]:
    """Wrap batches into pending tasks, in plan order.

    Chunk tasks of one split file depend on the task of the previous chunk.

    Args:
        batches (Sequence[Batch]): planned batches
        prefix (str): task id prefix; ids are ``<prefix>_1`` .. ``<prefix>_N``
        created_at (str | None): shared creation timestamp; defaults to now

    Returns:
        list[Task]: one task per batch
    """
    stamp = created_at or now_iso()
    tasks: list[Task] = []
    last_chunk_task: dict[str, str] = {}
    for n, batch in enumerate(batches, start=1):
        task_id = f"{prefix}_{n}"
        depends: tuple[str, ...] = ()
        if batch.kind == BatchKind.CHUNK and batch.parent_file is not None:
            previous = last_chunk_task.get(batch.parent_file.path)
            if previous is not None:
                depends = (previous,)
            last_chunk_task[batch.parent_file.path] = task_id
        tasks.append(make_task(task_id, batch, depends_on=depends, created_at=stamp))
    return tasks
