"""Route analysed files to the three strategies and assemble one plan."""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import BaseModel, ConfigDict, Field

from batch_planner.combined import CombinedFileBatchStrategy
from batch_planner.config import (
    BatchKind,
    ImportanceRules,
    RejectionKind,
    RelationshipWeights,
    SplitQualityWeights,
    StrategyTag,
)
from batch_planner.exceptions import EstimationError, PlanningCancelledError
from batch_planner.large_file import LargeFileMultiBatchStrategy
from batch_planner.logging import logger
from batch_planner.models import Batch, Rejection, SourceFileRef, StrategyResult, ensure_valid_batch
from batch_planner.settings import PlannerSettings
from batch_planner.single import SingleFileBatchStrategy
from batch_planner.tasks import Task, wrap_batches
from batch_planner.tokens import estimate_text_tokens

if TYPE_CHECKING:
    import threading
    from collections.abc import Callable, Iterable, Mapping, Sequence

    from batch_planner.boundaries import BoundaryDetector
    from batch_planner.tokens import TokenEstimator

    FileReaderFn = Callable[[str], str]


class PlanSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    input_files: int = 0
    planned_files: int = 0
    rejected_files: int = 0
    batches: int = 0
    combined_batches: int = 0
    single_batches: int = 0
    chunk_batches: int = 0
    fallback_chunks: int = 0
    total_tokens: int = 0


class BatchPlan(BaseModel):
    """Ordered batches plus every file that could not be placed.

    Attributes:
        batches: Combined batches first, then single, then chunk batches.
        rejections: One entry per unplannable input file.
        summary: Counts per kind, planned tokens and fallback chunks.
    """

    model_config = ConfigDict(frozen=True)

    batches: tuple[Batch, ...] = ()
    rejections: tuple[Rejection, ...] = ()
    summary: PlanSummary = Field(default_factory=PlanSummary)

    def to_tasks(self, prefix: str = "task", created_at: str | None = None) -> list[Task]:
        """Wrap every batch into a pending task, in plan order."""
        return wrap_batches(self.batches, prefix=prefix, created_at=created_at)

    def accounted_paths(self) -> set[str]:
        """Every input path that appears in a batch or a rejection."""
        paths = {m.path for b in self.batches for m in b.members}
        paths.update(r.path for r in self.rejections)
        return paths


def _reroute_target(rejection: Rejection) -> StrategyTag | None:
    """Where a strategy's size rejection should go next."""
    if rejection.kind != RejectionKind.SIZE_MISMATCH:
        return None
    if rejection.strategy == StrategyTag.COMBINED:
        return StrategyTag.SINGLE
    if rejection.strategy == StrategyTag.SINGLE:
        return StrategyTag.COMBINED if rejection.reason == "too_small" else StrategyTag.LARGE_MULTI
    if rejection.strategy == StrategyTag.LARGE_MULTI:
        return StrategyTag.SINGLE
    return None


class BatchPlanner:
    """Buckets files by size and concatenates the strategies' batches.

    Args:
        settings (PlannerSettings | None): thresholds and budgets
        reader (FileReaderFn | None): raw content access for large files
        detector (BoundaryDetector | None): chunk planner for large files
        estimator (TokenEstimator): text-to-token estimator for content
        relationship_weights (RelationshipWeights | None): combined-strategy weights
        importance_rules (ImportanceRules | None): single-strategy weights
        split_quality_weights (SplitQualityWeights | None): large-file weights
    """

    def __init__(
        self,
        settings: PlannerSettings | None = None,
        reader: FileReaderFn | None = None,
        detector: BoundaryDetector | None = None,
        estimator: TokenEstimator = estimate_text_tokens,
        relationship_weights: RelationshipWeights | None = None,
        importance_rules: ImportanceRules | None = None,
        split_quality_weights: SplitQualityWeights | None = None,
    ) -> None:
        self.settings = settings or PlannerSettings()
        self.combined = CombinedFileBatchStrategy(self.settings, relationship_weights)
        self.single = SingleFileBatchStrategy(self.settings, importance_rules)
        self.large = LargeFileMultiBatchStrategy(
            self.settings,
            reader=reader,
            detector=detector,
            weights=split_quality_weights,
            estimator=estimator,
        )

    def bucket(self, tokens: int) -> StrategyTag:
        """Strategy whose size range contains ``tokens``."""
        if tokens < self.settings.small_file_max_tokens:
            return StrategyTag.COMBINED
        if tokens < self.settings.medium_file_max_tokens:
            return StrategyTag.SINGLE
        return StrategyTag.LARGE_MULTI

    def check_estimate(self, ref: SourceFileRef) -> None:
        """Raise when a file's estimate cannot be planned with.

        Raises:
            EstimationError: if the estimator failed or the count is absurd.
        """
        if ref.token_estimate.has_error:
            raise EstimationError(path=ref.path, reason=ref.token_estimate.error or "estimation failed")
        limit = self.settings.max_file_tokens
        if limit is not None and ref.total_tokens > limit:
            raise EstimationError(path=ref.path, reason=f"estimate {ref.total_tokens} exceeds max_file_tokens {limit}")

    def plan(
        self,
        files: Iterable[SourceFileRef | Mapping[str, Any]],
        cancel_event: threading.Event | None = None,
    ) -> BatchPlan:
        """Plan batches for a list of analysed files.

        Every input path ends up either in exactly one batch (or one ordered
        run of chunk batches) or in the rejection list.

        Args:
            files (Iterable[SourceFileRef | Mapping[str, Any]]): analysed files, in input order
            cancel_event (threading.Event | None): set by the caller to abandon the run

        Raises:
            PlanningCancelledError: if ``cancel_event`` is set before planning completes.
            InvalidBatchError: if a strategy produced a batch breaking the batch contract.

        Returns:
            BatchPlan: the ordered batches, rejections and summary
        """
        structlog.contextvars.bind_contextvars(planning_run=uuid.uuid4().hex[:12])
        try:
            return self._plan(files, cancel_event)
        finally:
            structlog.contextvars.unbind_contextvars("planning_run")

    def _plan(
        self,
        files: Iterable[SourceFileRef | Mapping[str, Any]],
        cancel_event: threading.Event | None,
    ) -> BatchPlan:
        refs = [f if isinstance(f, SourceFileRef) else SourceFileRef.model_validate(f) for f in files]
        logger.info("planning_start", files=len(refs))
        self._check_cancel(cancel_event)

        buckets: dict[StrategyTag, list[tuple[int, SourceFileRef]]] = {tag: [] for tag in StrategyTag}
        rejections: list[Rejection] = []
        seen: set[str] = set()
        for idx, ref in enumerate(refs):
            self._check_cancel(cancel_event)
            if ref.path in seen:
                logger.warning("duplicate_path_rejected", path=ref.path)
                rejections.append(
                    Rejection(path=ref.path, kind=RejectionKind.DUPLICATE_PATH, reason="duplicate path", tokens=ref.total_tokens),
                )
                continue
            seen.add(ref.path)
            try:
                self.check_estimate(ref)
            except EstimationError as e:
                kind = RejectionKind.ESTIMATION_ERROR if ref.token_estimate.has_error else RejectionKind.SIZE_MISMATCH
                logger.warning("estimate_rejected", path=ref.path, reason=e.reason)
                rejections.append(Rejection(path=ref.path, kind=kind, reason=e.reason, tokens=ref.total_tokens))
                continue
            buckets[self.bucket(ref.total_tokens)].append((idx, ref))

        results: dict[StrategyTag, StrategyResult] = {}
        for tag in StrategyTag:
            if buckets[tag]:
                self._check_cancel(cancel_event)
                results[tag] = self._run(tag, buckets[tag], cancel_event)

        first_index: dict[str, tuple[int, SourceFileRef]] = {}
        for idx, ref in enumerate(refs):
            first_index.setdefault(ref.path, (idx, ref))

        retry: dict[StrategyTag, list[tuple[int, SourceFileRef]]] = {tag: [] for tag in StrategyTag}
        for result in results.values():
            for rejection in result.rejections:
                target = self._reroute(rejection)
                if target is None:
                    rejections.append(rejection)
                    continue
                logger.info("rerouting_file", path=rejection.path, source=rejection.strategy, target=target)
                retry[target].append(first_index[rejection.path])

        # A strategy receiving re-routed files is rerun on its whole bucket so batch ids stay unique.
        for tag, extra in retry.items():
            if not extra:
                continue
            self._check_cancel(cancel_event)
            extra_paths = {ref.path for _, ref in extra}
            rerun = self._run(tag, sorted([*buckets[tag], *extra], key=lambda e: e[0]), cancel_event)
            results[tag] = StrategyResult(batches=rerun.batches)
            for rejection in rerun.rejections:
                if rejection.path in extra_paths:
                    logger.warning("file_unplannable", path=rejection.path, reason=rejection.reason)
                    rejections.append(rejection)

        batches: list[Batch] = []
        for tag in StrategyTag:
            if tag in results:
                batches.extend(results[tag].batches)
        cap = self.settings.max_files_per_batch
        validated = tuple(ensure_valid_batch(b, max_members=cap if b.kind == BatchKind.COMBINED else None) for b in batches)

        plan = BatchPlan(
            batches=validated,
            rejections=tuple(sorted(rejections, key=lambda r: first_index[r.path][0])),
            summary=self._summarise(refs, validated, rejections),
        )
        logger.info(
            "planning_done",
            batches=plan.summary.batches,
            rejected=plan.summary.rejected_files,
            tokens=plan.summary.total_tokens,
        )
        return plan

    def _run(
        self,
        tag: StrategyTag,
        entries: Sequence[tuple[int, SourceFileRef]],
        cancel_event: threading.Event | None,
    ) -> StrategyResult:
        indices = [idx for idx, _ in entries]
        refs = [ref for _, ref in entries]
        if tag == StrategyTag.COMBINED:
            return self.combined.plan(refs, indices)
        if tag == StrategyTag.SINGLE:
            return self.single.plan(refs, indices)
        return self.large.plan(refs, indices, cancel_event=cancel_event)

    def _reroute(self, rejection: Rejection) -> StrategyTag | None:
        """Bucket matching the rejected file's size, else the one its rejection reason names."""
        fallback = _reroute_target(rejection)
        if fallback is None:
            return None
        target = self.bucket(rejection.tokens)
        return fallback if target == rejection.strategy else target

    @staticmethod
    def _check_cancel(cancel_event: threading.Event | None) -> None:
        if cancel_event is not None and cancel_event.is_set():
            logger.warning("planning_cancelled")
            raise PlanningCancelledError

    @staticmethod
    def _summarise(refs: Sequence[SourceFileRef], batches: Sequence[Batch], rejections: Sequence[Rejection]) -> PlanSummary:
        kinds = [b.kind for b in batches]
        return PlanSummary(
            input_files=len(refs),
            planned_files=len({m.path for b in batches for m in b.members}),
            rejected_files=len(rejections),
            batches=len(batches),
            combined_batches=kinds.count(BatchKind.COMBINED),
            single_batches=kinds.count(BatchKind.SINGLE),
            chunk_batches=kinds.count(BatchKind.CHUNK),
            fallback_chunks=sum(1 for b in batches if b.is_fallback),
            total_tokens=sum(b.estimated_tokens for b in batches),
        )
