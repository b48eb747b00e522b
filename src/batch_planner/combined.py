"""Pack small files into shared batches.

Files are scored pairwise for relatedness, grouped greedily around the most
important files, bin-packed within each group and finally rebalanced. Batch
membership lives in a flat ``file index -> batch index`` array so the
rebalancing passes only ever reassign integers.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from batch_planner.config import (
    AnalysisDepth,
    BatchKind,
    RejectionKind,
    RelationshipWeights,
    StrategyTag,
)
from batch_planner.file_manipulation import PathParts, path_parts
from batch_planner.logging import logger
from batch_planner.models import (
    Batch,
    BatchMember,
    BatchMetadata,
    Rejection,
    SourceFileRef,
    StrategyResult,
)
from batch_planner.settings import PlannerSettings

if TYPE_CHECKING:
    from collections.abc import Sequence


def levenshtein(a: str, b: str) -> int:
    """Edit distance between two strings."""
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + (ca != cb)))
        previous = current
    return previous[-1]


def name_similarity(a: str, b: str) -> float:
    """Similarity in [0, 1]: 1 minus the edit distance over the longer length."""
    longer = max(len(a), len(b))
    if longer == 0:
        return 1.0
    return (longer - levenshtein(a, b)) / longer


def efficiency_score(tokens: int, target: int) -> int:
    return round(min(tokens / target, 1) * 100)


def file_priority(path: str, tokens: int) -> float:
    """Ordering heuristic: entry points and config first, larger files before smaller."""
    priority = 0.0
    if "index." in path:
        priority += 5
    if "main." in path:
        priority += 4
    if "config" in path:
        priority += 3
    if "test" in path:
        priority += 1
    return priority + min(tokens / 1000, 5)


@dataclass(frozen=True)
class _FileInfo:
    ref: SourceFileRef
    original_index: int
    tokens: int
    parts: PathParts
    priority: float
    references: frozenset[str]


def _references(ref: SourceFileRef) -> frozenset[str]:
    """Names a file's internal dependencies and imports could point at."""
    summary = ref.structural_summary
    if summary is None:
        return frozenset()
    names: set[str] = set()
    for dep in (*summary.dependencies.internal, *summary.imports):
        last = dep.replace("\\", "/").rstrip("/").rsplit("/", 1)[-1]
        if not last:
            continue
        names.add(last)
        names.add(last.split(".", 1)[0])
        names.add(last.rsplit(".", 1)[-1])
    names.discard("")
    return frozenset(names)


def _file_info(ref: SourceFileRef, original_index: int) -> _FileInfo:
    return _FileInfo(
        ref=ref,
        original_index=original_index,
        tokens=ref.total_tokens,
        parts=path_parts(ref.path),
        priority=file_priority(ref.path, ref.total_tokens),
        references=_references(ref),
    )


class _Assignment:
    """Arena of batch assignments over an immutable list of files."""

    def __init__(self, infos: Sequence[_FileInfo]) -> None:
        self.infos = infos
        self.batch_of: list[int] = [-1] * len(infos)
        self.order: list[int] = []
        self.next_batch = 0

    def new_batch(self) -> int:
        self.next_batch += 1
        return self.next_batch - 1

    def place(self, file_idx: int, batch_idx: int) -> None:
        if self.batch_of[file_idx] < 0:
            self.order.append(file_idx)
        self.batch_of[file_idx] = batch_idx

    def members(self, batch_idx: int) -> list[int]:
        return [f for f in self.order if self.batch_of[f] == batch_idx]

    def tokens(self, batch_idx: int) -> int:
        return sum(self.infos[f].tokens for f in self.order if self.batch_of[f] == batch_idx)

    def count(self, batch_idx: int) -> int:
        return sum(1 for f in self.order if self.batch_of[f] == batch_idx)

    def live_batches(self) -> list[int]:
        """Non-empty batches, ordered by their first placed file."""
        seen: dict[int, None] = {}
        for f in self.order:
            seen.setdefault(self.batch_of[f], None)
        return list(seen)


class CombinedFileBatchStrategy:
    """Groups small files into batches near the target size.

    Args:
        settings (PlannerSettings | None): size thresholds and caps
        weights (RelationshipWeights | None): relationship scoring weights
    """

    tag = StrategyTag.COMBINED

    def __init__(
        self,
        settings: PlannerSettings | None = None,
        weights: RelationshipWeights | None = None,
    ) -> None:
        self.settings = settings or PlannerSettings()
        self.weights = weights or RelationshipWeights()

    def relationship_score(self, a: _FileInfo, b: _FileInfo) -> int:
        """Weighted relatedness of two files; 0 means unrelated."""
        w = self.weights
        score = 0
        if a.parts.directory == b.parts.directory:
            score += w.same_directory
        if name_similarity(a.parts.base_name, b.parts.base_name) > w.name_similarity_threshold:
            score += w.similar_name
        if a.parts.extension and a.parts.extension == b.parts.extension:
            score += w.same_extension
        if b.parts.base_name in a.references or a.parts.base_name in b.references:
            score += w.import_dependency
        if a.parts.module and a.parts.module == b.parts.module:
            score += w.same_module
        low, high = sorted((a.tokens, b.tokens))
        if high > 0 and low / high > w.size_ratio_threshold:
            score += w.similar_size
        return score

    def plan(
        self,
        files: Sequence[SourceFileRef],
        original_indices: Sequence[int] | None = None,
    ) -> StrategyResult:
        """Pack small files into combined batches.

        Args:
            files (Sequence[SourceFileRef]): files routed to this strategy
            original_indices (Sequence[int] | None): each file's position in the
                planner input; defaults to its position in ``files``

        Returns:
            StrategyResult: combined batches, plus files refused as not small
        """
        indices = list(original_indices) if original_indices is not None else list(range(len(files)))
        logger.info("combined_strategy_start", files=len(files))

        infos: list[_FileInfo] = []
        rejections: list[Rejection] = []
        for ref, idx in zip(files, indices, strict=True):
            tokens = ref.total_tokens
            if ref.token_estimate.has_error:
                rejections.append(self._reject(ref, RejectionKind.ESTIMATION_ERROR, ref.token_estimate.error or ""))
                continue
            if tokens >= self.settings.small_file_max_tokens:
                rejections.append(self._reject(ref, RejectionKind.SIZE_MISMATCH, "too_large"))
                continue
            infos.append(_file_info(ref, idx))

        if not infos:
            return StrategyResult(rejections=tuple(rejections))

        ranked = sorted(range(len(infos)), key=lambda i: -infos[i].priority)
        groups = self._group(infos, ranked) if self.settings.enable_smart_grouping else [ranked]
        arena = _Assignment(infos)
        for group in groups:
            self._pack(arena, group)
        self._merge_small(arena)
        self._split_oversized(arena)

        batches = tuple(self._emit(arena, n, b) for n, b in enumerate(arena.live_batches(), start=1))
        logger.info("combined_strategy_done", batches=len(batches), rejected=len(rejections))
        return StrategyResult(batches=batches, rejections=tuple(rejections))

    def _reject(self, ref: SourceFileRef, kind: RejectionKind, reason: str) -> Rejection:
        logger.warning("combined_rejected", path=ref.path, reason=reason, tokens=ref.total_tokens)
        return Rejection(path=ref.path, kind=kind, reason=reason, tokens=ref.total_tokens, strategy=self.tag)

    def _group(self, infos: Sequence[_FileInfo], ranked: Sequence[int]) -> list[list[int]]:
        """Greedily gather the most related unprocessed files around each file."""
        rank_of = {f: r for r, f in enumerate(ranked)}
        processed: set[int] = set()
        groups: list[list[int]] = []
        for seed in ranked:
            if seed in processed:
                continue
            processed.add(seed)
            group = [seed]
            tokens = infos[seed].tokens
            scored = [
                (self.relationship_score(infos[seed], infos[other]), other)
                for other in ranked
                if other not in processed
            ]
            scored.sort(key=lambda pair: (-pair[0], rank_of[pair[1]]))
            for score, other in scored:
                if score <= 0:
                    break
                if len(group) >= self.settings.max_files_per_batch:
                    break
                if tokens + infos[other].tokens > self.settings.max_batch_size:
                    continue
                group.append(other)
                processed.add(other)
                tokens += infos[other].tokens
            groups.append(group)
        return groups

    def _pack(self, arena: _Assignment, group: Sequence[int]) -> None:
        """First-fit packing of one group in ascending token order."""
        current = arena.new_batch()
        tokens = 0
        count = 0
        for f in sorted(group, key=lambda i: arena.infos[i].tokens):
            size = arena.infos[f].tokens
            if count and (tokens + size > self.settings.max_batch_size or count >= self.settings.max_files_per_batch):
                current = arena.new_batch()
                tokens = 0
                count = 0
            arena.place(f, current)
            tokens += size
            count += 1

    def _fits(self, arena: _Assignment, batch_idx: int, tokens: int, count: int) -> bool:
        return (
            arena.tokens(batch_idx) + tokens <= self.settings.max_batch_size
            and arena.count(batch_idx) + count <= self.settings.max_files_per_batch
        )

    def _merge_small(self, arena: _Assignment) -> None:
        """Fold batches under the soft floor into the batches that follow them."""
        batches = arena.live_batches()
        i = 0
        while i < len(batches):
            current = batches[i]
            while arena.tokens(current) < self.settings.min_batch_size and i + 1 < len(batches):
                nxt = batches[i + 1]
                if not self._fits(arena, current, arena.tokens(nxt), arena.count(nxt)):
                    break
                for f in arena.members(nxt):
                    arena.place(f, current)
                logger.info("combined_batches_merged", into=current, merged=nxt, tokens=arena.tokens(current))
                batches.pop(i + 1)
            i += 1

    def _split_oversized(self, arena: _Assignment) -> None:
        """Move the smallest files out of batches above the hard cap."""
        cap = self.settings.max_batch_size
        for batch_idx in arena.live_batches():
            while arena.tokens(batch_idx) > cap and arena.count(batch_idx) > 1:
                smallest = min(arena.members(batch_idx), key=lambda f: arena.infos[f].tokens)
                size = arena.infos[smallest].tokens
                target = next(
                    (b for b in arena.live_batches() if b != batch_idx and self._fits(arena, b, size, 1)),
                    None,
                )
                if target is None:
                    target = arena.new_batch()
                    logger.info("combined_batch_split", source=batch_idx, new=target)
                arena.place(smallest, target)
                logger.info("combined_file_migrated", path=arena.infos[smallest].ref.path, target=target)

    def _emit(self, arena: _Assignment, number: int, batch_idx: int) -> Batch:
        members = [arena.infos[f] for f in arena.members(batch_idx)]
        tokens = sum(m.tokens for m in members)
        batch_id = f"combined_batch_{number}"
        oversized = tokens > self.settings.max_batch_size
        if oversized:
            logger.warning("combined_batch_oversized", batch_id=batch_id, tokens=tokens)

        hints: dict[str, object] = {
            "analysis_depth": AnalysisDepth.COMPREHENSIVE,
            "context_aware": True,
            "cross_file_references": len(members) > 1,
            "preserve_relationships": True,
            "avg_tokens_per_file": round(tokens / len(members)),
            "directories": sorted({m.parts.directory or "root" for m in members}),
            "extensions": sorted({m.parts.extension or "none" for m in members}),
            "modules": sorted({m.parts.module or "unknown" for m in members}),
        }
        if oversized:
            hints["oversized"] = True

        names = ", ".join(m.parts.file_name for m in members)
        return Batch(
            id=batch_id,
            kind=BatchKind.COMBINED,
            strategy_tag=self.tag,
            estimated_tokens=tokens,
            members=tuple(BatchMember.from_source(m.ref, m.original_index, m.priority) for m in members),
            metadata=BatchMetadata(
                description=f"Combined batch of {len(members)} files: {names}",
                efficiency=efficiency_score(tokens, self.settings.target_batch_size),
                processing_hints=hints,
            ),
            processing_order=number,
        )
