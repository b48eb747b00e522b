"""Split large files into ordered chunk batches.

Reads and boundary detection run per file on a thread pool; the results are
turned into batches and globally ordered afterwards on the calling thread.
A file that cannot be read, or whose detection fails, is cut into equal
line-count segments flagged as fallback chunks.
"""

from __future__ import annotations

import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from batch_planner.boundaries import (
    BoundaryDetector,
    DetectedChunk,
    LineBoundaryDetector,
    fallback_part_count,
    naive_line_split,
)
from batch_planner.combined import efficiency_score
from batch_planner.config import (
    AnalysisDepth,
    BatchKind,
    ChunkType,
    RejectionKind,
    SplitQualityWeights,
    StrategyTag,
)
from batch_planner.exceptions import PlanningCancelledError
from batch_planner.file_manipulation import path_parts
from batch_planner.logging import logger
from batch_planner.models import (
    Batch,
    BatchMember,
    BatchMetadata,
    ChunkInfo,
    ParentFileRef,
    Rejection,
    SourceFileRef,
    StrategyResult,
)
from batch_planner.settings import PlannerSettings
from batch_planner.tokens import estimate_text_tokens

if TYPE_CHECKING:
    import threading
    from collections.abc import Callable, Sequence

    from batch_planner.tokens import TokenEstimator

    FileReaderFn = Callable[[str], str]

HIGH_PRIORITY_BOUNDARY = 7

TYPE_BONUS: dict[ChunkType, int] = {
    ChunkType.CLASS_FOCUSED: 25,
    ChunkType.INTERFACE_FOCUSED: 20,
    ChunkType.FUNCTION_FOCUSED: 18,
    ChunkType.MODULE_FOCUSED: 15,
}

CHUNK_FOCUS_AREAS: dict[ChunkType, tuple[str, ...]] = {
    ChunkType.CLASS_FOCUSED: ("class_structure", "method_analysis", "inheritance_patterns"),
    ChunkType.FUNCTION_FOCUSED: ("function_logic", "parameter_analysis", "return_patterns"),
    ChunkType.INTERFACE_FOCUSED: ("interface_design", "type_definitions", "contract_analysis"),
}
DEFAULT_CHUNK_FOCUS = ("code_structure", "logic_flow", "dependencies")


def rescale(values: Sequence[int], total: int) -> list[int]:
    """Scale non-negative integers so they sum exactly to ``total``.

    The last value absorbs the rounding; all-zero input is split evenly.
    """
    if not values:
        return []
    current = sum(values)
    if current <= 0:
        base, extra = divmod(total, len(values))
        return [base + (1 if i < extra else 0) for i in range(len(values))]
    scaled = [math.floor(v * total / current) for v in values[:-1]]
    scaled.append(total - sum(scaled))
    return scaled


@dataclass(frozen=True)
class _Piece:
    start_line: int
    end_line: int
    content: str
    tokens: int
    type: ChunkType
    chunk: DetectedChunk | None


@dataclass(frozen=True)
class _FileSplit:
    ref: SourceFileRef
    original_index: int
    file_number: int
    pieces: tuple[_Piece, ...]
    is_fallback: bool
    reason: str | None = None


class LargeFileMultiBatchStrategy:
    """Cuts each large file into chunk batches using a boundary detector.

    Args:
        settings (PlannerSettings | None): thresholds, chunk target and read concurrency
        reader (FileReaderFn | None): ``read(path) -> str``; raises OSError on failure
        detector (BoundaryDetector | None): chunk planner, defaults to LineBoundaryDetector
        weights (SplitQualityWeights | None): split-quality component weights
        estimator (TokenEstimator): text-to-token estimator used to scale detection
    """

    tag = StrategyTag.LARGE_MULTI

    def __init__(
        self,
        settings: PlannerSettings | None = None,
        reader: FileReaderFn | None = None,
        detector: BoundaryDetector | None = None,
        weights: SplitQualityWeights | None = None,
        estimator: TokenEstimator = estimate_text_tokens,
    ) -> None:
        self.settings = settings or PlannerSettings()
        self.reader = reader
        self.detector = detector or LineBoundaryDetector(self.settings, estimator)
        self.weights = weights or SplitQualityWeights()
        self.estimator = estimator

    def plan(
        self,
        files: Sequence[SourceFileRef],
        original_indices: Sequence[int] | None = None,
        cancel_event: threading.Event | None = None,
    ) -> StrategyResult:
        """Split every large file into ordered chunk batches.

        Args:
            files (Sequence[SourceFileRef]): files routed to this strategy
            original_indices (Sequence[int] | None): each file's position in the
                planner input; defaults to its position in ``files``
            cancel_event (threading.Event | None): set by the caller to abandon the run

        Raises:
            PlanningCancelledError: if ``cancel_event`` is set before all files are split.

        Returns:
            StrategyResult: chunk batches ordered by file then chunk, plus files
                below the large threshold
        """
        indices = list(original_indices) if original_indices is not None else list(range(len(files)))
        logger.info("large_file_strategy_start", files=len(files))

        jobs: list[tuple[SourceFileRef, int, int]] = []
        rejections: list[Rejection] = []
        for ref, idx in zip(files, indices, strict=True):
            if ref.token_estimate.has_error:
                rejections.append(
                    Rejection(
                        path=ref.path,
                        kind=RejectionKind.ESTIMATION_ERROR,
                        reason=ref.token_estimate.error or "",
                        tokens=ref.total_tokens,
                        strategy=self.tag,
                    ),
                )
                continue
            if ref.total_tokens < self.settings.medium_file_max_tokens:
                logger.warning("large_file_rejected", path=ref.path, reason="too_small", tokens=ref.total_tokens)
                rejections.append(
                    Rejection(
                        path=ref.path,
                        kind=RejectionKind.SIZE_MISMATCH,
                        reason="too_small",
                        tokens=ref.total_tokens,
                        strategy=self.tag,
                    ),
                )
                continue
            jobs.append((ref, idx, len(jobs) + 1))

        splits = self._split_all(jobs, cancel_event)

        batches: list[Batch] = []
        for split in splits:
            batches.extend(self._emit(split))
        batches.sort(key=lambda b: (b.parent_file.original_index, b.chunk_info.chunk_index))  # type: ignore[union-attr]
        ordered = tuple(b.model_copy(update={"processing_order": n}) for n, b in enumerate(batches, start=1))

        fallbacks = sum(1 for s in splits if s.is_fallback)
        logger.info("large_file_strategy_done", batches=len(ordered), fallback_files=fallbacks, rejected=len(rejections))
        return StrategyResult(batches=ordered, rejections=tuple(rejections))

    def _split_all(
        self,
        jobs: Sequence[tuple[SourceFileRef, int, int]],
        cancel_event: threading.Event | None,
    ) -> list[_FileSplit]:
        """Split files concurrently; each result lands in its own slot."""
        if not jobs:
            return []
        results: list[_FileSplit] = []
        workers = min(self.settings.max_concurrent_reads, len(jobs))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="batch-planner-read") as executor:
            futures = [executor.submit(self._split_file, ref, idx, number) for ref, idx, number in jobs]
            for future in futures:
                if cancel_event is not None and cancel_event.is_set():
                    for pending in futures:
                        pending.cancel()
                    raise PlanningCancelledError
                results.append(future.result())
        return results

    def _split_file(self, ref: SourceFileRef, original_index: int, file_number: int) -> _FileSplit:
        total = ref.total_tokens
        content = ""
        try:
            if self.reader is None:
                msg = "no file reader configured"
                raise FileNotFoundError(msg)
            content = self.reader(ref.path)
        except OSError as e:
            logger.warning("large_file_read_failed", path=ref.path, error=str(e))
            return self._fallback(ref, original_index, file_number, "", f"read failed: {e}")

        content_tokens = self.estimator(content)
        target = self.settings.target_chunk_size
        if total > 0 and content_tokens > 0:
            target = max(1, round(target * content_tokens / total))
        result = self.detector.detect(ref.path, content, ref.structural_summary, target)
        if not result.success or not result.chunks:
            logger.warning("large_file_detection_failed", path=ref.path, error=result.error)
            return self._fallback(ref, original_index, file_number, content, result.error or "no chunks")

        scaled = rescale([c.estimated_tokens for c in result.chunks], total)
        pieces = tuple(
            _Piece(
                start_line=c.start_line,
                end_line=c.end_line,
                content=c.content,
                tokens=tokens,
                type=c.type,
                chunk=c,
            )
            for c, tokens in zip(result.chunks, scaled, strict=True)
        )
        return _FileSplit(ref=ref, original_index=original_index, file_number=file_number, pieces=pieces, is_fallback=False)

    def _fallback(
        self,
        ref: SourceFileRef,
        original_index: int,
        file_number: int,
        content: str,
        reason: str,
    ) -> _FileSplit:
        """Equal line-count segments, or token-only placeholders when nothing was read."""
        total = ref.total_tokens
        target = self.settings.target_chunk_size
        parts = fallback_part_count(total, target)
        segments = naive_line_split(content, parts) if content else []
        if segments:
            tokens = rescale([self.estimator(text) for _, _, text in segments], total)
            pieces = tuple(
                _Piece(start_line=s, end_line=e, content=text, tokens=t, type=ChunkType.FALLBACK, chunk=None)
                for (s, e, text), t in zip(segments, tokens, strict=True)
            )
        else:
            pieces = tuple(
                _Piece(
                    start_line=0,
                    end_line=0,
                    content="",
                    tokens=max(0, min(total - i * target, target)),
                    type=ChunkType.FALLBACK,
                    chunk=None,
                )
                for i in range(parts)
            )
        logger.warning("large_file_fallback", path=ref.path, chunks=len(pieces), reason=reason)
        return _FileSplit(
            ref=ref,
            original_index=original_index,
            file_number=file_number,
            pieces=pieces,
            is_fallback=True,
            reason=reason,
        )

    def split_quality(self, piece: _Piece) -> int:
        """Weighted 0-100 quality of a detected chunk."""
        chunk = piece.chunk
        boundaries = chunk.boundaries if chunk else ()
        content = piece.content

        structural = 50 + (20 if boundaries else 0) + TYPE_BONUS.get(piece.type, 5)
        if piece.type == ChunkType.MIXED:
            structural -= self.weights.mixed_cut_penalty

        context = 60
        if (chunk is not None and chunk.carried_imports) or "import" in content:
            context += 15
        if "//" in content or "/*" in content or "#" in content:
            context += 10
        context += min(sum(1 for b in boundaries if b.priority >= HIGH_PRIORITY_BOUNDARY) * 5, 15)

        target = self.settings.target_chunk_size
        size = round(min(piece.tokens, target) / max(piece.tokens, target) * 100) if piece.tokens else 0

        dependency = 70
        if chunk is not None and chunk.carried_imports:
            dependency += 20
        if piece.end_line > piece.start_line:
            dependency += 10

        readability = 75
        if chunk is not None and chunk.has_marker:
            readability += 15
        if 10 < piece.end_line - piece.start_line < 500:  # noqa: PLR2004
            readability += 10

        w = self.weights
        score = (
            min(structural, 100) * w.structural_integrity
            + min(context, 100) * w.context_preservation
            + size * w.size_balance
            + min(dependency, 100) * w.dependency_handling
            + min(readability, 100) * w.readability
        )
        return max(0, min(round(score), 100))

    def _emit(self, split: _FileSplit) -> list[Batch]:
        ref = split.ref
        total_chunks = len(split.pieces)
        parts = path_parts(ref.path)
        out: list[Batch] = []
        for chunk_index, piece in enumerate(split.pieces, start=1):
            quality = self.weights.fallback_score if split.is_fallback else self.split_quality(piece)
            line_info = f"lines {piece.start_line}-{piece.end_line}" if piece.end_line else "no line range"
            description = (
                f"Large file chunk {chunk_index}/{total_chunks} of {parts.file_name} "
                f"({piece.tokens:,} tokens, {line_info}) - {piece.type}"
            )
            hints = self._hints(piece, chunk_index, total_chunks, quality)
            out.append(
                Batch(
                    id=f"large_file_{split.file_number}_{chunk_index}",
                    kind=BatchKind.CHUNK,
                    strategy_tag=self.tag,
                    estimated_tokens=piece.tokens,
                    members=(BatchMember.from_source(ref, split.original_index),),
                    metadata=BatchMetadata(
                        description=description,
                        efficiency=efficiency_score(piece.tokens, self.settings.target_chunk_size),
                        processing_hints=hints,
                        details={
                            "parent_file": {
                                "file_name": parts.file_name,
                                "directory": parts.directory,
                                "extension": parts.extension,
                                "language": ref.lang,
                                "total_tokens": ref.total_tokens,
                            },
                            "chunk": {
                                "has_imports": "import" in piece.content,
                                "has_exports": "export" in piece.content,
                                "boundary_count": len(piece.chunk.boundaries) if piece.chunk else 0,
                                "chunk_type": piece.type,
                            },
                            "fallback_reason": split.reason,
                        },
                    ),
                    chunk_info=ChunkInfo(
                        chunk_index=chunk_index,
                        total_chunks=total_chunks,
                        start_line=piece.start_line,
                        end_line=piece.end_line,
                        content=piece.content,
                        split_type=piece.type,
                        estimated_tokens=piece.tokens,
                    ),
                    parent_file=ParentFileRef(
                        path=ref.path,
                        total_tokens=ref.total_tokens,
                        original_index=split.original_index,
                    ),
                    split_quality=quality,
                    is_fallback=split.is_fallback,
                    reconstruction=self._reconstruction(piece, chunk_index, total_chunks, quality),
                ),
            )
        return out

    def _hints(self, piece: _Piece, chunk_index: int, total_chunks: int, quality: int) -> dict[str, Any]:
        if piece.type == ChunkType.CLASS_FOCUSED or piece.tokens > self.settings.small_file_max_tokens:
            depth = AnalysisDepth.DETAILED
        else:
            depth = AnalysisDepth.COMPREHENSIVE

        instructions: list[str] = []
        if chunk_index == 1:
            instructions.append("First part of the file: cover the overall architecture and imports.")
        if chunk_index == total_chunks:
            instructions.append("Last part of the file: cover exports and summarise.")
        if total_chunks > 3:  # noqa: PLR2004
            instructions.append("The file is split in several parts: relate this part to the others.")
        if quality < 70:  # noqa: PLR2004
            instructions.append("Split quality is low: pay extra attention to missing context.")

        boundary_count = len(piece.chunk.boundaries) if piece.chunk else 0
        complexity = 1 + min(piece.tokens / 5000, 5) + boundary_count * 0.5
        complexity += {ChunkType.CLASS_FOCUSED: 2, ChunkType.FUNCTION_FOCUSED: 1, ChunkType.MIXED: 1.5}.get(piece.type, 0)

        return {
            "is_first_chunk": chunk_index == 1,
            "is_last_chunk": chunk_index == total_chunks,
            "analysis_depth": depth,
            "focus_areas": list(CHUNK_FOCUS_AREAS.get(piece.type, DEFAULT_CHUNK_FOCUS)),
            "special_instructions": instructions,
            "context_aware": self.settings.preserve_imports,
            "requires_integration": total_chunks > 1,
            "context_info": {
                "preceding_chunks": chunk_index - 1,
                "following_chunks": total_chunks - chunk_index,
                "relative_position": round(chunk_index / total_chunks, 4),
                "estimated_complexity": round(min(complexity, 10), 2),
                "needs_context_from_previous": chunk_index > 1,
                "provides_context_for_next": chunk_index < total_chunks,
            },
        }

    @staticmethod
    def _reconstruction(piece: _Piece, chunk_index: int, total_chunks: int, quality: int) -> dict[str, Any]:
        boundaries = piece.chunk.boundaries if piece.chunk else ()
        return {
            "position": chunk_index,
            "total": total_chunks,
            "is_partial": total_chunks > 1,
            "requires_ordering": True,
            "has_overlap": bool(piece.chunk and piece.chunk.carried_imports),
            "integration_points": [{"kind": b.kind, "line": b.line_number, "priority": b.priority} for b in boundaries],
            "expected_line_range": f"{piece.start_line}-{piece.end_line}" if piece.end_line else "unknown",
            "estimated_tokens": piece.tokens,
            "quality_score": quality,
        }
