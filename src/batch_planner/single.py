"""One batch per medium-sized file, annotated with importance and complexity."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from batch_planner.combined import efficiency_score
from batch_planner.config import (
    ENTRY_POINT_NAMES,
    AnalysisDepth,
    BatchKind,
    ImportanceRules,
    RejectionKind,
    StrategyTag,
)
from batch_planner.file_manipulation import path_parts
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

DEPTH_FOR_CATEGORY = {
    "tiny": AnalysisDepth.BASIC,
    "medium": AnalysisDepth.COMPREHENSIVE,
    "large": AnalysisDepth.DETAILED,
}

# (path keywords, focus areas), checked in order; several may apply.
FOCUS_AREAS: tuple[tuple[tuple[str, ...], tuple[str, ...]], ...] = (
    (("api", "router", "controller"), ("api_design", "endpoint_documentation")),
    (("service", "business"), ("business_logic", "service_patterns")),
    (("model", "entity"), ("data_structures", "relationships")),
    (("util", "helper"), ("utility_functions", "reusability")),
    (("config",), ("configuration", "environment_settings")),
    (("test",), ("test_coverage", "test_patterns")),
)

ARCHITECTURAL_ROLES: tuple[tuple[tuple[str, ...], str], ...] = (
    (("controller",), "controller"),
    (("service",), "service_layer"),
    (("model",), "data_model"),
    (("router", "route"), "routing"),
    (("middleware",), "middleware"),
    (("util", "helper"), "utility"),
    (("config",), "configuration"),
    (("test",), "test"),
)

PROJECT_CONTEXTS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("/api/",), "api_service"),
    (("/frontend/", "/client/"), "frontend"),
    (("/backend/", "/server/"), "backend"),
    (("/shared/", "/common/"), "shared_module"),
)


def _first_match(text: str, table: Sequence[tuple[tuple[str, ...], str]], default: str) -> str:
    for keywords, value in table:
        if any(k in text for k in keywords):
            return value
    return default


def size_category(tokens: int, bands: tuple[int, int]) -> str:
    """Size band of a file given the upper ends of the tiny and medium bands."""
    tiny_max, medium_max = bands
    if tokens < tiny_max:
        return "tiny"
    if tokens < medium_max:
        return "medium"
    return "large"


class SingleFileBatchStrategy:
    """Wraps each medium file into its own batch.

    Files outside ``[small_file_max_tokens, medium_file_max_tokens)`` are
    rejected, never coerced.

    Args:
        settings (PlannerSettings | None): size thresholds
        rules (ImportanceRules | None): keyword weights for the importance score
    """

    tag = StrategyTag.SINGLE

    def __init__(self, settings: PlannerSettings | None = None, rules: ImportanceRules | None = None) -> None:
        self.settings = settings or PlannerSettings()
        self.rules = rules or ImportanceRules()

    def importance(self, ref: SourceFileRef) -> int:
        """Importance score 0-100 from path keywords and declared structure."""
        rules = self.rules
        path = "/" + ref.path.replace("\\", "/").lower()
        file_name = path.rsplit("/", 1)[-1]
        score = rules.base
        for keywords, points in rules.filename_keywords:
            if any(k in file_name for k in keywords):
                score += points
        for keywords, points in rules.path_keywords:
            if any(k in path for k in keywords):
                score += points
        summary = ref.structural_summary
        if summary is not None:
            bonus = (
                len(summary.exports) * rules.per_export
                + len(summary.classes) * rules.per_class
                + len(summary.functions) * rules.per_function
                + len(summary.interfaces) * rules.per_interface
            )
            score += min(bonus, rules.max_structure_bonus)
        return max(0, min(score, 100))

    def range_point(self, fraction: float) -> int:
        """Token count at ``fraction`` of the way through the medium range."""
        low, high = self.settings.small_file_max_tokens, self.settings.medium_file_max_tokens
        return round(low + (high - low) * fraction)

    def depth_bands(self) -> tuple[int, int]:
        tiny, medium = self.rules.depth_bands
        return self.range_point(tiny), self.range_point(medium)

    @staticmethod
    def complexity(ref: SourceFileRef) -> float:
        """Complexity score 0-100 from size, structure and nesting."""
        value = 10 + min(ref.total_tokens / 1000, 20)
        summary = ref.structural_summary
        if summary is not None:
            value += len(summary.functions) * 2 + len(summary.classes) * 4 + len(summary.interfaces) * 3
            value += summary.complexity_score * 0.1 + summary.nesting_depth * 3
        return round(min(value, 100), 2)

    def quality_score(self, ref: SourceFileRef) -> int:
        score = 70
        tiny_max, medium_max = self.depth_bands()
        if tiny_max <= ref.total_tokens <= medium_max:
            score += 10
        summary = ref.structural_summary
        if summary is not None:
            score += 5 if summary.functions else 0
            score += 5 if summary.classes else 0
            score += 5 if summary.exports else 0
            score += 3 if summary.imports else 0
        return min(score, 100)

    def plan(
        self,
        files: Sequence[SourceFileRef],
        original_indices: Sequence[int] | None = None,
    ) -> StrategyResult:
        """Build one single-file batch per medium file, most important first.

        Args:
            files (Sequence[SourceFileRef]): files routed to this strategy
            original_indices (Sequence[int] | None): each file's position in the
                planner input; defaults to its position in ``files``

        Returns:
            StrategyResult: single batches, plus files outside the medium range
        """
        indices = list(original_indices) if original_indices is not None else list(range(len(files)))
        logger.info("single_strategy_start", files=len(files))

        accepted: list[tuple[int, int, SourceFileRef]] = []
        rejections: list[Rejection] = []
        for ref, idx in zip(files, indices, strict=True):
            tokens = ref.total_tokens
            reason = None
            if ref.token_estimate.has_error:
                rejections.append(
                    Rejection(
                        path=ref.path,
                        kind=RejectionKind.ESTIMATION_ERROR,
                        reason=ref.token_estimate.error or "",
                        tokens=tokens,
                        strategy=self.tag,
                    ),
                )
                continue
            if tokens < self.settings.small_file_max_tokens:
                reason = "too_small"
            elif tokens >= self.settings.medium_file_max_tokens:
                reason = "too_large"
            if reason is not None:
                logger.warning("single_rejected", path=ref.path, reason=reason, tokens=tokens)
                rejections.append(
                    Rejection(
                        path=ref.path,
                        kind=RejectionKind.SIZE_MISMATCH,
                        reason=reason,
                        tokens=tokens,
                        strategy=self.tag,
                    ),
                )
                continue
            accepted.append((self.importance(ref), idx, ref))

        accepted.sort(key=lambda item: -item[0])
        batches = tuple(
            self._emit(ref, idx, importance, order)
            for order, (importance, idx, ref) in enumerate(accepted, start=1)
        )
        logger.info("single_strategy_done", batches=len(batches), rejected=len(rejections))
        return StrategyResult(batches=batches, rejections=tuple(rejections))

    def _emit(self, ref: SourceFileRef, original_index: int, importance: int, order: int) -> Batch:
        tokens = ref.total_tokens
        category = size_category(tokens, self.depth_bands())
        depth = DEPTH_FOR_CATEGORY[category]
        hints: dict[str, Any] = {
            "analysis_depth": depth,
            "focus_areas": self._focus_areas(ref.path),
            "special_handling": self._special_handling(ref),
            "context_aware": True,
            "preserve_structure": True,
            "documentation_style": self._documentation_style(ref.path),
            "importance": importance,
            "complexity": self.complexity(ref),
            "context_info": self._context_info(ref),
        }
        parts = path_parts(ref.path)
        details = {
            "size_category": category,
            "quality_score": self.quality_score(ref),
            "file_name": parts.file_name,
            "directory": parts.directory,
            "extension": parts.extension,
            "language": ref.lang,
            "line_count": ref.structural_summary.total_lines if ref.structural_summary else 0,
            "is_entry_point": parts.file_name.lower() in ENTRY_POINT_NAMES,
        }
        return Batch(
            id=f"single_batch_{order}",
            kind=BatchKind.SINGLE,
            strategy_tag=self.tag,
            estimated_tokens=tokens,
            members=(BatchMember.from_source(ref, original_index, importance),),
            metadata=BatchMetadata(
                description=self._description(ref),
                efficiency=efficiency_score(tokens, self.settings.target_batch_size),
                processing_hints=hints,
                details=details,
            ),
            processing_order=order,
        )

    @staticmethod
    def _description(ref: SourceFileRef) -> str:
        text = f"Single-file batch {path_parts(ref.path).file_name} ({ref.total_tokens:,} tokens)"
        summary = ref.structural_summary
        if summary is None:
            return text
        elements = [
            f"{len(items)} {label}"
            for items, label in (
                (summary.classes, "classes"),
                (summary.functions, "functions"),
                (summary.interfaces, "interfaces"),
            )
            if items
        ]
        return f"{text} with {', '.join(elements)}" if elements else text

    @staticmethod
    def _focus_areas(path: str) -> list[str]:
        lowered = path.lower()
        areas = [area for keywords, found in FOCUS_AREAS if any(k in lowered for k in keywords) for area in found]
        return areas or ["general_analysis"]

    def _special_handling(self, ref: SourceFileRef) -> list[str]:
        flags: list[str] = []
        summary = ref.structural_summary
        if summary is not None:
            if summary.complexity_score > 15:  # noqa: PLR2004
                flags.append("high_complexity")
            if len(summary.functions) > 20:  # noqa: PLR2004
                flags.append("many_functions")
            if len(summary.classes) > 5:  # noqa: PLR2004
                flags.append("many_classes")
            if len(summary.dependencies.external) > 10:  # noqa: PLR2004
                flags.append("many_dependencies")
        if ref.total_tokens > self.range_point(self.rules.large_file_fraction):
            flags.append("large_file")
        return flags

    @staticmethod
    def _documentation_style(path: str) -> str:
        lowered = path.lower()
        if "api" in lowered or "swagger" in lowered:
            return "api_focused"
        if "test" in lowered:
            return "test_focused"
        if "config" in lowered:
            return "configuration_focused"
        if "util" in lowered or "helper" in lowered:
            return "utility_focused"
        return "comprehensive"

    @staticmethod
    def _context_info(ref: SourceFileRef) -> dict[str, Any]:
        path = "/" + ref.path.replace("\\", "/").lower()
        directory = path_parts(ref.path).directory
        summary = ref.structural_summary
        return {
            "project_context": _first_match(path, PROJECT_CONTEXTS, "general"),
            "module_context": directory.rsplit("/", 1)[-1] if directory else "root",
            "architectural_role": _first_match(path, ARCHITECTURAL_ROLES, "business_module"),
            "dependencies": {
                "internal": list(summary.dependencies.internal) if summary else [],
                "external": list(summary.dependencies.external) if summary else [],
            },
        }
