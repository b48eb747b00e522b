from __future__ import annotations

from enum import IntEnum, StrEnum
from functools import wraps
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from collections.abc import Callable

    LineClassifierFn = Callable[[str], "UnitKind | None"]


class BatchKind(StrEnum):
    """Shape of a planned batch."""

    COMBINED = "combined"
    SINGLE = "single"
    CHUNK = "chunk"


class StrategyTag(StrEnum):
    """Name of the strategy that produced a batch."""

    COMBINED = "combined"
    SINGLE = "single"
    LARGE_MULTI = "large_multi"


KIND_FOR_STRATEGY: dict[StrategyTag, BatchKind] = {
    StrategyTag.COMBINED: BatchKind.COMBINED,
    StrategyTag.SINGLE: BatchKind.SINGLE,
    StrategyTag.LARGE_MULTI: BatchKind.CHUNK,
}


class RejectionKind(StrEnum):
    """Why a file was left out of every batch."""

    ESTIMATION_ERROR = "estimation_error"
    SIZE_MISMATCH = "size_mismatch"
    DUPLICATE_PATH = "duplicate_path"


class UnitKind(StrEnum):
    """Structural unit recognised at the start of a source line."""

    CLASS = "class"
    INTERFACE = "interface"
    FUNCTION = "function"
    TYPE = "type"
    MODULE = "module"


class BoundaryKind(StrEnum):
    """Kind of cut point proposed by boundary detection."""

    CLASS_END = "class_end"
    INTERFACE_END = "interface_end"
    FUNCTION_END = "function_end"
    BLOCK_END = "block_end"
    BLANK_LINE = "blank_line"
    ARBITRARY = "arbitrary"


class BoundaryPriority(IntEnum):
    """Ranking of cut points: higher is safer to cut at."""

    CLASS_END = 10
    INTERFACE_END = 9
    FUNCTION_END = 8
    BLOCK_END = 6
    BLANK_LINE = 3
    ARBITRARY = 1


BOUNDARY_PRIORITY: dict[BoundaryKind, int] = {
    BoundaryKind.CLASS_END: BoundaryPriority.CLASS_END,
    BoundaryKind.INTERFACE_END: BoundaryPriority.INTERFACE_END,
    BoundaryKind.FUNCTION_END: BoundaryPriority.FUNCTION_END,
    BoundaryKind.BLOCK_END: BoundaryPriority.BLOCK_END,
    BoundaryKind.BLANK_LINE: BoundaryPriority.BLANK_LINE,
    BoundaryKind.ARBITRARY: BoundaryPriority.ARBITRARY,
}

# A unit starting on the next line means the previous unit ended here.
END_KIND_FOR_UNIT: dict[UnitKind, BoundaryKind] = {
    UnitKind.CLASS: BoundaryKind.CLASS_END,
    UnitKind.INTERFACE: BoundaryKind.INTERFACE_END,
    UnitKind.FUNCTION: BoundaryKind.FUNCTION_END,
    UnitKind.TYPE: BoundaryKind.BLOCK_END,
    UnitKind.MODULE: BoundaryKind.BLOCK_END,
}


class ChunkType(StrEnum):
    """Dominant content of a chunk of a split file."""

    CLASS_FOCUSED = "class-focused"
    INTERFACE_FOCUSED = "interface-focused"
    FUNCTION_FOCUSED = "function-focused"
    MODULE_FOCUSED = "module-focused"
    GENERIC = "generic"
    MIXED = "mixed"
    FALLBACK = "fallback"


class AnalysisDepth(StrEnum):
    """How deep the downstream generator should go for a batch."""

    BASIC = "basic"
    COMPREHENSIVE = "comprehensive"
    DETAILED = "detailed"


class EstimationMethod(StrEnum):
    """How a token estimate was produced."""

    PRECISE = "precise_tiktoken"
    ESTIMATED = "estimated_chars"
    BASIC = "basic_count"
    CACHED = "cached_result"
    ERROR = "error"
    FALLBACK = "fallback"
    STANDARD = "standard"


EXT2LANG: dict[str, str] = {
    ".bash": "bash",
    ".c": "c",
    ".cc": "cpp",
    ".cpp": "cpp",
    ".cs": "c#",
    ".cxx": "cpp",
    ".go": "go",
    ".h": "c",
    ".hpp": "cpp",
    ".java": "java",
    ".js": "javascript",
    ".jsx": "javascript",
    ".kt": "kotlin",
    ".mjs": "javascript",
    ".php": "php",
    ".py": "python",
    ".rb": "ruby",
    ".rs": "rust",
    ".scala": "scala",
    ".sh": "bash",
    ".sql": "sql",
    ".swift": "swift",
    ".ts": "typescript",
    ".tsx": "typescript",
}

# Languages whose line comments start with "#" rather than "//".
HASH_COMMENT_LANGUAGES = frozenset({"python", "ruby", "bash", "unknown"})

ENTRY_POINT_NAMES = frozenset({
    "index.js",
    "index.ts",
    "main.js",
    "main.ts",
    "app.js",
    "server.js",
    "main.py",
    "__main__.py",
    "app.py",
    "manage.py",
    "main.go",
    "main.rs",
})


class RelationshipWeights(BaseModel):
    """Points awarded when two small files look related."""

    model_config = ConfigDict(frozen=True)

    same_directory: int = Field(default=5, description="Both files live in the same directory.")
    similar_name: int = Field(default=3, description="Base names are close by edit distance.")
    same_extension: int = Field(default=2, description="Both files share an extension.")
    import_dependency: int = Field(default=8, description="One file imports the other.")
    same_module: int = Field(default=6, description="Both files share a grandparent directory.")
    similar_size: int = Field(default=1, description="Token counts are within a 0.7 ratio.")
    name_similarity_threshold: float = Field(default=0.6, ge=0, le=1)
    size_ratio_threshold: float = Field(default=0.7, ge=0, le=1)


class ImportanceRules(BaseModel):
    """Keyword heuristics used to rank medium files for single-file batches."""

    model_config = ConfigDict(frozen=True)

    base: int = 50
    filename_keywords: tuple[tuple[tuple[str, ...], int], ...] = (
        (("index.",), 20),
        (("main.",), 18),
        (("app.",), 15),
        (("server.",), 15),
        (("config",), 12),
        (("router", "route"), 10),
        (("controller",), 10),
        (("service",), 8),
        (("util", "helper"), 5),
        (("test", "spec"), -10),
    )
    path_keywords: tuple[tuple[tuple[str, ...], int], ...] = (
        (("/src/", "/lib/"), 8),
        (("/server/", "/backend/"), 6),
        (("/api/",), 6),
        (("/components/",), 5),
        (("/test/", "/tests/"), -5),
    )
    per_export: int = 3
    per_class: int = 4
    per_function: int = 2
    per_interface: int = 3
    max_structure_bonus: int = 20
    # fractions of the [small, medium) range where the basic and comprehensive depth bands end
    depth_bands: tuple[float, float] = (0.2, 0.6)
    large_file_fraction: float = 0.8


class SplitQualityWeights(BaseModel):
    """Weights of the five split-quality components (they sum to 1)."""

    model_config = ConfigDict(frozen=True)

    structural_integrity: float = 0.30
    context_preservation: float = 0.25
    size_balance: float = 0.20
    dependency_handling: float = 0.15
    readability: float = 0.10
    fallback_score: int = 30
    mixed_cut_penalty: int = Field(
        default=15,
        ge=0,
        description="Structural points lost by a cut with no boundary.",
    )


LINE_CLASSIFIER: dict[str, Callable[[str], UnitKind | None]] = {}


def register_line_classifier(
    key: str | list[str],
) -> Callable[[LineClassifierFn], LineClassifierFn]:
    """Decorator to register a line classifier for one or more languages.

    A line classifier receives a stripped source line and returns the kind of
    structural unit that starts on it, or None.

    Args:
        key (str | list[str]): The language name (e.g. "python") or a list of names
            that the decorated function should be registered to handle. "default"
            registers the fallback used for unknown languages.

    Returns:
        Callable[[LineClassifierFn], LineClassifierFn]: A decorator that registers the
        given function in the LINE_CLASSIFIER mapping under the specified key(s).
    """

    def decorator(func: LineClassifierFn) -> LineClassifierFn:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:  # noqa: ANN401
            return func(*args, **kwargs)

        if isinstance(key, list):
            for k in key:
                LINE_CLASSIFIER[k] = wrapper
        else:
            LINE_CLASSIFIER[key] = wrapper
        return wrapper

    return decorator
