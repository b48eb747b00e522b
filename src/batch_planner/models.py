"""Data model shared by every strategy: input files, batches and rejections."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from batch_planner.config import KIND_FOR_STRATEGY, BatchKind, RejectionKind, StrategyTag
from batch_planner.exceptions import InvalidBatchError
from batch_planner.file_manipulation import file_language
from batch_planner.tokens import TokenEstimate, coerce_token_estimate


class CodeSymbol(BaseModel):
    """A named class, function or interface, with line numbers when known."""

    model_config = ConfigDict(frozen=True)

    name: str
    start_line: int | None = None
    end_line: int | None = None


class Dependencies(BaseModel):
    model_config = ConfigDict(frozen=True)

    internal: tuple[str, ...] = ()
    external: tuple[str, ...] = ()


def _symbol_name(value: Any) -> str:  # noqa: ANN401
    if isinstance(value, Mapping):
        return str(value.get("name") or value.get("source") or "")
    return str(value)


class StructuralSummary(BaseModel):
    """What the upstream analyzer learned about a file's structure.

    Symbols may be given as bare names or as mappings with ``name``,
    ``start_line`` and ``end_line``.
    """

    model_config = ConfigDict(frozen=True)

    imports: tuple[str, ...] = ()
    exports: tuple[str, ...] = ()
    functions: tuple[CodeSymbol, ...] = ()
    classes: tuple[CodeSymbol, ...] = ()
    interfaces: tuple[CodeSymbol, ...] = ()
    nesting_depth: int = Field(default=0, ge=0)
    complexity_score: float = Field(default=0, ge=0)
    dependencies: Dependencies = Field(default_factory=Dependencies)
    total_lines: int = Field(default=0, ge=0)
    language: str | None = None

    @field_validator("functions", "classes", "interfaces", mode="before")
    @classmethod
    def _coerce_symbols(cls, value: Any) -> Any:  # noqa: ANN401
        if value is None:
            return ()
        if isinstance(value, list | tuple):
            return tuple({"name": v} if isinstance(v, str) else v for v in value)
        return value

    @field_validator("imports", "exports", mode="before")
    @classmethod
    def _coerce_names(cls, value: Any) -> Any:  # noqa: ANN401
        if value is None:
            return ()
        if isinstance(value, list | tuple):
            return tuple(_symbol_name(v) for v in value)
        return value

    @property
    def structure_count(self) -> int:
        return len(self.functions) + len(self.classes) + len(self.interfaces)


class SourceFileRef(BaseModel):
    """An analysed file handed to the planner. Read-only during planning."""

    model_config = ConfigDict(frozen=True)

    path: str = Field(..., min_length=1)
    token_estimate: TokenEstimate = Field(default_factory=TokenEstimate)
    size_bytes: int = Field(default=0, ge=0)
    language: str = ""
    structural_summary: StructuralSummary | None = None

    @field_validator("token_estimate", mode="before")
    @classmethod
    def _coerce_tokens(cls, value: Any) -> TokenEstimate:  # noqa: ANN401
        return coerce_token_estimate(value)

    @property
    def total_tokens(self) -> int:
        return self.token_estimate.total_tokens

    @property
    def lang(self) -> str:
        """Declared language, or the one implied by the extension."""
        return self.language or file_language(self.path)


class BatchMember(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    token_estimate: TokenEstimate
    size_bytes: int = 0
    language: str = "unknown"
    original_index: int = 0
    priority: float = 0

    @property
    def total_tokens(self) -> int:
        return self.token_estimate.total_tokens

    @classmethod
    def from_source(cls, ref: SourceFileRef, original_index: int, priority: float = 0) -> BatchMember:
        return cls(
            path=ref.path,
            token_estimate=ref.token_estimate,
            size_bytes=ref.size_bytes,
            language=ref.lang,
            original_index=original_index,
            priority=priority,
        )


class ChunkInfo(BaseModel):
    """Position and content of one chunk of a split file."""

    model_config = ConfigDict(frozen=True)

    chunk_index: int = Field(..., ge=1, description="1-based position in the file.")
    total_chunks: int = Field(..., ge=1)
    start_line: int = Field(..., ge=0)
    end_line: int = Field(..., ge=0)
    content: str = ""
    split_type: str = "generic"
    estimated_tokens: int = Field(default=0, ge=0)


class ParentFileRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    total_tokens: int = Field(..., ge=0)
    original_index: int = 0


class BatchMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    description: str = ""
    efficiency: int = Field(default=0, ge=0, le=100)
    processing_hints: dict[str, Any] = Field(default_factory=dict)
    details: dict[str, Any] = Field(default_factory=dict)


class Batch(BaseModel):
    """The single result shape produced by all strategies.

    Attributes:
        id: Unique within a planning run.
        kind: combined, single or chunk.
        strategy_tag: The strategy that produced the batch.
        estimated_tokens: Sum of member estimates, or the chunk's own estimate.
        members: Ordered member files; exactly one for single and chunk batches.
        metadata: Description, efficiency score and strategy-specific hints.
        chunk_info: Chunk position and content (chunk batches only).
        parent_file: The split file (chunk batches only).
        split_quality: 0-100 quality of the split (chunk batches only).
        is_fallback: Whether the chunk came from the equal-line fallback.
        processing_order: 1-based order within the producing strategy.
        reconstruction: How to stitch chunk analyses back together.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    kind: BatchKind
    strategy_tag: StrategyTag
    estimated_tokens: int = Field(..., ge=0)
    members: tuple[BatchMember, ...]
    metadata: BatchMetadata = Field(default_factory=BatchMetadata)
    chunk_info: ChunkInfo | None = None
    parent_file: ParentFileRef | None = None
    split_quality: int | None = Field(default=None, ge=0, le=100)
    is_fallback: bool = False
    processing_order: int | None = None
    reconstruction: dict[str, Any] | None = None

    @property
    def paths(self) -> list[str]:
        return [m.path for m in self.members]

    @property
    def member_tokens(self) -> int:
        return sum(m.total_tokens for m in self.members)


class Rejection(BaseModel):
    """A file that could not be placed in any batch, and why."""

    model_config = ConfigDict(frozen=True)

    path: str
    kind: RejectionKind
    reason: str
    tokens: int = 0
    strategy: StrategyTag | None = None


class StrategyResult(BaseModel):
    """What one strategy returns: its batches and the files it refused."""

    model_config = ConfigDict(frozen=True)

    batches: tuple[Batch, ...] = ()
    rejections: tuple[Rejection, ...] = ()


_REQUIRED_FIELDS = ("id", "kind", "strategy_tag", "estimated_tokens", "members")


def _mapping_problems(data: Mapping[str, Any], max_members: int | None) -> list[str]:
    problems = [f"missing field {name}" for name in _REQUIRED_FIELDS if data.get(name) is None]
    if problems:
        return problems
    try:
        batch = Batch.model_validate(data)
    except ValueError as e:
        return [f"malformed batch: {e.__class__.__name__}"]
    return batch_problems(batch, max_members=max_members)


def batch_problems(batch: Batch | Mapping[str, Any], max_members: int | None = None) -> list[str]:
    """List every batch rule the given batch breaks.

    Args:
        batch (Batch | Mapping[str, Any]): A batch, or its decoded JSON form.
        max_members (int | None): Member cap for combined batches, if any.

    Returns:
        list[str]: Human readable problems; empty when the batch is valid.
    """
    if isinstance(batch, Mapping):
        return _mapping_problems(batch, max_members)

    problems: list[str] = []
    if not batch.id:
        problems.append("empty id")
    if KIND_FOR_STRATEGY[batch.strategy_tag] != batch.kind:
        problems.append(f"strategy {batch.strategy_tag} cannot produce {batch.kind} batches")
    if batch.estimated_tokens < 0:
        problems.append("negative estimated_tokens")

    count = len(batch.members)
    if batch.kind in {BatchKind.SINGLE, BatchKind.CHUNK} and count != 1:
        problems.append(f"{batch.kind} batch must have exactly one member, got {count}")
    if batch.kind == BatchKind.COMBINED:
        if count < 1:
            problems.append("combined batch has no members")
        if max_members is not None and count > max_members:
            problems.append(f"combined batch has {count} members, cap is {max_members}")

    if batch.kind == BatchKind.CHUNK:
        if batch.chunk_info is None:
            problems.append("chunk batch without chunk_info")
        if batch.parent_file is None:
            problems.append("chunk batch without parent_file")
        if batch.chunk_info is not None and batch.chunk_info.chunk_index > batch.chunk_info.total_chunks:
            problems.append("chunk_index beyond total_chunks")
    return problems


def validate_batch(batch: Batch | Mapping[str, Any], max_members: int | None = None) -> bool:
    """Return True when the batch satisfies the batch contract."""
    return not batch_problems(batch, max_members=max_members)


def ensure_valid_batch(batch: Batch, max_members: int | None = None) -> Batch:
    """Return the batch unchanged, or raise when a strategy produced an invalid one.

    Raises:
        InvalidBatchError: if the batch breaks any rule.
    """
    problems = batch_problems(batch, max_members=max_members)
    if problems:
        raise InvalidBatchError(batch_id=batch.id, problems=tuple(problems))
    return batch
