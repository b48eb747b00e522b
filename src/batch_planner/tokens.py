"""Token estimate value type and the helpers that normalise upstream shapes.

Upstream estimators historically returned either a bare number or a rich
object. Everything entering the planner goes through
:func:`coerce_token_estimate` / :func:`extract_token_count` so the rest of the
package only ever sees :class:`TokenEstimate`.
"""

from __future__ import annotations

import math
import re
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field

from batch_planner.config import EstimationMethod
from batch_planner.file_manipulation import now_iso

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    TokenEstimator = Callable[[str], int]

SAFE_TOKEN_RATIO = 0.9
CHARS_PER_TOKEN_RATIO = 0.25
CJK_TOKEN_RATIO = 0.6

_CJK_PATTERN = re.compile(r"[\u4e00-\u9fff]")

# Key aliases accepted from mappings, in precedence order.
_TOTAL_KEYS = ("totalTokens", "total_tokens")
_SAFE_KEYS = ("safeTokenCount", "safe_token_count", "safe_tokens")
_ESTIMATED_KEYS = ("estimatedTokens", "estimated_tokens")


class TokenBreakdown(BaseModel):
    """Sub-counts of a token estimate."""

    model_config = ConfigDict(frozen=True)

    total_chars: int = Field(default=0, ge=0)
    code_tokens: int = Field(default=0, ge=0)
    comment_tokens: int = Field(default=0, ge=0)
    string_tokens: int = Field(default=0, ge=0)


class TokenDetails(BaseModel):
    """Optional detail attached to a token estimate."""

    model_config = ConfigDict(frozen=True)

    estimated_tokens: int = Field(default=0, ge=0)
    safe_token_count: int = Field(default=0, ge=0, description="Buffered lower bound.")
    breakdown: TokenBreakdown = Field(default_factory=TokenBreakdown)
    confidence: float = Field(default=0.8, ge=0, le=1)


class TokenMetadata(BaseModel):
    """Where an estimate came from."""

    model_config = ConfigDict(frozen=True)

    file_path: str = "unknown"
    language: str = "unknown"
    estimation_method: str = EstimationMethod.STANDARD
    timestamp: str | None = None
    from_cache: bool = False
    error: str | None = None


class TokenEstimate(BaseModel):
    """A single canonical token count plus optional confidence and provenance.

    Attributes:
        total_tokens: Non-negative token count, the one value planning uses.
        details: Optional estimator detail (safe count, breakdown, confidence).
        metadata: Optional provenance; ``metadata.error`` marks an unusable estimate.
    """

    model_config = ConfigDict(frozen=True)

    total_tokens: int = Field(default=0, ge=0)
    details: TokenDetails | None = None
    metadata: TokenMetadata | None = None

    @property
    def has_error(self) -> bool:
        """Whether the estimator reported a failure."""
        return bool(self.metadata and self.metadata.error)

    @property
    def error(self) -> str | None:
        return self.metadata.error if self.metadata and self.metadata.error else None

    @property
    def safe_tokens(self) -> int:
        if self.details and self.details.safe_token_count:
            return self.details.safe_token_count
        return math.floor(self.total_tokens * SAFE_TOKEN_RATIO)

    @property
    def confidence(self) -> float:
        return self.details.confidence if self.details else 0.8

    @property
    def from_cache(self) -> bool:
        return bool(self.metadata and self.metadata.from_cache)


def _basic_breakdown(total_tokens: int) -> TokenBreakdown:
    return TokenBreakdown(
        total_chars=total_tokens * 4,
        code_tokens=math.floor(total_tokens * 0.7),
        comment_tokens=math.floor(total_tokens * 0.2),
        string_tokens=math.floor(total_tokens * 0.1),
    )


def _first_present(data: Mapping[str, Any], keys: Iterable[str]) -> Any:  # noqa: ANN401
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return None


def _as_count(value: Any) -> int:  # noqa: ANN401
    if isinstance(value, bool) or value is None:
        return 0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if math.isnan(number):
        return 0
    if math.isinf(number):
        return 0 if number < 0 else 2**63 - 1
    return max(0, int(number))


def make_token_estimate(
    total_tokens: float | None,
    details: TokenDetails | Mapping[str, Any] | None = None,
    metadata: TokenMetadata | Mapping[str, Any] | None = None,
) -> TokenEstimate:
    """Build a TokenEstimate, clamping negative or missing counts to zero.

    Missing detail fields are filled the way the estimators fill them: the
    estimated count defaults to the total, the safe count to 90% of it, the
    breakdown to a 70/20/10 code/comment/string split and the confidence to 0.8.
    The safe count is never allowed above the total.

    Args:
        total_tokens (float | None): The canonical token count.
        details (TokenDetails | Mapping[str, Any] | None): Optional estimator detail.
        metadata (TokenMetadata | Mapping[str, Any] | None): Optional provenance.

    Returns:
        TokenEstimate: The normalised estimate.
    """
    total = _as_count(total_tokens)

    detail_model: TokenDetails | None = None
    if details is not None:
        raw = details.model_dump() if isinstance(details, TokenDetails) else dict(details)
        estimated = _as_count(_first_present(raw, _ESTIMATED_KEYS)) or total
        safe = _as_count(_first_present(raw, _SAFE_KEYS)) or math.floor(total * SAFE_TOKEN_RATIO)
        breakdown = raw.get("breakdown")
        confidence = raw.get("confidence")
        if confidence is None:
            confidence = 0.8
        detail_model = TokenDetails(
            estimated_tokens=estimated,
            safe_token_count=min(safe, total),
            breakdown=TokenBreakdown.model_validate(_snake_keys(breakdown)) if breakdown else _basic_breakdown(total),
            confidence=max(0.0, min(1.0, float(confidence))),
        )

    meta_model: TokenMetadata | None = None
    if metadata is not None:
        if isinstance(metadata, TokenMetadata):
            meta_model = metadata
        else:
            raw_meta = _snake_keys(metadata)
            meta_model = TokenMetadata(
                file_path=raw_meta.get("file_path") or "unknown",
                language=raw_meta.get("language") or "unknown",
                estimation_method=raw_meta.get("estimation_method")
                or raw_meta.get("calculation_method")
                or EstimationMethod.STANDARD,
                timestamp=raw_meta.get("timestamp") or raw_meta.get("analysis_timestamp") or None,
                from_cache=bool(raw_meta.get("from_cache")),
                error=raw_meta.get("error") or None,
            )

    return TokenEstimate(total_tokens=total, details=detail_model, metadata=meta_model)


def make_error_estimate(path: str, message: str, language: str = "unknown") -> TokenEstimate:
    """Build the zero-token estimate that marks an estimator failure.

    Callers must treat it as unusable rather than as an empty file.
    """
    return make_token_estimate(
        0,
        metadata=TokenMetadata(
            file_path=path,
            language=language,
            estimation_method=EstimationMethod.ERROR,
            timestamp=now_iso(),
            error=message,
        ),
    )


def extract_token_count(value: Any) -> int:  # noqa: ANN401
    """Return the canonical token count of any supported shape.

    Accepts a bare number, a TokenEstimate, or a mapping. For objects the first
    present field wins: ``totalTokens``, then ``safeTokenCount``, then
    ``estimatedTokens`` (camelCase or snake_case, top level or under
    ``details``). Anything else counts as 0.

    Args:
        value (Any): A number, TokenEstimate or mapping.

    Returns:
        int: A non-negative token count.
    """
    if isinstance(value, TokenEstimate):
        return value.total_tokens
    if isinstance(value, Mapping):
        details = value.get("details")
        nested = details if isinstance(details, Mapping) else {}
        for keys in (_TOTAL_KEYS, _SAFE_KEYS, _ESTIMATED_KEYS):
            found = _first_present(value, keys)
            if found is None:
                found = _first_present(nested, keys)
            if found is not None:
                return _as_count(found)
        return 0
    if isinstance(value, int | float) and not isinstance(value, bool):
        return _as_count(value)
    return 0


def coerce_token_estimate(value: Any) -> TokenEstimate:  # noqa: ANN401
    """Convert a number, mapping or TokenEstimate into a TokenEstimate.

    Args:
        value (Any): The upstream token data.

    Returns:
        TokenEstimate: The normalised estimate. Unrecognised shapes become zero.
    """
    if isinstance(value, TokenEstimate):
        return value
    if not isinstance(value, Mapping):
        return make_token_estimate(extract_token_count(value))

    total = extract_token_count(value)
    details = value.get("details")
    if not isinstance(details, Mapping):
        flat = {k: value[k] for k in (*_ESTIMATED_KEYS, *_SAFE_KEYS, "breakdown", "confidence") if k in value}
        details = flat or None

    metadata = value.get("metadata")
    if not isinstance(metadata, Mapping):
        meta_keys = (
            "filePath",
            "file_path",
            "language",
            "calculationMethod",
            "estimation_method",
            "analysisTimestamp",
            "timestamp",
            "fromCache",
            "from_cache",
            "error",
        )
        flat_meta = {k: value[k] for k in meta_keys if k in value}
        metadata = flat_meta or None

    return make_token_estimate(total, details=details, metadata=metadata)


def sum_token_counts(values: Iterable[Any]) -> int:
    """Sum the canonical counts of any mix of supported shapes."""
    return sum(extract_token_count(v) for v in values)


def estimate_text_tokens(text: str) -> int:
    """Default pluggable estimator: a character-ratio approximation.

    Roughly four characters per token, or 0.6 tokens per character when the
    text contains CJK ideographs.
    """
    if not text:
        return 0
    ratio = CJK_TOKEN_RATIO if _CJK_PATTERN.search(text) else CHARS_PER_TOKEN_RATIO
    return math.ceil(len(text) * ratio)


def _snake_keys(data: Mapping[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, value in data.items():
        snake = re.sub(r"(?<!^)(?=[A-Z])", "_", str(key)).lower()
        out[snake] = value
    return out
