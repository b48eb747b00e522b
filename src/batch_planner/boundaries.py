"""Boundary detection: cut a large file into chunks along structural edges.

The default detector works line by line. Every line gets a cut priority
(how safe it is to end a chunk right after it), then lines are accumulated
greedily and, when the target size overflows, the chunk is cut at the best
line seen so far. Language knowledge is limited to the line classifiers
registered below.
"""

from __future__ import annotations

import itertools
import math
import re
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from batch_planner.config import (
    BOUNDARY_PRIORITY,
    END_KIND_FOR_UNIT,
    LINE_CLASSIFIER,
    BoundaryKind,
    BoundaryPriority,
    ChunkType,
    UnitKind,
    register_line_classifier,
)
from batch_planner.exceptions import BoundaryDetectionError
from batch_planner.file_manipulation import comment_prefix, file_language
from batch_planner.logging import logger
from batch_planner.settings import PlannerSettings
from batch_planner.tokens import estimate_text_tokens

if TYPE_CHECKING:
    from collections.abc import Sequence

    from batch_planner.models import StructuralSummary
    from batch_planner.tokens import TokenEstimator

NESTED_PENALTY = 3
TAIL_MERGE_RATIO = 0.2
# how far back from a character cut to look for a softer break
LINE_CUT_WINDOW = 0.1
_SOFT_BREAKS = frozenset(" \t;,})]")

_CONTINUATION_PREFIXES = ("else", "elif", "except", "finally", "catch", ".", ")", "]", "}")
_BLOCK_CLOSERS = frozenset({"}", "};", "})", "});", "end"})
_COMMENT_STARTS = ("#", "//", "/*", "*", "*/")

_UNIT_CHUNK_TYPE: dict[UnitKind, ChunkType] = {
    UnitKind.CLASS: ChunkType.CLASS_FOCUSED,
    UnitKind.INTERFACE: ChunkType.INTERFACE_FOCUSED,
    UnitKind.FUNCTION: ChunkType.FUNCTION_FOCUSED,
    UnitKind.TYPE: ChunkType.MODULE_FOCUSED,
    UnitKind.MODULE: ChunkType.MODULE_FOCUSED,
}
_CHUNK_TYPE_RANK = (
    ChunkType.CLASS_FOCUSED,
    ChunkType.INTERFACE_FOCUSED,
    ChunkType.FUNCTION_FOCUSED,
    ChunkType.MODULE_FOCUSED,
)


class Boundary(BaseModel):
    """A line after which a chunk may end."""

    model_config = ConfigDict(frozen=True)

    line_number: int = Field(..., ge=1)
    kind: BoundaryKind
    priority: int
    indent: int = 0
    text: str = ""


class DetectedChunk(BaseModel):
    """One chunk proposed by a detector. Line numbers are 1-based and inclusive."""

    model_config = ConfigDict(frozen=True)

    start_line: int = Field(..., ge=1)
    end_line: int = Field(..., ge=1)
    content: str
    estimated_tokens: int = Field(..., ge=0)
    type: ChunkType = ChunkType.GENERIC
    boundaries: tuple[Boundary, ...] = ()
    carried_imports: bool = False
    has_marker: bool = False


class DetectionResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    chunks: tuple[DetectedChunk, ...] = ()
    language: str = "unknown"
    imports: tuple[str, ...] = ()
    error: str | None = None


@runtime_checkable
class BoundaryDetector(Protocol):
    """Anything that can propose a chunk plan for a file."""

    def detect(
        self,
        path: str,
        content: str,
        summary: StructuralSummary | None,
        target_tokens: int,
    ) -> DetectionResult:
        """Split ``content`` into ordered chunks near ``target_tokens`` each."""
        ...


# Line classifiers receive a stripped line and return the unit starting on it.

_PY_CLASS = re.compile(r"^class\s+\w+")
_PY_FUNC = re.compile(r"^(async\s+)?def\s+\w+")

_JS_CLASS = re.compile(r"^(export\s+)?(default\s+)?(abstract\s+)?class\s+\w+")
_JS_INTERFACE = re.compile(r"^(export\s+)?(declare\s+)?interface\s+\w+")
_JS_TYPE = re.compile(r"^(export\s+)?(declare\s+)?(type|enum)\s+\w+")
_JS_MODULE = re.compile(r"^(export\s+)?(declare\s+)?(namespace|module)\s+[\w.'\"]+")
_JS_FUNC = re.compile(
    r"^(export\s+)?(default\s+)?(async\s+)?function\b"
    r"|^(export\s+)?(const|let|var)\s+\w+\s*=\s*(async\s+)?(function\b|\([^)]*\)\s*=>|\w+\s*=>)",
)

_CLIKE_MODIFIERS = r"((public|private|protected|internal|static|abstract|final|sealed|partial|export|pub(\(\w+\))?|open|data)\s+)*"
_CLIKE_CLASS = re.compile(rf"^{_CLIKE_MODIFIERS}(class|struct|enum|record|object|impl)\b")
_CLIKE_INTERFACE = re.compile(rf"^{_CLIKE_MODIFIERS}(interface|trait|protocol)\s+\w+")
_CLIKE_MODULE = re.compile(rf"^{_CLIKE_MODIFIERS}(namespace|mod|package)\s+[\w.]+")
_GO_TYPE = re.compile(r"^type\s+\w+\s+(struct|interface)\b")
_CLIKE_FUNC = re.compile(
    rf"^{_CLIKE_MODIFIERS}(async\s+)?(fn|func|fun|function)\s+[\w(]"
    r"|^[\w<>\[\],*&:~\s]+\s+[\w:~]+\s*\([^;]*\)\s*(const\s*)?(throws\s+[\w.,\s]+)?\{?\s*$",
)
_CONTROL_WORDS = ("if", "for", "while", "switch", "return", "else", "catch", "do", "new", "throw")

_DEFAULT_UNIT = re.compile(r"^(class|interface|def|function|fn|func)\b")
_DEFAULT_KIND = {
    "class": UnitKind.CLASS,
    "interface": UnitKind.INTERFACE,
    "def": UnitKind.FUNCTION,
    "function": UnitKind.FUNCTION,
    "fn": UnitKind.FUNCTION,
    "func": UnitKind.FUNCTION,
}


@register_line_classifier("python")
def classify_python(line: str) -> UnitKind | None:
    """Class and function starts in Python source."""
    if line.startswith("@"):
        return None
    if _PY_CLASS.match(line):
        return UnitKind.CLASS
    if _PY_FUNC.match(line):
        return UnitKind.FUNCTION
    return None


@register_line_classifier(["javascript", "typescript"])
def classify_javascript(line: str) -> UnitKind | None:
    """Class, interface, function, type and namespace starts in JS/TS source."""
    if _JS_CLASS.match(line):
        return UnitKind.CLASS
    if _JS_INTERFACE.match(line):
        return UnitKind.INTERFACE
    if _JS_FUNC.match(line):
        return UnitKind.FUNCTION
    if _JS_TYPE.match(line):
        return UnitKind.TYPE
    if _JS_MODULE.match(line):
        return UnitKind.MODULE
    return None


@register_line_classifier(["java", "c#", "go", "rust", "c", "cpp", "php", "kotlin", "scala", "swift"])
def classify_c_like(line: str) -> UnitKind | None:
    """Unit starts in brace languages; method signatures are matched loosely."""
    if _GO_TYPE.match(line):
        return UnitKind.INTERFACE if line.rstrip("{ ").endswith("interface") else UnitKind.CLASS
    if _CLIKE_INTERFACE.match(line):
        return UnitKind.INTERFACE
    if _CLIKE_CLASS.match(line):
        return UnitKind.CLASS
    if _CLIKE_MODULE.match(line):
        return UnitKind.MODULE
    first = line.split("(", 1)[0].split()
    if first and first[0] in _CONTROL_WORDS:
        return None
    if _CLIKE_FUNC.match(line):
        return UnitKind.FUNCTION
    return None


@register_line_classifier("default")
def classify_default(line: str) -> UnitKind | None:
    m = _DEFAULT_UNIT.match(line)
    return _DEFAULT_KIND[m.group(1)] if m else None


_IMPORT_PATTERNS: dict[str, re.Pattern[str]] = {
    "python": re.compile(r"^(import|from)\s+[\w.]+"),
    "javascript": re.compile(r"^(import\b|export\s+\*\s+from\b|(const|let|var)\s+.*=\s*require\()"),
    "typescript": re.compile(r"^(import\b|export\s+\*\s+from\b|(const|let|var)\s+.*=\s*require\()"),
}
_DEFAULT_IMPORT = re.compile(r"^(import|using|package|use|require|include)\b|^#\s*include\b")


def indent_of(line: str) -> int:
    return len(line) - len(line.lstrip(" \t"))


def classify_line(language: str, stripped: str) -> UnitKind | None:
    """Return the structural unit starting on a stripped line, if any."""
    if not stripped or stripped.startswith(_COMMENT_STARTS):
        return None
    classifier = LINE_CLASSIFIER.get(language) or LINE_CLASSIFIER["default"]
    return classifier(stripped)


def leading_imports(lines: Sequence[str], language: str) -> tuple[list[str], int]:
    """Extract the import block at the top of a file.

    Blank lines and comments may be interleaved; multi-line imports are
    followed through their parentheses or braces.

    Args:
        lines (Sequence[str]): file lines
        language (str): file language

    Returns:
        tuple[list[str], int]: the import lines and the number of lines the block spans
    """
    pattern = _IMPORT_PATTERNS.get(language, _DEFAULT_IMPORT)
    imports: list[str] = []
    depth = 0
    end = 0
    for idx, line in enumerate(lines):
        stripped = line.strip()
        if depth > 0:
            imports.append(line)
            depth += stripped.count("(") + stripped.count("{") - stripped.count(")") - stripped.count("}")
            end = idx + 1
            continue
        if not stripped or (stripped.startswith(_COMMENT_STARTS) and not pattern.match(stripped)):
            continue
        if pattern.match(stripped):
            imports.append(line)
            depth = max(0, stripped.count("(") + stripped.count("{") - stripped.count(")") - stripped.count("}"))
            end = idx + 1
            continue
        break
    return imports, end


def naive_line_split(content: str, parts: int) -> list[tuple[int, int, str]]:
    """Split text into ``parts`` segments of (almost) equal line counts.

    Args:
        content (str): the text to split
        parts (int): the number of segments wanted

    Returns:
        list[tuple[int, int, str]]: (start line, end line, text) per segment, 1-based.
            Fewer segments are returned when the text has fewer lines than ``parts``.
    """
    lines = content.splitlines()
    if not lines or parts < 1:
        return []
    parts = min(parts, len(lines))
    base, extra = divmod(len(lines), parts)
    out: list[tuple[int, int, str]] = []
    start = 0
    for i in range(parts):
        size = base + (1 if i < extra else 0)
        seg = lines[start : start + size]
        out.append((start + 1, start + size, "\n".join(seg)))
        start += size
    return out


def split_long_line(line: str, parts: int) -> list[str]:
    """Cut one line into ``parts`` slices of about equal length.

    Each cut moves back to the last space or punctuation within the final
    tenth of its slice when there is one, so tokens are rarely broken.
    Joining the slices gives back ``line``.
    """
    if parts <= 1 or len(line) < parts:
        return [line]
    size = len(line) / parts
    window = max(1, int(size * LINE_CUT_WINDOW))
    out: list[str] = []
    start = 0
    for k in range(1, parts):
        cut = round(size * k)
        for pos in range(cut, max(start + 1, cut - window), -1):
            if line[pos - 1] in _SOFT_BREAKS:
                cut = pos
                break
        out.append(line[start:cut])
        start = cut
    out.append(line[start:])
    return out


class LineBoundaryDetector:
    """Default detector: greedy accumulation with priority-ranked cut lines.

    Args:
        settings (PlannerSettings | None): tolerance, fill and import budget settings
        estimator (TokenEstimator): pluggable text-to-token estimator
    """

    def __init__(
        self,
        settings: PlannerSettings | None = None,
        estimator: TokenEstimator = estimate_text_tokens,
    ) -> None:
        self.settings = settings or PlannerSettings()
        self.estimator = estimator

    def detect(
        self,
        path: str,
        content: str,
        summary: StructuralSummary | None,
        target_tokens: int,
    ) -> DetectionResult:
        """Split ``content`` into ordered chunks of about ``target_tokens`` each.

        Never raises: any failure is reported as ``success=False`` with the reason
        in ``error``, leaving the caller to fall back to an equal-line split.
        """
        language = (summary.language if summary and summary.language else None) or file_language(path)
        try:
            return self._detect(path, content, summary, target_tokens, language)
        except BoundaryDetectionError as e:
            logger.warning("boundary_detection_failed", path=path, reason=e.reason)
            return DetectionResult(success=False, language=language, error=str(e))
        except Exception as e:
            logger.exception("boundary_detection_crashed", path=path)
            return DetectionResult(success=False, language=language, error=f"{path}: {e}")

    def _detect(
        self,
        path: str,
        content: str,
        summary: StructuralSummary | None,
        target_tokens: int,
        language: str,
    ) -> DetectionResult:
        if not content or not content.strip():
            raise BoundaryDetectionError(path=path, reason="empty content")
        if target_tokens <= 0:
            raise BoundaryDetectionError(path=path, reason=f"target_tokens must be positive, got {target_tokens}")

        lines = content.splitlines()
        units = [classify_line(language, ln.strip()) for ln in lines]
        cuts = self._cut_boundaries(lines, units, summary, language)
        line_tokens = [self.estimator(ln + "\n") for ln in lines]
        prefix = [0, *itertools.accumulate(line_tokens)]

        spans = self._greedy_spans(prefix, cuts, target_tokens)
        spans = self._merge_tail(spans, prefix, target_tokens)

        # (start, end, mixed, fragment): a fragment is one character slice of an overlong line
        pieces: list[tuple[int, int, bool, str | None]] = []
        limit = target_tokens * (1 + self.settings.boundary_tolerance)
        for start, end, mixed in spans:
            if start == end and line_tokens[start] > limit:
                parts = math.ceil(line_tokens[start] / target_tokens)
                logger.info("long_line_cut", path=path, line=start + 1, tokens=line_tokens[start], parts=parts)
                pieces.extend((start, end, True, frag) for frag in split_long_line(lines[start], parts))
            else:
                pieces.append((start, end, mixed, None))

        imports, import_end = leading_imports(lines, language) if self.settings.preserve_imports else ([], 0)
        carried = self._budget_imports(imports)
        marker = comment_prefix(language)

        chunks: list[DetectedChunk] = []
        total = len(pieces)
        for idx, (start, end, mixed, fragment) in enumerate(pieces, start=1):
            chunk_type = ChunkType.MIXED if mixed else self._chunk_type(units[start : end + 1])
            header = [f"{marker} Chunk {idx}/{total} of {path} (lines {start + 1}-{end + 1}, {chunk_type})"]
            carries = idx > 1 and bool(carried) and start >= import_end
            if carries:
                header.append(f"{marker} Imports carried over from the top of the file")
                header.extend(carried)
                header.append(f"{marker} End of carried imports")
            if fragment is None:
                body = lines[start : end + 1]
                tokens = prefix[end + 1] - prefix[start]
                boundaries = tuple(b for b in cuts[start : end + 1] if b.priority > BoundaryPriority.BLANK_LINE)
            else:
                body = [fragment]
                tokens = self.estimator(fragment)
                boundaries = ()
            chunks.append(
                DetectedChunk(
                    start_line=start + 1,
                    end_line=end + 1,
                    content="\n".join([*header, *body]),
                    estimated_tokens=tokens,
                    type=chunk_type,
                    boundaries=boundaries,
                    carried_imports=carries,
                    has_marker=True,
                ),
            )

        logger.info("boundaries_detected", path=path, language=language, chunks=len(chunks), lines=len(lines))
        return DetectionResult(
            success=True,
            chunks=tuple(chunks),
            language=language,
            imports=tuple(ln.strip() for ln in imports),
        )

    def _cut_boundaries(
        self,
        lines: Sequence[str],
        units: Sequence[UnitKind | None],
        summary: StructuralSummary | None,
        language: str,
    ) -> list[Boundary]:
        """Rank every line by how safe it is to end a chunk right after it."""
        symbol_ends: dict[int, BoundaryKind] = {}
        if summary is not None:
            for symbols, kind in (
                (summary.functions, BoundaryKind.FUNCTION_END),
                (summary.interfaces, BoundaryKind.INTERFACE_END),
                (summary.classes, BoundaryKind.CLASS_END),
            ):
                for sym in symbols:
                    if sym.end_line:
                        previous = symbol_ends.get(sym.end_line)
                        if previous is None or BOUNDARY_PRIORITY[kind] > BOUNDARY_PRIORITY[previous]:
                            symbol_ends[sym.end_line] = kind

        out: list[Boundary] = []
        n = len(lines)
        for i, line in enumerate(lines):
            stripped = line.strip()
            indent = indent_of(line)
            kind = BoundaryKind.BLANK_LINE if not stripped else BoundaryKind.ARBITRARY
            priority = BOUNDARY_PRIORITY[kind]

            def consider(candidate: BoundaryKind, value: int) -> None:
                nonlocal kind, priority
                if value > priority:
                    kind, priority = candidate, value

            if i + 1 < n:
                nxt = lines[i + 1]
                unit = units[i + 1]
                if unit is not None:
                    end_kind = END_KIND_FOR_UNIT[unit]
                    value = BOUNDARY_PRIORITY[end_kind]
                    if indent_of(nxt) > 0:
                        value = max(BoundaryPriority.ARBITRARY, value - NESTED_PENALTY)
                    consider(end_kind, value)
                if language == "python" and indent > 0 and nxt.strip() and indent_of(nxt) == 0:
                    consider(BoundaryKind.BLOCK_END, BoundaryPriority.BLOCK_END)

            if stripped in _BLOCK_CLOSERS and indent == 0:
                consider(BoundaryKind.BLOCK_END, BoundaryPriority.BLOCK_END)
            if i + 1 in symbol_ends:
                end_kind = symbol_ends[i + 1]
                consider(end_kind, BOUNDARY_PRIORITY[end_kind])

            if i + 1 < n and lines[i + 1].strip().startswith(_CONTINUATION_PREFIXES):
                kind, priority = BoundaryKind.ARBITRARY, BoundaryPriority.ARBITRARY

            out.append(Boundary(line_number=i + 1, kind=kind, priority=priority, indent=indent, text=stripped[:80]))
        return out

    def _greedy_spans(
        self,
        prefix: Sequence[int],
        cuts: Sequence[Boundary],
        target_tokens: int,
    ) -> list[tuple[int, int, bool]]:
        """Accumulate lines and cut at the best boundary when the target overflows.

        Returns:
            list[tuple[int, int, bool]]: 0-based inclusive (start, end, mixed) spans
        """
        limit = target_tokens * (1 + self.settings.boundary_tolerance)
        min_fill = target_tokens * self.settings.boundary_min_fill
        n = len(cuts)
        spans: list[tuple[int, int, bool]] = []
        start = 0
        i = 0
        while i < n:
            if prefix[i + 1] - prefix[start] > limit and i > start:
                best: int | None = None
                for j in range(start, i):
                    if prefix[j + 1] - prefix[start] < min_fill:
                        continue
                    if best is None or cuts[j].priority >= cuts[best].priority:
                        best = j
                if best is None or cuts[best].priority <= BoundaryPriority.ARBITRARY:
                    spans.append((start, i - 1, True))
                    start = i
                else:
                    spans.append((start, best, False))
                    start = best + 1
                continue
            i += 1
        if start < n:
            spans.append((start, n - 1, False))
        return spans

    def _merge_tail(
        self,
        spans: list[tuple[int, int, bool]],
        prefix: Sequence[int],
        target_tokens: int,
    ) -> list[tuple[int, int, bool]]:
        if len(spans) < 2:  # noqa: PLR2004
            return spans
        (p_start, _, p_mixed), (t_start, t_end, t_mixed) = spans[-2], spans[-1]
        tail = prefix[t_end + 1] - prefix[t_start]
        merged = prefix[t_end + 1] - prefix[p_start]
        # max_chunk_size is in manifest tokens, target_tokens may be in content units
        max_chunk = target_tokens * self.settings.max_chunk_size / self.settings.target_chunk_size
        if tail < target_tokens * TAIL_MERGE_RATIO and merged <= max_chunk:
            logger.debug("tail_merged", tail_tokens=tail, merged_tokens=merged)
            return [*spans[:-2], (p_start, t_end, p_mixed or t_mixed)]
        return spans

    def _budget_imports(self, imports: Sequence[str]) -> list[str]:
        """Keep leading import lines while they fit the overlap budget."""
        budget = self.settings.chunk_overlap_tokens
        kept: list[str] = []
        used = 0
        for line in imports:
            cost = self.estimator(line + "\n")
            if used + cost > budget:
                break
            kept.append(line)
            used += cost
        return kept

    @staticmethod
    def _chunk_type(units: Sequence[UnitKind | None]) -> ChunkType:
        present = {_UNIT_CHUNK_TYPE[u] for u in units if u is not None}
        for chunk_type in _CHUNK_TYPE_RANK:
            if chunk_type in present:
                return chunk_type
        return ChunkType.GENERIC


def fallback_part_count(total_tokens: int, target_tokens: int) -> int:
    return max(1, math.ceil(total_tokens / max(1, target_tokens)))
