from __future__ import annotations

import pytest

from batch_planner.boundaries import (
    BoundaryDetector,
    LineBoundaryDetector,
    classify_line,
    fallback_part_count,
    leading_imports,
    naive_line_split,
    split_long_line,
)
from batch_planner.config import BoundaryKind, ChunkType, UnitKind
from batch_planner.models import StructuralSummary
from batch_planner.settings import PlannerSettings


def _python_module(functions: int, body_lines: int) -> str:
    lines = ["import os", "from pathlib import Path", ""]
    for n in range(functions):
        lines.append(f"def handler_{n}(value):")
        lines.extend(f"    value = value + {k}  # step {k} of handler {n}" for k in range(body_lines))
        lines.append("    return value")
        lines.append("")
    return "\n".join(lines) + "\n"


@pytest.mark.unit
@pytest.mark.parametrize(
    ("language", "line", "expected"),
    [
        ("python", "class Repo(Base):", UnitKind.CLASS),
        ("python", "async def fetch(self):", UnitKind.FUNCTION),
        ("python", "# def commented_out():", None),
        ("typescript", "export interface User {", UnitKind.INTERFACE),
        ("typescript", "export const load = async (id) => {", UnitKind.FUNCTION),
        ("typescript", "export type Id = string;", UnitKind.TYPE),
        ("java", "public class Service {", UnitKind.CLASS),
        ("java", "if (ready) {", None),
        ("go", "type Reader interface {", UnitKind.INTERFACE),
        ("go", "func (r *Repo) Load() error {", UnitKind.FUNCTION),
        ("rust", "pub fn parse(input: &str) -> Result<()> {", UnitKind.FUNCTION),
        ("unknown", "function legacy() {", UnitKind.FUNCTION),
    ],
)
def test_classify_line(language: str, line: str, expected: UnitKind | None) -> None:
    assert classify_line(language, line) == expected


@pytest.mark.unit
def test_leading_imports_follows_parenthesised_imports() -> None:
    lines = [
        "# header comment",
        "import os",
        "from typing import (",
        "    Any,",
        ")",
        "",
        "VALUE = 1",
    ]

    imports, end = leading_imports(lines, "python")

    assert imports == ["import os", "from typing import (", "    Any,", ")"]
    assert end == 5


@pytest.mark.unit
def test_naive_line_split_is_contiguous_and_one_based() -> None:
    content = "\n".join(f"line {n}" for n in range(10))

    segments = naive_line_split(content, 3)

    assert [(s, e) for s, e, _ in segments] == [(1, 4), (5, 7), (8, 10)]
    assert segments[0][2].startswith("line 0")


@pytest.mark.unit
def test_naive_line_split_caps_parts_at_line_count() -> None:
    assert len(naive_line_split("a\nb", 5)) == 2
    assert naive_line_split("", 3) == []


@pytest.mark.unit
def test_fallback_part_count() -> None:
    assert fallback_part_count(45_000, 18_000) == 3
    assert fallback_part_count(0, 18_000) == 1


@pytest.mark.unit
def test_line_detector_satisfies_protocol() -> None:
    assert isinstance(LineBoundaryDetector(), BoundaryDetector)


@pytest.mark.unit
def test_detector_cuts_between_functions() -> None:
    content = _python_module(functions=6, body_lines=20)
    detector = LineBoundaryDetector(PlannerSettings())

    result = detector.detect("src/handlers.py", content, None, target_tokens=400)

    assert result.success
    assert result.language == "python"
    assert len(result.chunks) > 1
    assert result.chunks[0].start_line == 1
    assert result.chunks[-1].end_line == len(content.splitlines())
    for previous, current in zip(result.chunks, result.chunks[1:]):
        assert current.start_line == previous.end_line + 1
        assert content.splitlines()[current.start_line - 1].startswith("def handler_")
    assert all(c.type == ChunkType.FUNCTION_FOCUSED for c in result.chunks)
    assert any(b.kind == BoundaryKind.FUNCTION_END for b in result.chunks[0].boundaries)


@pytest.mark.unit
def test_detector_marks_chunks_and_carries_imports() -> None:
    content = _python_module(functions=6, body_lines=20)

    result = LineBoundaryDetector().detect("src/handlers.py", content, None, target_tokens=400)

    first, second = result.chunks[0], result.chunks[1]
    assert first.content.startswith(f"# Chunk 1/{len(result.chunks)} of src/handlers.py")
    assert not first.carried_imports
    assert second.carried_imports
    assert "import os" in second.content
    assert result.imports == ("import os", "from pathlib import Path")


@pytest.mark.unit
def test_detector_skips_imports_when_disabled() -> None:
    content = _python_module(functions=6, body_lines=20)
    detector = LineBoundaryDetector(PlannerSettings(preserve_imports=False))

    result = detector.detect("src/handlers.py", content, None, target_tokens=400)

    assert not any(c.carried_imports for c in result.chunks)


@pytest.mark.unit
def test_detector_uses_summary_end_lines() -> None:
    content = "\n".join(f"x{n} = {n}" for n in range(200)) + "\n"
    summary = StructuralSummary.model_validate(
        {"classes": [{"name": "Config", "start_line": 1, "end_line": 100}]},
    )

    result = LineBoundaryDetector().detect("settings.py", content, summary, target_tokens=300)

    assert result.success
    assert result.chunks[0].end_line == 100


@pytest.mark.unit
def test_detector_reports_failures_instead_of_raising() -> None:
    detector = LineBoundaryDetector()

    empty = detector.detect("a.py", "   \n", None, target_tokens=100)
    bad_target = detector.detect("a.py", "x = 1\n", None, target_tokens=0)

    assert not empty.success
    assert "empty content" in (empty.error or "")
    assert not bad_target.success


@pytest.mark.unit
def test_detector_survives_estimator_crash() -> None:
    def broken(_: str) -> int:
        msg = "boom"
        raise RuntimeError(msg)

    result = LineBoundaryDetector(estimator=broken).detect("a.py", "x = 1\n", None, target_tokens=100)

    assert not result.success
    assert "boom" in (result.error or "")


@pytest.mark.unit
def test_small_tail_is_merged_into_previous_chunk() -> None:
    # 5 tokens per line, 22 lines per chunk, one line left over
    content = "\n".join(f"value_{n:04d} = {n:06d}" for n in range(89)) + "\n"

    result = LineBoundaryDetector().detect("flat.py", content, None, target_tokens=100)

    assert len(result.chunks) == 4
    assert (result.chunks[-1].start_line, result.chunks[-1].end_line) == (67, 89)
    assert result.chunks[-1].estimated_tokens == 115
    assert result.chunks[-1].type == ChunkType.MIXED


@pytest.mark.unit
def test_split_long_line_cuts_after_soft_breaks() -> None:
    line = "var a=1;" * 30

    parts = split_long_line(line, 3)

    assert len(parts) == 3
    assert "".join(parts) == line
    assert all(p.endswith(";") for p in parts)
    assert split_long_line("abc", 1) == ["abc"]


@pytest.mark.unit
def test_overlong_single_line_is_cut_by_characters() -> None:
    content = "var a=1;" * 2000

    result = LineBoundaryDetector().detect("dist/app.min.js", content, None, target_tokens=1000)

    assert result.success
    assert len(result.chunks) == 5
    assert all(c.type == ChunkType.MIXED for c in result.chunks)
    assert all((c.start_line, c.end_line) == (1, 1) for c in result.chunks)
    assert sum(c.estimated_tokens for c in result.chunks) == 4000
    assert "".join(c.content.split("\n", 1)[1] for c in result.chunks) == content


@pytest.mark.unit
def test_tail_is_kept_when_merge_would_exceed_max_chunk_size() -> None:
    settings = PlannerSettings(max_batch_size=19_000)
    content = "\n".join(f"value_{n:04d} = {n:06d}" for n in range(89)) + "\n"

    result = LineBoundaryDetector(settings).detect("flat.py", content, None, target_tokens=100)

    assert settings.max_chunk_size == 19_000
    assert len(result.chunks) == 5
    assert (result.chunks[-1].start_line, result.chunks[-1].end_line) == (89, 89)
