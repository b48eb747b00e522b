from __future__ import annotations

import pytest

from batch_planner.config import BatchKind, StrategyTag
from batch_planner.exceptions import InvalidBatchError
from batch_planner.models import (
    Batch,
    BatchMember,
    ChunkInfo,
    ParentFileRef,
    SourceFileRef,
    StructuralSummary,
    batch_problems,
    ensure_valid_batch,
    validate_batch,
)
from batch_planner.tokens import TokenEstimate


def _member(path: str = "src/a.py", tokens: int = 100) -> BatchMember:
    return BatchMember(path=path, token_estimate=TokenEstimate(total_tokens=tokens))


@pytest.mark.unit
def test_source_file_ref_coerces_token_shapes() -> None:
    ref = SourceFileRef.model_validate({"path": "src/app.ts", "token_estimate": {"totalTokens": 512}})

    assert ref.total_tokens == 512
    assert ref.lang == "typescript"


@pytest.mark.unit
def test_declared_language_wins_over_extension() -> None:
    ref = SourceFileRef(path="build/script", token_estimate=10, language="bash")

    assert ref.lang == "bash"


@pytest.mark.unit
def test_structural_summary_accepts_names_and_symbols() -> None:
    summary = StructuralSummary.model_validate(
        {
            "functions": ["load", {"name": "save", "start_line": 10, "end_line": 20}],
            "classes": None,
            "imports": [{"source": "./db"}, "os"],
        },
    )

    assert [f.name for f in summary.functions] == ["load", "save"]
    assert summary.functions[1].end_line == 20
    assert summary.classes == ()
    assert summary.imports == ("./db", "os")
    assert summary.structure_count == 2


@pytest.mark.unit
def test_valid_combined_batch_passes() -> None:
    batch = Batch(
        id="combined_batch_1",
        kind=BatchKind.COMBINED,
        strategy_tag=StrategyTag.COMBINED,
        estimated_tokens=200,
        members=(_member("a.py"), _member("b.py")),
    )

    assert validate_batch(batch)
    assert validate_batch(batch, max_members=2)
    assert not validate_batch(batch, max_members=1)
    assert batch.paths == ["a.py", "b.py"]
    assert batch.member_tokens == 200


@pytest.mark.unit
def test_single_batch_needs_exactly_one_member() -> None:
    batch = Batch(
        id="single_batch_1",
        kind=BatchKind.SINGLE,
        strategy_tag=StrategyTag.SINGLE,
        estimated_tokens=200,
        members=(_member("a.py"), _member("b.py")),
    )

    problems = batch_problems(batch)

    assert any("exactly one member" in p for p in problems)


@pytest.mark.unit
def test_kind_must_match_strategy() -> None:
    batch = Batch(
        id="x",
        kind=BatchKind.SINGLE,
        strategy_tag=StrategyTag.COMBINED,
        estimated_tokens=1,
        members=(_member(),),
    )

    with pytest.raises(InvalidBatchError) as exc_info:
        ensure_valid_batch(batch)

    assert exc_info.value.batch_id == "x"
    assert "cannot produce" in str(exc_info.value)


@pytest.mark.unit
def test_chunk_batch_requires_chunk_info_and_parent() -> None:
    bare = Batch(
        id="large_file_1_1",
        kind=BatchKind.CHUNK,
        strategy_tag=StrategyTag.LARGE_MULTI,
        estimated_tokens=10,
        members=(_member(),),
    )
    complete = bare.model_copy(
        update={
            "chunk_info": ChunkInfo(chunk_index=1, total_chunks=2, start_line=1, end_line=5),
            "parent_file": ParentFileRef(path="src/a.py", total_tokens=20),
        },
    )
    beyond = complete.model_copy(
        update={"chunk_info": ChunkInfo(chunk_index=3, total_chunks=2, start_line=1, end_line=5)},
    )

    assert len(batch_problems(bare)) == 2
    assert validate_batch(complete)
    assert batch_problems(beyond) == ["chunk_index beyond total_chunks"]


@pytest.mark.unit
def test_validate_batch_reports_missing_fields_on_mappings() -> None:
    assert batch_problems({"id": "a", "kind": "single"}) == [
        "missing field strategy_tag",
        "missing field estimated_tokens",
        "missing field members",
    ]
    assert not validate_batch({"id": "a", "kind": "bogus", "strategy_tag": "single", "estimated_tokens": 1, "members": []})
