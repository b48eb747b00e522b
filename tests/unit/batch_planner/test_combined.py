from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from batch_planner.combined import (
    CombinedFileBatchStrategy,
    _Assignment,
    _file_info,
    file_priority,
    levenshtein,
    name_similarity,
)
from batch_planner.config import BatchKind, RejectionKind, StrategyTag
from batch_planner.settings import PlannerSettings

if TYPE_CHECKING:
    from collections.abc import Callable

    from batch_planner.models import SourceFileRef


@pytest.mark.unit
def test_levenshtein_and_name_similarity() -> None:
    assert levenshtein("kitten", "sitting") == 3
    assert levenshtein("", "abc") == 3
    assert name_similarity("user", "users") == 0.8
    assert name_similarity("", "") == 1.0


@pytest.mark.unit
def test_file_priority_prefers_entry_points_and_config() -> None:
    assert file_priority("src/index.ts", 2000) == 7
    assert file_priority("src/config.py", 9000) == 8
    assert file_priority("src/util.py", 1000) == 1


@pytest.mark.unit
def test_three_related_files_share_one_batch(make_ref: Callable[..., SourceFileRef]) -> None:
    files = [
        make_ref("src/services/a.ts", 3000),
        make_ref("src/services/b.ts", 4000),
        make_ref("src/services/c.ts", 5000),
    ]

    result = CombinedFileBatchStrategy().plan(files)

    assert not result.rejections
    assert len(result.batches) == 1
    batch = result.batches[0]
    assert batch.kind == BatchKind.COMBINED
    assert batch.strategy_tag == StrategyTag.COMBINED
    assert batch.estimated_tokens == 12_000
    assert len(batch.members) == 3
    assert batch.paths == ["src/services/a.ts", "src/services/b.ts", "src/services/c.ts"]
    assert batch.id == "combined_batch_1"
    assert batch.processing_order == 1
    assert batch.metadata.efficiency == 67
    assert batch.metadata.description.startswith("Combined batch of 3 files:")
    assert batch.metadata.processing_hints["directories"] == ["src/services"]
    assert batch.metadata.processing_hints["cross_file_references"] is True


@pytest.mark.unit
def test_rejects_large_and_failed_estimates(make_ref: Callable[..., SourceFileRef]) -> None:
    files = [
        make_ref("a.py", 1000),
        make_ref("big.py", 15_000),
        make_ref("broken.py", {"totalTokens": 0, "error": "tokenizer failed"}),
    ]

    result = CombinedFileBatchStrategy().plan(files)

    kinds = {r.path: (r.kind, r.reason) for r in result.rejections}
    assert kinds["big.py"] == (RejectionKind.SIZE_MISMATCH, "too_large")
    assert kinds["broken.py"] == (RejectionKind.ESTIMATION_ERROR, "tokenizer failed")
    assert [b.paths for b in result.batches] == [["a.py"]]


@pytest.mark.unit
def test_batches_respect_caps(make_ref: Callable[..., SourceFileRef]) -> None:
    settings = PlannerSettings(max_files_per_batch=4)
    files = [make_ref(f"pkg/mod_{n}.py", 1500 + 100 * n) for n in range(30)]

    result = CombinedFileBatchStrategy(settings).plan(files)

    placed = [p for b in result.batches for p in b.paths]
    assert sorted(placed) == sorted(f.path for f in files)
    assert len(placed) == len(set(placed))
    for batch in result.batches:
        assert len(batch.members) <= 4
        assert batch.estimated_tokens <= settings.max_batch_size
        assert batch.estimated_tokens == sum(m.total_tokens for m in batch.members)
    assert [b.processing_order for b in result.batches] == list(range(1, len(result.batches) + 1))


@pytest.mark.unit
def test_small_batches_are_merged(make_ref: Callable[..., SourceFileRef]) -> None:
    files = [
        make_ref("alpha/one.py", 1000),
        make_ref("beta/two.rs", 2000),
        make_ref("gamma/three.go", 4500),
    ]

    result = CombinedFileBatchStrategy().plan(files)

    assert len(result.batches) == 1
    assert result.batches[0].estimated_tokens == 7500
    assert result.batches[0].paths == ["gamma/three.go", "beta/two.rs", "alpha/one.py"]


@pytest.mark.unit
def test_without_smart_grouping_files_are_packed_by_size(make_ref: Callable[..., SourceFileRef]) -> None:
    settings = PlannerSettings(enable_smart_grouping=False)
    files = [make_ref(f"dir_{n}/file_{n}.py", 10_000) for n in range(5)]

    result = CombinedFileBatchStrategy(settings).plan(files)

    assert [len(b.members) for b in result.batches] == [2, 2, 1]
    assert all(b.estimated_tokens <= settings.max_batch_size for b in result.batches)


@pytest.mark.unit
def test_import_dependency_raises_relationship(make_ref: Callable[..., SourceFileRef]) -> None:
    strategy = CombinedFileBatchStrategy()
    importer = make_ref(
        "web/views/page.ts",
        2000,
        structural_summary={"imports": ["../../lib/session"], "dependencies": {"internal": ["../../lib/session"]}},
    )
    target = make_ref("lib/session.ts", 12_000)
    stranger = make_ref("lib/other.ts", 12_000)

    result = strategy.plan([importer, target, stranger])

    batch_of = {p: b.id for b in result.batches for p in b.paths}
    assert batch_of["web/views/page.ts"] == batch_of["lib/session.ts"]
    assert batch_of["lib/other.ts"] != batch_of["lib/session.ts"]


@pytest.mark.unit
def test_empty_input_gives_empty_result() -> None:
    result = CombinedFileBatchStrategy().plan([])

    assert result.batches == ()
    assert result.rejections == ()


@pytest.mark.unit
def test_oversized_batch_moves_smallest_file_to_a_batch_with_room(make_ref: Callable[..., SourceFileRef]) -> None:
    refs = [
        make_ref("pkg/a.py", 12_000),
        make_ref("pkg/b.py", 8_000),
        make_ref("pkg/c.py", 5_000),
        make_ref("other/d.py", 14_000),
    ]
    arena = _Assignment([_file_info(r, n) for n, r in enumerate(refs)])
    crowded = arena.new_batch()
    for f in (0, 1, 2):
        arena.place(f, crowded)
    roomy = arena.new_batch()
    arena.place(3, roomy)

    CombinedFileBatchStrategy()._split_oversized(arena)  # noqa: SLF001

    assert arena.batch_of == [crowded, crowded, roomy, roomy]
    assert (arena.tokens(crowded), arena.tokens(roomy)) == (20_000, 19_000)


@pytest.mark.unit
def test_oversized_batch_without_room_elsewhere_opens_new_batch(make_ref: Callable[..., SourceFileRef]) -> None:
    settings = PlannerSettings(max_batch_size=10_000, target_batch_size=9_000)
    refs = [make_ref(f"pkg/m{n}.py", 4_000) for n in range(4)]
    arena = _Assignment([_file_info(r, n) for n, r in enumerate(refs)])
    only = arena.new_batch()
    for f in range(4):
        arena.place(f, only)

    CombinedFileBatchStrategy(settings)._split_oversized(arena)  # noqa: SLF001

    batches = arena.live_batches()
    assert len(batches) == 2
    assert [arena.count(b) for b in batches] == [2, 2]
    assert all(arena.tokens(b) <= settings.max_batch_size for b in batches)
