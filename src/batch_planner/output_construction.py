from __future__ import annotations

import io
import json
from typing import TYPE_CHECKING

from batch_planner.config import BatchKind
from batch_planner.file_manipulation import now_iso

if TYPE_CHECKING:
    from batch_planner.models import Batch
    from batch_planner.planner import BatchPlan


def build_jsonl(plan: BatchPlan, *, tasks: bool = False, created_at: str | None = None) -> str:
    """Serialise a plan as JSON lines.

    One object per batch (or per pending task when ``tasks`` is set), in plan
    order, followed by one object per rejected file.

    Args:
        plan (BatchPlan): the plan to serialise
        tasks (bool): wrap every batch into a pending task first
        created_at (str | None): task creation timestamp; defaults to now

    Returns:
        str: the JSONL document
    """
    buf = io.StringIO()
    if tasks:
        for task in plan.to_tasks(created_at=created_at):
            item = {"record": "task", **task.model_dump(mode="json")}
            buf.write(json.dumps(item, ensure_ascii=False) + "\n")
    else:
        for batch in plan.batches:
            item = {"record": "batch", **batch.model_dump(mode="json")}
            buf.write(json.dumps(item, ensure_ascii=False) + "\n")
    for rejection in plan.rejections:
        item = {"record": "rejection", **rejection.model_dump(mode="json")}
        buf.write(json.dumps(item, ensure_ascii=False) + "\n")
    return buf.getvalue()


def _batch_section(batch: Batch) -> str:
    out = io.StringIO()
    out.write(f"## {batch.id}\n")
    out.write(f"kind={batch.kind} strategy={batch.strategy_tag} tokens={batch.estimated_tokens}")
    out.write(f" efficiency={batch.metadata.efficiency}\n")
    if batch.metadata.description:
        out.write(f"\n{batch.metadata.description}\n")
    if batch.kind == BatchKind.CHUNK and batch.chunk_info is not None:
        info = batch.chunk_info
        out.write(
            f"\nchunk {info.chunk_index}/{info.total_chunks} lines {info.start_line}-{info.end_line}"
            f" type={info.split_type} split_quality={batch.split_quality}",
        )
        if batch.is_fallback:
            out.write(" (fallback)")
        out.write("\n")
    out.write("\n")
    for member in batch.members:
        out.write(f"- `{member.path}` ({member.total_tokens} tokens, {member.language})\n")
    return out.getvalue()


def build_markdown(plan: BatchPlan) -> str:
    """Build a human readable report of a plan.

    The report has a header, a summary of counts, one section per batch and
    the list of rejected files.

    Args:
        plan (BatchPlan): the plan to describe

    Returns:
        str: the generated markdown
    """
    s = plan.summary
    out = io.StringIO()
    out.write("# Batch Plan\n")
    out.write(f"generated_at={now_iso()}\n")
    out.write(f"files={s.input_files} batches={s.batches} rejected={s.rejected_files}\n\n")

    out.write("## Summary\n")
    out.write(f"- combined batches: {s.combined_batches}\n")
    out.write(f"- single batches: {s.single_batches}\n")
    out.write(f"- chunk batches: {s.chunk_batches} ({s.fallback_chunks} fallback)\n")
    out.write(f"- planned tokens: {s.total_tokens}\n\n")

    for batch in plan.batches:
        out.write(_batch_section(batch))
        out.write("\n")

    if plan.rejections:
        out.write("## Rejected files\n")
        for r in plan.rejections:
            origin = f" [{r.strategy}]" if r.strategy else ""
            out.write(f"- `{r.path}`: {r.kind} {r.reason} ({r.tokens} tokens){origin}\n")

    return out.getvalue().rstrip() + "\n"
