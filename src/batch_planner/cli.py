# /// script
# requires-python = ">=3.11"
# dependencies = [
#     "pydantic",
#     "python-dotenv",
#     "pyyaml",
#     "structlog",
# ]
# ///
"""
batch_planner: plan documentation batches for analysed source files.

Overview
--------
Reads a manifest of analysed files (path, token estimate and optional
structural summary), routes every file by size and writes the resulting plan:

1) **Markdown (`--format md`)**: a readable report with one section per batch
   and the list of rejected files.

2) **JSONL (`--format jsonl`)**: one object per batch (or per pending task
   with `--tasks`), followed by one object per rejected file.

Large files are read from `--repo` so they can be split along structural
boundaries; unreadable files fall back to equal line ranges.

Thresholds default to the built-in values, can be set in `.env` or the
environment as `BATCH_PLANNER_<FIELD>` and are overridden by the flags below.

Usage
-----
    - Markdown report:
        uv run python -m batch_planner.cli --manifest files.json --output plan.md

    - Pending tasks as JSONL, smaller chunks:
        uv run python -m batch_planner.cli --manifest files.jsonl --tasks --target-chunk-size 12000 --output tasks.jsonl
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import ValidationError

from batch_planner import __version__
from batch_planner.exceptions import ManifestError
from batch_planner.file_manipulation import make_file_reader
from batch_planner.logging import logger, setup_logging
from batch_planner.manifest import load_manifest
from batch_planner.output_construction import build_jsonl, build_markdown
from batch_planner.planner import BatchPlanner
from batch_planner.settings import Settings

if TYPE_CHECKING:
    from collections.abc import Sequence

# flag name -> help, for the integer planner thresholds
_SIZE_FLAGS = {
    "small_file_max_tokens": "Files below this many tokens are combined.",
    "medium_file_max_tokens": "Files at or above this many tokens are split.",
    "target_batch_size": "Preferred combined batch size in tokens.",
    "max_batch_size": "Hard cap for combined batches in tokens.",
    "min_batch_size": "Soft floor for combined batches in tokens.",
    "max_files_per_batch": "Member cap for combined batches.",
    "target_chunk_size": "Preferred chunk size in tokens.",
    "chunk_overlap_tokens": "Token budget for imports carried into later chunks.",
    "max_concurrent_reads": "Parallel large-file reads.",
    "max_file_tokens": "Reject estimates above this many tokens.",
}


def parse_args(argv: Sequence[str] | None = None) -> Settings:
    p = argparse.ArgumentParser(
        description="Plan LLM documentation batches from a manifest of analysed files (md/jsonl).",
    )
    p.add_argument(
        "--manifest",
        type=str,
        required=True,
        help="Manifest of analysed files (.json, .jsonl, .yaml).",
    )
    p.add_argument(
        "--output",
        type=str,
        required=True,
        help="Output file (.md or .jsonl).",
    )
    p.add_argument("--repo", type=str, default=".", help="Root that manifest paths are relative to.")
    p.add_argument(
        "--format",
        type=str,
        choices=["md", "jsonl"],
        default="",
        help="Force format.",
    )
    p.add_argument("--tasks", action="store_true", help="Emit pending tasks instead of bare batches (jsonl).")
    p.add_argument("--log-file", type=str, default="", help="Log file path.")
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    p.add_argument(
        "--no-smart-grouping",
        dest="enable_smart_grouping",
        action="store_const",
        const=False,
        default=None,
        help="Pack small files by size only.",
    )
    p.add_argument(
        "--no-preserve-imports",
        dest="preserve_imports",
        action="store_const",
        const=False,
        default=None,
        help="Do not carry imports into later chunks.",
    )

    sizes = p.add_argument_group("thresholds")
    for name, text in _SIZE_FLAGS.items():
        sizes.add_argument("--" + name.replace("_", "-"), type=int, default=None, help=text)

    args = p.parse_args(argv)
    # unset flags leave the .env / environment values in place
    return Settings.from_env(**{k: v for k, v in vars(args).items() if v is not None})


def main(argv: Sequence[str] | None = None) -> int:
    try:
        settings = parse_args(argv)
    except ValidationError as e:
        logger.error("invalid_settings", errors=e.error_count())  # noqa: TRY400
        print(f"Invalid settings: {e}")  # noqa: T201
        return 2
    if settings.log_file:
        setup_logging(settings.log_file)

    manifest_path = Path(settings.manifest)
    try:
        files = load_manifest(manifest_path)
    except ManifestError as e:
        logger.error("manifest_error", path=str(e.path), reason=e.reason)  # noqa: TRY400
        print(f"Cannot load manifest: {e}")  # noqa: T201
        return 2

    repo = Path(settings.repo).resolve()
    planner = BatchPlanner(settings.planner_settings(), reader=make_file_reader(repo))
    plan = planner.plan(files)

    out_path = Path(settings.output)
    fmt = (settings.format or "").strip().lower()
    if not fmt:
        fmt = "jsonl" if out_path.suffix.lower() == ".jsonl" else "md"

    content = build_markdown(plan) if fmt == "md" else build_jsonl(plan, tasks=settings.tasks)
    out_path.write_text(content, encoding="utf-8")

    print(  # noqa: T201
        f"Wrote {out_path} format={fmt} batches={plan.summary.batches} rejected={plan.summary.rejected_files}",
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
