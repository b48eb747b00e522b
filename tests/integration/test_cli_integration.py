import json
from pathlib import Path

import pytest
from pytest_mock import MockerFixture

from batch_planner import cli
from batch_planner import settings as settings_module
from batch_planner.models import SourceFileRef


@pytest.mark.integration
def test_main_plans_manifest_files_and_reads_large_ones(
    tmp_path: Path,
    mocker: MockerFixture,
) -> None:
    repo = tmp_path
    big = repo / "src" / "big.py"
    big.parent.mkdir(parents=True, exist_ok=True)
    big.write_text("".join(f"def step_{n}():\n    return {n}\n\n" for n in range(600)), encoding="utf-8")

    refs = [
        SourceFileRef(path="src/a.py", token_estimate=2000),
        SourceFileRef(path="src/b.py", token_estimate=3000),
        SourceFileRef(path="src/big.py", token_estimate=40_000),
    ]
    load = mocker.patch.object(cli, "load_manifest", return_value=refs)
    mocker.patch.object(settings_module, "ENV_FILE", "")

    output = repo / "plan.jsonl"
    exit_code = cli.main(
        [
            "--manifest",
            str(repo / "files.json"),
            "--repo",
            str(repo),
            "--output",
            str(output),
        ],
    )

    assert exit_code == 0
    load.assert_called_once_with(repo / "files.json")
    records = [json.loads(line) for line in output.read_text(encoding="utf-8").splitlines()]
    chunks = [r for r in records if r["kind"] == "chunk"]
    assert records[0]["kind"] == "combined"
    assert len(chunks) >= 2
    assert not any(c["is_fallback"] for c in chunks)
    assert sum(c["estimated_tokens"] for c in chunks) == 40_000
    assert chunks[0]["chunk_info"]["content"].startswith("# Chunk 1/")


@pytest.mark.integration
def test_main_writes_markdown_with_fallback_for_missing_files(
    tmp_path: Path,
    mocker: MockerFixture,
    capsys: pytest.CaptureFixture[str],
) -> None:
    refs = [SourceFileRef(path="src/gone.py", token_estimate=45_000)]
    mocker.patch.object(cli, "load_manifest", return_value=refs)
    mocker.patch.object(settings_module, "ENV_FILE", "")

    output = tmp_path / "plan.md"
    exit_code = cli.main(["--manifest", "files.json", "--repo", str(tmp_path), "--output", str(output)])

    assert exit_code == 0
    text = output.read_text(encoding="utf-8")
    assert "(fallback)" in text
    assert "batches=3 rejected=0" in capsys.readouterr().out
