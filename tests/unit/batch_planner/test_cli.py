from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import pytest

from batch_planner import __version__, cli
from batch_planner import settings as settings_module

if TYPE_CHECKING:
    from pytest_mock import MockerFixture


@pytest.fixture(autouse=True)
def _no_dotenv(mocker: MockerFixture) -> None:
    mocker.patch.object(settings_module, "ENV_FILE", "")


@pytest.mark.unit
def test_parse_args_maps_flags_to_settings() -> None:
    settings = cli.parse_args(
        [
            "--manifest",
            "files.json",
            "--output",
            "plan.jsonl",
            "--tasks",
            "--target-chunk-size",
            "12000",
            "--max-files-per-batch",
            "5",
            "--no-smart-grouping",
        ],
    )

    assert settings.manifest == Path("files.json")
    assert settings.output == Path("plan.jsonl")
    assert settings.tasks is True
    assert settings.target_chunk_size == 12_000
    assert settings.max_files_per_batch == 5
    assert settings.enable_smart_grouping is False
    assert settings.preserve_imports is True


@pytest.mark.unit
def test_unset_flags_keep_environment_values(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BATCH_PLANNER_TARGET_CHUNK_SIZE", "9000")

    settings = cli.parse_args(["--manifest", "files.json", "--output", "plan.md"])

    assert settings.target_chunk_size == 9000


@pytest.mark.unit
def test_parse_args_version_flag(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as exc_info:
        cli.parse_args(["--version"])

    assert exc_info.value.code == 0
    assert __version__ in capsys.readouterr().out


@pytest.mark.unit
def test_main_rejects_inconsistent_thresholds(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = cli.main(
        [
            "--manifest",
            str(tmp_path / "files.json"),
            "--output",
            str(tmp_path / "plan.md"),
            "--small-file-max-tokens",
            "30000",
        ],
    )

    assert exit_code == 2
    assert "Invalid settings" in capsys.readouterr().out


@pytest.mark.unit
def test_main_reports_manifest_errors(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    output = tmp_path / "plan.md"

    exit_code = cli.main(["--manifest", str(tmp_path / "absent.json"), "--output", str(output)])

    assert exit_code == 2
    assert not output.exists()
    assert "Cannot load manifest" in capsys.readouterr().out
