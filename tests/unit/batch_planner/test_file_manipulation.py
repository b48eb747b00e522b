from __future__ import annotations

from pathlib import Path

import pytest

from batch_planner.file_manipulation import (
    comment_prefix,
    file_language,
    make_file_reader,
    now_iso,
    path_parts,
    relpath,
)


@pytest.mark.unit
def test_relpath_inside_and_outside_root(tmp_path: Path) -> None:
    inside = tmp_path / "src" / "app.py"
    outside = Path("/elsewhere/file.py")

    assert relpath(inside, tmp_path) == "src/app.py"
    assert relpath(outside, tmp_path) == "/elsewhere/file.py"


@pytest.mark.unit
@pytest.mark.parametrize(
    ("path", "language"),
    [("src/app.py", "python"), ("web/App.TSX", "typescript"), ("lib\\core.rs", "rust"), ("README", "unknown")],
)
def test_file_language(path: str, language: str) -> None:
    assert file_language(path) == language


@pytest.mark.unit
def test_comment_prefix() -> None:
    assert comment_prefix("python") == "#"
    assert comment_prefix("typescript") == "//"


@pytest.mark.unit
def test_path_parts() -> None:
    parts = path_parts("src\\services\\user.service.ts")

    assert parts.directory == "src/services"
    assert parts.base_name == "user"
    assert parts.extension == ".ts"
    assert parts.module == "src"
    assert parts.file_name == "user.service.ts"
    assert path_parts("main.py").directory == ""
    assert path_parts("pkg/main.py").module == ""


@pytest.mark.unit
def test_file_reader_resolves_relative_paths(tmp_path: Path) -> None:
    target = tmp_path / "src" / "app.py"
    target.parent.mkdir(parents=True)
    target.write_text("print('hi')\n", encoding="utf-8")
    read = make_file_reader(tmp_path)

    assert read("src/app.py") == "print('hi')\n"
    assert read(str(target)) == "print('hi')\n"
    with pytest.raises(FileNotFoundError):
        read("src/missing.py")
    with pytest.raises(FileNotFoundError):
        read("src")


@pytest.mark.unit
def test_now_iso_has_timezone() -> None:
    stamp = now_iso()

    assert "T" in stamp
    assert stamp[-6] in "+-"
