from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, NamedTuple

from batch_planner.config import EXT2LANG, HASH_COMMENT_LANGUAGES
from batch_planner.logging import logger

if TYPE_CHECKING:
    from collections.abc import Callable

    FileReaderFn = Callable[[str], str]


class PathParts(NamedTuple):
    """Pieces of a manifest path used by relationship scoring."""

    directory: str
    base_name: str
    extension: str
    module: str
    file_name: str


def now_iso() -> str:
    """Return the current date and time in ISO 8601 format with timezone.

    Returns:
        str: the current date and time in ISO 8601 format with timezone
    """
    return datetime.now(UTC).astimezone().isoformat(timespec="seconds")


def relpath(path: Path, root: Path) -> str:
    """Send the relative path of path from root.

    Args:
        path (Path): the path to "relativise"
        root (Path): the root to relativise from

    Returns:
        str: the relative path from root to path, with POSIX separators.
            If path is not under root, returns the original path as a string.
    """
    try:
        return str(path.relative_to(root)).replace("\\", "/")
    except ValueError:
        return str(path).replace("\\", "/")


def file_language(path: str | Path) -> str:
    """Heuristically determine a file's language from its extension.

    Args:
        path (str | Path): the file path to analyze

    Returns:
        str: a language name such as "python" or "typescript", or "unknown"
    """
    return EXT2LANG.get(PurePosixPath(str(path).replace("\\", "/")).suffix.lower(), "unknown")


def comment_prefix(language: str) -> str:
    """Line-comment prefix for a language ("#" or "//")."""
    return "#" if language in HASH_COMMENT_LANGUAGES else "//"


def path_parts(path: str) -> PathParts:
    """Split a manifest path into the parts compared when grouping files.

    ``base_name`` is the file name up to its first dot, so ``user.service.ts``
    and ``user.test.ts`` share ``user``. ``module`` is the grandparent
    directory, empty for files less than two directories deep.

    Args:
        path (str): a POSIX or Windows style relative path

    Returns:
        PathParts: directory, base name, extension, module and file name
    """
    p = PurePosixPath(path.replace("\\", "/"))
    parent = p.parent.as_posix()
    directory = "" if parent == "." else parent
    grand = p.parent.parent.as_posix() if len(p.parts) > 2 else ""  # noqa: PLR2004
    return PathParts(
        directory=directory,
        base_name=p.name.split(".", 1)[0],
        extension=p.suffix.lower(),
        module="" if grand == "." else grand,
        file_name=p.name,
    )


def make_file_reader(root: Path) -> FileReaderFn:
    """Build the default ``read(path) -> str`` capability.

    Relative paths are resolved against ``root``. Missing or unreadable files
    raise ``OSError``, which the large-file strategy turns into its fallback.

    Args:
        root (Path): the directory manifest paths are relative to

    Returns:
        FileReaderFn: a function reading the whole text of a file
    """

    def read(path: str) -> str:
        target = Path(path)
        if not target.is_absolute():
            target = root / target
        if not target.is_file():
            msg = f"not a readable file: {target}"
            raise FileNotFoundError(msg)
        text = target.read_text(encoding="utf-8", errors="ignore")
        logger.debug("read_file", path=relpath(target, root), chars=len(text))
        return text

    return read
