from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

import yaml
from pydantic import ValidationError

from batch_planner.exceptions import ManifestError
from batch_planner.file_manipulation import file_language
from batch_planner.logging import logger
from batch_planner.models import SourceFileRef
from batch_planner.tokens import make_error_estimate

if TYPE_CHECKING:
    from pathlib import Path

# Keys the upstream analyzer may use for a file's token data.
_TOKEN_KEYS = ("token_estimate", "tokenEstimate", "token_count", "tokenCount", "tokens")
_SUMMARY_KEYS = ("structural_summary", "structuralSummary", "code_structure", "codeStructure")
_SIZE_KEYS = ("size_bytes", "sizeBytes", "size")


def _first(entry: dict[str, Any], keys: tuple[str, ...]) -> Any:  # noqa: ANN401
    for key in keys:
        if entry.get(key) is not None:
            return entry[key]
    return None


def parse_manifest_text(text: str, suffix: str) -> list[Any]:
    """Decode manifest text into a list of raw entries.

    Args:
        text (str): the manifest content
        suffix (str): the manifest file extension (".json", ".jsonl", ".yaml" or ".yml")

    Raises:
        ValueError: if the content cannot be decoded or has the wrong shape.

    Returns:
        list[Any]: the raw file entries
    """
    if suffix == ".jsonl":
        return [json.loads(line) for line in text.splitlines() if line.strip()]
    data = yaml.safe_load(text) if suffix in {".yaml", ".yml"} else json.loads(text)
    if isinstance(data, dict):
        data = data.get("files")
    if not isinstance(data, list):
        msg = "expected a list of files or a mapping with a 'files' list"
        raise ValueError(msg)  # noqa: TRY004
    return data


def entry_to_ref(entry: dict[str, Any]) -> SourceFileRef:
    """Normalise one manifest entry into a SourceFileRef.

    Entries without any token data get an error estimate, so the planner
    reports them instead of treating them as empty files.
    """
    path = entry.get("path") or entry.get("file_path") or entry.get("filePath")
    if not path:
        msg = "manifest entry without a path"
        raise ValueError(msg)
    tokens = _first(entry, _TOKEN_KEYS)
    language = entry.get("language") or file_language(path)
    if tokens is None:
        tokens = make_error_estimate(str(path), "no token estimate in manifest", language=language)
    return SourceFileRef.model_validate(
        {
            "path": str(path),
            "token_estimate": tokens,
            "size_bytes": _first(entry, _SIZE_KEYS) or 0,
            "language": language,
            "structural_summary": _first(entry, _SUMMARY_KEYS),
        },
    )


def load_manifest(path: Path) -> list[SourceFileRef]:
    """Load analysed files from a JSON, JSONL or YAML manifest.

    The document is either a list of file entries or a mapping with a
    ``files`` list. Each entry needs a ``path`` and token data (a number or an
    estimate object); ``size_bytes``, ``language`` and ``structural_summary``
    are optional.

    Args:
        path (Path): the manifest file

    Raises:
        ManifestError: if the file cannot be read or an entry is malformed.

    Returns:
        list[SourceFileRef]: the files, in manifest order
    """
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ManifestError(path=path, reason=f"cannot read manifest: {e}") from e
    try:
        entries = parse_manifest_text(text, path.suffix.lower())
    except (ValueError, yaml.YAMLError) as e:
        raise ManifestError(path=path, reason=f"cannot parse manifest: {e}") from e

    refs: list[SourceFileRef] = []
    for n, entry in enumerate(entries, start=1):
        if not isinstance(entry, dict):
            raise ManifestError(path=path, reason=f"entry {n} is not a mapping")
        try:
            refs.append(entry_to_ref(entry))
        except ValidationError as e:
            raise ManifestError(path=path, reason=f"entry {n} is invalid: {e.error_count()} errors") from e
        except ValueError as e:
            raise ManifestError(path=path, reason=f"entry {n}: {e}") from e
    logger.info("manifest_loaded", path=str(path), files=len(refs))
    return refs
