from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import pytest

from batch_planner import logging as planner_logging

if TYPE_CHECKING:
    from pathlib import Path


@pytest.mark.unit
@pytest.mark.parametrize(("value", "level"), [("debug", logging.DEBUG), ("WARNING", logging.WARNING), ("loud", logging.INFO), ("", logging.INFO)])
def test_level_from_env(monkeypatch: pytest.MonkeyPatch, value: str, level: int) -> None:
    monkeypatch.setenv(planner_logging.LOG_LEVEL_ENV, value)

    assert planner_logging._level_from_env() == level  # noqa: SLF001


@pytest.mark.unit
def test_setup_logging_adds_file_handler_once(tmp_path: Path) -> None:
    log_file = tmp_path / "planner.log"
    root = logging.getLogger()
    before = list(root.handlers)

    try:
        planner_logging.setup_logging(log_file)
        planner_logging.setup_logging(log_file)
        added = [h for h in root.handlers if h not in before]
        assert len(added) == 1
        assert isinstance(added[0], logging.FileHandler)
    finally:
        for handler in root.handlers[:]:
            if handler not in before:
                root.removeHandler(handler)
                handler.close()
