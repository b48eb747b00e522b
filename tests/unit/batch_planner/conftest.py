from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pytest

from batch_planner.models import SourceFileRef

if TYPE_CHECKING:
    from collections.abc import Callable


@pytest.fixture
def make_ref() -> Callable[..., SourceFileRef]:
    def _make(path: str, tokens: Any, **extra: Any) -> SourceFileRef:  # noqa: ANN401
        return SourceFileRef.model_validate({"path": path, "token_estimate": tokens, **extra})

    return _make
