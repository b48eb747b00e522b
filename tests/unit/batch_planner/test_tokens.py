from __future__ import annotations

import math

import pytest

from batch_planner.config import EstimationMethod
from batch_planner.tokens import (
    TokenEstimate,
    coerce_token_estimate,
    estimate_text_tokens,
    extract_token_count,
    make_error_estimate,
    make_token_estimate,
    sum_token_counts,
)


@pytest.mark.unit
@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (1200, 1200),
        (12.7, 12),
        (-5, 0),
        (None, 0),
        ("not a number", 0),
        (True, 0),
        (math.nan, 0),
        ({"totalTokens": 900, "safeTokenCount": 800}, 900),
        ({"safeTokenCount": 800, "estimatedTokens": 1000}, 800),
        ({"estimated_tokens": 300}, 300),
        ({"details": {"safeTokenCount": 70}}, 70),
        ({"unrelated": 5}, 0),
    ],
)
def test_extract_token_count_accepts_every_shape(value: object, expected: int) -> None:
    assert extract_token_count(value) == expected


@pytest.mark.unit
def test_extract_token_count_prefers_first_present_field() -> None:
    assert extract_token_count({"totalTokens": 0, "safeTokenCount": 50}) == 0
    assert extract_token_count({"totalTokens": None, "safeTokenCount": 50}) == 50


@pytest.mark.unit
def test_make_token_estimate_fills_details_defaults() -> None:
    estimate = make_token_estimate(1000, details={})

    assert estimate.total_tokens == 1000
    assert estimate.details is not None
    assert estimate.details.estimated_tokens == 1000
    assert estimate.details.safe_token_count == 900
    assert estimate.details.breakdown.code_tokens == 700
    assert estimate.confidence == 0.8


@pytest.mark.unit
def test_make_token_estimate_caps_safe_count_and_confidence() -> None:
    estimate = make_token_estimate(100, details={"safeTokenCount": 500, "confidence": 3})

    assert estimate.safe_tokens == 100
    assert estimate.confidence == 1.0


@pytest.mark.unit
def test_safe_tokens_defaults_to_ninety_percent() -> None:
    assert TokenEstimate(total_tokens=1001).safe_tokens == 900


@pytest.mark.unit
def test_error_estimate_is_flagged() -> None:
    estimate = make_error_estimate("src/app.ts", "tokenizer crashed", language="typescript")

    assert estimate.total_tokens == 0
    assert estimate.has_error
    assert estimate.error == "tokenizer crashed"
    assert estimate.metadata is not None
    assert estimate.metadata.estimation_method == EstimationMethod.ERROR
    assert estimate.metadata.timestamp


@pytest.mark.unit
def test_coerce_token_estimate_reads_camel_case_objects() -> None:
    raw = {
        "totalTokens": 4200,
        "details": {"safeTokenCount": 3900, "confidence": 0.95},
        "metadata": {"filePath": "a.py", "calculationMethod": "precise_tiktoken", "fromCache": True},
    }

    estimate = coerce_token_estimate(raw)

    assert estimate.total_tokens == 4200
    assert estimate.safe_tokens == 3900
    assert estimate.confidence == 0.95
    assert estimate.from_cache
    assert estimate.metadata is not None
    assert estimate.metadata.file_path == "a.py"
    assert estimate.metadata.estimation_method == EstimationMethod.PRECISE
    assert not estimate.has_error


@pytest.mark.unit
def test_coerce_token_estimate_is_deterministic() -> None:
    raw = {"totalTokens": 10, "filePath": "a.py", "error": None}

    assert coerce_token_estimate(raw) == coerce_token_estimate(raw)


@pytest.mark.unit
def test_coerce_token_estimate_passes_models_through() -> None:
    estimate = TokenEstimate(total_tokens=3)

    assert coerce_token_estimate(estimate) is estimate
    assert coerce_token_estimate(7).total_tokens == 7


@pytest.mark.unit
def test_sum_token_counts_mixes_shapes() -> None:
    assert sum_token_counts([10, {"totalTokens": 20}, TokenEstimate(total_tokens=30), "x"]) == 60


@pytest.mark.unit
def test_estimate_text_tokens_uses_character_ratio() -> None:
    assert estimate_text_tokens("") == 0
    assert estimate_text_tokens("abcd" * 10) == 10
    assert estimate_text_tokens("abc") == 1
    assert estimate_text_tokens("中文字符") == 3
