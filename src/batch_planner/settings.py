from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Self

from dotenv import dotenv_values, find_dotenv
from pydantic import BaseModel, ConfigDict, Field, model_validator

ENV_FILE = find_dotenv(usecwd=True)
ENV_PREFIX = "BATCH_PLANNER_"


class PlannerSettings(BaseModel):
    """Thresholds and budgets used to route files and size batches."""

    model_config = ConfigDict(frozen=True)

    small_file_max_tokens: int = Field(
        default=15_000,
        gt=0,
        description="Files below this go to combined batches.",
    )
    medium_file_max_tokens: int = Field(
        default=20_000,
        gt=0,
        description="Files at or above this are split into chunks.",
    )
    target_batch_size: int = Field(default=18_000, gt=0, description="Preferred combined batch size.")
    max_batch_size: int = Field(default=22_000, gt=0, description="Hard cap for combined batches.")
    min_batch_size: int = Field(default=8_000, ge=0, description="Soft floor for combined batches.")
    max_files_per_batch: int = Field(default=12, ge=1, description="Member cap for combined batches.")
    target_chunk_size: int = Field(default=18_000, gt=0, description="Preferred chunk size for split files.")
    chunk_overlap_tokens: int = Field(
        default=500,
        ge=0,
        description="Budget for import context carried into later chunks.",
    )
    max_concurrent_reads: int = Field(default=8, ge=1, description="Parallel large-file reads.")
    max_file_tokens: int | None = Field(
        default=None,
        description="Estimates above this are rejected as absurd; None disables the check.",
    )
    enable_smart_grouping: bool = Field(default=True, description="Group related small files.")
    preserve_imports: bool = Field(default=True, description="Carry leading imports into later chunks.")
    boundary_tolerance: float = Field(
        default=0.10,
        ge=0,
        le=1,
        description="How far a chunk may exceed the target before cutting.",
    )
    boundary_min_fill: float = Field(
        default=0.6,
        gt=0,
        le=1,
        description="Smallest fraction of the target a boundary cut may leave behind.",
    )

    @model_validator(mode="after")
    def _check_ordering(self) -> Self:
        if self.small_file_max_tokens >= self.medium_file_max_tokens:
            msg = "small_file_max_tokens must be lower than medium_file_max_tokens"
            raise ValueError(msg)
        if not self.min_batch_size <= self.target_batch_size <= self.max_batch_size:
            msg = "expected min_batch_size <= target_batch_size <= max_batch_size"
            raise ValueError(msg)
        if self.max_file_tokens is not None and self.max_file_tokens < self.medium_file_max_tokens:
            msg = "max_file_tokens must not be lower than medium_file_max_tokens"
            raise ValueError(msg)
        return self

    @property
    def max_chunk_size(self) -> int:
        """Largest chunk accepted when merging a trailing remainder."""
        return round(self.target_chunk_size * self.max_batch_size / self.target_batch_size)

    @classmethod
    def from_env(cls, prefix: str = ENV_PREFIX, **overrides: Any) -> Self:  # noqa: ANN401
        """Build settings from ``.env`` and the process environment.

        Variables are named after the fields with ``prefix`` prepended, e.g.
        ``BATCH_PLANNER_TARGET_BATCH_SIZE``. Process variables win over ``.env``
        values, and explicit ``overrides`` win over both.

        Args:
            prefix (str): Environment variable prefix.
            **overrides: Field values that take precedence over the environment.

        Returns:
            Self: The validated settings.
        """
        values: dict[str, Any] = {}
        env = {**(dotenv_values(ENV_FILE) if ENV_FILE else {}), **os.environ}
        for name in cls.model_fields:
            raw = env.get(prefix + name.upper())
            if raw is not None and raw != "":
                values[name] = raw
        values.update(overrides)
        return cls(**values)


class Settings(PlannerSettings):
    """Configuration settings for the batch-planner command line."""

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    manifest: Path = Field(..., description="Manifest of analysed files (.json, .jsonl, .yaml).")
    repo: Path = Field(default_factory=Path.cwd, description="Root that manifest paths are relative to.")
    output: Path = Field(..., description="Output file (.jsonl or .md).")
    format: str = Field(default="", description="Force format.")
    tasks: bool = Field(default=False, description="Wrap batches into pending tasks.")
    log_file: str = Field(default="", description="Log file path.")

    def planner_settings(self) -> PlannerSettings:
        """Strip the command-line fields, keeping only the planner configuration."""
        return PlannerSettings(**self.model_dump(include=set(PlannerSettings.model_fields)))
