"""Configuration model for the sheetkit analysis engine.

Provides ``AnalysisConfig`` with all tunable parameters and sensible
defaults.  Unknown keys are rejected so misspelled options fail loudly
instead of being silently ignored.  Supports loading overrides from YAML
or JSON files via the ``from_file()`` classmethod.
"""

from __future__ import annotations

import json
import pathlib
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

_MB = 1024 * 1024


class AnalysisConfig(BaseModel):
    """All tunable parameters with sensible defaults.

    Override individual values via constructor kwargs, merge a per-call
    option dict with :meth:`with_options`, or load a complete config from
    a file with ``AnalysisConfig.from_file(path)``.
    """

    model_config = ConfigDict(extra="forbid")

    # --- Limits ---
    max_file_size: int = Field(default=2 * 1024 * _MB, gt=0)
    max_rows_per_sheet: int = Field(default=1_000_000, gt=0)
    max_sheets: int = Field(default=1000, gt=0)
    max_display_rows: int = 1000
    max_display_sheets: int = 100
    sample_rows: int = Field(default=50_000, gt=0)

    # --- Strategy ---
    enable_streaming: bool = True
    enable_workers: bool = True
    force_streaming: bool = False
    force_parallel: bool = False
    streaming_threshold: int = 100 * _MB
    parallel_threshold: int = 50 * _MB

    # --- Workers ---
    worker_count: int = Field(default=4, ge=1)
    chunk_size: int = Field(default=10_000, gt=0)  # rows per streaming cancel check
    timeout: int = Field(default=300_000, gt=0)  # milliseconds
    abort_grace_seconds: float = 5.0
    batch_concurrency: int = Field(default=2, ge=1)

    # --- Cache ---
    enable_cache: bool = True
    cache_size: int = Field(default=100, ge=1)
    cache_max_result_bytes: int = 10 * _MB
    cache_memory_ceiling_mb: int = 1024
    cache_memory_pressure_ratio: float = 0.8

    # --- Analysis ---
    precision_mode: bool = False
    force_headers: bool = False
    enable_advanced_analysis: bool = False
    enable_ml: bool = False
    enable_time_series: bool = False
    enable_clustering: bool = False
    top_n: int = 10
    correlation_threshold: float = 0.7
    min_support: float = 0.1
    dbscan_min_pts: int = 4
    cluster_k_range: tuple[int, int] = (2, 8)
    linkage: Literal["single", "complete", "average"] = "average"
    random_seed: int = 42

    # --- Logging / PII safety ---
    log_sample_data: bool = False

    @property
    def timeout_seconds(self) -> float:
        return self.timeout / 1000.0

    @property
    def advanced_enabled(self) -> bool:
        """True when any statistics-engine feature flag is on."""
        return (
            self.enable_advanced_analysis
            or self.enable_ml
            or self.enable_time_series
            or self.enable_clustering
        )

    def with_options(self, options: dict[str, Any] | None) -> AnalysisConfig:
        """Return a validated copy with *options* merged over this config.

        Raises:
            pydantic.ValidationError: If *options* contains an unknown key
                or a value of the wrong type.
        """
        if not options:
            return self
        merged = self.model_dump()
        merged.update(options)
        return AnalysisConfig.model_validate(merged)

    @classmethod
    def from_file(cls, path: str) -> AnalysisConfig:
        """Load configuration from a YAML or JSON file.

        File format is detected by extension: ``.yaml`` / ``.yml`` for YAML,
        ``.json`` for JSON.  Any keys present in the file override the
        corresponding defaults; keys not present retain their defaults.

        Args:
            path: Filesystem path to the configuration file.

        Returns:
            A fully-populated ``AnalysisConfig`` instance.

        Raises:
            FileNotFoundError: If *path* does not exist.
            ValueError: If the file extension is not recognized.
        """
        file_path = pathlib.Path(path)
        if not file_path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        suffix = file_path.suffix.lower()

        if suffix in (".yaml", ".yml"):
            import yaml  # type: ignore[import-untyped]

            with open(file_path, encoding="utf-8") as fh:
                data = yaml.safe_load(fh)
        elif suffix == ".json":
            with open(file_path, encoding="utf-8") as fh:
                data = json.load(fh)
        else:
            raise ValueError(
                f"Unsupported config file extension '{suffix}'. "
                "Use .yaml, .yml, or .json."
            )

        if data is None:
            data = {}

        return cls(**data)
