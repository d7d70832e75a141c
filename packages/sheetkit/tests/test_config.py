"""Tests for AnalysisConfig defaults, option merging, from_file(), and ErrorCode completeness."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from sheetkit.config import AnalysisConfig
from sheetkit.errors import ERROR_TYPES, ErrorCode


# ---------------------------------------------------------------------------
# Default value tests
# ---------------------------------------------------------------------------


class TestConfigDefaults:
    def test_max_file_size_is_two_gib(self, default_config: AnalysisConfig) -> None:
        assert default_config.max_file_size == 2 * 1024 * 1024 * 1024

    def test_max_rows_per_sheet(self, default_config: AnalysisConfig) -> None:
        assert default_config.max_rows_per_sheet == 1_000_000

    def test_thresholds(self, default_config: AnalysisConfig) -> None:
        assert default_config.streaming_threshold == 100 * 1024 * 1024
        assert default_config.parallel_threshold == 50 * 1024 * 1024

    def test_worker_defaults(self, default_config: AnalysisConfig) -> None:
        assert default_config.worker_count == 4
        assert default_config.timeout == 300_000
        assert default_config.timeout_seconds == 300.0
        assert default_config.abort_grace_seconds == 5.0

    def test_cache_defaults(self, default_config: AnalysisConfig) -> None:
        assert default_config.enable_cache is True
        assert default_config.cache_size == 100
        assert default_config.cache_max_result_bytes == 10 * 1024 * 1024

    def test_advanced_flags_off(self, default_config: AnalysisConfig) -> None:
        assert default_config.advanced_enabled is False

    def test_any_flag_enables_advanced(self) -> None:
        assert AnalysisConfig(enable_clustering=True).advanced_enabled is True
        assert AnalysisConfig(enable_time_series=True).advanced_enabled is True
        assert AnalysisConfig(enable_ml=True).advanced_enabled is True


# ---------------------------------------------------------------------------
# Validation and option merging
# ---------------------------------------------------------------------------


class TestConfigValidation:
    def test_unknown_key_rejected(self) -> None:
        with pytest.raises(ValidationError):
            AnalysisConfig(enable_magic=True)  # type: ignore[call-arg]

    def test_non_positive_worker_count_rejected(self) -> None:
        with pytest.raises(ValidationError):
            AnalysisConfig(worker_count=0)

    def test_bad_linkage_rejected(self) -> None:
        with pytest.raises(ValidationError):
            AnalysisConfig(linkage="ward")  # type: ignore[arg-type]

    def test_parser_version_is_not_an_option(self) -> None:
        assert "parser_version" not in AnalysisConfig.model_fields
        with pytest.raises(ValidationError):
            AnalysisConfig(parser_version="sheetkit:1.0.0")  # type: ignore[call-arg]

    def test_non_positive_chunk_size_rejected(self) -> None:
        with pytest.raises(ValidationError):
            AnalysisConfig(chunk_size=0)


class TestWithOptions:
    def test_none_returns_same_instance(self, default_config: AnalysisConfig) -> None:
        assert default_config.with_options(None) is default_config

    def test_merges_over_base(self) -> None:
        base = AnalysisConfig(worker_count=2)
        merged = base.with_options({"precision_mode": True})
        assert merged.worker_count == 2
        assert merged.precision_mode is True
        assert base.precision_mode is False

    def test_unknown_option_rejected(self, default_config: AnalysisConfig) -> None:
        with pytest.raises(ValidationError):
            default_config.with_options({"maxFileSize": 10})


# ---------------------------------------------------------------------------
# from_file()
# ---------------------------------------------------------------------------


class TestFromFile:
    def test_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({"worker_count": 8, "enable_ml": True}))
        config = AnalysisConfig.from_file(str(path))
        assert config.worker_count == 8
        assert config.enable_ml is True
        assert config.cache_size == 100

    def test_json(self, tmp_path: Path) -> None:
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"max_sheets": 5}))
        assert AnalysisConfig.from_file(str(path)).max_sheets == 5

    def test_empty_yaml_gives_defaults(self, tmp_path: Path) -> None:
        path = tmp_path / "empty.yml"
        path.write_text("")
        assert AnalysisConfig.from_file(str(path)) == AnalysisConfig()

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            AnalysisConfig.from_file(str(tmp_path / "absent.yaml"))

    def test_unsupported_extension(self, tmp_path: Path) -> None:
        path = tmp_path / "config.toml"
        path.write_text("worker_count = 2")
        with pytest.raises(ValueError, match="Unsupported config file extension"):
            AnalysisConfig.from_file(str(path))


# ---------------------------------------------------------------------------
# ErrorCode completeness
# ---------------------------------------------------------------------------


class TestErrorCodes:
    def test_prefixes(self) -> None:
        for code in ErrorCode:
            assert code.value.startswith(("E_", "W_"))
            assert code.value == code.name

    def test_every_error_has_a_type(self) -> None:
        for code in ErrorCode:
            if code.value.startswith("E_"):
                assert code in ERROR_TYPES

    def test_taxonomy_names(self) -> None:
        assert ERROR_TYPES[ErrorCode.E_UNSUPPORTED_FORMAT] == "UnsupportedFormat"
        assert ERROR_TYPES[ErrorCode.E_SIZE_LIMIT_EXCEEDED] == "SizeLimitExceeded"
        assert ERROR_TYPES[ErrorCode.E_ABORTED] == "Aborted"
