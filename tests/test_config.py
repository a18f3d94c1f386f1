"""Tests for scan configuration."""

import json
from pathlib import Path
from unittest.mock import patch

import pytest
import toml

from npmsentry.constants import DEFAULT_FILE_IGNORE_PATTERNS, MIN_MEMORY_LIMIT
from npmsentry.core.config import ScanConfig, default_max_concurrency
from npmsentry.core.exceptions import InvalidConfigError


class TestDefaultConcurrency:
    """CPU-based pool sizing."""

    @pytest.mark.parametrize("cores, expected", [(1, 1), (2, 1), (4, 1), (10, 4), (16, 6), (None, 1)])
    def test_fraction_of_cores(self, cores, expected):
        with patch("npmsentry.core.config.MAX_CONCURRENCY_OVERRIDE", None), patch(
            "npmsentry.core.config.os.cpu_count", return_value=cores
        ):
            assert default_max_concurrency() == expected

    def test_environment_override(self):
        with patch("npmsentry.core.config.MAX_CONCURRENCY_OVERRIDE", "7"):
            assert default_max_concurrency() == 7

    def test_invalid_override_falls_back(self):
        with patch("npmsentry.core.config.MAX_CONCURRENCY_OVERRIDE", "lots"), patch(
            "npmsentry.core.config.os.cpu_count", return_value=10
        ):
            assert default_max_concurrency() == 4


class TestScanConfig:
    """Validation and construction."""

    def test_defaults(self, tmp_path):
        config = ScanConfig.from_options({"directory": str(tmp_path)})

        assert config.directory == tmp_path.resolve()
        assert config.performance.timeout == 30
        assert config.performance.max_concurrency >= 1
        assert config.security.scan_malicious_code is True
        assert config.security.exclude_test_files is True
        assert config.file_ignore_patterns == DEFAULT_FILE_IGNORE_PATTERNS
        assert "**/*.yml" in config.include_patterns
        assert config.logging.level == "INFO"

    def test_camel_case_keys(self, tmp_path):
        config = ScanConfig.from_options(
            {
                "directory": str(tmp_path),
                "performance": {"maxConcurrency": 3, "timeout": 5},
                "security": {"scanNpmCache": False, "excludeTestFiles": False},
                "maxFileSize": 1024,
            }
        )

        assert config.performance.max_concurrency == 3
        assert config.security.scan_npm_cache is False
        assert config.security.exclude_test_files is False
        assert config.max_file_size == 1024

    def test_missing_directory(self, tmp_path):
        with pytest.raises(InvalidConfigError, match="does not exist"):
            ScanConfig.from_options({"directory": str(tmp_path / "nope")})

    def test_directory_is_a_file(self, tmp_path):
        path = tmp_path / "file.txt"
        path.write_text("x")
        with pytest.raises(InvalidConfigError, match="not a directory"):
            ScanConfig.from_options({"directory": str(path)})

    @pytest.mark.parametrize(
        "performance",
        [
            {"max_concurrency": 0},
            {"timeout": 0},
            {"timeout": -1},
            {"memory_limit": MIN_MEMORY_LIMIT - 1},
        ],
    )
    def test_numeric_bounds(self, tmp_path, performance):
        with pytest.raises(InvalidConfigError, match="performance"):
            ScanConfig.from_options({"directory": str(tmp_path), "performance": performance})

    def test_logging_level(self, tmp_path):
        config = ScanConfig.from_options({"directory": str(tmp_path), "logging": {"level": "debug"}})
        assert config.logging.level == "DEBUG"

        with pytest.raises(InvalidConfigError):
            ScanConfig.from_options({"directory": str(tmp_path), "logging": {"level": "LOUD"}})

    def test_summary(self, tmp_path):
        summary = ScanConfig.from_options({"directory": str(tmp_path)}).summary()
        assert summary["directory"] == str(tmp_path.resolve())
        assert "max_concurrency" in summary

    def test_round_trip_for_workers(self, tmp_path):
        config = ScanConfig.from_options(
            {"directory": str(tmp_path), "signature_dir": str(tmp_path)}
        )
        restored = ScanConfig.model_validate(config.model_dump(mode="json"))
        assert restored == config


class TestConfigFiles:
    """JSON and TOML config files with overrides."""

    def test_json_file_with_overrides(self, tmp_path):
        path = tmp_path / "npmsentry.json"
        path.write_text(
            json.dumps(
                {
                    "directory": str(tmp_path),
                    "performance": {"maxConcurrency": 2, "timeout": 10},
                    "security": {"scanNpmCache": False},
                }
            )
        )

        config = ScanConfig.from_file(path, performance={"timeout": 3})

        assert config.performance.timeout == 3
        assert config.performance.max_concurrency == 2
        assert config.security.scan_npm_cache is False

    def test_toml_file(self, tmp_path):
        path = tmp_path / "npmsentry.toml"
        path.write_text(
            toml.dumps(
                {
                    "directory": str(tmp_path),
                    "security": {"scan_malicious_code": False},
                    "include_patterns": ["**/*.js"],
                }
            )
        )

        config = ScanConfig.from_file(path)

        assert config.security.scan_malicious_code is False
        assert config.include_patterns == ["**/*.js"]

    def test_unreadable_file(self, tmp_path):
        with pytest.raises(InvalidConfigError):
            ScanConfig.from_file(tmp_path / "missing.json")

    def test_malformed_json(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("{")
        with pytest.raises(InvalidConfigError, match="Failed to load"):
            ScanConfig.from_file(path)

    def test_non_mapping(self, tmp_path):
        path = tmp_path / "list.json"
        path.write_text("[]")
        with pytest.raises(InvalidConfigError, match="must be a mapping"):
            ScanConfig.from_file(Path(path))
