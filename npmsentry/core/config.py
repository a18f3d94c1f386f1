"""Configuration models for npmsentry scans."""

import json
import logging
import math
import os
from pathlib import Path
from typing import Any

import toml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from ..constants import (
    DEFAULT_CPU_FRACTION,
    DEFAULT_EXCLUDE_PATTERNS,
    DEFAULT_FILE_IGNORE_PATTERNS,
    DEFAULT_INCLUDE_PATTERNS,
    DEFAULT_MEMORY_LIMIT,
    DEFAULT_PROJECT_TIMEOUT_SECONDS,
    DEFAULT_TEST_FILE_PATTERNS,
    MAX_CONCURRENCY_OVERRIDE,
    MAX_SCAN_FILE_SIZE,
    MIN_MEMORY_LIMIT,
)
from .exceptions import InvalidConfigError

logger = logging.getLogger(__name__)


def default_max_concurrency() -> int:
    """Worker count used when none is configured.

    Honors ``NPMSENTRY_MAX_CONCURRENCY``; otherwise 40% of the CPU cores,
    never less than one.
    """
    if MAX_CONCURRENCY_OVERRIDE:
        try:
            return max(1, int(MAX_CONCURRENCY_OVERRIDE))
        except ValueError:
            logger.warning(
                f"Ignoring invalid NPMSENTRY_MAX_CONCURRENCY={MAX_CONCURRENCY_OVERRIDE!r}"
            )
    cores = os.cpu_count() or 1
    return max(1, math.floor(cores * DEFAULT_CPU_FRACTION))


class _CamelModel(BaseModel):
    """Accepts both snake_case field names and the camelCase keys of JSON configs."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PerformanceConfig(_CamelModel):
    """Worker pool sizing and time budget."""

    max_concurrency: int = Field(default_factory=default_max_concurrency, ge=1)
    timeout: float = Field(
        default=DEFAULT_PROJECT_TIMEOUT_SECONDS,
        gt=0,
        description="Per-project timeout in seconds",
    )
    memory_limit: int = Field(
        default=DEFAULT_MEMORY_LIMIT,
        ge=MIN_MEMORY_LIMIT,
        description="Per-worker memory budget in bytes (informational)",
    )


class SecurityConfig(_CamelModel):
    """Which detection stages run for each project."""

    scan_malicious_code: bool = True
    scan_compromised_packages: bool = True
    validate_package_json: bool = True
    scan_npm_cache: bool = True
    exclude_test_files: bool = True


class LoggingConfig(_CamelModel):
    """Settings forwarded to ``configure_logging`` in every process."""

    level: str = "INFO"
    file: str | None = None
    json_format: bool = False

    @field_validator("level")
    @classmethod
    def _validate_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(f"Invalid logging level: {value}")
        return level


class ScanConfig(_CamelModel):
    """Complete configuration for one scan run."""

    directory: Path = Field(default_factory=Path.cwd)
    performance: PerformanceConfig = Field(default_factory=PerformanceConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    include_patterns: list[str] = Field(
        default_factory=lambda: list(DEFAULT_INCLUDE_PATTERNS)
    )
    exclude_patterns: list[str] = Field(
        default_factory=lambda: list(DEFAULT_EXCLUDE_PATTERNS)
    )
    file_ignore_patterns: list[str] = Field(
        default_factory=lambda: list(DEFAULT_FILE_IGNORE_PATTERNS)
    )
    test_file_patterns: list[str] = Field(
        default_factory=lambda: list(DEFAULT_TEST_FILE_PATTERNS)
    )
    max_file_size: int = Field(default=MAX_SCAN_FILE_SIZE, gt=0)
    signature_dir: Path | None = Field(
        default=None,
        description="Directory holding vulnerable_packages.json, iocs.json and whitelist.json",
    )

    @field_validator("directory")
    @classmethod
    def _validate_directory(cls, value: Path) -> Path:
        path = Path(value).expanduser()
        if not path.exists():
            raise ValueError(f"Directory does not exist: {path}")
        if not path.is_dir():
            raise ValueError(f"Path is not a directory: {path}")
        return path.resolve()

    @classmethod
    def from_options(cls, options: dict[str, Any] | None = None) -> "ScanConfig":
        """Build a config from a plain mapping.

        Raises:
            InvalidConfigError: If any value fails validation
        """
        try:
            return cls.model_validate(options or {})
        except ValidationError as e:
            raise InvalidConfigError(_format_validation_error(e)) from e

    @classmethod
    def from_file(cls, config_path: str | Path, **overrides: Any) -> "ScanConfig":
        """Load a JSON or TOML config file, then apply keyword overrides.

        Nested sections in ``overrides`` are merged into the file's sections
        rather than replacing them.
        """
        path = Path(config_path)
        try:
            with open(path, encoding="utf-8") as f:
                if path.suffix == ".toml":
                    data = toml.load(f)
                else:
                    data = json.load(f)
        except (OSError, json.JSONDecodeError, toml.TomlDecodeError) as e:
            raise InvalidConfigError(
                f"Failed to load configuration from {path}: {e}"
            ) from e

        if not isinstance(data, dict):
            raise InvalidConfigError(f"Configuration in {path} must be a mapping")

        return cls.from_options(_deep_merge(data, overrides))

    def summary(self) -> dict[str, Any]:
        """Short description of the run used in startup logs."""
        return {
            "directory": str(self.directory),
            "max_concurrency": self.performance.max_concurrency,
            "timeout": self.performance.timeout,
            "scan_malicious_code": self.security.scan_malicious_code,
            "scan_compromised_packages": self.security.scan_compromised_packages,
            "validate_package_json": self.security.validate_package_json,
            "scan_npm_cache": self.security.scan_npm_cache,
            "exclude_test_files": self.security.exclude_test_files,
        }


def _deep_merge(target: dict[str, Any], source: dict[str, Any]) -> dict[str, Any]:
    result = dict(target)
    for key, value in source.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _format_validation_error(error: ValidationError) -> str:
    problems = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ()))
        problems.append(f"{location}: {item.get('msg')}" if location else str(item.get("msg")))
    return "Invalid configuration: " + "; ".join(problems)
