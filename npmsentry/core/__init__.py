"""Core utilities for configuration, logging and errors."""

from .config import (
    LoggingConfig,
    PerformanceConfig,
    ScanConfig,
    SecurityConfig,
    default_max_concurrency,
)
from .exceptions import (
    ConfigurationError,
    DataLoadError,
    InvalidConfigError,
    ManifestParseError,
    NpmSentryError,
    ProjectTimeoutError,
    ScannerError,
    WorkerPoolError,
)
from .logging_config import configure_logging, summarize_scan_log

__all__ = [
    # Configuration
    "ScanConfig",
    "PerformanceConfig",
    "SecurityConfig",
    "LoggingConfig",
    "default_max_concurrency",
    # Logging
    "configure_logging",
    "summarize_scan_log",
    # Exceptions
    "NpmSentryError",
    "ConfigurationError",
    "InvalidConfigError",
    "ScannerError",
    "WorkerPoolError",
    "ProjectTimeoutError",
    "ManifestParseError",
    "DataLoadError",
]
