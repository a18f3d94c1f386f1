"""Custom exception hierarchy for npmsentry.

Only configuration and worker pool failures are meant to reach the caller.
Everything below the project level is recovered and recorded in the scan
result instead.
"""


class NpmSentryError(Exception):
    """Base exception for all npmsentry errors.

    All custom exceptions should inherit from this class to allow
    callers to catch all npmsentry-specific errors with a single
    except clause when appropriate.
    """
    pass


# =============================================================================
# Configuration Errors
# =============================================================================

class ConfigurationError(NpmSentryError):
    """Base exception for configuration errors."""
    pass


class InvalidConfigError(ConfigurationError):
    """Configuration is invalid (bad directory, out-of-range numbers, unreadable file)."""
    pass


# =============================================================================
# Scanner Errors
# =============================================================================

class ScannerError(NpmSentryError):
    """Base exception for scanner-related errors."""
    pass


class WorkerPoolError(ScannerError):
    """No worker process could be started."""
    pass


class ProjectTimeoutError(ScannerError):
    """A project scan exceeded its time budget."""

    def __init__(self, project: str, timeout: float):
        super().__init__(f"timeout after {timeout:g}s scanning {project}")
        self.project = project
        self.timeout = timeout


class ManifestParseError(ScannerError):
    """package.json could not be read or parsed."""
    pass


# =============================================================================
# Data Errors
# =============================================================================

class DataLoadError(NpmSentryError):
    """A signature, IOC or whitelist table could not be loaded."""
    pass
