"""Constants and configuration values for npmsentry.

This module centralizes magic numbers and configuration values
that are used across the codebase for easier maintenance.
"""

import os

# =============================================================================
# Parallel Scanning
# =============================================================================

# Per-project timeout in seconds. A project that takes longer is recorded as
# a timeout error and its worker process is replaced.
DEFAULT_PROJECT_TIMEOUT_SECONDS = float(os.environ.get("NPMSENTRY_TIMEOUT", 30))

# Fraction of CPU cores used when no concurrency is configured
DEFAULT_CPU_FRACTION = 0.4

# Explicit override for the worker pool size
MAX_CONCURRENCY_OVERRIDE = os.environ.get("NPMSENTRY_MAX_CONCURRENCY")

# Informational per-worker memory budget (512MB), minimum accepted is 100MB
DEFAULT_MEMORY_LIMIT = 512 * 1024 * 1024
MIN_MEMORY_LIMIT = 100 * 1024 * 1024

# How long the coordinator waits on the result pipes before re-checking
# deadlines and worker liveness
RESULT_POLL_INTERVAL_SECONDS = 0.2

# Grace period for a worker to exit after terminate() before kill()
WORKER_TERMINATE_GRACE_SECONDS = 2.0

# Grace period for a worker to exit after the shutdown sentinel
WORKER_SHUTDOWN_GRACE_SECONDS = 5.0


# =============================================================================
# File Size Limits
# =============================================================================

# Maximum source file size for pattern matching (10MB)
MAX_SCAN_FILE_SIZE = 10 * 1024 * 1024

# Maximum package.json size (1MB)
MAX_MANIFEST_FILE_SIZE = 1 * 1024 * 1024


# =============================================================================
# npm Cache
# =============================================================================

# Timeout for the `npm cache ls` invocation in seconds
NPM_CACHE_COMMAND_TIMEOUT = int(os.environ.get("NPMSENTRY_NPM_CACHE_TIMEOUT", 60))


# =============================================================================
# File Discovery
# =============================================================================

DEFAULT_INCLUDE_PATTERNS = [
    "**/*.js",
    "**/*.ts",
    "**/*.jsx",
    "**/*.tsx",
    "**/*.yml",
    "**/*.yaml",
]

# Project discovery (where to look for package.json)
DEFAULT_EXCLUDE_PATTERNS = [
    "**/node_modules/**",
    "**/dist/**",
    "**/build/**",
    "**/coverage/**",
    "**/.git/**",
]

# Path segments that never contain a project of their own
EXCLUDED_PROJECT_SEGMENTS = frozenset({"node_modules", "dist", "build", "coverage", ".git"})

# Per-project file walk. node_modules stays in scope on purpose: installed
# dependencies are where compromised code lands.
DEFAULT_FILE_IGNORE_PATTERNS = [
    "coverage/**",
    "dist/**",
    "build/**",
    "dev-dist/**",
    ".git/**",
    "**/.git/**",
]

DEFAULT_TEST_FILE_PATTERNS = [
    "**/test/**",
    "**/tests/**",
    "**/__tests__/**",
    "**/*.test.*",
    "**/*.spec.*",
    "**/test.*",
    "**/spec.*",
    "**/test-*",
    "**/spec-*",
    "**/*.test",
    "**/*.spec",
]
