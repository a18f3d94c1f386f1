"""Scanning components: per-file matching, per-project scanning and the worker pool."""

from .models import (
    AggregateResult,
    AggregateSummary,
    CompromisedPackageRecord,
    Finding,
    ManifestScanResult,
    NpmCacheIssue,
    PackageValidationIssue,
    ProjectError,
    ProjectResult,
    ProjectSummary,
    ScanContext,
    SuspiciousFile,
)
from .npm_cache import NpmCacheScanner
from .orchestrator import ParallelScanner
from .package_scanner import PackageScanner
from .pattern_matcher import PatternMatcher
from .project_scanner import ProjectScanner

__all__ = [
    "AggregateResult",
    "AggregateSummary",
    "CompromisedPackageRecord",
    "Finding",
    "ManifestScanResult",
    "NpmCacheIssue",
    "NpmCacheScanner",
    "PackageScanner",
    "PackageValidationIssue",
    "ParallelScanner",
    "PatternMatcher",
    "ProjectError",
    "ProjectResult",
    "ProjectScanner",
    "ProjectSummary",
    "ScanContext",
    "SuspiciousFile",
]
