"""Pydantic models for scan results.

Results cross the process boundary as ``model_dump(mode="json")`` dicts and
are rebuilt with ``model_validate`` in the coordinator. Serialized reports use
camelCase keys (``compromisedPackages``, ``filesScanned``, ...); Python code
uses the snake_case field names.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..signatures.rules import Severity


class _ResultModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ScanContext(_ResultModel):
    """Attribution for findings produced while scanning one project."""

    project_name: str
    project_root: str


class Finding(_ResultModel):
    """Matches of one rule in one file.

    Attributes:
        project: Name of the project the file belongs to.
        file: Absolute path of the file.
        relative_path: Path relative to the project root.
        rule_id: Identifier of the rule that matched (e.g. "QIX-004").
        rule_name: Display name of the rule.
        severity: Severity of the rule.
        description: What the rule detects.
        match_count: Number of non-overlapping matches in the file.
        line_numbers: 1-based line for each match, best-effort.
    """

    project: str
    file: str
    relative_path: str
    rule_id: str
    rule_name: str
    severity: Severity
    description: str = ""
    match_count: int = 1
    line_numbers: list[int] = Field(default_factory=list)

    def to_row(self) -> dict[str, object]:
        """Flat row used by the text and JSON reports."""
        return {
            "project": self.project,
            "file": self.relative_path,
            "pattern": self.rule_name,
            "severity": self.severity.value,
            "matches": self.match_count,
            "lines": self.line_numbers,
        }


class CompromisedPackageRecord(_ResultModel):
    """A declared dependency pinned to a known-compromised version."""

    project: str
    package: str
    version: str
    severity: Severity = Severity.CRITICAL
    safe_version: str | None = None


class NpmCacheIssue(_ResultModel):
    """A compromised tarball present in the local npm cache."""

    package: str
    version: str
    severity: Severity = Severity.HIGH
    source: str = ""


class SuspiciousFile(_ResultModel):
    """A file whose name matches a known campaign artifact."""

    project: str
    file: str
    relative_path: str
    reason: str
    severity: Severity = Severity.HIGH


class PackageValidationIssue(_ResultModel):
    """Problems found in a project's own package.json.

    ``errors`` make the manifest invalid (MEDIUM); ``warnings`` alone, such as
    suspicious dependency names or very broad ranges, are reported as LOW.
    """

    project: str
    type: str
    severity: Severity
    description: str
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class ManifestScanResult(_ResultModel):
    compromised_packages: list[CompromisedPackageRecord] = Field(default_factory=list)
    validation_issues: list[PackageValidationIssue] = Field(default_factory=list)
    packages_checked: int = 0


class ProjectSummary(_ResultModel):
    files_scanned: int = 0
    packages_checked: int = 0
    issues_found: int = 0
    duration: float = 0.0


class ProjectResult(_ResultModel):
    """Everything found in a single project."""

    project: str
    path: str
    compromised_packages: list[CompromisedPackageRecord] = Field(default_factory=list)
    package_validation_issues: list[PackageValidationIssue] = Field(default_factory=list)
    malicious_code: list[Finding] = Field(default_factory=list)
    npm_cache_issues: list[NpmCacheIssue] = Field(default_factory=list)
    suspicious_files: list[SuspiciousFile] = Field(default_factory=list)
    files_scanned: int = 0
    summary: ProjectSummary = Field(default_factory=ProjectSummary)


class ProjectError(_ResultModel):
    """A project that produced no result.

    ``project`` is the directory name, as in ProjectResult; ``path`` is the
    full project path.
    """

    project: str
    error: str
    path: str | None = None
    worker_id: int | None = None


class AggregateSummary(_ResultModel):
    total_projects: int = 0
    scanned: int = 0
    failed: int = 0
    files_scanned: int = 0
    packages_checked: int = 0
    issues_found: int = 0
    duration: float = 0.0
    concurrency: int = 0


class AggregateResult(_ResultModel):
    """Merged outcome of a multi-project scan.

    ``results`` and ``errors`` are in completion order.
    """

    results: list[ProjectResult] = Field(default_factory=list)
    errors: list[ProjectError] = Field(default_factory=list)
    summary: AggregateSummary = Field(default_factory=AggregateSummary)

    def add_result(self, result: ProjectResult) -> None:
        # Every project reports the same machine-wide npm cache, count each hit once
        known = {(i.package, i.version) for i in self.npm_cache_issues()}
        repeated = sum(
            1 for i in result.npm_cache_issues if (i.package, i.version) in known
        )

        self.results.append(result)
        self.summary.scanned += 1
        self.summary.files_scanned += result.summary.files_scanned
        self.summary.packages_checked += result.summary.packages_checked
        self.summary.issues_found += result.summary.issues_found - repeated

    def add_error(self, error: ProjectError) -> None:
        self.errors.append(error)
        self.summary.failed += 1

    @property
    def completed(self) -> int:
        return len(self.results) + len(self.errors)

    def compromised_packages(self) -> list[CompromisedPackageRecord]:
        return [p for r in self.results for p in r.compromised_packages]

    def package_validation_issues(self) -> list[PackageValidationIssue]:
        return [i for r in self.results for i in r.package_validation_issues]

    def malicious_code(self) -> list[Finding]:
        return [f for r in self.results for f in r.malicious_code]

    def suspicious_files(self) -> list[SuspiciousFile]:
        return [f for r in self.results for f in r.suspicious_files]

    def npm_cache_issues(self) -> list[NpmCacheIssue]:
        """Cache issues de-duplicated across projects (the cache is machine-wide)."""
        seen: dict[tuple[str, str], NpmCacheIssue] = {}
        for result in self.results:
            for issue in result.npm_cache_issues:
                seen.setdefault((issue.package, issue.version), issue)
        return list(seen.values())
