"""Rendering of scan results as JSON, console text or Markdown."""

import json
from typing import Any

from .scanners.models import AggregateResult, Finding
from .scanners.package_scanner import PackageScanner
from .signatures.rules import Severity

BLOCKING_SEVERITIES = frozenset({Severity.HIGH, Severity.CRITICAL})


def _severity_key(severity: Severity) -> int:
    return -severity.rank


def remediation(aggregate: AggregateResult) -> dict[str, Any]:
    records = aggregate.compromised_packages()
    return {
        "overrides": PackageScanner.generate_overrides(records),
        "commands": PackageScanner.generate_remediation_commands(records),
    }


def to_dict(aggregate: AggregateResult) -> dict[str, Any]:
    data = aggregate.model_dump(by_alias=True, mode="json")
    data["remediation"] = remediation(aggregate)
    return data


def to_json(aggregate: AggregateResult, indent: int | None = 2) -> str:
    """The camelCase JSON report."""
    return json.dumps(to_dict(aggregate), indent=indent)


def has_blocking_issues(aggregate: AggregateResult) -> bool:
    """True when the scan should fail a CI run.

    Compromised packages, suspicious files and npm cache hits always block;
    code findings block at HIGH or CRITICAL.
    """
    if aggregate.compromised_packages():
        return True
    if aggregate.suspicious_files() or aggregate.npm_cache_issues():
        return True
    return any(f.severity in BLOCKING_SEVERITIES for f in aggregate.malicious_code())


def render_text(aggregate: AggregateResult) -> str:
    """Console report, most severe first."""
    summary = aggregate.summary
    lines = [
        "npmsentry scan report",
        "=" * 21,
        f"Projects: {summary.total_projects} total, {summary.scanned} scanned, "
        f"{summary.failed} failed",
        f"Files scanned: {summary.files_scanned}   "
        f"Packages checked: {summary.packages_checked}   "
        f"Issues: {summary.issues_found}",
        f"Duration: {summary.duration:.2f}s with {summary.concurrency} workers",
    ]

    packages = sorted(
        aggregate.compromised_packages(), key=lambda p: (p.project, p.package)
    )
    if packages:
        lines += ["", f"Compromised packages ({len(packages)})"]
        for p in packages:
            safe = f" -> upgrade to {p.safe_version}" if p.safe_version else ""
            lines.append(f"  [{p.severity.value}] {p.project}: {p.package}@{p.version}{safe}")

    validation = sorted(
        aggregate.package_validation_issues(),
        key=lambda i: (_severity_key(i.severity), i.project),
    )
    if validation:
        lines += ["", f"Package validation issues ({len(validation)})"]
        for i in validation:
            lines.append(f"  [{i.severity.value}] {i.project}: {i.description}")

    findings = sorted(
        aggregate.malicious_code(),
        key=lambda f: (_severity_key(f.severity), f.project, f.relative_path, f.rule_id),
    )
    if findings:
        lines += ["", f"Malicious code ({len(findings)})"]
        for f in findings:
            row = f.to_row()
            where = ",".join(str(n) for n in row["lines"])
            lines.append(
                f"  [{row['severity']}] {row['project']}/{row['file']}:{where} "
                f"{row['pattern']} ({row['matches']} match"
                f"{'es' if f.match_count != 1 else ''})"
            )

    suspicious = sorted(
        aggregate.suspicious_files(),
        key=lambda s: (_severity_key(s.severity), s.project, s.relative_path),
    )
    if suspicious:
        lines += ["", f"Suspicious files ({len(suspicious)})"]
        for s in suspicious:
            lines.append(f"  [{s.severity.value}] {s.project}/{s.relative_path}: {s.reason}")

    cache_issues = sorted(aggregate.npm_cache_issues(), key=lambda i: (i.package, i.version))
    if cache_issues:
        lines += ["", f"npm cache ({len(cache_issues)})"]
        for i in cache_issues:
            lines.append(f"  [{i.severity.value}] {i.package}@{i.version}")

    if aggregate.errors:
        lines += ["", f"Errors ({len(aggregate.errors)})"]
        for e in sorted(aggregate.errors, key=lambda e: e.project):
            lines.append(f"  {e.project}: {e.error}")

    fixes = remediation(aggregate)
    if fixes["overrides"]:
        lines += ["", "Suggested package.json overrides:"]
        lines += ["  " + line for line in json.dumps({"overrides": fixes["overrides"]}, indent=2).splitlines()]
    if fixes["commands"]:
        lines += ["", "Remediation commands:"]
        lines += [f"  {command}" for command in fixes["commands"]]

    if not (packages or validation or findings or suspicious or cache_issues):
        lines += ["", "No issues found."]

    return "\n".join(lines)


def _md_cell(value: object) -> str:
    return str(value).replace("|", "\\|").replace("\n", " ")


def render_markdown(aggregate: AggregateResult) -> str:
    """Markdown report with one table per issue kind.

    Code findings are grouped by project, then file, then pattern.
    """
    summary = aggregate.summary
    lines = [
        "# Security Scan Report",
        "",
        "## Summary",
        "",
        f"- **Projects:** {summary.total_projects} total, {summary.scanned} scanned, "
        f"{summary.failed} failed",
        f"- **Files scanned:** {summary.files_scanned}",
        f"- **Packages checked:** {summary.packages_checked}",
        f"- **Issues found:** {summary.issues_found}",
        f"- **Duration:** {summary.duration:.2f}s with {summary.concurrency} workers",
    ]

    packages = sorted(
        aggregate.compromised_packages(), key=lambda p: (p.project, p.package)
    )
    if packages:
        lines += [
            "",
            "## Compromised Packages",
            "",
            "| Project | Package | Version | Safe Version | Severity |",
            "|---------|---------|---------|--------------|----------|",
        ]
        for p in packages:
            lines.append(
                f"| {_md_cell(p.project)} | {_md_cell(p.package)} | {_md_cell(p.version)} "
                f"| {p.safe_version or '-'} | **{p.severity.value}** |"
            )

    validation = sorted(aggregate.package_validation_issues(), key=lambda i: i.project)
    if validation:
        lines += [
            "",
            "## Package Validation Issues",
            "",
            "| Project | Type | Description | Severity |",
            "|---------|------|-------------|----------|",
        ]
        for i in validation:
            lines.append(
                f"| {_md_cell(i.project)} | {i.type} | {_md_cell(i.description)} "
                f"| **{i.severity.value}** |"
            )

    findings = aggregate.malicious_code()
    if findings:
        lines += [
            "",
            "## Malicious Code",
            "",
            "| Project | File | Pattern | Severity | Matches | Lines |",
            "|---------|------|---------|----------|---------|-------|",
        ]
        grouped: dict[tuple[str, str, str], list[Finding]] = {}
        for f in sorted(findings, key=lambda f: (f.project, f.relative_path, f.rule_name)):
            grouped.setdefault((f.project, f.relative_path, f.rule_name), []).append(f)
        for (project, path, pattern), group in grouped.items():
            severity = max((f.severity for f in group), key=lambda s: s.rank)
            matches = sum(f.match_count for f in group)
            where = ", ".join(str(n) for f in group for n in f.line_numbers)
            lines.append(
                f"| {_md_cell(project)} | {_md_cell(path)} | {_md_cell(pattern)} "
                f"| **{severity.value}** | {matches} | {where} |"
            )

    suspicious = sorted(
        aggregate.suspicious_files(), key=lambda s: (s.project, s.relative_path)
    )
    if suspicious:
        lines += [
            "",
            "## Suspicious Files",
            "",
            "| Project | File | Reason | Severity |",
            "|---------|------|--------|----------|",
        ]
        for s in suspicious:
            lines.append(
                f"| {_md_cell(s.project)} | {_md_cell(s.relative_path)} "
                f"| {_md_cell(s.reason)} | **{s.severity.value}** |"
            )

    cache_issues = sorted(aggregate.npm_cache_issues(), key=lambda i: (i.package, i.version))
    if cache_issues:
        lines += ["", "## npm Cache", "", "| Package | Version | Severity |", "|---------|---------|----------|"]
        for i in cache_issues:
            lines.append(f"| {_md_cell(i.package)} | {_md_cell(i.version)} | **{i.severity.value}** |")

    if aggregate.errors:
        lines += ["", "## Errors", "", "| Project | Error |", "|---------|-------|"]
        for e in sorted(aggregate.errors, key=lambda e: e.project):
            lines.append(f"| {_md_cell(e.project)} | {_md_cell(e.error)} |")

    affected = sorted(
        {p.project for p in packages}
        | {f.project for f in findings}
        | {s.project for s in suspicious}
    )
    if affected:
        lines += ["", "## Projects Requiring Attention", ""]
        lines += [f"- {project}" for project in affected]

    fixes = remediation(aggregate)
    if fixes["overrides"] or fixes["commands"]:
        lines += ["", "## Remediation", ""]
        if fixes["overrides"]:
            lines += [
                "Add to package.json:",
                "",
                "```json",
                json.dumps({"overrides": fixes["overrides"]}, indent=2),
                "```",
                "",
            ]
        if fixes["commands"]:
            lines += ["```bash", *fixes["commands"], "```"]

    if not (packages or validation or findings or suspicious or cache_issues):
        lines += ["", "No issues found."]

    return "\n".join(lines) + "\n"
