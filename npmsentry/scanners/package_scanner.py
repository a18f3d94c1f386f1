"""Compromised dependency detection from package.json manifests."""

import json
import logging
import re
from pathlib import Path
from typing import Any

from ..constants import MAX_MANIFEST_FILE_SIZE
from ..core.exceptions import ManifestParseError
from ..signatures.database import SignatureDatabase
from ..signatures.rules import Severity
from .models import CompromisedPackageRecord, ManifestScanResult, PackageValidationIssue

logger = logging.getLogger(__name__)

DEPENDENCY_SECTIONS = ("dependencies", "devDependencies", "peerDependencies")

# Sections checked by validate_manifest
VALIDATED_SECTIONS = ("dependencies", "devDependencies")

NPM_NAME_PATTERN = re.compile(r"^(@[a-z0-9-~][a-z0-9-._~]*/)?[a-z0-9-~][a-z0-9-._~]*$")
NPM_NAME_MAX_LENGTH = 214

# Pinned, caret or tilde semver; anything else is treated as malformed
MANIFEST_VERSION_PATTERN = re.compile(
    r"^[\^~]?\d+\.\d+\.\d+(-[a-zA-Z0-9.-]+)?(\+[a-zA-Z0-9.-]+)?$"
)

SUSPICIOUS_NAME_PATTERN = re.compile(
    r"typo|misspell|fake|malware|virus|trojan|backdoor|keylogger|stealer", re.IGNORECASE
)

BROAD_RANGE_PATTERNS = (
    re.compile(r"^\*$"),
    re.compile(r"^[\^~]?\d+$"),
    re.compile(r"^[\^~]?\d+\.\d+$"),
    re.compile(r"^latest$", re.IGNORECASE),
    re.compile(r"^any$", re.IGNORECASE),
)

INVALID_MANIFEST_TYPE = "Invalid package.json"
SUSPICIOUS_MANIFEST_TYPE = "Suspicious package.json"


def is_valid_package_name(name: Any) -> bool:
    return (
        isinstance(name, str)
        and len(name) <= NPM_NAME_MAX_LENGTH
        and NPM_NAME_PATTERN.match(name) is not None
    )


def is_valid_version(version: Any) -> bool:
    return isinstance(version, str) and MANIFEST_VERSION_PATTERN.match(version) is not None


def is_too_broad(version: Any) -> bool:
    return isinstance(version, str) and any(p.match(version) for p in BROAD_RANGE_PATTERNS)


def strip_range_prefix(version: str) -> str:
    """Remove a single leading ``^`` or ``~``."""
    if version[:1] in ("^", "~"):
        return version[1:]
    return version


class PackageScanner:
    """Checks declared dependency versions against the vulnerable package table.

    Matching is exact: ``^5.6.1`` is treated as ``5.6.1``, there is no
    semver range resolution.
    """

    def __init__(self, database: SignatureDatabase | None = None):
        self.database = database or SignatureDatabase.load()

    def is_vulnerable_version(self, package_name: str, version: Any) -> bool:
        if not isinstance(version, str):
            return False
        return strip_range_prefix(version) in self.database.vulnerable_versions(package_name)

    def get_safe_version(self, package_name: str) -> str | None:
        return self.database.safe_version(package_name)

    def load_manifest(self, project_path: str | Path) -> dict[str, Any] | None:
        """
        Read a project's package.json.

        Returns:
            The parsed manifest, or None if there is no package.json

        Raises:
            ManifestParseError: If the file cannot be read or is not a JSON object
        """
        manifest = Path(project_path) / "package.json"
        if not manifest.is_file():
            return None

        try:
            if manifest.stat().st_size > MAX_MANIFEST_FILE_SIZE:
                raise ManifestParseError(f"{manifest} is larger than {MAX_MANIFEST_FILE_SIZE} bytes")
            with open(manifest, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ManifestParseError(f"Failed to parse {manifest}: {e}") from e

        if not isinstance(data, dict):
            raise ManifestParseError(f"{manifest} does not contain a JSON object")
        return data

    @staticmethod
    def merge_dependencies(manifest: dict[str, Any]) -> dict[str, Any]:
        """Merge dependency sections; later sections override earlier ones."""
        merged: dict[str, Any] = {}
        for section in DEPENDENCY_SECTIONS:
            deps = manifest.get(section)
            if isinstance(deps, dict):
                merged.update(deps)
        return merged

    @staticmethod
    def validate_manifest(
        manifest: dict[str, Any], project_name: str
    ) -> PackageValidationIssue | None:
        """
        Check a project's own package.json for malformed or risky content.

        Errors: missing or malformed ``name``/``version``, dependency names
        that are not valid npm names and versions that are not plain semver
        (optionally with ``^``/``~``). Warnings: suspicious dependency names
        and very broad ranges (``*``, ``^1``, ``latest``...).

        Returns:
            None when the manifest is clean
        """
        errors: list[str] = []
        warnings: list[str] = []

        name = manifest.get("name")
        if not name:
            errors.append("Package name is required")
        elif not isinstance(name, str):
            errors.append("Package name must be a string")
        elif not is_valid_package_name(name):
            errors.append("Invalid package name format")

        version = manifest.get("version")
        if not version:
            errors.append("Package version is required")
        elif not is_valid_version(version):
            errors.append("Invalid version format")

        for section in VALIDATED_SECTIONS:
            deps = manifest.get(section)
            if not deps:
                continue
            if not isinstance(deps, dict):
                errors.append(f"{section} must be an object")
                continue
            for dep_name, dep_version in deps.items():
                if not is_valid_package_name(dep_name):
                    errors.append(f"Invalid package name: {dep_name}")
                if not is_valid_version(dep_version):
                    errors.append(f"Invalid version for {dep_name}: {dep_version}")
                if SUSPICIOUS_NAME_PATTERN.search(dep_name):
                    warnings.append(f"Suspicious package detected: {dep_name}")
                if is_too_broad(dep_version):
                    warnings.append(f"Broad version range for {dep_name}: {dep_version}")

        if errors:
            return PackageValidationIssue(
                project=project_name,
                type=INVALID_MANIFEST_TYPE,
                severity=Severity.MEDIUM,
                description=f"Package.json validation failed: {', '.join(errors)}",
                errors=errors,
                warnings=warnings,
            )
        if warnings:
            return PackageValidationIssue(
                project=project_name,
                type=SUSPICIOUS_MANIFEST_TYPE,
                severity=Severity.LOW,
                description=f"Package.json needs review: {', '.join(warnings)}",
                warnings=warnings,
            )
        return None

    def scan_manifest(
        self, project_path: str | Path, validate: bool = True
    ) -> ManifestScanResult:
        """Scan one project's package.json. Never raises for manifest problems."""
        project = Path(project_path)
        try:
            manifest = self.load_manifest(project)
        except ManifestParseError as e:
            logger.warning(str(e))
            return ManifestScanResult()

        if manifest is None:
            logger.debug(f"No package.json in {project}")
            return ManifestScanResult()

        validation_issues = []
        if validate:
            issue = self.validate_manifest(manifest, project.name)
            if issue is not None:
                logger.warning(
                    f"{issue.type} in {project.name}: {issue.description}",
                    extra={"event": "manifest_invalid", "project": project.name},
                )
                validation_issues.append(issue)

        dependencies = self.merge_dependencies(manifest)
        records = []
        for name, version in dependencies.items():
            if self.is_vulnerable_version(name, version):
                records.append(
                    CompromisedPackageRecord(
                        project=project.name,
                        package=name,
                        version=version,
                        severity=Severity.CRITICAL,
                        safe_version=self.get_safe_version(name),
                    )
                )
                logger.info(f"Compromised package {name}@{version} in {project.name}")

        return ManifestScanResult(
            compromised_packages=records,
            validation_issues=validation_issues,
            packages_checked=len(dependencies),
        )

    @staticmethod
    def generate_overrides(records: list[CompromisedPackageRecord]) -> dict[str, str]:
        """An npm ``overrides`` map pinning each compromised package to its safe version.

        Packages without a known safe version are left out.
        """
        return {r.package: r.safe_version for r in records if r.safe_version}

    @staticmethod
    def generate_remediation_commands(
        records: list[CompromisedPackageRecord],
    ) -> list[str]:
        commands: list[str] = []
        for record in records:
            command = f"npm uninstall {record.package}"
            if command not in commands:
                commands.append(command)
        return commands
