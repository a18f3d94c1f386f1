"""Scans a single project directory. This is the unit of work of a worker process."""

import logging
import stat
import time
from pathlib import Path

from ..core.config import ScanConfig
from ..signatures.database import SignatureDatabase
from ..signatures.rules import Severity
from .file_discovery import select_source_files, walk_files
from .models import (
    Finding,
    ManifestScanResult,
    NpmCacheIssue,
    ProjectResult,
    ProjectSummary,
    ScanContext,
    SuspiciousFile,
)
from .npm_cache import NpmCacheScanner
from .package_scanner import PackageScanner
from .pattern_matcher import PatternMatcher

logger = logging.getLogger(__name__)


class ProjectScanner:
    """Runs the package, code, file-name and npm cache checks on one project."""

    def __init__(
        self,
        config: ScanConfig,
        database: SignatureDatabase | None = None,
        npm_cache_scanner: NpmCacheScanner | None = None,
    ):
        self.config = config
        self.database = database or SignatureDatabase.load(config.signature_dir)
        self.package_scanner = PackageScanner(self.database)
        self.pattern_matcher = PatternMatcher(self.database)
        self.npm_cache_scanner = npm_cache_scanner or NpmCacheScanner(self.package_scanner)

    def scan_project(self, project_path: str | Path) -> ProjectResult:
        """
        Scan one project.

        Args:
            project_path: Directory containing the project's package.json

        Returns:
            The project's findings and counters
        """
        start = time.monotonic()
        root = Path(project_path)
        security = self.config.security
        context = ScanContext(project_name=root.name, project_root=str(root))

        manifest = ManifestScanResult()
        if security.scan_compromised_packages:
            manifest = self.package_scanner.scan_manifest(
                root, validate=security.validate_package_json
            )

        findings: list[Finding] = []
        suspicious: list[SuspiciousFile] = []
        files_scanned = 0
        if security.scan_malicious_code:
            files_scanned, findings, suspicious = self._scan_files(root, context)

        cache_issues: list[NpmCacheIssue] = []
        if security.scan_npm_cache:
            cache_issues = self.npm_cache_scanner.scan()

        issues_found = (
            len(manifest.compromised_packages)
            + len(manifest.validation_issues)
            + len(findings)
            + len(cache_issues)
            + len(suspicious)
        )
        duration = time.monotonic() - start

        return ProjectResult(
            project=context.project_name,
            path=str(root),
            compromised_packages=manifest.compromised_packages,
            package_validation_issues=manifest.validation_issues,
            malicious_code=findings,
            npm_cache_issues=cache_issues,
            suspicious_files=suspicious,
            files_scanned=files_scanned,
            summary=ProjectSummary(
                files_scanned=files_scanned,
                packages_checked=manifest.packages_checked,
                issues_found=issues_found,
                duration=duration,
            ),
        )

    def _scan_files(
        self, root: Path, context: ScanContext
    ) -> tuple[int, list[Finding], list[SuspiciousFile]]:
        config = self.config
        test_patterns = (
            config.test_file_patterns if config.security.exclude_test_files else []
        )

        walked = list(walk_files(root, config.file_ignore_patterns))
        suspicious = self._check_file_names(walked, context)

        findings: list[Finding] = []
        files_scanned = 0
        for path, relative in select_source_files(
            walked, config.include_patterns, test_patterns
        ):
            try:
                info = path.stat()
            except OSError as e:
                logger.debug(f"Skipping {relative}: {e}")
                continue
            if not stat.S_ISREG(info.st_mode):
                logger.debug(f"Skipping {relative}: not a regular file")
                continue
            if info.st_size > config.max_file_size:
                logger.debug(f"Skipping {relative}: {info.st_size} bytes exceeds limit")
                continue

            if self.pattern_matcher.is_whitelisted(path) is not None:
                files_scanned += 1
                continue

            try:
                content = path.read_text(encoding="utf-8", errors="replace")
            except OSError as e:
                logger.debug(f"Skipping {relative}: {e}")
                continue

            files_scanned += 1
            findings.extend(self.pattern_matcher.match_content(content, path, context))

        return files_scanned, findings, suspicious

    def _check_file_names(
        self, walked: list[tuple[Path, str]], context: ScanContext
    ) -> list[SuspiciousFile]:
        suspicious = []
        for path, relative in walked:
            if self.database.is_suspicious_file_name(path.name):
                suspicious.append(
                    SuspiciousFile(
                        project=context.project_name,
                        file=str(path),
                        relative_path=relative,
                        reason=f"File name matches known campaign artifact '{path.name}'",
                        severity=Severity.HIGH,
                    )
                )
                logger.info(f"Suspicious file {relative} in {context.project_name}")
        return suspicious
