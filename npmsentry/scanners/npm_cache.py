"""Best-effort scan of the local npm cache for compromised tarballs."""

import logging
import re
import shutil
import subprocess

from ..constants import NPM_CACHE_COMMAND_TIMEOUT
from ..signatures.rules import Severity
from .models import NpmCacheIssue
from .package_scanner import PackageScanner

logger = logging.getLogger(__name__)

# <name>/-/<basename>-<version>.tgz, name optionally scoped
TARBALL_PATTERN = re.compile(
    r"(?P<name>(?:@[^/\s]+/)?[^/\s]+)/-/(?P<base>[^/\s]+?)-(?P<version>\d[^/\s]*?)\.tgz"
)


def parse_cache_listing(output: str) -> list[tuple[str, str, str]]:
    """Extract ``(name, version, source_line)`` for every tarball reference."""
    entries = []
    for line in output.splitlines():
        for match in TARBALL_PATTERN.finditer(line):
            entries.append((match.group("name"), match.group("version"), line.strip()))
    return entries


class NpmCacheScanner:
    """Runs ``npm cache ls`` once and flags vulnerable cached packages.

    The npm cache is shared by every project on the machine, so the result
    is computed once per instance and reused.
    """

    def __init__(
        self,
        package_scanner: PackageScanner,
        npm_command: str = "npm",
        timeout: int = NPM_CACHE_COMMAND_TIMEOUT,
    ):
        self.package_scanner = package_scanner
        self.npm_command = npm_command
        self.timeout = timeout
        self._issues: list[NpmCacheIssue] | None = None

    def scan(self) -> list[NpmCacheIssue]:
        if self._issues is None:
            self._issues = self._scan()
        return list(self._issues)

    def _list_cache(self) -> str | None:
        executable = shutil.which(self.npm_command)
        if executable is None:
            logger.debug(f"{self.npm_command} not found, skipping npm cache scan")
            return None

        cmd = [executable, "cache", "ls"]
        try:
            result = subprocess.run(
                cmd, capture_output=True, text=True, check=False, timeout=self.timeout
            )
        except subprocess.TimeoutExpired:
            logger.warning(f"npm cache listing timed out after {self.timeout}s")
            return None
        except OSError as e:
            logger.warning(f"Failed to run npm cache ls: {e}")
            return None

        if result.returncode != 0:
            logger.debug(
                f"npm cache ls exited with {result.returncode}: {result.stderr.strip()}"
            )
            return None
        return result.stdout

    def _scan(self) -> list[NpmCacheIssue]:
        output = self._list_cache()
        if not output:
            return []

        issues: dict[tuple[str, str], NpmCacheIssue] = {}
        for name, version, source in parse_cache_listing(output):
            if (name, version) in issues:
                continue
            if self.package_scanner.is_vulnerable_version(name, version):
                issues[(name, version)] = NpmCacheIssue(
                    package=name,
                    version=version,
                    severity=Severity.HIGH,
                    source=source,
                )
                logger.info(f"Compromised package {name}@{version} found in npm cache")

        return list(issues.values())
