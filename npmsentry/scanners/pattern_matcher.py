"""
Regex-based malicious code detection for a single file.

The whitelist is resolved before any signature runs. JS/TS content is then
checked against the static and IOC rules plus the crypto-address list; YAML
is only checked inside ``.github/workflows/`` and only against the workflow
rules.
"""

import logging
import re
from pathlib import Path

from ..signatures.database import SignatureDatabase
from ..signatures.rules import (
    ADDRESS_RULE_ID,
    ADDRESS_RULE_NAME,
    ETH_ADDRESS_PATTERN,
    Severity,
    SignatureRule,
)
from ..signatures.whitelist import WhitelistEntry, normalize_path
from .models import Finding, ScanContext

logger = logging.getLogger(__name__)

YAML_EXTENSIONS = frozenset({".yml", ".yaml"})
WORKFLOW_DIR_MARKER = ".github/workflows/"


def relative_to_root(file_path: str, project_root: str) -> str:
    try:
        return Path(file_path).relative_to(project_root).as_posix()
    except ValueError:
        return normalize_path(file_path)


class _LineIndex:
    """Best-effort line attribution for matches.

    A match is attributed to the first line whose text contains it. Matches
    spanning several lines fall back to the line where they start.
    """

    def __init__(self, content: str):
        self.content = content
        self._lines: list[str] | None = None

    def line_for(self, match: re.Match[str]) -> int:
        if self._lines is None:
            self._lines = self.content.split("\n")
        text = match.group(0)
        for number, line in enumerate(self._lines, 1):
            if text in line:
                return number
        return self.content.count("\n", 0, match.start()) + 1


class PatternMatcher:
    """Applies signature rules to file content."""

    def __init__(self, database: SignatureDatabase | None = None):
        self.database = database or SignatureDatabase.load()

    @property
    def rules(self) -> tuple[SignatureRule, ...]:
        return self.database.rules

    @property
    def workflow_rules(self) -> tuple[SignatureRule, ...]:
        return self.database.workflow_rules

    @property
    def whitelist_entries(self) -> list[WhitelistEntry]:
        return list(self.database.whitelist.entries)

    def is_whitelisted(self, file_path: str | Path) -> WhitelistEntry | None:
        """Return the whitelist entry exempting ``file_path``, if any."""
        return self.database.whitelist.resolve(file_path)

    def scan(
        self, content: str, file_path: str | Path, context: ScanContext
    ) -> list[Finding]:
        """
        Scan one file's content.

        Args:
            content: Decoded file text
            file_path: Path of the file, used for whitelist and YAML routing
            context: Project attribution

        Returns:
            One finding per matching rule, plus one per listed address
            occurrence. Empty for whitelisted files.
        """
        entry = self.is_whitelisted(file_path)
        if entry is not None:
            logger.debug(f"Skipping {file_path}: whitelisted ({entry.library_name})")
            return []
        return self.match_content(content, file_path, context)

    def match_content(
        self, content: str, file_path: str | Path, context: ScanContext
    ) -> list[Finding]:
        """Run the signatures without consulting the whitelist."""
        path = normalize_path(file_path)
        lines = _LineIndex(content)

        if Path(path).suffix.lower() in YAML_EXTENSIONS:
            if WORKFLOW_DIR_MARKER not in path:
                return []
            return self._apply_rules(self.workflow_rules, content, path, context, lines)

        findings = self._apply_rules(self.rules, content, path, context, lines)
        findings.extend(self._match_addresses(content, path, context, lines))
        return findings

    def _apply_rules(
        self,
        rules: tuple[SignatureRule, ...],
        content: str,
        path: str,
        context: ScanContext,
        lines: _LineIndex,
    ) -> list[Finding]:
        findings = []
        for rule in rules:
            matches = rule.find_matches(content)
            if not matches:
                continue
            findings.append(
                Finding(
                    project=context.project_name,
                    file=path,
                    relative_path=relative_to_root(path, context.project_root),
                    rule_id=rule.rule_id,
                    rule_name=rule.name,
                    severity=rule.severity,
                    description=rule.description,
                    match_count=len(matches),
                    line_numbers=[lines.line_for(m) for m in matches],
                )
            )
            logger.debug(
                f"{rule.rule_id} matched {len(matches)} time(s) in {path}",
                extra={"event": "rule_match", "file": path, "rule_id": rule.rule_id},
            )
        return findings

    def _match_addresses(
        self, content: str, path: str, context: ScanContext, lines: _LineIndex
    ) -> list[Finding]:
        findings = []
        for match in ETH_ADDRESS_PATTERN.finditer(content):
            address = match.group(0)
            if not self.database.is_listed_address(address):
                continue
            findings.append(
                Finding(
                    project=context.project_name,
                    file=path,
                    relative_path=relative_to_root(path, context.project_root),
                    rule_id=ADDRESS_RULE_ID,
                    rule_name=ADDRESS_RULE_NAME,
                    severity=Severity.HIGH,
                    description=f"Known attacker wallet address {address}",
                    match_count=1,
                    line_numbers=[lines.line_for(match)],
                )
            )
        return findings
