"""
Regex signatures for known npm supply-chain malware.

Three rule sets are defined here:

- ``STATIC_RULES``: hand-written signatures for the September 2025 "qix"
  wallet-drainer payload and the tinycolor / Shai-Hulud credential stealer.
  They run against every JS/TS file.
- ``WORKFLOW_RULES``: a smaller set that only runs against YAML files inside
  ``.github/workflows/``.
- IOC rules, built at load time by :func:`compile_ioc_rules` from the literal
  lists in ``iocs.json`` (domains, IPs, webhook URLs and so on). Each list
  becomes one alternation regex.

Signatures are deliberately broad: the whitelist, not the regex, is the
primary false-positive control.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)


class Severity(str, Enum):
    """Severity levels for findings."""

    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}


@dataclass(frozen=True)
class SignatureRule:
    """A single regex signature.

    Attributes:
        rule_id: Unique identifier within a scan session (e.g. "QIX-004").
        name: Human-readable name. Static and IOC rules may share a name,
            the ``rule_id`` keeps them apart.
        pattern: Compiled, case-insensitive regex.
        severity: Severity assigned to every finding of this rule.
        description: What the rule detects.
        source: "static", "ioc" or "workflow".
    """

    rule_id: str
    name: str
    pattern: re.Pattern[str]
    severity: Severity
    description: str
    source: str = "static"

    def find_matches(self, content: str) -> list[re.Match[str]]:
        """Every non-overlapping match in ``content``, in order."""
        return list(self.pattern.finditer(content))


def _rule(
    rule_id: str,
    name: str,
    pattern: str,
    severity: Severity,
    description: str,
    source: str = "static",
) -> SignatureRule:
    return SignatureRule(
        rule_id=rule_id,
        name=name,
        pattern=re.compile(pattern, re.IGNORECASE),
        severity=severity,
        description=description,
        source=source,
    )


# ---------------------------------------------------------------------------
# A. qix account takeover (Sept 2025): chalk, debug and friends
# ---------------------------------------------------------------------------

QIX_RULES: list[SignatureRule] = [
    _rule(
        "QIX-001",
        "Ethereum Wallet Hook",
        r"checkethereumw|window\.ethereum\.(?:request|send|sendAsync)",
        Severity.HIGH,
        "Detects the main malicious function that hooks into Ethereum wallets",
    ),
    _rule(
        "QIX-002",
        "WebSocket Data Exfiltration",
        r"""new\s+WebSocket\s*\(\s*['"`][^'"`]*['"`]\s*\)""",
        Severity.HIGH,
        "Detects malicious WebSocket endpoint for data exfiltration",
    ),
    _rule(
        "QIX-003",
        "Fake NPM Domain",
        r"npmjs\.help|npmjs\.org\.help",
        Severity.MEDIUM,
        "Detects fake NPM domain used in phishing attacks",
    ),
    _rule(
        "QIX-004",
        "Fetch/XMLHttpRequest Override",
        r"window\.fetch\s*=|XMLHttpRequest\.prototype\.(?:open|send)\s*=",
        Severity.HIGH,
        "Detects malicious override of network request functions",
    ),
    _rule(
        "QIX-005",
        "Malicious Network Interception",
        r"(?:originalFetch|originalOpen|originalSend).*\.(?:fetch|XMLHttpRequest).*replace",
        Severity.HIGH,
        "Detects malicious network request interception patterns",
    ),
    _rule(
        "QIX-006",
        "Levenshtein Distance Calculation",
        r"levenshtein.*distance.*address|address.*levenshtein.*distance.*replace",
        Severity.LOW,
        "Detects potential address similarity calculation for replacement",
    ),
]


# ---------------------------------------------------------------------------
# B. tinycolor / Shai-Hulud worm (Sept 2025)
# ---------------------------------------------------------------------------

_SECRET_ENV_VARS = r"GITHUB_TOKEN|NPM_TOKEN|AWS_ACCESS_KEY_ID|AWS_SECRET_ACCESS_KEY"

TINYCOLOR_RULES: list[SignatureRule] = [
    _rule(
        "TC-001",
        "Malicious Bundle.js Content",
        r"bundle\.js.*?(?:trufflehog|webhook\.site|execSync.*trufflehog|process\.env\.(?:"
        + _SECRET_ENV_VARS
        + r")|169\.254\.169\.254|metadata\.google\.internal)",
        Severity.HIGH,
        "Detects bundle.js files containing TruffleHog execution, webhook "
        "exfiltration or credential theft",
    ),
    _rule(
        "TC-002",
        "Tinycolor Attack Bundle.js Structure",
        r"""function\s+trufflehogUrl\(\)|function\s+runScanner\(|const\s*imdsV4\s*=\s*['"]http://169\.254\.169\.254['"]|const\s*webhookUrl\s*=\s*['"]https://webhook\.site/|execSync.*trufflehog|trufflehog.*execSync""",
        Severity.HIGH,
        "Detects the bundle.js structure of the tinycolor attack (TruffleHog "
        "execution and credential theft)",
    ),
    _rule(
        "TC-003",
        "TruffleHog Binary Download",
        r"trufflehog.*\.(?:zip|tar\.gz)|github\.com/trufflesecurity/trufflehog/releases/download",
        Severity.HIGH,
        "Detects TruffleHog binary downloads used for credential scanning",
    ),
    _rule(
        "TC-004",
        "Webhook Exfiltration Endpoint",
        r"webhook\.site/[a-f0-9-]+|hxxps?://webhook\[\.\]site",
        Severity.HIGH,
        "Detects webhook.site endpoints used for data exfiltration",
    ),
    _rule(
        "TC-005",
        "Cloud Metadata Discovery",
        r"169\.254\.169\.254|metadata\.google\.internal|fd00:ec2::254",
        Severity.HIGH,
        "Detects cloud metadata endpoint access for credential theft",
    ),
    _rule(
        "TC-006",
        "GitHub Actions Workflow Creation",
        r"\.github/workflows/.*\.yml|shai-hulud-workflow",
        Severity.HIGH,
        "Detects suspicious GitHub Actions workflow creation",
    ),
    _rule(
        "TC-007",
        "Environment Variable Theft",
        r"process\.env\.(?:" + _SECRET_ENV_VARS + r")",
        Severity.HIGH,
        "Detects access to sensitive environment variables",
    ),
    _rule(
        "TC-008",
        "NPM Token Validation",
        r"registry\.npmjs\.org/-/whoami|Authorization.*Bearer.*NPM_TOKEN",
        Severity.HIGH,
        "Detects NPM token validation attempts",
    ),
    _rule(
        "TC-009",
        "GitHub API Token Usage",
        r"api\.github\.com/user.*Authorization.*token.*GITHUB_TOKEN",
        Severity.HIGH,
        "Detects GitHub API token usage for credential validation",
    ),
    _rule(
        "TC-010",
        "Base64 Data Exfiltration",
        r"base64.*-w0.*curl.*-s.*-X.*POST",
        Severity.HIGH,
        "Detects base64 encoding and curl POST for data exfiltration",
    ),
    _rule(
        "TC-011",
        "ExecSync Command Execution",
        r"execSync.*trufflehog.*filesystem",
        Severity.HIGH,
        "Detects execSync calls to TruffleHog filesystem scanner",
    ),
    _rule(
        "TC-012",
        "Suspicious File Creation",
        r"findings\.json|\.github/workflows/.*\.yml",
        Severity.MEDIUM,
        "Detects creation of suspicious files for data collection",
    ),
]

STATIC_RULES: list[SignatureRule] = QIX_RULES + TINYCOLOR_RULES


# ---------------------------------------------------------------------------
# C. GitHub Actions workflows (only inside .github/workflows/)
# ---------------------------------------------------------------------------

WORKFLOW_RULES: list[SignatureRule] = [
    _rule(
        "WF-001",
        "Suspicious Workflow Name",
        r"shai-hulud-workflow|workflow\.yml",
        Severity.HIGH,
        "Detects suspicious GitHub Actions workflow names",
        source="workflow",
    ),
    _rule(
        "WF-002",
        "Webhook Exfiltration in Workflow",
        r"webhook\.site/[a-f0-9-]+|hxxps?://webhook\[\.\]site",
        Severity.HIGH,
        "Detects webhook exfiltration endpoints in GitHub Actions workflow",
        source="workflow",
    ),
    _rule(
        "WF-003",
        "Base64 Data Exfiltration in Workflow",
        r"base64.*-w0.*curl.*-s.*-X.*POST",
        Severity.HIGH,
        "Detects base64 encoding and curl POST for data exfiltration in workflow",
        source="workflow",
    ),
    _rule(
        "WF-004",
        "Suspicious File Access in Workflow",
        r"findings\.json|cat.*findings\.json",
        Severity.HIGH,
        "Detects access to findings.json file in workflow",
        source="workflow",
    ),
    _rule(
        "WF-005",
        "Environment Variable Access in Workflow",
        r"\$\{\{.*secrets\.(?:" + _SECRET_ENV_VARS + r").*\}\}",
        Severity.HIGH,
        "Detects access to sensitive secrets in GitHub Actions workflow",
        source="workflow",
    ),
]


# ---------------------------------------------------------------------------
# D. IOC-derived rules
# ---------------------------------------------------------------------------

# Structural shape of an Ethereum address. Matches alone mean nothing; only
# membership in the IOC address list is reported.
ETH_ADDRESS_PATTERN = re.compile(r"0x[a-fA-F0-9]{40}")

ADDRESS_RULE_ID = "IOC-ADDRESS"
ADDRESS_RULE_NAME = "Suspicious Address"


@dataclass(frozen=True)
class IocRuleTemplate:
    """How one IOC category becomes a rule."""

    ioc_key: str
    rule_id: str
    name: str
    description: str
    template: str = "({alternation})"
    severity: Severity = Severity.HIGH


IOC_RULE_TEMPLATES: list[IocRuleTemplate] = [
    IocRuleTemplate(
        "domains",
        "IOC-DOMAIN",
        "CDN Malware Hosting",
        "Detects malicious CDN domains used for hosting malware",
        template="(https?://)?({alternation})",
    ),
    IocRuleTemplate(
        "ipAddresses",
        "IOC-IP",
        "Malicious IP Address",
        "Detects malicious IP addresses used for hosting malware",
        template="(https?://)?({alternation})",
    ),
    IocRuleTemplate(
        "webhookEndpoints",
        "IOC-WEBHOOK",
        "Webhook Exfiltration Endpoint",
        "Detects webhook endpoints used for data exfiltration",
    ),
    IocRuleTemplate(
        "cloudMetadataEndpoints",
        "IOC-METADATA",
        "Cloud Metadata Discovery",
        "Detects cloud metadata endpoint access for credential theft",
    ),
    IocRuleTemplate(
        "truffleHogUrls",
        "IOC-TRUFFLEHOG",
        "TruffleHog Binary Download",
        "Detects TruffleHog binary downloads used for credential scanning",
    ),
    IocRuleTemplate(
        "suspiciousWorkflowNames",
        "IOC-WORKFLOW",
        "Suspicious GitHub Workflow",
        "Detects suspicious GitHub Actions workflow names",
    ),
    IocRuleTemplate(
        "environmentVariables",
        "IOC-ENV",
        "Sensitive Environment Variable Access",
        "Detects access to sensitive environment variables",
        template=r"process\.env\.({alternation})",
    ),
]


def _literals(values: Iterable[object]) -> list[str]:
    seen: dict[str, None] = {}
    for value in values:
        if isinstance(value, str) and value.strip():
            seen.setdefault(value.strip(), None)
    return list(seen)


def compile_ioc_rules(iocs: Mapping[str, object]) -> list[SignatureRule]:
    """Compile IOC literal lists into one alternation rule per category.

    Categories that are missing, empty or not lists produce no rule. A
    category whose regex fails to compile is dropped with a warning.
    """
    rules: list[SignatureRule] = []

    for template in IOC_RULE_TEMPLATES:
        raw = iocs.get(template.ioc_key)
        if not isinstance(raw, list):
            if raw is not None:
                logger.warning(
                    f"IOC category '{template.ioc_key}' is not a list, ignoring it"
                )
            continue

        literals = _literals(raw)
        if not literals:
            continue

        alternation = "|".join(re.escape(literal) for literal in literals)
        try:
            pattern = re.compile(
                template.template.format(alternation=alternation), re.IGNORECASE
            )
        except re.error as e:
            logger.warning(f"Dropping IOC rule {template.rule_id}: {e}")
            continue

        rules.append(
            SignatureRule(
                rule_id=template.rule_id,
                name=template.name,
                pattern=pattern,
                severity=template.severity,
                description=template.description,
                source="ioc",
            )
        )

    logger.debug(f"Compiled {len(rules)} IOC rules")
    return rules
