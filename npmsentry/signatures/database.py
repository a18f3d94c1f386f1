"""
Signature database: vulnerable package versions, IOC lists and the whitelist.

Loaded once per process from three JSON files and never mutated afterwards.
A missing or malformed file degrades to an empty table with a warning so a
damaged data directory never stops a scan.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any

from ..core.exceptions import DataLoadError
from .rules import (
    STATIC_RULES,
    WORKFLOW_RULES,
    SignatureRule,
    compile_ioc_rules,
)
from .whitelist import Whitelist

logger = logging.getLogger(__name__)

DATA_DIR = Path(__file__).parent / "data"

VULNERABLE_PACKAGES_FILE = "vulnerable_packages.json"
IOCS_FILE = "iocs.json"
WHITELIST_FILE = "whitelist.json"


@dataclass(frozen=True)
class VulnerablePackage:
    name: str
    vulnerable_versions: frozenset[str]
    safe_version: str | None = None
    campaign: str | None = None


@dataclass(frozen=True)
class IocTables:
    """Literal indicator lists, as loaded from iocs.json."""

    domains: tuple[str, ...] = ()
    ip_addresses: tuple[str, ...] = ()
    webhook_endpoints: tuple[str, ...] = ()
    cloud_metadata_endpoints: tuple[str, ...] = ()
    trufflehog_urls: tuple[str, ...] = ()
    suspicious_workflow_names: tuple[str, ...] = ()
    environment_variables: tuple[str, ...] = ()
    crypto_addresses: frozenset[str] = field(default_factory=frozenset)
    suspicious_file_names: frozenset[str] = field(default_factory=frozenset)


def _string_list(data: Mapping[str, Any], key: str) -> tuple[str, ...]:
    values = data.get(key)
    if values is None:
        return ()
    if not isinstance(values, list):
        logger.warning(f"IOC category '{key}' is not a list, ignoring it")
        return ()
    return tuple(v.strip() for v in values if isinstance(v, str) and v.strip())


def load_json_table(path: Path) -> dict[str, Any]:
    """
    Load one JSON data file.

    Raises:
        DataLoadError: If the file is missing, unreadable or not a JSON object
    """
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError as e:
        raise DataLoadError(f"Data file not found: {path}") from e
    except (OSError, json.JSONDecodeError) as e:
        raise DataLoadError(f"Failed to load {path}: {e}") from e

    if not isinstance(data, dict):
        raise DataLoadError(f"{path} must contain a JSON object")
    return data


def _load_or_empty(path: Path) -> dict[str, Any]:
    try:
        return load_json_table(path)
    except DataLoadError as e:
        logger.warning(f"{e}; continuing with an empty table")
        return {}


class SignatureDatabase:
    """Immutable lookup tables shared by the package scanner and pattern matcher."""

    def __init__(
        self,
        packages: Mapping[str, VulnerablePackage] | None = None,
        iocs: IocTables | None = None,
        whitelist: Whitelist | None = None,
        ioc_rules: list[SignatureRule] | None = None,
    ):
        self._packages = MappingProxyType(dict(packages or {}))
        self.iocs = iocs or IocTables()
        self.whitelist = whitelist or Whitelist()
        self.static_rules: tuple[SignatureRule, ...] = tuple(STATIC_RULES)
        self.workflow_rules: tuple[SignatureRule, ...] = tuple(WORKFLOW_RULES)
        self.ioc_rules: tuple[SignatureRule, ...] = tuple(ioc_rules or [])

    @classmethod
    def load(cls, signature_dir: str | Path | None = None) -> SignatureDatabase:
        """Load all three tables from ``signature_dir`` (default: bundled data)."""
        data_dir = Path(signature_dir) if signature_dir else DATA_DIR

        database = cls.from_data(
            vulnerable=_load_or_empty(data_dir / VULNERABLE_PACKAGES_FILE),
            iocs=_load_or_empty(data_dir / IOCS_FILE),
            whitelist=_load_or_empty(data_dir / WHITELIST_FILE),
        )
        logger.debug(
            f"Loaded signature database from {data_dir}: "
            f"{len(database.packages)} packages, {len(database.rules)} rules, "
            f"{len(database.whitelist)} whitelist entries"
        )
        return database

    @classmethod
    def from_data(
        cls,
        vulnerable: Mapping[str, Any] | None = None,
        iocs: Mapping[str, Any] | None = None,
        whitelist: Mapping[str, Any] | None = None,
    ) -> SignatureDatabase:
        """Build a database from already-parsed JSON structures."""
        iocs = iocs or {}
        return cls(
            packages=_parse_packages(vulnerable or {}),
            iocs=_parse_iocs(iocs),
            whitelist=Whitelist.from_dict(whitelist or {}),
            ioc_rules=compile_ioc_rules(iocs),
        )

    @property
    def packages(self) -> Mapping[str, VulnerablePackage]:
        return self._packages

    @property
    def rules(self) -> tuple[SignatureRule, ...]:
        """All content rules applied to JS/TS files, static first."""
        return self.static_rules + self.ioc_rules

    def vulnerable_versions(self, package_name: str) -> frozenset[str]:
        package = self._packages.get(package_name)
        return package.vulnerable_versions if package else frozenset()

    def safe_version(self, package_name: str) -> str | None:
        package = self._packages.get(package_name)
        return package.safe_version if package else None

    def is_listed_address(self, address: str) -> bool:
        return address.lower() in self.iocs.crypto_addresses

    def is_suspicious_file_name(self, file_name: str) -> bool:
        return file_name.lower() in self.iocs.suspicious_file_names


def _parse_packages(data: Mapping[str, Any]) -> dict[str, VulnerablePackage]:
    packages = data.get("packages", {})
    if not isinstance(packages, Mapping):
        logger.warning("'packages' in vulnerable package table is not an object")
        return {}

    parsed = {}
    for name, entry in packages.items():
        if not isinstance(entry, Mapping):
            logger.warning(f"Skipping malformed vulnerable package entry: {name}")
            continue
        versions = entry.get("vulnerable", [])
        if not isinstance(versions, list):
            logger.warning(f"Vulnerable versions for {name} are not a list, skipping")
            continue
        safe = entry.get("safe")
        parsed[name] = VulnerablePackage(
            name=name,
            vulnerable_versions=frozenset(v for v in versions if isinstance(v, str)),
            safe_version=safe if isinstance(safe, str) else None,
            campaign=entry.get("campaign"),
        )
    return parsed


def _parse_iocs(data: Mapping[str, Any]) -> IocTables:
    return IocTables(
        domains=_string_list(data, "domains"),
        ip_addresses=_string_list(data, "ipAddresses"),
        webhook_endpoints=_string_list(data, "webhookEndpoints"),
        cloud_metadata_endpoints=_string_list(data, "cloudMetadataEndpoints"),
        trufflehog_urls=_string_list(data, "truffleHogUrls"),
        suspicious_workflow_names=_string_list(data, "suspiciousWorkflowNames"),
        environment_variables=_string_list(data, "environmentVariables"),
        crypto_addresses=frozenset(
            a.lower() for a in _string_list(data, "cryptoAddresses")
        ),
        suspicious_file_names=frozenset(
            n.lower() for n in _string_list(data, "suspiciousFileNames")
        ),
    )
