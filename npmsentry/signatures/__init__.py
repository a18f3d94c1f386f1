"""Malware signatures, indicators of compromise and the library whitelist."""

from .database import IocTables, SignatureDatabase, VulnerablePackage
from .rules import (
    ADDRESS_RULE_ID,
    STATIC_RULES,
    WORKFLOW_RULES,
    Severity,
    SignatureRule,
    compile_ioc_rules,
)
from .whitelist import PackageInfo, Whitelist, WhitelistEntry, extract_package_info

__all__ = [
    "ADDRESS_RULE_ID",
    "IocTables",
    "PackageInfo",
    "STATIC_RULES",
    "Severity",
    "SignatureDatabase",
    "SignatureRule",
    "VulnerablePackage",
    "WORKFLOW_RULES",
    "Whitelist",
    "WhitelistEntry",
    "compile_ioc_rules",
    "extract_package_info",
]
