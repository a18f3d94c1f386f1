"""
Whitelist of known-benign libraries.

Some legitimate bundles (jspdf polyfills, html2canvas, ...) contain code that
looks like the malware signatures. A whitelist entry exempts a file when its
path matches one of the entry's regexes and, if the entry is version-gated,
the package version derived from the path falls inside one of its ranges.

Version gating fails closed: a file that cannot be tied to the whitelisted
package at an in-range version is scanned normally.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from packaging.specifiers import InvalidSpecifier, SpecifierSet
from packaging.version import InvalidVersion, Version

from ..constants import MAX_MANIFEST_FILE_SIZE

logger = logging.getLogger(__name__)

_NODE_MODULES_SEGMENT = re.compile(r"(?:^|/)node_modules/")


@dataclass(frozen=True)
class PackageInfo:
    """Package identity derived from a path under ``node_modules``."""

    name: str
    version: str | None
    package_dir: str


@dataclass(frozen=True)
class WhitelistEntry:
    """One whitelisted library."""

    library_name: str
    description: str = ""
    path_patterns: tuple[re.Pattern[str], ...] = field(default_factory=tuple)
    all_versions: bool = False
    version_ranges: tuple[SpecifierSet, ...] = field(default_factory=tuple)

    def matches_path(self, file_path: str) -> bool:
        return any(pattern.search(file_path) for pattern in self.path_patterns)

    def allows_version(self, version: str) -> bool:
        """True if ``version`` is inside any range. No ranges means no versions."""
        if self.all_versions:
            return True
        try:
            parsed = Version(version)
        except InvalidVersion:
            return False
        return any(
            spec.contains(parsed, prereleases=True) for spec in self.version_ranges
        )


def normalize_path(file_path: str | Path) -> str:
    return str(file_path).replace("\\", "/")


def _valid_version(candidate: str | None) -> str | None:
    if not candidate:
        return None
    try:
        Version(candidate)
    except InvalidVersion:
        return None
    return candidate


def extract_package_info(file_path: str | Path) -> PackageInfo | None:
    """
    Derive the owning package from a path like
    ``.../node_modules/<name>[/<version>]/...``.

    The last ``node_modules`` segment wins, so a nested dependency is
    attributed to itself rather than to its parent. Scoped names
    (``@scope/name``) are supported. ``version`` is only set when the
    directory right after the name parses as a version.
    """
    normalized = normalize_path(file_path)
    matches = list(_NODE_MODULES_SEGMENT.finditer(normalized))
    if not matches:
        return None

    start = matches[-1].end()
    parts = normalized[start:].split("/")

    if parts[0].startswith("@"):
        if len(parts) < 3 or not parts[1]:
            return None
        name = f"{parts[0]}/{parts[1]}"
        remainder = parts[2:]
    else:
        if len(parts) < 2 or not parts[0]:
            return None
        name = parts[0]
        remainder = parts[1:]

    # The segment after the name is only a version directory if something
    # lives beneath it.
    version = _valid_version(remainder[0]) if len(remainder) >= 2 else None

    return PackageInfo(
        name=name,
        version=version,
        package_dir=normalized[:start] + name,
    )


def read_installed_version(package_dir: str | Path) -> str | None:
    """Read ``version`` from an installed package's package.json, if valid."""
    manifest = Path(package_dir) / "package.json"
    try:
        if manifest.stat().st_size > MAX_MANIFEST_FILE_SIZE:
            return None
        with open(manifest, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError):
        return None

    if not isinstance(data, dict):
        return None
    version = data.get("version")
    return _valid_version(version) if isinstance(version, str) else None


def parse_version_range(spec: str) -> SpecifierSet:
    """
    Parse a range such as ``">=2.0.0,<3.0.0"`` or npm-style
    ``">=2.0.0 <3.0.0"``.

    Raises:
        InvalidSpecifier: If the range is not understood
    """
    text = spec.strip()
    if not text:
        # An empty SpecifierSet accepts everything
        raise InvalidSpecifier("empty version range")
    text = re.sub(r"\s*,\s*", ",", text)
    text = re.sub(r"\s+(?=[<>=!~])", ",", text)
    return SpecifierSet(text)


class Whitelist:
    """Resolved whitelist with its global version-check switch."""

    def __init__(
        self,
        entries: list[WhitelistEntry] | None = None,
        version_checks_enabled: bool = True,
    ):
        self.entries = list(entries or [])
        self.version_checks_enabled = version_checks_enabled

    def __len__(self) -> int:
        return len(self.entries)

    def resolve(self, file_path: str | Path) -> WhitelistEntry | None:
        """Return the entry that exempts ``file_path``, or None."""
        path = normalize_path(file_path)

        for entry in self.entries:
            if not entry.matches_path(path):
                continue

            if not self.version_checks_enabled or entry.all_versions:
                return entry

            info = extract_package_info(path)
            if info is None:
                logger.debug(
                    f"{path} matches whitelist entry {entry.library_name} "
                    "but is not inside node_modules, scanning it"
                )
                continue

            if info.name.lower() != entry.library_name.lower():
                logger.debug(
                    f"{path} belongs to {info.name}, not {entry.library_name}"
                )
                continue

            version = info.version or read_installed_version(info.package_dir)
            if version is None:
                logger.debug(
                    f"Could not determine version of {info.name} for {path}, "
                    "not whitelisting"
                )
                continue

            if entry.allows_version(version):
                return entry

            logger.debug(
                f"{info.name}@{version} is outside the whitelisted ranges "
                f"for {entry.library_name}"
            )

        return None

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> Whitelist:
        """
        Build a whitelist from the ``whitelist.json`` structure.

        Invalid path regexes and version ranges are dropped with a warning.
        A library left without path patterns is skipped entirely.
        """
        version_checks = data.get("versionChecks")
        enabled = True
        if isinstance(version_checks, Mapping):
            enabled = bool(version_checks.get("enabled", True))

        libraries = data.get("libraries")
        if not isinstance(libraries, list):
            if libraries is not None:
                logger.warning("Whitelist 'libraries' is not a list, ignoring it")
            return cls([], enabled)

        entries = []
        for library in libraries:
            entry = _build_entry(library)
            if entry is not None:
                entries.append(entry)

        return cls(entries, enabled)


def _build_entry(library: object) -> WhitelistEntry | None:
    if not isinstance(library, Mapping) or not isinstance(library.get("name"), str):
        logger.warning(f"Skipping malformed whitelist entry: {library!r}")
        return None

    name = library["name"]

    patterns = []
    for raw in library.get("patterns") or []:
        try:
            patterns.append(re.compile(str(raw), re.IGNORECASE))
        except re.error as e:
            logger.warning(f"Dropping invalid whitelist pattern for {name}: {raw!r} ({e})")

    if not patterns:
        logger.warning(f"Whitelist entry {name} has no usable patterns, skipping it")
        return None

    versions = library.get("versions") or {}
    all_versions = bool(versions.get("all", False)) if isinstance(versions, Mapping) else False

    ranges = []
    raw_ranges = versions.get("ranges", []) if isinstance(versions, Mapping) else []
    for raw in raw_ranges or []:
        try:
            ranges.append(parse_version_range(str(raw)))
        except InvalidSpecifier as e:
            logger.warning(f"Dropping invalid version range for {name}: {raw!r} ({e})")

    return WhitelistEntry(
        library_name=name,
        description=str(library.get("description", "")),
        path_patterns=tuple(patterns),
        all_versions=all_versions,
        version_ranges=tuple(ranges),
    )
