"""Tests for whitelist resolution and its fail-closed version policy."""

import json
import logging

import pytest
from packaging.specifiers import InvalidSpecifier

from npmsentry.signatures.whitelist import (
    Whitelist,
    extract_package_info,
    parse_version_range,
    read_installed_version,
)


def _gated_whitelist(enabled: bool = True, **versions) -> Whitelist:
    return Whitelist.from_dict(
        {
            "versionChecks": {"enabled": enabled},
            "libraries": [
                {
                    "name": "safe-lib",
                    "description": "test library",
                    "patterns": ["node_modules/safe-lib/"],
                    "versions": versions or {"ranges": [">=2.0.0 <3.0.0"]},
                }
            ],
        }
    )


class TestExtractPackageInfo:
    """Package name and version from node_modules paths."""

    def test_versioned_directory(self):
        info = extract_package_info("/p/node_modules/react/16.14.0/index.js")
        assert info.name == "react"
        assert info.version == "16.14.0"
        assert info.package_dir == "/p/node_modules/react"

    def test_scoped_package(self):
        info = extract_package_info("/p/node_modules/@ctrl/tinycolor/4.1.0/dist/x.js")
        assert info.name == "@ctrl/tinycolor"
        assert info.version == "4.1.0"

    def test_no_version_directory(self):
        info = extract_package_info("/p/node_modules/jspdf/dist/jspdf.js")
        assert info.name == "jspdf"
        assert info.version is None

    def test_file_directly_in_package_dir_is_not_a_version(self):
        info = extract_package_info("/p/node_modules/left-pad/1.3.0")
        assert info.name == "left-pad"
        assert info.version is None

    def test_last_node_modules_segment_wins(self):
        info = extract_package_info("/p/node_modules/a/node_modules/b/lib/x.js")
        assert info.name == "b"
        assert info.package_dir == "/p/node_modules/a/node_modules/b"

    def test_windows_path(self):
        info = extract_package_info("C:\\p\\node_modules\\react\\16.14.0\\index.js")
        assert (info.name, info.version) == ("react", "16.14.0")

    @pytest.mark.parametrize(
        "path",
        ["/p/src/index.js", "/p/node_modules/x.js", "/p/node_modules/@scope/x.js", "/p/my_node_modules/a/b.js"],
    )
    def test_not_a_package_path(self, path):
        assert extract_package_info(path) is None


class TestVersionGatedWhitelist:
    """Version ranges exempt only files provably inside them."""

    def test_in_range_version_directory(self):
        whitelist = _gated_whitelist()
        entry = whitelist.resolve("/p/node_modules/safe-lib/2.1.0/index.js")
        assert entry is not None
        assert entry.library_name == "safe-lib"

    def test_out_of_range_version(self):
        whitelist = _gated_whitelist()
        assert whitelist.resolve("/p/node_modules/safe-lib/3.0.0/index.js") is None

    def test_missing_version_fails_closed(self, tmp_path):
        whitelist = _gated_whitelist()
        path = tmp_path / "node_modules" / "safe-lib" / "dist" / "index.js"
        assert whitelist.resolve(path) is None

    def test_installed_package_json_supplies_version(self, tmp_path):
        package_dir = tmp_path / "node_modules" / "safe-lib"
        package_dir.mkdir(parents=True)
        (package_dir / "package.json").write_text(json.dumps({"version": "2.5.0"}))

        whitelist = _gated_whitelist()
        assert whitelist.resolve(package_dir / "dist" / "index.js") is not None

    def test_invalid_installed_version_fails_closed(self, tmp_path):
        package_dir = tmp_path / "node_modules" / "safe-lib"
        package_dir.mkdir(parents=True)
        (package_dir / "package.json").write_text(json.dumps({"version": "latest"}))

        whitelist = _gated_whitelist()
        assert whitelist.resolve(package_dir / "dist" / "index.js") is None

    def test_path_outside_node_modules_fails_closed(self):
        whitelist = Whitelist.from_dict(
            {
                "libraries": [
                    {"name": "safe-lib", "patterns": ["vendor/safe-lib"], "versions": {"ranges": [">=1"]}}
                ]
            }
        )
        assert whitelist.resolve("/p/vendor/safe-lib/index.js") is None

    def test_package_name_mismatch(self):
        whitelist = Whitelist.from_dict(
            {"libraries": [{"name": "safe-lib", "patterns": ["safe-lib"], "versions": {"ranges": [">=1"]}}]}
        )
        assert whitelist.resolve("/p/node_modules/other/2.0.0/safe-lib/x.js") is None

    def test_no_ranges_means_no_exemption(self):
        whitelist = _gated_whitelist(ranges=[])
        assert whitelist.resolve("/p/node_modules/safe-lib/2.1.0/index.js") is None

    def test_all_versions(self):
        whitelist = _gated_whitelist(all=True)
        assert whitelist.resolve("/p/node_modules/safe-lib/dist/index.js") is not None

    def test_version_checks_disabled(self):
        whitelist = _gated_whitelist(enabled=False)
        assert whitelist.resolve("/p/node_modules/safe-lib/dist/index.js") is not None

    def test_pattern_is_case_insensitive(self):
        whitelist = _gated_whitelist(all=True)
        assert whitelist.resolve("/P/NODE_MODULES/Safe-Lib/index.js") is not None


class TestWhitelistLoading:
    """Malformed entries are dropped one at a time."""

    def test_invalid_pattern_is_dropped(self, caplog):
        with caplog.at_level(logging.WARNING):
            whitelist = Whitelist.from_dict(
                {
                    "libraries": [
                        {"name": "a", "patterns": ["([", "node_modules/a/"], "versions": {"all": True}}
                    ]
                }
            )

        assert len(whitelist) == 1
        assert len(whitelist.entries[0].path_patterns) == 1
        assert "invalid whitelist pattern" in caplog.text

    def test_entry_without_usable_patterns_is_skipped(self, caplog):
        with caplog.at_level(logging.WARNING):
            whitelist = Whitelist.from_dict(
                {
                    "libraries": [
                        {"name": "a", "patterns": ["(["], "versions": {"all": True}},
                        {"name": "b", "patterns": ["node_modules/b/"], "versions": {"all": True}},
                    ]
                }
            )

        assert [e.library_name for e in whitelist.entries] == ["b"]

    def test_invalid_range_is_dropped(self, caplog):
        with caplog.at_level(logging.WARNING):
            whitelist = _gated_whitelist(ranges=["not a range", ">=2.0.0"])

        assert len(whitelist.entries[0].version_ranges) == 1
        assert "invalid version range" in caplog.text

    def test_malformed_libraries(self):
        assert len(Whitelist.from_dict({"libraries": "nope"})) == 0
        assert len(Whitelist.from_dict({"libraries": [42, {"patterns": ["x"]}]})) == 0

    def test_version_checks_default_enabled(self):
        assert Whitelist.from_dict({}).version_checks_enabled is True


class TestVersionRanges:
    """Range parsing."""

    def test_npm_style_space_separated(self):
        spec = parse_version_range(">=2.0.0 <3.0.0")
        assert "2.9.9" in spec
        assert "3.0.0" not in spec

    def test_comma_separated(self):
        spec = parse_version_range(">=1.0.0, <1.5")
        assert "1.4.0" in spec

    def test_empty_range_rejected(self):
        with pytest.raises(InvalidSpecifier):
            parse_version_range("   ")

    def test_read_installed_version_missing(self, tmp_path):
        assert read_installed_version(tmp_path / "nothing") is None
