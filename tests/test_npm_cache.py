"""Tests for the npm cache scanner."""

import subprocess
from unittest.mock import MagicMock, patch

import pytest

from npmsentry.scanners.npm_cache import NpmCacheScanner, parse_cache_listing
from npmsentry.scanners.package_scanner import PackageScanner

CACHE_LISTING = """\
make-fetch-happen:request-cache:https://registry.npmjs.org/chalk/-/chalk-5.6.1.tgz
make-fetch-happen:request-cache:https://registry.npmjs.org/chalk/-/chalk-5.6.1.tgz
make-fetch-happen:request-cache:https://registry.npmjs.org/@ctrl/tinycolor/-/tinycolor-4.1.1.tgz
make-fetch-happen:request-cache:https://registry.npmjs.org/color-convert/-/color-convert-3.1.0.tgz
make-fetch-happen:request-cache:https://registry.npmjs.org/react
"""


@pytest.fixture
def cache_scanner(database):
    return NpmCacheScanner(PackageScanner(database))


def _completed(stdout="", returncode=0, stderr=""):
    return MagicMock(stdout=stdout, returncode=returncode, stderr=stderr)


class TestParseCacheListing:
    """Tarball reference parsing."""

    def test_unscoped_and_scoped(self):
        entries = [(name, version) for name, version, _ in parse_cache_listing(CACHE_LISTING)]
        assert entries == [
            ("chalk", "5.6.1"),
            ("chalk", "5.6.1"),
            ("@ctrl/tinycolor", "4.1.1"),
            ("color-convert", "3.1.0"),
        ]

    def test_hyphenated_name(self):
        entries = parse_cache_listing("supports-hyperlinks/-/supports-hyperlinks-4.1.1.tgz")
        assert [(n, v) for n, v, _ in entries] == [("supports-hyperlinks", "4.1.1")]

    def test_source_line_is_kept(self):
        (_, _, source), = parse_cache_listing("  debug/-/debug-4.4.2.tgz  \n")
        assert source == "debug/-/debug-4.4.2.tgz"

    def test_garbage(self):
        assert parse_cache_listing("npm ERR! something went wrong") == []


class TestNpmCacheScanner:
    """Running npm and flagging cached packages."""

    @patch("npmsentry.scanners.npm_cache.subprocess.run")
    @patch("npmsentry.scanners.npm_cache.shutil.which", return_value="/usr/bin/npm")
    def test_flags_vulnerable_tarballs(self, mock_which, mock_run, cache_scanner):
        mock_run.return_value = _completed(CACHE_LISTING)

        issues = cache_scanner.scan()

        assert sorted((i.package, i.version) for i in issues) == [
            ("@ctrl/tinycolor", "4.1.1"),
            ("chalk", "5.6.1"),
        ]
        args = mock_run.call_args
        assert args[0][0] == ["/usr/bin/npm", "cache", "ls"]
        assert args[1]["check"] is False
        assert args[1]["timeout"] == cache_scanner.timeout

    @patch("npmsentry.scanners.npm_cache.subprocess.run")
    @patch("npmsentry.scanners.npm_cache.shutil.which", return_value="/usr/bin/npm")
    def test_result_is_cached(self, mock_which, mock_run, cache_scanner):
        mock_run.return_value = _completed(CACHE_LISTING)

        first = cache_scanner.scan()
        second = cache_scanner.scan()

        assert first == second
        mock_run.assert_called_once()

    @patch("npmsentry.scanners.npm_cache.subprocess.run")
    @patch("npmsentry.scanners.npm_cache.shutil.which", return_value=None)
    def test_npm_not_installed(self, mock_which, mock_run, cache_scanner):
        assert cache_scanner.scan() == []
        mock_run.assert_not_called()

    @patch("npmsentry.scanners.npm_cache.subprocess.run")
    @patch("npmsentry.scanners.npm_cache.shutil.which", return_value="/usr/bin/npm")
    def test_timeout(self, mock_which, mock_run, cache_scanner):
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="npm", timeout=60)
        assert cache_scanner.scan() == []

    @patch("npmsentry.scanners.npm_cache.subprocess.run")
    @patch("npmsentry.scanners.npm_cache.shutil.which", return_value="/usr/bin/npm")
    def test_os_error(self, mock_which, mock_run, cache_scanner):
        mock_run.side_effect = PermissionError("denied")
        assert cache_scanner.scan() == []

    @patch("npmsentry.scanners.npm_cache.subprocess.run")
    @patch("npmsentry.scanners.npm_cache.shutil.which", return_value="/usr/bin/npm")
    def test_non_zero_exit(self, mock_which, mock_run, cache_scanner):
        mock_run.return_value = _completed(CACHE_LISTING, returncode=1, stderr="unknown command")
        assert cache_scanner.scan() == []
