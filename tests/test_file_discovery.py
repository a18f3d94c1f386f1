"""Tests for glob matching and filesystem walking."""

import pytest

from npmsentry.constants import DEFAULT_FILE_IGNORE_PATTERNS, DEFAULT_INCLUDE_PATTERNS
from npmsentry.scanners.file_discovery import (
    find_projects,
    matches_pattern,
    select_source_files,
    walk_files,
)


@pytest.mark.parametrize(
    "path, pattern, expected",
    [
        ("index.js", "**/*.js", True),
        ("src/deep/index.js", "**/*.js", True),
        ("index.jsx", "**/*.js", False),
        ("dist/a.js", "dist/**", True),
        ("packages/x/dist/a.js", "dist/**", False),
        ("sub/.git/config", "**/.git/**", True),
        ("__tests__/a.js", "**/__tests__/**", True),
        ("src/a.spec.ts", "**/*.spec.*", True),
    ],
)
def test_matches_pattern(path, pattern, expected):
    assert matches_pattern(path, pattern) is expected


class TestWalkFiles:
    """Walking a project tree."""

    def test_ignored_directories_are_pruned(self, make_project):
        project = make_project(
            files={
                "src/a.js": "",
                "dist/b.js": "",
                ".git/hooks/c.js": "",
                "node_modules/d/index.js": "",
                ".github/workflows/ci.yml": "",
            }
        )

        walked = [rel for _, rel in walk_files(project, DEFAULT_FILE_IGNORE_PATTERNS)]

        assert sorted(walked) == [".github/workflows/ci.yml", "node_modules/d/index.js", "src/a.js"]

    def test_select_source_files(self, make_project):
        project = make_project(
            files={"a.ts": "", "b.md": "", "c.test.js": "", "d.yaml": ""}
        )
        walked = list(walk_files(project))

        selected = [
            rel for _, rel in select_source_files(walked, DEFAULT_INCLUDE_PATTERNS, ["**/*.test.*"])
        ]

        assert selected == ["a.ts", "d.yaml"]


class TestFindProjects:
    """Project discovery."""

    def test_nested_projects(self, tmp_path, make_project):
        make_project("apps/web", package_json={})
        make_project("apps/web/packages/ui", package_json={})
        make_project("apps/web/node_modules/react", package_json={})
        make_project("apps/web/coverage/x", package_json={})

        found = find_projects(tmp_path)

        assert sorted(p.relative_to(tmp_path).as_posix() for p in found) == [
            "apps/web",
            "apps/web/packages/ui",
        ]

    def test_exclude_patterns(self, tmp_path, make_project):
        make_project("keep", package_json={})
        make_project("vendor/skip", package_json={})

        found = find_projects(tmp_path, ["vendor/**"])

        assert [p.name for p in found] == ["keep"]
