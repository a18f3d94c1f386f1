"""
Filesystem walking with glob-style include and ignore patterns.

Patterns are matched with ``fnmatch`` against POSIX paths relative to the
walk root. A leading ``**/`` also matches at the root, so ``**/*.js``
covers ``index.js`` as well as ``src/index.js``.
"""

import fnmatch
import logging
import os
from collections.abc import Iterable, Iterator
from pathlib import Path

from ..constants import EXCLUDED_PROJECT_SEGMENTS

logger = logging.getLogger(__name__)


def matches_pattern(relative_path: str, pattern: str) -> bool:
    if fnmatch.fnmatch(relative_path, pattern):
        return True
    return pattern.startswith("**/") and fnmatch.fnmatch(relative_path, pattern[3:])


def matches_any(relative_path: str, patterns: Iterable[str]) -> bool:
    return any(matches_pattern(relative_path, p) for p in patterns)


def _is_ignored_dir(relative_dir: str, ignore_patterns: list[str]) -> bool:
    # Only whole-tree patterns ("dir/**") prune a directory
    return any(
        p.endswith("/**") and matches_pattern(relative_dir + "/", p)
        for p in ignore_patterns
    )


def walk_files(
    root: str | Path, ignore_patterns: Iterable[str] = ()
) -> Iterator[tuple[Path, str]]:
    """
    Yield ``(path, relative_posix_path)`` for every file under ``root`` that
    is not ignored. Symlinked directories are not followed.
    """
    root = Path(root)
    ignore = list(ignore_patterns)

    def _on_error(error: OSError) -> None:
        logger.debug(f"Cannot read directory {error.filename}: {error}")

    for dirpath, dirnames, filenames in os.walk(root, onerror=_on_error):
        current = Path(dirpath)
        relative_dir = current.relative_to(root).as_posix()
        prefix = "" if relative_dir == "." else relative_dir + "/"

        dirnames[:] = sorted(
            d for d in dirnames if not _is_ignored_dir(prefix + d, ignore)
        )

        for filename in sorted(filenames):
            relative = prefix + filename
            if matches_any(relative, ignore):
                continue
            yield current / filename, relative


def select_source_files(
    files: Iterable[tuple[Path, str]],
    include_patterns: Iterable[str],
    test_file_patterns: Iterable[str] = (),
) -> Iterator[tuple[Path, str]]:
    """Filter walked files down to those the pattern matcher should read."""
    include = list(include_patterns)
    tests = list(test_file_patterns)
    for path, relative in files:
        if not matches_any(relative, include):
            continue
        if tests and matches_any(relative, tests):
            continue
        yield path, relative


def find_projects(root: str | Path, exclude_patterns: Iterable[str] = ()) -> list[Path]:
    """
    Find every directory under ``root`` (inclusive) holding a package.json.

    Directories inside ``node_modules``, ``dist``, ``build``, ``coverage``
    or ``.git`` are never projects, whatever the exclude patterns say.
    """
    root = Path(root)
    exclude = list(exclude_patterns)
    projects = []

    for dirpath, dirnames, filenames in os.walk(root):
        current = Path(dirpath)
        relative_dir = current.relative_to(root).as_posix()
        prefix = "" if relative_dir == "." else relative_dir + "/"

        dirnames[:] = sorted(
            d
            for d in dirnames
            if d not in EXCLUDED_PROJECT_SEGMENTS
            and not _is_ignored_dir(prefix + d, exclude)
        )

        if "package.json" in filenames and not matches_any(prefix + "package.json", exclude):
            projects.append(current)

    return projects
