"""High-level entry point: find projects under a directory and scan them in parallel."""

import logging
from pathlib import Path

from .core.config import ScanConfig
from .scanners.file_discovery import find_projects
from .scanners.models import AggregateResult
from .scanners.orchestrator import ParallelScanner, ScanFunction

logger = logging.getLogger(__name__)


def discover_projects(config: ScanConfig) -> list[Path]:
    """Project directories (those with a package.json) under ``config.directory``."""
    projects = find_projects(config.directory, config.exclude_patterns)
    logger.info(f"Found {len(projects)} projects under {config.directory}")
    return projects


class NpmSecurityScanner:
    """Scans every npm project below a directory.

    Example:
        >>> config = ScanConfig.from_options({"directory": "."})
        >>> result = asyncio.run(NpmSecurityScanner(config).scan())
        >>> result.summary.issues_found
    """

    def __init__(self, config: ScanConfig, scan_function: ScanFunction | None = None):
        self.config = config
        self.parallel_scanner = ParallelScanner(config, scan_function=scan_function)

    async def scan(self, projects: list[Path] | None = None) -> AggregateResult:
        """
        Scan the given projects, or everything ``discover_projects`` finds.

        Raises:
            WorkerPoolError: If no worker process could be started
        """
        logger.info(f"Starting scan: {self.config.summary()}")
        if projects is None:
            projects = discover_projects(self.config)
        if not projects:
            logger.warning(f"No package.json found under {self.config.directory}")

        return await self.parallel_scanner.scan_projects(projects)

    def status(self) -> dict:
        return self.parallel_scanner.status()
