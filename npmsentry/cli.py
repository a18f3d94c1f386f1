"""Command line interface for npmsentry."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

import click
from click.core import ParameterSource

from . import __version__
from .core.config import ScanConfig
from .core.exceptions import ConfigurationError, NpmSentryError
from .core.logging_config import configure_logging
from .report import has_blocking_issues, render_markdown, render_text, to_json
from .scanner import NpmSecurityScanner

logger = logging.getLogger(__name__)

EXIT_CLEAN = 0
EXIT_ISSUES = 1
EXIT_ERROR = 2

# Console log level when neither --log-level nor a config file sets one
DEFAULT_CLI_LOG_LEVEL = "WARNING"

RENDERERS = {
    "text": render_text,
    "json": to_json,
    "markdown": render_markdown,
}


def _given(ctx: click.Context, name: str) -> bool:
    """True when the parameter came from the command line or environment."""
    source = ctx.get_parameter_source(name)
    return source is not None and source is not ParameterSource.DEFAULT


def _build_overrides(ctx: click.Context, has_config_file: bool) -> dict[str, Any]:
    """Only options given on the command line override the config file."""
    params = ctx.params
    overrides: dict[str, Any] = {}

    if _given(ctx, "directory") or not has_config_file:
        overrides["directory"] = str(params["directory"])

    performance: dict[str, Any] = {}
    if params["concurrency"] is not None:
        performance["max_concurrency"] = params["concurrency"]
    if params["timeout"] is not None:
        performance["timeout"] = params["timeout"]
    if performance:
        overrides["performance"] = performance

    security: dict[str, Any] = {}
    if params["no_malicious_code"]:
        security["scan_malicious_code"] = False
    if params["no_compromised_packages"]:
        security["scan_compromised_packages"] = False
    if params["no_package_validation"]:
        security["validate_package_json"] = False
    if params["no_npm_cache"]:
        security["scan_npm_cache"] = False
    if params["include_tests"]:
        security["exclude_test_files"] = False
    if security:
        overrides["security"] = security

    logging_options: dict[str, Any] = {}
    if params["log_level"] is not None:
        logging_options["level"] = params["log_level"].upper()
    elif not has_config_file:
        logging_options["level"] = DEFAULT_CLI_LOG_LEVEL
    if params["log_file"] is not None:
        logging_options["file"] = params["log_file"]
    if _given(ctx, "json_logs"):
        logging_options["json_format"] = params["json_logs"]
    if logging_options:
        overrides["logging"] = logging_options

    return overrides


@click.command()
@click.argument(
    "directory",
    type=click.Path(file_okay=False, path_type=Path),
    default=".",
)
@click.option("--concurrency", "-c", type=click.IntRange(min=1), default=None, help="Number of worker processes")
@click.option("--timeout", "-t", type=float, default=None, help="Per-project timeout in seconds")
@click.option("--no-malicious-code", is_flag=True, help="Skip source pattern matching")
@click.option("--no-compromised-packages", is_flag=True, help="Skip package.json version checks")
@click.option("--no-package-validation", is_flag=True, help="Skip package.json format checks")
@click.option("--no-npm-cache", is_flag=True, help="Skip the npm cache scan")
@click.option("--include-tests", is_flag=True, help="Also scan test files")
@click.option(
    "--config", "config_path", type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None, help="JSON or TOML config file",
)
@click.option(
    "--format", "output_format", type=click.Choice(list(RENDERERS)), default="text",
    show_default=True, help="Report format",
)
@click.option(
    "--log-level", type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None, help=f"Log level [default: config file, else {DEFAULT_CLI_LOG_LEVEL}]",
)
@click.option("--log-file", type=click.Path(dir_okay=False), default=None, help="Write logs to this file")
@click.option("--json-logs", is_flag=True, help="Emit logs as JSON lines")
@click.option(
    "--output", "-o", type=click.Path(dir_okay=False, path_type=Path), default=None,
    help="Write the report to a file instead of stdout",
)
@click.version_option(__version__, prog_name="npmsentry")
@click.pass_context
def main(
    ctx: click.Context,
    config_path: Path | None,
    output_format: str,
    output: Path | None,
    **_options: Any,
) -> None:
    """Scan npm projects under DIRECTORY for compromised packages and malware."""
    overrides = _build_overrides(ctx, has_config_file=config_path is not None)

    try:
        if config_path is not None:
            config = ScanConfig.from_file(config_path, **overrides)
        else:
            config = ScanConfig.from_options(overrides)
    except ConfigurationError as e:
        click.echo(f"Error: {e}", err=True)
        ctx.exit(EXIT_ERROR)

    configure_logging(
        level=config.logging.level,
        log_file=config.logging.file,
        json_format=config.logging.json_format,
    )

    try:
        aggregate = asyncio.run(NpmSecurityScanner(config).scan())
    except NpmSentryError as e:
        logger.error(f"Scan failed: {e}")
        click.echo(f"Error: {e}", err=True)
        ctx.exit(EXIT_ERROR)

    rendered = RENDERERS[output_format](aggregate)
    if output is not None:
        output.write_text(rendered.rstrip("\n") + "\n", encoding="utf-8")
        click.echo(f"Report written to {output}")
    else:
        click.echo(rendered.rstrip("\n"))

    ctx.exit(EXIT_ISSUES if has_blocking_issues(aggregate) else EXIT_CLEAN)


if __name__ == "__main__":
    main()
