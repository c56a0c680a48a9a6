#!/usr/bin/env python3
"""
CLI tool for the computer group sync.

Runs one reconciliation pass per invocation; schedule it with cron or the
Windows Task Scheduler for periodic convergence.
"""

import logging
import sys
from typing import Optional

import click
import yaml
from tabulate import tabulate

from config import Config, load_config
from directory import get_registry
from reconciler import Reconciler
from report import RunReport
from validation import validate_config_document

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Configure the root logger: stderr always, plus an append-only file if set."""
    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file, mode="a", encoding="utf-8"))
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )


def build_reconciler(cfg: Config) -> Reconciler:
    """Create the configured directory backend and a Reconciler over it."""
    directory = get_registry().create(cfg.directory.backend, cfg.directory)
    return Reconciler(
        directory=directory,
        resolver=cfg.sync.build_resolver(),
        container=cfg.sync.container,
        name_pattern=cfg.sync.name_pattern,
        os_prefix=cfg.sync.os_prefix,
        group_description=cfg.sync.group_description,
        mode=cfg.sync.mode,
    )


def _load(config_path: Optional[str]) -> Config:
    try:
        return load_config(config_path)
    except (OSError, ValueError, yaml.YAMLError) as e:
        raise click.ClickException(f"Could not load configuration: {e}")


def _echo_report(report: RunReport, output: str) -> None:
    if output == "json":
        click.echo(report.to_json())
        return

    if output == "table":
        rows = report.table_rows()
        if rows:
            headers = ["Action", "Group", "Computer", "Outcome", "Detail"]
            click.echo(tabulate(rows, headers=headers, tablefmt="grid"))
    click.echo(report.summary())


def _execute(config_path: Optional[str], dry_run: bool, output: str) -> RunReport:
    cfg = _load(config_path)
    setup_logging(cfg.logging.level, cfg.logging.file)

    try:
        reconciler = build_reconciler(cfg)
    except ValueError as e:
        raise click.ClickException(str(e))

    try:
        report = reconciler.run(dry_run=dry_run)
    finally:
        reconciler.directory.close()

    _echo_report(report, output)
    return report


@click.group()
def cli():
    """Computer group sync - keep AD groups in line with computer operating systems"""
    pass


@cli.command()
@click.option(
    "--config",
    "-c",
    "config_path",
    envvar="SYNC_CONFIG",
    type=click.Path(exists=True, dir_okay=False),
    help="YAML config file",
)
@click.option("--dry-run", is_flag=True, help="Plan only, do not write")
@click.option(
    "--strict", is_flag=True, help="Exit non-zero if any directory write failed"
)
@click.option(
    "--output", "-o", type=click.Choice(["summary", "table", "json"]), default="summary"
)
def run(config_path, dry_run, strict, output):
    """Run one reconciliation pass"""
    report = _execute(config_path, dry_run, output)
    if strict and report.has_failures:
        sys.exit(1)


@cli.command()
@click.option(
    "--config",
    "-c",
    "config_path",
    envvar="SYNC_CONFIG",
    type=click.Path(exists=True, dir_okay=False),
    help="YAML config file",
)
@click.option(
    "--output", "-o", type=click.Choice(["table", "json"]), default="table"
)
def plan(config_path, output):
    """Show the writes a run would make, without making them"""
    _execute(config_path, True, output)


@cli.command()
@click.argument("operating_systems", nargs=-1, required=True)
@click.option(
    "--config",
    "-c",
    "config_path",
    envvar="SYNC_CONFIG",
    type=click.Path(exists=True, dir_okay=False),
    help="YAML config file",
)
def resolve(operating_systems, config_path):
    """Show which group each operating-system string resolves to"""
    cfg = _load(config_path)
    try:
        resolver = cfg.sync.build_resolver()
    except ValueError as e:
        raise click.ClickException(str(e))

    rows = []
    for operating_system in operating_systems:
        group = resolver.resolve(operating_system)
        rows.append([operating_system, group or "(unresolved)"])
    click.echo(tabulate(rows, headers=["Operating System", "Group"], tablefmt="grid"))


@cli.command()
@click.argument("filename", type=click.Path(exists=True, dir_okay=False))
def validate(filename):
    """Validate a config file"""
    with open(filename, "r") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise click.ClickException(f"Invalid YAML: {e}")

    is_valid, error = validate_config_document(data)
    if not is_valid:
        raise click.ClickException(error)
    click.echo(f"{filename} is valid")


if __name__ == "__main__":
    cli()
