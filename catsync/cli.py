"""Click-based CLI for catsync - diff-based catalog synchronization."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional

import click
import yaml
from pydantic import ValidationError

from catsync import __version__
from catsync.config import (
    CatsyncConfig,
    ensure_config_exists,
    get_config_path,
    load_config,
    validate_config_file,
)
from catsync.config.defaults import generate_default_config
from catsync.logger import configure_logging
from catsync.output import Console, create_console
from catsync.remote import CatalogHttpClient
from catsync.storage import CsvTableStore, YamlFileKeyValueStore
from catsync.sync import PriorityTier, QueueCorruption, RunOptions, SessionNotFound, SyncOrchestrator


def _load_config_or_exit(console: Console) -> CatsyncConfig:
    try:
        return load_config()
    except FileNotFoundError as e:
        console.print_error(str(e))
        sys.exit(1)
    except (ValidationError, yaml.YAMLError) as e:
        console.print_error(f"Invalid configuration: {e}")
        sys.exit(1)


def _setup(verbose: bool) -> tuple[CatsyncConfig, Console]:
    console = create_console(verbose=verbose)
    config = _load_config_or_exit(console)
    verbose = verbose or config.output.verbose
    console = create_console(verbose=verbose, colored=config.output.colored)
    configure_logging(
        verbose=verbose,
        log_file=config.output.log_file,
        file_level=config.output.log_level,
        colored=config.output.colored,
    )
    return config, console


def build_client(config: CatsyncConfig) -> CatalogHttpClient:
    """Create the REST client from configuration."""
    remote = config.remote
    return CatalogHttpClient(
        remote.shop,
        api_version=remote.api_version,
        token_env=remote.token_env,
        timeout=remote.timeout,
        min_quota_headroom=remote.min_quota_headroom,
    )


def build_orchestrator(config: CatsyncConfig, console: Console) -> SyncOrchestrator:
    """Wire stores, client and console into an orchestrator."""
    data_dir = config.storage.data_dir
    table = CsvTableStore({name: (dataset.kind, dataset.resolve_path(data_dir)) for name, dataset in config.datasets.items()})
    kv = YamlFileKeyValueStore(Path(config.storage.session_store))
    return SyncOrchestrator(config, table, build_client(config), kv, sink=console)


def _require_dataset(config: CatsyncConfig, console: Console, dataset: str) -> None:
    if config.get_dataset(dataset) is None:
        available = ", ".join(sorted(config.datasets)) or "none"
        console.print_error(f"Dataset '{dataset}' not found (available: {available})")
        sys.exit(1)


@click.group()
@click.version_option(version=__version__, prog_name="catsync")
def cli() -> None:
    """catsync - diff-based catalog synchronization.

    Sends only the rows of a local dataset whose content changed since the
    last successful sync, in rate-limited batches that can be resumed.

    \b
    Workflow:
      catsync diff products      Show what would be sent
      catsync run products       Send changes
      catsync resume SESSION     Continue an interrupted or failed run
    """
    pass


@cli.command("diff")
@click.argument("dataset")
@click.option("--verbose", "-v", is_flag=True, help="Also list unchanged rows")
def diff(dataset: str, verbose: bool) -> None:
    """Show rows that changed since the last sync.

    No remote calls are made.
    """
    config, console = _setup(verbose)
    _require_dataset(config, console, dataset)

    orchestrator = build_orchestrator(config, console)
    try:
        change_set = orchestrator.detect(dataset)
    except (FileNotFoundError, KeyError, ValueError) as e:
        console.print_error(str(e))
        sys.exit(1)

    console.print_change_set(dataset, change_set)


@cli.command()
@click.argument("dataset")
@click.option("--prepare-only", is_flag=True, help="Queue changes and persist the session without sending")
@click.option(
    "--tier",
    type=click.Choice([tier.value for tier in PriorityTier]),
    default=None,
    help="Priority tier for rows without a _priority value",
)
@click.option("--batch-size", type=click.IntRange(min=1), default=None, help="Override the volume-based batch size")
@click.option("--verbose", "-v", is_flag=True, help="Show detailed output")
def run(dataset: str, prepare_only: bool, tier: Optional[str], batch_size: Optional[int], verbose: bool) -> None:
    """Detect changes in DATASET and send them to the remote catalog.

    \b
    Examples:
      catsync run products
      catsync run variants --tier high
      catsync run products --prepare-only
    """
    config, console = _setup(verbose)
    _require_dataset(config, console, dataset)

    orchestrator = build_orchestrator(config, console)
    options = RunOptions(
        prepare_only=prepare_only,
        default_tier=PriorityTier(tier) if tier else None,
        batch_size=batch_size,
    )
    result = orchestrator.run(dataset, options)
    console.print_run_result(result)

    if not result.success:
        sys.exit(1)


@cli.command()
@click.argument("session_id")
@click.option("--retry-failed", is_flag=True, help="Return failed items to pending before continuing")
@click.option("--batch-size", type=click.IntRange(min=1), default=None, help="Override the volume-based batch size")
@click.option("--verbose", "-v", is_flag=True, help="Show detailed output")
def resume(session_id: str, retry_failed: bool, batch_size: Optional[int], verbose: bool) -> None:
    """Continue a persisted session from its pending items."""
    config, console = _setup(verbose)

    orchestrator = build_orchestrator(config, console)
    result = orchestrator.resume(session_id, retry_failed=retry_failed, batch_size=batch_size)
    console.print_run_result(result)

    if not result.success:
        sys.exit(1)


@cli.command()
@click.argument("session_id")
def cleanup(session_id: str) -> None:
    """Delete a persisted session and release its dataset."""
    config, console = _setup(False)

    orchestrator = build_orchestrator(config, console)
    if orchestrator.cleanup(session_id):
        console.print_success(f"Session {session_id} removed")
    else:
        console.print_warning(f"No session {session_id} found")


@cli.command()
@click.argument("session_id")
def summary(session_id: str) -> None:
    """Show progress and statistics of a persisted session."""
    config, console = _setup(False)

    orchestrator = build_orchestrator(config, console)
    try:
        session = orchestrator.get_summary(session_id)
    except (SessionNotFound, QueueCorruption) as e:
        console.print_error(str(e))
        sys.exit(1)

    console.print_session_summary(session)


@cli.command()
def check() -> None:
    """Check remote connectivity, permissions and API quota."""
    config, console = _setup(False)

    report = build_client(config).check_readiness()
    console.print_readiness(report)

    if not report.ready:
        sys.exit(1)


@cli.group()
def config() -> None:
    """Manage catsync configuration."""
    pass


@config.command("init")
@click.option("--force", "-f", is_flag=True, help="Overwrite an existing configuration")
def config_init(force: bool) -> None:
    """Create a default configuration file."""
    console = create_console()
    config_path = get_config_path()

    if config_path.exists() and force:
        config_path.write_text(generate_default_config(), encoding="utf-8")
        console.print_success(f"Configuration overwritten: {config_path}")
        return

    config_path, created = ensure_config_exists()
    if created:
        console.print_success(f"Configuration created: {config_path}")
    else:
        console.print_warning(f"Configuration already exists: {config_path} (use --force to overwrite)")


@config.command("show")
def config_show() -> None:
    """Show the active configuration."""
    console = create_console()
    loaded = _load_config_or_exit(console)

    console.print_config_summary(
        str(get_config_path()),
        {name: dataset.kind.value for name, dataset in loaded.datasets.items()},
    )
    console.print(yaml.dump(loaded.model_dump(mode="json"), default_flow_style=False, sort_keys=False))


@config.command("validate")
@click.argument("file", required=False, type=click.Path(path_type=Path))
def config_validate(file: Optional[Path]) -> None:
    """Validate a configuration file (default: active configuration)."""
    console = create_console()
    valid, errors = validate_config_file(file)

    if valid:
        console.print_success("Configuration is valid")
        return

    for error in errors:
        console.print_error(error)
    sys.exit(1)


def main() -> None:
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
