"""
Main CLI entry point for dbstage.

This module provides the command-line interface using Click with Rich
formatting. The process exit code is non-zero only when the settings or
the operations file cannot be loaded, or when --fail-on-error is given
and a record failed.
"""

import sys
from typing import Optional, Tuple

import click
import yaml
from rich.console import Console
from rich.table import Table

from dbstage import __version__
from dbstage.core.exceptions import DbStageError, ValidationError
from dbstage.database.package_engine import SqlPackageEngine
from dbstage.database.sqlserver import SqlServerEngine
from dbstage.models.config import ArtifactFormat, RunnerSettings, StorageLocation
from dbstage.orchestrator.orchestrator import BatchRunner, OperationPipeline
from dbstage.utils.helpers import format_bytes, save_json_report
from dbstage.utils.logging import LoggingReporter, setup_logging

console = Console()

EXIT_LOAD_FAILURE = 2
EXIT_RECORD_FAILURE = 1


def load_settings(config: Optional[str], verbose: bool, log_file: Optional[str]) -> RunnerSettings:
    overrides = {"log_file": log_file}
    if verbose:
        overrides["log_level"] = "DEBUG"
    if config:
        return RunnerSettings.from_file(config, overrides)
    return RunnerSettings(**{k: v for k, v in overrides.items() if v is not None})


def build_storage_factory(settings: RunnerSettings):
    from dbstage.storage.azure_blob import AzureBlobStorage
    
    def storage_factory(location: StorageLocation) -> AzureBlobStorage:
        return AzureBlobStorage.from_location(location, settings.blob_endpoint_suffix)
    
    return storage_factory


def build_pipeline(settings: RunnerSettings) -> OperationPipeline:
    """Wire the pipeline to the SQL Server, SqlPackage and Azure Blob collaborators."""
    db_engine = SqlServerEngine(
        driver=settings.odbc_driver,
        connection_timeout=settings.connection_timeout,
        trust_server_certificate=settings.trust_server_certificate,
    )
    package_engine = SqlPackageEngine(
        executable=settings.sqlpackage_path,
        timeout=settings.command_timeout,
        trust_server_certificate=settings.trust_server_certificate,
    )
    return OperationPipeline(
        settings=settings,
        db_engine=db_engine,
        package_engine=package_engine,
        storage_factory=build_storage_factory(settings),
        reporter=LoggingReporter(),
    )


def _load(ctx: click.Context, csv_path: str):
    from dbstage.cli.records import load_records
    
    try:
        settings = load_settings(ctx.obj.get('config'), ctx.obj.get('verbose', False), ctx.obj.get('log_file'))
        setup_logging(
            level=settings.log_level,
            log_file=settings.log_file,
            structured_logging=settings.structured_logging,
        )
        records = load_records(csv_path)
    except (DbStageError, ValueError, OSError, yaml.YAMLError) as e:
        console.print(f"[red]❌ {e}[/red]")
        sys.exit(EXIT_LOAD_FAILURE)
    return settings, records


@click.group(invoke_without_command=True)
@click.option('--version', is_flag=True, help='Show version information')
@click.option('--verbose', '-v', is_flag=True, help='Enable debug logging')
@click.option('--config', '-c', type=click.Path(exists=True, dir_okay=False), help='Settings file (YAML or JSON)')
@click.option('--log-file', type=click.Path(dir_okay=False), help='Write logs to this file as well')
@click.pass_context
def main(ctx: click.Context, version: bool, verbose: bool, config: Optional[str], log_file: Optional[str]):
    """
    dbstage: move SQL databases through blob storage.
    
    Runs a batch of operation records (one per CSV row), each exporting a
    database to a BACPAC or BAK artifact, staging it in a storage container
    and importing it on the destination server.
    """
    ctx.ensure_object(dict)
    ctx.obj['verbose'] = verbose
    ctx.obj['config'] = config
    ctx.obj['log_file'] = log_file
    
    if version:
        console.print(f"dbstage version {__version__}")
        sys.exit(0)
    
    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


@main.command()
@click.argument('csv_path', type=click.Path(exists=True, dir_okay=False))
@click.option('--report', '-r', type=click.Path(dir_okay=False), help='Write a JSON report to this path')
@click.option('--fail-on-error', is_flag=True, help='Exit with status 1 when any record failed')
@click.pass_context
def run(ctx: click.Context, csv_path: str, report: Optional[str], fail_on_error: bool):
    """Run every operation record in CSV_PATH."""
    settings, records = _load(ctx, csv_path)
    if not records:
        console.print("[yellow]No operation records found[/yellow]")
        return
    
    runner = BatchRunner(build_pipeline(settings), console=console)
    summary = runner.run(records)
    runner.display_summary(summary)
    
    if report:
        path = save_json_report(summary.to_dict(), report)
        console.print(f"[dim]Report written to {path}[/dim]")
    
    if fail_on_error and summary.failed:
        sys.exit(EXIT_RECORD_FAILURE)


@main.command()
@click.argument('csv_path', type=click.Path(exists=True, dir_okay=False))
@click.option('--fail-on-error', is_flag=True, help='Exit with status 1 when any record fails validation')
@click.pass_context
def validate(ctx: click.Context, csv_path: str, fail_on_error: bool):
    """Run field validation and preflight checks without moving any data."""
    settings, records = _load(ctx, csv_path)
    pipeline = build_pipeline(settings)
    preflight = pipeline.preflight
    preflight.console = console
    failures = 0
    
    for record in records:
        label = record.describe()
        if not record.has_action:
            console.print(f"[dim]⏭️  {label}: no action requested[/dim]")
            continue
        
        try:
            report = preflight.validate(record, pipeline.storage_factory)
        except ValidationError as e:
            failures += 1
            console.print(f"[red]❌ {label}: missing {', '.join(e.missing_fields)}[/red]")
            continue
        
        preflight.display_report(report)
        if report.passed:
            console.print(f"[green]✅ {label}: ready[/green]")
        else:
            failures += 1
            console.print(f"[red]❌ {label}: {report.summary()}[/red]")
    
    if fail_on_error and failures:
        sys.exit(EXIT_RECORD_FAILURE)


@main.command()
@click.option('--account', required=True, help='Storage account name')
@click.option('--container', required=True, help='Storage container name')
@click.option('--key', required=True, envvar='DBSTAGE_STORAGE_KEY', help='Storage access key')
@click.option('--database', '-d', required=True, help='Database name')
@click.option('--operation-id', '-o', help='Operation id to scope the search')
@click.option('--format', '-f', 'formats', multiple=True,
              type=click.Choice([f.value for f in ArtifactFormat], case_sensitive=False),
              help='Acceptable artifact format (repeatable, default BACPAC)')
@click.pass_context
def locate(
    ctx: click.Context,
    account: str,
    container: str,
    key: str,
    database: str,
    operation_id: Optional[str],
    formats: Tuple[str, ...]
):
    """Show the backup artifact an import would pick from a container."""
    from dbstage.storage.locator import BackupArtifactLocator
    
    try:
        settings = load_settings(ctx.obj.get('config'), ctx.obj.get('verbose', False), ctx.obj.get('log_file'))
        setup_logging(level=settings.log_level, log_file=settings.log_file)
    except (DbStageError, ValueError, OSError, yaml.YAMLError) as e:
        console.print(f"[red]❌ {e}[/red]")
        sys.exit(EXIT_LOAD_FAILURE)
    
    storage = build_storage_factory(settings)(
        StorageLocation(account=account, container=container, access_key=key)
    )
    locator = BackupArtifactLocator(storage)
    artifact_formats = [ArtifactFormat.parse(f) for f in formats] or [ArtifactFormat.BACPAC]
    
    try:
        candidates = locator.find_candidates(container, database, operation_id, artifact_formats)
    except DbStageError as e:
        console.print(f"[red]❌ {e}[/red]")
        sys.exit(EXIT_RECORD_FAILURE)
    
    if not candidates:
        console.print(f"[yellow]No artifact for {database} in {container}[/yellow]")
        sys.exit(EXIT_RECORD_FAILURE)
    
    table = Table(title=f"Candidates for {database}", show_header=True, header_style="bold magenta")
    table.add_column("", justify="center")
    table.add_column("Blob", style="cyan")
    table.add_column("Last Modified")
    table.add_column("Size", justify="right")
    for index, blob in enumerate(candidates):
        table.add_row(
            "✅" if index == 0 else "",
            blob.name,
            blob.last_modified.isoformat(),
            format_bytes(blob.size)
        )
    console.print(table)
    console.print(f"Selected: [bold]{candidates[0].name}[/bold]")


if __name__ == "__main__":
    main()
