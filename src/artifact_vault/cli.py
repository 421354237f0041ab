"""
Artifact Vault CLI - Command-line interface.

Upload, download, merge and manage run artifacts from the terminal.
"""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from artifact_vault.artifacts.models import (
    ById,
    ByName,
    ByPattern,
    CallerContext,
    DownloadResult,
    IfNoFilesFound,
    OtherRepository,
    OtherRun,
    SameRun,
    Scope,
    UploadResult,
)
from artifact_vault.artifacts.service import ArtifactService
from artifact_vault.auth.tokens import ADMIN_PERMISSION, ANY_REPOSITORY, READ_PERMISSION
from artifact_vault.core.config import load_settings
from artifact_vault.core.exceptions import ArtifactVaultError, format_exception

app = typer.Typer(
    name="artifact-vault",
    help="Artifact Vault - run-scoped artifact storage and retrieval",
    no_args_is_help=True,
)
console = Console()

RUN_ID_OPTION = typer.Option(None, "--run-id", envvar="AV_RUN_ID", help="Run ID of the calling job")
REPOSITORY_OPTION = typer.Option(
    None, "--repository-id", envvar="AV_REPOSITORY_ID", help="Repository ID of the calling job"
)
TOKEN_OPTION = typer.Option(
    None, "--token", envvar="AV_CAPABILITY_TOKEN", help="Capability token for other runs"
)


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(
        None, "--config", "-c", envvar="AV_CONFIG_FILE", help="YAML settings file"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Artifact Vault command-line interface."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    ctx.obj = {"config": config}


@contextmanager
def _handle_errors() -> Iterator[None]:
    """Print domain errors in red and exit with status 1."""
    try:
        yield
    except ArtifactVaultError as e:
        console.print(f"[red]{type(e).__name__}: {format_exception(e)}[/red]")
        raise typer.Exit(1)


def _service(ctx: typer.Context) -> ArtifactService:
    config = (ctx.obj or {}).get("config")
    return ArtifactService(load_settings(config))


def _caller(run_id: Optional[int], repository_id: Optional[str]) -> CallerContext:
    if run_id is None or not repository_id:
        console.print("[red]--run-id and --repository-id (or AV_RUN_ID / AV_REPOSITORY_ID) are required[/red]")
        raise typer.Exit(1)
    return CallerContext(run_id=run_id, repository_id=repository_id)


def _scope(source_run: Optional[int], source_repository: Optional[str]) -> Scope:
    if source_run is None:
        if source_repository:
            console.print("[red]--source-run is required with --source-repository[/red]")
            raise typer.Exit(1)
        return SameRun()
    if not source_repository:
        return OtherRun(source_run)
    return OtherRepository(source_repository, source_run)


def _print_upload(result: UploadResult, title: str) -> None:
    console.print(
        Panel(
            f"[bold]ID:[/bold] {result.artifact_id}\n"
            f"[bold]Name:[/bold] {result.name}\n"
            f"[bold]Files:[/bold] {result.file_count}\n"
            f"[bold]Size:[/bold] {result.size_bytes} bytes\n"
            f"[bold]Digest:[/bold] {result.digest}\n"
            f"[bold]URL:[/bold] {result.url}",
            title=title,
            border_style="green",
        )
    )
    for warning in result.warnings:
        console.print(f"[yellow]Warning: {warning}[/yellow]")


def _print_download(result: DownloadResult) -> None:
    console.print(
        f"[green]Extracted {len(result.artifact_ids)} artifact(s), "
        f"{len(result.files_written)} file(s) into {result.destination}[/green]"
    )
    for warning in result.warnings:
        console.print(f"[yellow]Warning: {warning}[/yellow]")


@app.command()
def upload(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Artifact name"),
    patterns: list[str] = typer.Argument(..., help="Include globs, in order"),
    workspace: Path = typer.Option(Path("."), "--workspace", "-w", help="Workspace root"),
    exclude: Optional[list[str]] = typer.Option(None, "--exclude", "-x", help="Exclude glob (repeatable)"),
    retention_days: Optional[int] = typer.Option(None, "--retention-days", help="Retention in days (1-90)"),
    compression_level: int = typer.Option(6, "--compression-level", help="Deflate level (0-9)"),
    if_no_files_found: IfNoFilesFound = typer.Option(
        IfNoFilesFound.WARN, "--if-no-files-found", help="Empty match policy"
    ),
    overwrite: bool = typer.Option(False, "--overwrite", help="Replace an existing artifact"),
    include_hidden: bool = typer.Option(False, "--include-hidden", help="Include dot-files"),
    run_id: Optional[int] = RUN_ID_OPTION,
    repository_id: Optional[str] = REPOSITORY_OPTION,
):
    """Package workspace files into a new artifact."""
    caller = _caller(run_id, repository_id)
    with _handle_errors():
        service = _service(ctx)
        result = service.upload(
            caller,
            name,
            patterns,
            workspace,
            exclude_patterns=exclude or [],
            retention_days=retention_days,
            compression_level=compression_level,
            if_no_files_found=if_no_files_found,
            overwrite=overwrite,
            include_hidden=include_hidden,
        )
    _print_upload(result, "Artifact uploaded")


@app.command()
def download(
    ctx: typer.Context,
    name: Optional[list[str]] = typer.Option(None, "--name", "-n", help="Artifact name (repeatable)"),
    artifact_id: Optional[list[int]] = typer.Option(None, "--id", help="Artifact ID (repeatable)"),
    pattern: Optional[str] = typer.Option(None, "--pattern", "-p", help="Glob over artifact names"),
    destination: Path = typer.Option(Path("."), "--destination", "-d", help="Destination directory"),
    merge_multiple: bool = typer.Option(False, "--merge", "-m", help="Extract all matches together"),
    source_run: Optional[int] = typer.Option(None, "--source-run", help="Download from another run"),
    source_repository: Optional[str] = typer.Option(
        None, "--source-repository", help="Download from another repository"
    ),
    token: Optional[str] = TOKEN_OPTION,
    run_id: Optional[int] = RUN_ID_OPTION,
    repository_id: Optional[str] = REPOSITORY_OPTION,
):
    """Download artifacts by name, ID or pattern."""
    caller = _caller(run_id, repository_id)
    scope = _scope(source_run, source_repository)
    selectors = [ByName(n) for n in name or []] + [ById(i) for i in artifact_id or []]

    if pattern and selectors:
        console.print("[red]--pattern cannot be combined with --name or --id[/red]")
        raise typer.Exit(1)
    if not pattern and not selectors:
        console.print("[red]One of --name, --id or --pattern is required[/red]")
        raise typer.Exit(1)

    with _handle_errors():
        service = _service(ctx)
        if pattern:
            result = service.download(
                caller, ByPattern(pattern), destination, scope=scope, token=token, merge_multiple=merge_multiple
            )
        elif len(selectors) == 1:
            result = service.download(
                caller, selectors[0], destination, scope=scope, token=token, merge_multiple=merge_multiple
            )
        else:
            result = service.download_each(
                caller, selectors, destination, scope=scope, token=token, merge_multiple=merge_multiple
            )
    _print_download(result)


@app.command()
def merge(
    ctx: typer.Context,
    artifact_ids: list[int] = typer.Argument(..., help="Artifact IDs to combine, in order"),
    new_name: str = typer.Option(..., "--name", "-n", help="Name of the merged artifact"),
    retention_days: Optional[int] = typer.Option(None, "--retention-days", help="Retention in days (1-90)"),
    compression_level: int = typer.Option(6, "--compression-level", help="Deflate level (0-9)"),
    separate_directories: bool = typer.Option(
        False, "--separate-directories", help="Place each source under its own name"
    ),
    delete_merged: bool = typer.Option(False, "--delete-merged", help="Retire the sources afterwards"),
    overwrite: bool = typer.Option(False, "--overwrite", help="Replace an existing artifact"),
    run_id: Optional[int] = RUN_ID_OPTION,
    repository_id: Optional[str] = REPOSITORY_OPTION,
):
    """Merge artifacts of the current run into a new artifact."""
    caller = _caller(run_id, repository_id)
    with _handle_errors():
        service = _service(ctx)
        result = service.merge(
            caller,
            artifact_ids,
            new_name,
            retention_days=retention_days,
            compression_level=compression_level,
            separate_directories=separate_directories,
            delete_merged=delete_merged,
            overwrite=overwrite,
        )
    _print_upload(result, "Artifacts merged")


@app.command("list")
def list_artifacts(
    ctx: typer.Context,
    pattern: Optional[str] = typer.Option(None, "--pattern", "-p", help="Glob over artifact names"),
    include_expired: bool = typer.Option(False, "--all", "-a", help="Include retired artifacts"),
    source_run: Optional[int] = typer.Option(None, "--source-run", help="List another run"),
    source_repository: Optional[str] = typer.Option(
        None, "--source-repository", help="List a run of another repository"
    ),
    token: Optional[str] = TOKEN_OPTION,
    run_id: Optional[int] = RUN_ID_OPTION,
    repository_id: Optional[str] = REPOSITORY_OPTION,
):
    """List artifacts of a run."""
    caller = _caller(run_id, repository_id)
    scope = _scope(source_run, source_repository)
    with _handle_errors():
        service = _service(ctx)
        records = service.list_artifacts(
            caller, scope, token, pattern=pattern, include_expired=include_expired
        )

    table = Table(title=f"Artifacts ({len(records)})")
    table.add_column("ID", style="cyan", justify="right")
    table.add_column("Name", style="magenta")
    table.add_column("State")
    table.add_column("Files", justify="right")
    table.add_column("Size", justify="right")
    table.add_column("Created")
    table.add_column("Expires")

    for record in records:
        state_color = "green" if record.is_sealed else "dim"
        table.add_row(
            str(record.id),
            record.name,
            f"[{state_color}]{record.state.value}[/{state_color}]",
            str(record.file_count),
            str(record.size_bytes),
            record.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            record.retention_expiry.strftime("%Y-%m-%d"),
        )

    console.print(table)


@app.command()
def delete(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Artifact name"),
    run_id: Optional[int] = RUN_ID_OPTION,
    repository_id: Optional[str] = REPOSITORY_OPTION,
):
    """Retire an artifact of the current run."""
    caller = _caller(run_id, repository_id)
    with _handle_errors():
        record = _service(ctx).delete_artifact(caller, name)
    console.print(f"[green]Deleted artifact '{record.name}' (id={record.id})[/green]")


@app.command()
def reap(ctx: typer.Context):
    """Run one retention pass."""
    with _handle_errors():
        result = _service(ctx).reap()

    console.print(
        Panel(
            f"[bold]Expired:[/bold] {result.expired_count}\n"
            f"[bold]Reclaimed:[/bold] {result.reclaimed_bytes} bytes\n"
            f"[bold]Purged:[/bold] {result.purged_count}\n"
            f"[bold]Discarded uploads:[/bold] {result.discarded_pending_count}",
            title="Retention pass",
            border_style="green" if result.success else "red",
        )
    )
    for error in result.errors:
        console.print(f"[red]{error}[/red]")
    if not result.success:
        raise typer.Exit(1)


@app.command()
def token(
    ctx: typer.Context,
    subject: str = typer.Option("", "--subject", "-s", help="Who the token is issued to"),
    repository: str = typer.Option(..., "--repository", "-r", help="Repository granted, or '*'"),
    runs: Optional[list[int]] = typer.Option(None, "--run", help="Run granted (repeatable, default all)"),
    admin: bool = typer.Option(False, "--admin", help="Also grant administrative access"),
    identity: bool = typer.Option(False, "--identity", help="Issue a run token for one --run instead"),
    expires_in: int = typer.Option(3600, "--expires-in", help="Lifetime in seconds"),
):
    """Issue a capability token, or with --identity the run token a job calls the API with."""
    with _handle_errors():
        service = _service(ctx)
    try:
        if identity:
            if not runs or len(runs) != 1 or repository == ANY_REPOSITORY:
                raise ValueError("--identity needs exactly one --run and a concrete --repository")
            issued = service.issue_run_token(repository, runs[0], expiration_seconds=expires_in)
        else:
            if not subject:
                raise ValueError("--subject is required for capability tokens")
            issued = service.issue_token(
                subject,
                repository,
                runs=runs or None,
                permissions=[READ_PERMISSION] + ([ADMIN_PERMISSION] if admin else []),
                expiration_seconds=expires_in,
            )
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    console.print(issued, soft_wrap=True)


@app.command()
def stats(ctx: typer.Context):
    """Show registry statistics."""
    with _handle_errors():
        data = _service(ctx).stats()

    table = Table(title="Registry Statistics")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    for key, value in data.items():
        table.add_row(key.replace("_", " "), str(value))
    console.print(table)


if __name__ == "__main__":
    app()
