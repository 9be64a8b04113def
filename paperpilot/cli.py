"""paperpilot command-line interface."""

from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Optional

import typer
from rich import print as rprint
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from .config import DEFAULT_CONFIG_PATH, PaperpilotConfig, load_config, save_config
from .exceptions import PaperlessError
from .jobs import JobStatus
from .logger import configure_logging
from .services import ModificationNotFound, Services, build_services

app = typer.Typer(
    name="paperpilot",
    help="OCR jobs and rule-based workflows for Paperless-ngx.",
    no_args_is_help=True,
)

console = Console()

# Subcommands
workflows_app = typer.Typer(help="Manage and run workflows")
app.add_typer(workflows_app, name="workflows")


class State:
    config_path: Optional[Path] = None
    log_level: Optional[str] = None


state = State()


@app.callback()
def root(
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to config.json"),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override the configured log level"),
):
    state.config_path = config_path
    state.log_level = log_level


def _load() -> PaperpilotConfig:
    cfg = load_config(state.config_path)
    configure_logging(state.log_level or cfg.logging.level)
    return cfg


def _services() -> Services:
    return build_services(_load())


# === Server Command ===


@app.command()
def serve(
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Port to run on"),
    host: Optional[str] = typer.Option(None, "--host", "-h", help="Host to bind to"),
):
    """Start the paperpilot API server."""
    from .server import run_server

    cfg = _load()
    services = build_services(cfg)
    host = host or cfg.server.host
    port = port or cfg.server.port

    rprint("\n[bold green]paperpilot[/bold green]")
    rprint("─" * 50)
    rprint(f"[cyan]API:[/cyan]        http://{host}:{port}/api/health")
    rprint(f"[cyan]Paperless:[/cyan]  {cfg.paperless.base_url}")
    rprint(f"[cyan]Data dir:[/cyan]   {cfg.data_dir}")
    rprint("─" * 50)
    rprint("[dim]Press Ctrl+C to stop the server.[/dim]\n")

    run_server(services, host=host, port=port, token=cfg.server.token)


# === Configuration ===


@app.command()
def config(
    init: bool = typer.Option(False, "--init", help="Initialize configuration"),
    show: bool = typer.Option(False, "--show", help="Show current configuration"),
):
    """Manage paperpilot configuration."""
    config_path = state.config_path or DEFAULT_CONFIG_PATH

    if init:
        rprint("[bold]paperpilot Configuration Setup[/bold]\n")
        cfg = PaperpilotConfig()

        rprint("[cyan]Paperless-ngx[/cyan]")
        cfg.paperless.base_url = typer.prompt("Base URL", default=cfg.paperless.base_url)

        rprint("\n[cyan]AI Configuration (titles and tags)[/cyan]")
        cfg.ai.provider = typer.prompt("AI provider (openai/anthropic)", default=cfg.ai.provider)
        cfg.ai.model = typer.prompt("Model", default=cfg.ai.model)

        rprint("\n[cyan]OCR Configuration[/cyan]")
        cfg.ocr.backend = typer.prompt("OCR backend (llm/tesseract)", default=cfg.ocr.backend)
        if cfg.ocr.backend == "llm":
            cfg.ocr.vision_provider = typer.prompt("Vision provider", default=cfg.ocr.vision_provider)
            cfg.ocr.vision_model = typer.prompt("Vision model", default=cfg.ocr.vision_model)

        cfg.jobs.workers = int(typer.prompt("OCR workers", default=str(cfg.jobs.workers)))

        save_config(cfg, config_path)
        rprint(f"\n[green]Configuration saved to {config_path}[/green]")
        rprint("[dim]Set PAPERPILOT_PAPERLESS_API_TOKEN and PAPERPILOT_AI_API_KEY in the environment.[/dim]")

    elif show:
        if config_path.exists():
            rprint(json.dumps(json.loads(config_path.read_text()), indent=2))
        else:
            rprint("[yellow]No configuration found. Run 'paperpilot config --init' to create one.[/yellow]")
    else:
        rprint("Use --init to create configuration or --show to display it.")


# === OCR ===


@app.command()
def ocr(
    document_id: int = typer.Argument(..., help="Paperless document ID to OCR"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the text to a file"),
):
    """OCR a document through the job queue and print the text."""
    services = _services()
    services.start()
    try:
        job_id = services.ocr_jobs.submit_job(document_id)
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
        ) as progress:
            task = progress.add_task(f"OCR document {document_id}...", total=None)
            while True:
                job = services.ocr_jobs.get_job(job_id)
                if job is None or job.status.is_terminal:
                    break
                progress.update(task, description=f"OCR document {document_id}: {job.pages_done} pages done")
                time.sleep(0.5)
    finally:
        services.stop()

    if job is None or job.status is not JobStatus.COMPLETED:
        rprint(f"[red]✗ OCR failed: {job.result if job else 'job lost'}[/red]")
        raise typer.Exit(1)

    rprint(f"[green]✓ OCR complete[/green] ({job.pages_done} pages)")
    if output:
        output.write_text(job.result)
        rprint(f"  Written to {output}")
    else:
        console.print(job.result, markup=False)


# === Workflow Commands ===


@workflows_app.command("list")
def workflows_list():
    """List stored workflows in run order."""
    workflows = _services().list_workflows()
    if not workflows:
        rprint("[yellow]No workflows defined.[/yellow]")
        return

    table = Table(title="Workflows")
    table.add_column("Order", justify="right")
    table.add_column("Name", style="cyan")
    table.add_column("Triggers")
    table.add_column("Actions")
    for w in workflows:
        order = "manual" if w.is_manual_review else str(w.run_order)
        triggers = ", ".join(f"{t.match_action} {t.match_data}" for t in w.triggers)
        actions = " → ".join(a.action_type for a in w.actions)
        table.add_row(order, w.name, triggers, actions)
    console.print(table)


@workflows_app.command("import")
def workflows_import(
    file: Path = typer.Argument(..., exists=True, readable=True, help="JSON file with a list of workflows"),
):
    """Replace all stored workflows with those in FILE."""
    data = json.loads(file.read_text())
    if not isinstance(data, list):
        rprint("[red]Expected a JSON list of workflows[/red]")
        raise typer.Exit(1)
    workflows = _services().replace_workflows(data)
    rprint(f"[green]✓ Imported {len(workflows)} workflows[/green]")


@workflows_app.command("run")
def workflows_run():
    """Run every automatic workflow once."""
    services = _services()
    with console.status("Running workflows..."):
        result = services.workflows.run()

    if result.error is not None:
        rprint(f"[red]✗ Workflow run aborted: {result.error}[/red]")
        raise typer.Exit(1)

    rprint(f"[green]✓ {result.processed} documents processed[/green]")
    for skipped in result.skipped:
        rprint(f"  [yellow]skipped[/yellow] document {skipped.document_id} ({skipped.workflow}): {skipped.reason}")


# === History ===


@app.command()
def history(
    undo: Optional[int] = typer.Option(None, "--undo", help="Undo the modification with this ID"),
    limit: int = typer.Option(50, "--limit", "-l", help="Max records to show"),
):
    """Show (or undo) changes written to Paperless."""
    services = _services()

    if undo is not None:
        try:
            record = services.undo_modification(undo)
        except ModificationNotFound as e:
            rprint(f"[red]{e}[/red]")
            raise typer.Exit(1)
        except PaperlessError as e:
            rprint(f"[red]Could not restore modification {undo}: {e}[/red]")
            raise typer.Exit(1)
        rprint(f"[green]✓ Restored {record.mod_field} of document {record.document_id}[/green]")
        return

    records = services.list_modifications()[:limit]
    if not records:
        rprint("[yellow]No modifications recorded.[/yellow]")
        return

    table = Table(title="Modification history")
    table.add_column("ID", justify="right")
    table.add_column("Date")
    table.add_column("Document", justify="right")
    table.add_column("Field", style="cyan")
    table.add_column("New value")
    table.add_column("Undone")
    for r in records:
        table.add_row(
            str(r.id),
            r.date_changed.strftime("%Y-%m-%d %H:%M") if r.date_changed else "",
            str(r.document_id),
            r.mod_field,
            (r.new_value or "")[:60],
            "yes" if r.undone else "",
        )
    console.print(table)


# === Main Entry Point ===


def main():
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
