"""CLI commands using Typer."""

import asyncio
import json
import logging
import uuid
from datetime import timedelta
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from src.automation.exceptions import AutofillError
from src.automation.execution_engine import (
    ExecutionConfig,
    build_engine,
    load_execution_config,
    save_execution_config,
)
from src.automation.models import ProfileData
from src.automation.resource_monitor import scan_system
from src.automation.session import ExecutionSession, ResultStatus, SessionConfig
from src.automation.template_repository import FileTemplateRepository, template_summary
from src.browser_service.models import BrowserConfig
from src.browser_service.pool import BrowserPool
from src.config import settings

app = typer.Typer(
    name="autofill",
    help="Form detection and profile-driven form filling CLI",
    add_completion=False,
)
templates_app = typer.Typer(help="Manage stored form templates", add_completion=False)
app.add_typer(templates_app, name="templates")

console = Console()

RESULT_STYLES = {
    ResultStatus.SUCCESS: "green",
    ResultStatus.PARTIAL: "yellow",
    ResultStatus.FAILURE: "red",
    ResultStatus.SKIPPED: "dim",
}


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else settings.log_level.upper(),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


def read_profile(path: Path) -> ProfileData:
    """Load a profile from a JSON file."""
    if not path.exists():
        console.print(f"[red]Error:[/red] Profile file not found: {path}")
        raise typer.Exit(1)
    try:
        return ProfileData.model_validate_json(path.read_text(encoding="utf-8"))
    except ValueError as e:
        console.print(f"[red]Error:[/red] Invalid profile {path}: {e}")
        raise typer.Exit(1)


def parse_urls(value: str) -> list[str]:
    """Comma separated URLs, or a file with one URL per line."""
    path = Path(value)
    if path.is_file():
        lines = path.read_text(encoding="utf-8").splitlines()
    else:
        lines = value.split(",")
    return [line.strip() for line in lines if line.strip() and not line.strip().startswith("#")]


def build_pool(headless: bool | None = None) -> BrowserPool:
    config = BrowserConfig.from_settings(settings)
    if headless is not None:
        config.headless = headless
    return BrowserPool(config)


@app.command()
def execute(
    profile_path: Annotated[Path, typer.Option("--profile", "-p", help="Profile JSON file")],
    urls: Annotated[
        str, typer.Option("--urls", "-u", help="Comma separated URLs or a file of URLs")
    ],
    concurrency: Annotated[
        int | None, typer.Option("--concurrency", "-c", min=1, help="Max parallel URLs")
    ] = None,
    headless: Annotated[
        bool, typer.Option("--headless/--no-headless", help="Run browsers headless")
    ] = True,
    timeout: Annotated[
        float | None, typer.Option("--timeout", "-t", help="Seconds per URL attempt")
    ] = None,
    submit: Annotated[bool, typer.Option("--submit", help="Submit forms after filling")] = False,
    config_path: Annotated[
        Path | None, typer.Option("--config", help="Execution config saved by 'scan --save'")
    ] = None,
    output: Annotated[Path | None, typer.Option("--output", "-o", help="Write session JSON")] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Debug logging")] = False,
):
    """
    Fill forms on a list of URLs with a profile.

    Example:
        autofill execute --profile ./john.json --urls "https://a.example/signup,https://b.example/join"
    """
    configure_logging(verbose)
    profile = read_profile(profile_path)
    url_list = parse_urls(urls)
    if not url_list:
        console.print("[red]Error:[/red] No URLs given")
        raise typer.Exit(1)

    engine_config = (
        load_execution_config(config_path) if config_path else ExecutionConfig.from_settings(settings)
    )
    if concurrency:
        engine_config.max_concurrency = concurrency

    session = ExecutionSession(
        id=str(uuid.uuid4()),
        profile_id=profile.id,
        profile_name=profile.full_name,
        urls=url_list,
        config=SessionConfig(
            max_concurrency=concurrency,
            timeout=timeout,
            submit_forms=submit,
        ),
    )

    console.print(
        Panel(
            f"[bold]Filling {len(url_list)} URLs[/bold]\n\n"
            f"Profile: {profile.full_name} ({profile.email})\n"
            f"Concurrency: {engine_config.max_concurrency}\n"
            f"Headless: {headless}\n"
            f"Submit: {submit}",
            title="Autofill - Execute",
        )
    )

    async def run_session() -> ExecutionSession:
        pool = build_pool(headless)
        await pool.start()
        repository = FileTemplateRepository(settings.templates_dir)
        engine = build_engine(pool, repository, settings, engine_config)
        await engine.start()
        try:
            return await engine.execute_session(session, profile)
        finally:
            await engine.close()
            await pool.stop()

    try:
        result = asyncio.run(run_session())
    except AutofillError as e:
        console.print(f"\n[red]Execution failed:[/red] {e}")
        raise typer.Exit(1)

    table = Table(title=f"Session {result.id}")
    table.add_column("URL")
    table.add_column("Status")
    table.add_column("Fields", justify="right")
    table.add_column("Time", justify="right")
    table.add_column("Error")
    for item in result.results:
        style = RESULT_STYLES.get(item.status, "")
        table.add_row(
            item.url,
            f"[{style}]{item.status.value}[/{style}]",
            f"{item.filled_fields}/{item.total_fields}",
            f"{item.execution_time:.1f}s",
            item.error_message,
        )
    console.print(table)

    console.print(
        f"\n[bold]Status:[/bold] {result.status.value}  "
        f"[bold]Success rate:[/bold] {result.get_success_rate():.0f}%  "
        f"[bold]Duration:[/bold] {result.get_duration().total_seconds():.1f}s"
    )

    if output:
        output.write_text(result.model_dump_json(indent=2), encoding="utf-8")
        console.print(f"\n[green]Session saved to:[/green] {output}")

    if result.errors:
        raise typer.Exit(1)


@app.command()
def analyze(
    url: Annotated[str, typer.Argument(help="Page to analyze")],
    save: Annotated[bool, typer.Option("--save", help="Store the best form as a template")] = False,
    headless: Annotated[
        bool, typer.Option("--headless/--no-headless", help="Run browser headless")
    ] = True,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Debug logging")] = False,
):
    """
    Detect and classify the forms on a page.

    Example:
        autofill analyze https://example.com/signup --save
    """
    configure_logging(verbose)

    async def run_analysis():
        pool = build_pool(headless)
        await pool.start()
        repository = FileTemplateRepository(settings.templates_dir)
        engine = build_engine(pool, repository, settings)
        try:
            analysis = await engine.analyze_page(url)
            template = None
            if save and analysis.forms:
                detector = engine.profile_filler.detector
                template = detector.generate_form_template(analysis.forms[0], url)
                await repository.save(template)
            return analysis, template
        finally:
            await pool.stop()

    console.print(f"[dim]Analyzing {url}...[/dim]")
    try:
        analysis, template = asyncio.run(run_analysis())
    except AutofillError as e:
        console.print(f"\n[red]Analysis failed:[/red] {e}")
        raise typer.Exit(1)

    if not analysis.forms:
        console.print("[yellow]No forms found above the confidence threshold[/yellow]")
        return

    console.print(
        Panel(
            f"Forms: {len(analysis.forms)}\n"
            f"Fields: {analysis.total_fields}\n"
            f"Confidence: {analysis.confidence:.0f}\n"
            f"Time: {analysis.analysis_time:.2f}s",
            title="Autofill - Analysis",
        )
    )
    for form in analysis.forms:
        console.print(
            f"\n[bold]Form {form.index}[/bold] {form.form_type.value} "
            f"[dim](confidence {form.confidence:.0f}, {form.selector})[/dim]"
        )
        for field in form.fields:
            marker = "[red]*[/red]" if field.required else " "
            console.print(f"  {marker} {field.name or field.label} [dim]{field.type} {field.selector}[/dim]")

    if template:
        console.print(f"\n[green]Template saved:[/green] {template.id}")


@app.command()
def scan(
    save: Annotated[
        Path | None, typer.Option("--save", help="Write a recommended execution config here")
    ] = None,
):
    """Inspect the machine and recommend concurrency limits."""
    system = scan_system()
    console.print(Panel(system.summary(), title="Autofill - System"))

    if save:
        config = ExecutionConfig.from_settings(settings)
        config.max_concurrency = system.optimal_sites
        config.thresholds.max_browsers = system.max_sites
        save_execution_config(config, save)
        console.print(f"\n[green]Execution config saved to:[/green] {save}")


@app.command()
def serve(
    host: Annotated[str, typer.Option("--host", help="Bind address")] = settings.api_host,
    port: Annotated[int, typer.Option("--port", "-p", help="Port for the API")] = settings.api_port,
):
    """
    Start the HTTP API.

    Example:
        autofill serve --port 8000
    """
    import uvicorn

    console.print(
        Panel(
            f"[bold]Starting Autofill API[/bold]\n\n"
            f"Host: {host}\n"
            f"Port: {port}\n\n"
            f"Press Ctrl+C to stop",
            title="Autofill - API",
        )
    )
    uvicorn.run("src.main:app", host=host, port=port, reload=False)


@app.command()
def version():
    """Show version information."""
    console.print("[bold]Autofill Engine[/bold] v0.1.0")
    console.print("Form detection and profile-driven form filling")


@app.command()
def info():
    """Show configuration information."""
    console.print(Panel("[bold]Configuration[/bold]", title="Autofill"))
    console.print(f"  Environment: {settings.app_env.value}")
    console.print(f"  Debug: {settings.debug}")
    console.print(f"  Templates: {settings.templates_dir}")
    console.print(f"  Screenshots: {settings.screenshot_dir}")
    console.print(f"  Browsers: {settings.browser_max_browsers} (headless={settings.browser_headless})")
    concurrency = settings.engine_max_concurrency or "auto"
    console.print(f"  Concurrency: {concurrency} (auto-adjust={settings.engine_auto_adjust})")


# ============================================================================
# Template Commands
# ============================================================================


@templates_app.command("list")
def list_templates(
    domain: Annotated[str | None, typer.Option("--domain", "-d", help="Filter by domain")] = None,
    limit: Annotated[int, typer.Option("--limit", "-n", min=1, help="Max templates")] = 50,
):
    """List stored templates, most recently updated first."""
    repository = FileTemplateRepository(settings.templates_dir)

    async def load():
        if domain:
            return await repository.get_templates_by_domain(domain)
        return await repository.list_templates(limit=limit)

    templates = asyncio.run(load())
    if not templates:
        console.print("[yellow]No templates stored[/yellow]")
        return

    table = Table(title="Templates")
    for column in ("ID", "Domain", "Type", "Fields", "Success", "Version", "Updated"):
        table.add_column(column)
    for template in templates[:limit]:
        summary = template_summary(template)
        table.add_row(
            summary["id"],
            summary["domain"],
            summary["form_type"],
            str(summary["fields"]),
            f"{summary['success_rate']:.0f}%",
            str(summary["version"]),
            summary["last_updated"][:19],
        )
    console.print(table)


@templates_app.command("export")
def export_templates(
    path: Annotated[Path, typer.Argument(help="Destination JSON file")],
):
    """Export every template to a JSON file."""
    repository = FileTemplateRepository(settings.templates_dir)
    count = asyncio.run(repository.export_templates(path))
    console.print(f"[green]Exported {count} templates to:[/green] {path}")


@templates_app.command("import")
def import_templates(
    path: Annotated[Path, typer.Argument(help="JSON file written by 'templates export'")],
):
    """Import templates from a JSON file, skipping invalid entries."""
    if not path.exists():
        console.print(f"[red]Error:[/red] File not found: {path}")
        raise typer.Exit(1)
    repository = FileTemplateRepository(settings.templates_dir)
    try:
        count = asyncio.run(repository.import_templates(path))
    except json.JSONDecodeError as e:
        console.print(f"[red]Error:[/red] Invalid JSON in {path}: {e}")
        raise typer.Exit(1)
    console.print(f"[green]Imported {count} templates from:[/green] {path}")


@templates_app.command("cleanup")
def cleanup_templates(
    max_age_days: Annotated[
        int, typer.Option("--max-age-days", min=1, help="Remove templates older than this")
    ] = settings.template_ttl_days,
):
    """Delete templates not updated within the given number of days."""
    repository = FileTemplateRepository(settings.templates_dir)
    removed = asyncio.run(repository.cleanup_old_templates(timedelta(days=max_age_days)))
    console.print(f"[green]Removed {removed} templates[/green] older than {max_age_days} days")


if __name__ == "__main__":
    app()
