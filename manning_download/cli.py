"""Command-line entry point."""

from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .browser import open_browser
from .config import CONFIG_FILE, Settings, load_config, validate_credentials
from .errors import ManningDownloadError
from .events import configure_logging
from .models import Credentials, RunSummary
from .orchestrator import Orchestrator

console = Console()

app = typer.Typer(
    name="manning-download",
    help="Download the PDF and EPUB files of every book in your Manning account.",
    rich_markup_mode="rich",
    pretty_exceptions_show_locals=False,
    add_completion=False,
)


def prompt_credentials() -> Credentials:
    """Ask for email and password. Only called when the saved session is unusable."""
    identifier = typer.prompt("Enter your email")
    secret = typer.prompt("Enter your password", hide_input=True)
    return validate_credentials(identifier, secret)


def print_summary(summary: RunSummary) -> None:
    table = Table(title="Download summary")
    table.add_column("Book", style="cyan")
    table.add_column("Downloaded", justify="right", style="green")
    table.add_column("Failed", justify="right", style="red")
    for title, counts in summary.by_entry():
        table.add_row(escape(title), str(counts["success"]), str(counts["failed"]))
    for title in summary.skipped:
        table.add_row(f"{escape(title)} [dim](no formats)[/dim]", "-", "-")
    console.print(table)

    status = "bold green" if summary.failed == 0 else "bold yellow"
    console.print(
        f"[{status}]{summary.succeeded} files downloaded, {summary.failed} failed "
        f"across {summary.entries} books.[/{status}]"
    )


@app.command()
def main(
    config_file: Path = typer.Option(Path(CONFIG_FILE), "--config", "-c", help="JSON config file."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Download directory."),
    headless: Optional[bool] = typer.Option(None, "--headless/--headed", help="Hide the browser window."),
    formats: Optional[List[str]] = typer.Option(None, "--format", "-f", help="PDF or EPUB, repeatable."),
    limit: Optional[int] = typer.Option(None, "--limit", "-n", min=1, help="Only process the first N books."),
    generic_links: bool = typer.Option(
        False,
        "--generic-links",
        help="Treat download links without a format marker as serving both PDF and EPUB.",
    ),
    verbose: int = typer.Option(0, "--verbose", "-v", count=True, help="Show debug events."),
    version: bool = typer.Option(False, "--version", help="Show version and exit.", is_eager=True),
):
    """Automated ebook downloader for Manning Publications."""
    if version:
        console.print(f"[bold]manning-download[/bold] version [cyan]{__version__}[/cyan]")
        raise typer.Exit()

    try:
        config = load_config(config_file, prompt=None if output else typer.prompt)
        if output:
            config["download_directory"] = str(output)
        if headless is not None:
            config["headless"] = headless
        if formats:
            config["formats"] = formats
        if limit:
            config["max_entries"] = limit
        if generic_links:
            config["generic_link_fallback"] = True
        settings = Settings.from_dict(config)
        settings.download_directory.mkdir(parents=True, exist_ok=True)
        events = configure_logging(console, settings.log_directory, verbose=verbose > 0)

        console.print("\n[bold blue]📚 Automated Ebook Downloader[/bold blue]\n")
        with open_browser(settings, events) as browser:
            summary = Orchestrator(browser).run(prompt_credentials)
    except ManningDownloadError as e:
        console.print(f"\n[bold red]❌ Error occurred:[/bold red] {escape(str(e))}")
        raise typer.Exit(code=1)

    print_summary(summary)
    console.print(f"[cyan]📁 Files saved to: {settings.download_directory}[/cyan]")
