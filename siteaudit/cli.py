"""Command-line interface for siteaudit."""

from __future__ import annotations

import asyncio
import sys

import click
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from siteaudit.core.config import get_settings
from siteaudit.core.issues import get_definition
from siteaudit.core.logging import configure_logging
from siteaudit.engines.base import Pillar, SiteType
from siteaudit.engines.scoring.freshness import calculate_freshness
from siteaudit.pipeline import AuditPipeline, AuditReport

console = Console()


def score_color(score: float) -> str:
    if score >= 80:
        return "green"
    elif score >= 60:
        return "yellow"
    elif score >= 40:
        return "orange1"
    return "red"


def score_bar(score: float, width: int = 25) -> Text:
    filled = int((score / 100) * width)
    color = score_color(score)
    bar = Text()
    bar.append("█" * filled, style=color)
    bar.append("░" * (width - filled), style="dim")
    bar.append(f" {score:.1f}/100", style=f"bold {color}")
    return bar


def normalize_input_url(url: str) -> str:
    """Accept bare hostnames like `example.com`."""
    url = url.strip()
    if "://" not in url:
        url = f"https://{url}"
    return url


def print_report(report: AuditReport) -> None:
    if not report.succeeded:
        console.print(f"\n[red]Audit failed[/red] ({report.failure_reason.value}): {report.error_message}")
        return

    score = report.score
    coverage = report.coverage
    console.print()
    console.print(Panel(
        f"[bold]{report.seed_url}[/bold]\n"
        f"[dim]{coverage.checked_pages} pages checked, {coverage.discovered_pages} discovered, "
        f"site type {report.site_type.value}, {report.duration_ms / 1000:.1f}s[/dim]",
        title="Site Audit",
        border_style="blue",
    ))

    console.print()
    console.print(f"  Overall ({score.grade}): ", end="")
    console.print(score_bar(score.overall_score))
    console.print()

    table = Table(box=box.SIMPLE, show_header=True, header_style="bold")
    table.add_column("Pillar", style="cyan")
    table.add_column("Score", justify="right")
    table.add_column("Weight", justify="right")
    table.add_column("Penalty", justify="right")
    for pillar in Pillar:
        value = score.pillars[pillar]
        weight = score.weights[pillar]
        table.add_row(
            pillar.value.replace("_", "-"),
            f"[{score_color(value)}]{value:.1f}[/]" if weight else "[dim]n/a[/dim]",
            f"{weight:.3f}",
            f"{score.pillar_penalties[pillar]:.2f}",
        )
    console.print(table)

    if score.top_issues:
        console.print("[bold]Top issues:[/bold]\n")
        by_issue = {f.issue: f for f in score.findings}
        for i, code in enumerate(score.top_issues, 1):
            finding = by_issue[code]
            console.print(
                f"  {i}. [bold]{finding.title}[/bold] "
                f"[dim]{finding.affected_pages}/{finding.checked_pages} pages, "
                f"{finding.severity.value}, -{finding.penalty:.1f}[/dim]"
            )

    if score.quick_wins:
        console.print("\n[bold]Quick wins:[/bold]\n")
        for code in score.quick_wins:
            definition = get_definition(code)
            console.print(f"  • {definition.title}")
            console.print(f"    [cyan]→ {definition.recommendation}[/cyan]")
    console.print()


@click.group()
@click.version_option(version=get_settings().APP_VERSION)
@click.option("--log-level", default=None, help="Override LOG_LEVEL")
def cli(log_level: str | None):
    """Sampled SEO health audits."""
    configure_logging(log_level)


@cli.command()
@click.argument("url")
@click.option("--profile", type=click.Choice(["smart", "full"]), default="smart", show_default=True,
              help="smart samples a bounded page set; full uses a larger budget and more concurrency")
@click.option("--budget", type=click.IntRange(min=1), default=None, help="Maximum pages to check")
@click.option("--site-type", type=click.Choice([t.value for t in SiteType]), default=None,
              help="Skip site-type detection")
@click.option("--performance-score", type=click.FloatRange(0, 100), default=None,
              help="External page-speed score (0-100)")
@click.option("--modified-dates", type=click.File("r"), default=None,
              help="File of content last-modified dates (ISO 8601, one per line) for the freshness pillar")
@click.option("--stale-after-months", type=click.IntRange(min=1), default=6, show_default=True,
              help="Content not modified for this long counts as stale")
@click.option("--json", "json_output", is_flag=True, help="Output the report as JSON")
def audit(url: str, profile: str, budget: int | None, site_type: str | None,
          performance_score: float | None, modified_dates, stale_after_months: int,
          json_output: bool):
    """Audit a site.

    \b
    Examples:
        siteaudit audit example.com
        siteaudit audit https://shop.example.com --profile full --site-type ecommerce
        siteaudit audit example.com --budget 20 --json
        siteaudit audit example.com --modified-dates dates.txt
    """
    freshness = None
    if modified_dates is not None:
        dates = [line.strip() for line in modified_dates if line.strip()]
        freshness = calculate_freshness(dates, threshold_months=stale_after_months)

    pipeline = AuditPipeline()
    run = pipeline.run(
        normalize_input_url(url),
        profile=profile,
        overrides={"sample_total_pages": budget},
        site_type=SiteType(site_type) if site_type else None,
        freshness=freshness,
        performance_score=performance_score,
    )
    if json_output:
        report = asyncio.run(run)
    else:
        with console.status(f"[bold blue]Auditing {url}...[/bold blue]"):
            report = asyncio.run(run)

    if json_output:
        click.echo(report.model_dump_json(indent=2))
    else:
        print_report(report)

    if not report.succeeded:
        sys.exit(1)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
