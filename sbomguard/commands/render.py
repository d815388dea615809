"""Rich rendering of analyses for the CLI."""
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from sbomguard.core.logging import console
from sbomguard.models.analysis import Analysis
from sbomguard.models.analysis import AnalysisSummary
from sbomguard.models.analysis import RiskLevel
from sbomguard.models.tier import UsageSnapshot

RISK_STYLES = {
    RiskLevel.NONE: 'green',
    RiskLevel.LOW: 'cyan',
    RiskLevel.MEDIUM: 'yellow',
    RiskLevel.HIGH: 'red',
    RiskLevel.CRITICAL: 'bold magenta',
}


def _risk(level: RiskLevel, score: float) -> str:
    style = RISK_STYLES.get(level, 'white')
    return f"[{style}]{score:.2f} ({level})[/{style}]"


def render_analysis(analysis: Analysis, show_clean: bool = False) -> None:
    lines = [
        f"ID: [bold]{analysis.id}[/bold]",
        f"Tenant: {analysis.tenant_id}" + (f"  Vendor: {analysis.vendor_id}" if analysis.vendor_id else ''),
        f"Source: {analysis.source_filename} ({analysis.source_format or 'unknown'})",
        f"Status: [bold]{analysis.status}[/bold]",
        f"Components: {analysis.total_components:,} (skipped {analysis.skipped_components:,})",
        f"Vulnerabilities: {analysis.total_vulnerabilities:,}",
        f"Overall risk: {_risk(analysis.risk_level, analysis.overall_risk_score)}",
    ]
    if analysis.error:
        lines.append(f"[red]Error ({analysis.error_kind}): {escape(analysis.error)}[/red]")
    console.print(Panel.fit('\n'.join(lines), title='SBOM Analysis'))

    table = Table(title='Component Risk')
    table.add_column('Component', style='cyan')
    table.add_column('Ecosystem', style='dim')
    table.add_column('Score', justify='right')
    table.add_column('Findings', style='magenta')
    rows = sorted(analysis.component_results, key=lambda r: r.risk_score, reverse=True)
    for result in rows:
        if not result.findings and not result.lookup_incomplete and not show_clean:
            continue
        findings = ', '.join(f"{f.id} ({f.severity})" for f in result.findings) or '-'
        if result.lookup_incomplete:
            findings += ' [yellow](lookup incomplete)[/yellow]'
        table.add_row(
            result.component.display_name,
            result.component.ecosystem or '-',
            f"{result.risk_score:.2f}",
            findings,
        )
    if table.row_count:
        console.print(table)
    elif analysis.component_results:
        console.print('[green]No known vulnerabilities.[/green]')

    if analysis.lookup_failures:
        failures = Table(title='Lookup Failures')
        failures.add_column('Component', style='cyan')
        failures.add_column('Kind', style='yellow')
        failures.add_column('Reason', style='dim')
        for failure in analysis.lookup_failures:
            failures.add_row(failure.component.display_name, str(failure.error_kind), escape(failure.reason))
        console.print(failures)


def render_summaries(summaries: list[AnalysisSummary]) -> None:
    table = Table(title='Analyses')
    table.add_column('ID', style='bold')
    table.add_column('Source', style='cyan')
    table.add_column('Status')
    table.add_column('Components', justify='right')
    table.add_column('Vulns', justify='right', style='magenta')
    table.add_column('Risk', justify='right')
    table.add_column('Created', style='dim')
    for s in summaries:
        table.add_row(
            s.id, s.source_filename, str(s.status),
            f"{s.total_components:,}", f"{s.total_vulnerabilities:,}",
            _risk(s.risk_level, s.overall_risk_score),
            s.created_at.strftime('%Y-%m-%d %H:%M:%S'),
        )
    console.print(table)


def render_usage(snapshot: UsageSnapshot) -> None:
    limit = 'unlimited' if snapshot.unlimited else f"{snapshot.limit:,}"
    remaining = 'unlimited' if snapshot.remaining is None else f"{snapshot.remaining:,}"
    console.print(
        Panel.fit(
            f"Tier: [bold]{snapshot.tier}[/bold]\n"
            f"Period: {snapshot.period}\n"
            f"Used: [bold green]{snapshot.used:,}[/bold green] / {limit}\n"
            f"Remaining: {remaining} ({snapshot.percentage_used:.0f}% used)",
            title=f"Usage for {snapshot.tenant_id}",
        ),
    )
