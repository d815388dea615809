import typer

from sbomguard.commands.render import render_summaries
from sbomguard.core.container import get_container
from sbomguard.core.decorators import handle_errors
from sbomguard.core.logging import console


@handle_errors
def main(
    tenant: str = typer.Option('default', envvar='SBOMGUARD_TENANT', help='Tenant ID'),
    limit: int | None = typer.Option(None, help='Show only the newest N analyses'),
):
    """
    List a tenant's analyses, newest first.
    """
    summaries = get_container().get_analysis_service().list_analyses(tenant)
    if not summaries:
        console.print(f"[yellow]No analyses for tenant {tenant}.[/yellow]")
        return
    render_summaries(summaries[:limit] if limit else summaries)
