import typer

from sbomguard.commands.render import render_usage
from sbomguard.core.container import get_container
from sbomguard.core.decorators import handle_errors


@handle_errors
def main(
    tenant: str = typer.Option('default', envvar='SBOMGUARD_TENANT', help='Tenant ID'),
):
    """
    Show this month's quota consumption.
    """
    render_usage(get_container().get_analysis_service().get_usage(tenant))
