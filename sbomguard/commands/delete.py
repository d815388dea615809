import typer

from sbomguard.core.container import get_container
from sbomguard.core.decorators import handle_errors
from sbomguard.core.logging import console


@handle_errors
def main(
    analysis_id: str = typer.Argument(..., help='Analysis ID'),
    yes: bool = typer.Option(False, '--yes', '-y', help='Skip confirmation'),
):
    """
    Delete a finished analysis.
    """
    if not yes:
        typer.confirm(f"Delete analysis {analysis_id}?", abort=True)
    get_container().get_analysis_service().delete_analysis(analysis_id)
    console.print(f"[green]Deleted {analysis_id}[/green]")
