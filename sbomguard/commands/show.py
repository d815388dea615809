import typer

from sbomguard.commands.render import render_analysis
from sbomguard.core.container import get_container
from sbomguard.core.decorators import handle_errors


@handle_errors
def main(
    analysis_id: str = typer.Argument(..., help='Analysis ID'),
    show_clean: bool = typer.Option(False, help='Also list components without findings'),
):
    """
    Show a stored analysis.
    """
    analysis = get_container().get_analysis_service().get_analysis(analysis_id)
    render_analysis(analysis, show_clean=show_clean)
