from pathlib import Path

import structlog
import typer

from sbomguard.commands.render import render_analysis
from sbomguard.core.container import get_container
from sbomguard.core.decorators import handle_errors
from sbomguard.core.logging import console

logger = structlog.get_logger('analyze')


@handle_errors
def main(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help='SBOM JSON file'),
    tenant: str = typer.Option('default', envvar='SBOMGUARD_TENANT', help='Tenant ID'),
    vendor: str | None = typer.Option(None, help='Vendor ID the SBOM belongs to'),
    timeout: float | None = typer.Option(None, help='Deadline in seconds for the whole run'),
    concurrency: int | None = typer.Option(None, help='Concurrent vulnerability lookups'),
    show_clean: bool = typer.Option(False, help='Also list components without findings'),
):
    """
    Analyze an SBOM for known vulnerabilities and print the risk report.
    """
    service = get_container().get_analysis_service(concurrency=concurrency)
    handle = service.submit_analysis(
        tenant_id=tenant,
        source_filename=file.name,
        raw_document=file.read_bytes(),
        vendor_id=vendor,
        timeout=timeout,
    )
    if handle.cached:
        console.print('[dim]Identical SBOM already analyzed, showing cached result.[/dim]')

    try:
        with console.status(f"Correlating {file.name}..."):
            analysis = handle.result()
    except KeyboardInterrupt:
        handle.cancel('interrupted')
        raise
    finally:
        service.shutdown()

    render_analysis(analysis, show_clean=show_clean)
    if analysis.error_kind is not None:
        raise typer.Exit(1)
