import functools
from collections.abc import Callable
from typing import Any

import structlog
import typer
from rich.markup import escape

from sbomguard.core.errors import ErrorKind
from sbomguard.core.errors import SbomGuardError
from sbomguard.core.logging import console
logger = structlog.get_logger()

EXIT_CODES = {
    ErrorKind.MALFORMED_DOCUMENT: 2,
    ErrorKind.UNSUPPORTED_FORMAT: 2,
    ErrorKind.QUOTA_EXCEEDED: 3,
    ErrorKind.QUOTA_CHECK_UNAVAILABLE: 3,
    ErrorKind.NOT_FOUND: 4,
    ErrorKind.UPSTREAM_UNAVAILABLE: 5,
    ErrorKind.CORRELATION_DEGRADED: 5,
    ErrorKind.CANCELLED: 130,
}


def handle_errors(func: Callable[..., Any]) -> Callable[..., Any]:
    """Decorator to handle exceptions in CLI commands nicely."""
    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except typer.Exit:
            raise
        except SbomGuardError as e:
            console.print(f"[bold red]{e.kind}:[/] {escape(e.message)}")
            logger.debug('Pipeline error', kind=str(e.kind), exc_info=True)
            raise typer.Exit(EXIT_CODES.get(e.kind, 1))
        except ValueError as e:
            console.print(f"[bold red]Validation Error:[/] {e}")
            logger.debug('Validation error', exc_info=True)
            raise typer.Exit(1)
        except KeyboardInterrupt:
            console.print('\n[yellow]Operation cancelled by user.[/]')
            raise typer.Exit(130)
        except Exception as e:
            console.print(f"[bold red]Unexpected Error:[/] {e}")
            logger.exception('Unexpected error')
            raise typer.Exit(1)
    return wrapper
