import logging
import os
import sys
from typing import Any

import structlog
from rich.console import Console

# Central console for rich output
console = Console()

LEVEL_STYLES = {
    'debug': 'dim',
    'info': 'green',
    'warning': 'yellow',
    'error': 'bold red',
    'critical': 'bold magenta',
}

# Keys rendered ahead of the free-form key=value pairs, in this order.
PINNED_KEYS = ('analysis_id', 'tenant_id')


class RichConsoleRenderer:
    """
    structlog renderer printing `timestamp logger level event key=value ...`
    through rich. An optional '_style' key in the event dict overrides the
    line style; pipeline identifiers are pinned first so interleaved
    pipelines stay readable.
    """

    def __init__(self, target: Console | None = None):
        self._console = target or Console(stderr=True)

    def __call__(self, logger, name, event_dict):
        custom_style = event_dict.pop('_style', None)
        event = event_dict.pop('event', '')
        log_level = event_dict.pop('level', 'info')
        logger_name = event_dict.pop('logger', None)
        timestamp = event_dict.pop('timestamp', '')
        exception = event_dict.pop('exception', None) or event_dict.pop(
            'exc_info', None,
        )
        stack_info = event_dict.pop('stack_info', None)

        parts = []
        if timestamp:
            parts.append(f"[dim]{timestamp}[/dim]")
        if logger_name:
            parts.append(f"[bold]{logger_name}[/bold]")
        level_style = LEVEL_STYLES.get(log_level, 'white')
        parts.append(f"[{level_style}]{log_level:<8}[/{level_style}]")
        parts.append(str(event))

        for key in PINNED_KEYS:
            if key in event_dict:
                parts.append(f"[blue]{key}[/blue]={event_dict.pop(key)}")
        for key, value in event_dict.items():
            parts.append(f"[cyan]{key}[/cyan]=[green]{value!r}[/green]")

        message = ' '.join(parts)
        if exception:
            message += f"\n[red]{exception}[/red]"
        if stack_info:
            message += f"\n[dim]{stack_info}[/dim]"

        self._console.print(message, style=custom_style, highlight=False)
        raise structlog.DropEvent


def drop_style_processor(logger, method_name, event_dict):
    """Keep the console-only '_style' hint out of JSON logs."""
    event_dict.pop('_style', None)
    return event_dict


def bind_analysis_context(analysis_id: str, tenant_id: str) -> None:
    """Attach pipeline identifiers to every log line of the current thread."""
    structlog.contextvars.bind_contextvars(
        analysis_id=analysis_id, tenant_id=tenant_id,
    )


def clear_analysis_context() -> None:
    structlog.contextvars.unbind_contextvars('analysis_id', 'tenant_id')


def setup_logging(level: str = 'INFO', json_output: bool | None = None) -> None:
    """
    Configure structured logging for the application.
    Console rendering by default, JSON when ENV=production.
    """
    logging.basicConfig(format='%(message)s', stream=sys.stdout, level=level)

    if json_output is None:
        json_output = os.getenv('ENV') == 'production'

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt='iso'),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        structlog.processors.format_exc_info,
    ]

    if json_output:
        processors = shared_processors + [
            drop_style_processor,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [RichConsoleRenderer()]

    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
