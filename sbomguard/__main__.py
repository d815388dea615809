import dotenv
import typer

from sbomguard.commands import analyze
from sbomguard.commands import delete
from sbomguard.commands import history
from sbomguard.commands import show
from sbomguard.commands import usage
from sbomguard.core.logging import setup_logging

dotenv.load_dotenv()

app = typer.Typer(
    help='SBOMGuard: vulnerability risk scoring for SBOMs.',
    no_args_is_help=True,
    pretty_exceptions_show_locals=False,
)

app.command('analyze')(analyze.main)
app.command('show')(show.main)
app.command('list')(history.main)
app.command('delete')(delete.main)
app.command('usage')(usage.main)


@app.callback()
def main(
    debug: bool = typer.Option(False, '--debug', help='Enable debug logging'),
):
    """
    SBOMGuard CLI - Score the vulnerability risk of your supply chain.
    """
    level = 'DEBUG' if debug else 'INFO'
    setup_logging(level=level)


if __name__ == '__main__':
    app()
