import logging

import click

from appdeck.cli.apps_cli import apps
from appdeck.version import get_version


@click.group()
@click.option("--log-level", default="WARNING", help="Logging level for appdeck output.")
@click.pass_context
def main(ctx, log_level):
    """appdeck CLI"""
    ctx.ensure_object(dict)
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


main.add_command(apps)


@main.command()
def version():
    """Show the appdeck version."""
    click.echo(get_version())


@main.command()
@click.option('--host', default='127.0.0.1', help='The host to bind to.')
@click.option('--port', default=8000, help='The port to bind to.')
def server(host, port):
    """Run the FastAPI server."""
    import uvicorn

    from appdeck.api.server import app
    uvicorn.run(app, host=host, port=port)
