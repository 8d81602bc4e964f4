"""CLI: estate-rpc serve"""

import click


def _get_settings():
    from estate_rpc.cli.main import _get_settings
    return _get_settings()


@click.command("serve")
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=8000, type=int, show_default=True)
def serve(host, port):
    """Run the HTTP gateway."""
    import uvicorn

    from estate_rpc.gateway import create_app

    settings = _get_settings()
    uvicorn.run(create_app(settings=settings), host=host, port=port, log_level=settings.log_level.lower())
