"""
estate-rpc CLI, the `estate-rpc` command.

Commands:
  estate-rpc worker TOPIC     Run a dispatcher on one request queue
  estate-rpc setup-queues     Declare every durable request queue
  estate-rpc call ACTION      One-off RPC call
  estate-rpc actions          List actions and their queues
  estate-rpc serve            Run the HTTP gateway
"""

import asyncio
import logging
from pathlib import Path

try:
    import click
    from rich.console import Console
    from rich.logging import RichHandler
except ImportError:
    raise SystemExit("CLI requires extras: pip install estate-rpc[cli]")

from estate_rpc.config import Settings

console = Console()


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
        force=True,
    )


def _get_settings() -> Settings:
    return click.get_current_context().find_root().obj


def _run(coro):
    return asyncio.run(coro)


@click.group()
@click.version_option("0.1.0")
@click.option("--config", "config_file", type=click.Path(dir_okay=False, path_type=Path), default=None,
              help="JSON config file (default ~/.estate-rpc/config.json).")
@click.option("--log-level", default=None, help="Overrides the configured log level.")
@click.pass_context
def main(ctx, config_file, log_level):
    """estate-rpc: request/reply workers and gateway for the real-estate backend."""
    settings = Settings.load(config_file)
    if log_level:
        settings = settings.model_copy(update={"log_level": log_level})
    _setup_logging(settings.log_level)
    ctx.obj = settings


# Register subcommands from separate modules
from estate_rpc.cli.call import actions_cmd, call_cmd
from estate_rpc.cli.serve import serve
from estate_rpc.cli.worker import setup_queues_cmd, worker

main.add_command(worker)
main.add_command(setup_queues_cmd)
main.add_command(call_cmd)
main.add_command(actions_cmd)
main.add_command(serve)


if __name__ == "__main__":
    main()
