"""CLI: estate-rpc worker|setup-queues"""

import asyncio
import signal

import click
from rich.console import Console

from estate_rpc.models.actions import Topic

console = Console()


def _get_settings():
    from estate_rpc.cli.main import _get_settings
    return _get_settings()


def _run(coro):
    from estate_rpc.cli.main import _run
    return _run(coro)


def _broker(settings):
    from estate_rpc.transport.amqp import AmqpBroker
    return AmqpBroker(settings.broker_url)


@click.command("worker")
@click.argument("topic", type=click.Choice(Topic.ALL))
def worker(topic):
    """Consume TOPIC's request queue until interrupted."""
    from estate_rpc.workers import run_worker

    settings = _get_settings()

    def _started(dispatcher):
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, dispatcher.stop)
        console.print(f"[green]Worker for {topic} on queue {dispatcher.queue}[/green]")

    _run(run_worker(topic, _broker(settings), settings, on_start=_started))


@click.command("setup-queues")
def setup_queues_cmd():
    """Declare the durable request queues."""
    from estate_rpc.workers import setup_queues

    settings = _get_settings()

    async def _setup():
        broker = _broker(settings)
        try:
            with console.status("Declaring queues..."):
                names = await setup_queues(broker, settings)
        finally:
            await broker.close()
        for name in names:
            console.print(f"[green]✓[/green] {name}")

    _run(_setup())
