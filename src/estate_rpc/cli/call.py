"""CLI: estate-rpc call|actions"""

import json

import click
from rich.console import Console
from rich.table import Table

from estate_rpc.models.actions import ACTION_TOPICS, Topic

console = Console()


def _get_settings():
    from estate_rpc.cli.main import _get_settings
    return _get_settings()


def _run(coro):
    from estate_rpc.cli.main import _run
    return _run(coro)


def _get_client(settings):
    from estate_rpc.client import AsyncRpcClient
    return AsyncRpcClient(settings=settings)


@click.command("call")
@click.argument("action")
@click.option("--payload", "-p", default="{}", help="Payload as a JSON object.")
@click.option("--topic", type=click.Choice(Topic.ALL), default=None,
              help="Send to this topic's queue instead of the action's own.")
@click.option("--timeout", type=float, default=None)
@click.option("--json-output", "--json", is_flag=True)
def call_cmd(action, payload, topic, timeout, json_output):
    """Send ACTION and print the reply."""
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"not valid JSON: {e}", param_hint="--payload")
    if not isinstance(data, dict):
        raise click.BadParameter("must be a JSON object", param_hint="--payload")
    settings = _get_settings()

    async def _call():
        client = _get_client(settings)
        queue = settings.queues.for_topic(topic) if topic else None
        try:
            with console.status(f"Calling {action}..."):
                return await client.call(action, data, timeout, queue=queue)
        finally:
            await client.close()

    result = _run(_call())
    if json_output:
        click.echo(json.dumps(result, indent=2))
        return
    color = "green" if result.get("status") == "success" else "red"
    console.print(f"[{color}]{result.get('status')}[/{color}] {result.get('message', '')}")
    extra = {k: v for k, v in result.items() if k not in ("status", "message")}
    if extra:
        console.print_json(data=extra)
    if result.get("status") != "success":
        raise SystemExit(1)


@click.command("actions")
def actions_cmd():
    """List known actions and the queue serving each."""
    settings = _get_settings()
    table = Table(title=f"Actions ({len(ACTION_TOPICS)})")
    table.add_column("Action", style="bold")
    table.add_column("Topic")
    table.add_column("Queue")
    for action, topic in sorted(ACTION_TOPICS.items(), key=lambda item: (item[1], item[0])):
        table.add_row(action, topic, settings.queues.for_topic(topic))
    console.print(table)
