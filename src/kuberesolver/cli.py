"""
Command line tools for inspecting targets and watching resolution.
"""

from __future__ import annotations

import asyncio

import click
from rich.console import Console
from rich.table import Table

from .builder import ResolverBuilder
from .config import ChangeSourceKind, ResolverSettings
from .errors import ResolverError
from .models import ResolvedAddress
from .namespace import current_namespace
from .observability.logging import configure_logging
from .target import parse_target

console = Console()


@click.group()
@click.option("--log-level", default=None, help="Log level (defaults to KUBERESOLVER_LOG_LEVEL)")
@click.option("--json-logs", is_flag=True, help="Emit JSON log lines")
@click.pass_context
def main(ctx: click.Context, log_level: str | None, json_logs: bool):
    """Resolve kubernetes:// targets to endpoint addresses."""
    settings = ResolverSettings()
    configure_logging(
        log_level=log_level or settings.log_level,
        json_format=json_logs or settings.log_json,
    )
    ctx.obj = settings


@main.command()
@click.argument("target")
@click.pass_obj
def parse(settings: ResolverSettings, target: str):
    """Show how TARGET is interpreted."""
    try:
        descriptor = parse_target(target)
    except ResolverError as e:
        raise click.ClickException(str(e)) from e

    if not descriptor.namespace:
        descriptor = descriptor.with_namespace(
            current_namespace(settings.namespace_file, settings.default_namespace)
        )

    if descriptor.use_first_port:
        port = "(first port)"
    elif descriptor.resolve_by_name:
        port = f"{descriptor.port_spec} (by name)"
    else:
        port = descriptor.port_spec

    table = Table(title=str(descriptor))
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Service", descriptor.service_name)
    table.add_row("Namespace", descriptor.namespace)
    table.add_row("Port", port)
    table.add_row("Server name", descriptor.server_name)
    console.print(table)


def _address_table(target: str, addresses: list[ResolvedAddress]) -> Table:
    table = Table(title=f"{target}: {len(addresses)} addresses")
    table.add_column("Address", style="cyan")
    table.add_column("Node", style="yellow")
    table.add_column("Zone", style="yellow")
    for address in addresses:
        table.add_row(
            address.address,
            address.metadata.get("node_name") or "-",
            address.metadata.get("zone") or "-",
        )
    return table


async def _watch(target: str, settings: ResolverSettings, once: bool, timeout: float | None):
    builder = ResolverBuilder.in_cluster(settings)
    published = asyncio.Event()

    def show(addresses: list[ResolvedAddress]) -> None:
        console.print(_address_table(target, addresses))
        published.set()

    try:
        resolver = await builder.build(target, show)
        try:
            if once:
                await asyncio.wait_for(published.wait(), timeout=timeout)
            else:
                await asyncio.Event().wait()
        finally:
            await resolver.close()
    finally:
        await builder.close()


@main.command()
@click.argument("target")
@click.option(
    "--strategy",
    type=click.Choice([kind.value for kind in ChangeSourceKind]),
    default=None,
    help="Change source strategy (defaults to KUBERESOLVER_CHANGE_SOURCE)",
)
@click.option("--once", is_flag=True, help="Exit after the first published address list")
@click.option("--timeout", type=float, default=None, help="With --once, seconds to wait")
@click.pass_obj
def watch(
    settings: ResolverSettings,
    target: str,
    strategy: str | None,
    once: bool,
    timeout: float | None,
):
    """Watch TARGET and print every published address list."""
    if strategy:
        settings = settings.model_copy(update={"change_source": ChangeSourceKind(strategy)})

    console.print(f"👀 Watching {target}", style="bold blue")
    try:
        asyncio.run(_watch(target, settings, once, timeout))
    except ResolverError as e:
        raise click.ClickException(str(e)) from e
    except asyncio.TimeoutError as e:
        raise click.ClickException(f"no addresses published for {target} within {timeout}s") from e
    except KeyboardInterrupt:
        console.print("Stopped", style="yellow")


if __name__ == "__main__":
    main()
