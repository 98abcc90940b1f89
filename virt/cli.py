"""virt CLI — run the registrar, resolve names and manage registrations."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from virt import __version__
from virt.config import Settings
from virt.log import configure_logging
from virt.naming.validator import RESERVED_TAGS, is_acceptable_name, is_secure_web_url, is_system_name
from virt.registrar.errors import RegistrarError, UpstreamFetchFailure
from virt.registrar.service import DeleteRequest, RegisterRequest, UpdateRequest
from virt.resolver.client import RegistrarClient
from virt.resolver.resolver import Outcome, Resolver

console = Console()

TAG_CHOICE = click.Choice(list(RESERVED_TAGS))


def _run(coro_factory):
    """Run a registrar client coroutine and report failures as CLI errors."""
    try:
        return asyncio.run(coro_factory())
    except RegistrarError as exc:
        console.print(f"[red]{exc.code}:[/] {exc.message}")
        sys.exit(1)
    except UpstreamFetchFailure as exc:
        console.print(f"[red]Registrar unreachable:[/] {exc}")
        sys.exit(2)


async def _with_client(settings: Settings, call):
    async with RegistrarClient.from_settings(settings) as client:
        return await call(client)


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "config_path", default=None, help="Path to a YAML config file")
@click.option("--registrar", default=None, help="Registrar base URL")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.option("--log-json", is_flag=True, help="Log JSON lines instead of console output")
@click.pass_context
def main(ctx, config_path: str | None, registrar: str | None, verbose: bool, log_json: bool):
    """virt — name registry and resolver for virt:// addresses.

    Names look like virt://label.tag where tag is one of vc, vmc, at, lit.
    """
    configure_logging(verbose=verbose, log_json=log_json)
    ctx.meta["log_options"] = {"verbose": verbose, "log_json": log_json}
    settings = Settings.load(config_path)
    if registrar:
        settings.registrar_url = registrar
    ctx.obj = settings


# ── Serve ────────────────────────────────────────────────────────────


@main.command()
@click.option("--host", default=None, help="Interface to bind")
@click.option("--port", default=None, type=int, help="Port to listen on")
@click.option("--data-dir", default=None, type=click.Path(file_okay=False), help="Registry data directory")
@click.option("--access-log", is_flag=True, help="Log every request")
@click.pass_context
def serve(ctx, host: str | None, port: int | None, data_dir: str | None, access_log: bool):
    """Run the registrar HTTP API."""
    import uvicorn

    from web.backend.app.main import create_app

    settings: Settings = ctx.obj
    if access_log:
        configure_logging(**ctx.meta["log_options"], access_log=True)
    if data_dir:
        settings.data_dir = Path(data_dir)
    console.print(f"\n[bold blue]VIRT[/] — Registrar on {host or settings.host}:{port or settings.port}\n")
    uvicorn.run(
        create_app(settings),
        host=host or settings.host,
        port=port or settings.port,
        log_config=None,
    )


# ── Validate ─────────────────────────────────────────────────────────


@main.command()
@click.argument("name")
def validate(name: str):
    """Classify NAME the way the resolver would, without network access."""
    if is_system_name(name):
        console.print(f"[green]{name}[/] is a system name")
    elif is_acceptable_name(name):
        console.print(f"[green]{name}[/] is a reserved name")
    elif is_secure_web_url(name):
        console.print(f"[cyan]{name}[/] is a plain web URL (not a VIRT name)")
    else:
        console.print(f"[red]{name}[/] would be blocked")
        sys.exit(1)


# ── Resolve ──────────────────────────────────────────────────────────


@main.command()
@click.argument("name")
@click.option("--raw", is_flag=True, help="Write the resolved content to stdout")
@click.pass_obj
def resolve(settings: Settings, name: str, raw: bool):
    """Resolve NAME to content or a fallback page."""

    async def _resolve():
        async with Resolver.from_settings(settings) as resolver:
            return await resolver.resolve(name)

    resolution = asyncio.run(_resolve())

    if raw:
        sys.stdout.buffer.write(resolution.content)
        return

    table = Table(title=f"Resolution of {name}", show_header=False)
    table.add_column("Field", style="dim")
    table.add_column("Value")
    table.add_row("Route", resolution.route.value)
    table.add_row("Outcome", resolution.outcome.value)
    table.add_row("Status", str(resolution.status))
    table.add_row("Media type", resolution.media_type)
    table.add_row("Location", resolution.location or "-")
    table.add_row("Bytes", str(len(resolution.content)))
    if resolution.reason:
        table.add_row("Reason", resolution.reason)
    console.print(table)

    if resolution.outcome is Outcome.denied:
        sys.exit(1)


# ── Registrar operations ─────────────────────────────────────────────


@main.command()
@click.argument("label")
@click.option("--tag", required=True, type=TAG_CHOICE)
@click.pass_obj
def check(settings: Settings, label: str, tag: str):
    """Check whether LABEL.TAG is available."""
    result = _run(lambda: _with_client(settings, lambda c: c.check(label, tag)))
    style = "green" if result.available else "yellow"
    console.print(f"[{style}]{result.label}.{result.tag}[/] — {result.message}")


@main.command()
@click.argument("label")
@click.option("--tag", required=True, type=TAG_CHOICE)
@click.option("--target", required=True, help="HTTPS URL or IPv4[:port]")
@click.option("--title", default=None)
@click.option("--description", default=None)
@click.option("--keyword", "keywords", multiple=True, help="Search keyword (repeatable)")
@click.pass_obj
def register(settings: Settings, label: str, tag: str, target: str, title, description, keywords):
    """Register LABEL.TAG pointing at TARGET."""
    request = RegisterRequest(
        label=label,
        tag=tag,
        target=target,
        title=title,
        description=description,
        keywords=list(keywords),
    )
    result = _run(lambda: _with_client(settings, lambda c: c.register(request)))
    console.print(Panel(
        f"[bold]{result.secret_key}[/]\n\n{result.message}",
        title=f"Registered {result.name}",
        border_style="green",
    ))


@main.command()
@click.argument("label")
@click.option("--tag", required=True, type=TAG_CHOICE)
@click.option("--secret", required=True, prompt=True, hide_input=True)
@click.option("--target", default=None)
@click.option("--title", default=None, help="New title; pass '' to clear")
@click.option("--description", default=None, help="New description; pass '' to clear")
@click.pass_obj
def update(settings: Settings, label, tag, secret, target, title, description):
    """Update LABEL.TAG using its secret key."""
    request = UpdateRequest(
        label=label, tag=tag, secret=secret, target=target, title=title, description=description
    )
    result = _run(lambda: _with_client(settings, lambda c: c.update(request)))
    console.print(f"[green]Updated[/] {result.label}.{result.tag} -> {result.target}")


@main.command()
@click.argument("label")
@click.option("--tag", required=True, type=TAG_CHOICE)
@click.option("--secret", required=True, prompt=True, hide_input=True)
@click.confirmation_option(prompt="Permanently delete this name?")
@click.pass_obj
def delete(settings: Settings, label, tag, secret):
    """Delete LABEL.TAG using its secret key."""
    request = DeleteRequest(label=label, tag=tag, secret=secret)
    _run(lambda: _with_client(settings, lambda c: c.delete(request)))
    console.print(f"[green]Deleted[/] {label}.{tag}")


@main.command()
@click.argument("label")
@click.argument("tag", type=TAG_CHOICE)
@click.pass_obj
def lookup(settings: Settings, label: str, tag: str):
    """Look up where LABEL.TAG points."""
    result = _run(lambda: _with_client(settings, lambda c: c.lookup(label, tag)))
    table = Table(title=f"{result.label}.{result.tag}", show_header=False)
    table.add_column("Field", style="dim")
    table.add_column("Value")
    table.add_row("Target", result.target)
    table.add_row("Raw base", result.raw_base)
    table.add_row("Title", result.title or "-")
    table.add_row("Description", result.description or "-")
    table.add_row("Verified", "yes" if result.verified else "no")
    table.add_row("Created", result.created_at)
    table.add_row("Last accessed", result.last_accessed)
    console.print(table)


@main.command()
@click.argument("query")
@click.pass_obj
def search(settings: Settings, query: str):
    """Search registered names."""
    hits = _run(lambda: _with_client(settings, lambda c: c.search(query)))
    if not hits:
        console.print("[yellow]No names found.[/]")
        return

    table = Table(title=f"Results for '{query}' ({len(hits)})")
    table.add_column("Rank", style="dim", width=4)
    table.add_column("Name", style="cyan")
    table.add_column("Title")
    table.add_column("Description")
    for i, hit in enumerate(hits):
        table.add_row(str(i + 1), f"{hit.label}.{hit.tag}", hit.title, hit.description[:60])
    console.print(table)


if __name__ == "__main__":
    main()
