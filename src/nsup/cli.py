"""nsup CLI: compile neptune-core args, supervise the node, manage peers.

Commands:
    nsup init [NAME]           create nsup.toml + node-settings.toml
    nsup args [--preview]      print the neptune-core argument vector
    nsup run                   start neptune-core + neptune-cli, supervise until Ctrl+C
    nsup status                cached supervisor state, binaries, process liveness
    nsup peers ...             list / add / ban / enable / disable / remove peers
"""

from __future__ import annotations

import logging
import os
import time
from pathlib import Path

import click

from nsup.args_builder import compile_args, preview_args
from nsup.config import SupervisorConfig, init_config, load_config
from nsup.peers import PeerNotFoundError, PeerRegistry
from nsup.settings import NodeSettings, init_settings, load_settings
from nsup.state import read_state
from nsup.supervisor import Supervisor, SupervisorError

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_cfg(root: str | None = None) -> SupervisorConfig:
    try:
        return load_config(Path(root) if root else None)
    except Exception as exc:
        raise click.ClickException(str(exc)) from exc


def _load_settings(cfg: SupervisorConfig) -> NodeSettings:
    try:
        return load_settings(cfg.settings_path)
    except Exception as exc:
        msg = f"failed to read {cfg.settings_path}: {exc}"
        raise click.ClickException(msg) from exc


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        datefmt="%H:%M:%S",
    )


def _pid_running(pid: int | None) -> bool:
    if not pid:
        return False
    try:
        os.kill(pid, 0)
        return True
    except (ProcessLookupError, PermissionError, OverflowError):
        return False


def _age(seconds: float) -> str:
    s = int(seconds)
    if s < 120:
        return f"{s}s ago"
    if s < 7200:
        return f"{s // 60}m ago"
    return f"{s // 3600}h ago"


# ---------------------------------------------------------------------------
# Root group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(package_name="nsup")
@click.option("--root", default=None, help="Directory holding nsup.toml (default: search upward from cwd)")
@click.pass_context
def cli(ctx: click.Context, root: str | None) -> None:
    """nsup: neptune-core / neptune-cli supervisor."""
    ctx.ensure_object(dict)
    ctx.obj["root"] = root


# ---------------------------------------------------------------------------
# nsup init
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("name", required=False)
@click.option("--dir", "root", default=".", show_default=True, help="Wallet directory")
def init(name: str | None, root: str) -> None:
    """Create nsup.toml and node-settings.toml in the given directory."""
    root_path = Path(root).resolve()
    root_path.mkdir(parents=True, exist_ok=True)
    try:
        click.echo(f"Created {init_config(root_path, name=name)}")
    except FileExistsError:
        click.echo("nsup.toml already exists, skipping")
    cfg = load_config(root_path)
    try:
        click.echo(f"Created {init_settings(cfg.settings_path)}")
    except FileExistsError:
        click.echo("node-settings.toml already exists, skipping")
    registry = PeerRegistry(cfg.peers_path)
    click.echo(f"Peers     : {cfg.peers_path} ({len(registry.all_peers())} entries)")


# ---------------------------------------------------------------------------
# nsup args
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--preview", is_flag=True, help="Show the full command and a per-category breakdown")
@click.pass_context
def args(ctx: click.Context, preview: bool) -> None:
    """Print the neptune-core arguments derived from node-settings.toml and peers.json."""
    cfg = _load_cfg(ctx.obj["root"])
    settings = _load_settings(cfg)
    registry = PeerRegistry(cfg.peers_path)
    if preview:
        result = preview_args(settings, NodeSettings.defaults(), registry.enabled_peers,
                              command=str(cfg.core_path))
        click.echo(result.command)
        click.echo()
        for line in result.explanation:
            click.echo(line)
        return
    for arg in compile_args(settings, NodeSettings.defaults(), registry.enabled_peers):
        click.echo(arg)


# ---------------------------------------------------------------------------
# nsup run
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.option("--no-restart", is_flag=True, help="Exit instead of restarting when a process dies")
@click.pass_context
def run(ctx: click.Context, verbose: bool, no_restart: bool) -> None:
    """Start neptune-core and neptune-cli and keep them running (Ctrl+C to stop)."""
    _setup_logging(verbose)
    cfg = _load_cfg(ctx.obj["root"])
    settings = _load_settings(cfg)
    cfg.ensure_dirs()
    registry = PeerRegistry(cfg.peers_path)
    try:
        supervisor = Supervisor(cfg, enabled_peers=registry.enabled_peers)
    except ValueError as exc:
        msg = f"invalid [readiness] in nsup.toml: {exc}"
        raise click.ClickException(msg) from exc
    click.echo(f"nsup  →  neptune-core rpc :{settings.network.rpc_port}, neptune-cli rpc :{cfg.ports.cli_rpc}"
               "  (Ctrl+C to stop)")
    try:
        supervisor.run_forever(restart_on_exit=not no_restart)
    except SupervisorError as exc:
        raise click.ClickException(str(exc)) from exc


# ---------------------------------------------------------------------------
# nsup status
# ---------------------------------------------------------------------------


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show binaries, cached supervisor state, and whether the cached PIDs are alive."""
    from rich.console import Console
    from rich.table import Table

    cfg = _load_cfg(ctx.obj["root"])
    settings = _load_settings(cfg)
    state_path = cfg.state_path_for(settings.data.data_dir)
    console = Console()

    table = Table(title=f"nsup: {cfg.name}", show_header=True, header_style="bold")
    table.add_column("Metric", style="dim", no_wrap=True)
    table.add_column("Value")

    table.add_row("Config", str(cfg.root / "nsup.toml"))
    for label, path in (("neptune-core", cfg.core_path), ("neptune-cli", cfg.cli_path)):
        if path.is_file() and os.access(path, os.X_OK):
            table.add_row(label, str(path))
        else:
            table.add_row(label, f"[red]missing: {path}[/red]")
    table.add_row("Ports", f"core rpc {settings.network.rpc_port}, cli rpc {cfg.ports.cli_rpc}")
    table.add_row("", "")

    state = read_state(state_path)
    if state is None:
        table.add_row("State", f"[dim]no cached state at {state_path}[/dim]")
    else:
        fresh = state.is_fresh(cfg.timing.freshness_window)
        age = _age(time.time() - state.timestamp)
        table.add_row("State", f"{state_path}  ({age}{'' if fresh else ', stale'})")
        table.add_row("Initialized", "yes" if state.initialized else "no")
        pids = state.config.get("pids", {})
        for label, key in (("neptune-core pid", "core"), ("neptune-cli pid", "cli")):
            pid = pids.get(key)
            if pid is None:
                table.add_row(label, "[dim]-[/dim]")
            elif _pid_running(pid):
                table.add_row(label, f"[green]{pid} running[/green]")
            else:
                table.add_row(label, f"[yellow]{pid} not running[/yellow]")
        last_args = state.config.get("args") or []
        table.add_row("Last args", " ".join(last_args) or "[dim](none)[/dim]")

    console.print(table)


# ---------------------------------------------------------------------------
# nsup peers
# ---------------------------------------------------------------------------


@cli.group()
def peers() -> None:
    """Manage peers.json (enabled, unbanned peers become --peer flags)."""


def _registry(ctx: click.Context) -> PeerRegistry:
    cfg = _load_cfg(ctx.obj["root"])
    return PeerRegistry(cfg.peers_path)


@peers.command("list")
@click.option("--network", "-n", default=None, help="Only this network")
@click.pass_context
def peers_list(ctx: click.Context, network: str | None) -> None:
    """List peers."""
    from rich.console import Console
    from rich.table import Table

    registry = _registry(ctx)
    table = Table(show_header=True, header_style="bold")
    for col in ("ID", "Address", "Network", "Type", "Enabled", "Banned", "Label"):
        table.add_column(col)
    for p in registry.all_peers(network):
        table.add_row(
            p.id, p.address, p.network, p.type + (" (default)" if p.is_default else ""),
            "yes" if p.enabled else "no",
            f"[red]yes[/red] {p.banned_reason}".rstrip() if p.is_banned else "no",
            p.label,
        )
    Console().print(table)


@peers.command("add")
@click.argument("address")
@click.option("--network", "-n", default="main", show_default=True)
@click.option("--label", "-l", default="")
@click.option("--disabled", is_flag=True, help="Add without enabling")
@click.pass_context
def peers_add(ctx: click.Context, address: str, network: str, label: str, disabled: bool) -> None:
    """Add a peer (host:port)."""
    try:
        peer = _registry(ctx).add(address, network=network, label=label, enabled=not disabled)
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Added {peer.id}  {peer.address}  [{peer.network}]")


def _mutate(ctx: click.Context, peer_id: str, action: str, **kwargs: object) -> None:
    registry = _registry(ctx)
    try:
        if action == "ban":
            registry.ban(peer_id, str(kwargs.get("reason", "")))
        elif action == "delete":
            registry.delete(peer_id)
        else:
            registry.toggle(peer_id, action == "enable")
    except PeerNotFoundError as exc:
        msg = f"no peer with id {peer_id}"
        raise click.ClickException(msg) from exc
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc


@peers.command("ban")
@click.argument("peer_id")
@click.option("--reason", "-r", default="")
@click.pass_context
def peers_ban(ctx: click.Context, peer_id: str, reason: str) -> None:
    """Ban (and disable) a peer."""
    _mutate(ctx, peer_id, "ban", reason=reason)
    click.echo(f"Banned {peer_id}")


@peers.command("enable")
@click.argument("peer_id")
@click.pass_context
def peers_enable(ctx: click.Context, peer_id: str) -> None:
    """Enable a peer."""
    _mutate(ctx, peer_id, "enable")
    click.echo(f"Enabled {peer_id}")


@peers.command("disable")
@click.argument("peer_id")
@click.pass_context
def peers_disable(ctx: click.Context, peer_id: str) -> None:
    """Disable a peer without removing it."""
    _mutate(ctx, peer_id, "disable")
    click.echo(f"Disabled {peer_id}")


@peers.command("remove")
@click.argument("peer_id")
@click.pass_context
def peers_remove(ctx: click.Context, peer_id: str) -> None:
    """Remove a peer (also how a ban is lifted)."""
    _mutate(ctx, peer_id, "delete")
    click.echo(f"Removed {peer_id}")


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
