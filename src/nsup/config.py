"""SupervisorConfig: where the binaries live, which ports to use, and how long to wait.

Default layout (all relative to the directory holding nsup.toml):

    nsup.toml              # supervisor config
    node-settings.toml     # neptune-core settings, one table per category
    peers.json             # peer registry (seeded with bootstrap peers)
    .env                   # optional: NSUP_CORE_BIN, NSUP_CLI_BIN, NSUP_DATA_DIR
    .nsup/
        logs/              # neptune-core.log, neptune-cli.log

nsup.toml example:

    [nsup]
    name = "my-wallet"
    # data_dir = "~/.local/share/neptune/main"   # where .process-state.json lives

    [binaries]
    core = "/opt/neptune/neptune-core"
    cli = "/opt/neptune/neptune-cli"

    [ports]
    cli_rpc = 9801      # neptune-cli's own JSON-RPC listen port
                        # (the neptune-core RPC port is network.rpc_port in node-settings.toml)

    [timing]
    freshness_window = 300.0
    core_spawn_delay = 2.0
    cli_spawn_delay = 1.0
    grace_period = 2.0
    refresh_interval = 5.0
    restart_cooldown = 1.0

    [readiness]
    attempts = 30
    initial_delay = 1.0
    factor = 1.1
    max_delay = 2.0
    attempt_timeout = 0.9
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

_CONFIG_FILENAME = "nsup.toml"
_SETTINGS_FILENAME = "node-settings.toml"
_PEERS_FILENAME = "peers.json"
_STATE_FILENAME = ".process-state.json"
_DEFAULT_WORK_DIR = ".nsup"
_DEFAULT_DATA_DIR = Path.home() / ".local" / "share" / "neptune" / "main"

# Environment overrides (process env wins over .env, .env wins over nsup.toml)
_ENV_CORE_BIN = "NSUP_CORE_BIN"
_ENV_CLI_BIN = "NSUP_CLI_BIN"
_ENV_DATA_DIR = "NSUP_DATA_DIR"


@dataclass
class BinariesConfig:
    core: str = "neptune-core"
    cli: str = "neptune-cli"


@dataclass
class PortsConfig:
    cli_rpc: int = 9801


@dataclass
class TimingConfig:
    freshness_window: float = 300.0   # seconds a cached state file is trusted as a hint
    core_spawn_delay: float = 2.0     # settle time after spawning neptune-core
    cli_spawn_delay: float = 1.0      # settle time after spawning neptune-cli
    grace_period: float = 2.0         # SIGTERM → SIGKILL escalation window
    refresh_interval: float = 5.0     # wallet summary poll
    restart_cooldown: float = 1.0


@dataclass
class RetryConfig:
    attempts: int = 30
    initial_delay: float = 1.0
    factor: float = 1.1
    max_delay: float = 2.0
    attempt_timeout: float = 0.9      # must stay below initial_delay


@dataclass
class SupervisorConfig:
    """Resolved configuration for one supervised node."""

    root: Path                        # directory that contains nsup.toml
    name: str = ""
    data_dir: Path = field(default_factory=lambda: _DEFAULT_DATA_DIR)
    work_dir: Path = field(default_factory=Path)
    binaries: BinariesConfig = field(default_factory=BinariesConfig)
    ports: PortsConfig = field(default_factory=PortsConfig)
    timing: TimingConfig = field(default_factory=TimingConfig)
    readiness: RetryConfig = field(default_factory=RetryConfig)

    @property
    def settings_path(self) -> Path:
        return self.root / _SETTINGS_FILENAME

    @property
    def peers_path(self) -> Path:
        return self.root / _PEERS_FILENAME

    @property
    def state_path(self) -> Path:
        return self.data_dir / _STATE_FILENAME

    def state_path_for(self, node_data_dir: str | None) -> Path:
        """State file beside the node's own data dir when node-settings.toml sets one."""
        if node_data_dir:
            return Path(node_data_dir).expanduser() / _STATE_FILENAME
        return self.state_path

    @property
    def log_dir(self) -> Path:
        return self.work_dir / "logs"

    @property
    def core_path(self) -> Path:
        return _resolve_binary(self.binaries.core, self.root)

    @property
    def cli_path(self) -> Path:
        return _resolve_binary(self.binaries.cli, self.root)

    def ensure_dirs(self) -> None:
        """Create the work, log and data directories if they don't exist."""
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.data_dir.mkdir(parents=True, exist_ok=True)

    def snapshot(self) -> dict[str, Any]:
        """JSON-friendly view of the parts that decide how processes are launched."""
        return {
            "name": self.name,
            "data_dir": str(self.data_dir),
            "binaries": {"core": str(self.core_path), "cli": str(self.cli_path)},
            "ports": {"cli_rpc": self.ports.cli_rpc},
        }


def _resolve_binary(value: str, root: Path) -> Path:
    """Bare names are looked up on PATH; relative paths are relative to root."""
    path = Path(value).expanduser()
    if path.is_absolute():
        return path
    if os.sep not in value:
        import shutil
        found = shutil.which(value)
        if found:
            return Path(found)
    return root / path


def _load_env(root: Path) -> dict[str, str]:
    """Parse a simple KEY=VALUE .env file (no external dependency)."""
    env_file = root / ".env"
    if not env_file.exists():
        return {}
    env: dict[str, str] = {}
    for line in env_file.read_text().splitlines():
        line = line.strip()
        if line and not line.startswith("#") and "=" in line:
            k, _, v = line.partition("=")
            env[k.strip()] = v.strip().strip('"').strip("'")
    return env


def load_config(root: Path | str | None = None) -> SupervisorConfig:
    """Load nsup.toml from root (or search upward from cwd if root is None)."""
    root_path = _find_root(Path(root) if root else Path.cwd())
    config_path = root_path / _CONFIG_FILENAME

    raw: dict[str, Any] = {}
    if config_path.exists():
        with config_path.open("rb") as f:
            raw = tomllib.load(f)

    env = {**_load_env(root_path), **{k: v for k, v in os.environ.items() if k.startswith("NSUP_")}}

    nsup_section = raw.get("nsup", {})
    bin_section = raw.get("binaries", {})
    port_section = raw.get("ports", {})
    time_section = raw.get("timing", {})
    retry_section = raw.get("readiness", {})

    data_dir = env.get(_ENV_DATA_DIR) or nsup_section.get("data_dir")
    work_rel = nsup_section.get("work_dir", _DEFAULT_WORK_DIR)

    timing_defaults = TimingConfig()
    retry_defaults = RetryConfig()

    return SupervisorConfig(
        root=root_path,
        name=nsup_section.get("name", root_path.name),
        data_dir=Path(data_dir).expanduser() if data_dir else _DEFAULT_DATA_DIR,
        work_dir=root_path / work_rel,
        binaries=BinariesConfig(
            core=env.get(_ENV_CORE_BIN) or str(bin_section.get("core", "neptune-core")),
            cli=env.get(_ENV_CLI_BIN) or str(bin_section.get("cli", "neptune-cli")),
        ),
        ports=PortsConfig(
            cli_rpc=int(port_section.get("cli_rpc", 9801)),
        ),
        timing=TimingConfig(**{
            name: float(time_section.get(name, getattr(timing_defaults, name)))
            for name in timing_defaults.__dataclass_fields__
        }),
        readiness=RetryConfig(
            attempts=int(retry_section.get("attempts", retry_defaults.attempts)),
            initial_delay=float(retry_section.get("initial_delay", retry_defaults.initial_delay)),
            factor=float(retry_section.get("factor", retry_defaults.factor)),
            max_delay=float(retry_section.get("max_delay", retry_defaults.max_delay)),
            attempt_timeout=float(retry_section.get("attempt_timeout", retry_defaults.attempt_timeout)),
        ),
    )


def _find_root(start: Path) -> Path:
    """Walk upward from start looking for nsup.toml."""
    for directory in (start, *start.parents):
        if (directory / _CONFIG_FILENAME).exists():
            return directory
    return start


def init_config(root: Path, name: str | None = None) -> Path:
    """Write a default nsup.toml at root. Raises if already exists."""
    config_path = root / _CONFIG_FILENAME
    if config_path.exists():
        msg = f"nsup.toml already exists at {config_path}"
        raise FileExistsError(msg)

    wallet_name = name or root.name
    content = f"""\
[nsup]
name = "{wallet_name}"
# data_dir = "~/.local/share/neptune/main"   # .process-state.json is cached here
# work_dir = ".nsup"                          # logs/ for neptune-core and neptune-cli

[binaries]
core = "neptune-core"   # path or name on PATH; or set NSUP_CORE_BIN in .env
cli = "neptune-cli"     # path or name on PATH; or set NSUP_CLI_BIN in .env

# [ports]
# (neptune-core's RPC port is network.rpc_port in node-settings.toml)
# cli_rpc = 9801    # neptune-cli JSON-RPC server port

# [timing]
# freshness_window = 300.0   # trust a cached state file this long (then re-check processes)
# core_spawn_delay = 2.0
# cli_spawn_delay = 1.0
# grace_period = 2.0         # SIGTERM, then SIGKILL after this many seconds
# refresh_interval = 5.0     # wallet summary poll
# restart_cooldown = 1.0

# [readiness]
# attempts = 30
# initial_delay = 1.0
# factor = 1.1
# max_delay = 2.0
# attempt_timeout = 0.9      # must be below initial_delay
"""
    config_path.write_text(content)
    return config_path
