"""NodeSettings: the persisted neptune-core configuration, one dataclass per category.

node-settings.toml holds one table per category. Keys may be snake_case or the
camelCase used by the wallet UI; both load into the same field:

    [network]
    network = "testnet"
    peers = ["203.0.113.7:9798"]

    [mining]
    compose = true
    guesserThreads = 4

Only fields that differ from the defaults below end up on the neptune-core
command line (see args_builder). None means "unset: let neptune-core decide".
"""

from __future__ import annotations

import copy
import logging
import re
import tomllib
from dataclasses import asdict, dataclass, field, fields
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from pathlib import Path

log = logging.getLogger("nsup.settings")

CATEGORY_ORDER: tuple[str, ...] = ("network", "mining", "performance", "security", "data", "advanced")

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


@dataclass
class NetworkSettings:
    network: str = "main"                    # main | alpha | beta | testnet | regtest
    peer_port: int = 9798
    rpc_port: int = 9799
    peer_listen_addr: str = "::"
    peers: list[str] = field(default_factory=list)   # "ip:port" strings
    max_num_peers: int = 10
    max_connections_per_ip: int | None = None
    peer_tolerance: int = 1000
    reconnect_cooldown: int = 1800
    restrict_peers_to_list: bool = False
    bootstrap: bool = False


@dataclass
class MiningSettings:
    # step 1: proof upgrading
    tx_proof_upgrading: bool = False
    tx_upgrade_filter: str | None = "1:0"    # "divisor:remainder"
    gobbling_fraction: float = 0.6
    min_gobbling_fee: float = 0.01
    # step 2: composition
    compose: bool = False
    max_num_compose_mergers: int = 1
    secret_compositions: bool = False
    whitelisted_composers: list[str] = field(default_factory=list)
    ignore_foreign_compositions: bool = False
    # step 3: guessing
    guess: bool = False
    guesser_threads: int | None = None       # None = number of CPU cores
    guesser_fraction: float = 0.5
    minimum_guesser_fraction: float = 0.5
    minimum_guesser_improvement_fraction: float = 0.17


@dataclass
class PerformanceSettings:
    max_log2_padded_height_for_proofs: int | None = None
    max_num_proofs: int = 16
    triton_vm_env_vars: str | None = None    # 'height:"KEY=VAL ..."'
    sync_mode_threshold: int = 1000
    max_mempool_size: str = "1G"
    tx_proving_capability: str | None = None  # lockscript | singleproof | proofcollection
    number_of_mps_per_utxo: int = 3


@dataclass
class SecuritySettings:
    disable_cookie_hint: bool = False
    banned_ips: list[str] = field(default_factory=list)
    no_transaction_initiation: bool = False
    fee_notification: str = "on-chain-symmetric"
    scan_blocks: str | None = None           # "..", "..1337", "1337..", "13..=37"
    scan_keys: int | None = None


@dataclass
class DataSettings:
    data_dir: str | None = None
    import_blocks_from_directory: str | None = None
    import_block_flush_period: int = 250
    disable_validation_in_block_import: bool = False


@dataclass
class AdvancedSettings:
    tokio_console: bool = False
    block_notify_command: str | None = None  # positional: run when the best block changes


_CATEGORY_TYPES: dict[str, type] = {
    "network": NetworkSettings,
    "mining": MiningSettings,
    "performance": PerformanceSettings,
    "security": SecuritySettings,
    "data": DataSettings,
    "advanced": AdvancedSettings,
}


@dataclass
class NodeSettings:
    """The full settings tree. Unknown keys from disk are kept in `extra`."""

    network: NetworkSettings = field(default_factory=NetworkSettings)
    mining: MiningSettings = field(default_factory=MiningSettings)
    performance: PerformanceSettings = field(default_factory=PerformanceSettings)
    security: SecuritySettings = field(default_factory=SecuritySettings)
    data: DataSettings = field(default_factory=DataSettings)
    advanced: AdvancedSettings = field(default_factory=AdvancedSettings)
    extra: dict[str, dict[str, Any]] = field(default_factory=dict)

    @classmethod
    def defaults(cls) -> NodeSettings:
        return cls()

    def category(self, name: str) -> dict[str, Any]:
        """Field name → value, in declaration order, then any unknown keys sorted."""
        section = getattr(self, name)
        values = {f.name: getattr(section, f.name) for f in fields(section)}
        for key in sorted(self.extra.get(name, {})):
            values.setdefault(key, self.extra[name][key])
        return values

    def to_dict(self) -> dict[str, Any]:
        d = {name: asdict(getattr(self, name)) for name in CATEGORY_ORDER}
        if self.extra:
            d["extra"] = copy.deepcopy(self.extra)
        return d

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> NodeSettings:
        settings = cls()
        for name in CATEGORY_ORDER:
            section = raw.get(name) or {}
            if not isinstance(section, dict):
                log.warning("settings: [%s] is not a table, using defaults", name)
                continue
            target = getattr(settings, name)
            known = {f.name for f in fields(target)}
            for key, value in section.items():
                attr = to_snake_case(key)
                if attr in known:
                    # TOML has no null: "" on an optional field means unset
                    if value == "" and getattr(target, attr) is None:
                        continue
                    setattr(target, attr, copy.deepcopy(value))
                else:
                    settings.extra.setdefault(name, {})[attr] = copy.deepcopy(value)
        return settings


def to_snake_case(key: str) -> str:
    """peerListenAddr → peer_listen_addr; snake_case passes through."""
    return _CAMEL_BOUNDARY.sub("_", key).lower()


def load_settings(path: Path) -> NodeSettings:
    """Read node-settings.toml; a missing file means all defaults."""
    if not path.exists():
        log.debug("no settings file at %s, using defaults", path)
        return NodeSettings()
    with path.open("rb") as f:
        raw = tomllib.load(f)
    return NodeSettings.from_dict(raw)


def init_settings(path: Path) -> Path:
    """Write a commented node-settings.toml. Raises if already exists."""
    if path.exists():
        msg = f"node-settings.toml already exists at {path}"
        raise FileExistsError(msg)
    lines = ["# neptune-core settings. Only values that differ from the defaults are passed on.", ""]
    for name in CATEGORY_ORDER:
        lines.append(f"[{name}]")
        for f in fields(_CATEGORY_TYPES[name]):
            default = getattr(_CATEGORY_TYPES[name](), f.name)
            lines.append(f"# {f.name} = {_toml_literal(default)}")
        lines.append("")
    path.write_text("\n".join(lines))
    return path


def _toml_literal(value: Any) -> str:
    if value is None:
        return '""   # unset'
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, str):
        return f'"{value}"'
    if isinstance(value, list):
        return "[" + ", ".join(_toml_literal(v) for v in value) + "]"
    return str(value)
