"""Flag descriptors: how each settings field becomes neptune-core CLI flags.

Keys are "category.field". A field with no descriptor is dropped from the
command line (args_builder logs it); it never fails the build.

Kinds:
    boolean   emit the flag alone when the value is true; false emits nothing
    valued    emit "flag value" (value optionally rewritten through value_map)
    repeated  emit one "flag element" pair per list element, in order
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:
    from collections.abc import Callable

    from nsup.settings import NodeSettings

FlagKind = Literal["boolean", "valued", "repeated"]


@dataclass(frozen=True)
class FlagDescriptor:
    flag: str
    kind: FlagKind
    value_map: dict[str, str] = field(default_factory=dict)
    separator: str | None = None      # informational: repeated flags are emitted as separate pairs


def _bool(flag: str) -> FlagDescriptor:
    return FlagDescriptor(flag, "boolean")


def _val(flag: str, value_map: dict[str, str] | None = None) -> FlagDescriptor:
    return FlagDescriptor(flag, "valued", value_map or {})


def _rep(flag: str) -> FlagDescriptor:
    return FlagDescriptor(flag, "repeated", separator=" ")


FLAG_MAP: dict[str, FlagDescriptor] = {
    # network
    "network.network": _val("--network", {
        "main": "main", "alpha": "alpha", "beta": "beta", "testnet": "testnet", "regtest": "regtest",
    }),
    "network.peer_port": _val("--peer-port"),
    "network.rpc_port": _val("--rpc-port"),
    "network.peer_listen_addr": _val("--peer-listen-addr"),
    "network.max_num_peers": _val("--max-num-peers"),
    "network.max_connections_per_ip": _val("--max-connections-per-ip"),
    "network.peer_tolerance": _val("--peer-tolerance"),
    "network.reconnect_cooldown": _val("--reconnect-cooldown"),
    "network.restrict_peers_to_list": _bool("--restrict-peers-to-list"),
    "network.bootstrap": _bool("--bootstrap"),
    "network.peers": _rep("--peer"),

    # mining (compose / guess are folded into the computed --mine flag)
    "mining.tx_proof_upgrading": _bool("--tx-proof-upgrading"),
    "mining.tx_upgrade_filter": _val("--tx-upgrade-filter"),
    "mining.gobbling_fraction": _val("--gobbling-fraction"),
    "mining.min_gobbling_fee": _val("--min-gobbling-fee"),
    "mining.max_num_compose_mergers": _val("--max-num-compose-mergers"),
    "mining.secret_compositions": _bool("--secret-compositions"),
    "mining.whitelisted_composers": _rep("--whitelisted-composer"),
    "mining.ignore_foreign_compositions": _bool("--ignore-foreign-compositions"),
    "mining.guesser_threads": _val("--guesser-threads"),
    "mining.guesser_fraction": _val("--guesser-fraction"),
    "mining.minimum_guesser_fraction": _val("--minimum-guesser-fraction"),
    "mining.minimum_guesser_improvement_fraction": _val("--minimum-guesser-improvement-fraction"),

    # performance
    "performance.max_log2_padded_height_for_proofs": _val("--max-log2-padded-height-for-proofs"),
    "performance.max_num_proofs": _val("--max-num-proofs"),
    "performance.triton_vm_env_vars": _val("--triton-vm-env-vars"),
    "performance.sync_mode_threshold": _val("--sync-mode-threshold"),
    "performance.max_mempool_size": _val("--max-mempool-size"),
    "performance.tx_proving_capability": _val("--tx-proving-capability", {
        "lockscript": "lockscript", "singleproof": "singleproof", "proofcollection": "proofcollection",
    }),
    "performance.number_of_mps_per_utxo": _val("--number-of-mps-per-utxo"),

    # security
    "security.disable_cookie_hint": _bool("--disable-cookie-hint"),
    "security.banned_ips": _rep("--ban"),
    "security.no_transaction_initiation": _bool("--no-transaction-initiation"),
    "security.fee_notification": _val("--fee-notification", {
        "on-chain-symmetric": "on-chain-symmetric",
        "on-chain-generation": "on-chain-generation",
        "off-chain": "off-chain",
    }),
    "security.scan_blocks": _val("--scan-blocks"),
    "security.scan_keys": _val("--scan-keys"),

    # data
    "data.data_dir": _val("--data-dir"),
    "data.import_blocks_from_directory": _val("--import-blocks-from-directory"),
    "data.import_block_flush_period": _val("--import-block-flush-period"),
    "data.disable_validation_in_block_import": _bool("--disable-validation-in-block-import"),

    # advanced
    "advanced.tokio_console": _bool("--tokio-console"),
}

# The one field emitted as a bare trailing positional argument.
POSITIONAL_FIELD = "advanced.block_notify_command"


@dataclass(frozen=True)
class ComputedFlag:
    """A flag switched on by a predicate over several fields, not by one field's diff."""

    flag: str
    fields: tuple[str, ...]                       # the "category.field" keys it consumes
    active: Callable[[NodeSettings], bool]


COMPUTED_FLAGS: tuple[ComputedFlag, ...] = (
    ComputedFlag(
        flag="--mine",
        fields=("mining.compose", "mining.guess"),
        active=lambda s: bool(s.mining.compose or s.mining.guess),
    ),
)

# Fields consumed only by computed flags or the positional slot: skipped without a warning.
CONSUMED_FIELDS: frozenset[str] = frozenset(
    {key for cf in COMPUTED_FLAGS for key in cf.fields} | {POSITIONAL_FIELD}
)


def descriptor_for(key: str) -> FlagDescriptor | None:
    """Descriptor for a "category.field" key, or None if it has no flag."""
    return FLAG_MAP.get(key)


def category_descriptors(category: str) -> dict[str, FlagDescriptor]:
    """Field name → descriptor for one category, in FLAG_MAP order."""
    prefix = f"{category}."
    return {key[len(prefix):]: d for key, d in FLAG_MAP.items() if key.startswith(prefix)}
