"""Build the neptune-core argument vector from NodeSettings and the peer registry.

Only settings that differ from their defaults become flags, so an untouched
configuration launches neptune-core with no arguments at all. Order is fixed:

    1. per-field flags, category by category (CATEGORY_ORDER), fields in declaration order
    2. --peer ADDRESS for every enabled, unbanned peer on the selected network
    3. computed flags (--mine when compose or guess is on)
    4. the block-notify command as the single trailing positional argument

The same inputs always produce the same vector.
"""


from __future__ import annotations

import logging
import shlex
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from nsup.flags import COMPUTED_FLAGS, CONSUMED_FIELDS, FlagDescriptor, category_descriptors
from nsup.settings import CATEGORY_ORDER

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from nsup.peers import PeerRecord
    from nsup.settings import NodeSettings

    EnabledPeers = Callable[[str], Iterable[PeerRecord]]

log = logging.getLogger("nsup.args")

CORE_COMMAND = "neptune-core"
POSITIONAL = "positional"

# (category, tokens): one flag with its value, or the trailing positional
Chunk = tuple[str, list[str]]


def compile_args(
    settings: NodeSettings,
    defaults: NodeSettings,
    enabled_peers: EnabledPeers | None = None,
) -> list[str]:
    """Return the minimal argument vector for neptune-core."""
    args = _flatten(_compile(settings, defaults, enabled_peers))
    log.info("neptune-core args: %s", shlex.join(args) or "(none)")
    return args


def _compile(
    settings: NodeSettings,
    defaults: NodeSettings,
    enabled_peers: EnabledPeers | None,
) -> list[Chunk]:
    chunks: list[Chunk] = []

    for category in CATEGORY_ORDER:
        _add_category(chunks, category, settings.category(category), defaults.category(category))

    network = settings.network.network
    if enabled_peers is not None:
        _add_peer_flags(chunks, network, enabled_peers)

    for computed in COMPUTED_FLAGS:
        if computed.active(settings):
            chunks.append((computed.fields[0].partition(".")[0], [computed.flag]))
            log.debug("added %s (%s)", computed.flag, " or ".join(computed.fields))

    notify = settings.advanced.block_notify_command
    if notify:
        chunks.append((POSITIONAL, [notify]))
    return chunks


def _flatten(chunks: list[Chunk]) -> list[str]:
    return [token for _, tokens in chunks for token in tokens]


def _add_category(
    chunks: list[Chunk], category: str, current: dict[str, Any], defaults: dict[str, Any],
) -> None:
    descriptors = category_descriptors(category)
    for name, value in current.items():
        key = f"{category}.{name}"
        if key in CONSUMED_FIELDS:
            continue
        if name in defaults and values_equal(value, defaults[name]):
            continue
        # None / [] mean "let neptune-core apply its own default"
        if value is None or (isinstance(value, list) and not value):
            continue
        descriptor = descriptors.get(name)
        if descriptor is None:
            log.warning("no CLI flag for setting %s, skipping", key)
            continue
        _add_flag(chunks, category, descriptor, value)


def _add_flag(chunks: list[Chunk], category: str, descriptor: FlagDescriptor, value: Any) -> None:
    if descriptor.kind == "boolean":
        if value is True:
            chunks.append((category, [descriptor.flag]))
    elif descriptor.kind == "repeated":
        items = value if isinstance(value, (list, tuple)) else [value]
        for item in items:
            chunks.append((category, [descriptor.flag, _stringify(item)]))
    else:
        text = _stringify(value)
        chunks.append((category, [descriptor.flag, descriptor.value_map.get(text, text)]))


def _add_peer_flags(chunks: list[Chunk], network: str, enabled_peers: EnabledPeers) -> None:
    try:
        peers = list(enabled_peers(network))
    except Exception:
        log.exception("failed to load peers for network %s", network)
        return
    # re-checked here: the provider is not trusted to filter
    eligible = [p for p in peers if p.network == network and p.eligible]
    for peer in eligible:
        chunks.append(("network", ["--peer", peer.address]))
    if eligible:
        log.info("added %d --peer flags for network %s", len(eligible), network)


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return str(value).lower()
    return str(value)


def values_equal(a: Any, b: Any) -> bool:
    """Deep equality; list order matters. 1 and 1.0 are equal, True and 1 are not."""
    if isinstance(a, bool) or isinstance(b, bool):
        return type(a) is type(b) and a == b
    if isinstance(a, (list, tuple)) and isinstance(b, (list, tuple)):
        return len(a) == len(b) and all(values_equal(x, y) for x, y in zip(a, b))
    if isinstance(a, dict) and isinstance(b, dict):
        return a.keys() == b.keys() and all(values_equal(a[k], b[k]) for k in a)
    return a == b


# ---------------------------------------------------------------------------
# Preview (display only)
# ---------------------------------------------------------------------------


@dataclass
class ArgsPreview:
    args: list[str]
    command: str
    explanation: list[str] = field(default_factory=list)


def preview_args(
    settings: NodeSettings,
    defaults: NodeSettings,
    enabled_peers: EnabledPeers | None = None,
    *,
    command: str = CORE_COMMAND,
) -> ArgsPreview:
    """compile_args plus the equivalent shell command and an explanation grouped by category."""
    chunks = _compile(settings, defaults, enabled_peers)
    args = _flatten(chunks)

    grouped: dict[str, list[str]] = {}
    for category, tokens in chunks:
        grouped.setdefault(category.capitalize(), []).append(" ".join(tokens))

    explanation = [f"Generated {len(args)} CLI arguments:"]
    explanation.extend(f"  {label}: {', '.join(items)}" for label, items in grouped.items())
    return ArgsPreview(args=args, command=shlex.join([command, *args]), explanation=explanation)
