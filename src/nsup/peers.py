"""Peer registry: a JSON list of peer records, keyed by network.

peers.json layout:
    {
      "peers": [
        {"id": "p-1a2b3c4d", "address": "51.15.139.238:9798", "network": "main",
         "type": "bootstrap", "enabled": true, "is_banned": false, "is_default": true, ...}
      ]
    }

The registry is seeded with DEFAULT_BOOTSTRAP_PEERS the first time it is
loaded empty. Only enabled, unbanned peers on the selected network reach the
neptune-core command line (see PeerRegistry.enabled_peers).
"""

from __future__ import annotations

import json
import logging
import re
import time
import uuid
from dataclasses import asdict, dataclass, fields
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from pathlib import Path

log = logging.getLogger("nsup.peers")

PEER_TYPES = ("bootstrap", "manual", "discovered")

# Only "main" has known-good bootstrap nodes.
DEFAULT_BOOTSTRAP_PEERS: dict[str, list[dict[str, Any]]] = {
    "main": [
        {"address": "51.15.139.238:9798", "label": "Official Bootstrap Node 1"},
        {"address": "139.162.193.206:9798", "label": "Official Bootstrap Node 2"},
    ],
    "testnet": [],
    "regtest": [],
}

_ADDRESS_RE = re.compile(r"^(\[?[a-zA-Z0-9\-.:]+\]?):(\d{1,5})$")


def new_peer_id() -> str:
    return "p-" + uuid.uuid4().hex[:8]


@dataclass
class PeerRecord:
    """One entry in peers.json."""

    address: str
    network: str = "main"
    id: str = ""
    label: str = ""
    type: str = "manual"             # bootstrap | manual | discovered
    enabled: bool = True
    is_banned: bool = False
    is_default: bool = False
    added_at: float = 0.0
    last_seen: float | None = None
    notes: str = ""
    banned_at: float | None = None
    banned_reason: str = ""

    @property
    def eligible(self) -> bool:
        """May be passed to neptune-core as --peer."""
        return self.enabled and not self.is_banned

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> PeerRecord:
        known = {f.name for f in fields(cls)}
        # camelCase records exported by the desktop wallet
        aliases = {"isBanned": "is_banned", "isDefault": "is_default", "addedAt": "added_at",
                   "lastSeen": "last_seen", "bannedAt": "banned_at", "bannedReason": "banned_reason"}
        kwargs = {aliases.get(k, k): v for k, v in d.items()}
        return cls(**{k: v for k, v in kwargs.items() if k in known})

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def validate_peer_address(address: str) -> bool:
    """host:port (or [ipv6]:port) with port in 1..65535."""
    if not _ADDRESS_RE.match(address):
        return False
    port = int(address.rsplit(":", 1)[1])
    return 0 < port <= 65535


class PeerNotFoundError(KeyError):
    """No peer with the given id."""


class PeerRegistry:
    """JSON-backed peer store. Every mutation rewrites peers.json."""

    def __init__(self, path: Path, *, seed_defaults: bool = True) -> None:
        self.path = path
        self._peers: list[PeerRecord] = self._load()
        if seed_defaults and not self._peers:
            self._seed_defaults()

    # ── persistence ───────────────────────────────────────────────────────────

    def _load(self) -> list[PeerRecord]:
        if not self.path.exists():
            return []
        try:
            raw = json.loads(self.path.read_text())
        except (OSError, json.JSONDecodeError) as exc:
            log.warning("failed to read %s: %s (starting empty)", self.path, exc)
            return []
        return [PeerRecord.from_dict(p) for p in raw.get("peers", [])]

    def _save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = {"peers": [p.to_dict() for p in self._peers]}
        self.path.write_text(json.dumps(data, indent=2) + "\n")

    def _seed_defaults(self) -> None:
        now = time.time()
        for network, entries in DEFAULT_BOOTSTRAP_PEERS.items():
            for entry in entries:
                self._peers.append(PeerRecord(
                    address=entry["address"],
                    label=entry.get("label", ""),
                    network=network,
                    id=new_peer_id(),
                    type="bootstrap",
                    is_default=True,
                    added_at=now,
                ))
        log.info("seeded %d default bootstrap peers", len(self._peers))
        self._save()

    # ── queries ───────────────────────────────────────────────────────────────

    def all_peers(self, network: str | None = None) -> list[PeerRecord]:
        if network is None:
            return list(self._peers)
        return [p for p in self._peers if p.network == network]

    def get(self, peer_id: str) -> PeerRecord | None:
        return next((p for p in self._peers if p.id == peer_id), None)

    def active_peers(self, network: str | None = None) -> list[PeerRecord]:
        return [p for p in self.all_peers(network) if not p.is_banned]

    def banned_peers(self, network: str | None = None) -> list[PeerRecord]:
        return [p for p in self.all_peers(network) if p.is_banned]

    def enabled_peers(self, network: str) -> list[PeerRecord]:
        """Peers neptune-core should dial on this network."""
        return [p for p in self.active_peers(network) if p.enabled]

    # ── mutations ─────────────────────────────────────────────────────────────

    def add(
        self,
        address: str,
        *,
        network: str = "main",
        label: str = "",
        peer_type: str = "manual",
        enabled: bool = True,
        notes: str = "",
    ) -> PeerRecord:
        if not validate_peer_address(address):
            msg = f"invalid peer address {address!r} (expected host:port)"
            raise ValueError(msg)
        if peer_type not in PEER_TYPES:
            msg = f"invalid peer type {peer_type!r} (expected one of {', '.join(PEER_TYPES)})"
            raise ValueError(msg)
        peer = PeerRecord(
            address=address,
            network=network,
            id=new_peer_id(),
            label=label,
            type=peer_type,
            enabled=enabled,
            added_at=time.time(),
            notes=notes,
        )
        self._peers.append(peer)
        self._save()
        return peer

    def update(self, peer_id: str, **changes: Any) -> PeerRecord:
        peer = self.get(peer_id)
        if peer is None:
            raise PeerNotFoundError(peer_id)
        known = {f.name for f in fields(PeerRecord)} - {"id"}
        for key, value in changes.items():
            if key not in known:
                msg = f"unknown peer field {key!r}"
                raise ValueError(msg)
            setattr(peer, key, value)
        self._save()
        return peer

    def delete(self, peer_id: str) -> None:
        peer = self.get(peer_id)
        if peer is None:
            raise PeerNotFoundError(peer_id)
        if peer.is_default:
            msg = "cannot delete a default bootstrap peer (disable it instead)"
            raise ValueError(msg)
        self._peers = [p for p in self._peers if p.id != peer_id]
        self._save()

    def ban(self, peer_id: str, reason: str = "") -> PeerRecord:
        """Ban and disable. Unbanning is deleting the record."""
        return self.update(
            peer_id, is_banned=True, banned_at=time.time(), banned_reason=reason, enabled=False,
        )

    def toggle(self, peer_id: str, enabled: bool) -> PeerRecord:
        return self.update(peer_id, enabled=enabled)
