"""nsup: supervisor for a neptune-core full node and its neptune-cli RPC companion.

Layout:
    nsup.toml              # where the binaries are, ports, timings
    node-settings.toml     # neptune-core settings → minimal CLI args
    peers.json             # peer registry → --peer flags
    <data_dir>/
        .process-state.json   # cached supervisor state (a restart hint only)

Startup order: neptune-core first; then neptune-cli (RPC server mode) is spawned
while the node is polled for its cookie; both must succeed. Shutdown runs in
reverse: neptune-cli, then neptune-core, SIGTERM before SIGKILL.
"""

from nsup.args_builder import ArgsPreview, compile_args, preview_args
from nsup.config import SupervisorConfig, init_config, load_config
from nsup.peers import PeerRecord, PeerRegistry
from nsup.settings import NodeSettings, load_settings
from nsup.supervisor import ProcessStatus, Supervisor, SupervisorError

__all__ = [
    "ArgsPreview",
    "NodeSettings",
    "PeerRecord",
    "PeerRegistry",
    "ProcessStatus",
    "Supervisor",
    "SupervisorConfig",
    "SupervisorError",
    "compile_args",
    "init_config",
    "load_config",
    "load_settings",
    "preview_args",
]
