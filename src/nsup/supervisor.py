"""Process supervisor for neptune-core and neptune-cli.

Startup (initialize):
    0. fast path: a fresh cached state that claims "initialized" AND both of
       our process handles still alive → done, nothing is spawned
    1. both binaries must exist and be executable (no retry)
    2. compile args from settings + peers, spawn neptune-core
    3. concurrently, and joined:
         a. spawn neptune-cli in RPC-server mode
         b. poll `neptune-cli --get-cookie` until neptune-core hands out a cookie
    4. hand the cookie to the RPC client, start the wallet refresh thread,
       cache state, RUNNING
Any failure before step 4 completes shuts everything down before re-raising.

Shutdown stops the refresh thread, disconnects the RPC client, then stops
neptune-cli before neptune-core: SIGTERM, grace period, SIGKILL.
"""

from __future__ import annotations

import logging
import os
import random
import signal
import subprocess
import threading
import time
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from dataclasses import asdict, dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from nsup.args_builder import compile_args
from nsup.cookie import NodeNotReadyError, RetryPolicy, wait_for_cookie
from nsup.errors import SupervisorError
from nsup.rpc_client import NodeRpcClient
from nsup.settings import NodeSettings, load_settings
from nsup.state import SupervisorState, read_state, write_state

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable
    from pathlib import Path

    from nsup.config import SupervisorConfig
    from nsup.peers import PeerRecord

log = logging.getLogger("nsup.supervisor")

__all__ = [
    "BinaryNotFoundError",
    "NodeNotReadyError",
    "Phase",
    "ProcessExitedError",
    "ProcessSpawnError",
    "ProcessStatus",
    "Supervisor",
    "SupervisorError",
]


class BinaryNotFoundError(SupervisorError):
    """neptune-core or neptune-cli is missing or not executable."""


class ProcessSpawnError(SupervisorError):
    """The OS refused to start a child process."""


class ProcessExitedError(SupervisorError):
    """A child process died while it was still needed."""


class Phase(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"


@dataclass
class ProcessStatus:
    node_running: bool = False
    node_pid: int | None = None
    companion_running: bool = False
    companion_pid: int | None = None
    initialized: bool = False
    phase: str = Phase.UNINITIALIZED.value

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _backoff_delay(restart_count: int, max_delay: float = 60.0) -> float:
    """Exponential backoff with ±20% jitter."""
    base = min(2.0 ** restart_count, max_delay)
    jitter = random.uniform(-base * 0.2, base * 0.2)
    return max(1.0, base + jitter)


def _alive(proc: subprocess.Popen | None) -> bool:
    return proc is not None and proc.poll() is None


class Supervisor:
    """Owns the neptune-core and neptune-cli processes and the node cookie.

    Nothing else may spawn, signal or kill these processes. Collaborators are
    injected so tests can run against fake binaries and in-memory peers.
    """

    def __init__(
        self,
        cfg: SupervisorConfig,
        *,
        settings_provider: Callable[[], NodeSettings] | None = None,
        enabled_peers: Callable[[str], Iterable[PeerRecord]] | None = None,
        rpc: NodeRpcClient | None = None,
        on_summary: Callable[[dict[str, Any]], None] | None = None,
    ) -> None:
        self.cfg = cfg
        self._settings_provider = settings_provider or (lambda: load_settings(cfg.settings_path))
        self._enabled_peers = enabled_peers
        self.rpc = rpc or NodeRpcClient(cfg.ports.cli_rpc)
        self._on_summary = on_summary
        self.policy = RetryPolicy(**asdict(cfg.readiness))

        self._core: subprocess.Popen | None = None
        self._cli: subprocess.Popen | None = None
        self._cookie: str | None = None
        self._core_rpc_port: int | None = None   # from the settings of the current launch
        self._state_path = cfg.state_path
        self._initialized = False
        self._phase = Phase.UNINITIALIZED

        self._init_lock = threading.Lock()       # held for the whole of initialize()
        self._state_lock = threading.RLock()     # guards handles, phase, flags
        self._abort = threading.Event()          # set by shutdown: stop waiting on startup
        self._refresh_stop = threading.Event()
        self._refresh_thread: threading.Thread | None = None

        self.last_args: list[str] = []
        self.latest_summary: dict[str, Any] | None = None

    # ── public ────────────────────────────────────────────────────────────────

    @property
    def phase(self) -> Phase:
        return self._phase

    @property
    def state_path(self) -> Path:
        """Cached state file of the current launch (follows the node data_dir setting)."""
        return self._state_path

    def initialize(self) -> bool:
        """Start both processes. Returns False when the call was a no-op.

        A call made while another initialize() is in flight is rejected
        immediately rather than racing a second launch.
        """
        if not self._init_lock.acquire(blocking=False):
            log.warning("initialization already in progress, ignoring")
            return False
        try:
            return self._initialize()
        finally:
            self._init_lock.release()

    def get_status(self) -> ProcessStatus:
        """Liveness of both handles. Never blocks, never raises."""
        try:
            core, cli = self._core, self._cli
            return ProcessStatus(
                node_running=_alive(core),
                node_pid=core.pid if core is not None else None,
                companion_running=_alive(cli),
                companion_pid=cli.pid if cli is not None else None,
                initialized=self._initialized,
                phase=self._phase.value,
            )
        except Exception:
            log.debug("status degraded to not running", exc_info=True)
            return ProcessStatus(initialized=False, phase=self._phase.value)

    def get_cookie(self) -> str | None:
        """The node cookie, or None before startup finished / after shutdown."""
        return self._cookie

    def shutdown(self) -> None:
        """Best effort: always ends UNINITIALIZED with no owned processes."""
        self._abort.set()
        with self._state_lock:
            log.info("shutting down neptune processes")
            self._phase = Phase.SHUTTING_DOWN
            try:
                self._stop_refresh()
                try:
                    self.rpc.disconnect()
                except Exception as exc:
                    log.warning("failed to disconnect rpc client: %s", exc)
                self._stop_process("neptune-cli", self._cli)
                self._stop_process("neptune-core", self._core)
            finally:
                self._cli = None
                self._core = None
                self._cookie = None
                self._initialized = False
                self._phase = Phase.UNINITIALIZED
        log.info("neptune processes shut down")

    def restart(self) -> bool:
        """Full shutdown, cooldown, full initialize. No partial-failure special cases."""
        log.info("restarting neptune processes")
        self.shutdown()
        time.sleep(self.cfg.timing.restart_cooldown)
        return self.initialize()

    def run_forever(self, watch_interval: float = 1.0, *, restart_on_exit: bool = True) -> None:
        """Initialize, then keep both processes alive until SIGINT/SIGTERM."""
        stop = threading.Event()

        def _on_signal(*_: object) -> None:
            stop.set()

        previous = {sig: signal.signal(sig, _on_signal) for sig in (signal.SIGTERM, signal.SIGINT)}

        restarts = 0
        try:
            self.initialize()
            while not stop.wait(watch_interval):
                st = self.get_status()
                if st.node_running and st.companion_running:
                    continue
                dead = [name for name, up in (("neptune-core", st.node_running),
                                              ("neptune-cli", st.companion_running)) if not up]
                log.error("%s exited unexpectedly", ", ".join(dead))
                if not restart_on_exit:
                    break
                delay = _backoff_delay(restarts)
                log.info("restarting in %.1fs (restart #%d)", delay, restarts + 1)
                if stop.wait(delay):
                    break
                restarts += 1
                try:
                    self.restart()
                except SupervisorError as exc:
                    log.error("restart failed: %s", exc)
        finally:
            self.shutdown()
            for sig, handler in previous.items():
                signal.signal(sig, handler)

    # ── startup ───────────────────────────────────────────────────────────────

    def _initialize(self) -> bool:
        if self._can_skip_initialization():
            return False

        with self._state_lock:
            leftovers = self._core is not None or self._cli is not None
        if leftovers:
            log.info("previous processes are not both alive, cleaning up before relaunch")
            self.shutdown()

        self._abort.clear()
        self._phase = Phase.INITIALIZING
        log.info("starting neptune initialization sequence")
        try:
            self._validate_binaries()
            settings = self._settings_provider()
            self._start_core(settings)

            with ThreadPoolExecutor(max_workers=2, thread_name_prefix="nsup-startup") as pool:
                cookie_future = pool.submit(self._wait_for_core_ready)
                cli_future = pool.submit(self._start_cli)
                done, _ = wait([cookie_future, cli_future], return_when=FIRST_EXCEPTION)
                failure = next((f.exception() for f in done if f.exception() is not None), None)
                if failure is not None:
                    self._abort.set()   # the other branch stops waiting
                    raise failure
                cli_future.result()
                cookie = cookie_future.result()

            with self._state_lock:
                if self._abort.is_set():
                    msg = "startup aborted by shutdown"
                    raise SupervisorError(msg)
                self._cookie = cookie
                self.rpc.set_cookie(cookie)
                self._start_refresh()
                self._initialized = True
                self._phase = Phase.RUNNING
            write_state(self._state_path, SupervisorState(
                timestamp=time.time(),
                config=self._snapshot(settings),
                initialized=True,
            ))
        except Exception as exc:
            log.error("neptune initialization failed: %s", exc)
            self.shutdown()
            raise
        log.info("neptune initialization completed (core pid %s, cli pid %s)",
                 self._core.pid if self._core else None, self._cli.pid if self._cli else None)
        return True

    def _can_skip_initialization(self) -> bool:
        """Cached state is a hint; our own live handles are the proof."""
        st = self.get_status()
        if not (st.node_running and st.companion_running):
            return False
        state = read_state(self._state_path)
        if state is not None and state.initialized and state.is_fresh(self.cfg.timing.freshness_window):
            log.info("processes already running (cached state fresh), initialization skipped")
        elif self._initialized:
            log.info("processes already running, refreshing cached state")
            write_state(self._state_path, SupervisorState(
                timestamp=time.time(),
                config=self._snapshot(None),
                initialized=True,
            ))
        else:
            return False
        with self._state_lock:
            self._initialized = True
            self._phase = Phase.RUNNING
        return True

    def _validate_binaries(self) -> None:
        for name, path in (("neptune-core", self.cfg.core_path), ("neptune-cli", self.cfg.cli_path)):
            if not path.is_file():
                msg = f"required binary {name} not found at {path}"
                raise BinaryNotFoundError(msg)
            if not os.access(path, os.X_OK):
                msg = f"required binary {name} at {path} is not executable"
                raise BinaryNotFoundError(msg)
        log.debug("binary validation successful")

    def _spawn(self, name: str, cmd: list[str]) -> subprocess.Popen:
        log_path = self.cfg.log_dir / f"{name}.log"
        log_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with log_path.open("a") as out:
                proc = subprocess.Popen(
                    cmd,
                    stdin=subprocess.DEVNULL,
                    stdout=out,
                    stderr=subprocess.STDOUT,
                    start_new_session=True,
                )
        except OSError as exc:
            msg = f"failed to start {name}: {exc}"
            raise ProcessSpawnError(msg) from exc
        if not proc.pid:
            msg = f"failed to start {name}: no PID assigned"
            raise ProcessSpawnError(msg)
        return proc

    def _settle(self, name: str, proc: subprocess.Popen, delay: float) -> None:
        """Give a fresh process `delay` seconds to fall over before trusting it."""
        self._abort.wait(delay)
        rc = proc.poll()
        if rc is not None:
            msg = f"{name} exited with code {rc} during startup (see {self.cfg.log_dir / (name + '.log')})"
            raise ProcessExitedError(msg)

    def _start_core(self, settings: NodeSettings) -> None:
        args = compile_args(settings, NodeSettings.defaults(), self._enabled_peers)
        self.last_args = args
        self._core_rpc_port = settings.network.rpc_port
        self._state_path = self.cfg.state_path_for(settings.data.data_dir)
        with self._state_lock:
            if self._abort.is_set():
                msg = "startup aborted by shutdown"
                raise SupervisorError(msg)
            self._core = self._spawn("neptune-core", [str(self.cfg.core_path), *args])
        log.info("neptune-core started (pid %d)", self._core.pid)
        self._settle("neptune-core", self._core, self.cfg.timing.core_spawn_delay)

    def _start_cli(self) -> None:
        cmd = [
            str(self.cfg.cli_path),
            "--port", str(self._core_rpc_port),
            "--rpc-mode",
            "--rpc-port", str(self.cfg.ports.cli_rpc),
        ]
        with self._state_lock:
            if self._abort.is_set():
                msg = "startup aborted by shutdown"
                raise SupervisorError(msg)
            self._cli = self._spawn("neptune-cli", cmd)
        log.info("neptune-cli started in rpc mode (pid %d)", self._cli.pid)
        self._settle("neptune-cli", self._cli, self.cfg.timing.cli_spawn_delay)

    def _wait_for_core_ready(self) -> str:
        log.info("waiting for neptune-core to be ready")
        return wait_for_cookie(self._fetch_cookie, self.policy, stop=self._abort)

    def _fetch_cookie(self, timeout: float) -> str | None:
        """One `neptune-cli --get-cookie` attempt. None means "not ready yet"."""
        core = self._core
        if core is not None and core.poll() is not None:
            msg = f"neptune-core exited with code {core.returncode} before it became ready"
            raise ProcessExitedError(msg)
        try:
            result = subprocess.run(
                [str(self.cfg.cli_path), "--port", str(self._core_rpc_port), "--get-cookie"],
                stdin=subprocess.DEVNULL,
                capture_output=True,
                text=True,
                timeout=timeout,
                check=False,
            )
        except subprocess.TimeoutExpired:
            return None
        return result.stdout

    def _snapshot(self, settings: NodeSettings | None) -> dict[str, Any]:
        st = self.get_status()
        snap: dict[str, Any] = {
            "supervisor": self.cfg.snapshot(),
            "args": list(self.last_args),
            "pids": {"core": st.node_pid, "cli": st.companion_pid},
        }
        if settings is not None:
            snap["settings"] = settings.to_dict()
        return snap

    # ── refresh ───────────────────────────────────────────────────────────────

    def _start_refresh(self) -> None:
        self._stop_refresh()
        self._refresh_stop = threading.Event()
        t = threading.Thread(
            target=self._refresh_loop,
            args=(self._refresh_stop,),
            daemon=True,
            name="nsup-refresh",
        )
        self._refresh_thread = t
        t.start()
        log.info("wallet refresh every %.1fs", self.cfg.timing.refresh_interval)

    def _stop_refresh(self) -> None:
        self._refresh_stop.set()
        t = self._refresh_thread
        self._refresh_thread = None
        if t is not None and t is not threading.current_thread():
            t.join(timeout=self.cfg.timing.grace_period)

    def _refresh_loop(self, stop: threading.Event) -> None:
        while not stop.wait(self.cfg.timing.refresh_interval):
            self.refresh_once()

    def refresh_once(self) -> dict[str, Any] | None:
        """One refresh tick. Failures are logged; the timer keeps going."""
        try:
            summary = self.rpc.dashboard_overview()
        except Exception as exc:
            log.warning("wallet refresh failed: %s", exc)
            return None
        self.latest_summary = summary
        if self._on_summary is not None:
            try:
                self._on_summary(summary)
            except Exception:
                log.exception("wallet summary callback failed")
        log.debug("wallet summary refreshed")
        return summary

    # ── shutdown ──────────────────────────────────────────────────────────────

    def _stop_process(self, name: str, proc: subprocess.Popen | None) -> None:
        if proc is None:
            return
        if proc.poll() is not None:
            log.debug("%s already exited (rc=%s)", name, proc.returncode)
            return
        grace = self.cfg.timing.grace_period
        log.info("stopping %s (pid %d)", name, proc.pid)
        try:
            proc.terminate()
            try:
                proc.wait(timeout=grace)
            except subprocess.TimeoutExpired:
                log.warning("%s ignored SIGTERM for %.1fs, sending SIGKILL", name, grace)
                proc.kill()
                proc.wait(timeout=grace)
        except (OSError, subprocess.SubprocessError) as exc:
            log.warning("error stopping %s: %s", name, exc)
