import time
import shutil
import logging
import threading
import subprocess
from pathlib import Path
from functools import partial
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Sequence

from botpanel.local.broadcast import LogBroadcaster
from botpanel.local.config import effective_settings as config
from botpanel.local.errors import (BUSY_INSTALLING, BUSY_RUNNING, ENTRYPOINT_NOT_FOUND, FILESYSTEM_ERROR, NO_MANIFEST,
                                   NOT_FOUND, BotPanelError, ConflictError, IOFailureError, NotFoundError,
                                   ResolutionError)
from botpanel.local.registry import BotRegistry
from botpanel.local.supervisor import deployment, process_utils, shutdown
from botpanel.local.supervisor.environment import resolve_environment
from botpanel.local.supervisor.state import BotEvent, BotState, next_state

log = logging.getLogger(__name__)


@dataclass
class RunningInstance:
    """The live process of a running bot. Exists only while the process is alive."""
    process: subprocess.Popen
    started_at: float = field(default_factory=time.time)
    restart_pending: bool = False
    exited: threading.Event = field(default_factory=threading.Event)

    @property
    def pid(self) -> int:
        return self.process.pid


class BotCell:
    """
    Exclusive-access cell for one bot.

    Every path that touches a bot's process (start, the exit handler, stop,
    restart, install, delete, deploy) holds `lock` while it reads or mutates
    the cell, so at most one instance per bot can ever exist.
    """

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.state = BotState.STOPPED
        self.instance: Optional[RunningInstance] = None
        self.install_process: Optional[subprocess.Popen] = None
        self.restart_timer: Optional[threading.Timer] = None


class BotSupervisor:
    """
    Owns the bots' child processes and drives their lifecycle.

    Operations raise `BotPanelError` subclasses for every expected failure;
    crashes of the bots themselves are reported as lifecycle lines on the
    broadcaster, never as errors.
    """

    def __init__(
        self,
        bots_dir: Path,
        registry: BotRegistry,
        broadcaster: Optional[LogBroadcaster] = None,
        runtime: str = config.BOT_RUNTIME,
        install_command: str = config.INSTALL_COMMAND,
        manifest_file: str = config.MANIFEST_FILE,
        entrypoint_candidates: Sequence[str] = config.ENTRYPOINT_CANDIDATES,
        restart_delay: float = config.RESTART_QUIESCENCE_SECONDS,
        deploy_stop_timeout: float = config.DEPLOY_STOP_TIMEOUT,
        pipe_drain_timeout: float = config.PIPE_DRAIN_TIMEOUT,
    ) -> None:
        self.bots_dir = bots_dir
        self.registry = registry
        self.broadcaster = broadcaster or LogBroadcaster()
        self.runtime = runtime
        self.install_command = install_command
        self.manifest_file = manifest_file
        self.entrypoint_candidates = tuple(entrypoint_candidates)
        self.restart_delay = float(restart_delay)
        self.deploy_stop_timeout = float(deploy_stop_timeout)
        self.pipe_drain_timeout = float(pipe_drain_timeout)

        self._cells: Dict[str, BotCell] = {}
        self._cells_lock = threading.Lock()

    @classmethod
    def from_settings(cls, broadcaster: Optional[LogBroadcaster] = None) -> "BotSupervisor":
        """Builds a supervisor from the effective application settings."""
        return cls(
            bots_dir=config.BOTS_DIR,
            registry=BotRegistry(config.REGISTRY_PATH),
            broadcaster=broadcaster,
            runtime=config.BOT_RUNTIME,
            install_command=config.INSTALL_COMMAND,
            manifest_file=config.MANIFEST_FILE,
            entrypoint_candidates=config.ENTRYPOINT_CANDIDATES,
            restart_delay=config.RESTART_QUIESCENCE_SECONDS,
            deploy_stop_timeout=config.DEPLOY_STOP_TIMEOUT,
            pipe_drain_timeout=config.PIPE_DRAIN_TIMEOUT,
        )

    #* --- Cell access ---
    def _cell(self, name: str) -> BotCell:
        with self._cells_lock:
            cell = self._cells.get(name)
            if cell is None:
                cell = self._cells[name] = BotCell()
            return cell

    @contextmanager
    def exclusive(self, name: str) -> Iterator[BotCell]:
        """Holds the bot's lock for the duration of the block and yields its cell."""
        cell = self._cell(deployment.validate_bot_name(name))
        with cell.lock:
            yield cell

    def working_dir(self, name: str) -> Path:
        return self.bots_dir / name

    def _ensure_known(self, name: str) -> None:
        """Raises NotFound for unknown bots; adopts a bot directory that has no registry record."""
        if self.registry.exists(name):
            return
        if self.working_dir(name).is_dir():
            log.warning(f"Bot directory '{name}' has no registry record. Registering it.")
            self.registry.register(name)
            return
        raise NotFoundError(NOT_FOUND, name, f"Bot '{name}' not found.")

    def cancel_pending_restart(self, cell: BotCell) -> None:
        if cell.restart_timer is not None:
            cell.restart_timer.cancel()
            cell.restart_timer = None

    #* --- Queries ---
    def is_running(self, name: str) -> bool:
        with self._cells_lock:
            cell = self._cells.get(name)
        return cell is not None and cell.instance is not None

    def list_units(self) -> List[Dict[str, Any]]:
        """Lists every registered bot with its current status."""
        units = []
        for name in self.registry.list_names():
            with self._cells_lock:
                cell = self._cells.get(name)
            instance = cell.instance if cell else None
            units.append({
                "name": name,
                "status": "Running" if instance else "Stopped",
                "pid": instance.pid if instance else None,
                "uptime": round(time.time() - instance.started_at, 1) if instance else None,
            })
        return units

    #* --- Lifecycle ---
    def start(self, name: str) -> None:
        """
        Starts a bot's process.

        :raises ConflictError: AlreadyRunning, or BusyInstalling while dependencies install.
        :raises NotFoundError: If the bot is unknown.
        :raises ResolutionError: EntrypointNotFound.
        :raises IOFailureError: If the process cannot be spawned.
        """
        with self.exclusive(name) as cell:
            cell.state = next_state(cell.state, BotEvent.START, name)
            self._launch_locked(name, cell)

    def _launch_locked(self, name: str, cell: BotCell) -> None:
        """Spawns the bot's process. The cell lock is held and the cell is STARTING."""
        try:
            self._ensure_known(name)
            if cell.install_process is not None:
                raise ConflictError(BUSY_INSTALLING, name, "Dependencies are being installed. Try again when done.")

            working_dir = self.working_dir(name)
            entrypoint = deployment.resolve_entrypoint(working_dir, self.manifest_file, self.entrypoint_candidates)
            if entrypoint is None:
                candidates = ", ".join(self.entrypoint_candidates)
                self.broadcaster.publish(
                    name, f'ERROR: Cannot find main script ({candidates}, or "main" in {self.manifest_file}).', True
                )
                raise ResolutionError(ENTRYPOINT_NOT_FOUND, name, "Bot main script not found.")
            if not (working_dir / entrypoint).is_file():
                self.broadcaster.publish(name, f'ERROR: Main script "{entrypoint}" not found in bot folder.', True)
                raise ResolutionError(ENTRYPOINT_NOT_FOUND, name, f"Bot main script file '{entrypoint}' not found.")

            env = resolve_environment(self.registry, name)
            args = process_utils.get_bot_args(self.runtime, entrypoint)
            running = next_state(cell.state, BotEvent.START, name)
            process = process_utils.spawn_process(name, args, working_dir, env)
        except Exception:
            cell.state = next_state(cell.state, BotEvent.EXIT, name)
            raise

        instance = RunningInstance(process)
        cell.instance = instance
        cell.state = running
        log.info(f"Bot '{name}' started with PID {instance.pid}.")

        self.broadcaster.publish(name, "--- starting... ---")
        readers = process_utils.forward_process_output(process, name, partial(self._on_output, name))
        threading.Thread(
            target=self._watch_exit,
            args=(name, cell, instance, readers),
            daemon=True,
            name=f"{name}-exit-watcher",
        ).start()
        self.broadcaster.notify_registry_changed()

    def _on_output(self, name: str, line: str, is_error: bool) -> None:
        self.broadcaster.publish(name, line, is_error)

    def _watch_exit(self, name: str, cell: BotCell, instance: RunningInstance, readers: List[threading.Thread]) -> None:
        """Waits for the process to end, then removes the instance exactly once."""
        try:
            code = instance.process.wait()
            process_utils.drain_readers(readers, self.pipe_drain_timeout)
            self._handle_exit(name, cell, instance, code)
        except Exception as e:
            log.error(f"Exit watcher for '{name}' failed: {e}", exc_info=True)

    def _handle_exit(self, name: str, cell: BotCell, instance: RunningInstance, code: int) -> None:
        # The exit line goes out under the lock so it precedes any later "starting..." line.
        with cell.lock:
            if cell.instance is not instance:
                log.warning(f"Ignoring stale exit notification for '{name}' (PID {instance.pid}).")
                return
            cell.instance = None
            cell.state = next_state(cell.state, BotEvent.EXIT, name)
            log.info(f"Bot '{name}' (PID {instance.pid}) exited with code {code}.")
            self.broadcaster.publish(name, f"--- stopped with code {code} ---")
            self.broadcaster.notify_registry_changed()
            instance.exited.set()

            if instance.restart_pending:
                timer = threading.Timer(self.restart_delay, self._delayed_start, args=(name, cell))
                timer.daemon = True
                cell.restart_timer = timer
                log.debug(f"Restarting '{name}' in {self.restart_delay}s.")
                timer.start()

    def _delayed_start(self, name: str, cell: BotCell) -> None:
        """Second half of a restart, run by the quiescence timer."""
        with cell.lock:
            if cell.restart_timer is not threading.current_thread():
                return
            cell.restart_timer = None
            if cell.instance is not None:
                log.info(f"Bot '{name}' was started during the restart delay. Nothing to do.")
                return
            try:
                cell.state = next_state(cell.state, BotEvent.START, name)
                self._launch_locked(name, cell)
            except BotPanelError as e:
                log.warning(f"Restart of '{name}' failed: {e}")
                self.broadcaster.publish(name, f"--- restart failed: {e.detail} ---", True)

    def _request_termination(self, name: str, instance: RunningInstance) -> None:
        try:
            instance.process.terminate()
        except ProcessLookupError:
            log.debug(f"Process {instance.pid} of '{name}' already gone; exit watcher will clean up.")
        except OSError as e:
            log.error(f"Failed to send termination to '{name}' (PID {instance.pid}): {e}")
            raise IOFailureError(FILESYSTEM_ERROR, name, f"Could not stop the bot: {e}") from e

    def stop(self, name: str) -> None:
        """
        Requests termination of a running bot and returns immediately.

        Cleanup happens when the exit is observed. A pending restart intent is
        dropped, and a start scheduled by an earlier restart is cancelled.

        :raises ConflictError: NotRunning.
        """
        with self.exclusive(name) as cell:
            if cell.instance is None and cell.restart_timer is not None:
                self.cancel_pending_restart(cell)
                log.info(f"Cancelled pending restart of '{name}'.")
                self.broadcaster.publish(name, "--- restart cancelled ---")
                return
            cell.state = next_state(cell.state, BotEvent.STOP, name)
            instance = cell.instance
            instance.restart_pending = False
            self.broadcaster.publish(name, "--- stopping... ---")
            self._request_termination(name, instance)

    def restart(self, name: str) -> None:
        """
        Stops a running bot and starts it again once the exit has been observed
        and the quiescence delay has passed. Starts a stopped bot directly.

        Repeated calls before the exit only re-assert the same one-shot intent.
        """
        with self.exclusive(name) as cell:
            if cell.instance is None and cell.restart_timer is not None:
                log.info(f"Restart of '{name}' already pending.")
                return

            previous = cell.state
            cell.state = next_state(previous, BotEvent.RESTART, name)
            if cell.state is BotState.STARTING:
                self._launch_locked(name, cell)
                return

            instance = cell.instance
            instance.restart_pending = True
            if previous is BotState.RUNNING:
                self.broadcaster.publish(name, "--- restarting... ---")
                self._request_termination(name, instance)

    def stop_and_wait(self, name: str, timeout: float) -> bool:
        """
        Stops a bot if it is running and waits for the exit to be observed.

        :return: True if the bot is stopped, False if it is still running after `timeout`.
        """
        with self.exclusive(name) as cell:
            self.cancel_pending_restart(cell)
            instance = cell.instance
            if instance is None:
                return True
            instance.restart_pending = False
            if cell.state is BotState.RUNNING:
                cell.state = next_state(cell.state, BotEvent.STOP, name)
                self.broadcaster.publish(name, "--- stopping... ---")
                self._request_termination(name, instance)
        return instance.exited.wait(timeout)

    def install(self, name: str) -> None:
        """
        Runs the dependency installer in the bot's directory in the background.

        :raises ResolutionError: NoManifest.
        :raises ConflictError: BusyRunning, or BusyInstalling if an install is already in flight.
        """
        with self.exclusive(name) as cell:
            self._ensure_known(name)
            working_dir = self.working_dir(name)
            if not (working_dir / self.manifest_file).is_file():
                self.broadcaster.publish(name, f"No {self.manifest_file} found. Skipping install.")
                raise ResolutionError(NO_MANIFEST, name, f"No {self.manifest_file} found.")
            if cell.instance is not None or cell.restart_timer is not None:
                self.broadcaster.publish(name, "Please stop the bot before installing dependencies.")
                raise ConflictError(BUSY_RUNNING, name, "Bot is running. Please stop it first.")
            if cell.install_process is not None:
                raise ConflictError(BUSY_INSTALLING, name, "An install is already in progress.")

            self.broadcaster.publish(name, f'--- Running "{self.install_command}"... This may take a moment. ---')
            env = resolve_environment(self.registry, name)
            process = process_utils.spawn_process(
                name, process_utils.split_command(self.install_command), working_dir, env
            )
            cell.install_process = process

        readers = process_utils.forward_process_output(process, name, partial(self._on_output, name))
        threading.Thread(
            target=self._watch_install,
            args=(name, cell, process, readers),
            daemon=True,
            name=f"{name}-install-watcher",
        ).start()

    def _watch_install(self, name: str, cell: BotCell, process: subprocess.Popen, readers: List[threading.Thread]) -> None:
        try:
            code = process.wait()
            process_utils.drain_readers(readers, self.pipe_drain_timeout)
        except Exception as e:
            log.error(f"Install watcher for '{name}' failed: {e}", exc_info=True)
            code = None
        finally:
            with cell.lock:
                if cell.install_process is process:
                    cell.install_process = None

        if code == 0:
            self.broadcaster.publish(name, f'--- "{self.install_command}" completed successfully. ---')
        else:
            self.broadcaster.publish(name, f'--- "{self.install_command}" failed with code {code}. ---', True)
        self.broadcaster.notify_registry_changed()

    def delete(self, name: str) -> None:
        """
        Removes a stopped bot's directory and registry record. Irreversible.

        :raises ConflictError: BusyRunning or BusyInstalling.
        :raises NotFoundError: If the bot is unknown.
        """
        with self.exclusive(name) as cell:
            working_dir = self.working_dir(name)
            registered = self.registry.exists(name)
            if not registered and not working_dir.exists():
                raise NotFoundError(NOT_FOUND, name, "Bot not found.")
            if cell.instance is not None:
                raise ConflictError(BUSY_RUNNING, name, "Bot is running. Please stop it first.")
            if cell.install_process is not None:
                raise ConflictError(BUSY_INSTALLING, name, "Dependencies are being installed. Try again when done.")

            self.cancel_pending_restart(cell)
            if working_dir.exists():
                try:
                    shutil.rmtree(working_dir)
                except OSError as e:
                    self.broadcaster.publish(name, f"--- Error deleting bot: {e} ---", True)
                    raise IOFailureError(FILESYSTEM_ERROR, name, f"Error deleting bot: {e}") from e
            if registered:
                self.registry.remove(name)

        self.broadcaster.publish(name, "--- Bot project deleted successfully. ---")
        self.broadcaster.notify_registry_changed()

    def deploy(self, archive_bytes: bytes, filename: str) -> str:
        """Deploys an uploaded archive. See `deployment.deploy_archive`."""
        return deployment.deploy_archive(self, archive_bytes, filename)

    #* --- Environment ---
    def get_env(self, name: str) -> Dict[str, str]:
        return self.registry.get_env(deployment.validate_bot_name(name))

    def set_env_var(self, name: str, key: str, value: str) -> None:
        self.registry.set_env_var(deployment.validate_bot_name(name), key, value)

    def delete_env_var(self, name: str, key: str) -> None:
        self.registry.delete_env_var(deployment.validate_bot_name(name), key)

    #* --- Supervisor teardown ---
    def shutdown(self, timeout: float = config.GRACEFUL_SHUTDOWN_TIMEOUT) -> None:
        """
        Terminates every child process when the supervisor itself exits.

        Processes still alive after `timeout` seconds are killed.
        """
        with self._cells_lock:
            cells = list(self._cells.items())

        pids = []
        for name, cell in cells:
            with cell.lock:
                self.cancel_pending_restart(cell)
                if cell.instance is not None:
                    cell.instance.restart_pending = False
                    pids.append(cell.instance.pid)
                if cell.install_process is not None:
                    pids.append(cell.install_process.pid)

        if not pids:
            log.info("No running bots to stop.")
            return
        log.info(f"Stopping {len(pids)} bot process(es)...")
        shutdown.graceful_shutdown_sequence(pids, timeout)
