import psutil
import logging
from typing import Iterable, List, Set

log = logging.getLogger(__name__)


def identify_processes_to_stop(pids: Iterable[int]) -> Set[psutil.Process]:
    """
    Collects the given processes and all of their descendants.

    :param pids: PIDs of the bot and installer processes owned by the supervisor.
    :return: A set of psutil.Process objects to be stopped.
    """
    parent_procs: Set[psutil.Process] = set()
    for pid in pids:
        try:
            parent_procs.add(psutil.Process(pid))
        except psutil.NoSuchProcess:
            log.debug(f"Process {pid} already exited.")

    all_procs_to_stop: Set[psutil.Process] = set(parent_procs)
    for proc in parent_procs:
        try:
            all_procs_to_stop.update(proc.children(recursive=True))
        except psutil.NoSuchProcess:
            log.warning(f"Process {proc.pid} no longer exists, skipping children retrieval.")
            continue
    return all_procs_to_stop


def _terminate_processes(processes: Set[psutil.Process]) -> None:
    """Sends SIGTERM to all processes."""
    for proc in processes:
        try:
            log.debug(f"Sending SIGTERM to {proc.name()} (PID {proc.pid})")
            proc.terminate()
        except psutil.NoSuchProcess:
            log.warning(f"Process {proc.pid} no longer exists, skipping termination.")
            continue


def _forceful_kill(processes: List[psutil.Process]) -> None:
    """Forcefully kills processes that didn't terminate gracefully."""
    if not processes:
        return

    log.warning(f"{len(processes)} processes did not terminate gracefully. Forcing shutdown...")
    for proc in processes:
        try:
            log.warning(f"Killing stubborn process {proc.name()} (PID {proc.pid}).")
            proc.kill()
        except psutil.NoSuchProcess:
            continue


def graceful_shutdown_sequence(pids: Iterable[int], timeout: float) -> None:
    """
    Terminates the given processes and their children, then kills whatever is
    still alive after `timeout` seconds.

    :param pids: PIDs of the processes to shut down.
    :param timeout: Seconds to wait for a graceful exit.
    """
    processes = identify_processes_to_stop(pids)
    if not processes:
        return
    _terminate_processes(processes)

    procs_list = list(processes)
    try:
        _, alive = psutil.wait_procs(procs_list, timeout=timeout)
    except psutil.NoSuchProcess:
        alive = []

    _forceful_kill(alive)
    log.info("All bot processes stopped.")
