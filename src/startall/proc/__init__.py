"""Process tree utilities."""
import logging
import signal
from typing import List

import psutil

logger = logging.getLogger(__name__)


def get_process_tree(pid: int) -> List[psutil.Process]:
    """Get a process and all of its descendants.

    Args:
        pid: Root process ID

    Returns:
        List of processes, root first. Empty if the root is already gone.
    """
    try:
        root = psutil.Process(pid)
        return [root] + root.children(recursive=True)
    except psutil.NoSuchProcess:
        return []
    except psutil.AccessDenied:
        logger.warning(f"No permission to inspect process {pid}")
        return []


def signal_tree(procs: List[psutil.Process], signal_num: int = signal.SIGTERM) -> List[psutil.Process]:
    """Send a signal to every process in a tree snapshot.

    Returns the processes the signal was delivered to; ones that already
    exited or refused the signal are skipped.
    """
    delivered = []
    for proc in procs:
        try:
            proc.send_signal(signal_num)
        except psutil.NoSuchProcess:
            continue
        except psutil.AccessDenied:
            logger.warning(f"No permission to signal process {proc.pid}")
            continue
        delivered.append(proc)
    return delivered


def kill_survivors(procs: List[psutil.Process]) -> List[int]:
    """SIGKILL any process in the snapshot that is still alive.

    Returns the pids that could not be killed.
    """
    failed = []
    for proc in procs:
        try:
            if proc.is_running():
                logger.debug(f"Escalating to SIGKILL for {proc.pid}")
                proc.kill()
        except psutil.NoSuchProcess:
            continue
        except psutil.AccessDenied:
            failed.append(proc.pid)
    if failed:
        logger.warning(f"Failed to kill processes: {failed}")
    return failed


def terminate_tree(pid: int) -> List[psutil.Process]:
    """Gracefully terminate a process tree.

    Returns the snapshot so the caller can escalate with `kill_survivors`
    after a grace period.
    """
    procs = get_process_tree(pid)
    if procs:
        logger.debug(f"Terminating process tree: {sorted(p.pid for p in procs)}")
    return signal_tree(procs, signal.SIGTERM)


def kill_tree(pid: int) -> List[int]:
    """Forcefully kill a process tree right away."""
    return kill_survivors(get_process_tree(pid))
