"""Child process execution and cancellation

Responsibilities:
- Run external commands from worker threads and capture their output
- Track every live child process
- Terminate child process trees when a run is cancelled
"""

import logging
import subprocess
import threading
from typing import List, Set

import psutil

from ..exceptions import CommandExecutionError, RunCancelledError

logger = logging.getLogger(__name__)


class ProcessRegistry:
    """Tracks live child processes so they can be killed on interrupt"""

    def __init__(self, terminate_timeout: float = 5.0):
        self.terminate_timeout = terminate_timeout
        self._lock = threading.Lock()
        self._processes: Set[subprocess.Popen] = set()
        self._cancelled = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def active(self) -> int:
        with self._lock:
            return len(self._processes)

    def run(self, cmd: List[str], module: str = "processes") -> subprocess.CompletedProcess:
        """Run a command to completion in the calling thread

        Raises:
            RunCancelledError: If the registry was cancelled
            CommandExecutionError: If the command exits non-zero
        """
        logger.debug("Running command: %s", " ".join(cmd))
        with self._lock:
            if self.cancelled:
                raise RunCancelledError("Run cancelled before command start", module=module)
            process = subprocess.Popen(
                cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True
            )
            self._processes.add(process)
        try:
            stdout, stderr = process.communicate()
        except BaseException:
            # Interrupted in the calling thread, e.g. probing on the main thread
            _kill_tree(process.pid)
            process.wait()
            raise
        finally:
            with self._lock:
                self._processes.discard(process)

        if self.cancelled:
            raise RunCancelledError(f"{cmd[0]} terminated by cancellation", module=module)
        if process.returncode != 0:
            logger.debug("Command stderr: %s", stderr)
            raise CommandExecutionError(
                f"{cmd[0]} exited with code {process.returncode}: {_tail(stderr)}",
                module=module,
                output=stderr,
            )
        return subprocess.CompletedProcess(cmd, process.returncode, stdout, stderr)

    def terminate_all(self) -> None:
        """Cancel the registry and kill every tracked process tree"""
        self._cancelled.set()
        with self._lock:
            processes = list(self._processes)
        if processes:
            logger.warning("Terminating %d child process(es)", len(processes))

        victims = []
        for process in processes:
            try:
                parent = psutil.Process(process.pid)
                victims.extend(parent.children(recursive=True))
                victims.append(parent)
            except psutil.NoSuchProcess:
                continue
        for victim in victims:
            try:
                victim.terminate()
            except psutil.NoSuchProcess:
                pass
        _, alive = psutil.wait_procs(victims, timeout=self.terminate_timeout)
        for victim in alive:
            try:
                victim.kill()
            except psutil.NoSuchProcess:
                pass


def _kill_tree(pid: int) -> None:
    try:
        parent = psutil.Process(pid)
        victims = parent.children(recursive=True) + [parent]
    except psutil.NoSuchProcess:
        return
    for victim in victims:
        try:
            victim.kill()
        except psutil.NoSuchProcess:
            pass


def _tail(text: str, lines: int = 5) -> str:
    if not text:
        return ""
    return " | ".join(text.strip().splitlines()[-lines:])
