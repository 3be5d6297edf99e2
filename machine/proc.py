import errno
import os
import subprocess
from typing import Iterable, Optional

import psutil

import settings

from .log import get_logger

logger = get_logger(__name__)

PIDFILE = "pid"
STDOUT_FILE = "stdout"
STDERR_FILE = "stderr"


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except OSError as e:
        if e.errno == errno.ESRCH:
            return False
    try:
        return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
    except (psutil.NoSuchProcess, psutil.ZombieProcess):
        return False
    except psutil.AccessDenied:
        return True


class Process:
    """
    An external process bound to a state directory.

    The pid lands in ``<state_dir>/pid`` so a later ``Process(state_dir)``
    (with no name) can query or stop the same process.
    """

    def __init__(
        self,
        state_dir: str,
        name: Optional[str] = None,
        args: Iterable[str] = (),
    ):
        self.state_dir = state_dir
        self.name = name
        self.args = list(args)
        self._popen: Optional[subprocess.Popen] = None

    @property
    def pidfile(self) -> str:
        return os.path.join(self.state_dir, PIDFILE)

    @property
    def pid(self) -> Optional[int]:
        if self._popen is not None:
            return self._popen.pid
        return self._read_pid()

    @property
    def returncode(self) -> Optional[int]:
        if self._popen is None:
            return None
        return self._popen.poll()

    def _read_pid(self) -> Optional[int]:
        try:
            with open(self.pidfile, "r", encoding="utf-8") as f:
                return int((f.read() or "0").strip()) or None
        except (OSError, ValueError):
            return None

    def run(self) -> None:
        """Start the process and return without waiting on it."""
        if not self.name:
            raise ValueError("process name is required to run")
        os.makedirs(self.state_dir, exist_ok=True)

        with open(os.path.join(self.state_dir, STDOUT_FILE), "ab") as out, open(
            os.path.join(self.state_dir, STDERR_FILE), "ab"
        ) as err:
            self._popen = subprocess.Popen(
                [self.name, *self.args],
                stdin=subprocess.DEVNULL,
                stdout=out,
                stderr=err,
                start_new_session=True,
            )

        with open(self.pidfile, "w", encoding="utf-8") as f:
            f.write(str(self._popen.pid))
        logger.debug("Started %s pid=%s", self.name, self._popen.pid)

    def is_alive(self) -> bool:
        if self._popen is not None:
            return self._popen.poll() is None
        pid = self._read_pid()
        if not pid:
            return False
        return _pid_alive(pid)

    def stop(self, timeout: Optional[float] = None) -> None:
        """SIGTERM, then SIGKILL after ``timeout``. No-op when not running."""
        if timeout is None:
            timeout = settings.VM_STOP_TIMEOUT_S

        pid = self.pid
        if pid and self.is_alive():
            try:
                p = psutil.Process(pid)
                p.terminate()
                try:
                    p.wait(timeout=timeout)
                except psutil.TimeoutExpired:
                    logger.warning("pid %s ignored SIGTERM, killing", pid)
                    p.kill()
                    p.wait(timeout=timeout)
            except psutil.NoSuchProcess:
                pass

        if self._popen is not None:
            # reap so the pid does not linger as a zombie
            try:
                self._popen.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                self._popen.kill()
                self._popen.wait()

        try:
            os.remove(self.pidfile)
        except FileNotFoundError:
            pass
