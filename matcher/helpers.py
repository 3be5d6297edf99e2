"""Assertion and log-harvesting helpers for tests that drive a VM.

Everything takes the target machine explicitly; wrap one in ``VM`` to get
the same helpers as methods.
"""

from __future__ import annotations

import os
import shlex
import time
from typing import Callable, Iterable, Optional

import paramiko

from machine.errors import MachineError
from machine.failure import LifetimeContext
from machine.log import get_logger
from machine.types import Machine

logger = get_logger(__name__)

DEFAULT_CONNECT_TIMEOUT_S = 360
CONNECT_POLL_S = 5
REBOOT_GRACE_S = 60
REBOOT_CONNECT_TIMEOUT_S = 750
LOGS_DIR = "logs"

_REMOTE_ERRORS = (MachineError, OSError, paramiko.SSHException)


def _test_path(machine: Machine, flag: str, path: str) -> str:
    q = shlex.quote(path)
    return machine.command(f"if [ {flag} {q} ]; then echo ok; else echo wrong; fi")


def has_file(machine: Machine, path: str) -> None:
    out = _test_path(machine, "-f", path)
    if out != "ok\n":
        raise AssertionError(f"expected file {path} on the machine, got {out!r}")


def has_dir(machine: Machine, path: str) -> None:
    out = _test_path(machine, "-d", path)
    if out != "ok\n":
        raise AssertionError(f"expected directory {path} on the machine, got {out!r}")


def sudo(machine: Machine, cmd: str) -> str:
    return machine.command(f"sudo /bin/sh -c {shlex.quote(cmd)}")


def eventually_connects(
    machine: Machine,
    timeout: float = DEFAULT_CONNECT_TIMEOUT_S,
    interval: float = CONNECT_POLL_S,
    ctx: Optional[LifetimeContext] = None,
) -> None:
    """Poll ``echo ping`` until it answers; AssertionError after ``timeout``."""
    deadline = time.time() + timeout
    last = ""
    while True:
        try:
            last = machine.command("echo ping")
            if last == "ping\n":
                return
        except _REMOTE_ERRORS as e:
            logger.debug("Not connected yet: %s", e)
        if ctx is not None and ctx.cancelled():
            raise AssertionError("machine died before accepting connections")
        if time.time() >= deadline:
            raise AssertionError(
                f"machine did not answer within {timeout}s (last output {last!r})"
            )
        time.sleep(interval)


def reboot(
    machine: Machine,
    grace: float = REBOOT_GRACE_S,
    timeout: float = REBOOT_CONNECT_TIMEOUT_S,
) -> None:
    try:
        sudo(machine, "reboot")
    except _REMOTE_ERRORS as e:
        # the connection usually drops before the command returns
        logger.debug("reboot: %s", e)
    time.sleep(grace)
    eventually_connects(machine, timeout)


def _sudo_logged(machine: Machine, cmd: str, what: str) -> None:
    try:
        sudo(machine, cmd)
    except _REMOTE_ERRORS as e:
        logger.warning("Error getting %s: %s", what, e)


def gather_log(machine: Machine, log_path: str, dest_dir: str = LOGS_DIR) -> Optional[str]:
    """Copy ``log_path`` from the machine into ``dest_dir``; None on failure."""
    _sudo_logged(machine, f"chmod 777 {shlex.quote(log_path)}", f"access to {log_path}")
    logger.info("Trying to get file: %s", log_path)

    os.makedirs(dest_dir, exist_ok=True)
    dest = os.path.join(dest_dir, os.path.basename(log_path))
    try:
        machine.receive_file(log_path, dest)
    except _REMOTE_ERRORS as e:
        logger.warning("Error while copying file %s: %s", log_path, e)
        return None

    os.chmod(dest, 0o666)
    logger.info("File %s copied!", os.path.basename(log_path))
    return dest


def gather_all_logs(
    machine: Machine,
    services: Iterable[str] = (),
    log_files: Iterable[str] = (),
    dest_dir: str = LOGS_DIR,
) -> None:
    """Grab service journals, the given files, and general system info."""
    for ser in services:
        _sudo_logged(
            machine,
            f"journalctl -u {shlex.quote(ser)} -o short-iso >> /run/{ser}.log",
            f"journal for service {ser}",
        )
        gather_log(machine, f"/run/{ser}.log", dest_dir)

    for path in log_files:
        gather_log(machine, path, dest_dir)

    _sudo_logged(machine, "dmesg > /run/dmesg", "dmesg")
    gather_log(machine, "/run/dmesg", dest_dir)

    _sudo_logged(machine, "journalctl -o short-iso > /run/journal.log", "full journal")
    gather_log(machine, "/run/journal.log", dest_dir)

    _sudo_logged(machine, "uname -a > /run/uname.log", "uname info")
    gather_log(machine, "/run/uname.log", dest_dir)

    _sudo_logged(machine, "lsblk -a >> /run/disks.log", "disk info")
    _sudo_logged(machine, "blkid >> /run/disks.log", "disk info")
    gather_log(machine, "/run/disks.log", dest_dir)

    gather_log(machine, "/etc/passwd", dest_dir)
    gather_log(machine, "/etc/os-release", dest_dir)


class VM:
    """A machine plus its state dir, with the helpers above as methods."""

    def __init__(self, machine: Machine, state_dir: str):
        self.machine = machine
        self.state_dir = state_dir

    def has_file(self, path: str) -> None:
        has_file(self.machine, path)

    def has_dir(self, path: str) -> None:
        has_dir(self.machine, path)

    def sudo(self, cmd: str) -> str:
        return sudo(self.machine, cmd)

    def eventually_connects(self, timeout: float = DEFAULT_CONNECT_TIMEOUT_S) -> None:
        eventually_connects(self.machine, timeout)

    def reboot(self) -> None:
        reboot(self.machine)

    def gather_log(self, log_path: str) -> Optional[str]:
        return gather_log(self.machine, log_path)

    def gather_all_logs(self, services: Iterable[str], log_files: Iterable[str]) -> None:
        gather_all_logs(self.machine, services, log_files)

    def start(self, ctx: Optional[LifetimeContext] = None) -> LifetimeContext:
        return self.machine.create(ctx)

    def destroy(self, additional_cleanup: Optional[Callable[["VM"], None]] = None) -> None:
        """Run ``additional_cleanup``, then stop the machine and wipe its state dir."""
        if additional_cleanup is not None:
            additional_cleanup(self)
        self.machine.stop()
        self.machine.clean()
