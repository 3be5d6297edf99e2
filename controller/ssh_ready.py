import socket
import time
from typing import Callable, Optional

import paramiko

import settings
from machine.errors import MachineFailedError
from machine.failure import LifetimeContext
from machine.log import get_logger

from .ssh import SSH_HOST, ssh_client

logger = get_logger(__name__)


def wait_ssh(
    machine,
    timeout: Optional[float] = None,
    ctx: Optional[LifetimeContext] = None,
    is_vm_alive: Optional[Callable[[], bool]] = None,
) -> None:
    """
    Wait until an SSH session to the machine can be opened.

    Gives up early with MachineFailedError once ``ctx`` is cancelled (the
    failure monitor saw the hypervisor die) or ``is_vm_alive`` says no;
    raises TimeoutError after ``timeout`` seconds otherwise.
    """
    if timeout is None:
        timeout = settings.VM_TIMEOUT_BOOT_S
    port = int(machine.config.ssh.port)
    start = time.time()

    while time.time() - start < timeout:
        if ctx is not None and ctx.cancelled():
            raise MachineFailedError(
                "machine died while waiting for SSH",
                {"port": port, "event": ctx.reason},
            )
        if is_vm_alive is not None and not is_vm_alive():
            raise MachineFailedError(
                "machine died while waiting for SSH", {"port": port}
            )

        try:
            # 1) TCP open?
            with socket.create_connection((SSH_HOST, port), timeout=1.0):
                pass
            # 2) SSH auth with the configured credentials
            cli = ssh_client(machine, timeout=10)
            cli.close()
            logger.info("SSH ready on port %s after %.1fs", port, time.time() - start)
            return
        except (OSError, paramiko.SSHException) as e:
            waited = time.time() - start
            logger.debug("SSH not ready on port %s: %s", port, e)
            pause = 0.15 if waited < 5 else 0.5
            if ctx is not None:
                ctx.wait(pause)
            else:
                time.sleep(pause)

    raise TimeoutError(f"SSH timeout after {timeout}s on port {port}")
