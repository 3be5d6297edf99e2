"""Client for the QEMU human monitor socket.

qemu monitor: https://qemu-project.gitlab.io/qemu/system/monitor.html

Each command is a fresh connection: connect, send one ``\\r\\n`` terminated
line, drain, close. The monitor does not act on ``screendump`` until its
output is read, so the drain is part of the protocol: we read until the
peer closes or ``timeout`` seconds have passed since the command was sent.
Neither outcome is an error, since these commands have no acknowledgement
worth parsing.
"""

import os
import socket
import tempfile
import time
from typing import Optional

import settings

from .errors import MonitorConnectionError, MonitorError, MonitorShortWriteError
from .log import get_logger

logger = get_logger(__name__)

# Device name QEMU gives the first IDE cdrom when no id is set
DEFAULT_CDROM_DEVICE = "ide0-cd0"

_CHUNK = 1024


def _temp_screenshot_name() -> str:
    fd, name = tempfile.mkstemp(prefix="qemu-screenshot-", suffix=".png")
    os.close(fd)
    # QEMU writes the file itself; we only reserve a unique name
    os.remove(name)
    return name


class MonitorClient:
    def __init__(self, socket_path: str, timeout: Optional[float] = None):
        self.socket_path = socket_path
        self.timeout = timeout if timeout is not None else settings.VM_MONITOR_TIMEOUT_S

    def _connect(self) -> socket.socket:
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            sock.connect(self.socket_path)
        except OSError as e:
            sock.close()
            raise MonitorConnectionError(
                f"cannot connect to monitor: {e}",
                {"socket": self.socket_path},
            ) from e
        return sock

    def _drain(self, sock: socket.socket) -> None:
        # one deadline for the whole drain, a chatty peer cannot extend it
        deadline = time.monotonic() + self.timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return
            sock.settimeout(remaining)
            try:
                if not sock.recv(_CHUNK):
                    return
            except OSError:
                # socket.timeout included
                return

    def send_command(self, command: str) -> None:
        try:
            line = f"{command}\r\n".encode("ascii")
        except UnicodeEncodeError as e:
            raise MonitorError(
                f"monitor command is not ASCII: {e}", {"socket": self.socket_path}
            ) from e
        sock = self._connect()
        try:
            try:
                sent = sock.send(line)
            except OSError as e:
                raise MonitorError(
                    f"writing to monitor: {e}", {"socket": self.socket_path}
                ) from e
            if sent != len(line):
                raise MonitorShortWriteError(sent, len(line))
            self._drain(sock)
        finally:
            sock.close()
        logger.debug("monitor <- %s", command)

    def screendump(self) -> str:
        """Ask QEMU to dump the framebuffer; returns the (QEMU-written) file path."""
        name = _temp_screenshot_name()
        self.send_command(f"screendump {name}")
        return name

    def eject(self, device: str = DEFAULT_CDROM_DEVICE) -> None:
        self.send_command(f"eject -f {device}")
