"""SSH side of the control plane: commands, file transfer, readiness."""

from .crypto import load_pkey
from .ssh import ssh_client, ssh_command, send_file, receive_file
from .ssh_ready import wait_ssh

__all__ = [
    "load_pkey",
    "ssh_client",
    "ssh_command",
    "send_file",
    "receive_file",
    "wait_ssh",
]
