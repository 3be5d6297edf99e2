"""Remote command execution and file transfer over SSH (paramiko).

Every call opens its own client against the VM's forwarded port on
127.0.0.1 and closes it afterwards; VMs reboot and get recreated too often
for a cached connection to stay valid.
"""

from __future__ import annotations

import contextlib
from typing import Iterator

import paramiko

from machine.errors import CommandError
from machine.log import get_logger

from .crypto import load_pkey

logger = get_logger(__name__)

SSH_HOST = "127.0.0.1"


def ssh_client(machine, timeout: float = 30) -> paramiko.SSHClient:
    """Connect to ``machine`` with its configured key, or password."""
    ssh = machine.config.ssh
    cli = paramiko.SSHClient()
    cli.set_missing_host_key_policy(paramiko.AutoAddPolicy())

    kwargs = dict(
        port=int(ssh.port),
        username=ssh.user,
        look_for_keys=False,
        allow_agent=False,
        banner_timeout=timeout,
        auth_timeout=timeout,
        timeout=timeout,
    )
    if ssh.private_key:
        kwargs["pkey"] = load_pkey(ssh.private_key)
    else:
        kwargs["password"] = ssh.password

    cli.connect(SSH_HOST, **kwargs)
    return cli


@contextlib.contextmanager
def _session(machine) -> Iterator[paramiko.SSHClient]:
    cli = ssh_client(machine)
    try:
        yield cli
    finally:
        cli.close()


def ssh_command(machine, cmd: str, timeout: float | None = None) -> str:
    """
    Run ``cmd`` and return its combined stdout+stderr.

    Raises CommandError (with the output attached) on a non-zero exit.
    """
    with _session(machine) as cli:
        chan = cli.get_transport().open_session()
        chan.set_combine_stderr(True)
        if timeout is not None:
            chan.settimeout(timeout)
        chan.exec_command(cmd)
        out = chan.makefile("rb").read().decode("utf-8", "ignore")
        exit_status = chan.recv_exit_status()

    if exit_status != 0:
        raise CommandError(cmd, exit_status, out)
    return out


def send_file(machine, src: str, dst: str, permissions: str) -> None:
    """Copy local ``src`` to ``dst`` on the VM and chmod it (octal string, e.g. "0644")."""
    mode = int(permissions, 8)
    with _session(machine) as cli:
        sftp = cli.open_sftp()
        try:
            sftp.put(src, dst)
            sftp.chmod(dst, mode)
        finally:
            sftp.close()
    logger.debug("Sent %s -> %s (%s)", src, dst, permissions)


def receive_file(machine, src: str, dst: str) -> None:
    """Copy ``src`` from the VM into local ``dst``."""
    with _session(machine) as cli:
        sftp = cli.open_sftp()
        try:
            sftp.get(src, dst)
        finally:
            sftp.close()
    logger.debug("Received %s -> %s", src, dst)
