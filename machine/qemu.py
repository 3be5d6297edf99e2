import os
import shutil
from typing import Optional

from .disk import create_image
from .errors import MachineStillRunningError
from .failure import FailureMonitor, LifetimeContext, watch
from .log import get_logger
from .monitor import DEFAULT_CDROM_DEVICE, MonitorClient
from .proc import Process
from .qemu_args import (
    drive_descriptors,
    find_qemu_binary,
    find_uefi_firmware,
    monitor_socket_path,
    provision_drives,
    qemu_args,
)
from .types import Machine, MachineConfig

logger = get_logger(__name__)


class QEMU(Machine):
    """
    QEMU backend: one qemu-system process per state directory.

    ``create`` returns as soon as the process is spawned; use
    ``controller.wait_ssh`` (with the returned context) to wait for boot.
    """

    def __init__(self, config: MachineConfig):
        self._config = config
        self._process: Optional[Process] = None
        self._failure_monitor: Optional[FailureMonitor] = None
        self._iso_drive_id: Optional[str] = None

    @property
    def config(self) -> MachineConfig:
        return self._config

    @property
    def monitor_socket(self) -> str:
        return monitor_socket_path(self._config.state_dir)

    def _monitor(self) -> MonitorClient:
        return MonitorClient(self.monitor_socket)

    def _state_process(self) -> Process:
        # a fresh handle resolves the pid from the state dir
        return self._process or Process(self._config.state_dir)

    def create(self, ctx: Optional[LifetimeContext] = None) -> LifetimeContext:
        cfg = self._config
        logger.info("Create qemu machine %s", cfg.id)

        process_name = find_qemu_binary(cfg.arch, cfg.process)

        if cfg.arch == "aarch64" and not cfg.firmware:
            firmware = find_uefi_firmware(cfg.arch, process_name)
            if firmware:
                cfg = cfg.model_copy(update={"firmware": firmware})

        drives = provision_drives(cfg, self.create_disk)
        args = qemu_args(cfg, drives)

        logger.info(
            "Starting VM with %s [ Memory: %s, CPU: %s ]",
            process_name,
            cfg.memory,
            cfg.cpu,
        )
        self._iso_drive_id = None
        for d in drive_descriptors(cfg, drives):
            logger.info("%s at %s (bootindex=%s)", d.drive_id, d.path, d.boot_index)
            if d.removable and d.path == cfg.iso and self._iso_drive_id is None:
                self._iso_drive_id = d.drive_id
        logger.debug("QEMU args: %s", " ".join(args))

        proc = Process(cfg.state_dir, name=process_name, args=args)
        proc.run()
        self._process = proc

        new_ctx, self._failure_monitor = watch(
            proc,
            ctx,
            on_failure=cfg.on_failure,
            observers=cfg.failure_observers,
        )
        return new_ctx

    def stop(self) -> None:
        if self._failure_monitor is not None:
            self._failure_monitor.detach()
        self._state_process().stop()

    def clean(self) -> None:
        state_dir = self._config.state_dir
        if not state_dir:
            return
        if self.alive():
            raise MachineStillRunningError(state_dir)
        if os.path.isdir(state_dir):
            shutil.rmtree(state_dir)
        self._process = None

    def alive(self) -> bool:
        if not self._config.state_dir:
            return False
        return self._state_process().is_alive()

    def screenshot(self) -> str:
        return self._monitor().screendump()

    def detach_cd(self) -> None:
        self._monitor().eject(self._iso_drive_id or DEFAULT_CDROM_DEVICE)

    def create_disk(self, diskname: str, size: str) -> str:
        return create_image(os.path.join(self._config.state_dir, diskname), size)

    def command(self, cmd: str) -> str:
        from controller import ssh

        return ssh.ssh_command(self, cmd)

    def send_file(self, src: str, dst: str, permissions: str) -> None:
        from controller import ssh

        ssh.send_file(self, src, dst, permissions)

    def receive_file(self, src: str, dst: str) -> None:
        from controller import ssh

        ssh.receive_file(self, src, dst)
