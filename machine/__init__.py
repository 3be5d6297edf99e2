"""Public API re-exports.

    from machine import MachineConfig, new_machine

    vm = new_machine(MachineConfig(state_dir="/tmp/vm1", iso="boot.iso"))
    ctx = vm.create()
"""

from .errors import (
    MachineError,
    ConfigurationError,
    QemuBinaryNotFoundError,
    InvalidDriveSizeError,
    UnsupportedEngineError,
    DiskProvisionError,
    MonitorError,
    MonitorConnectionError,
    MonitorShortWriteError,
    LifecycleError,
    MachineStillRunningError,
    MachineFailedError,
    CommandError,
)
from .failure import (
    CallbackObserver,
    FailureEvent,
    FailureMonitor,
    FailureObserver,
    LifetimeContext,
)
from .types import DriveDescriptor, Machine, MachineConfig, SSHConfig
from .qemu import QEMU

ENGINES: dict[str, type[Machine]] = {
    "qemu": QEMU,
}


def new_machine(config: MachineConfig) -> Machine:
    """Build the backend registered for ``config.engine``."""
    try:
        backend = ENGINES[config.engine]
    except KeyError:
        raise UnsupportedEngineError(config.engine, sorted(ENGINES)) from None
    return backend(config)


__all__ = [
    "MachineError",
    "ConfigurationError",
    "QemuBinaryNotFoundError",
    "InvalidDriveSizeError",
    "UnsupportedEngineError",
    "DiskProvisionError",
    "MonitorError",
    "MonitorConnectionError",
    "MonitorShortWriteError",
    "LifecycleError",
    "MachineStillRunningError",
    "MachineFailedError",
    "CommandError",
    "CallbackObserver",
    "FailureEvent",
    "FailureMonitor",
    "FailureObserver",
    "LifetimeContext",
    "DriveDescriptor",
    "Machine",
    "MachineConfig",
    "SSHConfig",
    "QEMU",
    "ENGINES",
    "new_machine",
]
