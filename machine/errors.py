"""Exceptions raised by the machine, controller and matcher packages.

Hierarchy:
    MachineError (base)
    ├── ConfigurationError
    │   ├── QemuBinaryNotFoundError   ← no hypervisor binary in any location
    │   ├── InvalidDriveSizeError     ← drive size is not a MB count
    │   └── UnsupportedEngineError    ← no backend registered for engine
    ├── DiskProvisionError            ← qemu-img failed
    ├── MonitorError
    │   ├── MonitorConnectionError    ← socket missing / not listening
    │   └── MonitorShortWriteError    ← command line not sent in one go
    ├── LifecycleError
    │   ├── MachineStillRunningError  ← clean() on a live process
    │   └── MachineFailedError        ← process died while being waited on
    └── CommandError                  ← remote command exited non-zero
"""

from __future__ import annotations

from typing import Any


class MachineError(Exception):
    """Base class; ``context`` holds the values needed to diagnose the error."""

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if not self.context:
            return self.message
        ctx = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
        return f"{self.message} ({ctx})"


class ConfigurationError(MachineError):
    pass


class QemuBinaryNotFoundError(ConfigurationError):
    def __init__(self, binary: str, searched: list[str]):
        super().__init__(
            f"{binary} not found in common paths or PATH",
            {"binary": binary, "searched": searched},
        )
        self.binary = binary
        self.searched = searched


class InvalidDriveSizeError(ConfigurationError):
    def __init__(self, size: str):
        super().__init__(
            "drive size must be a number of megabytes", {"size": size}
        )
        self.size = size


class UnsupportedEngineError(ConfigurationError):
    def __init__(self, engine: str, known: list[str]):
        super().__init__(
            f"no machine backend for engine {engine!r}",
            {"engine": engine, "known": known},
        )
        self.engine = engine


class DiskProvisionError(MachineError):
    def __init__(self, path: str, size: str, output: str):
        super().__init__(
            f"creating disk with size {size}: {output.strip()}",
            {"path": path, "size": size},
        )
        self.path = path
        self.size = size
        self.output = output


class MonitorError(MachineError):
    pass


class MonitorConnectionError(MonitorError):
    pass


class MonitorShortWriteError(MonitorError):
    def __init__(self, sent: int, expected: int):
        super().__init__(
            f"didn't send the full command ({sent} out of {expected} bytes)",
            {"sent": sent, "expected": expected},
        )
        self.sent = sent
        self.expected = expected


class LifecycleError(MachineError):
    pass


class MachineStillRunningError(LifecycleError):
    def __init__(self, state_dir: str):
        super().__init__(
            "refusing to clean a running machine, stop it first",
            {"state_dir": state_dir},
        )
        self.state_dir = state_dir


class MachineFailedError(LifecycleError):
    pass


class CommandError(MachineError):
    def __init__(self, command: str, exit_status: int, output: str):
        super().__init__(
            f"command failed ({exit_status}): {command}",
            {"output": output},
        )
        self.command = command
        self.exit_status = exit_status
        self.output = output
