import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

import settings

from .failure import FailureObserver, LifetimeContext

DEFAULT_DISPLAY = "-nographic"
DEFAULT_ENGINE = "qemu"


def default_drive_size() -> str:
    return str(settings.VM_DEFAULT_DRIVE_SIZE_MB)


def _stringify(value: Any) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return str(value)
    return value


class SSHConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    port: str = Field(default_factory=lambda: str(settings.VM_SSH_PORT))
    user: str = Field(default_factory=lambda: settings.VM_SSH_USER)
    password: str = Field(default_factory=lambda: settings.VM_SSH_PASS)
    private_key: Optional[str] = Field(
        default_factory=lambda: settings.VM_SSH_PRIVKEY or None,
        description="Path to a private key; preferred over password when set",
    )

    @field_validator("port", mode="before")
    @classmethod
    def _port_as_str(cls, v):
        return _stringify(v)


class MachineConfig(BaseModel):
    """
    Desired shape of one disposable VM.

    Read-only once handed to a machine backend; sizes and counts are kept as
    strings because they end up verbatim on the QEMU command line.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    engine: str = DEFAULT_ENGINE

    memory: str = Field("2096", description="Memory in MB")
    cpu: str = Field("2", description="Number of cores")
    cpu_type: Optional[str] = None
    arch: str = "x86_64"

    drives: list[str] = Field(default_factory=list)
    drive_sizes: list[str] = Field(
        default_factory=list, description="Sizes in MB for auto-created drives"
    )
    auto_drive_setup: bool = False
    iso: Optional[str] = None
    data_source: Optional[str] = None

    disable_default_networking: bool = False
    ssh: SSHConfig = Field(default_factory=SSHConfig)

    display: str = DEFAULT_DISPLAY
    args: list[str] = Field(default_factory=list)

    state_dir: str = ""
    process: Optional[str] = Field(None, description="Hypervisor binary override")
    firmware: Optional[str] = Field(None, description="UEFI image (aarch64)")

    on_failure: Optional[Callable[..., Any]] = None
    failure_observers: list[FailureObserver] = Field(default_factory=list)

    @field_validator("memory", "cpu", mode="before")
    @classmethod
    def _as_str(cls, v):
        return _stringify(v)

    @field_validator("drive_sizes", mode="before")
    @classmethod
    def _sizes_as_str(cls, v):
        if v is None:
            return []
        return [_stringify(s) for s in v]


@dataclass(frozen=True)
class DriveDescriptor:
    """One block device as it is wired on the QEMU command line."""

    drive_id: str
    path: str
    bus: str
    boot_index: int
    media: str = "disk"

    @property
    def removable(self) -> bool:
        return self.media == "cdrom"


class Machine(ABC):
    """Capability set every hypervisor backend provides."""

    @property
    @abstractmethod
    def config(self) -> MachineConfig:
        pass

    @abstractmethod
    def create(self, ctx: Optional[LifetimeContext] = None) -> LifetimeContext:
        """Launch the VM; returns a context cancelled if it dies unexpectedly."""
        pass

    @abstractmethod
    def stop(self) -> None:
        pass

    @abstractmethod
    def clean(self) -> None:
        pass

    @abstractmethod
    def alive(self) -> bool:
        pass

    @abstractmethod
    def screenshot(self) -> str:
        pass

    @abstractmethod
    def detach_cd(self) -> None:
        pass

    @abstractmethod
    def create_disk(self, diskname: str, size: str) -> str:
        pass

    @abstractmethod
    def command(self, cmd: str) -> str:
        pass

    @abstractmethod
    def send_file(self, src: str, dst: str, permissions: str) -> None:
        pass

    @abstractmethod
    def receive_file(self, src: str, dst: str) -> None:
        pass
