import glob
import os
import shutil
from typing import Callable, Optional

import settings

from .errors import InvalidDriveSizeError, QemuBinaryNotFoundError
from .log import get_logger
from .types import DEFAULT_DISPLAY, DriveDescriptor, MachineConfig, default_drive_size

logger = get_logger(__name__)

MONITOR_SOCKET = "qemu-monitor.sock"
SCSI_CONTROLLER_ID = "scsi0"

ISO_BOOT_INDEX = 50
DATA_SOURCE_BOOT_INDEX = 60

# Searched in order before falling back to PATH
COMMON_BIN_DIRS = [
    "/home/linuxbrew/.linuxbrew/bin/",  # Homebrew on Linux
    "/usr/local/bin/",  # Manual install
    "/usr/bin/",  # System package
    "/opt/homebrew/bin/",  # Homebrew on macOS ARM
    "/usr/local/homebrew/bin/",  # Homebrew on macOS Intel
]


def _first_existing(paths: list[str]) -> str | None:
    """Return the first path that exists from a list of candidates."""
    for p in paths:
        if p and os.path.exists(p):
            return p
    return None


def monitor_socket_path(state_dir: str) -> str:
    return os.path.join(state_dir, MONITOR_SOCKET)


def find_qemu_binary(arch: str, override: Optional[str] = None) -> str:
    """
    Resolve qemu-system-<arch>.

    Priority:
      1. Explicit override (MachineConfig.process)
      2. settings.VM_QEMU_BIN
      3. COMMON_BIN_DIRS, in order
      4. PATH
    """
    if override:
        return override
    if settings.VM_QEMU_BIN:
        return settings.VM_QEMU_BIN

    qemu_binary = f"qemu-system-{arch}"
    candidates = [os.path.join(d, qemu_binary) for d in COMMON_BIN_DIRS]
    found = _first_existing(candidates)
    if found:
        return found

    found = shutil.which(qemu_binary)
    if found:
        return found

    raise QemuBinaryNotFoundError(qemu_binary, candidates + ["$PATH"])


# aarch64 firmware image names, most specific first
UEFI_ARM64_IMAGES = ("edk2-aarch64-code.fd", "QEMU_EFI.fd", "AAVMF_CODE.fd")

UEFI_ARM64_DIRS = [
    "/usr/share/qemu-efi-aarch64",  # Debian/Ubuntu
    "/usr/share/edk2/aarch64",  # Fedora/RHEL
    "/usr/share/AAVMF",
    "/usr/share/qemu",
    "/usr/local/share/qemu",
    "/opt/homebrew/share/qemu",  # Homebrew on macOS ARM
    "/opt/local/share/qemu",  # MacPorts
]


def _share_dir_of(qemu_bin: str) -> str:
    # <prefix>/bin/qemu-system-* keeps its firmware in <prefix>/share/qemu
    prefix = os.path.dirname(os.path.dirname(os.path.abspath(qemu_bin)))
    return os.path.join(prefix, "share", "qemu")


def find_uefi_firmware(arch: str, qemu_bin: Optional[str] = None) -> str | None:
    """
    Locate UEFI firmware for aarch64 guests; None for other arches or when
    nothing is installed.

    settings.VM_UEFI_ARM64 wins when it exists. Otherwise the share dir next
    to ``qemu_bin`` is tried first, then the distro locations, then any
    Homebrew Cellar install (newest version first).
    """
    if arch != "aarch64":
        return None

    override = settings.VM_UEFI_ARM64
    if override:
        if os.path.exists(override):
            return override
        logger.warning("VM_UEFI_ARM64=%s does not exist, searching instead", override)

    dirs = [_share_dir_of(qemu_bin)] if qemu_bin else []
    dirs += UEFI_ARM64_DIRS
    dirs += sorted(glob.glob("/opt/homebrew/Cellar/qemu/*/share/qemu"), reverse=True)

    found = _first_existing(
        [os.path.join(d, image) for d in dirs for image in UEFI_ARM64_IMAGES]
    )
    if not found:
        logger.warning("No aarch64 UEFI firmware found, booting without -bios")
    return found


def drive_sizes(config: MachineConfig) -> list[str]:
    """Convert the MB counts from the config to qemu-img sizes."""
    sizes = []
    for s in config.drive_sizes:
        if not str(s).isdigit():
            raise InvalidDriveSizeError(str(s))
        sizes.append(f"{s}M")

    if not sizes:
        sizes.append(f"{default_drive_size()}M")
    return sizes


def provision_drives(
    config: MachineConfig, create_disk: Callable[[str, str], str]
) -> list[str]:
    """
    Return the persistent drives to attach, creating them first when
    auto_drive_setup is on and no explicit drives were given.

    ``create_disk(filename, size)`` creates the image under the state dir.
    """
    drives = list(config.drives)
    if not config.auto_drive_setup or drives:
        return drives

    for i, size in enumerate(drive_sizes(config)):
        filename = f"{config.id}-{i}.img"
        create_disk(filename, size)
        drives.append(os.path.join(config.state_dir, filename))
    return drives


def drive_descriptors(
    config: MachineConfig, drives: list[str]
) -> list[DriveDescriptor]:
    """
    Persistent disks boot first (1..N, input order); install media only win
    while the disks hold nothing bootable.
    """
    out: list[DriveDescriptor] = []
    for i, path in enumerate(drives):
        out.append(
            DriveDescriptor(
                drive_id=f"drv{len(out)}",
                path=path,
                bus="virtio-blk-pci",
                boot_index=i + 1,
            )
        )

    removable = (
        (config.iso, ISO_BOOT_INDEX),
        (config.data_source, DATA_SOURCE_BOOT_INDEX),
    )
    for path, boot_index in removable:
        if not path:
            continue
        out.append(
            DriveDescriptor(
                drive_id=f"drv{len(out)}",
                path=path,
                bus=SCSI_CONTROLLER_ID,
                boot_index=boot_index,
                media="cdrom",
            )
        )
    return out


def drive_args(descriptors: list[DriveDescriptor]) -> list[str]:
    args: list[str] = []
    scsi_added = False

    for d in descriptors:
        if not d.removable:
            args += [
                "-drive",
                f"if=none,id={d.drive_id},file={d.path}",
                "-device",
                f"virtio-blk-pci,drive={d.drive_id},bootindex={d.boot_index}",
            ]
            continue

        # cdroms show up as /dev/srX behind a single virtio-scsi controller
        if not scsi_added:
            args += ["-device", f"virtio-scsi-pci,id={SCSI_CONTROLLER_ID}"]
            scsi_added = True
        args += [
            "-drive",
            f"if=none,id={d.drive_id},media=cdrom,file={d.path}",
            "-device",
            f"scsi-cd,drive={d.drive_id},bus={d.bus}.0,bootindex={d.boot_index}",
        ]
    return args


def qemu_args(config: MachineConfig, drives: list[str]) -> list[str]:
    """
    Build the QEMU command line (without the binary) for ``config``.

    Pure: the same config and drives always give the same list.
    """
    args = drive_args(drive_descriptors(config, drives))

    # the monitor socket is what screenshot()/detach_cd() talk to
    args += [
        "-m",
        config.memory,
        "-smp",
        f"cores={config.cpu}",
        "-rtc",
        "base=utc,clock=rt",
        "-monitor",
        f"unix:{monitor_socket_path(config.state_dir)},server,nowait",
        "-device",
        "virtio-serial",
    ]

    if not config.disable_default_networking:
        args += ["-nic", f"user,hostfwd=tcp::{config.ssh.port}-:22"]

    # e.g. "-vga qxl -spice port=5900,disable-ticketing,addr=127.0.0.1"
    args += (config.display or DEFAULT_DISPLAY).split()

    if config.cpu_type:
        args += ["-cpu", config.cpu_type]
    elif config.arch == "aarch64":
        args += ["-cpu", "max"]

    args += list(config.args)

    if config.arch == "aarch64":
        args += ["-machine", "virt,accel=tcg,acpi=on,gic-version=2"]
        if config.firmware:
            args += ["-bios", config.firmware]

    args += ["-boot", "order=dc,menu=on"]
    return args
