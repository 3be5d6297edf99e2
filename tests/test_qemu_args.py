import os

import pytest

import machine.qemu_args as qemu_args
from machine.errors import InvalidDriveSizeError, QemuBinaryNotFoundError


def _pairs(args, flag):
    return [args[i + 1] for i, a in enumerate(args) if a == flag]


def _bootindex(device: str) -> int:
    return int(device.rsplit("bootindex=", 1)[1])


def test_persistent_drives_get_ascending_bootindex(make_config):
    drives = ["/d/a.img", "/d/b.img", "/d/c.img"]
    cfg = make_config(drives=drives)

    args = qemu_args.qemu_args(cfg, drives)

    assert _pairs(args, "-drive") == [
        "if=none,id=drv0,file=/d/a.img",
        "if=none,id=drv1,file=/d/b.img",
        "if=none,id=drv2,file=/d/c.img",
    ]
    devices = [d for d in _pairs(args, "-device") if d.startswith("virtio-blk-pci")]
    assert [_bootindex(d) for d in devices] == [1, 2, 3]
    assert devices[0] == "virtio-blk-pci,drive=drv0,bootindex=1"
    # no removable media, no scsi controller
    assert not any("virtio-scsi-pci" in a for a in args)
    assert not any("media=cdrom" in a for a in args)


def test_removable_media_share_one_controller_behind_disks(make_config):
    cfg = make_config(
        drives=["/d/a.img"], iso="/iso/install.iso", data_source="/iso/seed.iso"
    )

    args = qemu_args.qemu_args(cfg, list(cfg.drives))
    devices = _pairs(args, "-device")

    assert devices.count("virtio-scsi-pci,id=scsi0") == 1
    disk = [d for d in devices if d.startswith("virtio-blk-pci")]
    iso = [d for d in devices if "drive=drv1" in d and d.startswith("scsi-cd")]
    seed = [d for d in devices if "drive=drv2" in d and d.startswith("scsi-cd")]
    assert iso == ["scsi-cd,drive=drv1,bus=scsi0.0,bootindex=50"]
    assert seed == ["scsi-cd,drive=drv2,bus=scsi0.0,bootindex=60"]

    assert _bootindex(disk[0]) < _bootindex(iso[0]) < _bootindex(seed[0])
    assert "if=none,id=drv1,media=cdrom,file=/iso/install.iso" in args
    assert "if=none,id=drv2,media=cdrom,file=/iso/seed.iso" in args
    # controller is declared before the first cdrom uses it
    assert args.index("virtio-scsi-pci,id=scsi0") < args.index(iso[0])


def test_data_source_alone_still_adds_controller(make_config):
    cfg = make_config(data_source="/iso/seed.iso")

    args = qemu_args.qemu_args(cfg, [])

    assert _pairs(args, "-device").count("virtio-scsi-pci,id=scsi0") == 1
    assert "scsi-cd,drive=drv0,bus=scsi0.0,bootindex=60" in args


def test_auto_provisioning_single_size(make_config, state_dir):
    cfg = make_config(auto_drive_setup=True, drive_sizes=["10240"])
    created = []

    drives = qemu_args.provision_drives(
        cfg, lambda name, size: created.append((name, size))
    )

    assert created == [("vm1-0.img", "10240M")]
    assert drives == [os.path.join(state_dir, "vm1-0.img")]


def test_auto_provisioning_defaults_to_one_drive(make_config, state_dir):
    cfg = make_config(auto_drive_setup=True)
    created = []

    drives = qemu_args.provision_drives(
        cfg, lambda name, size: created.append((name, size))
    )

    assert created == [("vm1-0.img", "30000M")]
    assert drives == [os.path.join(state_dir, "vm1-0.img")]


def test_auto_provisioning_multiple_sizes_in_order(make_config):
    cfg = make_config(auto_drive_setup=True, drive_sizes=[1024, "2048"])
    created = []

    qemu_args.provision_drives(cfg, lambda name, size: created.append((name, size)))

    assert created == [("vm1-0.img", "1024M"), ("vm1-1.img", "2048M")]


def test_explicit_drives_skip_provisioning(make_config):
    cfg = make_config(auto_drive_setup=True, drives=["/d/mine.img"])

    def _boom(name, size):
        raise AssertionError("should not provision")

    assert qemu_args.provision_drives(cfg, _boom) == ["/d/mine.img"]


def test_invalid_drive_size_is_rejected(make_config):
    cfg = make_config(auto_drive_setup=True, drive_sizes=["10G"])

    with pytest.raises(InvalidDriveSizeError) as exc:
        qemu_args.provision_drives(cfg, lambda name, size: None)
    assert "10G" in str(exc.value)


def test_networking_on_by_default(make_config):
    args = qemu_args.qemu_args(make_config(), [])
    assert _pairs(args, "-nic") == ["user,hostfwd=tcp::2222-:22"]


def test_networking_disabled_drops_forwarding(make_config):
    cfg = make_config(disable_default_networking=True)

    args = qemu_args.qemu_args(cfg, [])

    assert "-nic" not in args
    assert not any("hostfwd" in a for a in args)


def test_resources_monitor_and_boot_order(make_config, state_dir):
    cfg = make_config(memory=4096, cpu=4)

    args = qemu_args.qemu_args(cfg, [])

    assert _pairs(args, "-m") == ["4096"]
    assert _pairs(args, "-smp") == ["cores=4"]
    assert _pairs(args, "-rtc") == ["base=utc,clock=rt"]
    sock = os.path.join(state_dir, "qemu-monitor.sock")
    assert _pairs(args, "-monitor") == [f"unix:{sock},server,nowait"]
    assert "virtio-serial" in _pairs(args, "-device")
    assert "-nographic" in args
    assert args[-2:] == ["-boot", "order=dc,menu=on"]


def test_display_override_is_split(make_config):
    cfg = make_config(display="-vga qxl -spice port=5900,disable-ticketing")

    args = qemu_args.qemu_args(cfg, [])

    assert "-nographic" not in args
    i = args.index("-vga")
    assert args[i : i + 4] == ["-vga", "qxl", "-spice", "port=5900,disable-ticketing"]


def test_cpu_type_override(make_config):
    args = qemu_args.qemu_args(make_config(cpu_type="host"), [])
    assert _pairs(args, "-cpu") == ["host"]


def test_x86_has_no_default_cpu_or_machine(make_config):
    args = qemu_args.qemu_args(make_config(), [])
    assert "-cpu" not in args
    assert "-machine" not in args


def test_aarch64_defaults(make_config):
    cfg = make_config(arch="aarch64", args=["-s"], firmware="/fw/QEMU_EFI.fd")

    args = qemu_args.qemu_args(cfg, [])

    assert _pairs(args, "-cpu") == ["max"]
    assert _pairs(args, "-machine") == ["virt,accel=tcg,acpi=on,gic-version=2"]
    assert _pairs(args, "-bios") == ["/fw/QEMU_EFI.fd"]
    # caller args come before the machine type, boot directive stays last
    assert args.index("-s") < args.index("-machine")
    assert args[-2:] == ["-boot", "order=dc,menu=on"]


def test_extra_args_verbatim(make_config):
    cfg = make_config(args=["-device", "virtio-rng-pci", "-snapshot"])

    args = qemu_args.qemu_args(cfg, [])

    i = args.index("virtio-rng-pci")
    assert args[i - 1 : i + 2] == ["-device", "virtio-rng-pci", "-snapshot"]


def test_args_are_deterministic(make_config):
    cfg = make_config(drives=["/d/a.img"], iso="/iso/a.iso")
    assert qemu_args.qemu_args(cfg, ["/d/a.img"]) == qemu_args.qemu_args(
        cfg, ["/d/a.img"]
    )


def test_find_qemu_binary_explicit_override(monkeypatch):
    monkeypatch.setattr(qemu_args.settings, "VM_QEMU_BIN", "/from/settings")
    assert qemu_args.find_qemu_binary("x86_64", "/my/qemu") == "/my/qemu"


def test_find_qemu_binary_settings(monkeypatch):
    monkeypatch.setattr(qemu_args.settings, "VM_QEMU_BIN", "/from/settings")
    assert qemu_args.find_qemu_binary("x86_64") == "/from/settings"


def test_find_qemu_binary_common_paths_before_path(monkeypatch):
    wanted = "/usr/bin/qemu-system-x86_64"
    monkeypatch.setattr(qemu_args.os.path, "exists", lambda p: p == wanted)
    monkeypatch.setattr(qemu_args.shutil, "which", lambda name: "/elsewhere/" + name)

    assert qemu_args.find_qemu_binary("x86_64") == wanted


def test_find_qemu_binary_path_fallback(monkeypatch):
    monkeypatch.setattr(qemu_args.os.path, "exists", lambda p: False)
    monkeypatch.setattr(qemu_args.shutil, "which", lambda name: "/opt/q/" + name)

    assert qemu_args.find_qemu_binary("aarch64") == "/opt/q/qemu-system-aarch64"


def test_find_qemu_binary_not_found_lists_locations(monkeypatch):
    monkeypatch.setattr(qemu_args.os.path, "exists", lambda p: False)
    monkeypatch.setattr(qemu_args.shutil, "which", lambda name: None)

    with pytest.raises(QemuBinaryNotFoundError) as exc:
        qemu_args.find_qemu_binary("x86_64")

    err = exc.value
    assert err.binary == "qemu-system-x86_64"
    assert "/home/linuxbrew/.linuxbrew/bin/qemu-system-x86_64" in err.searched
    assert "/opt/homebrew/bin/qemu-system-x86_64" in str(err)
    assert "$PATH" in err.searched


def test_find_uefi_firmware_only_for_aarch64():
    assert qemu_args.find_uefi_firmware("x86_64") is None


def test_find_uefi_firmware_override(monkeypatch):
    override = "/custom/uefi.fd"
    monkeypatch.setattr(qemu_args.settings, "VM_UEFI_ARM64", override)
    monkeypatch.setattr(qemu_args.os.path, "exists", lambda p: p == override)

    assert qemu_args.find_uefi_firmware("aarch64") == override


def test_find_uefi_firmware_next_to_binary(monkeypatch):
    wanted = "/opt/q/share/qemu/edk2-aarch64-code.fd"
    monkeypatch.setattr(qemu_args.os.path, "exists", lambda p: p == wanted)
    monkeypatch.setattr(qemu_args.glob, "glob", lambda pattern: [])

    found = qemu_args.find_uefi_firmware("aarch64", "/opt/q/bin/qemu-system-aarch64")
    assert found == wanted


def test_find_uefi_firmware_distro_path(monkeypatch):
    wanted = "/usr/share/edk2/aarch64/QEMU_EFI.fd"
    monkeypatch.setattr(qemu_args.os.path, "exists", lambda p: p == wanted)
    monkeypatch.setattr(qemu_args.glob, "glob", lambda pattern: [])

    assert qemu_args.find_uefi_firmware("aarch64") == wanted


def test_find_uefi_firmware_missing_override_keeps_searching(monkeypatch):
    wanted = "/usr/share/AAVMF/AAVMF_CODE.fd"
    monkeypatch.setattr(qemu_args.settings, "VM_UEFI_ARM64", "/gone/uefi.fd")
    monkeypatch.setattr(qemu_args.os.path, "exists", lambda p: p == wanted)
    monkeypatch.setattr(qemu_args.glob, "glob", lambda pattern: [])

    assert qemu_args.find_uefi_firmware("aarch64") == wanted


def test_find_uefi_firmware_missing_is_none(monkeypatch):
    monkeypatch.setattr(qemu_args.os.path, "exists", lambda p: False)
    monkeypatch.setattr(qemu_args.glob, "glob", lambda pattern: [])

    assert qemu_args.find_uefi_firmware("aarch64", "/bin/qemu") is None


def test_empty_display_stays_headless(make_config):
    args = qemu_args.qemu_args(make_config(display=""), [])
    assert "-nographic" in args
