import os
from dotenv import load_dotenv

_ = load_dotenv()

# Empty means "search the usual install locations, then PATH"
VM_QEMU_BIN = os.environ.get("VM_QEMU_BIN", "")
VM_QEMU_IMG_BIN = os.environ.get("VM_QEMU_IMG_BIN", "qemu-img")
VM_UEFI_ARM64 = os.environ.get("VM_UEFI_ARM64", "")

VM_SSH_USER = os.environ.get("VM_SSH_USER", "root")
VM_SSH_PASS = os.environ.get("VM_SSH_PASS", "")
VM_SSH_PRIVKEY = os.environ.get("VM_SSH_PRIVKEY", "")
VM_SSH_PORT = os.environ.get("VM_SSH_PORT", "2222")

VM_DEFAULT_DRIVE_SIZE_MB = os.environ.get("VM_DEFAULT_DRIVE_SIZE_MB", "30000")
VM_TIMEOUT_BOOT_S = int(os.environ.get("VM_TIMEOUT_BOOT_S", "360"))
VM_MONITOR_TIMEOUT_S = float(os.environ.get("VM_MONITOR_TIMEOUT_S", "1.0"))
VM_STOP_TIMEOUT_S = float(os.environ.get("VM_STOP_TIMEOUT_S", "10"))
VM_FAILURE_POLL_S = float(os.environ.get("VM_FAILURE_POLL_S", "0.5"))

VM_LOG_LEVEL = os.environ.get("VM_LOG_LEVEL", "")
