from .helpers import (
    VM,
    has_file,
    has_dir,
    sudo,
    eventually_connects,
    reboot,
    gather_log,
    gather_all_logs,
)

__all__ = [
    "VM",
    "has_file",
    "has_dir",
    "sudo",
    "eventually_connects",
    "reboot",
    "gather_log",
    "gather_all_logs",
]
