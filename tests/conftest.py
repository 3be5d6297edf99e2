# conftest.py
import os
import sys
import shutil
import pathlib
import tempfile

import pytest

# ----------------------
# Path setup: make the repo root importable so `import settings`,
# `import machine` work without installing the project
# ----------------------
_THIS_DIR = pathlib.Path(__file__).resolve().parent
_PKG_ROOT = _THIS_DIR.parent
if str(_PKG_ROOT) not in sys.path:
    sys.path.insert(0, str(_PKG_ROOT))

import settings  # noqa: E402
from machine.types import MachineConfig, SSHConfig  # noqa: E402


# ----------------------
# Test Utilities / Fakes
# ----------------------
class FakeProcess:
    """Stands in for machine.proc.Process; liveness is driven by the test."""

    instances: list["FakeProcess"] = []

    def __init__(self, state_dir, name=None, args=()):
        self.state_dir = state_dir
        self.name = name
        self.args = list(args)
        self.alive = False
        self.started = False
        self.stop_calls = 0
        self.pid = 4242
        self.returncode = None
        FakeProcess.instances.append(self)

    def run(self):
        self.started = True
        self.alive = True

    def is_alive(self):
        return self.alive

    def stop(self, timeout=None):
        self.stop_calls += 1
        self.alive = False

    def crash(self, rc=1):
        self.returncode = rc
        self.alive = False


class FakeMachine:
    """Machine double for the matcher helpers: scripted command replies."""

    def __init__(self, replies=None, remote_files=None):
        self.replies = replies or {}
        self.remote_files = remote_files or {}
        self.commands: list[str] = []
        self.received: list[tuple[str, str]] = []
        self.created_with = "unset"
        self.stopped = False
        self.cleaned = False

    def command(self, cmd):
        self.commands.append(cmd)
        reply = self.replies.get(cmd, "")
        if callable(reply):
            return reply()
        if isinstance(reply, Exception):
            raise reply
        return reply

    def receive_file(self, src, dst):
        self.received.append((src, dst))
        if src not in self.remote_files:
            raise FileNotFoundError(src)
        with open(dst, "w", encoding="utf-8") as f:
            f.write(self.remote_files[src])

    def create(self, ctx=None):
        self.created_with = ctx
        return ctx

    def stop(self):
        self.stopped = True

    def clean(self):
        self.cleaned = True


# ----------------------
# Shared Fixtures
# ----------------------
@pytest.fixture
def state_dir():
    """
    Short temp dir: unix socket paths are limited to ~108 bytes, which
    pytest's tmp_path can exceed.
    """
    d = tempfile.mkdtemp(prefix="vmst-")
    yield d
    shutil.rmtree(d, ignore_errors=True)


@pytest.fixture
def make_config(state_dir):
    def _make(**kwargs) -> MachineConfig:
        kwargs.setdefault("id", "vm1")
        kwargs.setdefault("state_dir", state_dir)
        kwargs.setdefault("ssh", SSHConfig(port="2222", user="root", password="pw"))
        return MachineConfig(**kwargs)

    return _make


@pytest.fixture
def fake_process(monkeypatch):
    import machine.qemu as qemu

    FakeProcess.instances = []
    monkeypatch.setattr(qemu, "Process", FakeProcess)
    return FakeProcess


@pytest.fixture(autouse=True)
def fast_settings(monkeypatch):
    monkeypatch.setattr(settings, "VM_QEMU_BIN", "", raising=False)
    monkeypatch.setattr(settings, "VM_FAILURE_POLL_S", 0.01, raising=False)
    monkeypatch.setattr(settings, "VM_STOP_TIMEOUT_S", 5, raising=False)
    monkeypatch.setattr(settings, "VM_DEFAULT_DRIVE_SIZE_MB", "30000", raising=False)
    monkeypatch.setattr(settings, "VM_UEFI_ARM64", "", raising=False)


@pytest.fixture
def fake_machine_factory():
    def _make(replies=None, remote_files=None) -> FakeMachine:
        return FakeMachine(replies=replies, remote_files=remote_files)

    return _make
