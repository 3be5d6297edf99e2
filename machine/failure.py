"""Crash detection for a launched hypervisor process.

A FailureMonitor thread polls the process; when it goes away without a
preceding ``detach()`` every observer is notified and the lifetime context
handed out by ``create()`` is cancelled, so anything waiting on the VM
(e.g. ``wait_ssh``) can bail out instead of running into its own timeout.
Crashed VMs are never restarted.
"""

from __future__ import annotations

import inspect
import threading
import time
import weakref
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional, Protocol

import settings

from .log import get_logger

logger = get_logger(__name__)


class WatchedProcess(Protocol):
    state_dir: str

    def is_alive(self) -> bool: ...

    @property
    def pid(self) -> Optional[int]: ...

    @property
    def returncode(self) -> Optional[int]: ...


@dataclass(frozen=True)
class FailureEvent:
    state_dir: str
    pid: Optional[int]
    returncode: Optional[int]
    detected_at: float = field(default_factory=time.time)


class FailureObserver(ABC):
    @abstractmethod
    def on_failure(self, event: FailureEvent) -> None:
        pass


class CallbackObserver(FailureObserver):
    """Adapts a plain callable; zero-arg callables are supported too."""

    def __init__(self, callback: Callable[..., Any]):
        self.callback = callback
        try:
            params = inspect.signature(callback).parameters
            self._takes_event = len(params) > 0
        except (TypeError, ValueError):
            self._takes_event = True

    def on_failure(self, event: FailureEvent) -> None:
        if self._takes_event:
            self.callback(event)
        else:
            self.callback()


class LifetimeContext:
    """Cancellation token threaded through a VM's lifetime."""

    def __init__(self, parent: Optional["LifetimeContext"] = None):
        self._event = threading.Event()
        self._lock = threading.Lock()
        # weak: a long-lived parent must not pin every finished child
        self._children: weakref.WeakSet[LifetimeContext] = weakref.WeakSet()
        self.reason: Optional[FailureEvent] = None
        if parent is not None:
            parent._add_child(self)

    def _add_child(self, child: "LifetimeContext") -> None:
        with self._lock:
            cancelled = self._event.is_set()
            if not cancelled:
                self._children.add(child)
        if cancelled:
            child.cancel(self.reason)

    def cancel(self, reason: Optional[FailureEvent] = None) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self.reason = reason
            self._event.set()
            children = list(self._children)
            self._children.clear()
        for child in children:
            child.cancel(reason)

    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until cancelled or ``timeout``; True when cancelled."""
        return self._event.wait(timeout)


def _as_observers(
    on_failure: Optional[Callable[..., Any]],
    observers: Iterable[FailureObserver],
) -> list[FailureObserver]:
    out: list[FailureObserver] = []
    if on_failure is not None:
        out.append(CallbackObserver(on_failure))
    out.extend(observers)
    return out


class FailureMonitor:
    def __init__(
        self,
        process: WatchedProcess,
        ctx: LifetimeContext,
        observers: Iterable[FailureObserver] = (),
        interval: Optional[float] = None,
    ):
        self.process = process
        self.ctx = ctx
        self.observers = list(observers)
        self.interval = (
            interval if interval is not None else settings.VM_FAILURE_POLL_S
        )
        self._detached = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> "FailureMonitor":
        t = threading.Thread(
            target=self._watch,
            name=f"failure-monitor:{self.process.state_dir}",
            daemon=True,
        )
        t.start()
        self._thread = t
        return self

    def detach(self) -> None:
        """Mark any following exit as expected (called before a stop)."""
        self._detached.set()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def _watch(self) -> None:
        while not self._detached.is_set():
            if not self.process.is_alive():
                break
            # Event.wait doubles as the poll sleep and the detach wakeup
            self._detached.wait(self.interval)

        if self._detached.is_set():
            return

        event = FailureEvent(
            state_dir=self.process.state_dir,
            pid=self.process.pid,
            returncode=self.process.returncode,
        )
        logger.error(
            "Machine process exited unexpectedly: state_dir=%s pid=%s rc=%s",
            event.state_dir,
            event.pid,
            event.returncode,
        )
        self._notify(event)
        self.ctx.cancel(event)

    def _notify(self, event: FailureEvent) -> None:
        for observer in self.observers:
            try:
                observer.on_failure(event)
            except Exception:
                logger.exception("Failure observer %r raised", observer)


def watch(
    process: WatchedProcess,
    ctx: Optional[LifetimeContext] = None,
    on_failure: Optional[Callable[..., Any]] = None,
    observers: Iterable[FailureObserver] = (),
    interval: Optional[float] = None,
) -> tuple[LifetimeContext, FailureMonitor]:
    """Attach a monitor to ``process``; returns the child context and monitor."""
    child = LifetimeContext(parent=ctx)
    monitor = FailureMonitor(
        process, child, _as_observers(on_failure, observers), interval
    ).start()
    return child, monitor
