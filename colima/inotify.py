"""Propagation of host file modifications into the VM for container volumes."""

from __future__ import annotations

import io
import json
import logging
import math
import os
import queue
import stat
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import IO, Any, Callable, Iterable, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .process import Dependency, Process

logger = logging.getLogger(__name__)

NAME = "inotify"
VOLUMES_INTERVAL = 5.0


def omit_children_directories(dirs: Iterable[str]) -> list[str]:
    """Return the sorted, unique directories that are not inside another one."""
    kept: list[str] = []
    for directory in sorted(dirs):
        if any(directory.startswith(parent.removesuffix("/") + "/") for parent in kept):
            continue
        if directory not in kept:
            kept.append(directory)
    return kept


def _clean_path(path: str) -> str:
    return os.path.abspath(os.path.expanduser(path))


@dataclass(frozen=True)
class ModEvent:
    """A modification of a file on the host."""

    path: str
    file_mode: int

    def mode(self) -> str:
        """Return the permission bits in octal, as chmod expects them."""
        return format(self.file_mode, "o")


@dataclass
class EventFilter:
    """Rate limit: at most `limit` unique paths in each `window` seconds."""

    window: float = 0.5
    limit: int = 50
    _last: float = field(default=-math.inf, repr=False)
    _seen: set = field(default_factory=set, repr=False)

    def allow(self, path: str, now: float) -> bool:
        """Report whether an event for path at time now should be handled."""
        if now - self._last < self.window:
            if path in self._seen:
                return False
            if len(self._seen) > self.limit:
                return False
        else:
            self._last = now
            self._seen = set()
        self._seen.add(path)
        return True


class GuestActions(ABC):
    """Commands run inside the VM."""

    @abstractmethod
    def run_quiet(self, *args: str) -> None:
        """Run a command without output; raise on failure."""

    @abstractmethod
    def run_output(self, *args: str) -> str:
        """Run a command and return its output; raise on failure."""

    @abstractmethod
    def run_with(self, stdin: Any, stdout: Optional[IO[str]], *args: str) -> None:
        """Run a command with the given input, writing its output to stdout."""


class _ModificationHandler(FileSystemEventHandler):
    def __init__(self, sink: Callable[[ModEvent], Any], log: logging.LoggerAdapter):
        super().__init__()
        self._sink = sink
        self._log = log

    def on_modified(self, event: FileSystemEvent) -> None:
        path = os.fsdecode(event.src_path)
        self._log.debug("received event %s for %s", event.event_type, path)
        try:
            info = os.stat(path)
        except OSError as err:
            self._log.debug("unable to stat inotify file '%s': %s", path, err)
            return
        if stat.S_ISDIR(info.st_mode):
            self._log.debug("'%s' is directory, ignoring.", path)
            return
        self._sink(ModEvent(path=path, file_mode=stat.S_IMODE(info.st_mode)))


class DirWatcher:
    """Recursive watcher of directories for file writes."""

    def __init__(
        self,
        observer_factory: Callable[[], Any] = Observer,
        log: Optional[logging.LoggerAdapter] = None,
    ):
        self._observer_factory = observer_factory
        self._log = log or logging.LoggerAdapter(logger, {"context": NAME})

    def watch(
        self,
        dirs: Iterable[str],
        stop_event: threading.Event,
        sink: Callable[[ModEvent], Any],
    ) -> None:
        """Start watching in the background until stop_event is set.

        Every write to a file inside the directories is passed to sink.
        Raises if the watcher cannot be started.
        """
        observer = self._observer_factory()
        handler = _ModificationHandler(sink, self._log)
        for directory in dirs:
            path = _clean_path(directory)
            if not os.path.isdir(path):
                raise RuntimeError(
                    f"error watching directory recursively '{path}': not a directory"
                )
            try:
                observer.schedule(handler, path, recursive=True)
            except OSError as err:
                raise RuntimeError(
                    f"error watching directory recursively '{path}': {err}"
                ) from err
        try:
            observer.start()
        except OSError as err:
            raise RuntimeError(f"error starting watcher: {err}") from err

        def wait_for_stop() -> None:
            stop_event.wait()
            observer.stop()
            observer.join()
            self._log.debug("stopping watcher")

        threading.Thread(target=wait_for_stop, daemon=True).start()


class InotifyProcess(Process):
    """Syncs file modifications on mounted container volumes into the VM."""

    def __init__(
        self,
        guest: Optional[GuestActions] = None,
        runtime: str = "",
        dirs: Iterable[str] = (),
        watcher: Optional[DirWatcher] = None,
        vm_wait_interval: float = 5.0,
        volumes_interval: float = VOLUMES_INTERVAL,
        watch_cancel_delay: float = 1.0,
    ):
        self.guest = guest
        self.runtime = runtime
        self.vm_vols = omit_children_directories(dirs)
        self.vm_wait_interval = vm_wait_interval
        self.volumes_interval = volumes_interval
        self.watch_cancel_delay = watch_cancel_delay
        self._log = logging.LoggerAdapter(logger, {"context": NAME})
        self._watcher = watcher or DirWatcher(log=self._log)

    def name(self) -> str:
        return NAME

    def alive(self, daemon_running: bool) -> None:
        # if the parent daemon is active, inotify is assumed active
        if not daemon_running:
            raise RuntimeError("inotify not running")

    def dependencies(self) -> tuple[list[Dependency], bool]:
        return [], False

    def start(self, stop_event: threading.Event) -> None:
        if self.guest is None:
            raise RuntimeError("args missing: no guest actions")
        self._log.info("waiting for VM to start")
        if not self._wait_for_vm(stop_event):
            return
        self._log.info("VM started")
        self._handle_events(stop_event)

    def _wait_for_vm(self, stop_event: threading.Event) -> bool:
        while True:
            self._log.info("waiting %s secs for VM", self.vm_wait_interval)
            if stop_event.wait(self.vm_wait_interval):
                return False
            try:
                self.guest.run_quiet("uname", "-a")
            except Exception:
                continue
            return True

    def fetch_volumes(self, *args: str) -> list[str]:
        """Return the volumes of running containers inside the mounted directories.

        args is the container client command, e.g. "docker".
        """
        try:
            out = self.guest.run_output(*args, "ps", "-q")
        except Exception as err:
            raise RuntimeError(f"error listing containers: {err}") from err
        containers = out.split()
        if not containers:
            return []
        self._log.debug("found containers %s", containers)

        buf = io.StringIO()
        try:
            self.guest.run_with(None, buf, *args, "inspect", *containers)
        except Exception as err:
            raise RuntimeError(f"error inspecting containers: {err}") from err
        try:
            resp, _ = json.JSONDecoder().raw_decode(buf.getvalue().lstrip())
        except json.JSONDecodeError as err:
            raise RuntimeError("error decoding docker response") from err
        if not isinstance(resp, list):
            raise RuntimeError("error decoding docker response")

        vols = []
        for entry in resp:
            mounts = entry.get("Mounts") if isinstance(entry, dict) else None
            for mount in mounts or []:
                source = mount.get("Source", "") if isinstance(mount, dict) else ""
                if any(source.startswith(parent) for parent in self.vm_vols):
                    vols.append(source)

        vols = omit_children_directories(vols)
        self._log.debug("found volumes %s", vols)
        return vols

    def current_volumes(self) -> list[str]:
        """Return the volumes of the current runtime's running containers."""
        if self.runtime != "containerd":
            try:
                return self.fetch_volumes("docker")
            except Exception as err:
                raise RuntimeError(f"error fetching docker volumes: {err}") from err

        try:
            out = self.guest.run_output("sudo", "nerdctl", "namespace", "list", "-q")
        except Exception as err:
            raise RuntimeError(f"error retrieving containerd namespaces: {err}") from err

        vols: list[str] = []
        for namespace in out.split():
            try:
                vols.extend(self.fetch_volumes("sudo", "nerdctl", "--namespace", namespace))
            except Exception as err:
                raise RuntimeError(f"error retrieving containerd volumes: {err}") from err
        return vols

    def _monitor_volumes(self, stop_event: threading.Event, events: queue.Queue) -> None:
        while not stop_event.wait(self.volumes_interval):
            try:
                vols = self.current_volumes()
            except Exception as err:
                self._log.error("%s", err)
                continue
            events.put(("vols", vols))

    def _handle_events(self, stop_event: threading.Event) -> None:
        self._log.debug("begin inotify event handler")
        if not self.runtime:
            raise RuntimeError("error watching container volumes: empty runtime")

        events: queue.Queue = queue.Queue()
        threading.Thread(
            target=self._monitor_volumes, args=(stop_event, events), daemon=True
        ).start()

        rate_filter = EventFilter()
        current: list[str] = []
        watch_stops: list[threading.Event] = []
        timers: list[threading.Timer] = []

        def sink(event: ModEvent) -> None:
            events.put(("mod", event))

        try:
            while not stop_event.is_set():
                try:
                    kind, payload = events.get(timeout=0.1)
                except queue.Empty:
                    continue

                if kind == "vols":
                    if payload == current:
                        continue
                    self._log.debug("volumes changed from: %s, to: %s", current, payload)
                    current = payload
                    if watch_stops:
                        # delay a bit to avoid downtime between watchers
                        timer = threading.Timer(self.watch_cancel_delay, watch_stops[-1].set)
                        timer.daemon = True
                        timer.start()
                        timers.append(timer)
                    watch_stop = threading.Event()
                    watch_stops.append(watch_stop)
                    try:
                        self._watcher.watch(payload, watch_stop, sink)
                    except Exception as err:
                        self._log.error("error running watcher: %s", err)
                else:
                    self._sync(payload, rate_filter)
        finally:
            for timer in timers:
                timer.cancel()
            for watch_stop in watch_stops:
                watch_stop.set()

    def _sync(self, event: ModEvent, rate_filter: EventFilter) -> None:
        if not rate_filter.allow(event.path, time.monotonic()):
            return
        try:
            self.guest.run_quiet("stat", event.path)
        except Exception as err:
            self._log.debug("cannot stat '%s': %s", event.path, err)
            return
        self._log.info("syncing inotify event for %s ", event.path)
        try:
            self.guest.run_quiet("sudo", "/bin/chmod", event.mode(), event.path)
        except Exception as err:
            self._log.debug("error syncing inotify event: %s", err)