"""Management of the background daemon and its processes."""

from __future__ import annotations

import logging
import os
import subprocess
import sys
from dataclasses import dataclass, field
from typing import Optional

from .command import settings
from .config import Config, current_profile, home_dir
from .inotify import InotifyProcess
from .process import HostActions, Process, ProcessDependencies, dependencies, process_dir
from .vmnet import VmnetProcess

logger = logging.getLogger(__name__)


@dataclass
class ProcessStatus:
    """The status of one background process."""

    name: str
    running: bool
    error: Optional[BaseException] = None


@dataclass
class Status:
    """The status of the daemon and its processes."""

    running: bool = False
    processes: list[ProcessStatus] = field(default_factory=list)


def processes_from_config(conf: Config) -> list[Process]:
    """Return the background processes the configuration asks for."""
    processes: list[Process] = []
    if conf.network.address:
        processes.append(VmnetProcess())
    if conf.mount_inotify:
        processes.append(InotifyProcess())
    return processes


def _clean_path(path: str) -> str:
    return os.path.abspath(os.path.expanduser(path))


def _default_executable() -> str:
    return os.path.realpath(sys.argv[0]) if sys.argv and sys.argv[0] else "colima"


class ProcessManager:
    """Starts, stops and inspects the background daemon."""

    def __init__(
        self,
        host: HostActions,
        executable: Optional[str] = None,
        directory: Optional[str] = None,
    ):
        self.host = host
        self.executable = executable or _default_executable()
        self._directory = directory

    def _dir(self) -> str:
        return self._directory if self._directory is not None else process_dir()

    def dependencies(self, conf: Config) -> tuple[ProcessDependencies, bool]:
        """Return the dependencies of the configured processes and whether root is needed."""
        return dependencies(*processes_from_config(conf))

    def running(self, conf: Config) -> Status:
        """Return the daemon status; a daemon that is not running has no processes."""
        try:
            self.host.run_quiet(
                self.executable, "daemon", "status", current_profile().short_name
            )
        except (OSError, subprocess.CalledProcessError) as err:
            logger.debug("daemon not running: %s", err)
            return Status(running=False)

        status = Status(running=True)
        for process in processes_from_config(conf):
            try:
                process.alive(True)
            except Exception as err:
                status.processes.append(ProcessStatus(process.name(), False, err))
            else:
                status.processes.append(ProcessStatus(process.name(), True, None))
        return status

    def start(self, conf: Config) -> None:
        """Start the daemon with the processes the configuration asks for."""
        try:
            self.stop(conf)  # nothing is done when not running
        except Exception as err:
            logger.debug("error stopping daemon before start: %s", err)

        try:
            os.makedirs(self._dir(), mode=0o755, exist_ok=True)
        except OSError as err:
            raise RuntimeError(
                f"error preparing daemon directory: error preparing vmnet: {err}"
            ) from err

        args = [self.executable, "daemon", "start", current_profile().short_name]
        if conf.network.address:
            args.append("--vmnet")
        if conf.mount_inotify:
            args += ["--inotify", "--inotify-runtime", conf.runtime]
            for mount in conf.mounts_or_default():
                try:
                    path = _clean_path(mount.location)
                except (OSError, ValueError) as err:
                    raise RuntimeError(
                        f"error sanitising mount path for inotify: {err}"
                    ) from err
                args += ["--inotify-dir", path]
        if settings.verbose:
            args.append("--very-verbose")

        self.host.with_dir(home_dir()).run_quiet(*args)

    def stop(self, conf: Config) -> None:
        """Stop the daemon if it is running."""
        if not self.running(conf).running:
            return
        self.host.run_quiet(self.executable, "daemon", "stop", current_profile().short_name)