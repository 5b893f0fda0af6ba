"""Background processes run by the daemon and their dependencies."""

from __future__ import annotations

import logging
import os
import subprocess
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import IO, Any, Optional, Union

from .command import quoted_args
from .config import current_profile

logger = logging.getLogger(__name__)


def process_dir() -> str:
    """Return the directory for daemon files of the current profile."""
    return os.path.join(current_profile().config_dir(), "daemon")


class HostActions(ABC):
    """Commands run on the host."""

    @abstractmethod
    def run_quiet(self, *args: str) -> None:
        """Run a command without output; raise on failure."""

    @abstractmethod
    def run_interactive(self, *args: str) -> None:
        """Run a command attached to the terminal; raise on failure."""

    @abstractmethod
    def run_with(self, stdin: Any, stdout: Optional[IO[str]], *args: str) -> None:
        """Run a command with the given input, writing its output to stdout."""

    @abstractmethod
    def with_dir(self, path: str) -> "HostActions":
        """Return host actions that run in the given directory."""


class Dependency(ABC):
    """A requirement to fulfil before a process can start."""

    @abstractmethod
    def installed(self) -> bool:
        """Report whether the dependency is in place."""

    @abstractmethod
    def install(self, host: HostActions) -> None:
        """Install the dependency; raise on failure."""


class Process(ABC):
    """A background process managed by the daemon."""

    @abstractmethod
    def name(self) -> str:
        """Return the process name."""

    @abstractmethod
    def start(self, stop_event: threading.Event) -> None:
        """Run the process until stop_event is set; raise on failure."""

    @abstractmethod
    def alive(self, daemon_running: bool) -> None:
        """Raise if the process is not alive."""

    @abstractmethod
    def dependencies(self) -> tuple[list[Dependency], bool]:
        """Return the dependencies and whether installing them needs root."""


def _input_bytes(stdin: Any) -> Optional[bytes]:
    if stdin is None:
        return None
    if hasattr(stdin, "read"):
        stdin = stdin.read()
    if isinstance(stdin, str):
        return stdin.encode()
    return bytes(stdin)


@dataclass(frozen=True)
class LocalHost(HostActions):
    """Host actions run with subprocesses on this machine."""

    cwd: Optional[str] = None
    env: Optional[dict[str, str]] = field(default=None, compare=False)

    def _check(self, args: tuple[str, ...]) -> list[str]:
        if not args:
            raise ValueError("no command given")
        logger.debug("cmd %s", quoted_args(args))
        return list(args)

    def run_quiet(self, *args: str) -> None:
        subprocess.run(
            self._check(args),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            cwd=self.cwd,
            env=self.env,
            check=True,
        )

    def run_interactive(self, *args: str) -> None:
        subprocess.run(self._check(args), cwd=self.cwd, env=self.env, check=True)

    def run_with(
        self,
        stdin: Union[str, bytes, IO[Any], None],
        stdout: Optional[IO[str]],
        *args: str,
    ) -> None:
        """Run a command; stdout and stderr together go to the stdout writer."""
        cmd = self._check(args)
        data = _input_bytes(stdin)
        kwargs: dict = {"cwd": self.cwd, "env": self.env}
        if data is None:
            kwargs["stdin"] = subprocess.DEVNULL
        else:
            kwargs["input"] = data
        result = subprocess.run(cmd, stdout=subprocess.PIPE, stderr=subprocess.STDOUT, **kwargs)
        output = result.stdout.decode(errors="replace")
        if stdout is not None:
            stdout.write(output)
        if result.returncode != 0:
            raise subprocess.CalledProcessError(result.returncode, cmd, result.stdout)

    def with_dir(self, path: str) -> "LocalHost":
        return replace(self, cwd=path)


@dataclass
class ProcessDependencies(Dependency):
    """The combined dependencies of several processes."""

    processes: list[Process] = field(default_factory=list)

    def installed(self) -> bool:
        return all(
            dep.installed() for process in self.processes for dep in process.dependencies()[0]
        )

    def install(self, host: HostActions) -> None:
        for process in self.processes:
            deps, _ = process.dependencies()
            for dep in deps:
                if dep.installed():
                    continue
                try:
                    dep.install(host)
                except Exception as err:
                    raise RuntimeError(
                        f"error occurred installing dependencies for '{process.name()}': {err}"
                    ) from err


def dependencies(*args: Process) -> tuple[ProcessDependencies, bool]:
    """Return the dependencies of the processes and whether root is needed."""
    rootful = False
    for process in args:
        deps, root = process.dependencies()
        if root and any(not dep.installed() for dep in deps):
            rootful = True
    return ProcessDependencies(list(args)), rootful