"""The vmnet network daemon process and its dependencies."""

from __future__ import annotations

import io
import logging
import os
import platform
import socket
import subprocess
import tempfile
import threading
from dataclasses import dataclass, field
from typing import Optional

from .command import command_interactive, quoted_args, settings
from .config import current_profile
from .process import Dependency, HostActions, Process, process_dir

logger = logging.getLogger(__name__)

NAME = "vmnet"
SUB_PROCESS_ENV_VAR = "COLIMA_VMNET"
NET_GATEWAY = "192.168.106.1"
NET_DHCP_END = "192.168.106.254"

BINARY_PATH = "/opt/colima/bin/socket_vmnet"
CLIENT_BINARY_PATH = "/opt/colima/bin/socket_vmnet_client"
OPT_DIR = "/opt/colima"
SUDOERS_PATH = "/etc/sudoers.d/colima"

DEFAULT_ASSETS_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "assets")

_SUDOERS_ASSET = "network/sudo.txt"


def run_dir() -> str:
    """Return the directory for files of the rootful daemon, e.g. pid files."""
    return os.path.join(OPT_DIR, "run")


@dataclass(frozen=True)
class VmnetInfo:
    """Locations of the vmnet pid file and socket."""

    pid_file: str
    socket_file: str


def vmnet_info() -> VmnetInfo:
    """Return the vmnet file locations for the current profile."""
    return VmnetInfo(
        pid_file=os.path.join(run_dir(), "vmnet-" + current_profile().short_name + ".pid"),
        socket_file=os.path.join(process_dir(), "vmnet.sock"),
    )


def _read_asset(assets_dir: str, name: str) -> bytes:
    with open(os.path.join(assets_dir, *name.split("/")), "rb") as fh:
        return fh.read()


def _host_arch() -> str:
    return "x86_64" if platform.machine().lower() in ("x86_64", "amd64") else "arm64"


@dataclass
class SudoersFile(Dependency):
    """The sudoers rules that allow running vmnet without a password."""

    assets_dir: str = DEFAULT_ASSETS_DIR
    path: str = SUDOERS_PATH

    def installed(self) -> bool:
        try:
            with open(self.path, "rb") as fh:
                current = fh.read()
            wanted = _read_asset(self.assets_dir, _SUDOERS_ASSET)
        except OSError:
            return False
        return wanted in current

    def install(self, host: HostActions) -> None:
        try:
            text = _read_asset(self.assets_dir, _SUDOERS_ASSET).decode()
        except OSError as err:
            raise RuntimeError(f"error retrieving embedded sudo file: {err}") from err
        try:
            host.run_interactive("sudo", "mkdir", "-p", os.path.dirname(self.path))
        except Exception as err:
            raise RuntimeError(f"error preparing sudoers directory: {err}") from err
        output = io.StringIO()
        try:
            host.run_with(io.StringIO(text), output, "sudo", "sh", "-c", "cat > " + self.path)
        except Exception as err:
            raise RuntimeError(
                f"error writing sudoers file, stderr: {output.getvalue()}, err: {err}"
            ) from err


@dataclass
class VmnetBinaries(Dependency):
    """The vmnet binaries, extracted from a bundled archive."""

    assets_dir: str = DEFAULT_ASSETS_DIR
    bins: tuple[str, ...] = (BINARY_PATH, CLIENT_BINARY_PATH)
    opt_dir: str = OPT_DIR
    arch: str = field(default_factory=_host_arch)

    def installed(self) -> bool:
        return all(os.path.exists(b) for b in self.bins)

    def install(self, host: HostActions) -> None:
        try:
            archive = _read_asset(self.assets_dir, f"network/vmnet_{self.arch}.tar.gz")
        except OSError as err:
            raise RuntimeError(f"error retrieving embedded vmnet file: {err}") from err

        fd, tmp_name = tempfile.mkstemp(prefix="vmnet", suffix=".tar.gz")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(archive)
            try:
                host.run_interactive("sudo", "mkdir", "-p", self.opt_dir)
            except Exception as err:
                raise RuntimeError(f"error preparing colima privileged dir: {err}") from err
            try:
                host.run_interactive(
                    "sudo", "sh", "-c", f"cd {self.opt_dir} && tar xfz {tmp_name} 2>/dev/null"
                )
            except Exception as err:
                raise RuntimeError(f"error extracting vmnet archive: {err}") from err
        finally:
            try:
                os.remove(tmp_name)
            except OSError:
                pass


@dataclass
class RunDir(Dependency):
    """The directory for files of the rootful daemon."""

    path: str = field(default_factory=run_dir)

    def installed(self) -> bool:
        return os.path.isdir(self.path)

    def install(self, host: HostActions) -> None:
        host.run_interactive("sudo", "mkdir", "-p", self.path)


def _stop(pid_file: str) -> None:
    # the process is only assumed alive if the pid file exists
    if os.path.exists(pid_file):
        try:
            command_interactive("sudo", "/usr/bin/pkill", "-F", pid_file).run()
        except (OSError, subprocess.CalledProcessError) as err:
            raise RuntimeError(f"error killing vmnet process: {err}") from err


def _force_delete_file_if_exists(path: str) -> None:
    if os.path.isfile(path):
        os.remove(path)


class VmnetProcess(Process):
    """The rootful vmnet daemon providing a reachable VM address."""

    def __init__(self, assets_dir: str = DEFAULT_ASSETS_DIR, info: Optional[VmnetInfo] = None):
        self.assets_dir = assets_dir
        self._info = info

    def _paths(self) -> VmnetInfo:
        return self._info if self._info is not None else vmnet_info()

    def name(self) -> str:
        return NAME

    def alive(self, daemon_running: bool) -> None:
        info = self._paths()
        if os.path.exists(info.pid_file):
            try:
                subprocess.run(
                    ["sudo", "/usr/bin/pkill", "-0", "-F", info.pid_file],
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.DEVNULL,
                    check=True,
                )
            except (OSError, subprocess.CalledProcessError) as err:
                raise RuntimeError(f"error checking vmnet process: {err}") from err

        if not os.path.exists(info.socket_file):
            raise RuntimeError(f"vmnet socket file not found error: {info.socket_file}")
        try:
            with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as conn:
                conn.connect(info.socket_file)
        except OSError as err:
            raise RuntimeError(f"vmnet socket file error: {err}") from err

    def start(self, stop_event: threading.Event) -> None:
        info = self._paths()
        try:
            _force_delete_file_if_exists(info.socket_file)
        except OSError:
            pass

        args = [
            "sudo", BINARY_PATH,
            "--vmnet-mode", "shared",
            "--socket-group", "staff",
            "--vmnet-gateway", NET_GATEWAY,
            "--vmnet-dhcp-end", NET_DHCP_END,
            "--pidfile", info.pid_file,
            info.socket_file,
        ]
        env = {**os.environ, "DEBUG": "1"} if settings.verbose else None
        logger.debug("cmd int %s", quoted_args(args))
        try:
            proc = subprocess.Popen(args, env=env)
        except OSError as err:
            raise RuntimeError(f"error running vmnet: {err}") from err

        while proc.poll() is None:
            if stop_event.wait(0.5):
                try:
                    _stop(info.pid_file)
                except RuntimeError as err:
                    raise RuntimeError(f"error stopping vmnet: {err}") from err
                return

        if proc.returncode != 0:
            raise RuntimeError(f"error running vmnet: exit status {proc.returncode}")

    def dependencies(self) -> tuple[list[Dependency], bool]:
        return [
            SudoersFile(assets_dir=self.assets_dir),
            VmnetBinaries(assets_dir=self.assets_dir),
            RunDir(),
        ], True