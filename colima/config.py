"""Application configuration, directory layout and profiles."""

from __future__ import annotations

import ipaddress
import logging
import os
import platform
import sys
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Union

logger = logging.getLogger(__name__)

APP_NAME = "colima"
CONFIG_FILE_NAME = "colima.yaml"

_APP_VERSION = "development"
_REVISION = "unknown"

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


@dataclass(frozen=True)
class VersionInfo:
    """Application version information."""

    version: str
    revision: str


def app_version() -> VersionInfo:
    """Return the application version info."""
    return VersionInfo(version=_APP_VERSION, revision=_REVISION)


def home_dir() -> str:
    """Return the user's home directory."""
    return os.path.expanduser("~")


def is_macos() -> bool:
    """Report whether the host is macOS."""
    return platform.system() == "Darwin"


def macos13_or_newer() -> bool:
    """Report whether the host is macOS 13 (Ventura) or newer."""
    if not is_macos():
        return False
    release = platform.mac_ver()[0]
    try:
        major = int(release.split(".")[0])
    except ValueError:
        return False
    return major >= 13


def _as_int(data: dict, key: str) -> int:
    value = data.get(key)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key}: expected an integer, got {value!r}")
    return value


def _as_bool(data: dict, key: str) -> bool:
    value = data.get(key)
    if value is None:
        return False
    if not isinstance(value, bool):
        raise ValueError(f"{key}: expected a boolean, got {value!r}")
    return value


def _as_str(data: dict, key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        raise ValueError(f"{key}: expected a string, got {value!r}")
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _as_dict(data: dict, key: str) -> dict:
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"{key}: expected a mapping, got {value!r}")
    return value


def _as_list(data: dict, key: str) -> list:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"{key}: expected a list, got {value!r}")
    return value


def _str_map(data: dict, key: str) -> dict[str, str]:
    return {str(k): "" if v is None else str(v) for k, v in _as_dict(data, key).items()}


@dataclass
class Mount:
    """A volume mount."""

    location: str = ""
    mount_point: str = ""
    writable: bool = False

    def _to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"location": self.location}
        if self.mount_point:
            out["mountPoint"] = self.mount_point
        out["writable"] = self.writable
        return out

    @classmethod
    def _from_dict(cls, data: Any) -> "Mount":
        if not isinstance(data, dict):
            raise ValueError(f"mount: expected a mapping, got {data!r}")
        return cls(
            location=_as_str(data, "location"),
            mount_point=_as_str(data, "mountPoint"),
            writable=_as_bool(data, "writable"),
        )


@dataclass
class Provision:
    """A provision script."""

    mode: str = ""
    script: str = ""

    def _to_dict(self) -> dict[str, Any]:
        return {"mode": self.mode, "script": self.script}

    @classmethod
    def _from_dict(cls, data: Any) -> "Provision":
        if not isinstance(data, dict):
            raise ValueError(f"provision: expected a mapping, got {data!r}")
        return cls(mode=_as_str(data, "mode"), script=_as_str(data, "script"))


@dataclass
class Kubernetes:
    """Kubernetes configuration."""

    enabled: bool = False
    version: str = ""
    k3s_args: list[str] = field(default_factory=list)

    def _is_zero(self) -> bool:
        return not (self.enabled or self.version or self.k3s_args)

    def _to_dict(self) -> dict[str, Any]:
        return {"enabled": self.enabled, "version": self.version, "k3sArgs": list(self.k3s_args)}

    @classmethod
    def _from_dict(cls, data: dict) -> "Kubernetes":
        return cls(
            enabled=_as_bool(data, "enabled"),
            version=_as_str(data, "version"),
            k3s_args=[str(a) for a in _as_list(data, "k3sArgs")],
        )


@dataclass
class Network:
    """VM network configuration."""

    address: bool = False
    dns_resolvers: list[IPAddress] = field(default_factory=list)
    dns_hosts: dict[str, str] = field(default_factory=dict)
    host_addresses: bool = False

    def _is_zero(self) -> bool:
        return not (self.address or self.dns_resolvers or self.dns_hosts or self.host_addresses)

    def _to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "dns": [str(ip) for ip in self.dns_resolvers],
            "dnsHosts": dict(self.dns_hosts),
            "hostAddresses": self.host_addresses,
        }

    @classmethod
    def _from_dict(cls, data: dict) -> "Network":
        resolvers = []
        for value in _as_list(data, "dns"):
            try:
                resolvers.append(ipaddress.ip_address(str(value)))
            except ValueError as err:
                raise ValueError(f"dns: invalid IP address {value!r}") from err
        return cls(
            address=_as_bool(data, "address"),
            dns_resolvers=resolvers,
            dns_hosts=_str_map(data, "dnsHosts"),
            host_addresses=_as_bool(data, "hostAddresses"),
        )


@dataclass
class Config:
    """The application configuration."""

    cpu: int = 0
    disk: int = 0
    memory: int = 0
    arch: str = ""
    cpu_type: str = ""
    network: Network = field(default_factory=Network)
    env: dict[str, str] = field(default_factory=dict)
    hostname: str = ""

    ssh_port: int = 0
    forward_agent: bool = False
    ssh_config: bool = False

    vm_type: str = ""
    vz_rosetta: bool = False
    nested_virtualization: bool = False

    mounts: list[Mount] = field(default_factory=list)
    mount_type: str = ""
    mount_inotify: bool = False

    runtime: str = ""
    activate_runtime: Optional[bool] = None

    kubernetes: Kubernetes = field(default_factory=Kubernetes)
    docker: dict[str, Any] = field(default_factory=dict)
    provision: list[Provision] = field(default_factory=list)

    def mounts_or_default(self) -> list[Mount]:
        """Return the configured mounts, or the home and profile tmp directories."""
        if self.mounts:
            return self.mounts
        return [
            Mount(location=home_dir(), writable=True),
            Mount(location=os.path.join("/tmp", current_profile().id), writable=True),
        ]

    def auto_activate(self) -> bool:
        """Report whether auto-activation of the host client config is enabled."""
        return True if self.activate_runtime is None else self.activate_runtime

    def is_empty(self) -> bool:
        """Report whether the configuration is empty."""
        return self.runtime == ""

    def driver_label(self) -> str:
        """Return a human readable label of the VM driver."""
        if macos13_or_newer() and self.vm_type == "vz":
            return "macOS Virtualization.Framework"
        return "QEMU"

    def to_dict(self) -> dict[str, Any]:
        """Return the configuration in its file format, omitting empty values."""
        out: dict[str, Any] = {}
        if self.cpu:
            out["cpu"] = self.cpu
        if self.disk:
            out["disk"] = self.disk
        if self.memory:
            out["memory"] = self.memory
        if self.arch:
            out["arch"] = self.arch
        if self.cpu_type:
            out["cpuType"] = self.cpu_type
        if not self.network._is_zero():
            out["network"] = self.network._to_dict()
        if self.env:
            out["env"] = dict(self.env)
        out["hostname"] = self.hostname
        if self.ssh_port:
            out["sshPort"] = self.ssh_port
        if self.forward_agent:
            out["forwardAgent"] = True
        if self.ssh_config:
            out["sshConfig"] = True
        if self.vm_type:
            out["vmType"] = self.vm_type
        if self.vz_rosetta:
            out["rosetta"] = True
        if self.nested_virtualization:
            out["nestedVirtualization"] = True
        if self.mounts:
            out["mounts"] = [m._to_dict() for m in self.mounts]
        if self.mount_type:
            out["mountType"] = self.mount_type
        if self.mount_inotify:
            out["mountInotify"] = True
        if self.runtime:
            out["runtime"] = self.runtime
        if self.activate_runtime is not None:
            out["autoActivate"] = self.activate_runtime
        if not self.kubernetes._is_zero():
            out["kubernetes"] = self.kubernetes._to_dict()
        if self.docker:
            out["docker"] = dict(self.docker)
        if self.provision:
            out["provision"] = [p._to_dict() for p in self.provision]
        return out

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "Config":
        """Build a configuration from its file format; unknown keys are ignored."""
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ValueError(f"config: expected a mapping, got {data!r}")
        activate = data.get("autoActivate")
        if activate is not None and not isinstance(activate, bool):
            raise ValueError(f"autoActivate: expected a boolean, got {activate!r}")
        return cls(
            cpu=_as_int(data, "cpu"),
            disk=_as_int(data, "disk"),
            memory=_as_int(data, "memory"),
            arch=_as_str(data, "arch"),
            cpu_type=_as_str(data, "cpuType"),
            network=Network._from_dict(_as_dict(data, "network")),
            env=_str_map(data, "env"),
            hostname=_as_str(data, "hostname"),
            ssh_port=_as_int(data, "sshPort"),
            forward_agent=_as_bool(data, "forwardAgent"),
            ssh_config=_as_bool(data, "sshConfig"),
            vm_type=_as_str(data, "vmType"),
            vz_rosetta=_as_bool(data, "rosetta"),
            nested_virtualization=_as_bool(data, "nestedVirtualization"),
            mounts=[Mount._from_dict(m) for m in _as_list(data, "mounts")],
            mount_type=_as_str(data, "mountType"),
            mount_inotify=_as_bool(data, "mountInotify"),
            runtime=_as_str(data, "runtime"),
            activate_runtime=activate,
            kubernetes=Kubernetes._from_dict(_as_dict(data, "kubernetes")),
            docker=dict(_as_dict(data, "docker")),
            provision=[Provision._from_dict(p) for p in _as_list(data, "provision")],
        )


class RequiredDir:
    """A directory that is created on first use and then remembered."""

    def __init__(self, locate: Callable[[], str]):
        self._locate = locate
        self._path: Optional[str] = None

    def path(self) -> str:
        """Return the directory path, creating the directory if needed."""
        if self._path is None:
            try:
                location = self._locate()
            except (OSError, RuntimeError) as err:
                raise RuntimeError(f"cannot fetch required directory: {err}") from err
            try:
                os.makedirs(location, mode=0o755, exist_ok=True)
            except OSError as err:
                raise RuntimeError(f"cannot make required directory: {err}") from err
            self._path = location
        return self._path


def _user_config_dir() -> str:
    if sys.platform == "win32":
        appdata = os.environ.get("APPDATA")
        if not appdata:
            raise OSError("%AppData% is not defined")
        return appdata
    if sys.platform == "darwin":
        return os.path.join(home_dir(), "Library", "Application Support")
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return xdg
    return os.path.join(home_dir(), ".config")


def _user_cache_dir() -> str:
    if sys.platform == "win32":
        local = os.environ.get("LOCALAPPDATA")
        if not local:
            raise OSError("%LocalAppData% is not defined")
        return local
    if sys.platform == "darwin":
        return os.path.join(home_dir(), "Library", "Caches")
    xdg = os.environ.get("XDG_CACHE_HOME")
    if xdg:
        return xdg
    return os.path.join(home_dir(), ".cache")


def _locate_config_base() -> str:
    explicit = os.environ.get("COLIMA_HOME", "")
    if explicit and os.path.exists(explicit):
        return explicit

    default = os.path.join(home_dir(), ".colima")
    xdg = os.environ.get("XDG_CONFIG_HOME")

    if os.path.exists(default):
        if xdg is not None:
            logger.warning("found ~/.colima, ignoring $XDG_CONFIG_HOME...")
            logger.warning("delete ~/.colima to use $XDG_CONFIG_HOME as config directory")
            logger.warning('or run `mv ~/.colima "%s"`', os.path.join(xdg, "colima"))
        return default
    if xdg is not None:
        return os.path.join(xdg, "colima")

    # macOS users are accustomed to ~/.colima
    if is_macos():
        return default

    return os.path.join(_user_config_dir(), "colima")


def _locate_cache() -> str:
    xdg = os.environ.get("XDG_CACHE_HOME", "")
    if xdg:
        return os.path.join(xdg, "colima")
    return os.path.join(_user_cache_dir(), "colima")


def _locate_templates() -> str:
    return os.path.join(_locate_config_base(), "_templates")


def _locate_lima() -> str:
    explicit = os.environ.get("LIMA_HOME", "")
    if explicit:
        return explicit
    return os.path.join(_locate_config_base(), "_lima")


_CONFIG_BASE_DIR = RequiredDir(_locate_config_base)
_CACHE_DIR = RequiredDir(_locate_cache)
_TEMPLATES_DIR = RequiredDir(_locate_templates)
_LIMA_DIR = RequiredDir(_locate_lima)


def config_base_dir() -> str:
    """Return the base configuration directory."""
    return _CONFIG_BASE_DIR.path()


def cache_dir() -> str:
    """Return the cache directory."""
    return _CACHE_DIR.path()


def templates_dir() -> str:
    """Return the templates directory."""
    return _TEMPLATES_DIR.path()


def lima_dir() -> str:
    """Return the Lima directory."""
    return _LIMA_DIR.path()


def ssh_config_file() -> str:
    """Return the path to the generated ssh config."""
    return os.path.join(config_base_dir(), "ssh_config")


@dataclass
class Profile:
    """A named instance."""

    id: str
    display_name: str
    short_name: str
    _config_dir: Optional[RequiredDir] = field(default=None, repr=False, compare=False)

    def config_dir(self) -> str:
        """Return the configuration directory of the profile."""
        if self._config_dir is None:
            self._config_dir = RequiredDir(
                lambda: os.path.join(config_base_dir(), self.short_name)
            )
        return self._config_dir.path()

    def lima_instance_dir(self) -> str:
        """Return the directory of the Lima instance."""
        return os.path.join(lima_dir(), self.id)

    def file(self) -> str:
        """Return the path to the config file."""
        return os.path.join(self.config_dir(), CONFIG_FILE_NAME)

    def lima_file(self) -> str:
        """Return the path to the Lima config file."""
        return os.path.join(self.lima_instance_dir(), "lima.yaml")

    def state_file(self) -> str:
        """Return the path to the state file."""
        return os.path.join(self.lima_instance_dir(), CONFIG_FILE_NAME)


def profile_from_name(name: str) -> Profile:
    """Return the profile for a name."""
    if name in ("", APP_NAME, "default"):
        return Profile(id=APP_NAME, display_name=APP_NAME, short_name="default")
    name = name.removeprefix("colima-")
    return Profile(
        id="colima-" + name,
        display_name="colima [profile=" + name + "]",
        short_name=name,
    )


_current_profile = Profile(id=APP_NAME, display_name=APP_NAME, short_name="default")


def set_profile(name: str) -> None:
    """Set the active profile."""
    global _current_profile
    _current_profile = profile_from_name(name)


def current_profile() -> Profile:
    """Return the active profile."""
    return _current_profile