"""Combining start options with saved and fixed configurations."""

from __future__ import annotations

import copy
import logging
import os
import platform
from dataclasses import dataclass, field
from typing import Iterable, Optional

from .config import Config, Mount, current_profile, is_macos, macos13_or_newer

logger = logging.getLogger(__name__)

DEFAULT_CPU = 2
DEFAULT_MEMORY = 2
DEFAULT_DISK = 60

DEFAULT_VM_TYPE = "qemu"
DEFAULT_MOUNT_TYPE_QEMU = "sshfs"
DEFAULT_MOUNT_TYPE_VZ = "virtiofs"

DEFAULT_K3S_ARGS = ("--disable=traefik",)


def _macos13_or_newer_on_arm() -> bool:
    return macos13_or_newer() and platform.machine().lower() in ("arm64", "aarch64")


@dataclass
class StartOptions:
    """Options given to start: a configuration plus flags that are not part of it.

    `fixed` is the configuration the instance was first created with, if any;
    its architecture, VM type, runtime and mount type cannot change.
    """

    config: Config = field(default_factory=Config)
    mounts: list[str] = field(default_factory=list)
    legacy_kubernetes: bool = False
    legacy_kubernetes_disable: list[str] = field(default_factory=list)
    edit: bool = False
    editor: str = ""
    activate_runtime: bool = True
    dns_hosts: list[str] = field(default_factory=list)
    foreground: bool = False
    save_config: bool = True
    fixed: Optional[Config] = None


def dns_hosts_from_flag(hosts: Iterable[str]) -> dict[str, str]:
    """Turn name=address entries into a mapping; malformed entries are skipped."""
    mapping: dict[str, str] = {}
    for host in hosts:
        name, sep, target = host.partition("=")
        if not sep:
            logger.warning("unable to parse custom dns host: %s, skipping", host)
            continue
        mapping[name] = target
    return mapping


def mounts_from_flag(mounts: Iterable[str]) -> list[Mount]:
    """Turn location[:mountpoint][:w] entries into mounts."""
    result = []
    for mount in mounts:
        parts = mount.split(":", 2)
        kwargs: dict = {"location": parts[0]}
        if len(parts) > 1:
            if os.path.isabs(parts[1]):
                kwargs["mount_point"] = parts[1]
            elif parts[1] == "w":
                kwargs["writable"] = True
        if len(parts) > 2 and parts[2] == "w":
            kwargs["writable"] = True
        result.append(Mount(**kwargs))
    return result


def set_flag_defaults(options: StartOptions, changed: set[str]) -> StartOptions:
    """Fill in the VM type and make the mount type match it.

    `changed` holds the names of flags the user set; it may gain "mount-type".
    """
    conf = options.config
    if not conf.vm_type:
        conf.vm_type = DEFAULT_VM_TYPE

    if macos13_or_newer():
        # changing to vz implies changing the mount type to virtiofs
        if "vm-type" in changed and conf.vm_type == "vz" and "mount-type" not in changed:
            conf.mount_type = DEFAULT_MOUNT_TYPE_VZ
            changed.add("mount-type")

    if conf.vm_type != "vz" and conf.mount_type == DEFAULT_MOUNT_TYPE_VZ:
        conf.mount_type = DEFAULT_MOUNT_TYPE_QEMU
        if "mount-type" in changed:
            logger.warning(
                "%s is only available for 'vz' vmType, using %s",
                DEFAULT_MOUNT_TYPE_VZ,
                DEFAULT_MOUNT_TYPE_QEMU,
            )
    if conf.vm_type == "vz" and conf.mount_type == "9p":
        conf.mount_type = DEFAULT_MOUNT_TYPE_VZ
        if "mount-type" in changed:
            logger.warning("9p is only available for 'qemu' vmType, using %s", DEFAULT_MOUNT_TYPE_VZ)
    return options


def set_config_defaults(conf: Config) -> Config:
    """Fill in a missing VM type, mount type and hostname."""
    if not conf.vm_type:
        conf.vm_type = DEFAULT_VM_TYPE
    if not conf.mount_type:
        conf.mount_type = DEFAULT_MOUNT_TYPE_QEMU
        if macos13_or_newer() and conf.vm_type == "vz":
            conf.mount_type = DEFAULT_MOUNT_TYPE_VZ
    if not conf.hostname:
        conf.hostname = current_profile().id
    return conf


def set_fixed_configs(conf: Config, fixed: Optional[Config]) -> Config:
    """Override settings that cannot change after the instance was created."""
    if fixed is None:
        return conf

    def keep(name: str, attr: str) -> None:
        fixed_value = getattr(fixed, attr)
        if not fixed_value:
            return
        if getattr(conf, attr) != fixed_value:
            logger.warning("'%s' cannot be updated after initial setup, discarded", name)
        setattr(conf, attr, fixed_value)

    keep("architecture", "arch")
    keep("virtual machine type", "vm_type")
    keep("runtime", "runtime")
    keep("volume mount type", "mount_type")

    if fixed.network.address and not conf.network.address:
        logger.warning("network address cannot be disabled once enabled")
        conf.network.address = True
    return conf


def prepare_config(
    options: StartOptions,
    changed: set[str],
    current: Optional[Config],
    template: Optional[Config],
) -> Config:
    """Combine the start options with the current configuration.

    Settings whose flags were not changed are taken from the current
    configuration, or from the template when there is none. Without either,
    the options are used as they are.
    """
    conf = options.config

    if "with-kubernetes" in changed:
        conf.kubernetes.enabled = options.legacy_kubernetes
        changed.add("kubernetes")

    conf.mounts = mounts_from_flag(options.mounts)
    conf.network.dns_hosts = dns_hosts_from_flag(options.dns_hosts)
    conf.activate_runtime = options.activate_runtime

    conf.kubernetes.k3s_args = list(conf.kubernetes.k3s_args or []) + [
        "--disable=" + item for item in options.legacy_kubernetes_disable
    ]

    set_flag_defaults(options, changed)

    if current is None or current.is_empty():
        if template is None:
            return conf
        current = template
    current = set_config_defaults(copy.deepcopy(current))

    # docker and provision settings can only be set in the config file
    conf.docker = current.docker
    conf.provision = current.provision

    def unless_changed(flag: str, attr: str) -> None:
        if flag not in changed:
            setattr(conf, attr, getattr(current, attr))

    unless_changed("arch", "arch")
    unless_changed("disk", "disk")
    if "kubernetes" not in changed:
        conf.kubernetes.enabled = current.kubernetes.enabled
    if "kubernetes-version" not in changed:
        conf.kubernetes.version = current.kubernetes.version
    if "k3s-arg" not in changed:
        conf.kubernetes.k3s_args = current.kubernetes.k3s_args
    unless_changed("runtime", "runtime")
    unless_changed("cpu", "cpu")
    unless_changed("cpu-type", "cpu_type")
    unless_changed("memory", "memory")
    unless_changed("mount", "mounts")
    unless_changed("mount-type", "mount_type")
    unless_changed("mount-inotify", "mount_inotify")
    unless_changed("ssh-agent", "forward_agent")
    unless_changed("ssh-config", "ssh_config")
    unless_changed("ssh-port", "ssh_port")
    if "dns" not in changed:
        conf.network.dns_resolvers = current.network.dns_resolvers
    if "dns-host" not in changed:
        conf.network.dns_hosts = current.network.dns_hosts
    unless_changed("env", "env")
    unless_changed("hostname", "hostname")
    if "activate" not in changed and current.activate_runtime is not None:
        conf.activate_runtime = current.activate_runtime
    if "network-host-addresses" not in changed:
        conf.network.host_addresses = current.network.host_addresses

    if is_macos():
        if "network-address" not in changed:
            conf.network.address = current.network.address
        if macos13_or_newer():
            unless_changed("vm-type", "vm_type")
        if _macos13_or_newer_on_arm():
            unless_changed("vz-rosetta", "vz_rosetta")
            unless_changed("nested-virtualization", "nested_virtualization")

    return set_fixed_configs(conf, options.fixed)