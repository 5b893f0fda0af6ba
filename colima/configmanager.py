"""Loading, saving and validating configuration files."""

from __future__ import annotations

import logging
import os
import shutil

import yaml

from .config import APP_NAME, CONFIG_FILE_NAME, Config, current_profile, macos13_or_newer

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """A configuration could not be loaded or is invalid."""


def save_to_file(conf: Config, path: str) -> None:
    """Write the configuration as YAML to path."""
    text = yaml.safe_dump(conf.to_dict(), sort_keys=False, default_flow_style=False)
    with open(path, "w", encoding="utf-8") as fh:
        fh.write(text)


def save(conf: Config) -> None:
    """Save the configuration of the current profile."""
    save_to_file(conf, current_profile().file())


def load_from(path: str) -> Config:
    """Load a configuration from a YAML file."""
    try:
        with open(path, "rb") as fh:
            raw = fh.read()
    except OSError as err:
        raise ConfigError(f"could not load config from file: {err}") from err
    try:
        return Config.from_dict(yaml.safe_load(raw))
    except (yaml.YAMLError, ValueError) as err:
        raise ConfigError(f"could not load config from file: {err}") from err


def save_from_file(path: str) -> None:
    """Load a configuration from path and save it for the current profile."""
    save(load_from(path))


def validate_config(conf: Config) -> Config:
    """Check the mount and VM types; return the configuration unchanged."""
    valid_mount_types = {"9p", "sshfs"}
    valid_vm_types = {"qemu"}
    if macos13_or_newer():
        valid_mount_types.add("virtiofs")
        valid_vm_types.add("vz")
    if conf.mount_type not in valid_mount_types:
        raise ConfigError(f"invalid mountType: '{conf.mount_type}'")
    if conf.vm_type not in valid_vm_types:
        raise ConfigError(f"invalid vmType: '{conf.vm_type}'")
    return conf


def _old_config_file() -> str:
    profile = current_profile()
    return os.path.join(os.environ.get("HOME", ""), "." + profile.id, CONFIG_FILE_NAME)


def load() -> Config:
    """Load the configuration of the current profile.

    A missing file gives an empty configuration; a file that exists but
    cannot be loaded raises ConfigError.
    """
    path = current_profile().file()
    if not os.path.exists(path):
        old = _old_config_file()
        if not os.path.exists(old):
            return Config()
        logger.info("settings from older %s version detected and copied", APP_NAME)
        try:
            shutil.copyfile(old, path)
        except OSError as err:
            logger.warning("error copying config: %s, proceeding with defaults", err)
            return Config()
    return load_from(path)


def load_instance() -> Config:
    """Load the configuration the current instance was started with."""
    return load_from(current_profile().state_file())


def teardown() -> None:
    """Delete the configuration directory of the current profile."""
    directory = current_profile().config_dir()
    if os.path.exists(directory):
        shutil.rmtree(directory)