"""The nerdctl alias script installed on the host."""

from __future__ import annotations

import logging
import os
import subprocess

from .command import command, command_interactive

logger = logging.getLogger(__name__)

DEFAULT_INSTALL_PATH = "/usr/local/bin/nerdctl"

_SCRIPT = """#!/usr/bin/env sh

{app} nerdctl --profile {profile} -- "$@"
"""


def nerdctl_script(colima_app: str, profile: str) -> str:
    """Return the alias script that runs nerdctl through colima."""
    return _SCRIPT.format(app=colima_app, profile=profile)


def _dir_writable(directory: str) -> bool:
    tmp = os.path.join(directory, "colima.tmp")
    try:
        with open(tmp, "w", encoding="utf-8") as fh:
            fh.write("tmp")
    except OSError:
        return False
    try:
        os.remove(tmp)
    except OSError:
        pass
    return True


def _is_colima_script(path: str) -> bool:
    try:
        with open(path, encoding="utf-8", errors="replace") as fh:
            return "colima nerdctl " in fh.read()
    except OSError:
        return False


def install_nerdctl(
    path: str = DEFAULT_INSTALL_PATH,
    force: bool = False,
    colima_app: str = "colima",
    profile: str = "default",
) -> None:
    """Install the nerdctl alias script at path.

    An existing file is kept as path + ".moved". Without force, an existing
    file is only replaced if it is a script installed earlier at the default
    path. sudo is used when the default location is not writable.
    """
    is_default = path == DEFAULT_INSTALL_PATH
    writable = False
    is_colima = False
    if is_default:
        writable = _dir_writable(os.path.dirname(DEFAULT_INSTALL_PATH))
        is_colima = _is_colima_script(path)

    exists = os.path.exists(path)
    if exists and not force and not is_colima:
        raise FileExistsError(f"{path} exists, use --force to replace")

    script = nerdctl_script(colima_app, profile)

    if writable or not is_default:
        if exists:
            try:
                os.replace(path, path + ".moved")
            except OSError as err:
                raise RuntimeError(f"error backing up existing file: {err}") from err
        os.makedirs(os.path.dirname(os.path.abspath(path)), mode=0o755, exist_ok=True)
        with open(path, "w", encoding="utf-8") as fh:
            fh.write(script)
        os.chmod(path, 0o755)
        return

    logger.info(
        "/usr/local/bin not writable, sudo password required to install nerdctl binary"
    )
    try:
        if exists and not is_colima:
            try:
                command_interactive("sudo", "mv", path, path + ".moved").run()
            except subprocess.CalledProcessError as err:
                raise RuntimeError(f"error backing up existing file: {err}") from err
        command_interactive("sudo", "mkdir", "-p", os.path.dirname(path)).run()
        install = command_interactive("sudo", "sh", "-c", "cat > " + path)
        install.stdin = script
        install.run()
        command("sudo", "chmod", "+x", path).run()
    except (OSError, subprocess.CalledProcessError) as err:
        raise RuntimeError(f"error installing nerdctl script: {err}") from err