"""Lima compatibility checks."""

from __future__ import annotations

import json
import logging
import subprocess

import semver

from .command import command

logger = logging.getLogger(__name__)

VERSION = "v0.6.0-2"
LIMA_VERSION = "v0.18.0"
BASE_URL = "https://github.com/abiosoft/colima-core/releases/download/" + VERSION + "/"


class LimaVersionError(Exception):
    """The installed Lima version is missing, unreadable or unsupported."""


def check_lima_version(version: str) -> str:
    """Check a Lima version string against the minimum supported version.

    Returns the version without its pre-release suffix.
    """
    version = version.split("-", 1)[0]

    if version == "HEAD":
        logger.warning(
            "to avoid compatibility issues, ensure lima development version (%s) "
            "in use is not lower than %s",
            version,
            LIMA_VERSION,
        )
        return version

    minimum = semver.Version.parse(LIMA_VERSION.removeprefix("v"))
    try:
        current = semver.Version.parse(version.removeprefix("v"))
    except (ValueError, TypeError) as err:
        raise LimaVersionError(f"invalid semver version for Lima: {err}") from err

    if minimum.compare(current) > 0:
        raise LimaVersionError(
            f"minimum Lima version supported is {LIMA_VERSION}, current version is {version}"
        )
    return version


def lima_version_supported() -> str:
    """Check that the installed Lima is supported; return its version."""
    try:
        out = command("limactl", "info").output()
    except (OSError, subprocess.CalledProcessError) as err:
        raise LimaVersionError(f"error checking Lima version: {err}") from err

    try:
        values, _ = json.JSONDecoder().raw_decode(out.lstrip())
    except json.JSONDecodeError as err:
        raise LimaVersionError(f"error decoding 'limactl info' json: {err}") from err

    version = values.get("version", "") if isinstance(values, dict) else ""
    return check_lima_version(str(version or ""))