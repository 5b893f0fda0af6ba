"""Editing files in the user's editor, and the configuration template."""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from typing import Optional, Union

from .command import _quote, command_interactive
from .config import templates_dir

logger = logging.getLogger(__name__)

PREFERRED_EDITORS = (
    "vim",
    "code --wait --new-window",
    "nano",
)

_NEEDS_WAIT_NEW_WINDOW = {
    "code",
    "code-insiders",
    "code-oss",
    "codium",
    "/Applications/Visual Studio Code.app/Contents/Resources/app/bin/code",
}

_NEEDS_WAIT = {
    "mate",
    "/Applications/TextMate 2.app/Contents/MacOS/mate",
    "/Applications/TextMate 2.app/Contents/MacOS/TextMate",
}


def resolve_editor(editor: str = "") -> str:
    """Return the shell command for the editor to use.

    An empty editor falls back to VS Code inside its terminal, then $EDITOR,
    then the first preferred editor found in $PATH.
    """
    if editor:
        logger.info("editing in %s", editor)
    if not editor and os.environ.get("TERM_PROGRAM") == "vscode":
        logger.info("vscode detected, editing in vscode")
        editor = "code --wait"
    if not editor:
        env_editor = os.environ.get("EDITOR", "")
        if env_editor:
            logger.info("editing in %s from $EDITOR environment variable", env_editor)
            editor = env_editor
    if not editor:
        for candidate in PREFERRED_EDITORS:
            if shutil.which(candidate.split()[0]):
                editor = candidate
                logger.info("editing in %s", candidate)
                break
    if not editor:
        raise RuntimeError(
            "no editor found in $PATH, kindly set $EDITOR environment variable and try again"
        )

    # some editors need the wait flag
    if editor in _NEEDS_WAIT_NEW_WINDOW:
        return _quote(editor) + " --wait --new-window"
    if editor in _NEEDS_WAIT:
        return _quote(editor) + " --wait"
    return editor


def launch_editor(editor: str, path: str) -> None:
    """Open path in the editor and wait for it to close."""
    command_interactive("sh", "-c", resolve_editor(editor) + " " + path).run()


def wait_for_user_edit(editor: str, content: Union[str, bytes]) -> Optional[str]:
    """Let the user edit content in a temporary file.

    Returns the file path, or None if the user emptied the file.
    """
    data = content.encode() if isinstance(content, str) else content
    fd, path = tempfile.mkstemp(prefix="colima-", suffix=".yaml")
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
        launch_editor(editor, path)
        with open(path, "rb") as fh:
            edited = fh.read()
    except BaseException:
        _remove(path)
        raise

    if not edited.strip():
        _remove(path)
        return None
    return path


def _remove(path: str) -> None:
    try:
        os.remove(path)
    except OSError:
        pass


def template_file() -> str:
    """Return the path to the default configuration template."""
    return os.path.join(templates_dir(), "default.yaml")


def template_file_or_default(fallback: str) -> str:
    """Return the saved template, or fallback if there is none."""
    try:
        with open(template_file(), encoding="utf-8") as fh:
            return fh.read()
    except OSError:
        return fallback