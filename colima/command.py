"""Running external commands."""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass, field
from typing import Iterable, Optional, Union

logger = logging.getLogger(__name__)


@dataclass
class Settings:
    """Global command-line settings."""

    verbose: bool = False


settings = Settings()


_SIMPLE_ESCAPES = {
    "\a": "\\a",
    "\b": "\\b",
    "\f": "\\f",
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
    "\v": "\\v",
    "\\": "\\\\",
    '"': '\\"',
}


def _quote(text: str) -> str:
    parts = []
    for ch in text:
        if ch in _SIMPLE_ESCAPES:
            parts.append(_SIMPLE_ESCAPES[ch])
        elif ch.isprintable():
            parts.append(ch)
        elif ord(ch) < 0x80:
            parts.append(f"\\x{ord(ch):02x}")
        elif ord(ch) <= 0xFFFF:
            parts.append(f"\\u{ord(ch):04x}")
        else:
            parts.append(f"\\U{ord(ch):08x}")
    return '"' + "".join(parts) + '"'


def quoted_args(args: Iterable[str]) -> str:
    """Render arguments as a bracketed list of quoted strings, for logs."""
    return "[" + " ".join(_quote(a) for a in args) + "]"


@dataclass
class Command:
    """An external command, ready to run.

    Output and errors go to the terminal. Standard input is inherited for
    interactive commands; otherwise it is empty unless data is given.
    """

    args: list[str]
    interactive: bool = False
    stdin: Optional[Union[str, bytes]] = None
    env: Optional[dict[str, str]] = None
    cwd: Optional[str] = None
    _extra: dict = field(default_factory=dict, repr=False)

    def _kwargs(self) -> dict:
        kwargs: dict = {"env": self.env, "cwd": self.cwd, "check": True}
        if self.stdin is not None:
            data = self.stdin.encode() if isinstance(self.stdin, str) else self.stdin
            kwargs["input"] = data
        elif not self.interactive:
            kwargs["stdin"] = subprocess.DEVNULL
        return kwargs

    def run(self) -> None:
        """Run the command; raise CalledProcessError on a non-zero exit."""
        subprocess.run(self.args, **self._kwargs())

    def output(self) -> str:
        """Run the command and return its standard output."""
        result = subprocess.run(self.args, stdout=subprocess.PIPE, **self._kwargs())
        return result.stdout.decode(errors="replace")


def command(name: str, *args: str) -> Command:
    """Create a command."""
    cmd = Command([name, *args])
    logger.debug("cmd %s", quoted_args(cmd.args))
    return cmd


def command_interactive(name: str, *args: str) -> Command:
    """Create an interactive command that inherits standard input."""
    cmd = Command([name, *args], interactive=True)
    logger.debug("cmd int %s", quoted_args(cmd.args))
    return cmd


def prompt(question: str) -> bool:
    """Ask a yes/no question; only an answer starting with y or Y is yes."""
    print(question, end="")
    print("? [y/N] ", end="", flush=True)
    try:
        line = input()
    except EOFError:
        return False
    words = line.split()
    if not words:
        return False
    return words[0][0] in ("y", "Y")