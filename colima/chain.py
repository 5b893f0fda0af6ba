"""Ordered chains of commands with named stages."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

_LOGGER_NAME = "colima.chain"

_quiet_logger = logging.Logger("colima.chain.quiet")
_quiet_logger.addHandler(logging.NullHandler())


class NonFatalError(Exception):
    """An error that is reported as a warning instead of ending the chain."""

    def __init__(self, err: Any):
        super().__init__(str(err))
        self.err = err
        if isinstance(err, BaseException):
            self.__cause__ = err


class ChainError(Exception):
    """A chain step failed after a named stage."""

    def __init__(self, stage: str, cause: BaseException):
        super().__init__(f"error at '{stage}': {cause}")
        self.stage = stage
        self.cause = cause


@dataclass
class _Step:
    func: Optional[Callable[[], Any]] = None
    text: str = ""


class ActiveCommandChain:
    """A chain of steps being built and run in order."""

    def __init__(self, logger: logging.LoggerAdapter):
        self.logger = logger
        self._steps: list[_Step] = []
        self._last_stage = ""
        self._executing = False

    def add(self, func: Callable[[], Any]) -> None:
        """Append a function to the chain."""
        self._steps.append(_Step(func=func))

    def stage(self, text: str) -> None:
        """Mark a new stage; while running, the stage is only logged."""
        if self._executing:
            self.logger.info("%s ...", text)
            return
        self._steps.append(_Step(text=text))

    def stagef(self, fmt: str, *args: Any) -> None:
        """Like stage, with %-style formatting."""
        self.stage(fmt % args if args else fmt)

    def run(self) -> None:
        """Run the chain; the first failing step ends it.

        A NonFatalError is logged as a warning and the chain continues.
        Other errors are re-raised, wrapped in ChainError when a stage is set.
        """
        self._executing = True
        try:
            for step in self._steps:
                if step.func is None:
                    if step.text:
                        self.logger.info("%s ...", step.text)
                        self._last_stage = step.text
                    continue
                try:
                    step.func()
                except NonFatalError as err:
                    if self._last_stage:
                        self.logger.warning("error at '%s': %s", self._last_stage, err)
                    else:
                        self.logger.warning("%s", err)
                except Exception as err:
                    if not self._last_stage:
                        raise
                    raise ChainError(self._last_stage, err) from err
        finally:
            self._executing = False

    def retry(
        self,
        stage: str,
        interval: float,
        count: int,
        func: Callable[[int], Any],
    ) -> None:
        """Add a step that calls func, retrying up to count times at interval seconds.

        func receives the attempt number, starting from 1. The last error
        ends the chain.
        """

        def attempt() -> None:
            number = 1
            while True:
                try:
                    func(number)
                    return
                except Exception:
                    if number > count:
                        raise
                if stage:
                    self.logger.info("%s ...", stage)
                time.sleep(interval)
                number += 1

        self.add(attempt)


class CommandChain:
    """A named factory of command chains."""

    def __init__(self, name: str):
        self.name = name

    def logger(self, quiet: bool = False) -> logging.LoggerAdapter:
        """Return the chain logger; a quiet logger discards everything."""
        if quiet:
            return logging.LoggerAdapter(_quiet_logger, {"context": self.name})
        return logging.LoggerAdapter(logging.getLogger(_LOGGER_NAME), {"context": self.name})

    def init(self, quiet: bool = False) -> ActiveCommandChain:
        """Start a new chain."""
        return ActiveCommandChain(self.logger(quiet))