"""Priority-filtered logging to stderr or syslog for the command-line tools."""

from __future__ import annotations

import sys
from enum import IntEnum
from typing import TextIO


class Priority(IntEnum):
    """Syslog message priorities, most severe first."""

    EMERG = 0
    ALERT = 1
    CRIT = 2
    ERR = 3
    WARNING = 4
    NOTICE = 5
    INFO = 6
    DEBUG = 7


_PRIORITY_NAMES = {
    Priority.CRIT: "FATAL",
    Priority.ERR: "ERROR",
    Priority.WARNING: "WARNING",
    Priority.NOTICE: "NOTICE",
    Priority.INFO: "INFO",
    Priority.DEBUG: "DEBUG",
}


def prio_to_str(prio: int) -> str:
    """Return the label printed in front of a message of priority ``prio``."""
    return _PRIORITY_NAMES.get(prio, f"LOG-{int(prio):03d}")


class FatalError(Exception):
    """Raised after a critical message has been logged; the program must stop."""

    exit_code = 1


class Logger:
    """Writes messages at or above a priority threshold.

    Messages of priority CRIT or more severe raise :class:`FatalError` once
    they have been written.
    """

    def __init__(
        self,
        program: str = "kmod",
        priority: int = Priority.WARNING,
        stream: TextIO | None = None,
    ) -> None:
        self.program = program
        self.priority = int(priority)
        self.stream = stream
        self._syslog = None

    def open(self, use_syslog: bool = False) -> None:
        """Select syslog or the stream as the destination of messages."""
        if use_syslog:
            import syslog

            syslog.openlog(self.program, syslog.LOG_CONS, syslog.LOG_DAEMON)
            self._syslog = syslog
        else:
            self._syslog = None

    def close(self) -> None:
        """Close the syslog connection if one was opened."""
        if self._syslog is not None:
            self._syslog.closelog()
            self._syslog = None

    def log(self, prio: int, message: str) -> None:
        """Write ``message`` if ``prio`` passes the threshold."""
        if prio > self.priority:
            return

        name = prio_to_str(prio)
        text = message if message.endswith("\n") else message + "\n"

        if self._syslog is not None:
            self._syslog.syslog(int(prio), f"{name}: {text.rstrip(chr(10))}")
        else:
            stream = self.stream if self.stream is not None else sys.stderr
            stream.write(f"{self.program}: {name}: {text}")
            stream.flush()

        if prio <= Priority.CRIT:
            raise FatalError(message.rstrip("\n"))

    def crit(self, message: str) -> None:
        self.log(Priority.CRIT, message)

    def err(self, message: str) -> None:
        self.log(Priority.ERR, message)

    def warn(self, message: str) -> None:
        self.log(Priority.WARNING, message)

    def info(self, message: str) -> None:
        self.log(Priority.INFO, message)

    def debug(self, message: str) -> None:
        self.log(Priority.DEBUG, message)