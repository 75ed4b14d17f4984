"""Print the static device nodes listed in the running kernel's modules.devname."""

from __future__ import annotations

import getopt
import os
import re
import sys
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, TextIO


@dataclass(frozen=True)
class DevnameEntry:
    modname: str
    devname: str
    type: str
    major: int
    minor: int


def write_human(out: TextIO, entry: DevnameEntry) -> None:
    kind = "character" if entry.type == "c" else "block"
    out.write(
        f"Module: {entry.modname}\n"
        f"\tDevice node: /dev/{entry.devname}\n"
        f"\t\tType: {kind} device\n"
        f"\t\tMajor: {entry.major}\n"
        f"\t\tMinor: {entry.minor}\n"
    )


def write_tmpfiles(out: TextIO, entry: DevnameEntry) -> None:
    directory, sep, _ = entry.devname.rpartition("/")
    if sep:
        out.write(f"d /dev/{directory} 0755 - - -\n")
    out.write(
        f"{entry.type}! /dev/{entry.devname} 0600 - - - {entry.major}:{entry.minor}\n"
    )


def write_devname(out: TextIO, entry: DevnameEntry) -> None:
    out.write(
        f"{entry.modname} {entry.devname} {entry.type}{entry.major}:{entry.minor}\n"
    )


class StaticNodesFormat(Enum):
    """Output formats for the static node list."""

    HUMAN = "human"
    TMPFILES = "tmpfiles"
    DEVNAME = "devname"

    @property
    def description(self) -> str:
        return _DESCRIPTIONS[self]

    def write(self, out: TextIO, entry: DevnameEntry) -> None:
        _WRITERS[self](out, entry)


_DESCRIPTIONS = {
    StaticNodesFormat.HUMAN: "(default) a human readable format. Do not parse.",
    StaticNodesFormat.TMPFILES: "the tmpfiles.d(5) format used by systemd-tmpfiles.",
    StaticNodesFormat.DEVNAME: "the modules.devname format.",
}

_WRITERS = {
    StaticNodesFormat.HUMAN: write_human,
    StaticNodesFormat.TMPFILES: write_tmpfiles,
    StaticNodesFormat.DEVNAME: write_devname,
}

_LINE_RE = re.compile(r"\s*(\S+)\s+(\S+)\s+(\S)\s*(\d+):\s*(\d+)")


def parse_devname_line(line: str) -> DevnameEntry | None:
    """Parse one modules.devname line; None for comments, ValueError if invalid."""
    if line.startswith("#"):
        return None
    match = _LINE_RE.match(line)
    if match is None or match.group(3) not in ("c", "b"):
        raise ValueError(f"invalid devname entry: {line}")
    modname, devname, kind, major, minor = match.groups()
    return DevnameEntry(modname, devname, kind, int(major), int(minor))


def convert(
    lines: Iterable[str], out: TextIO, fmt: StaticNodesFormat = StaticNodesFormat.HUMAN
) -> bool:
    """Write every valid entry in ``fmt``; return False if any line was invalid."""
    ok = True
    for line in lines:
        try:
            entry = parse_devname_line(line)
        except ValueError:
            sys.stderr.write(f"Error: invalid devname entry: {line}")
            ok = False
            continue
        if entry is not None:
            fmt.write(out, entry)
    return ok


def _help(program: str) -> None:
    print(
        "Usage:\n"
        f"\t{program} static-nodes [options]\n"
        "\n"
        "kmod static-nodes outputs the static-node information of the currently running kernel.\n"
        "\n"
        "Options:\n"
        "\t-f, --format=FORMAT  choose format to use: see \"Formats\"\n"
        "\t-o, --output=FILE    write output to file\n"
        "\t-h, --help           show this help\n"
        "\n"
        "Formats:"
    )
    for fmt in StaticNodesFormat:
        print(f"\t{fmt.value:<12} {fmt.description}")


def main(argv: list[str] | None = None) -> int:
    """Run the static-nodes command; ``argv`` excludes the command name."""
    if argv is None:
        argv = sys.argv[1:]
    program = os.path.basename(sys.argv[0]) if sys.argv and sys.argv[0] else "kmod"

    try:
        opts, _ = getopt.gnu_getopt(argv, "o:f:h", ["output=", "format=", "help"])
    except getopt.GetoptError as exc:
        print(f"{program}: {exc}", file=sys.stderr)
        return 1

    output: str | None = None
    fmt = StaticNodesFormat.HUMAN
    for opt, value in opts:
        if opt in ("-o", "--output"):
            output = value
        elif opt in ("-f", "--format"):
            try:
                fmt = StaticNodesFormat(value)
            except ValueError:
                print(f"Unknown format: '{value}'.", file=sys.stderr)
                _help(program)
                return 1
        elif opt in ("-h", "--help"):
            _help(program)
            return 0

    release = os.uname().release
    modules = f"/lib/modules/{release}/modules.devname"
    try:
        infile = open(modules, encoding="utf-8", errors="surrogateescape")
    except FileNotFoundError:
        print(
            f"Warning: /lib/modules/{release}/modules.devname not found - ignoring",
            file=sys.stderr,
        )
        return 0
    except OSError as exc:
        print(
            f"Error: could not open /lib/modules/{release}/modules.devname - {exc.strerror}",
            file=sys.stderr,
        )
        return 1

    with infile:
        if output is None:
            return 0 if convert(infile, sys.stdout, fmt) else 1

        parent = os.path.dirname(output)
        try:
            if parent:
                os.makedirs(parent, 0o755, exist_ok=True)
        except OSError as exc:
            print(
                f"Error: could not create parent directory for {output} - {exc.strerror}.",
                file=sys.stderr,
            )
            return 1

        try:
            out = open(output, "w", encoding="utf-8")
        except OSError as exc:
            print(f"Error: could not create {output} - {exc.strerror}", file=sys.stderr)
            return 1

        with out:
            return 0 if convert(infile, out, fmt) else 1