"""The kmod command: dispatches to its subcommands."""

from __future__ import annotations

import getopt
import os
import sys
from dataclasses import dataclass
from typing import Callable

from kmodtools import static_nodes

PACKAGE = "kmod"
VERSION = "0.1.0"


@dataclass(frozen=True)
class Command:
    """A subcommand; ``run`` gets the arguments starting with the command name."""

    name: str
    run: Callable[[list[str]], int]
    help: str | None = None


def kmod_help(argv: list[str]) -> int:
    """Print the usage text and the list of commands."""
    program = os.path.basename(argv[0]) if argv and argv[0] else PACKAGE
    print(
        "kmod - Manage kernel modules: list, load, unload, etc\n"
        "Usage:\n"
        f"\t{program} [options] command [command_options]\n\n"
        "Options:\n"
        "\t-V, --version     show version\n"
        "\t-h, --help        show this help\n\n"
        "Commands:"
    )
    for command in COMMANDS:
        if command.help is not None:
            print(f"  {command.name:<12} {command.help}")
    return 0


def _run_static_nodes(argv: list[str]) -> int:
    return static_nodes.main(argv[1:])


COMMANDS: tuple[Command, ...] = (
    Command("help", kmod_help, "Show help message"),
    Command(
        "static-nodes",
        _run_static_nodes,
        "outputs the static-node information installed with the currently running kernel",
    ),
)


def main(argv: list[str] | None = None) -> int:
    """Run kmod; ``argv`` includes the program name."""
    if argv is None:
        argv = sys.argv
    argv = list(argv) or [PACKAGE]
    program = os.path.basename(argv[0]) or PACKAGE

    try:
        opts, rest = getopt.getopt(argv[1:], "hV", ["help", "version"])
    except getopt.GetoptError as exc:
        print(f"{program}: {exc}", file=sys.stderr)
        return 1

    for opt, _ in opts:
        if opt in ("-h", "--help"):
            kmod_help(argv)
            return 0
        if opt in ("-V", "--version"):
            print(f"{PACKAGE} version {VERSION}")
            return 0

    if not rest:
        sys.stderr.write("missing command\n")
        kmod_help(argv)
        return 1

    name = rest[0]
    for command in COMMANDS:
        if command.name == name:
            return command.run(rest)

    print(f"invalid command '{name}'", file=sys.stderr)
    kmod_help(argv)
    return 1


if __name__ == "__main__":
    sys.exit(main())