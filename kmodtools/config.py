"""Configuration of module search order and overrides for depmod."""

from __future__ import annotations

import bisect
import os
import re
import stat
from dataclasses import dataclass, field
from typing import Iterable, Iterator, TextIO

from kmodtools.log import Logger

CFG_BUILTIN_KEY = "built-in"
DEFAULT_CONFIG_PATHS = ("/run/depmod.d", "/etc/depmod.d", "/lib/depmod.d")

_log = Logger("depmod")
_SEPARATORS = re.compile(r"[\t ]+")


@dataclass(frozen=True)
class Override:
    """A module that must be taken from one subdirectory.

    ``path`` is ``subdir/modname`` without any extension, so that it matches
    both compressed and uncompressed module files.
    """

    path: str


@dataclass(frozen=True)
class Search:
    """A subdirectory searched for modules; ``builtin`` marks the kernel tree itself."""

    path: str
    builtin: bool = False


def read_wrapped_lines(fp: TextIO) -> Iterator[tuple[int, str]]:
    """Yield ``(line number, line)`` pairs, joining lines that end in a backslash.

    The line number is that of the last physical line read.
    """
    linenum = 0
    pending: list[str] = []
    for raw in fp:
        linenum += 1
        has_newline = raw.endswith("\n")
        line = raw[:-1] if has_newline else raw
        if has_newline and line.endswith("\\"):
            pending.append(line[:-1])
            continue
        pending.append(line)
        yield linenum, "".join(pending)
        pending = []
    if pending:
        yield linenum, "".join(pending)


def _filtered_out(directory: str, name: str) -> bool:
    if name.startswith("."):
        return True
    if len(name) < 6 or not name.endswith(".conf"):
        _log.info(f"All cfg files need .conf: {directory}/{name}\n")
        return True
    if os.path.isdir(os.path.join(directory, name)):
        _log.err(
            f"Directories inside directories are not supported: {directory}/{name}\n"
        )
        return True
    return False


def list_config_files(paths: Iterable[str]) -> list[str]:
    """Return the configuration files found in ``paths``, sorted by file name.

    A file whose name was already seen in an earlier path is ignored.
    """
    names: list[str] = []
    by_name: dict[str, str] = {}

    def insert(name: str, full_path: str) -> None:
        if name in by_name:
            _log.debug(f"Ignoring duplicate config file: {full_path}\n")
            return
        bisect.insort(names, name)
        by_name[name] = full_path

    for path in paths:
        try:
            st = os.stat(path)
        except OSError as exc:
            _log.debug(f"could not stat '{path}': {exc.strerror}\n")
            continue

        if not stat.S_ISDIR(st.st_mode):
            insert(os.path.basename(path), path)
            continue

        try:
            entries = os.listdir(path)
        except OSError as exc:
            _log.err(f"files list {path}: {exc.strerror}\n")
            continue

        for name in entries:
            if not _filtered_out(path, name):
                insert(name, f"{path}/{name}")
        _log.debug(f"parsed configuration files from {path}\n")

    return [by_name[name] for name in names]


@dataclass
class DepmodConfig:
    """Settings for one depmod run, including the parsed configuration files.

    ``searches`` and ``overrides`` hold the most recently added entry first.
    """

    kversion: str = ""
    dirname: str = ""
    sym_prefix: str = ""
    check_symvers: bool = False
    print_unknown: bool = False
    warn_dups: bool = False
    overrides: list[Override] = field(default_factory=list)
    searches: list[Search] = field(default_factory=list)
    logger: Logger = field(
        default_factory=lambda: Logger("depmod"), repr=False, compare=False
    )

    def add_search(self, path: str) -> Search:
        """Put ``path`` at the head of the search list."""
        builtin = path == CFG_BUILTIN_KEY
        search = Search("" if builtin else path, builtin)
        self.logger.debug(f"search add: {path}, builtin={int(builtin)}\n")
        self.searches.insert(0, search)
        return search

    def add_override(self, modname: str, subdir: str) -> Override:
        """Put an override of ``modname`` to ``subdir`` at the head of the list."""
        override = Override(f"{subdir}/{modname}")
        self.logger.debug(f"override add: {override.path}\n")
        self.overrides.insert(0, override)
        return override

    def kernel_matches(self, pattern: str) -> bool:
        """Tell whether the kernel version matches ``pattern`` ("*" matches all)."""
        if pattern == "*":
            return True
        try:
            regex = re.compile(pattern)
        except re.error:
            return False
        return regex.search(self.kversion) is not None

    def parse_file(self, filename: str) -> None:
        """Apply the commands of one configuration file; OSError if unreadable."""
        try:
            fp = open(filename, encoding="utf-8", errors="surrogateescape")
        except OSError as exc:
            self.logger.err(f"file parse {filename}: {exc.strerror}\n")
            raise

        with fp:
            for linenum, line in read_wrapped_lines(fp):
                if not line or line.startswith("#"):
                    continue
                tokens = [t for t in _SEPARATORS.split(line) if t]
                if not tokens:
                    continue
                cmd, args = tokens[0], tokens[1:]

                if cmd == "search":
                    for path in args:
                        self.add_search(path)
                elif cmd == "override" and len(args) >= 3:
                    modname, version, subdir = args[:3]
                    if not self.kernel_matches(version):
                        self.logger.info(
                            f"{filename}:{linenum}: override kernel did not match {version}\n"
                        )
                        continue
                    self.add_override(modname, subdir)
                elif cmd in ("include", "make_map_files"):
                    self.logger.info(
                        f"{filename}:{linenum}: command {cmd} not implemented yet\n"
                    )
                else:
                    self.logger.err(
                        f"{filename}:{linenum}: ignoring bad line starting with '{cmd}'\n"
                    )

    def load(self, paths: Iterable[str] | None = None) -> None:
        """Parse every configuration file found in ``paths`` (or the defaults)."""
        if paths is None:
            paths = DEFAULT_CONFIG_PATHS
        for filename in list_config_files(paths):
            try:
                self.parse_file(filename)
            except OSError:
                continue

        # Without any "search" line, "updates" goes first for compatibility.
        if not self.searches:
            self.add_search("updates")