"""The set of module files depmod works on, chosen by search order and overrides."""

from __future__ import annotations

import os
import stat
from dataclasses import dataclass, field
from typing import Callable

from kmodtools.config import DepmodConfig
from kmodtools.sources import modname_from_path, path_ends_with_kmod_ext

KMOD_EXTENSION_UNCOMPRESSED = ".ko"
SKIPPED_DIRECTORIES = ("build", "source")


class DuplicateModuleError(ValueError):
    """A module name or uncompressed relative path is already registered."""


@dataclass
class ModuleData:
    """What is known of one module file.

    ``symbols`` are the ``(name, crc)`` pairs it exports, ``info`` its
    ``(key, value)`` modinfo entries and ``dependency_symbols`` the
    ``(name, crc, bind)`` triples it needs, where ``bind`` is ``"W"`` for a
    weak symbol.
    """

    name: str
    path: str
    symbols: list[tuple[str, int]] = field(default_factory=list)
    info: list[tuple[str, str]] = field(default_factory=list)
    dependency_symbols: list[tuple[str, int, str]] = field(default_factory=list)


@dataclass(eq=False)
class Mod:
    """A registered module together with the state depmod keeps about it."""

    data: ModuleData
    path: str
    relpath: str | None
    uncrelpath: str | None
    baselen: int
    sort_idx: int
    dep_sort_idx: int = 2**31 - 1
    idx: int = 0
    users: int = 0
    deps: list[Mod] = field(default_factory=list)
    visited: bool = False

    @property
    def modname(self) -> str:
        return self.data.name

    @property
    def compressed_path(self) -> str:
        """The path written to the output files: relative if possible."""
        return self.relpath if self.relpath is not None else self.path

    def __repr__(self) -> str:
        return f"Mod({self.modname!r}, {self.path!r})"


Loader = Callable[[str], ModuleData]


class ModuleRegistry:
    """Modules indexed by name and by uncompressed relative path."""

    def __init__(self, config: DepmodConfig) -> None:
        self.config = config
        self.by_name: dict[str, Mod] = {}
        self.by_uncrelpath: dict[str, Mod] = {}
        self.modules: list[Mod] = []

    @property
    def _log(self):
        return self.config.logger

    def _relative(self, path: str) -> str | None:
        prefix = self.config.dirname + "/"
        if path.startswith(prefix):
            return path[len(prefix):]
        return None

    def add(self, data: ModuleData) -> Mod:
        """Register a module; DuplicateModuleError if its name or path is taken."""
        path = data.path
        relpath = self._relative(path)
        mod = Mod(
            data=data,
            path=path,
            relpath=relpath,
            uncrelpath=None,
            baselen=path.rfind("/"),
            sort_idx=len(self.modules) + 1,
        )

        if mod.modname in self.by_name:
            raise DuplicateModuleError(f"module {mod.modname} already added")

        if relpath is not None:
            end = relpath.rfind("/") + 1 + len(mod.modname) + len(
                KMOD_EXTENSION_UNCOMPRESSED
            )
            mod.uncrelpath = relpath[:end]
            if mod.uncrelpath in self.by_uncrelpath:
                raise DuplicateModuleError(f"module {mod.uncrelpath} already added")
            self.by_uncrelpath[mod.uncrelpath] = mod

        self.by_name[mod.modname] = mod
        self._log.debug(f"add {mod.modname}, path={path}\n")
        return mod

    def remove(self, mod: Mod) -> None:
        """Forget a registered module."""
        self._log.debug(f"del {mod.modname}, path={mod.path}\n")
        if mod.uncrelpath is not None:
            self.by_uncrelpath.pop(mod.uncrelpath, None)
        self.by_name.pop(mod.modname, None)
        if mod in self.modules:
            self.modules.remove(mod)

    def is_higher_priority(self, mod: Mod, newpath: str) -> bool:
        """Tell whether the registered ``mod`` wins over the file ``newpath``."""
        cfg = self.config
        skip = len(cfg.dirname) + 1
        if not (newpath.startswith(cfg.dirname) and mod.path.startswith(cfg.dirname)):
            raise ValueError(f"{newpath} or {mod.path} is outside {cfg.dirname}")

        newbase = newpath.rfind("/") + 1
        newkey = newpath[skip:newbase + len(mod.modname)]
        oldkey = mod.path[skip:mod.baselen + 1 + len(mod.modname)]
        newrel = newpath[skip:]
        oldrel = mod.path[skip:]

        self._log.debug(f"comparing priorities of {oldrel} and {newrel}\n")

        for override in cfg.overrides:
            if override.path == newkey:
                return False
            if override.path == oldkey:
                return True

        bprio = oldprio = newprio = -1
        for i, search in enumerate(cfg.searches):
            n = len(search.path)
            if search.builtin:
                bprio = i
            elif len(newkey) > n and newrel[n] == "/" and newrel.startswith(search.path):
                newprio = i
            elif len(oldkey) > n and oldrel[n] == "/" and oldrel.startswith(search.path):
                oldprio = i

        if newprio < 0:
            newprio = bprio
        if oldprio < 0:
            oldprio = bprio

        self._log.debug(
            f"priorities: built-in: {bprio}, old: {oldprio}, new: {newprio}\n"
        )
        return newprio <= oldprio

    def consider_path(self, path: str, loader: Loader) -> Mod | None:
        """Register the module file at ``path`` unless a better one is known.

        Returns the new module, or None if the file is not a module or lost to
        the registered one.
        """
        name = path[path.rfind("/") + 1:]
        if not path_ends_with_kmod_ext(name):
            return None

        modname = modname_from_path(path)
        existing = self.by_name.get(modname)
        if existing is not None:
            if self.is_higher_priority(existing, path):
                self._log.debug(
                    f"Ignored lower priority: {path}, higher: {existing.path}\n"
                )
                return None
            self._log.debug(
                f"Replace lower priority {existing.relpath} with new module {path}\n"
            )
            self.remove(existing)

        return self.add(loader(path))

    def _search_dir(self, directory: str, loader: Loader) -> None:
        with os.scandir(directory) as entries:
            for entry in entries:
                name = entry.name
                if name in SKIPPED_DIRECTORIES:
                    continue
                path = f"{directory}/{name}"
                try:
                    st = os.stat(path)
                except OSError as exc:
                    self._log.err(f"stat({path}): {exc.strerror}\n")
                    continue

                try:
                    if stat.S_ISDIR(st.st_mode):
                        self._search_dir(path, loader)
                    elif stat.S_ISREG(st.st_mode):
                        self.consider_path(path, loader)
                    else:
                        self._log.err(
                            f"unsupported file type {path}: "
                            f"{stat.S_IFMT(st.st_mode):o}\n"
                        )
                except (OSError, ValueError) as exc:
                    self._log.err(f"failed {path}: {exc}\n")

    def search(self, loader: Loader) -> None:
        """Register every module file below the module directory.

        OSError is raised if the directory itself cannot be read; problems
        with single files are logged and skipped.
        """
        dirname = self.config.dirname
        try:
            self._search_dir(dirname, loader)
        except OSError as exc:
            self._log.err(f"could not open directory {dirname}: {exc.strerror}\n")
            raise

    def build_array(self) -> list[Mod]:
        """Fix the list of modules and number them."""
        self.modules = list(self.by_name.values())
        for idx, mod in enumerate(self.modules):
            mod.idx = idx
        return self.modules

    def sort_by_order(self) -> None:
        """Order the modules as listed in modules.order; unlisted ones go last."""
        order_file = f"{self.config.dirname}/modules.order"
        try:
            with open(order_file, encoding="utf-8", errors="surrogateescape") as fp:
                lines = fp.readlines()
        except OSError as exc:
            self._log.warn(f"could not open {order_file}: {exc.strerror}\n")
            return

        for number, line in enumerate(lines, start=1):
            if not line.endswith("\n"):
                self._log.err(f"{order_file}:{number} corrupted line misses '\\n'\n")
                return

        total = len(lines) + 1
        for number, line in enumerate(lines, start=1):
            mod = self.by_uncrelpath.get(line[:-1])
            if mod is not None:
                mod.sort_idx = number - total

        self.modules.sort(key=lambda m: m.sort_idx)
        for idx, mod in enumerate(self.modules):
            mod.idx = idx