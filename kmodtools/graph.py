"""Symbol resolution and dependency ordering of the registered modules."""

from __future__ import annotations

import sys
from dataclasses import dataclass
from typing import Iterator

from kmodtools.config import DepmodConfig
from kmodtools.log import Priority
from kmodtools.registry import Mod, ModuleRegistry
from kmodtools.sources import read_symvers, read_system_map

WEAK_BIND = "W"
FAKE_SYMBOLS = (
    # inserted by the kernel loader
    "__this_module",
    # faked up on S390
    "_GLOBAL_OFFSET_TABLE_",
    # PowerPC64 ABIv2 counterpart of _GLOBAL_OFFSET_TABLE_
    "TOC.",
)


@dataclass(eq=False)
class Symbol:
    """An exported symbol; ``owner`` is None for symbols of the kernel itself."""

    name: str
    crc: int
    owner: Mod | None


class SymbolTable:
    """Exported symbols by name, with the architecture prefix removed."""

    def __init__(self, sym_prefix: str = "") -> None:
        self.sym_prefix = sym_prefix
        self._symbols: dict[str, Symbol] = {}

    def add(
        self,
        name: str,
        crc: int = 0,
        owner: Mod | None = None,
        prefix_skipped: bool = False,
    ) -> Symbol:
        """Record a symbol, replacing any earlier one of the same name."""
        if not prefix_skipped and self.sym_prefix and name.startswith(self.sym_prefix):
            name = name[1:]
        symbol = Symbol(name, crc, owner)
        self._symbols[name] = symbol
        return symbol

    def find(self, name: str) -> Symbol | None:
        """Look a symbol up; ``.foo`` is the same as ``foo`` (PPC64)."""
        if name.startswith("."):
            name = name[1:]
        if self.sym_prefix and name.startswith(self.sym_prefix):
            name = name[1:]
        return self._symbols.get(name)

    def add_fake_symbols(self) -> None:
        """Add the symbols the kernel provides without exporting them."""
        for name in FAKE_SYMBOLS:
            self.add(name, 0, None, prefix_skipped=True)

    def __iter__(self) -> Iterator[Symbol]:
        return iter(list(self._symbols.values()))

    def __len__(self) -> int:
        return len(self._symbols)


class CycleError(Exception):
    """Modules depend on each other in one or more cycles."""

    def __init__(self, cycles: list[list[str]], modules: set[str]) -> None:
        super().__init__(f"Found {len(modules)} modules in dependency cycles!")
        self.cycles = cycles
        self.modules = modules


def _unique_dependencies(mod: Mod, seen: list[Mod]) -> None:
    for dep in mod.deps:
        if any(dep is s for s in seen):
            continue
        seen.append(dep)
        _unique_dependencies(dep, seen)


def all_sorted_dependencies(mod: Mod) -> list[Mod]:
    """Every direct and indirect dependency of ``mod``, in dependency order."""
    deps: list[Mod] = []
    _unique_dependencies(mod, deps)
    deps.sort(key=lambda m: m.dep_sort_idx)
    return deps


@dataclass
class _Vertex:
    mod: Mod
    parent: _Vertex | None

    def on_path(self, mod: Mod) -> bool:
        v = self.parent
        while v is not None:
            if v.mod is mod:
                return True
            v = v.parent
        return False


class Depmod:
    """Resolves the symbols between modules and orders them."""

    def __init__(self, config: DepmodConfig, registry: ModuleRegistry) -> None:
        self.config = config
        self.registry = registry
        self.symbols = SymbolTable(config.sym_prefix)

    @property
    def modules(self) -> list[Mod]:
        return self.registry.modules

    @property
    def _log(self):
        return self.config.logger

    def _show(self, message: str) -> None:
        if self._log.priority > Priority.WARNING:
            sys.stdout.write(message)
            sys.stdout.flush()

    def load_symvers(self, filename: str) -> None:
        """Add the kernel's symbols and CRCs from a Module.symvers file."""
        for name, crc in read_symvers(filename):
            self.symbols.add(name, crc, None, prefix_skipped=False)
        self.symbols.add_fake_symbols()

    def load_system_map(self, filename: str) -> None:
        """Add the kernel's exported symbols from a System.map file."""
        for name in read_system_map(filename, self.config.sym_prefix):
            self.symbols.add(name, 0, None, prefix_skipped=True)
        self.symbols.add_fake_symbols()

    def load_modules(self) -> None:
        """Add the symbols exported by every module."""
        for mod in self.modules:
            if not mod.data.symbols:
                self._log.debug(f"ignoring {mod.path}: no symbols\n")
            for name, crc in mod.data.symbols:
                self.symbols.add(name, crc, mod, prefix_skipped=False)
        self._log.debug(
            f"loaded symbols ({len(self.modules)} modules, {len(self.symbols)} symbols)\n"
        )

    def _add_dependency(self, mod: Mod, sym: Symbol) -> None:
        owner = sym.owner
        if owner is None:
            return
        if any(d is owner for d in mod.deps):
            return
        mod.deps.append(owner)
        owner.users += 1
        self._show(f'{mod.path} needs "{sym.name}": {owner.path}\n')

    def _load_module_dependencies(self, mod: Mod) -> None:
        cfg = self.config
        for name, crc, bind in mod.data.dependency_symbols:
            sym = self.symbols.find(name)
            is_weak = bind == WEAK_BIND
            if sym is None:
                self._log.debug(f"{mod.path} needs ({bind}) unknown symbol {name}\n")
                if cfg.print_unknown and not is_weak:
                    self._log.warn(f"{mod.path} needs unknown symbol {name}\n")
                continue
            if cfg.check_symvers and sym.crc != crc and not is_weak:
                self._log.debug(
                    f"symbol {sym.name} ({sym.crc:#x}) module {mod.path} ({crc:#x})\n"
                )
                if cfg.print_unknown:
                    self._log.warn(
                        f"{mod.path} disagrees about version of symbol {name}\n"
                    )
            self._add_dependency(mod, sym)

    def load_dependencies(self) -> None:
        """Link every module to the modules owning the symbols it needs."""
        for mod in self.modules:
            if not mod.data.dependency_symbols:
                self._log.debug(f"ignoring {mod.path}: no dependency symbols\n")
                continue
            self._load_module_dependencies(mod)

    def _report_cycles_from_root(
        self,
        root_mod: Mod,
        roots: list[Mod],
        loop_set: set[str],
        cycles: list[list[str]],
    ) -> None:
        root = _Vertex(root_mod, None)
        stack = [root]
        while stack:
            vertex = stack.pop()
            m = vertex.mod
            if m.visited and m is root.mod:
                chain: list[Mod] = []
                v = vertex.parent
                while v is not None:
                    chain.append(v.mod)
                    loop_set.add(v.mod.modname)
                    v = v.parent
                chain.reverse()
                for cm in chain:
                    if cm in roots:
                        roots.remove(cm)
                names = [cm.modname for cm in chain] + [m.modname]
                cycles.append(names)
                self._log.err(f"Cycle detected: {' -> '.join(names)}\n")
                continue
            if m.visited and vertex.on_path(m):
                # a loop that does not run through the root
                continue

            m.visited = True
            if not m.deps:
                if m in roots:
                    roots.remove(m)
                continue
            for dep in m.deps:
                stack.append(_Vertex(dep, vertex))

    def _report_cycles(self, users: list[int]) -> CycleError:
        roots = [mod for mod, count in zip(self.modules, users) if count > 0]
        loop_set: set[str] = set()
        cycles: list[list[str]] = []
        while roots:
            root = roots.pop(0)
            self._report_cycles_from_root(root, roots, loop_set, cycles)
        self._log.err(f"Found {len(loop_set)} modules in dependency cycles!\n")
        return CycleError(cycles, loop_set)

    def calculate_dependencies(self) -> None:
        """Sort the modules topologically; CycleError if that is impossible."""
        modules = self.modules
        users = [m.users for m in modules]
        roots = [i for i, count in enumerate(users) if count == 0]
        n_sorted = 0

        while roots:
            src = modules[roots.pop()]
            src.dep_sort_idx = n_sorted
            n_sorted += 1
            for dst in src.deps:
                if users[dst.idx] <= 0:
                    raise RuntimeError(f"inconsistent user count of {dst.modname}")
                users[dst.idx] -= 1
                if users[dst.idx] == 0:
                    roots.append(dst.idx)

        if n_sorted < len(modules):
            raise self._report_cycles(users)

        for mod in modules:
            if len(mod.deps) > 1:
                mod.deps.sort(key=lambda m: m.dep_sort_idx)

        self._log.debug(
            f"calculated dependencies and ordering ({len(modules)} modules)\n"
        )

    def load(self) -> None:
        """Load symbols, resolve dependencies and order the modules."""
        self.load_modules()
        self.load_dependencies()
        self.calculate_dependencies()