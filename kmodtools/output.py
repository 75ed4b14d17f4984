"""Writers of the module index files produced by depmod."""

from __future__ import annotations

import os
import re
from typing import BinaryIO, Callable, TextIO

from kmodtools.graph import Depmod, all_sorted_dependencies
from kmodtools.index import Index
from kmodtools.sources import modname_from_path

_BRACKET_GROUP = re.compile(r"(\[[^\]]*\])")
_CHAR_MAJOR = re.compile(r"char-major-(\d+)-(\d+)")
_BLOCK_MAJOR = re.compile(r"block-major-(\d+)-(\d+)")
_DEVNAME_PREFIX = "devname:"
_SYMBOL_PREFIX = "symbol:"


def normalize_alias(alias: str) -> str:
    """Turn '-' into '_' outside bracket groups; ValueError on an unmatched bracket."""
    parts = _BRACKET_GROUP.split(alias)
    normalized = []
    for position, part in enumerate(parts):
        if position % 2:
            normalized.append(part)
            continue
        if "[" in part or "]" in part:
            raise ValueError(f"Unmatched bracket in {alias}")
        normalized.append(part.replace("-", "_"))
    return "".join(normalized)


def _deps_line(mod) -> str:
    deps = all_sorted_dependencies(mod)
    return "".join(
        [f"{mod.compressed_path}:"] + [f" {d.compressed_path}" for d in deps]
    )


def _entries(mod, wanted: str):
    return (value for key, value in mod.data.info if key == wanted)


def output_deps(depmod: Depmod, out: TextIO) -> None:
    """Write modules.dep: each module followed by all of its dependencies."""
    for mod in depmod.modules:
        out.write(_deps_line(mod) + "\n")


def output_deps_bin(depmod: Depmod, out: BinaryIO) -> None:
    """Write modules.dep.bin: the modules.dep lines indexed by module name."""
    log = depmod.config.logger
    index = Index()
    for mod in depmod.modules:
        line = _deps_line(mod)
        duplicate = index.insert(mod.modname, line, mod.idx)
        if duplicate and depmod.config.warn_dups:
            log.warn(f"duplicate module deps:\n{line}\n")
    index.write(out)


def output_aliases(depmod: Depmod, out: TextIO) -> None:
    """Write modules.alias from the alias entries of every module."""
    out.write("# Aliases extracted from modules themselves.\n")
    for mod in depmod.modules:
        for value in _entries(mod, "alias"):
            out.write(f"alias {value} {mod.modname}\n")


def output_aliases_bin(depmod: Depmod, out: BinaryIO) -> None:
    """Write modules.alias.bin: normalised aliases mapped to module names."""
    log = depmod.config.logger
    index = Index()
    for mod in depmod.modules:
        for value in _entries(mod, "alias"):
            try:
                alias = normalize_alias(value)
            except ValueError:
                log.warn(f"Unmatched bracket in {value}\n")
                continue
            duplicate = index.insert(alias, mod.modname, mod.idx)
            if duplicate and depmod.config.warn_dups:
                log.warn(f"duplicate module alias:\n{alias} {mod.modname}\n")
    index.write(out)


def output_softdeps(depmod: Depmod, out: TextIO) -> None:
    """Write modules.softdep from the softdep entries of every module."""
    out.write("# Soft dependencies extracted from modules themselves.\n")
    for mod in depmod.modules:
        for value in _entries(mod, "softdep"):
            out.write(f"softdep {mod.modname} {value}\n")


def output_symbols(depmod: Depmod, out: TextIO) -> None:
    """Write modules.symbols: symbol aliases of the symbols modules export."""
    out.write("# Aliases for symbols, used by symbol_request().\n")
    for sym in depmod.symbols:
        if sym.owner is None:
            continue
        out.write(f"alias {_SYMBOL_PREFIX}{sym.name} {sym.owner.modname}\n")


def output_symbols_bin(depmod: Depmod, out: BinaryIO) -> None:
    """Write modules.symbols.bin: ``symbol:NAME`` mapped to the owning module."""
    log = depmod.config.logger
    index = Index()
    for sym in depmod.symbols:
        if sym.owner is None:
            continue
        alias = _SYMBOL_PREFIX + sym.name
        duplicate = index.insert(alias, sym.owner.modname, sym.owner.idx)
        if duplicate and depmod.config.warn_dups:
            log.warn(f"duplicate module syms:\n{alias} {sym.owner.modname}\n")
    index.write(out)


def output_builtin_bin(depmod: Depmod, out: BinaryIO) -> None:
    """Write modules.builtin.bin from modules.builtin; nothing if that is missing."""
    log = depmod.config.logger
    infile = f"{depmod.config.dirname}/modules.builtin"
    try:
        fp = open(infile, encoding="utf-8", errors="surrogateescape")
    except OSError as exc:
        log.warn(f"could not open {infile}: {exc.strerror}\n")
        return

    index = Index()
    with fp:
        for line in fp:
            first = line[:1]
            if not (first.isascii() and first.isalpha()):
                log.err(f"Invalid modules.builtin line: {line}")
                continue
            index.insert(modname_from_path(line.rstrip("\n")), "", 0)
    index.write(out)


def _device_of(mod) -> tuple[str | None, str, int, int]:
    devname: str | None = None
    kind = ""
    major = minor = 0
    for value in _entries(mod, "alias"):
        if value.startswith(_DEVNAME_PREFIX):
            devname = value[len(_DEVNAME_PREFIX):]
        else:
            for letter, pattern in (("c", _CHAR_MAJOR), ("b", _BLOCK_MAJOR)):
                match = pattern.match(value)
                if match:
                    kind = letter
                    major, minor = int(match.group(1)), int(match.group(2))
                    break
        if kind and devname is not None:
            break
    return devname, kind, major, minor


def output_devname(depmod: Depmod, out: TextIO) -> None:
    """Write modules.devname: device nodes that trigger loading a module."""
    log = depmod.config.logger
    empty = True
    for mod in depmod.modules:
        devname, kind, major, minor = _device_of(mod)
        if devname is None:
            continue
        if not kind:
            log.err(
                f"Module '{mod.modname}' has devname ({devname}) but lacks major "
                "and minor information. Ignoring.\n"
            )
            continue
        if empty:
            out.write("# Device nodes to trigger on-demand module loading.\n")
            empty = False
        out.write(f"{mod.modname} {devname} {kind}{major}:{minor}\n")


_OUTPUTS: tuple[tuple[str, Callable, bool], ...] = (
    ("modules.dep", output_deps, False),
    ("modules.dep.bin", output_deps_bin, True),
    ("modules.alias", output_aliases, False),
    ("modules.alias.bin", output_aliases_bin, True),
    ("modules.softdep", output_softdeps, False),
    ("modules.symbols", output_symbols, False),
    ("modules.symbols.bin", output_symbols_bin, True),
    ("modules.builtin.bin", output_builtin_bin, True),
    ("modules.devname", output_devname, False),
)


def write_outputs(depmod: Depmod, out: TextIO | None = None) -> None:
    """Write every index file into the module directory.

    With ``out`` given, only the text files are written to it, one after the
    other. Otherwise each file is written under a temporary name and renamed
    into place; a failure is logged and raised.
    """
    if out is not None:
        for _, writer, binary in _OUTPUTS:
            if not binary:
                writer(depmod, out)
        return

    dirname = depmod.config.dirname
    log = depmod.config.logger
    if not os.path.isdir(dirname):
        log.crit(f"could not open directory {dirname}: No such directory\n")
        raise FileNotFoundError(f"could not open directory {dirname}")

    for name, writer, binary in _OUTPUTS:
        tmp = os.path.join(dirname, name + ".tmp")
        final = os.path.join(dirname, name)
        try:
            if binary:
                fp = open(tmp, "wb")
            else:
                fp = open(tmp, "w", encoding="utf-8", errors="surrogateescape", newline="\n")
        except OSError as exc:
            log.err(f"open({dirname}, {name}.tmp): {exc.strerror}\n")
            continue

        try:
            with fp:
                writer(depmod, fp)
        except (OSError, ValueError) as exc:
            try:
                os.unlink(tmp)
            except OSError as unlink_exc:
                log.err(f"unlink({dirname}, {name}.tmp): {unlink_exc.strerror}\n")
            log.err(f"Could not write index '{name}': {exc}\n")
            raise

        try:
            os.replace(tmp, final)
        except OSError as exc:
            log.crit(f"rename({tmp}, {final}): {exc.strerror}\n")
            raise