"""Inputs read by depmod: kernel symbol lists, module paths and freshness checks."""

from __future__ import annotations

import os
import re
import stat

from kmodtools.log import Logger

KMOD_EXTENSIONS = (".ko", ".ko.gz", ".ko.xz", ".ko.zst")

_log = Logger("depmod")

_VERSION_RE = re.compile(r"\s*[+-]?\d+\.\s*[+-]?\d+")
_HEX_RE = re.compile(r"\s*([+-]?)(?:0[xX])?[0-9a-fA-F]+")
_SYMVERS_SEP = re.compile(r"[ \t]+")
_KSYMTAB = "__ksymtab_"
_U64 = (1 << 64) - 1


def is_version_number(version: str) -> bool:
    """Tell whether ``version`` starts with two dot-separated numbers."""
    return _VERSION_RE.match(version) is not None


def path_ends_with_kmod_ext(name: str) -> bool:
    """Tell whether ``name`` carries a kernel module file extension."""
    return name.endswith(KMOD_EXTENSIONS)


def modname_from_path(path: str) -> str:
    """Return the module name of a file path: basename up to the first dot, '-' as '_'."""
    base = path.rsplit("/", 1)[-1]
    name = base.split(".", 1)[0].replace("-", "_")
    if not name:
        raise ValueError(f"could not get modname from path {path}")
    return name


def _parse_crc(text: str) -> int | None:
    if _HEX_RE.fullmatch(text) is None:
        return None
    value = int(text.strip(), 16)
    if value > _U64:
        value = _U64
    return value & _U64


def read_symvers(filename: str) -> list[tuple[str, int]]:
    """Return ``(symbol, crc)`` pairs exported by vmlinux in a Module.symvers file.

    OSError is raised if the file cannot be opened; lines with an invalid
    version are reported and skipped.
    """
    symbols: list[tuple[str, int]] = []
    with open(filename, encoding="utf-8", errors="surrogateescape") as fp:
        for linenum, line in enumerate(fp, start=1):
            tokens = [t for t in _SYMVERS_SEP.split(line) if t]
            if len(tokens) < 3:
                continue
            ver, sym, where = tokens[:3]
            if where != "vmlinux":
                continue
            crc = _parse_crc(ver)
            if crc is None:
                _log.err(f"{filename}:{linenum} Invalid symbol version {ver}\n")
                continue
            symbols.append((sym, crc))
    return symbols


def read_system_map(filename: str, sym_prefix: str = "") -> list[str]:
    """Return the names of the symbols exported in a System.map file.

    Only ``__ksymtab_`` entries are taken; the architecture prefix and the
    ``__ksymtab_`` part are removed. OSError is raised if the file cannot be
    opened.
    """
    names: list[str] = []
    with open(filename, encoding="utf-8", errors="surrogateescape") as fp:
        for linenum, line in enumerate(fp, start=1):
            parts = line.split(" ", 2)
            if len(parts) < 3:
                _log.err(f"{filename}:{linenum}: invalid line: {line}")
                continue
            symbol = parts[2]
            if sym_prefix and symbol.startswith(sym_prefix):
                symbol = symbol[len(sym_prefix):]
            if not symbol.startswith(_KSYMTAB):
                continue
            symbol = symbol.split("\n", 1)[0]
            names.append(symbol[len(_KSYMTAB):])
    return names


def _dir_up_to_date(path: str, mtime: int) -> bool:
    with os.scandir(path) as entries:
        for entry in entries:
            name = entry.name
            if name in ("build", "source"):
                continue
            full = os.path.join(path, name)
            try:
                st = os.stat(full)
            except OSError as exc:
                _log.err(f"stat({full}): {exc.strerror}\n")
                continue

            if stat.S_ISDIR(st.st_mode):
                try:
                    if not _dir_up_to_date(full, mtime):
                        return False
                except OSError as exc:
                    _log.err(f"opendir({full}): {exc.strerror}\n")
            elif stat.S_ISREG(st.st_mode):
                if not path_ends_with_kmod_ext(name):
                    continue
                if int(st.st_mtime) > mtime:
                    _log.debug(f"{full} {int(st.st_mtime)} is newer than {mtime}\n")
                    return False
            else:
                _log.err(
                    f"unsupported file type {full}: {stat.S_IFMT(st.st_mode):o}\n"
                )
    return True


def depfile_up_to_date(dirname: str) -> bool:
    """Tell whether modules.dep in ``dirname`` is newer than every module file.

    OSError is raised if the directory or modules.dep cannot be read.
    """
    try:
        dep = os.stat(os.path.join(dirname, "modules.dep"))
    except OSError as exc:
        _log.err(f"could not fstatat({dirname}, modules.dep): {exc.strerror}\n")
        raise
    try:
        return _dir_up_to_date(dirname, int(dep.st_mtime))
    except OSError as exc:
        _log.err(f"could not open directory {dirname}: {exc.strerror}\n")
        raise