# kmodtools

A library and a small command for working with Linux kernel module trees
(`/lib/modules/<version>/`):

- compute module dependencies from exported and needed symbols and write
  `modules.dep`, `modules.alias`, `modules.softdep`, `modules.symbols`,
  `modules.devname` and the binary trie indexes `modules.dep.bin`,
  `modules.alias.bin`, `modules.symbols.bin` and `modules.builtin.bin`;
- turn the running kernel's `modules.devname` into static device node
  descriptions;
- a `kmod` command that dispatches to its subcommands.

## Installation

```
pip install .
```

Python 3.10 or later is required. There are no runtime dependencies.
`pip install .[test]` adds pytest for the test suite.

## Command line

```
kmod help
kmod -V
kmod static-nodes [-f FORMAT] [-o FILE]
```

- `kmod help`, `kmod -h` and `kmod --help` print the usage text and the list
  of commands. Without a command, or with an unknown one, the usage text is
  printed and the exit status is 1.
- `kmod -V` / `--version` prints `kmod version 0.1.0`.
- `kmod static-nodes` reads `/lib/modules/<release>/modules.devname` of the
  running kernel and writes the device nodes it lists, to standard output or
  to the file given with `-o`/`--output` (its parent directories are created
  as needed). `-f`/`--format` picks one of:
  - `human` (default): a human-readable listing. Do not parse it.
  - `tmpfiles`: the tmpfiles.d(5) format used by systemd-tmpfiles.
  - `devname`: the `modules.devname` format.

  If `modules.devname` does not exist, a warning is printed and the command
  succeeds. Invalid lines are reported on stderr, skipped, and make the exit
  status 1.

## Library use

### Binary index

`kmodtools.index.Index` is the prefix trie stored in the `*.bin` files:

```python
from kmodtools.index import Index

idx = Index()
idx.insert("foo", "kernel/foo.ko:", 0)
duplicate = idx.insert("bar", "kernel/bar.ko: kernel/foo.ko", 1)  # False
data = idx.to_bytes()          # or idx.write(binary_file)
```

Values under one key are kept ordered by priority. `insert` returns `True`
when the key already held the same value. Keys and values must be 7-bit
ASCII; anything else raises `IndexError7Bit` (a `ValueError`).

### Configuration

`kmodtools.config.DepmodConfig` holds the settings of one run (`kversion`,
`dirname`, `sym_prefix`, `check_symvers`, `print_unknown`, `warn_dups`) and
reads `depmod.d` style files with `load(paths)`. Without paths it looks in
`/run/depmod.d`, `/etc/depmod.d` and `/lib/depmod.d`; files must end in
`.conf`, are read in order of file name, and a name already seen is ignored.

- `search DIR...` puts directories on the search list; `built-in` stands
  for the kernel's own tree.
- `override MODULE KERNEL-PATTERN SUBDIR` is applied when the pattern (a
  regular expression, or `*`) matches the kernel version.
- `include` and `make_map_files` are accepted and ignored.

When no `search` line is given, `updates` is searched first.
`list_config_files` and `read_wrapped_lines` (which joins lines ending in a
backslash) are available on their own.

### Computing dependencies

The package does not read module files itself. A *loader* — any callable
taking a path and returning a `kmodtools.registry.ModuleData` — supplies
each module's name, path, exported symbols `(name, crc)`, modinfo entries
`(key, value)` and needed symbols `(name, crc, bind)` with `bind == "W"` for
weak symbols.

```python
from kmodtools.config import DepmodConfig
from kmodtools.graph import Depmod
from kmodtools.output import write_outputs
from kmodtools.registry import ModuleRegistry

config = DepmodConfig(kversion="6.1.0", dirname="/lib/modules/6.1.0")
config.load()

registry = ModuleRegistry(config)
registry.search(my_loader)     # walks dirname, skipping build/ and source/
registry.build_array()
registry.sort_by_order()       # follows modules.order when present

depmod = Depmod(config, registry)
depmod.load_symvers("Module.symvers")   # optional, or load_system_map(...)
depmod.load()                  # raises CycleError on dependency loops
write_outputs(depmod)
```

- `ModuleRegistry` keeps one module per name; when two files share a name,
  overrides and then the search order decide which one stays
  (`is_higher_priority`, `consider_path`). `add` raises
  `DuplicateModuleError` for a name or path already registered.
- `Depmod` keeps a `SymbolTable`, links each module to the modules that
  export the symbols it needs, and sorts them topologically. `CycleError`
  carries the cycles found and the names of the modules in them.
- `kmodtools.graph.all_sorted_dependencies(mod)` gives every direct and
  indirect dependency of a module in dependency order.
- `kmodtools.output.write_outputs(depmod)` writes every file into the
  module directory, each through a `.tmp` file renamed into place. Given a
  text stream as `out`, it writes only the text files to that stream. The
  individual writers (`output_deps`, `output_aliases_bin`, ...) and
  `normalize_alias` can also be called directly.
- `kmodtools.sources` reads `Module.symvers` (`read_symvers`) and
  `System.map` (`read_system_map`) files and checks whether `modules.dep` is
  newer than every module file (`depfile_up_to_date`).

### Static nodes

`kmodtools.static_nodes` offers `parse_devname_line`, `convert(lines, out,
fmt)` and the `StaticNodesFormat` enum used by `kmod static-nodes`.

### Logging

`kmodtools.log.Logger` prints `program: PRIORITY: message` to a stream
(stderr by default) or to syslog after `open(use_syslog=True)`, dropping
messages less severe than its threshold. Messages at `Priority.CRIT` or more
severe raise `FatalError` after they are written.

## What is not included

- There is no `depmod` command; dependency files are produced through the
  library as shown above.
- Module files are not parsed: symbols and modinfo must come from a loader
  you provide.
- There are no commands to list, insert, remove or probe loaded modules,
  and no `modinfo` command.