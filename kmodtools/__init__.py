"""Kernel module tree tooling: dependency files and binary indexes, static device nodes and the kmod command."""

__version__ = "0.1.0"
__all__ = ["__version__"]