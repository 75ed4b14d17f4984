"""Radix trie of string keys and its binary on-disk index format."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from typing import BinaryIO

INDEX_MAGIC = 0xB007F457
INDEX_VERSION_MAJOR = 0x0002
INDEX_VERSION_MINOR = 0x0001
INDEX_VERSION = (INDEX_VERSION_MAJOR << 16) | INDEX_VERSION_MINOR
INDEX_CHILDMAX = 128

INDEX_NODE_FLAGS = 0xF0000000
INDEX_NODE_PREFIX = 0x80000000
INDEX_NODE_VALUES = 0x40000000
INDEX_NODE_CHILDS = 0x20000000
INDEX_NODE_MASK = 0x0FFFFFFF


class IndexError7Bit(ValueError):
    """A key or value holds a character outside 7-bit ASCII."""

    def __init__(self, text: str, char: str) -> None:
        super().__init__(
            f"Module index: bad character '{char}'=0x{ord(char):x} - "
            f"only 7-bit ASCII is supported:\n{text}"
        )
        self.text = text
        self.char = char


@dataclass
class IndexValue:
    value: str
    priority: int


@dataclass
class IndexNode:
    prefix: str = ""
    values: list[IndexValue] = field(default_factory=list)
    children: dict[str, IndexNode] = field(default_factory=dict)

    def add_value(self, value: str, priority: int) -> bool:
        """Insert ``value`` ordered by priority; return True if it was already present."""
        duplicate = any(v.value == value for v in self.values)
        pos = next(
            (k for k, v in enumerate(self.values) if v.priority >= priority),
            len(self.values),
        )
        self.values.insert(pos, IndexValue(value, priority))
        return duplicate


def _check_string(text: str) -> None:
    for ch in text:
        if ord(ch) >= INDEX_CHILDMAX:
            raise IndexError7Bit(text, ch)


def _write_node(node: IndexNode, buf: bytearray) -> int:
    child_offsets: list[int] = []
    first = last = 0
    if node.children:
        codes = [ord(ch) for ch in node.children]
        first, last = min(codes), max(codes)
        for code in range(first, last + 1):
            child = node.children.get(chr(code))
            child_offsets.append(_write_node(child, buf) if child else 0)

    offset = len(buf)

    if node.prefix:
        buf += node.prefix.encode("ascii") + b"\0"
        offset |= INDEX_NODE_PREFIX

    if child_offsets:
        buf += bytes((first, last))
        buf += struct.pack(f">{len(child_offsets)}I", *child_offsets)
        offset |= INDEX_NODE_CHILDS

    if node.values:
        buf += struct.pack(">I", len(node.values))
        for v in node.values:
            buf += struct.pack(">I", v.priority)
            buf += v.value.encode("ascii") + b"\0"
        offset |= INDEX_NODE_VALUES

    return offset


class Index:
    """An in-memory index mapping keys to priority-ordered values."""

    def __init__(self) -> None:
        self.root = IndexNode()

    def insert(self, key: str, value: str, priority: int) -> bool:
        """Add ``value`` under ``key``; return True if the key already held it."""
        _check_string(key)
        _check_string(value)

        node = self.root
        i = 0
        while True:
            j = 0
            while j < len(node.prefix):
                ch = node.prefix[j]
                if i + j >= len(key) or key[i + j] != ch:
                    split = IndexNode(node.prefix[j + 1:], node.values, node.children)
                    node.prefix = node.prefix[:j]
                    node.values = []
                    node.children = {ch: split}
                    break
                j += 1
            i += j

            if i == len(key):
                return node.add_value(value, priority)

            ch = key[i]
            child = node.children.get(ch)
            if child is None:
                node.children[ch] = IndexNode(
                    prefix=key[i + 1:], values=[IndexValue(value, priority)]
                )
                return False

            node = child
            i += 1

    def to_bytes(self) -> bytes:
        """Serialise the index, children written before their parents."""
        buf = bytearray(struct.pack(">III", INDEX_MAGIC, INDEX_VERSION, 0))
        root_offset = _write_node(self.root, buf)
        struct.pack_into(">I", buf, 8, root_offset)
        return bytes(buf)

    def write(self, out: BinaryIO) -> None:
        """Write the serialised index to a binary stream."""
        out.write(self.to_bytes())