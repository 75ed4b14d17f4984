import io
import struct

import pytest

from kmodtools.index import (
    INDEX_MAGIC,
    INDEX_VERSION,
    Index,
    IndexError7Bit,
)


def decode(data):
    magic, version, root = struct.unpack_from(">III", data, 0)
    entries = {}

    def walk(off, key):
        pos = off & 0x0FFFFFFF
        if off & 0x80000000:
            end = data.index(b"\0", pos)
            key += data[pos:end].decode("ascii")
            pos = end + 1
        children = []
        if off & 0x20000000:
            first, last = data[pos], data[pos + 1]
            pos += 2
            n = last - first + 1
            offs = struct.unpack_from(f">{n}I", data, pos)
            pos += 4 * n
            children = [(chr(first + k), o) for k, o in enumerate(offs) if o]
        if off & 0x40000000:
            (count,) = struct.unpack_from(">I", data, pos)
            pos += 4
            values = []
            for _ in range(count):
                (prio,) = struct.unpack_from(">I", data, pos)
                pos += 4
                end = data.index(b"\0", pos)
                values.append((prio, data[pos:end].decode("ascii")))
                pos = end + 1
            entries[key] = values
        for ch, child in children:
            walk(child, key + ch)

    walk(root, "")
    return magic, version, entries


def test_empty_index_header():
    data = Index().to_bytes()
    assert data[:8] == bytes.fromhex("b007f45700020001")
    magic, version, entries = decode(data)
    assert magic == INDEX_MAGIC
    assert version == INDEX_VERSION
    assert entries == {}


def test_round_trip_with_shared_prefixes():
    idx = Index()
    idx.insert("abc", "one", 1)
    idx.insert("abd", "two", 2)
    idx.insert("ab", "three", 3)
    idx.insert("xyz", "four", 4)
    _, _, entries = decode(idx.to_bytes())
    assert entries == {
        "abc": [(1, "one")],
        "abd": [(2, "two")],
        "ab": [(3, "three")],
        "xyz": [(4, "four")],
    }


def test_split_at_shorter_key_inserted_later():
    idx = Index()
    idx.insert("snd_timer", "a", 0)
    idx.insert("snd", "b", 0)
    idx.insert("snd_pcm", "c", 0)
    _, _, entries = decode(idx.to_bytes())
    assert set(entries) == {"snd_timer", "snd", "snd_pcm"}


def test_values_sorted_by_priority():
    idx = Index()
    idx.insert("key", "late", 5)
    idx.insert("key", "early", 1)
    idx.insert("key", "middle", 3)
    _, _, entries = decode(idx.to_bytes())
    assert [p for p, _ in entries["key"]] == [1, 3, 5]
    assert [v for _, v in entries["key"]] == ["early", "middle", "late"]


def test_equal_priority_newest_first():
    idx = Index()
    idx.insert("key", "first", 2)
    idx.insert("key", "second", 2)
    _, _, entries = decode(idx.to_bytes())
    assert [v for _, v in entries["key"]] == ["second", "first"]


def test_duplicate_reported():
    idx = Index()
    assert idx.insert("foo", "bar", 0) is False
    assert idx.insert("foo", "baz", 1) is False
    assert idx.insert("foo", "bar", 2) is True


def test_empty_key_stored_on_root():
    idx = Index()
    idx.insert("", "rootvalue", 0)
    _, _, entries = decode(idx.to_bytes())
    assert entries == {"": [(0, "rootvalue")]}


def test_non_ascii_key_rejected():
    with pytest.raises(IndexError7Bit):
        Index().insert("caf\u00e9", "x", 0)


def test_non_ascii_value_rejected():
    with pytest.raises(IndexError7Bit):
        Index().insert("cafe", "\u00e9", 0)


def test_write_matches_to_bytes():
    idx = Index()
    idx.insert("alias", "mod", 7)
    out = io.BytesIO()
    idx.write(out)
    assert out.getvalue() == idx.to_bytes()