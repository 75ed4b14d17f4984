import io
import os
import types

import pytest

from kmodtools.static_nodes import (
    DevnameEntry,
    StaticNodesFormat,
    convert,
    main,
    parse_devname_line,
    write_devname,
    write_human,
    write_tmpfiles,
)

TIMER = DevnameEntry("snd_timer", "snd/timer", "c", 116, 33)
LOOP = DevnameEntry("loop", "loop-control", "b", 10, 237)


def test_parse_valid_line():
    entry = parse_devname_line("snd_timer snd/timer c116:33\n")
    assert entry == TIMER


def test_parse_comment_line():
    assert parse_devname_line("# Device nodes to trigger on-demand module loading.\n") is None


@pytest.mark.parametrize(
    "line",
    ["snd_timer snd/timer x116:33\n", "snd_timer snd/timer\n", "\n", "a b c1\n"],
)
def test_parse_invalid_lines(line):
    with pytest.raises(ValueError):
        parse_devname_line(line)


def test_write_human():
    out = io.StringIO()
    write_human(out, TIMER)
    assert out.getvalue() == (
        "Module: snd_timer\n"
        "\tDevice node: /dev/snd/timer\n"
        "\t\tType: character device\n"
        "\t\tMajor: 116\n"
        "\t\tMinor: 33\n"
    )


def test_write_human_block_device():
    out = io.StringIO()
    write_human(out, LOOP)
    assert "\t\tType: block device\n" in out.getvalue()


def test_write_tmpfiles_with_directory():
    out = io.StringIO()
    write_tmpfiles(out, TIMER)
    assert out.getvalue() == (
        "d /dev/snd 0755 - - -\n" "c! /dev/snd/timer 0600 - - - 116:33\n"
    )


def test_write_tmpfiles_without_directory():
    out = io.StringIO()
    write_tmpfiles(out, LOOP)
    assert out.getvalue() == "b! /dev/loop-control 0600 - - - 10:237\n"


@pytest.mark.parametrize("entry", [TIMER, LOOP])
def test_devname_round_trip(entry):
    out = io.StringIO()
    write_devname(out, entry)
    assert parse_devname_line(out.getvalue()) == entry


def test_format_lookup_by_name():
    assert StaticNodesFormat("tmpfiles") is StaticNodesFormat.TMPFILES
    out = io.StringIO()
    StaticNodesFormat.DEVNAME.write(out, LOOP)
    assert out.getvalue() == "loop loop-control b10:237\n"


def test_convert_reports_invalid_lines(capsys):
    lines = [
        "# comment\n",
        "snd_timer snd/timer c116:33\n",
        "broken\n",
        "loop loop-control b10:237\n",
    ]
    out = io.StringIO()
    assert convert(lines, out, StaticNodesFormat.DEVNAME) is False
    assert out.getvalue() == (
        "snd_timer snd/timer c116:33\n" "loop loop-control b10:237\n"
    )
    assert "Error: invalid devname entry: broken\n" in capsys.readouterr().err


def test_convert_all_valid():
    out = io.StringIO()
    assert convert(["loop loop-control b10:237\n"], out, StaticNodesFormat.HUMAN) is True
    assert out.getvalue().startswith("Module: loop\n")


def test_main_help(capsys):
    assert main(["-h"]) == 0
    printed = capsys.readouterr().out
    assert "Formats:" in printed
    assert "tmpfiles" in printed


def test_main_unknown_format(capsys):
    assert main(["--format", "bogus"]) == 1
    assert "Unknown format: 'bogus'." in capsys.readouterr().err


def test_main_bad_option():
    assert main(["--no-such-option"]) == 1


def test_main_missing_devname_file(monkeypatch, capsys):
    fake = types.SimpleNamespace(release="0.0-kmodtools-missing")
    monkeypatch.setattr(os, "uname", lambda: fake)
    assert main([]) == 0
    assert "modules.devname not found - ignoring" in capsys.readouterr().err