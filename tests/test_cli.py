import pytest

from kmodtools.cli import COMMANDS, kmod_help, main


def test_help_option_lists_commands(capsys):
    assert main(["kmod", "--help"]) == 0
    out = capsys.readouterr().out
    assert out.startswith("kmod - Manage kernel modules: list, load, unload, etc\n")
    assert "  help         Show help message" in out
    assert "static-nodes" in out


def test_kmod_help_uses_program_basename(capsys):
    assert kmod_help(["/usr/bin/kmod"]) == 0
    out = capsys.readouterr().out
    assert "\tkmod [options] command [command_options]" in out
    assert "/usr/bin" not in out


def test_help_command(capsys):
    assert main(["kmod", "help"]) == 0
    assert "Commands:" in capsys.readouterr().out


def test_version(capsys):
    assert main(["kmod", "-V"]) == 0
    assert "kmod version" in capsys.readouterr().out


def test_missing_command(capsys):
    assert main(["kmod"]) == 1
    captured = capsys.readouterr()
    assert "missing command" in captured.err
    assert "Usage:" in captured.out


def test_invalid_command(capsys):
    assert main(["kmod", "bogus"]) == 1
    assert "invalid command 'bogus'" in capsys.readouterr().err


def test_unknown_option(capsys):
    assert main(["kmod", "-x"]) == 1
    assert capsys.readouterr().err != ""


def test_static_nodes_bad_format(capsys):
    assert main(["kmod", "static-nodes", "-f", "nope"]) == 1
    assert "Unknown format: 'nope'." in capsys.readouterr().err


def test_static_nodes_help(capsys):
    assert main(["kmod", "static-nodes", "--help"]) == 0
    assert "Formats:" in capsys.readouterr().out


@pytest.mark.parametrize("name", ["help", "static-nodes"])
def test_commands_registered_and_dispatched(name, capsys):
    assert name in [c.name for c in COMMANDS]
    assert main(["kmod", name, "--help"]) == 0
    captured = capsys.readouterr()
    assert "Usage:" in captured.out
    assert "invalid command" not in captured.err