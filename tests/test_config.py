import io

import pytest

from kmodtools.config import (
    DEFAULT_CONFIG_PATHS,
    DepmodConfig,
    Override,
    Search,
    list_config_files,
    read_wrapped_lines,
)
from kmodtools.log import Logger, Priority


@pytest.fixture
def stream():
    return io.StringIO()


@pytest.fixture
def cfg(stream):
    return DepmodConfig(
        kversion="4.4.0-1-generic",
        dirname="/lib/modules/4.4.0-1-generic",
        logger=Logger("depmod", Priority.DEBUG, stream),
    )


def test_read_wrapped_lines_joins_continuations():
    fp = io.StringIO("first\nsecond \\\ncontinued\nlast")
    lines = list(read_wrapped_lines(fp))
    assert lines == [(1, "first"), (3, "second continued"), (4, "last")]


def test_read_wrapped_lines_trailing_continuation_at_eof():
    fp = io.StringIO("alpha \\\n")
    assert list(read_wrapped_lines(fp)) == [(1, "alpha ")]


def test_add_search_prepends(cfg):
    cfg.add_search("updates")
    cfg.add_search("built-in")
    cfg.add_search("extra")
    assert cfg.searches[0] == Search("extra", False)
    assert cfg.searches[1].builtin is True
    assert cfg.searches[2] == Search("updates", False)


def test_add_override_builds_path(cfg):
    cfg.add_override("foo", "kernel/extra")
    cfg.add_override("bar", "updates")
    assert [o.path for o in cfg.overrides] == ["updates/bar", "kernel/extra/foo"]
    assert isinstance(cfg.overrides[0], Override)


def test_kernel_matches(cfg):
    assert cfg.kernel_matches("*")
    assert cfg.kernel_matches(r"4\.4\..*")
    assert not cfg.kernel_matches(r"^5\.")
    assert not cfg.kernel_matches("(unclosed")


def test_parse_file(cfg, stream, tmp_path):
    conf = tmp_path / "a.conf"
    conf.write_text(
        "# comment\n"
        "\n"
        "search updates built-in\n"
        "override foo * kernel/extra\n"
        "override bar ^9\\. weird\n"
        "override incomplete\n"
        "include other.conf\n"
        "bogus stuff\n"
    )
    cfg.parse_file(str(conf))
    assert [s.path for s in cfg.searches if not s.builtin] == ["updates"]
    assert cfg.searches[0].builtin
    assert [o.path for o in cfg.overrides] == ["kernel/extra/foo"]
    text = stream.getvalue()
    assert "ignoring bad line starting with 'bogus'" in text
    assert "ignoring bad line starting with 'override'" in text
    assert "command include not implemented yet" in text
    assert "override kernel did not match ^9\\." in text


def test_parse_file_missing_raises(cfg, tmp_path):
    with pytest.raises(FileNotFoundError):
        cfg.parse_file(str(tmp_path / "missing.conf"))


def test_list_config_files_sorted_and_deduplicated(tmp_path):
    first = tmp_path / "first"
    second = tmp_path / "second"
    first.mkdir()
    second.mkdir()
    (first / "b.conf").write_text("")
    (first / "notconf.txt").write_text("")
    (first / ".hidden.conf").write_text("")
    (first / "sub.conf").mkdir()
    (second / "a.conf").write_text("")
    (second / "b.conf").write_text("")
    single = tmp_path / "z.conf"
    single.write_text("")

    files = list_config_files(
        [str(first), str(second), str(single), str(tmp_path / "none")]
    )
    assert files == [
        f"{second}/a.conf",
        f"{first}/b.conf",
        str(single),
    ]


def test_load_adds_updates_when_no_search(cfg, tmp_path):
    conf_dir = tmp_path / "depmod.d"
    conf_dir.mkdir()
    (conf_dir / "x.conf").write_text("override foo * extra\n")
    cfg.load([str(conf_dir)])
    assert cfg.searches == [Search("updates", False)]
    assert [o.path for o in cfg.overrides] == ["extra/foo"]


def test_load_keeps_explicit_search(cfg, tmp_path):
    conf_dir = tmp_path / "depmod.d"
    conf_dir.mkdir()
    (conf_dir / "x.conf").write_text("search extra\n")
    cfg.load([str(conf_dir)])
    assert cfg.searches == [Search("extra", False)]


def test_list_config_files_missing_paths_and_defaults(tmp_path):
    assert list_config_files([str(tmp_path / "nowhere"), str(tmp_path / "gone")]) == []
    assert DEFAULT_CONFIG_PATHS[0] == "/run/depmod.d"
    assert "/lib/depmod.d" in DEFAULT_CONFIG_PATHS