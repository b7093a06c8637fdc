"""Tests for the read-only mirror check."""

from __future__ import annotations

from autoindex_sync.verify import check, compare


def test_compare_lists_missing_and_extra(tmp_path):
    (tmp_path / "sub").mkdir()
    (tmp_path / "sub" / "b.txt").write_text("b")
    (tmp_path / "stray.txt").write_text("s")

    missing, extra = compare({"a.txt", "sub/b.txt"}, tmp_path)

    assert missing == ["a.txt"]
    assert extra == ["stray.txt"]


def test_compare_with_absent_root(tmp_path):
    assert compare({"a.txt"}, tmp_path / "nope") == (["a.txt"], [])


async def test_check_reports_differences_without_touching_disk(
    remote, make_config, local_root, capsys
):
    remote.add_dir("", "a.txt", "sub/")
    remote.add_dir("sub/", "b.txt")
    (local_root / "sub").mkdir(parents=True)
    (local_root / "sub" / "b.txt").write_text("b")
    (local_root / "stray.txt").write_text("s")

    code = await check(make_config())

    out = capsys.readouterr().out
    assert code == 1
    assert "[NG] missing file: a.txt" in out
    assert "[NG] extra file not on remote: stray.txt" in out
    assert "OK: 1" in out
    assert "NG: 2" in out
    assert remote.downloads() == []
    assert (local_root / "stray.txt").exists()


async def test_check_passes_for_identical_tree(remote, make_config, local_root, capsys):
    remote.add_dir("", "a.txt")
    local_root.mkdir()
    (local_root / "a.txt").write_text("a")

    assert await check(make_config()) == 0
    assert "NG: 0" in capsys.readouterr().out


async def test_check_fails_when_listing_unavailable(remote, make_config, capsys):
    remote.fail("", status=502)

    assert await check(make_config()) == 1
    assert "remote listing unavailable" in capsys.readouterr().out
