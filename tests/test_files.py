import os

import pytest

from doom_agent.errors import PathSafetyError
from doom_agent.files import materialize_files, resolve_config_path


@pytest.mark.asyncio
async def test_materialize_writes_nested_files(work_dir):
    configs = {
        "server.cfg": ["sv_hostname \"Test\"", "sv_maxplayers 8"],
        "cfg/maps/list.txt": ["MAP01", "MAP02", "MAP03"],
        "empty.cfg": [],
    }
    written = await materialize_files(work_dir, configs)

    assert [p.name for p in written] == ["server.cfg", "list.txt", "empty.cfg"]
    assert (work_dir / "server.cfg").read_bytes() == "sv_hostname \"Test\"\nsv_maxplayers 8".encode("utf-8")
    assert (work_dir / "cfg" / "maps" / "list.txt").read_text(encoding="utf-8") == "MAP01\nMAP02\nMAP03"
    assert (work_dir / "empty.cfg").read_text(encoding="utf-8") == ""


@pytest.mark.asyncio
async def test_materialize_truncates_existing_file(work_dir):
    target = work_dir / "server.cfg"
    target.write_text("a much longer previous content\nwith more lines\n", encoding="utf-8")
    await materialize_files(work_dir, {"server.cfg": ["short"]})
    assert target.read_text(encoding="utf-8") == "short"


@pytest.mark.asyncio
async def test_materialize_writes_utf8(work_dir):
    await materialize_files(work_dir, {"motd.txt": ["Привет", "naïve"]})
    assert (work_dir / "motd.txt").read_bytes() == "Привет\nnaïve".encode("utf-8")


@pytest.mark.parametrize("name", ["/etc/passwd", "C:\\doom\\server.cfg"])
def test_absolute_paths_are_rejected(work_dir, name):
    with pytest.raises(PathSafetyError):
        resolve_config_path(work_dir, name)


@pytest.mark.parametrize("name", ["../outside.cfg", "cfg/../../outside.cfg", ".", "cfg/.."])
def test_escaping_paths_are_rejected(work_dir, name):
    with pytest.raises(PathSafetyError):
        resolve_config_path(work_dir, name)


def test_empty_path_has_its_own_message(work_dir):
    with pytest.raises(PathSafetyError, match="empty config path"):
        resolve_config_path(work_dir, "")


def test_symlink_escape_is_rejected(tmp_path, work_dir):
    outside = tmp_path / "outside"
    outside.mkdir()
    os.symlink(outside, work_dir / "link")
    with pytest.raises(PathSafetyError):
        resolve_config_path(work_dir, "link/server.cfg")


@pytest.mark.asyncio
async def test_unsafe_entry_stops_batch_without_rollback(tmp_path, work_dir):
    configs = {
        "first.cfg": ["one"],
        "../escape.cfg": ["evil"],
        "third.cfg": ["three"],
    }
    with pytest.raises(PathSafetyError):
        await materialize_files(work_dir, configs)

    assert (work_dir / "first.cfg").read_text(encoding="utf-8") == "one"
    assert not (tmp_path / "escape.cfg").exists()
    assert not (work_dir / "third.cfg").exists()
