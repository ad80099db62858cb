"""Shared fixtures: a scripted fake game server and a scratch work dir."""

import textwrap
from pathlib import Path

import pytest

FAKE_SERVER = textwrap.dedent(
    """
    import sys
    import time

    if "--silent" in sys.argv:
        print("loading wads...", flush=True)
        time.sleep(60)
        sys.exit(0)

    print("args: " + " ".join(sys.argv[1:]), flush=True)
    print("DoomServerReady", flush=True)
    for raw in sys.stdin:
        line = raw.rstrip("\\n")
        if line.startswith("echo "):
            print(line[5:], flush=True)
        elif line.startswith("say "):
            print(line[4:], flush=True)
            print("DoomConsoleResultEnd", flush=True)
        elif line.startswith("cat "):
            with open(line[4:], encoding="utf-8") as fh:
                for item in fh.read().split("\\n"):
                    print(item, flush=True)
            print("DoomConsoleResultEnd", flush=True)
        elif line.startswith("pause "):
            time.sleep(float(line[6:]))
        elif line.startswith("slow "):
            time.sleep(0.25)
            print(line[5:], flush=True)
            print("DoomConsoleResultEnd", flush=True)
        elif line.startswith("#"):
            continue
        elif line == "quit":
            break
        else:
            print("Unknown command: " + line, file=sys.stderr, flush=True)
    """
)


@pytest.fixture
def fake_server(tmp_path: Path) -> Path:
    script = tmp_path / "fake_server.py"
    script.write_text(FAKE_SERVER, encoding="utf-8")
    return script


@pytest.fixture
def work_dir(tmp_path: Path) -> Path:
    path = tmp_path / "work"
    path.mkdir()
    return path
