from __future__ import annotations

import asyncio
import logging
from pathlib import Path, PurePosixPath, PureWindowsPath
from typing import List, Mapping, Sequence, Union

import aiofiles

from .errors import PathSafetyError

logger = logging.getLogger(__name__)


def _is_absolute(name: str) -> bool:
    # A drive or UNC prefix is absolute on any host OS.
    return PurePosixPath(name).is_absolute() or bool(PureWindowsPath(name).drive)


def resolve_config_path(work_dir: Union[str, Path], name: str) -> Path:
    """Resolve ``name`` under ``work_dir``; raise PathSafetyError if it escapes."""
    if not name:
        raise PathSafetyError("empty config path. Discarding request as invalid")
    if _is_absolute(name):
        raise PathSafetyError(f"{name!r} is an absolute path. Discarding request as invalid")

    base = Path(work_dir).resolve()
    target = (base / name).resolve()
    if base not in target.parents:
        raise PathSafetyError(f"{name!r} is a dangerous path. Discarding request as invalid")
    return target


async def materialize_files(work_dir: Union[str, Path], configs: Mapping[str, Sequence[str]]) -> List[Path]:
    """Write each config file under ``work_dir`` in mapping order.

    The batch stops at the first unsafe path. Files written for earlier
    entries stay on disk.
    """
    written: List[Path] = []
    for name, lines in configs.items():
        target = resolve_config_path(work_dir, name)
        await asyncio.to_thread(target.parent.mkdir, parents=True, exist_ok=True)
        async with aiofiles.open(target, "w", encoding="utf-8", newline="\n") as fh:
            await fh.write("\n".join(lines))
        logger.debug("Wrote %s (%d lines)", target, len(lines))
        written.append(target)
    return written
