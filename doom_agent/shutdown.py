from __future__ import annotations

import asyncio
import logging
import os
import signal
from dataclasses import dataclass
from typing import List

import psutil

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ShutdownPolicy:
    sigterm_timeout_s: float = 2.0
    sigkill_timeout_s: float = 2.0


def _descendants(pid: int) -> List[psutil.Process]:
    try:
        return psutil.Process(pid).children(recursive=True)
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return []


def _signal_tree(process: asyncio.subprocess.Process, children: List[psutil.Process], sig: int) -> None:
    # The server runs in its own session, so its group id equals its pid.
    try:
        os.killpg(process.pid, sig)
    except (ProcessLookupError, PermissionError):
        try:
            process.send_signal(sig)
        except ProcessLookupError:
            pass
    for child in children:
        try:
            child.send_signal(sig)
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue


async def terminate_process_tree(
    process: asyncio.subprocess.Process,
    *,
    policy: ShutdownPolicy = ShutdownPolicy(),
) -> int:
    """SIGTERM the server and its descendants, escalating to SIGKILL.

    Returns the server's exit code.
    """
    if process.returncode is not None:
        return process.returncode

    children = await asyncio.to_thread(_descendants, process.pid)
    logger.info("Terminating server pid=%s (%d descendants)", process.pid, len(children))
    _signal_tree(process, children, signal.SIGTERM)
    try:
        code = await asyncio.wait_for(process.wait(), timeout=policy.sigterm_timeout_s)
    except asyncio.TimeoutError:
        logger.warning("Server pid=%s ignored SIGTERM; sending SIGKILL", process.pid)
        _signal_tree(process, children, signal.SIGKILL)
        code = await asyncio.wait_for(process.wait(), timeout=policy.sigkill_timeout_s)

    if children:
        _, alive = await asyncio.to_thread(psutil.wait_procs, children, timeout=policy.sigkill_timeout_s)
        for proc in alive:
            try:
                proc.kill()
            except psutil.NoSuchProcess:
                continue
    return code
