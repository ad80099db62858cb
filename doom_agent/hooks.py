from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Optional

if TYPE_CHECKING:
    from .connection import ConnectionState


@dataclass(frozen=True)
class ConnectionHooks:
    """Optional callbacks for observing a Connection from the host process.

    Callbacks run synchronously on the connection's task; exceptions are
    logged and otherwise ignored.
    """

    # Called after every state transition with (old, new).
    on_state_change: Optional[Callable[["ConnectionState", "ConnectionState"], None]] = None

    # Called before each transport open attempt with the 1-based attempt number.
    on_connect_attempt: Optional[Callable[[int], None]] = None
