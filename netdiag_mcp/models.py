from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .process_manager.handle import CommandHandle


# ---------------------------------------------------------------------------
# Active calls, one per background command started by a tool call
# ---------------------------------------------------------------------------

@dataclass(eq=False)
class ActiveCall:
    call_id: str                  # registry key, str() of the request id
    request_id: Any               # id exactly as the client sent it
    handle: CommandHandle
    cancelled: asyncio.Event = field(default_factory=asyncio.Event)
    first_output: asyncio.Future[str] = field(
        default_factory=lambda: asyncio.get_running_loop().create_future()
    )
    watcher: asyncio.Task[None] | None = field(default=None, repr=False)
    drain: asyncio.Task[None] | None = field(default=None, repr=False)

    def cancel(self) -> None:
        """Release anyone waiting on this call. Does not touch the process."""
        self.cancelled.set()

    @property
    def is_cancelled(self) -> bool:
        return self.cancelled.is_set()


# ---------------------------------------------------------------------------
# Supervisor results
# ---------------------------------------------------------------------------

class StartOutcome(enum.Enum):
    STARTED = "started"        # first output line (or the no-output marker) arrived
    TIMED_OUT = "timed_out"    # observation window elapsed first
    CANCELLED = "cancelled"    # stopped before any output appeared


@dataclass
class StartResult:
    call_id: str
    outcome: StartOutcome
    initial_output: str = ""


@dataclass
class StopReport:
    found: int = 0      # calls in the registry snapshot
    signaled: int = 0   # SIGTERM delivered
    forced: int = 0     # still running after the stop timeout, SIGKILLed


@dataclass
class CommandResult:
    exit_code: int
    output: str

    @property
    def ok(self) -> bool:
        return self.exit_code == 0
