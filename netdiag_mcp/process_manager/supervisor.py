"""Capture supervisor: starts, observes and tears down background commands."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any

from netdiag_mcp.active_calls import ActiveCalls
from netdiag_mcp.models import (
    ActiveCall,
    CommandResult,
    StartOutcome,
    StartResult,
    StopReport,
)
from netdiag_mcp.process_manager.handle import CommandHandle

if TYPE_CHECKING:
    from netdiag_mcp.config import Config

log = logging.getLogger(__name__)

NO_OUTPUT_YET = "Capture started (no initial output yet)"


class CommandStartError(RuntimeError):
    """The command could not be spawned or registered."""


class CaptureSupervisor:
    """Tracks background commands started by tool calls."""

    def __init__(
        self,
        registry: ActiveCalls | None = None,
        *,
        observation_timeout: float = 5.0,
        observation_max_lines: int = 20,
        stop_timeout: float = 15.0,
        kill_timeout: float = 5.0,
    ) -> None:
        self.calls = registry if registry is not None else ActiveCalls()
        self.observation_timeout = observation_timeout
        self.observation_max_lines = observation_max_lines
        self.stop_timeout = stop_timeout
        self.kill_timeout = kill_timeout

    @classmethod
    def from_config(cls, config: Config) -> CaptureSupervisor:
        return cls(
            observation_timeout=config.observation_timeout,
            observation_max_lines=config.observation_max_lines,
            stop_timeout=config.stop_timeout,
            kill_timeout=config.kill_timeout,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run(
        self,
        argv: Sequence[str],
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        """Run a command to completion and return its combined output."""
        try:
            handle = await CommandHandle.start(argv, env=env)
        except OSError as exc:
            raise CommandStartError(f"Failed to start {argv[0]}: {exc}") from exc

        log.info("Running %s (pid=%s)", " ".join(argv), handle.pid)
        output = await handle.read_output()
        code = await handle.wait()
        log.info("pid %s exited with status %s", handle.pid, code)
        return CommandResult(exit_code=code, output=output)

    async def start(
        self,
        request_id: Any,
        argv: Sequence[str],
        env: Mapping[str, str] | None = None,
    ) -> StartResult:
        """Start a background command and wait briefly for its first output.

        The command is registered before any output is read, so a concurrent
        :meth:`stop_all` always sees it. Returns after the first line, the
        observation timeout, or cancellation, whichever comes first; the
        command itself keeps running.
        """
        call_id = str(request_id)
        if await self.calls.get(call_id) is not None:
            raise CommandStartError(f"A capture with request ID {call_id} is already running")

        try:
            handle = await CommandHandle.start(argv, env=env)
        except OSError as exc:
            raise CommandStartError(f"Failed to start {argv[0]}: {exc}") from exc

        call = ActiveCall(call_id=call_id, request_id=request_id, handle=handle)
        if not await self.calls.insert(call):
            # Lost a race with another start using the same id
            handle.kill()
            await handle.wait()
            raise CommandStartError(f"A capture with request ID {call_id} is already running")

        log.info("Started capture %s (pid=%s)", call_id, handle.pid)
        call.watcher = asyncio.create_task(
            self._watch(call),
            name=f"capture-{call_id}-watcher",
        )

        cancel_waiter = asyncio.ensure_future(call.cancelled.wait())
        try:
            await asyncio.wait(
                {call.first_output, cancel_waiter},
                timeout=self.observation_timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            cancel_waiter.cancel()

        if call.first_output.done():
            return StartResult(
                call_id=call_id,
                outcome=StartOutcome.STARTED,
                initial_output=call.first_output.result(),
            )
        if call.is_cancelled:
            return StartResult(call_id=call_id, outcome=StartOutcome.CANCELLED)
        log.info("Capture %s produced no output within %ss", call_id, self.observation_timeout)
        return StartResult(call_id=call_id, outcome=StartOutcome.TIMED_OUT)

    async def stop_all(self) -> StopReport:
        """Stop every active call. SIGTERM, wait, then SIGKILL stragglers.

        Returns once every process has been reaped and every watcher has
        taken its call out of the registry.
        """
        calls = await self.calls.snapshot()
        report = StopReport(found=len(calls))
        if not calls:
            return report

        for call in calls:
            call.cancel()
            log.info("Stopping capture for request %s (pid=%s)", call.call_id, call.handle.pid)
            try:
                call.handle.terminate()
            except (ProcessLookupError, OSError) as exc:
                log.warning("Failed to send SIGTERM to pid %s: %s", call.handle.pid, exc)
            else:
                report.signaled += 1

        log.info("Waiting for captures to clean up and copy files...")
        try:
            await asyncio.wait_for(
                asyncio.gather(*(call.handle.wait() for call in calls)),
                timeout=self.stop_timeout,
            )
            log.info("All captures stopped")
        except asyncio.TimeoutError:
            log.warning("Timed out after %ss waiting for captures, forcing kill", self.stop_timeout)
            for call in calls:
                if call.handle.returncode is None:
                    call.handle.kill()
                    report.forced += 1
            try:
                await asyncio.wait_for(
                    asyncio.gather(*(call.handle.wait() for call in calls)),
                    timeout=self.kill_timeout,
                )
            except asyncio.TimeoutError:
                log.error("Some captures survived SIGKILL: %s", [
                    call.handle.pid for call in calls if call.handle.returncode is None
                ])

        # Children of an exited command can keep its output pipe open
        for call in calls:
            draining = call.drain is not None and not call.drain.done()
            if draining and call.handle.returncode is not None:
                log.debug("Killing process group %s of capture %s", call.handle.pgid, call.call_id)
                call.handle.kill()

        await self._join_watchers(calls)
        return report

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _join_watchers(self, calls: list[ActiveCall]) -> None:
        watchers = [call.watcher for call in calls if call.watcher is not None]
        if not watchers:
            return
        _, pending = await asyncio.wait(watchers, timeout=self.kill_timeout)
        # An orphaned grandchild can keep the pipe open after its parent died
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def _watch(self, call: ActiveCall) -> None:
        """Own the process for its lifetime: reap, deregister, then finish draining.

        The call leaves the registry as soon as the command exits. Its
        children may still hold the output pipe; they get ``kill_timeout``
        to let go before the process group is killed.
        """
        drain = asyncio.create_task(
            self._drain(call),
            name=f"capture-{call.call_id}-drain",
        )
        call.drain = drain
        try:
            try:
                code = await call.handle.wait()
                log.info("Capture %s (pid=%s) exited with status %s", call.call_id, call.handle.pid, code)
            finally:
                await self.calls.remove(call)

            done, _ = await asyncio.wait({drain}, timeout=self.kill_timeout)
            if not done:
                log.warning(
                    "Capture %s exited but its children still hold the output; "
                    "killing process group %s", call.call_id, call.handle.pgid,
                )
                call.handle.kill()
                await asyncio.wait({drain}, timeout=self.kill_timeout)
        finally:
            if not drain.done():
                call.handle.kill()
                drain.cancel()
            call.cancel()

    async def _drain(self, call: ActiveCall) -> None:
        """Read output to EOF, logging the observation window."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.observation_timeout
        seen = 0
        # Output past the window is still read and dropped, otherwise
        # the command blocks once the pipe buffer fills up.
        async for line in call.handle.lines():
            if seen < self.observation_max_lines and loop.time() < deadline:
                seen += 1
                log.debug("capture %s: %s", call.call_id, line)
            if not call.first_output.done():
                call.first_output.set_result(line)
        if not call.first_output.done() and not call.is_cancelled:
            call.first_output.set_result(NO_OUTPUT_YET)
