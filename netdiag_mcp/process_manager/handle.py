"""Command handle: a narrow wrapper around one spawned OS process."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
from collections.abc import AsyncIterator, Mapping, Sequence

log = logging.getLogger(__name__)


class CommandHandle:
    """A running external command with a combined stdout/stderr stream."""

    def __init__(self, process: asyncio.subprocess.Process, argv: Sequence[str]) -> None:
        self._process = process
        self.argv = list(argv)
        # setsid made the command its own group leader
        self.pgid = process.pid
        self._lines_taken = False

    @classmethod
    async def start(
        cls,
        argv: Sequence[str],
        env: Mapping[str, str] | None = None,
        cwd: str | None = None,
    ) -> CommandHandle:
        """Spawn ``argv``. Raises ``OSError`` if the command cannot start."""
        spawn_env = os.environ.copy()
        if env:
            spawn_env.update(env)

        process = await asyncio.create_subprocess_exec(
            *argv,
            # stdin belongs to the RPC transport, never to the child
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            cwd=cwd,
            env=spawn_env,
            # Create new process group so we can kill the whole tree
            preexec_fn=os.setsid,
        )
        return cls(process, argv)

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        return self._process.returncode

    def terminate(self) -> None:
        """Send SIGTERM to the command itself.

        Only the group leader is signalled so a script can still use its own
        children while it cleans up.  Raises ProcessLookupError if the
        process has already exited.
        """
        if self._process.returncode is not None:
            raise ProcessLookupError(f"pid {self.pid} already exited")
        # os.kill rather than send_signal: Popen.poll() would reap the
        # child behind asyncio's back
        os.kill(self.pid, signal.SIGTERM)

    def kill(self) -> None:
        """SIGKILL the whole process group.

        Also reaches children left behind after the command itself exited.
        """
        try:
            os.killpg(self.pgid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        except PermissionError:
            if self._process.returncode is None:
                os.kill(self.pid, signal.SIGKILL)

    async def wait(self) -> int:
        return await self._process.wait()

    def lines(self) -> AsyncIterator[str]:
        """Return an iterator over decoded output lines until EOF.

        The output stream can only be taken once, either here or through
        :meth:`read_output`.
        """
        if self._lines_taken:
            raise RuntimeError(f"output of pid {self.pid} is already being read")
        self._lines_taken = True
        return self._iter_lines()

    async def _iter_lines(self) -> AsyncIterator[str]:
        while True:
            try:
                raw = await self._process.stdout.readline()  # type: ignore[union-attr]
            except ValueError:
                # Over-long line; skip what was buffered and keep reading
                log.debug("pid %s: discarded over-long output line", self.pid)
                continue
            if not raw:
                return
            yield raw.decode("utf-8", errors="replace").rstrip("\r\n")

    async def read_output(self) -> str:
        """Read all remaining output to EOF."""
        if self._lines_taken:
            raise RuntimeError(f"output of pid {self.pid} is already being read")
        self._lines_taken = True

        data = await self._process.stdout.read()  # type: ignore[union-attr]
        return data.decode("utf-8", errors="replace")
