"""Shared fixtures: fast supervisors and tiny Python programs as commands."""
from __future__ import annotations

import asyncio
import sys
import textwrap

import pytest_asyncio

from netdiag_mcp.process_manager.supervisor import CaptureSupervisor


def py(code: str) -> list[str]:
    """argv running ``code`` with the current interpreter."""
    return [sys.executable, "-c", textwrap.dedent(code)]


# Prints one line, then idles until signalled
READY_THEN_IDLE = py("""
    import time
    print("ready", flush=True)
    time.sleep(60)
""")

# Never writes anything
SILENT = py("""
    import time
    time.sleep(60)
""")

# Survives SIGTERM; only SIGKILL stops it
IGNORES_SIGTERM = py("""
    import signal, time
    signal.signal(signal.SIGTERM, signal.SIG_IGN)
    print("ready", flush=True)
    time.sleep(60)
""")


async def wait_until(predicate, timeout: float = 5.0) -> bool:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            return False
        await asyncio.sleep(0.02)
    return True


@pytest_asyncio.fixture
async def supervisor():
    """Supervisor with short timeouts; stops anything a test leaves behind."""
    sv = CaptureSupervisor(
        observation_timeout=3.0,
        stop_timeout=2.0,
        kill_timeout=2.0,
    )
    yield sv
    await sv.stop_all()
