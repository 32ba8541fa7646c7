"""Run the diagnostics MCP server over stdio.

Usage:
    python -m netdiag_mcp [--env-file FILE] [--log-level LEVEL] [--scripts-dir DIR]

Requests arrive one JSON object per line on stdin and responses go to
stdout, so all logging is written to stderr.  Captures still running when
the input closes or a signal arrives are stopped before exiting.
"""

import argparse
import asyncio
import dataclasses
import logging
import signal
import sys

from netdiag_mcp.config import Config
from netdiag_mcp.server import create_server

log = logging.getLogger(__name__)


def _write_stdout(line: str) -> None:
    sys.stdout.write(line)
    sys.stdout.flush()


async def _run(config: Config) -> None:
    server = create_server(config)

    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader(limit=config.max_line_bytes)
    await loop.connect_read_pipe(
        lambda: asyncio.StreamReaderProtocol(reader), sys.stdin,
    )

    shutdown = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, shutdown.set)

    serve_task = asyncio.create_task(server.serve(reader, _write_stdout))
    shutdown_task = asyncio.create_task(shutdown.wait())

    # Block until stdin closes or a signal arrives
    await asyncio.wait(
        {serve_task, shutdown_task}, return_when=asyncio.FIRST_COMPLETED,
    )
    if shutdown.is_set():
        log.info("Signal received, shutting down")
    serve_task.cancel()
    shutdown_task.cancel()
    await asyncio.gather(serve_task, shutdown_task, return_exceptions=True)

    if server.supervisor.calls:
        log.info("Stopping all active captures")
        report = await server.supervisor.stop_all()
        log.info(
            "Stopped %d capture(s), %d force killed", report.signaled, report.forced,
        )


def main() -> None:
    parser = argparse.ArgumentParser(description="Network diagnostics MCP server (stdio)")
    parser.add_argument(
        "--env-file", default=None,
        help="Load settings from this .env file (default: search for .env)",
    )
    parser.add_argument(
        "--log-level", default=None,
        help="Logging level (default: $NETDIAG_LOG_LEVEL or INFO)",
    )
    parser.add_argument(
        "--scripts-dir", default=None,
        help="Directory holding the diagnostic scripts (default: bundled scripts)",
    )
    args = parser.parse_args()

    try:
        config = Config.from_env(args.env_file)
    except ValueError as exc:
        parser.error(str(exc))
    if args.scripts_dir:
        config = dataclasses.replace(config, scripts_dir=args.scripts_dir)
    level = (args.log_level or config.log_level).upper()

    logging.basicConfig(
        level=level,
        stream=sys.stderr,
        format="%(asctime)s [netdiag-mcp] %(levelname)s %(name)s: %(message)s",
    )

    log.info("Starting netdiag-mcp on stdio (scripts: %s)", config.scripts_dir)
    try:
        asyncio.run(_run(config))
    except ValueError as exc:
        log.error("%s", exc)
        sys.exit(1)


if __name__ == "__main__":
    main()
