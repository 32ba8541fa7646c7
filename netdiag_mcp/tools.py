"""Tool catalogue and the glue between tool calls and the supervisor."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from mcp.types import CallToolResult, TextContent, Tool

from .config import Config
from .models import StartOutcome, StartResult, StopReport
from .process_manager.supervisor import CaptureSupervisor, CommandStartError
from .wire import INVALID_PARAMS, RpcError

log = logging.getLogger(__name__)


class ToolKind(enum.Enum):
    SYNC = "sync"                  # run to completion, return full output
    ASYNC_START = "async_start"    # start in background, return first output
    ASYNC_STOP = "async_stop"      # stop every background command


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    kind: ToolKind
    command: tuple[str, ...] = ()
    properties: dict[str, Any] = field(default_factory=dict)

    def to_tool(self) -> Tool:
        return Tool(
            name=self.name,
            description=self.description,
            inputSchema={
                "type": "object",
                "properties": self.properties,
                "required": [],
            },
        )

    @property
    def label(self) -> str:
        """Short name used in error messages (the script file name)."""
        if not self.command:
            return self.name
        return Path(self.command[-1]).name


def default_tools(config: Config) -> dict[str, ToolSpec]:
    """The tools exposed by the server, keyed by name."""
    specs = [
        ToolSpec(
            name="extract_leaf_configs",
            description=(
                "Extracts FRR running configurations from all leaf nodes in the "
                "CLAB topology. The configurations are saved to a timestamped directory."
            ),
            kind=ToolKind.SYNC,
            command=(config.shell, config.script_path("extract-leaf-configs.sh")),
        ),
        ToolSpec(
            name="start_traffic_capture",
            description=(
                "Starts capturing network traffic from Kubernetes cluster nodes and "
                "spine router using tshark. This operation starts in the background "
                "and returns immediately. Use stop_traffic_capture to stop the capture "
                "and retrieve files. Automatically installs tshark on nodes if needed."
            ),
            kind=ToolKind.ASYNC_START,
            command=(config.shell, config.script_path("capture-traffic.sh")),
            properties={
                "output_dir": {
                    "type": "string",
                    "description": (
                        "Directory where capture files will be saved. Optional, "
                        "defaults to './captures/capture_<timestamp>'."
                    ),
                },
                "capture_filter": {
                    "type": "string",
                    "description": (
                        "Tshark capture filter (e.g., 'arp or icmp'). Optional, "
                        "defaults to 'icmp'."
                    ),
                },
            },
        ),
        ToolSpec(
            name="stop_traffic_capture",
            description=(
                "Stops all running traffic captures, retrieves the pcap files from "
                "containers, and saves them to the host directory. This will gracefully "
                "terminate all tshark processes and copy the capture files."
            ),
            kind=ToolKind.ASYNC_STOP,
        ),
    ]
    return {spec.name: spec for spec in specs}


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

async def call_tool(
    spec: ToolSpec,
    request_id: Any,
    arguments: dict[str, Any] | None,
    supervisor: CaptureSupervisor,
) -> CallToolResult:
    """Run one tool call. Command failures come back as ``isError`` results."""
    arguments = arguments or {}
    if spec.kind is ToolKind.SYNC:
        return await _run_sync(spec, supervisor)
    if spec.kind is ToolKind.ASYNC_START:
        return await _start_capture(spec, request_id, arguments, supervisor)
    return stop_result(await supervisor.stop_all(), supervisor.stop_timeout)


async def _run_sync(spec: ToolSpec, supervisor: CaptureSupervisor) -> CallToolResult:
    try:
        result = await supervisor.run(spec.command)
    except CommandStartError as exc:
        return _text(f"Error executing {spec.label}: {exc}", is_error=True)

    if not result.ok:
        return _text(
            f"Error executing {spec.label}: exit status {result.exit_code}\n"
            f"Output: {result.output}",
            is_error=True,
        )
    return _text(result.output)


def _optional_str(arguments: dict[str, Any], key: str) -> str | None:
    """Return a non-blank string argument, or None if unset or blank."""
    value = arguments.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise RpcError(INVALID_PARAMS, f"Invalid params: '{key}' must be a string")
    return value.strip() or None


def capture_invocation(
    spec: ToolSpec, arguments: dict[str, Any]
) -> tuple[list[str], dict[str, str]]:
    """Build argv and environment overrides for a capture start."""
    argv = list(spec.command)
    env: dict[str, str] = {}

    output_dir = _optional_str(arguments, "output_dir")
    if output_dir:
        argv.append(output_dir)
    capture_filter = _optional_str(arguments, "capture_filter")
    if capture_filter:
        env["CAPTURE_FILTER"] = capture_filter
    return argv, env


async def _start_capture(
    spec: ToolSpec,
    request_id: Any,
    arguments: dict[str, Any],
    supervisor: CaptureSupervisor,
) -> CallToolResult:
    argv, env = capture_invocation(spec, arguments)
    try:
        started = await supervisor.start(request_id, argv, env=env)
    except CommandStartError as exc:
        log.error("Could not start capture: %s", exc)
        return _text(f"Error starting {spec.label}: {exc}", is_error=True)
    return start_result(started, supervisor.observation_timeout)


def start_result(started: StartResult, observation_timeout: float) -> CallToolResult:
    if started.outcome is StartOutcome.CANCELLED:
        return _text("Traffic capture was cancelled before starting.")

    if started.outcome is StartOutcome.TIMED_OUT:
        initial = (
            "Capture process started (waiting for initial output timed out "
            f"after {observation_timeout:g}s)"
        )
    else:
        initial = started.initial_output

    return _text(
        "Traffic capture started successfully and is running in the background "
        f"(Request ID: {started.call_id}).\n\n"
        f"Initial output:\n{initial}\n\n"
        "The capture will continue running. Use the stop_traffic_capture tool "
        "to stop all captures and retrieve the files."
    )


def stop_result(report: StopReport, stop_timeout: float) -> CallToolResult:
    text = f"Successfully stopped {report.signaled} traffic capture(s)."
    if report.found == 0:
        return _text(f"{text}\n\nNo active traffic captures found.")

    text += (
        "\n\nThe cleanup process has:\n"
        "- Terminated all tshark processes in containers\n"
        "- Copied pcap files from containers to the host\n\n"
        "Check the output directory for the capture files."
    )
    if report.forced:
        text += (
            f"\n\nNote: {report.forced} capture(s) did not exit within "
            f"{stop_timeout:g}s and were force killed."
        )
    return _text(text)


def _text(text: str, *, is_error: bool = False) -> CallToolResult:
    return CallToolResult(
        content=[TextContent(type="text", text=text)],
        isError=is_error,
    )
