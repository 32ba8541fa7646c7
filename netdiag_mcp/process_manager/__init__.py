"""Process supervision for long-running diagnostic commands.

  - CommandHandle:     one spawned command with a combined output stream
  - CaptureSupervisor: starts background commands, surfaces their first
                       output line, and stops them all with SIGTERM → SIGKILL
"""

from netdiag_mcp.process_manager.handle import CommandHandle
from netdiag_mcp.process_manager.supervisor import CaptureSupervisor, CommandStartError

__all__ = ["CaptureSupervisor", "CommandHandle", "CommandStartError"]
