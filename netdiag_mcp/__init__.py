"""netdiag-mcp: MCP server for network lab diagnostics.

Exposes three tools over the MCP stdio transport:
  - extract_leaf_configs:  dump FRR running configs from every leaf node
  - start_traffic_capture: start tshark captures in the background
  - stop_traffic_capture:  stop every running capture and collect pcap files
"""

__version__ = "1.0.0"
