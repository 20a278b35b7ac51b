"""MCP server entry point for the USB CO2 monitor.

Exposes tools and a resource via the Model Context Protocol using the
official Python MCP SDK with stdio transport.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from mcp.server.fastmcp import FastMCP

from .config import MonitorConfig
from .exceptions import CO2MonitorError
from .monitor import CO2Monitor

logger = logging.getLogger(__name__)

mcp = FastMCP(
    "co2monitor",
    instructions="MCP server for USB CO2/temperature monitors (04D9:A052)",
)

# Global connection state
_monitor: CO2Monitor | None = None


def _get_monitor() -> CO2Monitor:
    """Get the connected monitor, raising if not connected."""
    if _monitor is None or not _monitor.connected:
        raise RuntimeError(
            "Not connected to device. Use the 'connect' tool first."
        )
    return _monitor


# ─── CONNECTION TOOLS ─────────────────────────────────────────────────

@mcp.tool()
def connect(vid: int | None = None, pid: int | None = None) -> dict[str, Any]:
    """Establish a USB connection to the CO2 monitor.

    Discovers the device by USB vendor/product ID (default 0x04D9:0xA052,
    overridable via CO2MON_VID / CO2MON_PID) and sends the key handshake
    that switches it into streaming mode.

    Args:
        vid: Optional vendor id override.
        pid: Optional product id override.
    """
    global _monitor
    if _monitor is not None and _monitor.connected:
        return {
            "connected": True,
            "message": "Already connected",
            "model": _monitor.device_info.product,
        }

    monitor = CO2Monitor(MonitorConfig.from_env(), vid=vid, pid=pid)
    info = monitor.connect()
    _monitor = monitor

    return {
        "connected": True,
        "model": info.product,
        "manufacturer": info.manufacturer,
        "backend": info.backend,
    }


@mcp.tool()
def disconnect() -> dict[str, Any]:
    """Close the USB connection to the monitor."""
    global _monitor
    if _monitor is None:
        return {"disconnected": True}
    monitor, _monitor = _monitor, None
    try:
        monitor.disconnect()
    except CO2MonitorError as e:
        return {"disconnected": True, "warning": str(e)}
    return {"disconnected": True}


@mcp.tool()
def get_device_info() -> dict[str, Any]:
    """Retrieve USB identification of the connected monitor."""
    monitor = _get_monitor()
    info = monitor.device_info
    return {
        "vendor_id": f"{info.vendor_id:#06x}",
        "product_id": f"{info.product_id:#06x}",
        "manufacturer": info.manufacturer,
        "model": info.product,
        "backend": info.backend,
    }


# ─── MEASUREMENT TOOLS ────────────────────────────────────────────────

@mcp.tool()
async def read_sensor() -> dict[str, Any]:
    """Read the current CO2 concentration (ppm) and temperature (°C).

    Polls the monitor until both values have been received.
    """
    monitor = _get_monitor()
    try:
        reading = await monitor.transfer()
    except CO2MonitorError as e:
        logger.warning("Read failed: %s", e)
        return {"error": str(e)}
    return reading.to_dict()


# ─── MCP RESOURCES ───────────────────────────────────────────────────

@mcp.resource("co2monitor://reading/latest")
def resource_latest_reading() -> str:
    """Most recent completed reading, without polling the device."""
    if _monitor is None:
        return json.dumps({"reading": None})
    return json.dumps({"reading": _monitor.reading.to_dict()})


# ─── ENTRY POINT ─────────────────────────────────────────────────────

def main():
    """Run the MCP server with stdio transport."""
    logging.basicConfig(level=logging.INFO)
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
