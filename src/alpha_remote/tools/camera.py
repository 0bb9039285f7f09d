"""MCP tools for camera control.

Every tool works on the process-wide session from
``alpha_remote.devices.registry`` and answers with one TextContent holding
JSON (or an error message).
"""

import asyncio
import base64
import json
from typing import Any

from mcp.server import Server
from mcp.types import TextContent, Tool

from alpha_remote.devices import (
    BackgroundHandle,
    CaptureStatus,
    get_scheduler,
    get_session,
)
from alpha_remote.drivers.operations import Setting
from alpha_remote.observability import get_logger
from alpha_remote.utils.values import label_of

logger = get_logger(__name__)

_SETTING_PROPERTY = {
    "type": "string",
    "description": (
        "Setting name: " + ", ".join(s.value for s in Setting) + ". "
        "Short aliases such as shutter, fnumber, wb, ev and mode are accepted."
    ),
}


def _schema(properties: dict[str, Any], required: list[str]) -> dict[str, Any]:
    return {"type": "object", "properties": properties, "required": required}


TOOLS = [
    Tool(
        name="camera_status",
        description="Refresh and return the camera status and cached settings",
        inputSchema=_schema({}, []),
    ),
    Tool(
        name="get_setting",
        description="Read the current value of one camera setting",
        inputSchema=_schema({"setting": _SETTING_PROPERTY}, ["setting"]),
    ),
    Tool(
        name="set_setting",
        description=(
            "Change a camera setting. Values are matched against the legal "
            "values, e.g. iso '400', shutter '1/125', mode 'A', wb 5500"
        ),
        inputSchema=_schema(
            {
                "setting": _SETTING_PROPERTY,
                "value": {
                    "type": ["string", "number"],
                    "description": "New value (label, id or number)",
                },
            },
            ["setting", "value"],
        ),
    ),
    Tool(
        name="list_available",
        description="List the legal values of a camera setting",
        inputSchema=_schema({"setting": _SETTING_PROPERTY}, ["setting"]),
    ),
    Tool(
        name="capture",
        description="Take a picture and wait for it (long exposures included)",
        inputSchema=_schema(
            {
                "timeout": {
                    "type": "number",
                    "description": "Maximum seconds to wait for a long exposure",
                },
            },
            [],
        ),
    ),
    Tool(
        name="capture_async",
        description="Start a picture in the background; collect it with poll_capture",
        inputSchema=_schema({}, []),
    ),
    Tool(
        name="poll_capture",
        description="Check the background capture started by capture_async",
        inputSchema=_schema({}, []),
    ),
    Tool(
        name="liveview_frame",
        description="Grab one live view frame as base64 JPEG",
        inputSchema=_schema(
            {
                "quality": {
                    "type": "integer",
                    "description": "JPEG quality 1-100",
                    "default": 85,
                },
            },
            [],
        ),
    ),
    Tool(
        name="zoom",
        description="Zoom one step in or out",
        inputSchema=_schema(
            {"direction": {"type": "string", "enum": ["in", "out"]}},
            ["direction"],
        ),
    ),
    Tool(
        name="timelapse",
        description=(
            "Toggle the timelapse: one capture every 'period' seconds while "
            "the camera is idle (0 = continuous). Calling again stops it."
        ),
        inputSchema=_schema(
            {
                "period": {
                    "type": "number",
                    "description": "Seconds between captures",
                    "default": 0,
                },
            },
            [],
        ),
    ),
    Tool(
        name="camera_stats",
        description="Per-operation call statistics for the camera transport",
        inputSchema=_schema({}, []),
    ),
]


def _text(payload: Any) -> list[TextContent]:
    return [TextContent(type="text", text=json.dumps(payload, indent=2, default=str))]


def register(server: Server) -> None:
    """Register camera tools with the MCP server.

    Args:
        server: MCP Server instance, not yet running.

    Example:
        >>> server = Server("alpha-remote")
        >>> register(server)
    """

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        return TOOLS

    @server.call_tool()
    async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
        """Dispatch a tool call by name.

        Errors are returned as text, never raised to the MCP client.
        """
        arguments = arguments or {}
        if name == "camera_status":
            return await _camera_status()
        elif name == "get_setting":
            return await _get_setting(arguments["setting"])
        elif name == "set_setting":
            return await _set_setting(arguments["setting"], arguments["value"])
        elif name == "list_available":
            return await _list_available(arguments["setting"])
        elif name == "capture":
            return await _capture(arguments.get("timeout"))
        elif name == "capture_async":
            return await _capture_async()
        elif name == "poll_capture":
            return await _poll_capture()
        elif name == "liveview_frame":
            return await _liveview_frame(arguments.get("quality", 85))
        elif name == "zoom":
            return await _zoom(arguments["direction"])
        elif name == "timelapse":
            return await _timelapse(arguments.get("period", 0))
        elif name == "camera_stats":
            return await _camera_stats()
        else:
            return [TextContent(type="text", text=f"Unknown tool: {name}")]


# Tool implementations


async def _camera_status() -> list[TextContent]:
    """Refresh status and report session state plus cached settings.

    Returns:
        JSON: {"state", "simulated", "transport", "version", "settings"}.
    """
    try:
        session = get_session()
        if not session.closed:
            session.refresh_status()
        return _text(
            {
                "state": session.state.value,
                "simulated": session.is_simulated,
                "transport": session.transport.kind,
                "version": session.version,
                "settings": session.settings.to_dict(),
            }
        )
    except Exception as e:
        logger.error("Error reading camera status", error=str(e))
        return [TextContent(type="text", text=f"Error reading camera status: {e}")]


async def _get_setting(setting: str) -> list[TextContent]:
    try:
        value = get_session().get_setting(setting)
        return _text(
            {"setting": setting, "value": value, "supported": value is not None}
        )
    except Exception as e:
        logger.error("Error reading setting", setting=setting, error=str(e))
        return [TextContent(type="text", text=f"Error reading {setting}: {e}")]


async def _set_setting(setting: str, value: Any) -> list[TextContent]:
    """Change one setting.

    Returns:
        JSON: {"setting", "requested", "value", "applied"}; ``applied`` is
        false when the camera refused or does not support the setting.
    """
    try:
        applied = get_session().set_setting(setting, value)
        return _text(
            {
                "setting": setting,
                "requested": value,
                "value": applied,
                "applied": applied is not None,
            }
        )
    except Exception as e:
        logger.error("Error changing setting", setting=setting, error=str(e))
        return [TextContent(type="text", text=f"Error setting {setting}: {e}")]


async def _list_available(setting: str) -> list[TextContent]:
    try:
        entries = get_session().available(setting)
        if entries is None:
            return _text({"setting": setting, "supported": False, "values": []})
        return _text(
            {
                "setting": setting,
                "supported": True,
                "values": [label_of(e) for e in entries],
            }
        )
    except Exception as e:
        logger.error("Error listing values", setting=setting, error=str(e))
        return [TextContent(type="text", text=f"Error listing {setting}: {e}")]


async def _capture(timeout: float | None) -> list[TextContent]:
    """Blocking capture, run in a worker thread to keep the event loop free."""
    try:
        session = get_session()
        result = await asyncio.to_thread(session.capture, timeout)
        return _text(result.to_dict())
    except Exception as e:
        logger.error("Error capturing", error=str(e))
        return [TextContent(type="text", text=f"Error capturing: {e}")]


async def _capture_async() -> list[TextContent]:
    try:
        outcome = get_session().capture_async()
        if isinstance(outcome, BackgroundHandle):
            return _text({"status": "started", "handle": outcome.handle_id})
        return _text({"status": CaptureStatus(outcome).value})
    except Exception as e:
        logger.error("Error starting background capture", error=str(e))
        return [TextContent(type="text", text=f"Error starting capture: {e}")]


async def _poll_capture() -> list[TextContent]:
    try:
        result = get_session().poll_background()
        if result is None:
            return _text({"status": "none"})
        return _text(result.to_dict())
    except Exception as e:
        logger.error("Error polling capture", error=str(e))
        return [TextContent(type="text", text=f"Error polling capture: {e}")]


async def _liveview_frame(quality: int) -> list[TextContent]:
    try:
        session = get_session()
        frame = await asyncio.to_thread(session.grab_live_frame, quality)
        if frame is None:
            return _text({"available": False, "state": session.state.value})
        return _text(
            {
                "available": True,
                "size": len(frame),
                "image_base64": base64.b64encode(frame).decode("utf-8"),
            }
        )
    except Exception as e:
        logger.error("Error grabbing live view frame", error=str(e))
        return [TextContent(type="text", text=f"Error grabbing frame: {e}")]


async def _zoom(direction: str) -> list[TextContent]:
    try:
        position = get_session().zoom(direction)
        return _text(
            {
                "direction": direction,
                "supported": position is not None,
                "position": position,
            }
        )
    except Exception as e:
        logger.error("Error zooming", direction=direction, error=str(e))
        return [TextContent(type="text", text=f"Error zooming: {e}")]


async def _timelapse(period: float) -> list[TextContent]:
    try:
        scheduler = get_scheduler()
        if scheduler is None:
            return [TextContent(type="text", text="Timelapse needs the poll scheduler")]
        running = scheduler.toggle_timelapse(float(period))
        return _text(
            {
                "running": running,
                "period": scheduler.timelapse_period,
                "interval": scheduler.interval,
            }
        )
    except Exception as e:
        logger.error("Error toggling timelapse", error=str(e))
        return [TextContent(type="text", text=f"Error toggling timelapse: {e}")]


async def _camera_stats() -> list[TextContent]:
    try:
        stats = get_session().stats
        if stats is None:
            return _text({"operations": {}})
        return _text(stats.to_dict())
    except Exception as e:
        logger.error("Error reading stats", error=str(e))
        return [TextContent(type="text", text=f"Error reading stats: {e}")]
