"""MCP stdio server exposing the scene tools."""
import asyncio
import json
import logging
import os
import sys
from typing import Any, Dict, List

import voluptuous as vol
from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from . import async_setup, async_unload
from .api import HassError
from .const import DOMAIN, ENV_LOG_LEVEL
from .scenes import SceneManager
from .tools import ARGUMENT_SCHEMAS, get_all_tools

_LOGGER = logging.getLogger(__name__)

SERVER_NAME = "hass-scene-mcp"


class ToolError(Exception):
    """Raised back to the MCP layer, which reports it as an error result."""


def _setup_logging() -> None:
    # stdout carries the MCP protocol
    logger = logging.getLogger(DOMAIN)
    level_name = str(os.getenv(ENV_LOG_LEVEL, "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)
    logger.setLevel(level)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    logger.addHandler(handler)


def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, indent=2, ensure_ascii=False)


async def dispatch(manager: SceneManager, name: str, arguments: Dict[str, Any]) -> str:
    """Validate arguments and run one tool; HassError and vol.Invalid propagate."""
    schema = ARGUMENT_SCHEMAS.get(name)
    if schema is None:
        raise ValueError(f"Unknown tool: {name}")
    args = schema(arguments or {})

    if name == "scene_configure":
        return await manager.configure(args["url"], args["token"])
    if name == "scene_show_lights":
        return _as_text(await manager.show_lights(args.get("filter")))
    if name == "scene_adjust_light":
        return await manager.adjust_light(**args)
    if name == "scene_create":
        return await manager.create_scene(args["name"], args["mode"], args.get("entity_ids"), args.get("icon"))
    if name == "scene_list":
        return _as_text(await manager.list_scenes())
    if name == "scene_activate":
        return await manager.activate_scene(args["entity_id"])
    if name == "scene_update":
        return await manager.update_scene(args["entity_id"], args.get("entity_ids"))
    if name == "scene_delete":
        return await manager.delete_scene(args["entity_id"])
    if name == "scene_blackout":
        return await manager.blackout(args.get("exclude"), args["create_scene"])
    if name == "scene_diagnose":
        if args.get("entity_id"):
            return _as_text(await manager.diagnose_scene(args["entity_id"]))
        return _as_text(await manager.diagnose_all())
    if name == "scene_repair":
        return await manager.repair_scene(args["entity_id"])
    if name == "scene_snapshots":
        return _as_text(await manager.list_snapshots(args.get("entity_id")))
    if name == "scene_restore_snapshot":
        return await manager.restore_snapshot(args["entity_id"], args.get("index"))
    raise ValueError(f"Unknown tool: {name}")


def create_server(manager: SceneManager) -> Server:
    server = Server(SERVER_NAME)

    @server.list_tools()
    async def list_tools() -> List[Tool]:
        return get_all_tools()

    @server.call_tool()
    async def call_tool(name: str, arguments: Dict[str, Any]) -> List[TextContent]:
        try:
            text = await dispatch(manager, name, arguments)
        except (HassError, vol.Invalid, ValueError) as ex:
            _LOGGER.warning("Tool %s failed: %s", name, ex)
            raise ToolError(f"Error: {ex}") from ex
        except Exception as ex:
            _LOGGER.exception("Unexpected error in tool %s", name)
            raise ToolError(f"Error: {ex}") from ex
        return [TextContent(type="text", text=text)]

    return server


async def main_async() -> None:
    manager = await async_setup()
    server = create_server(manager)
    try:
        async with stdio_server() as (read_stream, write_stream):
            await server.run(read_stream, write_stream, server.create_initialization_options())
    finally:
        await async_unload(manager)


def main() -> None:
    _setup_logging()
    asyncio.run(main_async())


if __name__ == "__main__":
    main()
