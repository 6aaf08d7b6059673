"""Core MCP server implementation for managed API endpoints.

This module provides the DynamicMCPServer class which serves as the MCP
server that lists registered endpoints as tools and executes tool calls
through an ApiManager.
"""

import json
import logging
import sys
from typing import Any, Dict, List

from mcp import types as mcp_types
from mcp.server.lowlevel import Server

from .docs import url_placeholders
from .errors import ApiError
from .models import CallOptions, EndpointConfig
from .orchestrator import ApiManager

logging.basicConfig(stream=sys.stderr, level=logging.INFO, format='[%(levelname)s] %(message)s')


def endpoint_to_tool(config: EndpointConfig) -> mcp_types.Tool:
    """Describe an endpoint as an MCP tool; URL placeholders become required arguments"""
    placeholders = url_placeholders(config.url)
    properties: Dict[str, Any] = {
        name: {"type": "string", "description": f"Value for the '{name}' URL placeholder"}
        for name in placeholders
    }
    description = config.description or config.name or config.key
    return mcp_types.Tool(
        name=config.key,
        description=f"{description} ({config.method.value} {config.url})",
        inputSchema={
            "type": "object",
            "properties": properties,
            "required": placeholders,
            "additionalProperties": True,
        },
    )


class DynamicMCPServer:
    """MCP Server that serves tools from an ApiManager

    This server focuses solely on MCP protocol handling (list_tools, call_tool)
    and delegates endpoint management and execution to the ApiManager.

    Args:
        server_name: Name for the MCP server instance
        manager: ApiManager instance the tools are read from and executed with
    """

    def __init__(self, server_name: str = "api-manager-mcp", manager: ApiManager = None):
        self.server_name = server_name
        self.server = Server(server_name)
        self.manager = manager or ApiManager()
        self._setup_server()
        logging.info(f"[DynamicMCP] Initialized MCP server '{server_name}'")

    def _setup_server(self) -> None:
        """Setup the MCP server with list_tools and call_tool handlers"""

        @self.server.list_tools()
        async def list_tools():
            return self.build_tools()

        @self.server.call_tool()
        async def call_tool(name: str, arguments: dict):
            return await self.execute_tool(name, arguments)

    def build_tools(self) -> List[mcp_types.Tool]:
        """Build one tool per callable endpoint; disabled endpoints are hidden"""
        tool_list = []
        for config in self.manager.registry.get_all().values():
            if not config.enabled:
                continue
            try:
                tool_list.append(endpoint_to_tool(config))
            except Exception as e:
                logging.error(f"[DynamicMCP] Error converting endpoint {config.key} to MCP tool: {e}")
        logging.info(f"[DynamicMCP] Returning {len(tool_list)} tools to MCP client")
        return tool_list

    async def execute_tool(self, name: str, arguments: dict) -> List[mcp_types.TextContent]:
        """Run a tool call through the manager and format the envelope as text"""
        arguments = arguments or {}
        logging.info(f"[DynamicMCP] Tool call: {name}")
        if self.manager.registry.get(name) is None:
            logging.warning(f"[DynamicMCP] Tool '{name}' not found")
            return [mcp_types.TextContent(type="text", text=f"Tool '{name}' not found")]

        try:
            result = await self.manager.call(name, arguments, CallOptions(show_error=False))
        except ApiError as e:
            logging.warning(f"[DynamicMCP] Tool '{name}' failed: {e}")
            return [mcp_types.TextContent(type="text", text=f"Error calling API: {e}")]
        except Exception as e:
            logging.exception(f"[DynamicMCP] Error executing tool '{name}': {e}")
            return [mcp_types.TextContent(type="text", text=f"Error executing tool: {str(e)}")]

        if isinstance(result, dict) and "success" in result:
            if result.get("success"):
                data = result.get("data")
                if data is not None:
                    formatted_message = f"Successfully called {name}\n\nResponse Data:\n{json.dumps(data, indent=2, ensure_ascii=False, default=str)}"
                else:
                    formatted_message = "Success - no data returned"
            else:
                formatted_message = result.get("message") or result.get("error") or "Unknown error occurred"
                if not isinstance(formatted_message, str):
                    formatted_message = json.dumps(formatted_message, default=str)
        else:
            formatted_message = json.dumps(result, indent=2, ensure_ascii=False, default=str)

        return [mcp_types.TextContent(type="text", text=formatted_message)]

    def get_server(self) -> Server:
        """Get the configured MCP server instance

        Returns:
            The underlying MCP Server instance
        """
        return self.server

    def get_manager(self) -> ApiManager:
        return self.manager


__all__ = [
    "DynamicMCPServer",
    "endpoint_to_tool",
]
