import json
import unittest

from helpers import FakeClient, host_info

from api_manager_mcp.dynamic import ApiManager, DynamicMCPServer
from api_manager_mcp.dynamic.core import endpoint_to_tool
from api_manager_mcp.dynamic.errors import TransportError
from api_manager_mcp.dynamic.fields import FieldSchemaManager
from api_manager_mcp.dynamic.models import EndpointConfig
from api_manager_mcp.dynamic.proxy import ExecutionProxy
from api_manager_mcp.dynamic.registry import EndpointRegistry
from api_manager_mcp.dynamic.variables import VariableStore


class TestDynamicMCPServer(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.client = FakeClient({"pong": True})
        registry = EndpointRegistry()
        self.manager = ApiManager(
            registry=registry,
            proxy=ExecutionProxy(registry, clients={"default": self.client}),
            fields=FieldSchemaManager(),
            variables=VariableStore(host=host_info()),
        )
        await self.manager.initialize()
        self.server = DynamicMCPServer("test-server", self.manager)

    async def asyncTearDown(self):
        await self.manager.close()

    def test_endpoint_to_tool(self):
        tool = endpoint_to_tool(EndpointConfig.from_dict("user", {
            "url": "https://api.example.com:8443/users/{id}/posts/:postId",
            "description": "Fetch a post",
        }))
        self.assertEqual(tool.name, "user")
        self.assertIn("Fetch a post", tool.description)
        self.assertEqual(tool.inputSchema["required"], ["id", "postId"])
        self.assertEqual(set(tool.inputSchema["properties"]), {"id", "postId"})

    async def test_build_tools_hides_disabled_endpoints(self):
        await self.manager.register("ping", {"url": "/ping"})
        await self.manager.register("old", {"url": "/old", "status": "disabled"})

        tools = self.server.build_tools()
        self.assertEqual([tool.name for tool in tools], ["ping"])

    async def test_execute_tool(self):
        await self.manager.register("ping", {"url": "/ping"})

        content = await self.server.execute_tool("ping", {"verbose": True})

        self.assertEqual(len(content), 1)
        text = content[0].text
        self.assertTrue(text.startswith("Successfully called ping"))
        self.assertEqual(json.loads(text.split("Response Data:\n", 1)[1]), {"pong": True})
        self.assertEqual(self.client.requests[0]["params"], {"verbose": True})

    async def test_execute_unknown_tool(self):
        content = await self.server.execute_tool("missing", {})
        self.assertEqual(content[0].text, "Tool 'missing' not found")

    async def test_execute_tool_reports_api_errors(self):
        self.client.responses = [TransportError("Service unavailable", status=503)]
        await self.manager.register("ping", {"url": "/ping"})

        content = await self.server.execute_tool("ping", None)
        self.assertEqual(content[0].text, "Error calling API: Service unavailable")

    async def test_execute_disabled_tool(self):
        await self.manager.register("old", {"url": "/old", "status": "disabled"})
        content = await self.server.execute_tool("old", {})
        self.assertEqual(content[0].text, "Error calling API: Endpoint 'old' is disabled")

    async def test_execute_handler_without_envelope(self):
        await self.manager.register("answer", {"url": "/answer", "handler": lambda params, options: 42})
        content = await self.server.execute_tool("answer", {})
        self.assertEqual(content[0].text, "42")

    def test_get_server(self):
        self.assertEqual(self.server.get_server().name, "test-server")
        self.assertIs(self.server.get_manager(), self.manager)


if __name__ == "__main__":
    unittest.main()
