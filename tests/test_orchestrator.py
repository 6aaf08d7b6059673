import tempfile
import unittest

from helpers import FakeClient, host_info

from api_manager_mcp.config import Settings
from api_manager_mcp.dynamic import ApiManager
from api_manager_mcp.dynamic.errors import ConfigNotFound
from api_manager_mcp.dynamic.fields import FieldSchemaManager
from api_manager_mcp.dynamic.models import FieldType
from api_manager_mcp.dynamic.orchestrator import redact
from api_manager_mcp.dynamic.proxy import ExecutionProxy
from api_manager_mcp.dynamic.registry import EndpointRegistry
from api_manager_mcp.dynamic.storage import MemoryConfigStore
from api_manager_mcp.dynamic.variables import VariableStore


class ManagerTestCase(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.client = FakeClient({"status": "ok"})
        self.remote = MemoryConfigStore()
        registry = EndpointRegistry(self.remote)
        self.notifications = []
        self.manager = ApiManager(
            registry=registry,
            proxy=ExecutionProxy(registry, clients={"default": self.client}, notifier=self.notifications.append),
            fields=FieldSchemaManager(),
            variables=VariableStore(host=host_info()),
        )
        await self.manager.initialize()

    async def asyncTearDown(self):
        await self.manager.close()


class TestLifecycle(ManagerTestCase):

    async def test_initialize_is_idempotent(self):
        self.assertTrue(self.manager.is_ready())
        self.assertTrue(await self.manager.initialize())
        self.assertTrue(await self.manager.wait_for_ready(timeout=0.1))

    async def test_from_settings(self):
        with tempfile.TemporaryDirectory() as tmp:
            manager = ApiManager.from_settings(Settings(data_dir=tmp, mock_mode=True, mode="test"))
            try:
                self.assertTrue(manager.proxy.mock_enabled)
                self.assertEqual(manager.variables.get("MODE"), "test")
                self.assertIsInstance(manager.registry.remote_store, MemoryConfigStore)
                await manager.initialize()
                self.assertTrue(manager.is_ready())
            finally:
                await manager.close()


class TestCalls(ManagerTestCase):

    async def test_ping(self):
        await self.manager.register("ping", {"url": "/ping", "category": "system"})
        result = await self.manager.call("ping")
        self.assertEqual(result, {"success": True, "data": {"status": "ok"}})

    async def test_unknown_endpoint(self):
        with self.assertRaises(ConfigNotFound):
            await self.manager.call("missing")

    async def test_variables_are_substituted(self):
        self.manager.variables.set("userId", 7)
        await self.manager.register("user", {"url": "/users/{id}"})

        await self.manager.call("user", {"id": "${userId}", "env": "${MODE}", "raw": "${unknown}"})

        request = self.client.requests[0]
        self.assertEqual(request["url"], "/users/7")
        self.assertEqual(request["params"], {"env": "test", "raw": "${unknown}"})

    async def test_fields_project_response(self):
        self.client.responses = [[{"id": "1", "name": "Ann", "secret": "x"}]]
        await self.manager.register("users", {"url": "/users"})
        self.manager.fields.set_fields("users", [
            {"key": "id", "type": "number"},
            {"key": "name", "type": "string"},
            {"key": "secret", "type": "string", "visible": False},
        ])

        result = await self.manager.call("users")
        self.assertEqual(result["data"], [{"id": 1, "name": "Ann", "secret": "x"}])

        result = await self.manager.call("users", options={"visibleOnly": True})
        self.assertEqual(result["data"], [{"id": 1, "name": "Ann"}])

    async def test_handler_results_without_envelope_pass_through(self):
        await self.manager.register("calc", {"url": "/calc", "handler": lambda params, options: 42})
        self.manager.fields.set_fields("calc", [{"key": "value", "type": "number"}])
        self.assertEqual(await self.manager.call("calc"), 42)

    async def test_batch_call_transforms_each_result(self):
        self.client.responses = [{"id": "3", "extra": True}]
        await self.manager.register("item", {"url": "/items/{id}"})
        self.manager.fields.set_fields("item", [{"key": "id", "type": "number"}])
        self.manager.variables.set("itemId", 3)

        results = await self.manager.batch_call([
            {"key": "item", "params": {"id": "${itemId}"}},
            {"key": "missing"},
        ])

        self.assertEqual(results[0]["data"], {"success": True, "data": {"id": 3}})
        self.assertFalse(results[1]["success"])
        self.assertEqual(self.client.requests[0]["url"], "/items/3")

    async def test_test_call_is_not_transformed(self):
        self.client.responses = [{"id": "3"}]
        await self.manager.register("item", {"url": "/item"})
        self.manager.fields.set_fields("item", [{"key": "id", "type": "number"}])

        result = await self.manager.test("item")
        self.assertEqual(result["data"], {"id": "3"})

    async def test_detect_fields_from_test_call(self):
        self.client.responses = [{"id": 1, "name": "Ann", "joined": "2024-01-05"}]
        await self.manager.register("users", {"url": "/users"})

        sample = await self.manager.test("users")
        fields = self.manager.detect_fields("users", sample["data"], save=True)

        by_key = {definition.key: definition.type for definition in fields}
        self.assertEqual(by_key, {"id": FieldType.NUMBER, "name": FieldType.STRING, "joined": FieldType.DATE})
        self.assertEqual(len(self.manager.get_fields("users")), 3)

    async def test_ping_is_cached_within_ttl(self):
        await self.manager.register("ping", {"url": "/ping", "cacheTime": 1000})

        first = await self.manager.call("ping")
        second = await self.manager.call("ping")

        self.assertEqual(first, {"success": True, "data": {"status": "ok"}})
        self.assertEqual(second, first)
        self.assertEqual(len(self.client.requests), 1)


class TestRegistryCascade(ManagerTestCase):

    async def test_removal_clears_fields_and_cache(self):
        await self.manager.register("users", {"url": "/users", "cacheTime": 60000})
        self.manager.fields.set_fields("users", [{"key": "id"}])
        await self.manager.call("users")

        self.assertTrue(await self.manager.remove("users"))

        self.assertIsNone(self.manager.get("users"))
        self.assertEqual(self.manager.get_fields("users"), [])
        self.assertEqual(self.manager.proxy.clear_cache(), 0)
        self.assertNotIn("users", self.remote.collection)
        with self.assertRaises(ConfigNotFound):
            await self.manager.call("users")

    async def test_update(self):
        await self.manager.register("ping", {"url": "/ping"})
        await self.manager.update("ping", {"url": "/v2/ping"})
        await self.manager.call("ping")
        self.assertEqual(self.client.requests[0]["url"], "/v2/ping")


class TestDocs(ManagerTestCase):

    async def test_markdown(self):
        await self.manager.register("user", {
            "url": "https://api.example.com/users/{id}",
            "name": "Get user",
            "category": "data",
            "description": "Fetch one user",
        })
        self.manager.fields.set_fields("user", [{"key": "id", "label": "Id", "type": "number"}])

        docs = self.manager.generate_docs()

        self.assertIn("## Data {#data}", docs)
        self.assertIn("### Get user {#user}", docs)
        self.assertIn("| `id` | Id | number |", docs)

    async def test_markdown_without_endpoints(self):
        self.assertIn("No endpoints found", self.manager.generate_docs())

    async def test_openapi(self):
        await self.manager.register("user", {"url": "https://api.example.com/users/:id", "method": "PUT"})
        spec = self.manager.generate_docs(format="openapi")

        operation = spec["paths"]["/users/{id}"]["put"]
        self.assertEqual(operation["operationId"], "user")
        self.assertEqual(operation["parameters"][0]["name"], "id")
        self.assertIn("requestBody", operation)

    async def test_unknown_format(self):
        with self.assertRaises(ValueError):
            self.manager.generate_docs(format="html")


class TestRedact(unittest.TestCase):

    def test_redact(self):
        self.assertEqual(redact({"password": "x", "apiToken": "y", "id": 1}), {"password": "******", "apiToken": "******", "id": 1})


if __name__ == "__main__":
    unittest.main()
