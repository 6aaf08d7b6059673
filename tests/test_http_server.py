import unittest

from helpers import FakeClient, host_info
from starlette.testclient import TestClient

from api_manager_mcp.dynamic import ApiManager
from api_manager_mcp.dynamic.errors import TransportError
from api_manager_mcp.dynamic.fields import FieldSchemaManager
from api_manager_mcp.dynamic.http_server import create_app
from api_manager_mcp.dynamic.proxy import ExecutionProxy
from api_manager_mcp.dynamic.registry import EndpointRegistry
from api_manager_mcp.dynamic.variables import VariableStore


class TestAdminApi(unittest.TestCase):

    def setUp(self):
        self.transport = FakeClient({"id": "1", "name": "Ann"})
        registry = EndpointRegistry()
        self.manager = ApiManager(
            registry=registry,
            proxy=ExecutionProxy(registry, clients={"default": self.transport}, notifier=lambda message: None),
            fields=FieldSchemaManager(),
            variables=VariableStore(host=host_info()),
        )
        self.client = TestClient(create_app(self.manager))
        self.client.__enter__()

    def tearDown(self):
        self.client.__exit__(None, None, None)

    def add(self, key, **config):
        response = self.client.post("/api/endpoints", json={"key": key, **config})
        self.assertEqual(response.status_code, 200, response.text)
        return response.json()

    def test_health(self):
        body = self.client.get("/health").json()
        self.assertEqual(body["status"], "healthy")
        self.assertEqual(body["endpoints_count"], 0)

    def test_add_and_list_endpoints(self):
        body = self.add("ping", url="/ping", category="system")
        self.assertTrue(body["persisted"])
        self.assertEqual(body["endpoint"]["method"], "GET")

        listing = self.client.get("/api/endpoints").json()
        self.assertEqual(listing["count"], 1)
        filtered = self.client.get("/api/endpoints", params={"category": "data"}).json()
        self.assertEqual(filtered["count"], 0)

    def test_add_endpoint_without_url(self):
        response = self.client.post("/api/endpoints", json={"key": "broken"})
        self.assertEqual(response.status_code, 400)
        self.assertFalse(response.json()["success"])

    def test_get_update_remove(self):
        self.add("ping", url="/ping")

        self.assertEqual(self.client.get("/api/endpoints/ping").json()["endpoint"]["url"], "/ping")
        self.assertEqual(self.client.get("/api/endpoints/nope").status_code, 404)

        updated = self.client.patch("/api/endpoints/ping", json={"timeout": 500}).json()
        self.assertEqual(updated["endpoint"]["timeout"], 500)
        self.assertEqual(self.client.patch("/api/endpoints/nope", json={}).status_code, 404)

        self.assertEqual(self.client.delete("/api/endpoints/ping").status_code, 200)
        self.assertEqual(self.client.delete("/api/endpoints/ping").status_code, 404)

    def test_call_endpoint(self):
        self.add("user", url="/users/{id}")
        self.manager.variables.set("userId", "9")

        response = self.client.post("/api/endpoints/user/call", json={"params": {"id": "${userId}"}})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"success": True, "data": {"id": "1", "name": "Ann"}})
        self.assertEqual(self.transport.requests[0]["url"], "/users/9")

    def test_call_errors(self):
        self.assertEqual(self.client.post("/api/endpoints/nope/call", json={}).status_code, 404)

        self.transport.responses = [TransportError("Bad gateway", status=502)]
        self.add("ping", url="/ping")
        response = self.client.post("/api/endpoints/ping/call", json={})
        self.assertEqual(response.status_code, 502)
        self.assertEqual(response.json()["message"], "Bad gateway")

    def test_test_endpoint_reports_latency(self):
        self.add("ping", url="/ping", status="disabled")
        body = self.client.post("/api/endpoints/ping/test", json={}).json()
        self.assertTrue(body["success"])
        self.assertEqual(body["status"], 200)
        self.assertIn("response_time", body)

    def test_batch(self):
        self.add("ping", url="/ping")
        body = self.client.post("/api/batch", json={"calls": [{"key": "ping"}, {"key": "nope"}]}).json()

        self.assertTrue(body["results"][0]["success"])
        self.assertEqual(body["results"][1]["error"], "Endpoint 'nope' not found")
        self.assertEqual(self.client.post("/api/batch", json={"calls": []}).status_code, 400)

    def test_fields(self):
        self.add("user", url="/user")

        response = self.client.put("/api/endpoints/user/fields", json={"fields": [{"key": "id", "type": "number"}]})
        self.assertEqual(response.status_code, 200)
        fields = self.client.get("/api/endpoints/user/fields").json()["fields"]
        self.assertEqual(fields[0]["type"], "number")

        bad = self.client.put("/api/endpoints/user/fields", json={"fields": {"key": "id"}})
        self.assertEqual(bad.status_code, 400)

    def test_detect_fields(self):
        self.add("user", url="/user")

        from_sample = self.client.post("/api/endpoints/user/fields/detect", json={"sample": {"active": True}}).json()
        self.assertEqual(from_sample["fields"][0]["type"], "boolean")

        detected = self.client.post("/api/endpoints/user/fields/detect", json={"save": True}).json()
        self.assertEqual({field["key"] for field in detected["fields"]}, {"id", "name"})
        self.assertEqual(len(self.manager.get_fields("user")), 2)

    def test_variables(self):
        self.assertEqual(self.client.put("/api/variables/user/region", json={"value": "eu"}).status_code, 200)
        variables = self.client.get("/api/variables").json()["variables"]
        self.assertEqual(variables["region"], "eu")
        self.assertEqual(variables["MODE"], "test")

        self.assertEqual(self.client.put("/api/variables/env/MODE", json={"value": "x"}).status_code, 400)
        self.assertEqual(self.client.get("/api/variables", params={"scope": "tenant"}).status_code, 400)
        self.assertEqual(self.client.delete("/api/variables/user/region").status_code, 200)
        self.assertEqual(self.client.delete("/api/variables/user/region").status_code, 404)

    def test_docs(self):
        self.add("ping", url="/ping")

        markdown = self.client.get("/api/docs")
        self.assertEqual(markdown.status_code, 200)
        self.assertIn("# API Documentation", markdown.text)

        openapi = self.client.get("/api/docs", params={"format": "openapi"}).json()
        self.assertIn("/ping", openapi["paths"])
        self.assertEqual(self.client.get("/api/docs", params={"format": "html"}).status_code, 400)


if __name__ == "__main__":
    unittest.main()
