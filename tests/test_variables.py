import tempfile
import unittest

from helpers import host_info

from api_manager_mcp.dynamic.errors import VariableScopeError
from api_manager_mcp.dynamic.models import VariableScope
from api_manager_mcp.dynamic.storage import JsonFileStore
from api_manager_mcp.dynamic.variables import HostInfo, VariableStore


class TestVariableStore(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.local = JsonFileStore(self.tmp.name)
        self.store = VariableStore(self.local, host_info())

    def tearDown(self):
        self.tmp.cleanup()

    def test_env_scope_is_computed_from_host(self):
        self.assertEqual(self.store.get("MODE"), "test")
        self.assertEqual(self.store.get("API_BASE_URL", VariableScope.ENV), "http://api.local")
        self.assertEqual(self.store.get("SCREEN_WIDTH"), 120)

    def test_env_scope_is_read_only(self):
        with self.assertRaises(VariableScopeError):
            self.store.set("MODE", "prod", VariableScope.ENV)
        with self.assertRaises(VariableScopeError):
            self.store.remove("MODE", "env")
        with self.assertRaises(VariableScopeError):
            self.store.clear("env")

    def test_unknown_scope(self):
        with self.assertRaises(VariableScopeError):
            self.store.set("x", 1, "tenant")

    def test_precedence_session_user_global_env(self):
        self.store.set("MODE", "global-mode", VariableScope.GLOBAL)
        self.assertEqual(self.store.get("MODE"), "global-mode")
        self.store.set("MODE", "user-mode", VariableScope.USER)
        self.assertEqual(self.store.get("MODE"), "user-mode")
        self.store.set("MODE", "session-mode", VariableScope.SESSION)
        self.assertEqual(self.store.get("MODE"), "session-mode")

        self.store.end_session()
        self.assertEqual(self.store.get("MODE"), "user-mode")
        self.assertEqual(self.store.get("MODE", VariableScope.ENV), "test")

    def test_falsy_value_in_higher_scope_wins(self):
        self.store.set("limit", 10, VariableScope.GLOBAL)
        self.store.set("limit", 0, VariableScope.USER)
        self.assertEqual(self.store.get("limit"), 0)

    def test_durable_scopes_survive_reload(self):
        self.store.set("token", "abc", VariableScope.USER)
        self.store.set("region", "eu", VariableScope.GLOBAL)
        self.store.set("temp", "x", VariableScope.SESSION)

        reloaded = VariableStore(self.local, host_info())
        self.assertEqual(reloaded.get("token"), "abc")
        self.assertEqual(reloaded.get("region"), "eu")
        self.assertIsNone(reloaded.get("temp"))

    def test_remove_and_has(self):
        self.store.set("token", "abc")
        self.assertTrue(self.store.has("token"))
        self.assertTrue(self.store.remove("token"))
        self.assertFalse(self.store.remove("token"))
        self.assertFalse(self.store.has("token"))

    def test_import_variables(self):
        self.store.set("a", 1)
        written = self.store.import_variables({"a": 2, "b": 3})
        self.assertEqual(written, 1)
        self.assertEqual(self.store.get("a"), 1)

        written = self.store.import_variables({"a": 2}, overwrite=True)
        self.assertEqual(written, 1)
        self.assertEqual(self.store.get("a"), 2)

    def test_export_merges_scopes(self):
        self.store.set("a", "user")
        self.store.set("a", "session", VariableScope.SESSION)
        exported = self.store.export_variables()
        self.assertEqual(exported["a"], "session")
        self.assertEqual(exported["PLATFORM"], "Linux")
        self.assertEqual(self.store.export_variables("user"), {"a": "user"})

    def test_replace_variables(self):
        self.store.set("userId", 42)
        self.assertEqual(self.store.replace_variables("/users/${userId}"), "/users/42")
        self.assertEqual(self.store.replace_variables("${API_BASE_URL}/ping"), "http://api.local/ping")

    def test_unknown_token_is_left_as_written(self):
        self.assertEqual(self.store.replace_variables("hello ${nobody}"), "hello ${nobody}")
        self.assertEqual(self.store.replace_variables(5), 5)

    def test_replace_object_variables(self):
        self.store.set("id", "7")
        result = self.store.replace_object_variables({
            "path": "/items/${id}",
            "nested": {"tags": ["${id}", "plain", 3]},
            "count": 2,
        })
        self.assertEqual(result, {"path": "/items/7", "nested": {"tags": ["7", "plain", 3]}, "count": 2})


class TestHostInfo(unittest.TestCase):

    def test_detect_defaults_api_base_url(self):
        info = HostInfo.detect(mode="production", base_url="http://example.com")
        self.assertEqual(info.api_base_url, "http://example.com")
        self.assertGreater(info.screen_width, 0)
        self.assertIn("PLATFORM", info.to_variables())


if __name__ == "__main__":
    unittest.main()
