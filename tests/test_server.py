import os
import tempfile
import unittest
from unittest import mock

from starlette.routing import Mount

from api_manager_mcp import server_streamablehttp


class TestServerEntryPoint(unittest.TestCase):

    def test_main_serves_mcp_at_mounted_path(self):
        with tempfile.TemporaryDirectory() as tmp:
            env = {"HOST": "127.0.0.1", "PORT": "9000", "API_MANAGER_DATA_DIR": tmp, "API_MANAGER_CONFIG_STORE_URL": ""}
            with mock.patch.dict(os.environ, env), \
                    mock.patch.object(server_streamablehttp.uvicorn, "run") as run, \
                    self.assertLogs(level="INFO") as logs:
                server_streamablehttp.main()

        app = run.call_args.args[0]
        self.assertEqual(run.call_args.kwargs, {"host": "127.0.0.1", "port": 9000})
        mounts = [route.path for route in app.routes if isinstance(route, Mount)]
        self.assertEqual(mounts, [""])

        output = "\n".join(logs.output)
        self.assertIn("POST http://127.0.0.1:9000/ (MCP protocol)", output)
        self.assertNotIn("/mcp (MCP protocol)", output)


if __name__ == "__main__":
    unittest.main()
