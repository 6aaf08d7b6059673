import logging
import sys

import uvicorn

from api_manager_mcp.config import Settings
from api_manager_mcp.dynamic import ApiManager, DynamicMCPServer
from api_manager_mcp.dynamic.http_server import create_app

logging.basicConfig(stream=sys.stderr, level=logging.INFO, format='[%(levelname)s] %(message)s')


def main():
    settings = Settings.from_env()
    host, port = settings.host, settings.port

    manager = ApiManager.from_settings(settings)
    mcp_server = DynamicMCPServer("api-manager-mcp", manager)
    starlette_app = create_app(manager, mcp_server)

    logging.info(f"API Manager MCP Streamable HTTP Server starting on {host}:{port} ({settings.mode})")
    logging.info("Available endpoints:")
    logging.info(f"  - POST http://{host}:{port}/ (MCP protocol)")
    logging.info(f"  - GET http://{host}:{port}/api/endpoints (Endpoint registry)")
    logging.info(f"  - GET http://{host}:{port}/health (Health check)")
    if settings.mock_mode:
        logging.info("  - Mock mode enabled: endpoint mocks are served instead of live calls")

    uvicorn.run(starlette_app, host=host, port=port)


if __name__ == "__main__":
    main()
