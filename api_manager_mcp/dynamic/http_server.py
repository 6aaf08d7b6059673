import contextlib
import json
import logging
import sys
from collections.abc import AsyncIterator
from typing import Any, Dict, Optional

from mcp.server.streamable_http_manager import StreamableHTTPSessionManager
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse
from starlette.routing import Mount, Route
from starlette.types import Receive, Scope, Send

from api_manager_mcp.dynamic import (
    ApiError,
    ApiManager,
    ConfigNotFound,
    DynamicMCPServer,
    VariableScopeError,
)

logging.basicConfig(stream=sys.stderr, level=logging.INFO, format='[%(levelname)s] %(message)s')


def _jsonable(value: Any) -> Any:
    """Round-trip through json so datetimes, exceptions and dataclass dicts serialize"""
    return json.loads(json.dumps(value, default=str))


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"success": False, "message": message}, status_code=status_code)


async def _body(request: Request) -> Dict[str, Any]:
    body = await request.json()
    if not isinstance(body, dict):
        raise ValueError("Request body must be a JSON object")
    return body


def _manager(request: Request) -> ApiManager:
    return request.app.state.manager


def _batch_results(results) -> list:
    items = []
    for result in results:
        item = dict(result)
        if "error" in item:
            item["error"] = str(item["error"])
        items.append(item)
    return _jsonable(items)


async def add_endpoint_handler(request: Request) -> JSONResponse:
    """HTTP endpoint to register a new API endpoint

    Args:
        request: Starlette request containing ``key`` plus the endpoint configuration

    Returns:
        JSON response indicating success or failure
    """
    try:
        body = await _body(request)
        key = body.pop("key", None) or body.get("name")
        manager = _manager(request)
        persisted = await manager.register(key, body)
        endpoint = manager.registry.get(key)
        logging.info(f"[DynamicHTTP] Successfully added endpoint '{key}'")
        return JSONResponse({
            "success": True,
            "message": f"Successfully added endpoint '{key}'",
            "persisted": persisted,
            "endpoint": endpoint.to_dict(),
        })
    except (ValueError, TypeError) as e:
        logging.error(f"[DynamicHTTP] Error adding endpoint: {e}")
        return _error(f"Error adding endpoint: {str(e)}", 400)


async def list_endpoints_handler(request: Request) -> JSONResponse:
    """HTTP endpoint to list configured endpoints, optionally filtered by ``?category=``"""
    registry = _manager(request).registry
    category = request.query_params.get("category")
    if category:
        endpoints = [config.to_dict() for config in registry.get_by_category(category).values()]
    else:
        endpoints = registry.list_endpoints()
    return JSONResponse({"success": True, "endpoints": endpoints, "count": len(endpoints)})


async def get_endpoint_handler(request: Request) -> JSONResponse:
    key = request.path_params["key"]
    endpoint = _manager(request).registry.get(key)
    if endpoint is None:
        return _error(f"Endpoint '{key}' not found", 404)
    return JSONResponse({"success": True, "endpoint": endpoint.to_dict()})


async def update_endpoint_handler(request: Request) -> JSONResponse:
    key = request.path_params["key"]
    manager = _manager(request)
    try:
        body = await _body(request)
        body.pop("key", None)
        persisted = await manager.update(key, body)
    except ConfigNotFound as e:
        return _error(str(e), 404)
    except (ValueError, TypeError) as e:
        logging.error(f"[DynamicHTTP] Error updating endpoint '{key}': {e}")
        return _error(f"Error updating endpoint: {str(e)}", 400)
    return JSONResponse({
        "success": True,
        "persisted": persisted,
        "endpoint": manager.registry.get(key).to_dict(),
    })


async def remove_endpoint_handler(request: Request) -> JSONResponse:
    """HTTP endpoint to remove an API endpoint

    Args:
        request: Starlette request with the endpoint key in path parameters

    Returns:
        JSON response indicating success or failure
    """
    key = request.path_params.get("key")
    try:
        removed = await _manager(request).remove(key)
    except ConfigNotFound:
        return _error(f"Endpoint '{key}' not found", 404)

    if removed:
        logging.info(f"[DynamicHTTP] Successfully removed endpoint '{key}'")
        return JSONResponse({"success": True, "message": f"Successfully removed endpoint '{key}'"})
    return _error(f"Removal of '{key}' could not be persisted and was rolled back", 500)


async def call_endpoint_handler(request: Request) -> JSONResponse:
    """HTTP endpoint to call an API endpoint; body is ``{"params": {...}, "options": {...}}``"""
    key = request.path_params["key"]
    try:
        body = await _body(request)
        result = await _manager(request).call(key, body.get("params") or {}, body.get("options"))
    except ConfigNotFound as e:
        return _error(str(e), 404)
    except ApiError as e:
        status = getattr(e, "status", None) or 502
        return _error(str(e), status if status >= 400 else 502)
    except (ValueError, TypeError) as e:
        return _error(str(e), 400)
    return JSONResponse(_jsonable(result))


async def test_endpoint_handler(request: Request) -> JSONResponse:
    key = request.path_params["key"]
    try:
        body = await _body(request)
    except ValueError:
        body = {}
    result = await _manager(request).test(key, body.get("params") or {})
    return JSONResponse(_jsonable(result))


async def batch_handler(request: Request) -> JSONResponse:
    """HTTP endpoint to run a batch; body is ``{"calls": [...], "options": {...}, "parallel": true}``"""
    try:
        body = await _body(request)
        results = await _manager(request).batch_call(
            body.get("calls"), body.get("options"), parallel=body.get("parallel", True)
        )
    except (ValueError, TypeError) as e:
        return _error(str(e), 400)
    return JSONResponse({"success": True, "results": _batch_results(results)})


async def get_fields_handler(request: Request) -> JSONResponse:
    key = request.path_params["key"]
    fields = [definition.to_dict() for definition in _manager(request).get_fields(key)]
    return JSONResponse(_jsonable({"success": True, "fields": fields}))


async def set_fields_handler(request: Request) -> JSONResponse:
    key = request.path_params["key"]
    manager = _manager(request)
    try:
        body = await _body(request)
        manager.fields.set_fields(key, body.get("fields"))
    except (KeyError, ValueError, TypeError) as e:
        return _error(f"Invalid field definitions: {e}", 400)
    fields = [definition.to_dict() for definition in manager.get_fields(key)]
    return JSONResponse(_jsonable({"success": True, "fields": fields}))


async def detect_fields_handler(request: Request) -> JSONResponse:
    """Detect fields from ``{"sample": ...}``, or from a live call when no sample is given"""
    key = request.path_params["key"]
    manager = _manager(request)
    try:
        body = await _body(request)
        sample = body.get("sample")
        if sample is None:
            result = await manager.test(key, body.get("params") or {})
            if not result["success"]:
                return _error(result.get("error") or "Test call failed", 502)
            sample = result["data"]
            if isinstance(sample, dict) and "data" in sample:
                sample = sample["data"]
        fields = manager.detect_fields(key, sample, save=bool(body.get("save", False)))
    except (ValueError, TypeError) as e:
        return _error(str(e), 400)
    return JSONResponse(_jsonable({"success": True, "fields": [definition.to_dict() for definition in fields]}))


async def list_variables_handler(request: Request) -> JSONResponse:
    scope = request.query_params.get("scope")
    try:
        variables = _manager(request).variables.export_variables(scope)
    except VariableScopeError as e:
        return _error(str(e), 400)
    return JSONResponse(_jsonable({"success": True, "variables": variables}))


async def set_variable_handler(request: Request) -> JSONResponse:
    scope, name = request.path_params["scope"], request.path_params["name"]
    try:
        body = await _body(request)
        _manager(request).variables.set(name, body.get("value"), scope)
    except (VariableScopeError, ValueError) as e:
        return _error(str(e), 400)
    return JSONResponse({"success": True, "message": f"Set {scope} variable '{name}'"})


async def remove_variable_handler(request: Request) -> JSONResponse:
    scope, name = request.path_params["scope"], request.path_params["name"]
    try:
        removed = _manager(request).variables.remove(name, scope)
    except VariableScopeError as e:
        return _error(str(e), 400)
    if not removed:
        return _error(f"Variable '{name}' not found in {scope} scope", 404)
    return JSONResponse({"success": True, "message": f"Removed {scope} variable '{name}'"})


async def docs_handler(request: Request):
    doc_format = request.query_params.get("format", "markdown")
    try:
        docs = _manager(request).generate_docs(format=doc_format)
    except ValueError as e:
        return _error(str(e), 400)
    if isinstance(docs, str):
        return PlainTextResponse(docs, media_type="text/markdown")
    return JSONResponse(docs)


async def server_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logging.exception(f"[DynamicHTTP] Unhandled error on {request.method} {request.url.path}: {exc}")
    return _error(f"Internal server error: {str(exc)}", 500)


async def health_handler(request: Request) -> JSONResponse:
    """Health check endpoint

    Args:
        request: Starlette request object

    Returns:
        JSON response with server health status
    """
    manager = _manager(request)
    return JSONResponse({
        "status": "healthy" if manager.is_ready() else "loading",
        "server": "api-manager-mcp",
        "endpoints_count": len(manager.registry.endpoints),
    })


def create_app(manager: ApiManager, mcp_server: Optional[DynamicMCPServer] = None) -> Starlette:
    """Build the admin HTTP API, with the MCP streamable HTTP transport mounted at ``/``

    Args:
        manager: ApiManager every handler works on
        mcp_server: MCP server to mount; created over ``manager`` when None

    Returns:
        Starlette application
    """
    mcp_server = mcp_server or DynamicMCPServer("api-manager-mcp", manager)
    session_manager = StreamableHTTPSessionManager(
        app=mcp_server.get_server(),
        event_store=None,
        json_response=True,
        stateless=True,
    )

    async def handle_streamable_http(scope: Scope, receive: Receive, send: Send) -> None:
        """Handle MCP protocol requests via streamable HTTP"""
        await session_manager.handle_request(scope, receive, send)

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        """Hydrate the registry and run the MCP session manager for the server lifetime"""
        await manager.initialize()
        async with session_manager.run():
            endpoint_names = list(manager.registry.endpoints.keys())
            logging.info(f"[DynamicHTTP] API manager started with {len(endpoint_names)} endpoint(s)")
            logging.info(f"[DynamicHTTP]   - Loaded endpoints: {endpoint_names}")
            if not endpoint_names:
                logging.warning("[DynamicHTTP] No endpoints registered yet - use POST /api/endpoints to add some")
            try:
                yield
            finally:
                logging.info("[DynamicHTTP] API manager shutting down...")
                await manager.close()

    app = Starlette(
        debug=False,
        routes=[
            Route("/api/endpoints", add_endpoint_handler, methods=["POST"]),
            Route("/api/endpoints", list_endpoints_handler, methods=["GET"]),
            Route("/api/endpoints/{key}", get_endpoint_handler, methods=["GET"]),
            Route("/api/endpoints/{key}", update_endpoint_handler, methods=["PATCH"]),
            Route("/api/endpoints/{key}", remove_endpoint_handler, methods=["DELETE"]),
            Route("/api/endpoints/{key}/call", call_endpoint_handler, methods=["POST"]),
            Route("/api/endpoints/{key}/test", test_endpoint_handler, methods=["POST"]),
            Route("/api/endpoints/{key}/fields", get_fields_handler, methods=["GET"]),
            Route("/api/endpoints/{key}/fields", set_fields_handler, methods=["PUT"]),
            Route("/api/endpoints/{key}/fields/detect", detect_fields_handler, methods=["POST"]),
            Route("/api/batch", batch_handler, methods=["POST"]),
            Route("/api/variables", list_variables_handler, methods=["GET"]),
            Route("/api/variables/{scope}/{name}", set_variable_handler, methods=["PUT"]),
            Route("/api/variables/{scope}/{name}", remove_variable_handler, methods=["DELETE"]),
            Route("/api/docs", docs_handler, methods=["GET"]),
            Route("/health", health_handler, methods=["GET"]),
            Mount("/", app=handle_streamable_http),
        ],
        exception_handlers={Exception: server_error_handler},
        lifespan=lifespan,
    )
    app.state.manager = manager
    return app


__all__ = [
    "create_app",
    "add_endpoint_handler",
    "list_endpoints_handler",
    "get_endpoint_handler",
    "update_endpoint_handler",
    "remove_endpoint_handler",
    "call_endpoint_handler",
    "test_endpoint_handler",
    "batch_handler",
    "health_handler",
]
