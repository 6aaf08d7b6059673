"""Fakes shared by the test modules."""

from api_manager_mcp.dynamic.errors import PersistenceFailure
from api_manager_mcp.dynamic.storage import MemoryConfigStore
from api_manager_mcp.dynamic.transport import TransportResponse
from api_manager_mcp.dynamic.variables import HostInfo


class FakeClient:
    """Transport client replaying queued responses; exceptions in the queue are raised"""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    async def request(self, method, url, params=None, json=None, headers=None, timeout=None):
        self.requests.append({
            "method": method,
            "url": url,
            "params": params,
            "json": json,
            "headers": headers,
            "timeout": timeout,
        })
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        if isinstance(response, TransportResponse):
            return response
        return TransportResponse(status=200, data=response)


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FailingStore(MemoryConfigStore):
    """Config store whose writes fail once ``failing`` is set"""

    def __init__(self, collection=None, failing=True):
        super().__init__(collection)
        self.failing = failing
        self.saves = 0

    async def save(self, collection):
        self.saves += 1
        if self.failing:
            raise PersistenceFailure("remote store unreachable")
        return await super().save(collection)


def host_info(**overrides):
    values = dict(
        mode="test",
        base_url="http://localhost:8080",
        api_base_url="http://api.local",
        client="CPython/3.12",
        platform="Linux",
        screen_width=120,
        screen_height=40,
        timestamp=1700000000000,
    )
    values.update(overrides)
    return HostInfo(**values)


class RejectingStore(MemoryConfigStore):
    """Config store that answers writes with ``{"success": False}`` once ``rejecting`` is set"""

    def __init__(self, collection=None, rejecting=True):
        super().__init__(collection)
        self.rejecting = rejecting

    async def save(self, collection):
        if self.rejecting:
            return {"success": False, "message": "quota exceeded"}
        return await super().save(collection)


class UnreachableStore(MemoryConfigStore):
    """Config store whose reads raise, as a dropped connection would"""

    async def get_all(self):
        raise ConnectionError("connection reset by peer")
