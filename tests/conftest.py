import anyio
import pytest
import sse_starlette
from packaging import version
from starlette.applications import Starlette

from location_mcp.server.app import create_app
from location_mcp.settings import Settings
from location_mcp.stores import InMemoryApiKeyStore, InMemoryLocationStore


@pytest.fixture
def anyio_backend():
    return "asyncio"


SSE_STARLETTE_VERSION = version.parse(sse_starlette.__version__)
NEEDS_RESET = SSE_STARLETTE_VERSION < version.parse("3.0.0")


@pytest.fixture(autouse=True)
def reset_sse_app_status():
    """Reset sse-starlette's global AppStatus singleton before each test.

    AppStatus.should_exit_event is a global asyncio.Event that gets bound to
    an event loop. Versions 3.0+ use context-local events and need no reset.
    """
    if not NEEDS_RESET:
        yield
        return

    # lazy import to avoid import errors
    from sse_starlette.sse import AppStatus

    AppStatus.should_exit_event = anyio.Event()  # type: ignore[attr-defined]
    yield
    AppStatus.should_exit_event = anyio.Event()  # type: ignore[attr-defined]


@pytest.fixture
def locations() -> InMemoryLocationStore:
    return InMemoryLocationStore()


@pytest.fixture
def api_keys() -> InMemoryApiKeyStore:
    return InMemoryApiKeyStore({"validkey123": "user-a", "otherkey456": "user-b"})


@pytest.fixture
def make_app(locations: InMemoryLocationStore, api_keys: InMemoryApiKeyStore):
    """Build an app sharing the test's stores; keyword arguments override Settings."""

    def factory(**overrides) -> Starlette:
        return create_app(Settings(**overrides), locations=locations, api_keys=api_keys)

    return factory
