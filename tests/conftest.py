"""Root pytest configuration for all tests."""

from __future__ import annotations

from collections.abc import Callable
from unittest.mock import AsyncMock

import pytest

from acpsessions.config import Config, reset_config
from acpsessions.logging import reset_logging
from acpsessions.persistence import InMemoryMessageStore, PersistenceAdapter
from acpsessions.session import SessionStore
from tests.utils import KEY, FakeClock


# Configure pytest-asyncio to use auto mode
# This is redundant with pyproject.toml but ensures it's set
pytest_plugins = ("pytest_asyncio",)


@pytest.fixture(scope="session")
def anyio_backend():
    """Set anyio backend to asyncio."""
    return "asyncio"


@pytest.fixture(autouse=True)
def reset_global_config() -> None:
    """Reset global config cache before each test."""
    reset_config()


@pytest.fixture(autouse=True)
def reset_package_logging():
    """Drop handlers a test (or the CLI) attached to the package logger."""
    yield
    reset_logging()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def transport() -> AsyncMock:
    """Transport whose calls all succeed."""
    mock = AsyncMock()
    mock.start_session.return_value = {"success": True, "sessionId": "sess-1"}
    mock.send_prompt.return_value = {"success": True, "stopReason": "end_turn"}
    mock.cancel.return_value = {"success": True}
    mock.dispose.return_value = {"success": True}
    mock.respond_permission.return_value = {"success": True}
    mock.set_model.return_value = {"success": True}
    mock.set_config_option.return_value = {"success": True}
    mock.set_mode.return_value = {"success": True}
    return mock


@pytest.fixture
def message_store() -> InMemoryMessageStore:
    return InMemoryMessageStore()


@pytest.fixture
def make_store(
    transport: AsyncMock, message_store: InMemoryMessageStore, clock: FakeClock
) -> Callable[..., SessionStore]:
    """Factory for stores sharing the fixture transport, clock and message store."""

    def factory(config: Config | None = None, persist: bool = True) -> SessionStore:
        config = config or Config()
        adapter = PersistenceAdapter(
            message_store if persist else None, config.persistence, clock=clock
        )
        return SessionStore(transport, persistence=adapter, config=config, clock=clock)

    return factory


@pytest.fixture
def store(make_store: Callable[..., SessionStore]) -> SessionStore:
    return make_store()


@pytest.fixture
async def ready_store(store: SessionStore) -> SessionStore:
    """Store whose KEY session has been started."""
    result = await store.ensure_session(KEY)
    assert result.success
    return store
