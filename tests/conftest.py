"""Pytest configuration and fixtures."""

import json
import os
import tempfile
from collections.abc import Generator
from contextlib import asynccontextmanager
from typing import AsyncIterator

import pytest

from chat_relay.config import Settings
from chat_relay.db.manager import DatabaseManager
from chat_relay.upstream.client import UpstreamError


def sse_record(delta: dict) -> bytes:
    """Encode one provider chunk the way the provider frames it."""
    payload = {"id": "chunk", "choices": [{"index": 0, "delta": delta}]}
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n".encode()


DONE_RECORD = b"data: [DONE]\n\n"


class FakeProvider:
    """Stands in for ModelProviderClient, replaying canned byte chunks."""

    def __init__(
        self,
        chunks: list[bytes] | None = None,
        error: UpstreamError | None = None,
        fail_after: int | None = None,
    ) -> None:
        self.chunks = chunks or []
        self.error = error
        self.fail_after = fail_after
        self.requests: list[str] = []
        self.opened = 0
        self.released = 0
        self.closed = False

    @asynccontextmanager
    async def stream_chat(self, message: str) -> AsyncIterator[AsyncIterator[bytes]]:
        self.requests.append(message)
        if self.error is not None and self.fail_after is None:
            raise self.error
        self.opened += 1
        try:
            yield self._iterate()
        finally:
            self.released += 1

    async def _iterate(self) -> AsyncIterator[bytes]:
        for i, chunk in enumerate(self.chunks):
            if self.fail_after is not None and i == self.fail_after:
                raise self.error
            yield chunk

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def temp_db_path() -> Generator[str, None, None]:
    """Create a temporary database file."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name
    yield db_path
    # Cleanup
    for suffix in ("", "-wal", "-shm"):
        try:
            os.unlink(db_path + suffix)
        except OSError:
            pass


@pytest.fixture
def db_manager(temp_db_path: str) -> Generator[DatabaseManager, None, None]:
    """Create a DatabaseManager with a temporary database."""
    manager = DatabaseManager(database_url=f"sqlite:///{temp_db_path}")
    manager.init_db()
    yield manager
    manager.close()


@pytest.fixture
def test_settings(temp_db_path: str) -> Settings:
    """Settings pointing at a temporary database."""
    return Settings(
        database_url=f"sqlite:///{temp_db_path}",
        jwt_secret_key="test-secret",
        llm_api_key="test-key",
        heartbeat_interval=20.0,
        _env_file=None,
    )
