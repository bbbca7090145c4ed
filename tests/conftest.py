"""Root conftest — suite markers and the session-scoped Redis container.

Unit tests run against in-process stores only.  Integration tests share
one Redis 7 container for the whole session and are skipped when Docker is
not available.
"""

from __future__ import annotations

import logging
from pathlib import Path
import time

import pytest
import redis as sync_redis
from redis.asyncio import Redis
from testcontainers.core.container import DockerContainer

logger = logging.getLogger(__name__)


def pytest_collection_modifyitems(items: list[pytest.Item]) -> None:
    """Attach suite markers from test path.

    - `tests/unit/*` -> `unit`
    - `tests/integration/*` -> `integration`
    """
    root = Path(__file__).resolve().parents[1]
    for item in items:
        item_path = Path(str(item.fspath)).resolve()
        try:
            rel = item_path.relative_to(root)
        except ValueError:
            continue

        parts = rel.parts
        if len(parts) < 2 or parts[0] != "tests":
            continue
        if parts[1] == "unit":
            item.add_marker(pytest.mark.unit)
        elif parts[1] == "integration":
            item.add_marker(pytest.mark.integration)


# ---------------------------------------------------------------------------
# Redis
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def redis_container():
    """Spin up a Redis 7 container and yield its URL.

    Session-scoped: one container for the entire test run.
    """
    container = DockerContainer("redis:7-alpine").with_exposed_ports(6379)
    try:
        container.start()
    except Exception as exc:
        pytest.skip(f"Docker is not available for Redis tests: {exc}")

    try:
        host = container.get_container_host_ip()
        port = container.get_exposed_port(6379)
        url = f"redis://{host}:{port}"

        # Wait for Redis readiness
        r = sync_redis.Redis(host=host, port=int(port))
        max_attempts = 30
        for attempt in range(max_attempts):
            try:
                r.ping()
                r.close()
                break
            except Exception as exc:
                if attempt == max_attempts - 1:
                    r.close()
                    raise
                logger.debug(
                    "Redis not ready (attempt %d/%d): %s",
                    attempt + 1,
                    max_attempts,
                    exc,
                )
                time.sleep(1)

        yield url
    finally:
        container.stop()


@pytest.fixture()
async def redis_client(redis_container):
    """Yield an async Redis client connected to the test container."""
    client = Redis.from_url(redis_container)
    await client.flushdb()
    yield client
    await client.flushdb()
    await client.aclose()
