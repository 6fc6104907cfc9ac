"""
HTTP retry tests
"""

import httpx
import pytest
from unittest.mock import AsyncMock, patch

from insight_service.services import http_retry
from insight_service.services.http_retry import fetch_with_retry


class FakeAsyncClient:
    """Stands in for httpx.AsyncClient; queued items are responses or exceptions to raise"""

    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def __call__(self, *args, **kwargs):
        return self

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def request(self, method, url, headers=None, params=None, json=None):
        self.calls.append((method, url, params, json))
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.mark.asyncio
async def test_returns_first_success():
    fake = FakeAsyncClient([httpx.Response(200, json={'ok': True})])

    with patch.object(http_retry.httpx, 'AsyncClient', fake):
        response = await fetch_with_retry('GET', 'https://email.internal/x', {'params': {'offset': 0}})

    assert response.json() == {'ok': True}
    assert fake.calls == [('GET', 'https://email.internal/x', {'offset': 0}, None)]


@pytest.mark.asyncio
async def test_retries_rate_limit_honouring_retry_after():
    fake = FakeAsyncClient([
        httpx.Response(429, headers={'retry-after': '2'}),
        httpx.Response(200),
    ])

    with patch.object(http_retry.httpx, 'AsyncClient', fake), \
            patch.object(http_retry.asyncio, 'sleep', AsyncMock()) as sleep:
        response = await fetch_with_retry('GET', 'https://email.internal/x')

    assert response.status_code == 200
    sleep.assert_awaited_once_with(2.0)


@pytest.mark.asyncio
async def test_retries_timeouts_then_gives_up():
    fake = FakeAsyncClient([httpx.ReadTimeout('slow') for _ in range(3)])

    with patch.object(http_retry.httpx, 'AsyncClient', fake), \
            patch.object(http_retry.asyncio, 'sleep', AsyncMock()) as sleep:
        with pytest.raises(Exception, match='Request timeout after 2 retries'):
            await fetch_with_retry('GET', 'https://email.internal/x', max_retries=2)

    assert len(fake.calls) == 3
    assert [call.args[0] for call in sleep.await_args_list] == [1.0, 2.0]


@pytest.mark.asyncio
async def test_error_status_is_returned_to_caller():
    """Non-retryable statuses are the caller's to interpret"""
    fake = FakeAsyncClient([httpx.Response(404)])

    with patch.object(http_retry.httpx, 'AsyncClient', fake):
        response = await fetch_with_retry('POST', 'https://email.internal/x', {'json': {'a': 1}})

    assert response.status_code == 404
    assert fake.calls[0][3] == {'a': 1}
