"""
Email content client tests
"""

import httpx
import pytest
from unittest.mock import AsyncMock, patch

from insight_service.services.email_content_client import EmailContentClient

MESSAGE = {
    'db_id': 'msg1',
    'thread_db_id': 'thread1',
    'internal_date_ts': '2023-01-01T10:00:00Z',
    'subject': 'Launch plan',
    'from': {'email': 'alice@example.com', 'name': 'Alice'},
    'to': [{'email': 'test@example.com'}],
    'labels': [{'name': 'INBOX'}],
    'body_parsed': 'See you Monday',
}


@pytest.mark.asyncio
async def test_get_messages_by_thread_id():
    """A page request carries offset, limit and the bearer token"""
    client = EmailContentClient(base_url='https://email.internal/', token='secret')
    response = httpx.Response(200, json={'messages': [MESSAGE]})

    with patch('insight_service.services.email_content_client.fetch_with_retry', AsyncMock(return_value=response)) as fetch:
        messages = await client.get_email_messages_by_thread_id('thread1', 50, 25)

    method, url, options = fetch.await_args.args
    assert method == 'GET'
    assert url == 'https://email.internal/internal/threads/thread1/messages'
    assert options['params'] == {'offset': 50, 'limit': 25}
    assert options['headers']['Authorization'] == 'Bearer secret'

    assert len(messages) == 1
    message = messages[0]
    assert message.db_id == 'msg1'
    assert message.from_.email == 'alice@example.com'
    assert message.to[0].email == 'test@example.com'
    assert message.internal_date_ts.year == 2023


@pytest.mark.asyncio
async def test_get_messages_by_id_batch():
    client = EmailContentClient(base_url='https://email.internal', token='secret')
    response = httpx.Response(200, json=[MESSAGE])

    with patch('insight_service.services.email_content_client.fetch_with_retry', AsyncMock(return_value=response)) as fetch:
        messages = await client.get_email_messages_by_id_batch(['msg1', 'msg2'])

    method, url, options = fetch.await_args.args
    assert method == 'POST'
    assert url == 'https://email.internal/internal/messages/batch'
    assert options['json'] == {'message_ids': ['msg1', 'msg2']}
    assert [m.db_id for m in messages] == ['msg1']


@pytest.mark.asyncio
async def test_empty_batch_skips_request():
    client = EmailContentClient(base_url='https://email.internal')
    with patch('insight_service.services.email_content_client.fetch_with_retry', AsyncMock()) as fetch:
        assert await client.get_email_messages_by_id_batch([]) == []
    fetch.assert_not_awaited()


@pytest.mark.asyncio
async def test_error_status_raises():
    client = EmailContentClient(base_url='https://email.internal')
    response = httpx.Response(503, text='unavailable')

    with patch('insight_service.services.email_content_client.fetch_with_retry', AsyncMock(return_value=response)):
        with pytest.raises(Exception, match='Email service error 503'):
            await client.get_email_messages_by_thread_id('thread1', 0, 50)
