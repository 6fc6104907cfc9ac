"""
GPT service tests
"""

import json
import httpx
import pytest
from unittest.mock import AsyncMock, patch

from insight_service.services import gpt_service
from insight_service.services.gpt_service import call_gpt, safe_parse_json, structured_completion


class FakeAsyncClient:
    """Stands in for httpx.AsyncClient, answering queued responses"""

    def __init__(self, responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, *args, **kwargs):
        return self

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def post(self, url, headers=None, json=None):
        self.requests.append({'url': url, 'headers': headers, 'json': json})
        return self.responses.pop(0)


@pytest.fixture
def api_key():
    with patch.object(gpt_service.settings, 'OPENAI_API_KEY', 'sk-test'):
        yield 'sk-test'


def test_safe_parse_json_variants():
    assert safe_parse_json('{"a": 1}') == {'a': 1}
    assert safe_parse_json('```json\n{"a": 1}\n```') == {'a': 1}
    assert safe_parse_json('{"a": [1, 2,]}') == {'a': [1, 2]}
    assert safe_parse_json('Here you go: {"a": 1} thanks') == {'a': 1}
    assert safe_parse_json('') is None
    assert safe_parse_json('not json') is None


@pytest.mark.asyncio
async def test_structured_completion_sends_schema(api_key, mock_openai_response):
    """The schema goes out as a json_schema response format and the answer is parsed"""
    fake = FakeAsyncClient([httpx.Response(200, json=mock_openai_response)])
    schema = {'type': 'object', 'properties': {'insights': {'type': 'array'}}}

    with patch.object(gpt_service.httpx, 'AsyncClient', fake):
        result = await structured_completion(
            'system prompt', 'chunk text',
            model='gpt-4.1', max_tokens=32000,
            schema_name='Insights_Schema', json_schema=schema
        )

    assert result == {'insights': []}
    request = fake.requests[0]
    assert request['url'].endswith('/chat/completions')
    assert request['headers']['Authorization'] == 'Bearer sk-test'
    body = request['json']
    assert body['model'] == 'gpt-4.1'
    assert body['max_tokens'] == 32000
    assert body['messages'] == [
        {'role': 'system', 'content': 'system prompt'},
        {'role': 'user', 'content': 'chunk text'},
    ]
    assert body['response_format']['type'] == 'json_schema'
    assert body['response_format']['json_schema']['name'] == 'Insights_Schema'
    assert body['response_format']['json_schema']['schema'] == schema


@pytest.mark.asyncio
async def test_call_gpt_retries_rate_limit(api_key, mock_openai_response):
    fake = FakeAsyncClient([
        httpx.Response(429, headers={'retry-after': '0'}, text='slow down'),
        httpx.Response(200, json=mock_openai_response),
    ])

    with patch.object(gpt_service.httpx, 'AsyncClient', fake), \
            patch.object(gpt_service, 'sleep', AsyncMock()) as sleep:
        content = await call_gpt([{'role': 'user', 'content': 'hi'}])

    assert json.loads(content) == {'insights': []}
    assert len(fake.requests) == 2
    sleep.assert_awaited_once()


@pytest.mark.asyncio
async def test_call_gpt_raises_on_refusal(api_key, mock_openai_response):
    mock_openai_response['choices'][0]['message'] = {'role': 'assistant', 'content': None, 'refusal': 'no'}
    fake = FakeAsyncClient([httpx.Response(200, json=mock_openai_response)])

    with patch.object(gpt_service.httpx, 'AsyncClient', fake):
        with pytest.raises(Exception, match='refused'):
            await call_gpt([{'role': 'user', 'content': 'hi'}])


@pytest.mark.asyncio
async def test_call_gpt_raises_on_server_error(api_key):
    fake = FakeAsyncClient([httpx.Response(500, text='internal error')])

    with patch.object(gpt_service.httpx, 'AsyncClient', fake):
        with pytest.raises(Exception, match='GPT API error: 500'):
            await call_gpt([{'role': 'user', 'content': 'hi'}])


@pytest.mark.asyncio
async def test_structured_completion_rejects_non_json(api_key, mock_openai_response):
    mock_openai_response['choices'][0]['message']['content'] = 'I cannot help with that'
    fake = FakeAsyncClient([httpx.Response(200, json=mock_openai_response)])

    with patch.object(gpt_service.httpx, 'AsyncClient', fake):
        with pytest.raises(Exception, match='non-JSON'):
            await structured_completion('system prompt', 'chunk text')
