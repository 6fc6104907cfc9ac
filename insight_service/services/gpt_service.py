"""
GPT Service

Centralized OpenAI Chat Completions client with retry logic and
structured (JSON schema) output helpers
"""

import os
import re
import json
import asyncio
import httpx
from typing import List, Dict, Any, Optional
from insight_service.config import settings
from insight_service.services.logger import logger

# Timeout in milliseconds
TIMEOUT_MS = 120000
MAX_RETRIES = 3


async def sleep(ms: float):
    """Sleep helper for rate limiting"""
    await asyncio.sleep(ms / 1000)


async def call_gpt(
    messages: List[Dict[str, str]],
    max_tokens: int = 2000,
    model: Optional[str] = None,
    response_format: Optional[Dict[str, Any]] = None,
    retry_count: int = 0
) -> str:
    """
    Call OpenAI chat completions with automatic retry on rate limits
    Args:
        messages: Array of message objects with role and content
        max_tokens: Maximum tokens to generate (default: 2000)
        model: Model id (default: settings.INSIGHT_MODEL)
        response_format: Optional OpenAI response_format (json_schema, json_object)
        retry_count: Current retry attempt (internal use)
    Returns:
        GPT response content
    """
    model = model or settings.INSIGHT_MODEL
    request_id = f"req_{int(asyncio.get_running_loop().time() * 1000)}_{os.urandom(4).hex()}"

    logger.info(
        f"📤 [{request_id}] GPT API Request",
        model=model,
        max_completion_tokens=max_tokens,
        messages=len(messages),
        retry_attempt=retry_count + 1,
        max_retries=MAX_RETRIES + 1
    )

    api_key = settings.OPENAI_API_KEY or os.getenv('OPENAI_API_KEY')
    if not api_key:
        logger.error(f"   ❌ [{request_id}] OPENAI_API_KEY environment variable is not set!")
        raise Exception('OPENAI_API_KEY environment variable is not set')

    request_body: Dict[str, Any] = {
        'model': model,
        'messages': messages,
        'max_tokens': max_tokens
    }
    if response_format:
        request_body['response_format'] = response_format

    try:
        async with httpx.AsyncClient(timeout=TIMEOUT_MS / 1000) as client:
            response = await client.post(
                f"{settings.OPENAI_BASE_URL.rstrip('/')}/chat/completions",
                headers={
                    'Content-Type': 'application/json',
                    'Authorization': f'Bearer {api_key}'
                },
                json=request_body
            )
    except httpx.TimeoutException:
        logger.error(f"   ⚠️  [{request_id}] Request timed out after {TIMEOUT_MS}ms")
        raise Exception(f'GPT API request timed out after {TIMEOUT_MS // 1000} seconds')

    logger.info(f"📥 [{request_id}] GPT API Response", status=f"{response.status_code} {response.reason_phrase}")

    if not response.is_success:
        error_body = response.text
        logger.error(f"   ❌ [{request_id}] API Error Response Body: {error_body[:1000]}")

        # Handle rate limit errors with automatic retry
        if response.status_code == 429 and retry_count < MAX_RETRIES:
            retry_after = response.headers.get('retry-after')
            wait_time = float(retry_after) * 1000 if retry_after else 5000

            match = re.search(r'Please try again in ([\d.]+)s', error_body)
            if match:
                wait_time = float(match.group(1)) * 1000

            logger.info(f"⏳ Rate limit hit. Waiting {wait_time / 1000:.1f}s before retry {retry_count + 1}/{MAX_RETRIES}...")
            await sleep(wait_time)
            return await call_gpt(messages, max_tokens, model, response_format, retry_count + 1)

        raise Exception(f'GPT API error: {response.status_code} - {error_body[:500]}')

    try:
        data = response.json()
    except json.JSONDecodeError as parse_error:
        logger.error(f"   ❌ [{request_id}] Failed to parse response as JSON: {parse_error}")
        raise Exception(f'GPT API returned invalid JSON: {parse_error}')

    choices = data.get('choices') or []
    if not choices or not choices[0].get('message'):
        logger.error(f"   ❌ [{request_id}] GPT API returned invalid response structure: {json.dumps(data)[:1000]}")
        raise Exception('GPT API returned invalid response: missing choices[0].message')

    message = choices[0]['message']
    finish_reason = choices[0].get('finish_reason')

    if message.get('refusal'):
        logger.error(f"   ❌ [{request_id}] Model refused to generate content", refusal=message['refusal'])
        raise Exception(f"GPT refused to generate content: {message['refusal']}")

    if finish_reason == 'length':
        logger.warning(f"   ⚠️  [{request_id}] Response was truncated due to max_tokens limit ({max_tokens} tokens)")

    content = (message.get('content') or '').strip()
    if not content:
        raise Exception(f'GPT returned empty content (finish_reason: {finish_reason})')

    usage = data.get('usage')
    logger.info(f"   ✅ [{request_id}] Success! Content length: {len(content)} chars", usage=usage)
    return content


def safe_parse_json(text: str) -> Optional[Any]:
    """
    Safely parse JSON that may be wrapped in markdown code blocks
    Only strips backticks at the START and END, not throughout the content
    Args:
        text: JSON string that may have markdown code blocks
    Returns:
        Parsed JSON object or None on error
    """
    if not text:
        logger.warning('⚠️  safe_parse_json received empty text')
        return None

    cleaned = text.strip()

    # Remove markdown code blocks ONLY at start/end (not in the middle of content)
    if cleaned.startswith('```'):
        cleaned = re.sub(r'^```(?:json)?\s*\n?', '', cleaned)
    if cleaned.endswith('```'):
        cleaned = re.sub(r'\n?```\s*$', '', cleaned)

    try:
        return json.loads(cleaned.strip())
    except json.JSONDecodeError as error:
        logger.error(f"❌ Error parsing JSON: {str(error)}")
        logger.debug(f"   Text being parsed: {cleaned[:500]}")

    # Remove trailing commas before closing braces/brackets and try again
    cleaned_fixed = re.sub(r',(\s*[}\]])', r'\1', cleaned)
    try:
        return json.loads(cleaned_fixed.strip())
    except json.JSONDecodeError:
        pass

    # Fall back to the outermost JSON object in narrative text
    object_match = re.search(r'\{[\s\S]*\}', cleaned)
    if object_match:
        try:
            return json.loads(object_match.group(0))
        except json.JSONDecodeError as e:
            logger.error(f"   Failed to parse extracted object: {str(e)}")

    return None


async def structured_completion(
    system_prompt: str,
    user_content: str,
    model: Optional[str] = None,
    max_tokens: int = 2000,
    schema_name: str = 'Structured_Output',
    json_schema: Optional[Dict[str, Any]] = None
) -> Any:
    """
    Ask the model for JSON output, constrained by a JSON schema when given
    Args:
        system_prompt: System message
        user_content: User message
        model: Model id (default: settings.INSIGHT_MODEL)
        max_tokens: Maximum tokens to generate
        schema_name: Name reported to the API for the schema
        json_schema: JSON schema of the expected object
    Returns:
        Parsed JSON value
    """
    if json_schema:
        response_format = {
            'type': 'json_schema',
            'json_schema': {'name': schema_name, 'schema': json_schema, 'strict': False}
        }
    else:
        response_format = {'type': 'json_object'}

    content = await call_gpt([
        {'role': 'system', 'content': system_prompt},
        {'role': 'user', 'content': user_content}
    ], max_tokens, model, response_format)

    parsed = safe_parse_json(content)
    if parsed is None:
        raise Exception(f'GPT returned non-JSON structured output: {content[:200]}')
    return parsed
