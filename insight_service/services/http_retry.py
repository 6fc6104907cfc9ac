"""
HTTP Retry Service

Provides retry logic for outbound HTTP calls with exponential backoff
"""

import asyncio
import httpx
from typing import Dict, Any, Optional


async def fetch_with_retry(
    method: str,
    url: str,
    options: Optional[Dict[str, Any]] = None,
    max_retries: int = 3,
    timeout: int = 60000  # 60 seconds
) -> httpx.Response:
    """
    Send a request with automatic retry on timeouts and rate limits
    Args:
        method: HTTP method ('GET', 'POST', ...)
        url: URL to fetch
        options: Request options (headers, params, json)
        max_retries: Maximum number of retries
        timeout: Timeout in milliseconds
    Returns:
        Response object (the caller checks the status)
    """
    if options is None:
        options = {}

    async with httpx.AsyncClient(timeout=timeout / 1000) as client:
        for attempt in range(max_retries + 1):
            try:
                response = await client.request(
                    method,
                    url,
                    headers=options.get('headers', {}),
                    params=options.get('params'),
                    json=options.get('json')
                )

                # Handle 408 timeout errors with retry
                if response.status_code == 408:
                    if attempt < max_retries:
                        wait_time = (2 ** attempt) * 1000  # Exponential backoff: 1s, 2s, 4s
                        await asyncio.sleep(wait_time / 1000)
                        continue
                    raise Exception(f'Request timeout after {max_retries} retries')

                # Handle 429 rate limit errors
                if response.status_code == 429 and attempt < max_retries:
                    retry_after = response.headers.get('retry-after')
                    wait_time = float(retry_after) * 1000 if retry_after else (2 ** attempt) * 2000
                    await asyncio.sleep(wait_time / 1000)
                    continue

                return response

            except httpx.TimeoutException:
                if attempt < max_retries:
                    wait_time = (2 ** attempt) * 1000
                    await asyncio.sleep(wait_time / 1000)
                    continue
                raise Exception(f'Request timeout after {max_retries} retries')
            except httpx.TransportError:
                if attempt < max_retries:
                    wait_time = (2 ** attempt) * 1000
                    await asyncio.sleep(wait_time / 1000)
                    continue
                raise

    raise Exception(f'Failed after {max_retries} retries')
