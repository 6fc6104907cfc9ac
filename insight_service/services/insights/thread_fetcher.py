"""
Streaming Thread Fetcher

Turns a thread id, or an explicit list of message ids, into an async stream
of message batches. Each stream holds one fetch permit for its whole
lifetime, so the semaphore bounds how many threads are being drained at
once rather than how many page requests are in flight.
"""

import asyncio
from typing import AsyncIterator, List, Optional

from insight_service.config import settings
from insight_service.models.insight import ParsedMessage
from insight_service.services.insights.errors import ThreadFetchError
from insight_service.services.logger import logger


class StreamingThreadFetcher:
    """Bounded-concurrency paginated reader over the email content client"""

    def __init__(self, content_client, semaphore: asyncio.Semaphore, batch_size: Optional[int] = None):
        """
        Args:
            content_client: Object exposing get_email_messages_by_thread_id and
                get_email_messages_by_id_batch
            semaphore: Fetch pool shared by all streams of one processor
            batch_size: Page size / id group size
        """
        self.content_client = content_client
        self.semaphore = semaphore
        self.batch_size = batch_size or settings.MAX_MESSAGES_PER_THREAD_BATCH

    async def fetch_thread_stream(self, thread_id: str) -> AsyncIterator[List[ParsedMessage]]:
        """
        Yield a thread's messages page by page until an empty or short page
        Raises:
            ThreadFetchError: a page request failed; the stream ends there
        """
        async with self.semaphore:
            offset = 0
            while True:
                try:
                    messages = await self.content_client.get_email_messages_by_thread_id(
                        thread_id, offset, self.batch_size
                    )
                except Exception as error:
                    raise ThreadFetchError(f'Failed to get email messages by thread ID {thread_id}: {error}') from error

                if not messages:
                    break

                offset += len(messages)
                yield messages

                # Fewer than requested means this was the last page
                if len(messages) < self.batch_size:
                    break

    async def fetch_messages_stream(self, message_ids: List[str]) -> AsyncIterator[List[ParsedMessage]]:
        """
        Yield one batch per group of message ids, consuming every group
        Raises:
            ThreadFetchError: a batch request failed; the stream ends there
        """
        async with self.semaphore:
            for i in range(0, len(message_ids), self.batch_size):
                id_group = message_ids[i:i + self.batch_size]
                logger.debug('Processing message IDs chunk', messageIds=id_group)
                try:
                    messages = await self.content_client.get_email_messages_by_id_batch(id_group)
                except Exception as error:
                    raise ThreadFetchError(f'Failed to get email messages by ID batch: {error}') from error
                yield messages
