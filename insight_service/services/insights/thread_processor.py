"""
Thread Processor

Top-level email insight pipeline for one user:
1. Split the requested threads into groups of ``max_threads_in_memory``
2. Per group, drain every thread's message stream into one chunker and spawn
   an AI task per finished chunk, keeping at most ``max_concurrent_ai_requests``
   tasks in flight
3. Deduplicate all new records against the user's existing insights
4. Persist what is left and return the new ids

Fetch failures abort the whole call. AI failures only cost the affected chunk.
"""

import asyncio
from contextlib import aclosing
from typing import AsyncIterator, Callable, Dict, List, Optional, Sequence, Set, Tuple

from insight_service.config import settings
from insight_service.db.queries.user_insights import SupabaseInsightStore
from insight_service.models.insight import ChunkReady, ParsedMessage, UserInsightRecord
from insight_service.services.email_content_client import EmailContentClient
from insight_service.services.insights.deduplication import (
    EMAIL_DEDUPLICATION_CONFIG,
    Deduplicator,
    InsightDeduplicator,
)
from insight_service.services.insights.errors import InsightPipelineError, InsightStoreError
from insight_service.services.insights.insight_generator import CompletionFn, InsightGenerator
from insight_service.services.insights.message_chunker import MessageChunker
from insight_service.services.insights.prompts import build_email_insights_system_prompt
from insight_service.services.insights.thread_fetcher import StreamingThreadFetcher
from insight_service.services.logger import get_logger

# (thread_id, opens that thread's batch stream)
StreamSource = Tuple[str, Callable[[], AsyncIterator[List[ParsedMessage]]]]


class ThreadProcessor:
    """Turns a user's email threads into persisted, deduplicated insights"""

    def __init__(
        self,
        content_client,
        insight_store,
        user_id: str,
        user_emails: Sequence[str],
        deduplicator: Optional[Deduplicator] = None,
        completion: Optional[CompletionFn] = None,
        model: Optional[str] = None,
        max_concurrent_ai_requests: Optional[int] = None,
        max_concurrent_thread_requests: Optional[int] = None,
        max_threads_in_memory: Optional[int] = None,
        max_messages_per_batch: Optional[int] = None,
        max_chars_per_prompt: Optional[int] = None,
        existing_insights_limit: Optional[int] = None
    ):
        """
        Args:
            content_client: Email content client (see EmailContentClient)
            insight_store: Object exposing get_user_insights and create_insights
            user_id: Owner of the generated insights
            user_emails: The user's own addresses, used for the prompt and participant attribution
            deduplicator: Defaults to an exact-match deduplicator; always called with the email config
            completion: Structured completion function (default: GPT)
            model: AI model id (default: settings.INSIGHT_MODEL)
        """
        self.content_client = content_client
        self.insight_store = insight_store
        self.user_id = user_id
        self.user_emails = list(user_emails)
        self.log = get_logger(userId=user_id)
        self.deduplicator = deduplicator or InsightDeduplicator()

        self.max_concurrent_ai_requests = max_concurrent_ai_requests or settings.MAX_CONCURRENT_AI_REQUESTS
        self.max_concurrent_thread_requests = max_concurrent_thread_requests or settings.MAX_CONCURRENT_THREAD_REQUESTS
        self.max_threads_in_memory = max_threads_in_memory or settings.MAX_THREADS_IN_MEMORY
        self.max_chars_per_prompt = max_chars_per_prompt or settings.MAX_CHARS_PER_EMAIL_PROMPT
        self.existing_insights_limit = existing_insights_limit or settings.EXISTING_INSIGHTS_LIMIT

        self.fetch_semaphore = asyncio.Semaphore(self.max_concurrent_thread_requests)
        self.ai_semaphore = asyncio.Semaphore(self.max_concurrent_ai_requests)

        self.fetcher = StreamingThreadFetcher(
            content_client,
            self.fetch_semaphore,
            batch_size=max_messages_per_batch or settings.MAX_MESSAGES_PER_THREAD_BATCH
        )
        self.system_prompt = build_email_insights_system_prompt(self.user_emails)
        self.generator = InsightGenerator(
            self.ai_semaphore,
            self.system_prompt,
            user_id,
            self.user_emails,
            completion=completion,
            model=model
        )

    async def process_threads_streaming_with_deduplication(self, thread_ids: List[str]) -> List[str]:
        """
        Generate, deduplicate and persist insights for whole threads
        Args:
            thread_ids: Threads to read in full
        Returns:
            Ids of the persisted insights
        Raises:
            ThreadFetchError: a thread could not be read
            InsightStoreError: existing insights could not be read or new ones written
        """
        all_records: List[UserInsightRecord] = []
        for i in range(0, len(thread_ids), self.max_threads_in_memory):
            group = thread_ids[i:i + self.max_threads_in_memory]
            self.log.debug('Processing thread group with deduplication', threadIds=group)
            sources = [(thread_id, self._thread_stream_opener(thread_id)) for thread_id in group]
            all_records.extend(await self._process_group(sources, use_message_ids=False))

        return await self._deduplicate_and_persist(all_records, 'thread')

    async def process_messages_streaming_with_deduplication(
        self,
        message_thread_ids: List[Tuple[str, str]]
    ) -> List[str]:
        """
        Generate, deduplicate and persist insights for specific messages
        Args:
            message_thread_ids: (message_id, thread_id) pairs
        Returns:
            Ids of the persisted insights
        Raises:
            ThreadFetchError: a message batch could not be read
            InsightStoreError: existing insights could not be read or new ones written
        """
        # Group by thread, keeping first-seen thread order
        thread_messages: Dict[str, List[str]] = {}
        for message_id, thread_id in message_thread_ids:
            thread_messages.setdefault(thread_id, []).append(message_id)

        grouped = list(thread_messages.items())
        all_records: List[UserInsightRecord] = []
        for i in range(0, len(grouped), self.max_threads_in_memory):
            group = grouped[i:i + self.max_threads_in_memory]
            self.log.debug('Processing messages group with deduplication', threadIds=[t for t, _ in group])
            sources = [
                (thread_id, self._messages_stream_opener(message_ids))
                for thread_id, message_ids in group
            ]
            all_records.extend(await self._process_group(sources, use_message_ids=True))

        return await self._deduplicate_and_persist(all_records, 'message')

    def _thread_stream_opener(self, thread_id: str):
        return lambda: self.fetcher.fetch_thread_stream(thread_id)

    def _messages_stream_opener(self, message_ids: List[str]):
        return lambda: self.fetcher.fetch_messages_stream(message_ids)

    async def _process_group(self, sources: List[StreamSource], use_message_ids: bool) -> List[UserInsightRecord]:
        """
        Drain a group's streams in order through one chunker, overlapping AI calls
        Returns:
            Records from every chunk that produced insights (order across chunks not guaranteed)
        """
        chunker = MessageChunker(self.max_chars_per_prompt)
        in_flight: Set[asyncio.Task] = set()
        records: List[UserInsightRecord] = []

        def collect(task: asyncio.Task):
            result = task.result()
            if result:
                records.extend(result)

        async def submit(chunk: ChunkReady, label: str):
            self.log.debug(label, chunkSize=len(chunk.content), threadIds=sorted(chunk.thread_ids))
            in_flight.add(await self.generator.spawn(chunk, use_message_ids))

            # Wait for exactly one task when the AI bound is reached
            if len(in_flight) >= self.max_concurrent_ai_requests:
                done, _ = await asyncio.wait(in_flight, return_when=asyncio.FIRST_COMPLETED)
                finished = done.pop()
                in_flight.discard(finished)
                collect(finished)

        try:
            for thread_id, open_stream in sources:
                self.log.debug('Fetching messages for thread', threadId=thread_id)
                async with aclosing(open_stream()) as stream:
                    async for messages in stream:
                        self.log.debug('Fetched message batch', threadId=thread_id, batchSize=len(messages))
                        for message in messages:
                            ready = chunker.try_add_message(thread_id, message)
                            if ready is not None:
                                await submit(ready, 'Emitting chunk for AI processing')

            final_chunk = chunker.finalize()
            if final_chunk is not None:
                await submit(final_chunk, 'Emitting final chunk for AI processing')

            while in_flight:
                done, _ = await asyncio.wait(in_flight, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    in_flight.discard(task)
                    collect(task)
        except BaseException as error:
            if isinstance(error, Exception):
                self.log.error(f'❌ Abandoning thread group: {str(error)}', inFlight=len(in_flight))
            # Cancelled tasks release their AI permits on completion
            for task in in_flight:
                task.cancel()
            if in_flight:
                await asyncio.gather(*in_flight, return_exceptions=True)
            raise

        return records

    async def _deduplicate_and_persist(self, records: List[UserInsightRecord], kind: str) -> List[str]:
        try:
            existing = await self.insight_store.get_user_insights(
                self.user_id, generated=True, limit=self.existing_insights_limit, offset=0
            )
        except Exception as error:
            raise InsightStoreError('Failed to fetch existing insights for deduplication') from error

        original_count = len(records)
        if records:
            try:
                deduplicated = await self.deduplicator.deduplicate_insights(
                    records, existing, EMAIL_DEDUPLICATION_CONFIG
                )
            except Exception as error:
                raise InsightPipelineError(f'Failed to deduplicate {kind} insights') from error
        else:
            deduplicated = records

        self.log.info(
            f'{kind.capitalize()} insight deduplication completed',
            original_count=original_count,
            existing_count=len(existing),
            deduplicated_count=len(deduplicated)
        )

        if not deduplicated:
            self.log.debug('No insights to create after deduplication')
            return []

        self.log.debug(f'Creating {len(deduplicated)} deduplicated insights in DB')
        try:
            return await self.insight_store.create_insights(deduplicated, self.user_id)
        except Exception as error:
            raise InsightStoreError(f'Failed to create {kind} insights') from error


def new_thread_processor(user_id: str, user_emails: Sequence[str], **kwargs) -> ThreadProcessor:
    """
    Build a processor wired to the email service, Supabase and OpenAI
    Args:
        user_id: Owner of the generated insights
        user_emails: The user's own addresses
        **kwargs: Passed through to ThreadProcessor (limits, model, ...)
    """
    return ThreadProcessor(
        EmailContentClient(),
        SupabaseInsightStore(),
        user_id,
        user_emails,
        **kwargs
    )
