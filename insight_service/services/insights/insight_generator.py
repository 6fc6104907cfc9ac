"""
Insight Generator

Runs one AI completion per chunk as an independently scheduled task so that
several chunks' calls overlap, bounded by the AI semaphore.
"""

import asyncio
from typing import Any, Awaitable, Callable, List, Optional, Sequence

from insight_service.config import settings
from insight_service.models.insight import (
    EMAIL_INSIGHT_PROVIDER_SOURCE_NAME,
    ChunkReady,
    EmailInsights,
    EmailSourceLocation,
    UserInsightRecord,
)
from insight_service.services.gpt_service import structured_completion
from insight_service.services.insights.provenance import into_insight_records
from insight_service.services.logger import logger

# (system_prompt, user_content, model, max_tokens, schema_name, json_schema) -> JSON value
CompletionFn = Callable[..., Awaitable[Any]]


async def generate_email_insights_from_prompt(
    system_prompt: str,
    prompt: str,
    completion: Optional[CompletionFn] = None,
    model: Optional[str] = None,
    max_tokens: Optional[int] = None
) -> EmailInsights:
    """
    Ask the AI for email insights about one chunk
    Args:
        system_prompt: Per-user system prompt
        prompt: Chunk content
        completion: Structured completion function (default: GPT)
        model: Model id (default: settings.INSIGHT_MODEL)
        max_tokens: Completion budget (default: settings.CHAT_COMPLETION_REQUEST_MAX_TOKENS)
    Returns:
        Validated insights (possibly empty)
    Raises:
        Any completion error, or pydantic.ValidationError when the response
        does not match the schema
    """
    completion = completion or structured_completion
    response = await completion(
        system_prompt=system_prompt,
        user_content=prompt,
        model=model or settings.INSIGHT_MODEL,
        max_tokens=max_tokens or settings.CHAT_COMPLETION_REQUEST_MAX_TOKENS,
        schema_name='Insights_Schema',
        json_schema=EmailInsights.model_json_schema()
    )

    if isinstance(response, str):
        insights = EmailInsights.model_validate_json(response)
    else:
        insights = EmailInsights.model_validate(response)

    logger.debug('email insight generation insights', count=len(insights.insights))
    return insights


class InsightGenerator:
    """Spawns per-chunk AI tasks that hold an AI permit for their lifetime"""

    def __init__(
        self,
        ai_semaphore: asyncio.Semaphore,
        system_prompt: str,
        user_id: str,
        user_emails: Sequence[str],
        completion: Optional[CompletionFn] = None,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None
    ):
        self.ai_semaphore = ai_semaphore
        self.system_prompt = system_prompt
        self.user_id = user_id
        self.user_emails = list(user_emails)
        self.completion = completion
        self.model = model
        self.max_tokens = max_tokens

    async def spawn(self, chunk: ChunkReady, use_message_ids: bool) -> asyncio.Task:
        """
        Acquire an AI permit, then schedule generation for the chunk
        Args:
            chunk: Finished chunk
            use_message_ids: Seed the default source location with the chunk's message ids
        Returns:
            Task resolving to a list of records, or None when nothing was generated
        """
        await self.ai_semaphore.acquire()
        try:
            task = asyncio.create_task(self._generate(chunk, use_message_ids))
        except BaseException:
            self.ai_semaphore.release()
            raise

        # Done callbacks also run for tasks cancelled before they start
        task.add_done_callback(lambda _: self.ai_semaphore.release())
        return task

    def default_source_location(self, chunk: ChunkReady, use_message_ids: bool) -> EmailSourceLocation:
        return EmailSourceLocation(
            thread_ids=sorted(chunk.thread_ids),
            message_ids=sorted(chunk.message_ids) if use_message_ids else [],
            email_addresses=None,  # filled per insight by the reconciler
        )

    async def _generate(self, chunk: ChunkReady, use_message_ids: bool) -> Optional[List[UserInsightRecord]]:
        logger.debug(
            'Spawning AI request for chunk',
            chunkSize=len(chunk.content),
            threadIds=sorted(chunk.thread_ids)
        )
        try:
            insights = await generate_email_insights_from_prompt(
                self.system_prompt,
                chunk.content,
                completion=self.completion,
                model=self.model,
                max_tokens=self.max_tokens
            )
        except Exception as error:
            logger.error(f'❌ Insight generation failed: {str(error)}', threadIds=sorted(chunk.thread_ids))
            return None

        if not insights.insights:
            logger.debug('AI returned no insights', threadIds=sorted(chunk.thread_ids))
            return None

        logger.debug(f'AI returned {len(insights.insights)} insights')
        try:
            return into_insight_records(
                insights.insights,
                EMAIL_INSIGHT_PROVIDER_SOURCE_NAME,
                self.user_id,
                default_source_location=self.default_source_location(chunk, use_message_ids),
                fallback_span_start=chunk.span_start,
                fallback_span_end=chunk.span_end,
                messages_by_id=chunk.messages_by_id(),
                user_emails=self.user_emails
            )
        except Exception as error:
            logger.error(f'❌ Failed to build insight records: {str(error)}', threadIds=sorted(chunk.thread_ids))
            return None
