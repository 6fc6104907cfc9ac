"""
Email Content Client

Reads parsed email messages from the email service:
- Paginated messages of one thread
- Batches of messages by id
"""

from typing import List, Dict, Any, Optional
from insight_service.config import settings
from insight_service.models.insight import ParsedMessage
from insight_service.services.http_retry import fetch_with_retry
from insight_service.services.logger import logger


class EmailContentClient:
    """Client for the email service's internal message API"""

    def __init__(self, base_url: Optional[str] = None, token: Optional[str] = None, timeout: int = 30000):
        """
        Initialize email content client

        Args:
            base_url: Email service URL (uses config if not provided)
            token: Internal API token (uses config if not provided)
            timeout: Request timeout in milliseconds
        """
        self.base_url = (base_url or settings.EMAIL_SERVICE_URL).rstrip('/')
        self.token = token or settings.EMAIL_SERVICE_TOKEN
        self.timeout = timeout

        if not self.base_url:
            logger.warning('⚠️  EMAIL_SERVICE_URL not configured - message fetches will fail')

    def _headers(self) -> Dict[str, str]:
        headers = {'Content-Type': 'application/json'}
        if self.token:
            headers['Authorization'] = f'Bearer {self.token}'
        return headers

    @staticmethod
    def _parse_messages(payload: Any) -> List[ParsedMessage]:
        # The service answers either a bare list or {"messages": [...]}
        items = payload.get('messages', []) if isinstance(payload, dict) else payload
        return [ParsedMessage.model_validate(item) for item in items or []]

    async def get_email_messages_by_thread_id(
        self,
        thread_id: str,
        offset: int,
        limit: int
    ) -> List[ParsedMessage]:
        """
        Fetch one page of a thread's messages, oldest first
        Args:
            thread_id: Thread UUID
            offset: Number of messages to skip
            limit: Page size
        Returns:
            Parsed messages (fewer than limit on the last page)
        """
        response = await fetch_with_retry(
            'GET',
            f'{self.base_url}/internal/threads/{thread_id}/messages',
            {
                'headers': self._headers(),
                'params': {'offset': offset, 'limit': limit}
            },
            timeout=self.timeout
        )

        if not response.is_success:
            raise Exception(f'Email service error {response.status_code} fetching thread {thread_id}: {response.text[:200]}')

        messages = self._parse_messages(response.json())
        logger.debug(f'  ✓ Fetched {len(messages)} messages', threadId=thread_id, offset=offset)
        return messages

    async def get_email_messages_by_id_batch(self, message_ids: List[str]) -> List[ParsedMessage]:
        """
        Fetch a batch of messages by id
        Args:
            message_ids: Message UUIDs (at most 100 per call)
        Returns:
            Parsed messages that were found
        """
        if not message_ids:
            return []

        response = await fetch_with_retry(
            'POST',
            f'{self.base_url}/internal/messages/batch',
            {
                'headers': self._headers(),
                'json': {'message_ids': message_ids}
            },
            timeout=self.timeout
        )

        if not response.is_success:
            raise Exception(f'Email service error {response.status_code} fetching message batch: {response.text[:200]}')

        messages = self._parse_messages(response.json())
        logger.debug(f'  ✓ Fetched {len(messages)}/{len(message_ids)} messages by id')
        return messages
