"""
Pytest configuration and fixtures

Collaborators (email service, insight store, AI) are replaced by in-memory
stubs so the pipeline can be exercised without network access
"""

import re
import asyncio
import pytest
from datetime import datetime, timezone
from typing import Dict, List, Optional

from insight_service.models.insight import EmailContact, ParsedMessage, UserInsightRecord


def make_message(
    db_id: str,
    thread_id: str = 'thread1',
    day: Optional[int] = None,
    body: Optional[str] = 'Hello there',
    sender: str = 'alice@example.com',
    to: Optional[List[str]] = None,
    subject: Optional[str] = None
) -> ParsedMessage:
    """Build a parsed message; ``day`` is a day of January 2023"""
    return ParsedMessage(
        db_id=db_id,
        thread_db_id=thread_id,
        internal_date_ts=datetime(2023, 1, day, tzinfo=timezone.utc) if day else None,
        subject=subject,
        from_=EmailContact(email=sender, name=sender.split('@')[0].title()),
        to=[EmailContact(email=address) for address in (to or [])],
        body_parsed=body,
    )


def make_record(content: str, user_id: str = 'test-user-id-123') -> UserInsightRecord:
    now = datetime.now(timezone.utc)
    return UserInsightRecord(
        user_id=user_id,
        content=content,
        confidence=4,
        source='email',
        created_at=now,
        updated_at=now,
    )


class StubContentClient:
    """In-memory email service keyed by thread id"""

    def __init__(self, threads: Dict[str, List[ParsedMessage]], failing_threads=()):
        self.threads = threads
        self.failing_threads = set(failing_threads)
        self.thread_calls = []
        self.batch_calls = []

    async def get_email_messages_by_thread_id(self, thread_id: str, offset: int, limit: int) -> List[ParsedMessage]:
        self.thread_calls.append((thread_id, offset, limit))
        await asyncio.sleep(0)
        if thread_id in self.failing_threads:
            raise Exception(f'email service unavailable for {thread_id}')
        return self.threads.get(thread_id, [])[offset:offset + limit]

    async def get_email_messages_by_id_batch(self, message_ids: List[str]) -> List[ParsedMessage]:
        self.batch_calls.append(list(message_ids))
        await asyncio.sleep(0)
        by_id = {m.db_id: m for messages in self.threads.values() for m in messages}
        return [by_id[message_id] for message_id in message_ids if message_id in by_id]


class StubInsightStore:
    """In-memory insight store that assigns sequential ids"""

    def __init__(self, existing: Optional[List[UserInsightRecord]] = None):
        self.existing = existing or []
        self.created: List[UserInsightRecord] = []
        self.get_calls = []

    async def get_user_insights(self, user_id: str, generated: bool = True, limit: int = 1000, offset: int = 0):
        self.get_calls.append((user_id, generated, limit, offset))
        return list(self.existing)

    async def create_insights(self, records: List[UserInsightRecord], user_id: str) -> List[str]:
        start = len(self.created)
        self.created.extend(records)
        return [f'insight-{start + i}' for i in range(len(records))]


async def echo_completion(system_prompt, user_content, **kwargs):
    """AI stub: one insight per chunk citing every thread and message in it"""
    thread_ids = sorted(set(re.findall(r'^Thread id: (.+)$', user_content, re.MULTILINE)))
    message_ids = re.findall(r'^Message id: (.+)$', user_content, re.MULTILINE)
    return {
        'insights': [{
            'success': True,
            'insight_content': f"Discussed {', '.join(message_ids)}",
            'thread_ids': thread_ids,
            'message_ids': message_ids,
            'confidence': 4,
            'insight_type': 'informational',
            'relevance_keywords': ['email'],
        }]
    }


@pytest.fixture
def user_id():
    return 'test-user-id-123'


@pytest.fixture
def user_emails():
    return ['test@example.com']


@pytest.fixture
def two_threads():
    """Two threads of two timestamped messages each"""
    return {
        'thread1': [
            make_message('msg1', 'thread1', day=1, to=['test@example.com']),
            make_message('msg2', 'thread1', day=2),
        ],
        'thread2': [
            make_message('msg3', 'thread2', day=3),
            make_message('msg4', 'thread2', day=4, sender='test@example.com'),
        ],
    }


@pytest.fixture
def mock_openai_response():
    """Mock OpenAI API response"""
    return {
        'id': 'chatcmpl-test',
        'object': 'chat.completion',
        'created': 1234567890,
        'model': 'gpt-4.1',
        'choices': [{
            'index': 0,
            'message': {
                'role': 'assistant',
                'content': '{"insights": []}'
            },
            'finish_reason': 'stop'
        }],
        'usage': {
            'prompt_tokens': 10,
            'completion_tokens': 5,
            'total_tokens': 15
        }
    }
