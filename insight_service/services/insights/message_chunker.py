"""
Message Chunker

Packs a stream of parsed email messages into size-bounded prompt chunks.
Each chunk remembers which threads and messages it holds, the time span they
cover, and the messages themselves so citations can be resolved later.
"""

from datetime import datetime
from typing import List, Optional, Set

from insight_service.config import settings
from insight_service.models.insight import ChunkReady, EmailContact, ParsedMessage
from insight_service.services.logger import logger

# Invisible code points stripped from bodies (inclusive ranges)
_INVISIBLE_RANGES = [
    (0x200B, 0x200D),  # zero-width space, non-joiner, joiner
    (0x2060, 0x2060),  # word joiner
    (0xFEFF, 0xFEFF),  # zero-width no-break space (BOM)
    (0x200E, 0x200F),  # left-to-right / right-to-left marks
    (0x202A, 0x202E),  # directional embeddings and overrides
    (0x2066, 0x2069),  # directional isolates
    (0x00AD, 0x00AD),  # soft hyphen
    (0x034F, 0x034F),  # combining grapheme joiner
    (0x061C, 0x061C),  # arabic letter mark
    (0x180E, 0x180E),  # mongolian vowel separator
    (0x2028, 0x2029),  # line and paragraph separators
    (0xFE00, 0xFE0F),  # variation selectors 1-16
    (0xE0100, 0xE01EF),  # variation selectors 17-256
]
_STRIP_TABLE = {cp: None for start, end in _INVISIBLE_RANGES for cp in range(start, end + 1)}


def clean_text(text: str) -> str:
    """
    Strip invisible Unicode control characters and collapse whitespace
    Args:
        text: Raw message body
    Returns:
        Single-line cleaned text
    """
    return ' '.join(text.translate(_STRIP_TABLE).split())


def _format_contacts(contacts: List[EmailContact]) -> str:
    return ', '.join(f"{c.name or ''} <{c.email}>" for c in contacts)


def format_message(thread_id: str, message: ParsedMessage, max_chars: int) -> str:
    """
    Render one message as prompt text
    Args:
        thread_id: Thread the message belongs to
        message: Parsed message
        max_chars: Chunk budget; bodies over half of it are truncated
    Returns:
        Formatted message block
    """
    lines = [
        '---',
        f'Thread id: {thread_id}',
        f'Message id: {message.db_id}',
    ]

    if message.subject:
        lines.append(f'Subject: {message.subject}')
    if message.from_:
        lines.append(f"From: {message.from_.name or ''} <{message.from_.email}>")
    if message.to:
        lines.append(f'To: {_format_contacts(message.to)}')
    if message.cc:
        lines.append(f'CC: {_format_contacts(message.cc)}')
    if message.bcc:
        lines.append(f'BCC: {_format_contacts(message.bcc)}')
    if message.labels:
        lines.append(f"Labels: {', '.join(label.name for label in message.labels)}")

    if message.body_parsed is not None:
        body = clean_text(message.body_parsed)
        body_limit = max_chars // 2
        if len(body) > body_limit:
            body = f'{body[:body_limit]}... [truncated, original length: {len(body)} chars]'
        lines.append(f'Body: {body}')
    else:
        logger.warning('⚠️  No body found for message', messageId=message.db_id, threadId=thread_id)

    return '\n'.join(lines) + '\n'


class MessageChunker:
    """
    Accumulates formatted messages until the next one would overflow the budget.

    Owned by a single orchestrating coroutine; only the finished ``ChunkReady``
    objects it emits are shared with AI tasks.
    """

    def __init__(self, max_size: Optional[int] = None):
        self.max_size = max_size or settings.MAX_CHARS_PER_EMAIL_PROMPT
        self._reset()

    def _reset(self):
        self.current_chunk: List[str] = []
        self.current_size = 0
        self.current_thread_ids: Set[str] = set()
        self.current_message_ids: Set[str] = set()
        self.current_messages: List[ParsedMessage] = []
        self.earliest_date: Optional[datetime] = None
        self.latest_date: Optional[datetime] = None

    def _take(self) -> ChunkReady:
        chunk = ChunkReady(
            content=''.join(self.current_chunk),
            thread_ids=self.current_thread_ids,
            message_ids=self.current_message_ids,
            span_start=self.earliest_date,
            span_end=self.latest_date,
            messages=self.current_messages,
        )
        self._reset()
        return chunk

    def _append(self, thread_id: str, message: ParsedMessage, formatted: str):
        self.current_chunk.append(formatted)
        self.current_size += len(formatted)
        self.current_thread_ids.add(thread_id)
        self.current_message_ids.add(message.db_id)
        self.current_messages.append(message)

        # Untimestamped messages never move the span
        date = message.internal_date_ts
        if date is not None:
            self.earliest_date = date if self.earliest_date is None else min(self.earliest_date, date)
            self.latest_date = date if self.latest_date is None else max(self.latest_date, date)

    @property
    def is_empty(self) -> bool:
        return not self.current_chunk

    def try_add_message(self, thread_id: str, message: ParsedMessage) -> Optional[ChunkReady]:
        """
        Add a message, emitting the current chunk first if it would overflow
        Args:
            thread_id: Thread the message belongs to
            message: Parsed message
        Returns:
            The finished chunk when one was emitted, otherwise None
        """
        formatted = format_message(thread_id, message, self.max_size)

        ready = None
        # A single oversized message still gets its own chunk; messages are never split
        if self.current_size + len(formatted) > self.max_size and not self.is_empty:
            ready = self._take()

        self._append(thread_id, message, formatted)
        return ready

    def finalize(self) -> Optional[ChunkReady]:
        """Flush the pending partial chunk, if any"""
        if self.is_empty:
            return None
        return self._take()
