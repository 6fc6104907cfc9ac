"""
Provenance Reconciler

Turns raw AI insight candidates into canonical user insight records.

Many messages are packed into one prompt, so the chunk only knows a coarse
span and id set. When the model cites specific messages, the span and the
user's participating addresses are recomputed from exactly those messages.
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Tuple

from insight_service.models.insight import (
    EmailSourceLocation,
    ParsedMessage,
    RawInsightCandidate,
    SourceLocation,
    UserInsightRecord,
    insight_confidence,
    insight_content,
    insight_keywords,
    insight_kind,
    insight_source_location,
)
from insight_service.services.logger import logger

Span = Tuple[Optional[datetime], Optional[datetime]]


def validate_confidence_score(score: int) -> Optional[int]:
    """Keep confidence only when it is an integer in 1-5; never clamp"""
    if isinstance(score, int) and not isinstance(score, bool) and 1 <= score <= 5:
        return score
    logger.warning(f'⚠️  Invalid confidence score received from LLM: {score}. Expected 1-5, setting to None')
    return None


def calculate_insight_span_dates(
    insight: RawInsightCandidate,
    messages_by_id: Optional[Dict[str, ParsedMessage]],
    fallback_span_start: Optional[datetime],
    fallback_span_end: Optional[datetime]
) -> Span:
    """
    Span of the messages the insight actually cites
    Args:
        insight: Raw candidate
        messages_by_id: The chunk's own messages
        fallback_span_start: Chunk-level span start
        fallback_span_end: Chunk-level span end
    Returns:
        (start, end) of the cited timestamped messages, or the fallback span
        when none of the cited ids resolve to a timestamped message
    """
    location = insight_source_location(insight)
    if location is None or not messages_by_id:
        return fallback_span_start, fallback_span_end

    dates = [
        messages_by_id[message_id].internal_date_ts
        for message_id in location.message_ids
        if message_id in messages_by_id and messages_by_id[message_id].internal_date_ts is not None
    ]
    if not dates:
        return fallback_span_start, fallback_span_end
    return min(dates), max(dates)


def calculate_user_email_addresses(
    insight: RawInsightCandidate,
    messages_by_id: Optional[Dict[str, ParsedMessage]],
    user_emails: Sequence[str]
) -> Optional[List[str]]:
    """
    The user's own addresses appearing on the messages the insight cites
    Returns:
        Sorted, deduplicated addresses, or None when nothing matched
    """
    location = insight_source_location(insight)
    if location is None or not messages_by_id:
        return None

    known = set(user_emails)
    found = set()
    for message_id in location.message_ids:
        message = messages_by_id.get(message_id)
        if message is None:
            continue
        for contact in message.participants():
            if contact.email in known:
                found.add(contact.email)

    # Sorted for consistent ordering
    return sorted(found) or None


def into_insight_records(
    insights: Sequence[RawInsightCandidate],
    source: str,
    user_id: str,
    default_source_location: Optional[SourceLocation] = None,
    fallback_span_start: Optional[datetime] = None,
    fallback_span_end: Optional[datetime] = None,
    messages_by_id: Optional[Dict[str, ParsedMessage]] = None,
    user_emails: Optional[Sequence[str]] = None
) -> List[UserInsightRecord]:
    """
    Build one canonical record per candidate
    Args:
        insights: Raw candidates from one AI call
        source: Source name stored on every record
        user_id: Owner of the insights
        default_source_location: Chunk-level evidence used when a candidate names none
        fallback_span_start: Chunk-level span start
        fallback_span_end: Chunk-level span end
        messages_by_id: The chunk's own messages, for span and participant lookup
        user_emails: The user's known addresses; participants are only computed when given
    Returns:
        Records without ids, in candidate order
    """
    records = []
    for insight in insights:
        now = datetime.now(timezone.utc)

        source_location = insight_source_location(insight)
        if source_location is None and default_source_location is not None:
            source_location = default_source_location.model_copy(deep=True)

        span_start, span_end = calculate_insight_span_dates(
            insight, messages_by_id, fallback_span_start, fallback_span_end
        )

        if user_emails is not None and isinstance(source_location, EmailSourceLocation):
            source_location.email_addresses = calculate_user_email_addresses(
                insight, messages_by_id, user_emails
            )

        records.append(UserInsightRecord(
            id=None,
            user_id=user_id,
            content=insight_content(insight),
            confidence=validate_confidence_score(insight_confidence(insight)),
            source=source,
            source_location=source_location,
            span_start=span_start,
            span_end=span_end,
            generated=True,
            created_at=now,
            updated_at=now,
            insight_type=insight_kind(insight),
            relevance_keywords=insight_keywords(insight),
        ))

    return records
