"""
Insight Models

Pydantic models shared by the insight pipeline:
- Source records (parsed email messages) read from the email service
- Chunks of formatted messages sent to the AI
- Raw insight candidates returned by the AI (plain or email-evidenced)
- Canonical user insight records persisted to the insight store
"""

from datetime import datetime
from enum import Enum
from typing import Dict, Generic, List, Literal, Optional, Set, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field

EMAIL_INSIGHT_PROVIDER_SOURCE_NAME = 'email'


class EmailContact(BaseModel):
    """An email participant (address plus optional display name)"""
    model_config = ConfigDict(frozen=True)

    email: str
    name: Optional[str] = None


class EmailLabel(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str


class ParsedMessage(BaseModel):
    """
    A parsed email message as returned by the email service.

    Read-only: the pipeline never mutates messages, it only formats them
    into chunks and looks them up again when reconciling provenance.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    db_id: str
    thread_db_id: Optional[str] = None
    internal_date_ts: Optional[datetime] = None
    subject: Optional[str] = None
    from_: Optional[EmailContact] = Field(default=None, alias='from')
    to: List[EmailContact] = Field(default_factory=list)
    cc: List[EmailContact] = Field(default_factory=list)
    bcc: List[EmailContact] = Field(default_factory=list)
    labels: List[EmailLabel] = Field(default_factory=list)
    body_parsed: Optional[str] = None

    def participants(self) -> List[EmailContact]:
        """All from/to/cc/bcc contacts on the message"""
        contacts = [self.from_] if self.from_ else []
        return contacts + list(self.to) + list(self.cc) + list(self.bcc)


class ChunkReady(BaseModel):
    """A finished chunk of formatted messages, ready for one AI call"""
    model_config = ConfigDict(frozen=True)

    content: str
    thread_ids: Set[str] = Field(default_factory=set)
    message_ids: Set[str] = Field(default_factory=set)
    span_start: Optional[datetime] = None
    span_end: Optional[datetime] = None
    messages: List[ParsedMessage] = Field(default_factory=list)

    def messages_by_id(self) -> Dict[str, ParsedMessage]:
        """Lookup of this chunk's own messages by id"""
        return {message.db_id: message for message in self.messages}


class InsightType(str, Enum):
    """Classification of a generated insight"""
    ACTIONABLE = 'actionable'
    INFORMATIONAL = 'informational'
    WARNING = 'warning'
    TREND = 'trend'


def parse_insight_type(type_str: Optional[str]) -> Optional[InsightType]:
    """Parse a free-form type string from the AI; unknown values map to None"""
    if not type_str:
        return None
    try:
        return InsightType(type_str.strip().lower())
    except ValueError:
        return None


class EmailSourceLocation(BaseModel):
    """Which email threads/messages evidence an insight"""
    model_config = ConfigDict(populate_by_name=True)

    type: Literal['email'] = 'email'
    thread_ids: List[str] = Field(default_factory=list, alias='threadIds')
    message_ids: List[str] = Field(default_factory=list, alias='messageIds')
    email_addresses: Optional[List[str]] = Field(default=None, alias='emailAddresses')


# Only email evidence exists today; widen this union when other sources get locations
SourceLocation = EmailSourceLocation


class Insight(BaseModel):
    """Insight with no source location (used by log-style consumers)"""
    model_config = ConfigDict(extra='forbid')

    insight_content: str
    earliest_log_timestamp: str
    latest_log_timestamp: str
    confidence: int
    insight_type: str  # "actionable", "informational", "warning", "trend"
    relevance_keywords: List[str] = Field(default_factory=list)


class EmailInsight(BaseModel):
    """Insight evidenced by specific email threads and messages"""
    model_config = ConfigDict(extra='forbid')

    # False when the model could not attribute the insight to messages
    success: bool = True
    insight_content: str
    thread_ids: List[str] = Field(default_factory=list)
    message_ids: List[str] = Field(default_factory=list)
    confidence: int
    insight_type: str  # "actionable", "informational", "warning", "trend"
    relevance_keywords: List[str] = Field(default_factory=list)


RawInsightCandidate = Union[Insight, EmailInsight]
T = TypeVar('T', bound=BaseModel)


class StructuredInsights(BaseModel, Generic[T]):
    """A list of insights generated from the provided context"""
    model_config = ConfigDict(extra='forbid')

    insights: List[T]


EmailInsights = StructuredInsights[EmailInsight]


# Capability helpers shared by both candidate variants

def insight_content(insight: RawInsightCandidate) -> str:
    return insight.insight_content


def insight_source_location(insight: RawInsightCandidate) -> Optional[SourceLocation]:
    """Evidence named by the candidate itself, if any"""
    if isinstance(insight, EmailInsight) and insight.success:
        return EmailSourceLocation(
            thread_ids=list(insight.thread_ids),
            message_ids=list(insight.message_ids),
        )
    return None


def insight_confidence(insight: RawInsightCandidate) -> int:
    return insight.confidence


def insight_kind(insight: RawInsightCandidate) -> Optional[InsightType]:
    return parse_insight_type(insight.insight_type)


def insight_keywords(insight: RawInsightCandidate) -> Optional[List[str]]:
    return list(insight.relevance_keywords)


class UserInsightRecord(BaseModel):
    """Canonical insight about a user; ``id`` is assigned on persistence"""

    id: Optional[str] = None
    user_id: str
    content: str
    confidence: Optional[int] = None
    source: str
    source_location: Optional[SourceLocation] = None
    span_start: Optional[datetime] = None
    span_end: Optional[datetime] = None
    generated: bool = True
    created_at: datetime
    updated_at: datetime
    insight_type: Optional[InsightType] = None
    relevance_keywords: Optional[List[str]] = None


class DeduplicationConfig(BaseModel):
    """Tuning knobs handed to the deduplicator"""

    # Enable exact content hash matching
    exact_match_enabled: bool = True
    # Minimum similarity threshold for semantic comparison (0.0-1.0)
    semantic_similarity_threshold: float = 0.85
    # Maximum edit distance for fuzzy matching
    edit_distance_threshold: int = 10
    # Weight for source location overlap in similarity calculation
    source_location_weight: float = 0.3
    # Weight for confidence score difference in similarity calculation
    confidence_weight: float = 0.2
    # Enable LLM-based final decision for edge cases
    llm_fallback_enabled: bool = True
