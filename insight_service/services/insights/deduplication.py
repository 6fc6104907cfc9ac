"""
Insight Deduplication

Filters newly generated insights against a user's existing ones. The
pipeline only depends on the ``Deduplicator`` protocol and hands every call
the config to apply; the shipped ``InsightDeduplicator`` implements the
exact-content layer (normalised content hash) and leaves similarity scoring
to richer implementations.
"""

import hashlib
from typing import List, Protocol, Set

from insight_service.models.insight import DeduplicationConfig, UserInsightRecord
from insight_service.services.logger import logger

# Email insights are noisier than log insights: looser threshold, larger edit distance
EMAIL_DEDUPLICATION_CONFIG = DeduplicationConfig(
    exact_match_enabled=True,
    semantic_similarity_threshold=0.80,
    edit_distance_threshold=15,
    source_location_weight=0.4,
    confidence_weight=0.1,
    llm_fallback_enabled=True,
)


class Deduplicator(Protocol):
    async def deduplicate_insights(
        self,
        new_insights: List[UserInsightRecord],
        existing_insights: List[UserInsightRecord],
        config: DeduplicationConfig
    ) -> List[UserInsightRecord]:
        ...


def normalize_content(content: str) -> str:
    """Lowercase, drop punctuation and collapse whitespace"""
    kept = ''.join(c for c in content.lower() if c.isalnum() or c.isspace())
    return ' '.join(kept.split())


def content_hash(content: str) -> str:
    return hashlib.sha256(normalize_content(content).encode('utf-8')).hexdigest()


class InsightDeduplicator:
    """Exact-match deduplicator keyed on normalised content"""

    async def deduplicate_insights(
        self,
        new_insights: List[UserInsightRecord],
        existing_insights: List[UserInsightRecord],
        config: DeduplicationConfig
    ) -> List[UserInsightRecord]:
        """
        Drop new insights whose normalised content matches an existing insight
        Args:
            new_insights: Freshly generated records
            existing_insights: Already persisted records for the same user
            config: Thresholds for this call; only exact_match_enabled applies here
        Returns:
            Kept records, in input order. Repeats inside new_insights are not collapsed.
        """
        if not config.exact_match_enabled:
            return list(new_insights)

        existing_hashes: Set[str] = {content_hash(insight.content) for insight in existing_insights}
        kept = []
        for insight in new_insights:
            if content_hash(insight.content) in existing_hashes:
                logger.debug('Insight filtered as duplicate', content=insight.content[:100])
                continue
            kept.append(insight)

        logger.info(
            f'🧹 Deduplicated insights: kept {len(kept)}/{len(new_insights)}',
            existing=len(existing_insights)
        )
        return kept
