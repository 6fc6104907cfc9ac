"""
User Insights Database Queries

Read and bulk-insert operations for the user_insights table
"""

from typing import Any, Dict, List, Optional

from insight_service.db.connection import get_client
from insight_service.models.insight import UserInsightRecord
from insight_service.services.logger import logger

TABLE = 'user_insights'


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def record_to_row(record: UserInsightRecord, user_id: str) -> Dict[str, Any]:
    """
    Convert a record to a table row (ids are assigned by the database)
    Args:
        record: Insight record
        user_id: Owner; overrides the record's user_id
    Returns:
        Row dict ready for insert
    """
    return {
        'user_id': user_id,
        'content': record.content,
        'confidence': record.confidence,
        'source': record.source,
        'source_location': record.source_location.model_dump(by_alias=True) if record.source_location else None,
        'span_start': _iso(record.span_start),
        'span_end': _iso(record.span_end),
        'generated': record.generated,
        'created_at': _iso(record.created_at),
        'updated_at': _iso(record.updated_at),
        'insight_type': record.insight_type.value if record.insight_type else None,
        'relevance_keywords': record.relevance_keywords,
    }


def row_to_record(row: Dict[str, Any]) -> UserInsightRecord:
    """Convert a table row back into a record"""
    return UserInsightRecord.model_validate({
        **row,
        'id': str(row['id']) if row.get('id') is not None else None,
    })


async def get_user_insights(
    user_id: str,
    generated: bool = True,
    limit: int = 1000,
    offset: int = 0
) -> List[UserInsightRecord]:
    """
    Get a user's insights, newest first
    Args:
        user_id: User UUID
        generated: Only AI-generated (True) or only user-authored (False) insights
        limit: Maximum rows
        offset: Rows to skip
    Returns:
        List of records
    """
    response = (
        get_client().table(TABLE)
        .select('*')
        .eq('user_id', user_id)
        .eq('generated', generated)
        .order('created_at', desc=True)
        .range(offset, offset + limit - 1)
        .execute()
    )

    if hasattr(response, 'error') and response.error:
        raise Exception(f'Failed to get user insights: {response.error.message}')

    return [row_to_record(row) for row in (response.data or [])]


async def create_insights(records: List[UserInsightRecord], user_id: str) -> List[str]:
    """
    Bulk insert insights
    Args:
        records: Records to insert (ids ignored)
        user_id: Owner of the records
    Returns:
        Assigned ids, in insert order
    """
    if not records:
        return []

    response = get_client().table(TABLE).insert(
        [record_to_row(record, user_id) for record in records]
    ).execute()

    if hasattr(response, 'error') and response.error:
        raise Exception(f'Failed to create insights: {response.error.message}')

    ids = [str(row['id']) for row in (response.data or [])]
    logger.info(f'💾 Created {len(ids)} insights', userId=user_id)
    return ids


class SupabaseInsightStore:
    """Insight store collaborator backed by the user_insights table"""

    async def get_user_insights(
        self,
        user_id: str,
        generated: bool = True,
        limit: int = 1000,
        offset: int = 0
    ) -> List[UserInsightRecord]:
        return await get_user_insights(user_id, generated, limit, offset)

    async def create_insights(self, records: List[UserInsightRecord], user_id: str) -> List[str]:
        return await create_insights(records, user_id)
