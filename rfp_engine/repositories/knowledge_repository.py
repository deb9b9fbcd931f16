from typing import List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rfp_engine.core.exceptions import DatabaseError
from rfp_engine.database.models import ContentLibraryItem, KnowledgeChunk
from rfp_engine.utils.logging import get_logger

LOGGER = get_logger(__name__)


def _to_similarity(distance) -> float:
    """pgvector cosine distance (0..2) to a similarity clipped to 0..1."""
    return min(1.0, max(0.0, 1.0 - float(distance)))


class KnowledgeRepository:
    """Vector index over knowledge-base chunks and the curated content library.

    Every query is scoped to the organization namespace and optionally to a
    subset of knowledge bases.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def query_chunks(
        self,
        org_id: UUID,
        embedding: List[float],
        top_k: int,
        knowledge_base_ids: Optional[Sequence[UUID]] = None,
    ) -> List[Tuple[KnowledgeChunk, float]]:
        """Top-k chunks by cosine similarity, most similar first."""
        distance = KnowledgeChunk.embedding.cosine_distance(embedding)
        query = select(KnowledgeChunk, distance.label("distance")).where(KnowledgeChunk.org_id == org_id)
        if knowledge_base_ids:
            query = query.where(KnowledgeChunk.knowledge_base_id.in_(list(knowledge_base_ids)))
        query = query.order_by(distance).limit(top_k)

        try:
            result = await self.session.execute(query)
            return [(row[0], _to_similarity(row[1])) for row in result.all()]
        except SQLAlchemyError as e:
            LOGGER.error(f"Chunk retrieval failed for org {org_id}: {e}", exc_info=True)
            raise DatabaseError(f"Chunk retrieval failed for org {org_id}", e) from e

    async def query_content_library(
        self,
        org_id: UUID,
        embedding: List[float],
        limit: int = 1,
        knowledge_base_ids: Optional[Sequence[UUID]] = None,
    ) -> List[Tuple[ContentLibraryItem, float]]:
        """Closest curated Q&A pairs, most similar first."""
        distance = ContentLibraryItem.embedding.cosine_distance(embedding)
        query = select(ContentLibraryItem, distance.label("distance")).where(ContentLibraryItem.org_id == org_id)
        if knowledge_base_ids:
            query = query.where(ContentLibraryItem.knowledge_base_id.in_(list(knowledge_base_ids)))
        query = query.order_by(distance).limit(limit)

        try:
            result = await self.session.execute(query)
            return [(row[0], _to_similarity(row[1])) for row in result.all()]
        except SQLAlchemyError as e:
            LOGGER.error(f"Content library lookup failed for org {org_id}: {e}", exc_info=True)
            raise DatabaseError(f"Content library lookup failed for org {org_id}", e) from e
