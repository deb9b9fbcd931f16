from typing import List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rfp_engine.core.exceptions import DatabaseError
from rfp_engine.database.models import Question
from rfp_engine.repositories.base_repository import BaseRepository


class QuestionRepository(BaseRepository[Question]):
    """Data access for RFP questions and their cluster assignment."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, Question)

    async def list_by_project(
        self,
        project_id: UUID,
        opportunity_id: Optional[UUID] = None,
    ) -> List[Question]:
        """Questions of a project in stable clustering order (creation time, then id)."""
        try:
            query = select(Question).where(Question.project_id == project_id)
            if opportunity_id:
                query = query.where(Question.opportunity_id == opportunity_id)
            query = query.order_by(Question.created_at, Question.id)
            result = await self.session.execute(query)
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            self.logger.error(f"Error listing questions for project {project_id}: {e}", exc_info=True)
            raise DatabaseError(f"Failed to list questions for project {project_id}", e) from e

    async def get_in_project(self, project_id: UUID, question_id: UUID) -> Optional[Question]:
        try:
            result = await self.session.execute(
                select(Question).where(Question.id == question_id, Question.project_id == project_id)
            )
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading question {question_id}: {e}", exc_info=True)
            raise DatabaseError(f"Failed to load question {question_id}", e) from e

    async def list_by_cluster(self, cluster_id: UUID) -> List[Question]:
        try:
            result = await self.session.execute(
                select(Question).where(Question.cluster_id == cluster_id).order_by(Question.created_at, Question.id)
            )
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            self.logger.error(f"Error listing questions of cluster {cluster_id}: {e}", exc_info=True)
            raise DatabaseError(f"Failed to list questions of cluster {cluster_id}", e) from e

    async def list_by_clusters(self, cluster_ids: Sequence[UUID]) -> List[Question]:
        """Questions assigned to any of the given clusters, in clustering order."""
        ids = list(cluster_ids)
        if not ids:
            return []
        try:
            result = await self.session.execute(
                select(Question).where(Question.cluster_id.in_(ids)).order_by(Question.created_at, Question.id)
            )
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            self.logger.error(f"Error listing questions of {len(ids)} clusters: {e}", exc_info=True)
            raise DatabaseError("Failed to list questions of clusters", e) from e

    async def clear_cluster_assignments(self, project_id: UUID, question_ids: Optional[Sequence[UUID]] = None) -> None:
        """Reset cluster fields for the project (or only the given questions)."""
        try:
            stmt = update(Question).where(Question.project_id == project_id)
            if question_ids is not None:
                stmt = stmt.where(Question.id.in_(list(question_ids)))
            await self.session.execute(
                stmt.values(
                    cluster_id=None,
                    is_cluster_master=False,
                    master_question_id=None,
                    similarity_to_master=None,
                )
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error clearing cluster assignments for project {project_id}: {e}", exc_info=True)
            raise DatabaseError(f"Failed to clear cluster assignments for project {project_id}", e) from e

    async def find_similar(
        self,
        project_id: UUID,
        embedding: List[float],
        exclude_question_id: UUID,
        min_similarity: float,
        limit: int,
    ) -> List[Tuple[Question, float]]:
        """Nearest questions in the project by cosine similarity, most similar first.

        Questions without an embedding are ignored.
        """
        distance = Question.embedding.cosine_distance(embedding)
        try:
            query = (
                select(Question, distance.label("distance"))
                .where(
                    Question.project_id == project_id,
                    Question.id != exclude_question_id,
                    Question.embedding.is_not(None),
                    distance <= 1.0 - min_similarity,
                )
                .order_by(distance)
                .limit(limit)
            )
            result = await self.session.execute(query)
            return [(row[0], max(0.0, 1.0 - float(row[1]))) for row in result.all()]
        except SQLAlchemyError as e:
            self.logger.error(f"Error finding similar questions to {exclude_question_id}: {e}", exc_info=True)
            raise DatabaseError(f"Failed to find similar questions to {exclude_question_id}", e) from e
