from typing import Iterable, List
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rfp_engine.core.exceptions import DatabaseError
from rfp_engine.database.models import QuestionCluster
from rfp_engine.repositories.base_repository import BaseRepository


class ClusterRepository(BaseRepository[QuestionCluster]):
    """Data access for question clusters."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, QuestionCluster)

    async def list_by_project(self, project_id: UUID) -> List[QuestionCluster]:
        """Clusters of a project, largest first."""
        try:
            result = await self.session.execute(
                select(QuestionCluster)
                .where(QuestionCluster.project_id == project_id)
                .order_by(QuestionCluster.question_count.desc(), QuestionCluster.created_at, QuestionCluster.id)
            )
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            self.logger.error(f"Error listing clusters for project {project_id}: {e}", exc_info=True)
            raise DatabaseError(f"Failed to list clusters for project {project_id}", e) from e

    async def get_by_ids(self, cluster_ids: Iterable[UUID]) -> List[QuestionCluster]:
        ids = list(cluster_ids)
        if not ids:
            return []
        try:
            result = await self.session.execute(select(QuestionCluster).where(QuestionCluster.id.in_(ids)))
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading {len(ids)} clusters: {e}", exc_info=True)
            raise DatabaseError("Failed to load clusters", e) from e

    async def delete_by_project(self, project_id: UUID) -> int:
        try:
            result = await self.session.execute(delete(QuestionCluster).where(QuestionCluster.project_id == project_id))
            return result.rowcount or 0
        except SQLAlchemyError as e:
            self.logger.error(f"Error deleting clusters for project {project_id}: {e}", exc_info=True)
            raise DatabaseError(f"Failed to delete clusters for project {project_id}", e) from e

    async def delete_by_ids(self, project_id: UUID, cluster_ids: Iterable[UUID]) -> int:
        """Delete the given clusters of a project. Member rows are detached by the caller."""
        ids = list(cluster_ids)
        if not ids:
            return 0
        try:
            result = await self.session.execute(
                delete(QuestionCluster).where(
                    QuestionCluster.project_id == project_id,
                    QuestionCluster.id.in_(ids),
                )
            )
            return result.rowcount or 0
        except SQLAlchemyError as e:
            self.logger.error(f"Error deleting {len(ids)} clusters for project {project_id}: {e}", exc_info=True)
            raise DatabaseError(f"Failed to delete clusters for project {project_id}", e) from e

    async def add_all(self, clusters: List[QuestionCluster]) -> None:
        try:
            self.session.add_all(clusters)
            await self.session.flush()
        except SQLAlchemyError as e:
            self.logger.error(f"Error saving {len(clusters)} clusters: {e}", exc_info=True)
            raise DatabaseError("Failed to save clusters", e) from e
