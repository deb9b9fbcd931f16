from datetime import datetime, timezone
from typing import Dict, Iterable, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rfp_engine.core.exceptions import DatabaseError
from rfp_engine.database.models import Answer
from rfp_engine.repositories.base_repository import BaseRepository


class AnswerRepository(BaseRepository[Answer]):
    """Data access for answers, keyed by question id."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, Answer)

    async def get_by_question_id(self, question_id: UUID) -> Optional[Answer]:
        try:
            result = await self.session.execute(select(Answer).where(Answer.question_id == question_id))
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading answer for question {question_id}: {e}", exc_info=True)
            raise DatabaseError(f"Failed to load answer for question {question_id}", e) from e

    async def get_by_question_ids(self, question_ids: Iterable[UUID]) -> Dict[UUID, Answer]:
        ids = list(question_ids)
        if not ids:
            return {}
        try:
            result = await self.session.execute(select(Answer).where(Answer.question_id.in_(ids)))
            return {answer.question_id: answer for answer in result.scalars().all()}
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading answers for {len(ids)} questions: {e}", exc_info=True)
            raise DatabaseError("Failed to load answers", e) from e

    async def upsert(self, question_id: UUID, project_id: UUID, **fields) -> Answer:
        """Create or replace the answer of a question. Flushes, does not commit."""
        try:
            answer = await self.get_by_question_id(question_id)
            if answer is None:
                answer = Answer(question_id=question_id, project_id=project_id, **fields)
                self.session.add(answer)
            else:
                for key, value in fields.items():
                    setattr(answer, key, value)
                answer.updated_at = datetime.now(timezone.utc)
            await self.session.flush()
            return answer
        except SQLAlchemyError as e:
            self.logger.error(f"Error saving answer for question {question_id}: {e}", exc_info=True)
            raise DatabaseError(f"Failed to save answer for question {question_id}", e) from e

    async def count_by_project(self, project_id: UUID) -> int:
        try:
            result = await self.session.execute(
                select(func.count()).select_from(Answer).where(Answer.project_id == project_id)
            )
            return result.scalar_one()
        except SQLAlchemyError as e:
            self.logger.error(f"Error counting answers for project {project_id}: {e}", exc_info=True)
            raise DatabaseError(f"Failed to count answers for project {project_id}", e) from e
