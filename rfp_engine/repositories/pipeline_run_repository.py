from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rfp_engine.core.exceptions import DatabaseError
from rfp_engine.database.models import PipelineRun
from rfp_engine.repositories.base_repository import BaseRepository
from rfp_engine.schemas.pipeline import PipelineStage

TERMINAL_STAGES = (PipelineStage.DONE.value, PipelineStage.FAILED.value)


class PipelineRunRepository(BaseRepository[PipelineRun]):
    """Data access for answer-generation run records."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, PipelineRun)

    async def get_latest(self, project_id: UUID) -> Optional[PipelineRun]:
        try:
            result = await self.session.execute(
                select(PipelineRun)
                .where(PipelineRun.project_id == project_id)
                .order_by(PipelineRun.started_at.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading latest run for project {project_id}: {e}", exc_info=True)
            raise DatabaseError(f"Failed to load latest run for project {project_id}", e) from e

    async def get_for_project(self, project_id: UUID, run_id: UUID) -> Optional[PipelineRun]:
        try:
            result = await self.session.execute(
                select(PipelineRun).where(PipelineRun.id == run_id, PipelineRun.project_id == project_id)
            )
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading run {run_id}: {e}", exc_info=True)
            raise DatabaseError(f"Failed to load run {run_id}", e) from e

    async def apply_progress(self, run_id: UUID, changes: Dict[str, Any]) -> Optional[PipelineRun]:
        """Apply a progress update unless the run is already terminal.

        Entering a terminal stage stamps ``completed_at``.
        """
        run = await self.get_by_id(run_id)
        if run is None:
            return None
        if run.stage in TERMINAL_STAGES:
            self.logger.info(
                "Ignoring update to terminal run",
                extra={"run_id": str(run_id), "stage": run.stage},
            )
            return run

        for key, value in changes.items():
            if hasattr(run, key):
                setattr(run, key, value)

        if run.stage in TERMINAL_STAGES and run.completed_at is None:
            run.completed_at = datetime.now(timezone.utc)

        try:
            await self.session.flush()
        except SQLAlchemyError as e:
            self.logger.error(f"Error updating run {run_id}: {e}", exc_info=True)
            raise DatabaseError(f"Failed to update run {run_id}", e) from e
        return run
