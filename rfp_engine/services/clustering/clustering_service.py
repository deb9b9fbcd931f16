"""Clustering service: persists engine output and serves cluster lookups."""

from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from rfp_engine.core.config import settings
from rfp_engine.core.exceptions import ClusteringError, QuestionNotFoundError, ValidationError
from rfp_engine.database.models import Question, QuestionCluster
from rfp_engine.repositories.answer_repository import AnswerRepository
from rfp_engine.repositories.cluster_repository import ClusterRepository
from rfp_engine.repositories.organization_repository import OrganizationRepository
from rfp_engine.repositories.question_repository import QuestionRepository
from rfp_engine.schemas.clustering import (
    ClusterQuestionsResponse,
    FindSimilarQuestionsResponse,
    GetClustersResponse,
    QuestionClusterSchema,
    SimilarQuestion,
    SimilarQuestionLink,
    build_answer_preview,
)
from rfp_engine.schemas.pipeline import FailedQuestion
from rfp_engine.services.clustering.clustering_engine import (
    ClusterCandidate,
    ClusteringEngine,
    SeedMaster,
    cluster_id_for,
)
from rfp_engine.services.clustering.member_views import apply_member_views, group_by_cluster
from rfp_engine.services.embedding_service import EmbeddingService
from rfp_engine.utils.logging import get_logger

LOGGER = get_logger(__name__)

MAX_SIMILAR_LIMIT = 50


class ClusteringService:
    """Groups a project's questions into clusters and answers cluster queries."""

    def __init__(self, session: AsyncSession, embedding_service: Optional[EmbeddingService] = None):
        self.session = session
        self.question_repo = QuestionRepository(session)
        self.cluster_repo = ClusterRepository(session)
        self.answer_repo = AnswerRepository(session)
        self.org_repo = OrganizationRepository(session)
        self.embedding_service = embedding_service or EmbeddingService()

    async def cluster_questions(
        self,
        project_id: UUID,
        opportunity_id: Optional[UUID] = None,
        force_recluster: bool = False,
    ) -> ClusterQuestionsResponse:
        """Embed, cluster and persist the project's questions.

        Without ``force_recluster`` existing clusters are kept and only
        unassigned questions are placed, joining an existing master when
        close enough. With it, the clusters holding the selected questions are
        deleted and rebuilt from scratch, together with every question they
        held.

        Raises:
            ValidationError: If the project has no questions
            ClusteringError: If no question could be embedded
        """
        questions = await self.question_repo.list_by_project(project_id, opportunity_id)
        if not questions:
            raise ValidationError(f"No questions found for project {project_id}")

        thresholds = await self.org_repo.get_thresholds(questions[0].org_id)
        LOGGER.info(
            "Clustering project questions",
            extra={
                "project_id": str(project_id),
                "questions": len(questions),
                "force_recluster": force_recluster,
                "cluster_threshold": thresholds.cluster_threshold,
                "similar_threshold": thresholds.similar_threshold,
            },
        )

        try:
            if force_recluster:
                questions = await self._release_clusters(project_id, opportunity_id, questions)

            failed = await self._ensure_embeddings(questions)
            embedded = [q for q in questions if q.embedding is not None]
            if not embedded:
                raise ClusteringError(
                    f"Embedding failed for all {len(questions)} questions of project {project_id}"
                )

            if force_recluster:
                existing: Dict[UUID, QuestionCluster] = {}
            else:
                existing = {
                    cluster.id: cluster
                    for cluster in await self.cluster_repo.list_by_project(project_id)
                    if opportunity_id is None or cluster.opportunity_id == opportunity_id
                }

            by_id = {q.id: q for q in questions}
            seeds = self._seed_masters(existing, by_id)
            candidates = [
                ClusterCandidate(question_id=str(q.id), text=q.text, embedding=list(q.embedding))
                for q in embedded
                if q.cluster_id is None
            ]

            engine = ClusteringEngine(thresholds)
            result = engine.cluster(candidates, seeds)

            new_rows = [
                QuestionCluster(
                    id=cluster_id_for(project_id, cluster.master_question_id),
                    project_id=project_id,
                    opportunity_id=by_id[UUID(cluster.master_question_id)].opportunity_id,
                    master_question_id=UUID(cluster.master_question_id),
                    master_question_text=cluster.master_question_text,
                    members=[],
                    question_count=cluster.question_count,
                    avg_similarity=cluster.avg_similarity,
                )
                for cluster in result.new_clusters
            ]
            await self.cluster_repo.add_all(new_rows)

            cluster_of_master = {str(c.master_question_id): c for c in existing.values()}
            cluster_of_master.update({str(row.master_question_id): row for row in new_rows})

            for question_id, assignment in result.assignments.items():
                question = by_id[UUID(question_id)]
                question.cluster_id = cluster_of_master[assignment.master_question_id].id
                question.is_cluster_master = assignment.is_master
                question.master_question_id = UUID(assignment.master_question_id)
                question.similarity_to_master = assignment.similarity
            await self.session.flush()

            touched = list(new_rows) + [
                cluster_of_master[c.master_question_id] for c in result.clusters if c.seeded and c.members
            ]
            members = await self.question_repo.list_by_clusters([c.id for c in touched])
            answers = await self.answer_repo.get_by_question_ids(q.id for q in members)
            grouped = group_by_cluster(members)
            for cluster in touched:
                apply_member_views(cluster, grouped.get(cluster.id, []), answers)

            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        clusters = await self.cluster_repo.list_by_project(project_id)
        LOGGER.info(
            "Clustering persisted",
            extra={
                "project_id": str(project_id),
                "clusters_created": len(new_rows),
                "questions_processed": len(candidates),
                "embedding_failures": len(failed),
            },
        )
        return ClusterQuestionsResponse(
            clusters_created=len(new_rows),
            questions_processed=len(candidates),
            clusters=[QuestionClusterSchema.model_validate(c) for c in clusters],
            similar_links=[
                SimilarQuestionLink(
                    question_id=link.question_id,
                    similar_question_id=link.similar_question_id,
                    similarity=link.similarity,
                )
                for link in result.similar_links
            ],
            failed_questions=failed,
        )

    async def get_clusters(self, project_id: UUID) -> GetClustersResponse:
        clusters = await self.cluster_repo.list_by_project(project_id)
        return GetClustersResponse(
            clusters=[QuestionClusterSchema.model_validate(c) for c in clusters],
            total_clusters=len(clusters),
        )

    async def generation_order(self, project_id: UUID) -> List[str]:
        """Clustered question ids, masters first, each group in creation order.

        Questions left out of clustering (failed embedding) are not returned.
        """
        questions = await self.question_repo.list_by_project(project_id)
        masters = [str(q.id) for q in questions if q.cluster_id is not None and q.is_cluster_master]
        members = [str(q.id) for q in questions if q.cluster_id is not None and not q.is_cluster_master]
        return masters + members

    async def find_similar_questions(
        self,
        project_id: UUID,
        question_id: UUID,
        threshold: Optional[float] = None,
        limit: Optional[int] = None,
    ) -> FindSimilarQuestionsResponse:
        """Questions of the project most similar to the given one.

        ``threshold`` is clamped to [0, 1] and defaults to the organization's
        similar threshold; ``limit`` is clamped to [1, 50].
        """
        question = await self.question_repo.get_in_project(project_id, question_id)
        if question is None:
            raise QuestionNotFoundError(f"Question {question_id} not found in project {project_id}")

        if threshold is None:
            threshold = (await self.org_repo.get_thresholds(question.org_id)).similar_threshold
        threshold = min(1.0, max(0.0, threshold))
        if limit is None:
            limit = settings.clustering.max_similar_questions
        limit = min(MAX_SIMILAR_LIMIT, max(1, limit))

        if question.embedding is None:
            question.embedding = await self.embedding_service.embed(question.text)
            await self.session.commit()

        matches = await self.question_repo.find_similar(
            project_id,
            list(question.embedding),
            exclude_question_id=question.id,
            min_similarity=threshold,
            limit=limit,
        )
        answers = await self.answer_repo.get_by_question_ids(other.id for other, _ in matches)

        similar = []
        for other, similarity in matches:
            answer = answers.get(other.id)
            similar.append(
                SimilarQuestion(
                    question_id=str(other.id),
                    question_text=other.text,
                    similarity=round(similarity, 4),
                    has_answer=answer is not None,
                    answer_preview=build_answer_preview(answer.text) if answer else None,
                    in_same_cluster=question.cluster_id is not None and other.cluster_id == question.cluster_id,
                    cluster_id=str(other.cluster_id) if other.cluster_id else None,
                    section_id=other.section_id,
                    section_title=other.section_title,
                )
            )
        similar.sort(key=lambda s: s.similarity, reverse=True)

        return FindSimilarQuestionsResponse(
            question_id=str(question.id),
            question_text=question.text,
            similar_questions=similar,
            threshold=threshold,
            limit=limit,
        )

    async def _ensure_embeddings(self, questions: List[Question]) -> List[FailedQuestion]:
        """Embed questions that have none yet. Existing embeddings are never replaced."""
        missing = [(str(q.id), q.text) for q in questions if q.embedding is None]
        if not missing:
            return []

        result = await self.embedding_service.embed_questions(missing)
        for question in questions:
            vector = result.embeddings.get(str(question.id))
            if vector is not None and question.embedding is None:
                question.embedding = vector

        if result.failures:
            LOGGER.warning(
                "Questions excluded from clustering",
                extra={"failed": len(result.failures), "total": len(questions)},
            )
        return [FailedQuestion(question_id=qid, reason=reason) for qid, reason in result.failures.items()]

    async def _release_clusters(
        self,
        project_id: UUID,
        opportunity_id: Optional[UUID],
        questions: List[Question],
    ) -> List[Question]:
        """Delete the clusters holding ``questions`` and detach everything in them.

        Scoped to one opportunity, a cluster can also hold questions of other
        opportunities. Those questions are released with it and returned for
        reclustering, so no question keeps pointing at a deleted cluster.
        """
        if opportunity_id is None:
            await self.cluster_repo.delete_by_project(project_id)
            released = list(questions)
        else:
            cluster_ids = {q.cluster_id for q in questions if q.cluster_id is not None}
            by_id = {q.id: q for q in questions}
            for sibling in await self.question_repo.list_by_clusters(list(cluster_ids)):
                by_id.setdefault(sibling.id, sibling)
            released = sorted(by_id.values(), key=lambda q: (q.created_at is None, q.created_at, str(q.id)))
            await self.cluster_repo.delete_by_ids(project_id, cluster_ids)

        await self.question_repo.clear_cluster_assignments(project_id, [q.id for q in released])
        for question in released:
            self._reset_assignment(question)
        LOGGER.info(
            "Released clusters for reclustering",
            extra={"project_id": str(project_id), "questions": len(released)},
        )
        return released

    @staticmethod
    def _seed_masters(existing: Dict[UUID, QuestionCluster], by_id: Dict[UUID, Question]) -> List[SeedMaster]:
        seeds = []
        for cluster in sorted(existing.values(), key=lambda c: (c.created_at is None, c.created_at, str(c.id))):
            master = by_id.get(cluster.master_question_id)
            if master is None or master.embedding is None:
                continue
            seeds.append(
                SeedMaster(
                    cluster_id=str(cluster.id),
                    question_id=str(master.id),
                    text=master.text,
                    embedding=list(master.embedding),
                )
            )
        return seeds

    @staticmethod
    def _reset_assignment(question: Question) -> None:
        question.cluster_id = None
        question.is_cluster_master = False
        question.master_question_id = None
        question.similarity_to_master = None
