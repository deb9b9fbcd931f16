"""Tests for ClusteringService persistence and lookups with mocked repositories."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from rfp_engine.core.exceptions import ClusteringError, QuestionNotFoundError, ValidationError
from rfp_engine.database.models import Answer, Question, QuestionCluster
from rfp_engine.schemas.clustering import ClusteringThresholds
from rfp_engine.services.embedding_service import BatchEmbeddingResult
from rfp_engine.services.clustering.clustering_engine import cluster_id_for
from rfp_engine.services.clustering.clustering_service import ClusteringService

BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_question(project_id, org_id, text, embedding, minute, opportunity_id=None):
    return Question(
        id=uuid4(),
        project_id=project_id,
        org_id=org_id,
        opportunity_id=opportunity_id,
        text=text,
        embedding=embedding,
        cluster_id=None,
        is_cluster_master=False,
        master_question_id=None,
        similarity_to_master=None,
        created_at=BASE_TIME + timedelta(minutes=minute),
    )


@pytest.fixture
def project_id():
    return uuid4()


@pytest.fixture
def org_id():
    return uuid4()


@pytest.fixture
def questions(project_id, org_id):
    return [
        make_question(project_id, org_id, "Describe your SSO support", [1.0, 0.0], 0),
        make_question(project_id, org_id, "Do you support single sign-on?", [0.99, 0.05], 1),
        make_question(project_id, org_id, "What is your uptime SLA?", [0.0, 1.0], 2),
    ]


@pytest.fixture
def service(questions):
    session = AsyncMock()
    session.add = MagicMock()
    embedding_service = AsyncMock()
    svc = ClusteringService(session, embedding_service=embedding_service)

    svc.question_repo = AsyncMock()
    svc.question_repo.list_by_project.return_value = questions
    # Cluster membership as the database sees it after a flush
    pool = list(questions)
    svc.question_repo.list_by_clusters.side_effect = lambda ids: [q for q in pool if q.cluster_id in set(ids)]
    svc.question_pool = pool
    svc.org_repo = AsyncMock()
    svc.org_repo.get_thresholds.return_value = ClusteringThresholds()
    svc.answer_repo = AsyncMock()
    svc.answer_repo.get_by_question_ids.return_value = {}

    saved = []
    svc.cluster_repo = AsyncMock()
    svc.cluster_repo.add_all.side_effect = lambda rows: saved.extend(rows)
    svc.cluster_repo.list_by_project.side_effect = [[], saved]
    svc.saved_clusters = saved
    return svc


class TestClusterQuestions:
    @pytest.mark.asyncio
    async def test_persists_clusters_and_assignments(self, service, questions, project_id):
        response = await service.cluster_questions(project_id)

        assert response.clusters_created == 2
        assert response.questions_processed == 3
        assert response.failed_questions == []

        sso_master, sso_member, uptime = questions
        assert sso_master.is_cluster_master is True
        assert sso_member.is_cluster_master is False
        assert sso_member.master_question_id == sso_master.id
        assert sso_member.cluster_id == cluster_id_for(project_id, sso_master.id)
        assert uptime.is_cluster_master is True
        assert uptime.cluster_id != sso_master.cluster_id

        sso_cluster = next(c for c in service.saved_clusters if c.master_question_id == sso_master.id)
        assert sso_cluster.question_count == 2
        assert [m["question_id"] for m in sso_cluster.members] == [str(sso_master.id), str(sso_member.id)]
        service.session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_empty_project_is_rejected(self, service, project_id):
        service.question_repo.list_by_project.return_value = []

        with pytest.raises(ValidationError):
            await service.cluster_questions(project_id)
        service.session.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_embedding_failures_are_reported_not_clustered(self, service, questions, project_id):
        questions[2].embedding = None
        service.embedding_service.embed_questions.return_value = BatchEmbeddingResult(
            embeddings={}, failures={str(questions[2].id): "embedding failed: model error"}
        )

        response = await service.cluster_questions(project_id)

        assert response.clusters_created == 1
        assert [f.question_id for f in response.failed_questions] == [str(questions[2].id)]
        assert questions[2].cluster_id is None

    @pytest.mark.asyncio
    async def test_all_embeddings_failing_raises_and_rolls_back(self, service, questions, project_id):
        for question in questions:
            question.embedding = None
        service.embedding_service.embed_questions.return_value = BatchEmbeddingResult(
            embeddings={}, failures={str(q.id): "embedding failed" for q in questions}
        )

        with pytest.raises(ClusteringError):
            await service.cluster_questions(project_id)
        service.session.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_force_recluster_clears_existing_clusters(self, service, questions, project_id):
        await service.cluster_questions(project_id, force_recluster=True)

        service.cluster_repo.delete_by_project.assert_awaited_once_with(project_id)
        service.cluster_repo.delete_by_ids.assert_not_awaited()
        service.question_repo.clear_cluster_assignments.assert_awaited_once_with(project_id, [q.id for q in questions])

    @pytest.mark.asyncio
    async def test_scoped_force_recluster_rebuilds_shared_clusters(self, service, project_id, org_id):
        opp_x, opp_y = uuid4(), uuid4()
        x1 = make_question(project_id, org_id, "Describe your SSO support", [1.0, 0.0], 0, opp_x)
        y1 = make_question(project_id, org_id, "What is your uptime SLA?", [0.0, 1.0], 1, opp_y)
        y2 = make_question(project_id, org_id, "Do you support single sign-on?", [0.99, 0.05], 2, opp_y)
        x2 = make_question(project_id, org_id, "What uptime do you guarantee?", [0.05, 0.99], 3, opp_x)
        sso_cluster_id = cluster_id_for(project_id, x1.id)
        uptime_cluster_id = cluster_id_for(project_id, y1.id)
        for question, cluster_id, master in [(x1, sso_cluster_id, x1), (y2, sso_cluster_id, x1),
                                             (y1, uptime_cluster_id, y1), (x2, uptime_cluster_id, y1)]:
            question.cluster_id = cluster_id
            question.master_question_id = master.id
            question.is_cluster_master = question is master
        service.question_repo.list_by_project.return_value = [x1, x2]
        service.question_pool[:] = [x1, y1, y2, x2]
        service.cluster_repo.list_by_project.side_effect = lambda pid: list(service.saved_clusters)

        response = await service.cluster_questions(project_id, opportunity_id=opp_x, force_recluster=True)

        service.cluster_repo.delete_by_project.assert_not_awaited()
        deleted_project, deleted_ids = service.cluster_repo.delete_by_ids.await_args.args
        assert deleted_project == project_id
        assert set(deleted_ids) == {sso_cluster_id, uptime_cluster_id}
        cleared_project, cleared_ids = service.question_repo.clear_cluster_assignments.await_args.args
        assert cleared_project == project_id
        assert cleared_ids == [x1.id, y1.id, y2.id, x2.id]

        assert response.questions_processed == 4
        assert response.clusters_created == 2
        assert y2.cluster_id == x1.cluster_id == sso_cluster_id
        assert x2.master_question_id == y1.id
        assert x2.cluster_id == y1.cluster_id == uptime_cluster_id

        uptime = next(c for c in service.saved_clusters if c.master_question_id == y1.id)
        assert uptime.opportunity_id == opp_y
        assert [m["question_id"] for m in uptime.members] == [str(y1.id), str(x2.id)]

    @pytest.mark.asyncio
    async def test_scoped_force_recluster_without_prior_clusters(self, service, questions, project_id):
        opportunity_id = uuid4()

        response = await service.cluster_questions(project_id, opportunity_id=opportunity_id, force_recluster=True)

        assert response.questions_processed == 3
        assert set(service.cluster_repo.delete_by_ids.await_args.args[1]) == set()
        service.cluster_repo.delete_by_project.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_incremental_run_joins_existing_cluster(self, service, project_id, org_id):
        master = make_question(project_id, org_id, "Describe your SSO support", [1.0, 0.0], -10)
        existing_member = make_question(project_id, org_id, "Which SSO protocols?", [0.95, 0.3122499], -5)
        newcomer = make_question(project_id, org_id, "Do you support single sign-on?", [0.99, 0.05], 0)
        unrelated = make_question(project_id, org_id, "What is your uptime SLA?", [0.0, 1.0], 1)
        cluster = QuestionCluster(
            id=cluster_id_for(project_id, master.id),
            project_id=project_id,
            master_question_id=master.id,
            master_question_text=master.text,
            members=[],
            question_count=2,
            avg_similarity=0.95,
            created_at=BASE_TIME - timedelta(minutes=10),
        )
        master.cluster_id = existing_member.cluster_id = cluster.id
        master.is_cluster_master = True
        master.master_question_id = existing_member.master_question_id = master.id
        master.similarity_to_master = 1.0
        existing_member.similarity_to_master = 0.95
        questions = [master, existing_member, newcomer, unrelated]
        service.question_repo.list_by_project.return_value = questions
        service.question_pool[:] = questions
        service.cluster_repo.list_by_project.side_effect = lambda pid: [cluster] + service.saved_clusters

        response = await service.cluster_questions(project_id)

        assert response.clusters_created == 1
        assert response.questions_processed == 2
        assert newcomer.cluster_id == cluster.id
        assert newcomer.master_question_id == master.id
        assert newcomer.is_cluster_master is False
        assert newcomer.similarity_to_master == pytest.approx(0.99 / (0.99 ** 2 + 0.05 ** 2) ** 0.5, abs=1e-4)
        assert unrelated.is_cluster_master is True
        assert unrelated.cluster_id != cluster.id

        assert cluster.question_count == 3
        assert [m["question_id"] for m in cluster.members] == [str(master.id), str(existing_member.id), str(newcomer.id)]
        assert cluster.avg_similarity == pytest.approx((0.95 + newcomer.similarity_to_master) / 2, abs=1e-3)
        service.cluster_repo.delete_by_project.assert_not_awaited()
        service.session.commit.assert_awaited_once()


class TestGenerationOrder:
    @pytest.mark.asyncio
    async def test_masters_first_and_unclustered_skipped(self, service, questions, project_id):
        master, member, unclustered = questions
        cluster_id = uuid4()
        master.cluster_id, master.is_cluster_master = cluster_id, True
        member.cluster_id = cluster_id

        order = await service.generation_order(project_id)

        assert order == [str(master.id), str(member.id)]
        assert str(unclustered.id) not in order


class TestFindSimilarQuestions:
    @pytest.mark.asyncio
    async def test_clamps_and_sorts(self, service, questions, project_id):
        source, close, far = questions
        service.question_repo.get_in_project.return_value = source
        service.question_repo.find_similar.return_value = [(far, 0.81), (close, 0.97)]
        service.answer_repo.get_by_question_ids.return_value = {
            close.id: Answer(question_id=close.id, project_id=project_id, text="Yes, via SAML 2.0"),
        }

        response = await service.find_similar_questions(project_id, source.id, threshold=1.7, limit=500)

        assert response.threshold == 1.0
        assert response.limit == 50
        assert [s.question_id for s in response.similar_questions] == [str(close.id), str(far.id)]
        assert response.similar_questions[0].has_answer is True
        assert response.similar_questions[0].answer_preview == "Yes, via SAML 2.0"
        assert response.similar_questions[1].has_answer is False

    @pytest.mark.asyncio
    async def test_defaults_to_org_similar_threshold(self, service, questions, project_id):
        service.question_repo.get_in_project.return_value = questions[0]
        service.question_repo.find_similar.return_value = []
        service.org_repo.get_thresholds.return_value = ClusteringThresholds(
            cluster_threshold=0.9, similar_threshold=0.7
        )

        response = await service.find_similar_questions(project_id, questions[0].id)

        assert response.threshold == 0.7
        assert response.limit == 10

    @pytest.mark.asyncio
    async def test_unknown_question(self, service, project_id):
        service.question_repo.get_in_project.return_value = None

        with pytest.raises(QuestionNotFoundError):
            await service.find_similar_questions(project_id, uuid4())
