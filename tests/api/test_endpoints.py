"""Tests for API endpoints."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch
from uuid import uuid4

from fastapi.testclient import TestClient

from rfp_engine.api.v1.endpoints import health
from rfp_engine.api.v1.endpoints.clusters import get_cluster_propagator, get_clustering_service
from rfp_engine.api.v1.endpoints.organizations import get_organization_repository
from rfp_engine.api.v1.endpoints.pipeline import get_pipeline_service
from rfp_engine.core.exceptions import (
    ClusteringError,
    PipelineAlreadyRunningError,
    PipelineRunNotFoundError,
    QuestionNotFoundError,
    ValidationError,
)
from rfp_engine.main import app
from rfp_engine.schemas.clustering import (
    ApplyAnswerResponse,
    ClusterQuestionsResponse,
    ClusteringThresholds,
    FindSimilarQuestionsResponse,
    GetClustersResponse,
    SimilarQuestion,
)
from rfp_engine.schemas.pipeline import FailedQuestion, PipelineRunSchema, PipelineStage


def make_run(project_id, stage=PipelineStage.PREPARING, **overrides):
    fields = dict(
        id=uuid4(),
        project_id=project_id,
        org_id=uuid4(),
        stage=stage,
        questions_total=50,
        temporal_workflow_id=f"answer-generation-{project_id}",
        started_at=datetime.now(timezone.utc),
    )
    fields.update(overrides)
    return PipelineRunSchema(**fields)


class TestClusterEndpoints:
    """Clustering, similar lookup and manual override endpoints."""

    def test_cluster_questions(self, test_client: TestClient) -> None:
        project_id = uuid4()
        service = AsyncMock()
        service.cluster_questions.return_value = ClusterQuestionsResponse(clusters_created=2, questions_processed=4)
        app.dependency_overrides[get_clustering_service] = lambda: service

        response = test_client.post(f"/api/v1/projects/{project_id}/clusters", json={"force_recluster": True})

        assert response.status_code == 200
        assert response.json()["clusters_created"] == 2
        service.cluster_questions.assert_awaited_once_with(project_id, opportunity_id=None, force_recluster=True)

    def test_cluster_questions_without_body(self, test_client: TestClient) -> None:
        service = AsyncMock()
        service.cluster_questions.return_value = ClusterQuestionsResponse(clusters_created=0, questions_processed=0)
        app.dependency_overrides[get_clustering_service] = lambda: service

        response = test_client.post(f"/api/v1/projects/{uuid4()}/clusters")

        assert response.status_code == 200
        assert service.cluster_questions.await_args.kwargs["force_recluster"] is False

    def test_cluster_questions_empty_project(self, test_client: TestClient) -> None:
        service = AsyncMock()
        service.cluster_questions.side_effect = ValidationError("Project has no questions to cluster")
        app.dependency_overrides[get_clustering_service] = lambda: service

        response = test_client.post(f"/api/v1/projects/{uuid4()}/clusters")

        assert response.status_code == 400
        assert "no questions" in response.json()["detail"]

    def test_cluster_questions_internal_error(self, test_client: TestClient) -> None:
        service = AsyncMock()
        service.cluster_questions.side_effect = ClusteringError("No question could be embedded")
        app.dependency_overrides[get_clustering_service] = lambda: service

        response = test_client.post(f"/api/v1/projects/{uuid4()}/clusters")

        assert response.status_code == 500

    def test_get_clusters(self, test_client: TestClient) -> None:
        service = AsyncMock()
        service.get_clusters.return_value = GetClustersResponse(clusters=[], total_clusters=0)
        app.dependency_overrides[get_clustering_service] = lambda: service

        response = test_client.get(f"/api/v1/projects/{uuid4()}/clusters")

        assert response.status_code == 200
        assert response.json() == {"clusters": [], "total_clusters": 0}

    def test_find_similar_passes_query_params(self, test_client: TestClient) -> None:
        project_id, question_id = uuid4(), uuid4()
        service = AsyncMock()
        service.find_similar_questions.return_value = FindSimilarQuestionsResponse(
            question_id=str(question_id),
            question_text="Do you support SSO?",
            similar_questions=[
                SimilarQuestion(question_id=str(uuid4()), question_text="Is SAML supported?", similarity=0.86)
            ],
            threshold=0.85,
            limit=5,
        )
        app.dependency_overrides[get_clustering_service] = lambda: service

        response = test_client.get(
            f"/api/v1/projects/{project_id}/questions/{question_id}/similar",
            params={"threshold": 0.85, "limit": 5},
        )

        assert response.status_code == 200
        assert len(response.json()["similar_questions"]) == 1
        service.find_similar_questions.assert_awaited_once_with(project_id, question_id, threshold=0.85, limit=5)

    def test_find_similar_unknown_question(self, test_client: TestClient) -> None:
        service = AsyncMock()
        service.find_similar_questions.side_effect = QuestionNotFoundError("Question not found")
        app.dependency_overrides[get_clustering_service] = lambda: service

        response = test_client.get(f"/api/v1/projects/{uuid4()}/questions/{uuid4()}/similar")

        assert response.status_code == 404

    def test_find_similar_invalid_question_id(self, test_client: TestClient) -> None:
        app.dependency_overrides[get_clustering_service] = lambda: AsyncMock()

        response = test_client.get(f"/api/v1/projects/{uuid4()}/questions/not-a-uuid/similar")

        assert response.status_code == 422

    def test_apply_answer_reports_partial_failures(self, test_client: TestClient) -> None:
        project_id, source_id = uuid4(), uuid4()
        applied_id, missing_id = str(uuid4()), str(uuid4())
        propagator = AsyncMock()
        propagator.apply_answer.return_value = ApplyAnswerResponse(
            applied=[applied_id],
            failed=[FailedQuestion(question_id=missing_id, reason="not found")],
        )
        app.dependency_overrides[get_cluster_propagator] = lambda: propagator

        response = test_client.post(
            f"/api/v1/projects/{project_id}/clusters/apply-answer",
            json={"source_question_id": str(source_id), "target_question_ids": [applied_id, missing_id]},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["applied"] == [applied_id]
        assert data["failed"] == [{"question_id": missing_id, "reason": "not found"}]
        propagator.apply_answer.assert_awaited_once_with(
            project_id, source_id, [applied_id, missing_id], custom_text=None
        )

    def test_apply_answer_requires_targets(self, test_client: TestClient) -> None:
        app.dependency_overrides[get_cluster_propagator] = lambda: AsyncMock()

        response = test_client.post(
            f"/api/v1/projects/{uuid4()}/clusters/apply-answer",
            json={"source_question_id": str(uuid4()), "target_question_ids": []},
        )

        assert response.status_code == 422

    def test_apply_answer_unknown_source(self, test_client: TestClient) -> None:
        propagator = AsyncMock()
        propagator.apply_answer.side_effect = QuestionNotFoundError("Source question not found")
        app.dependency_overrides[get_cluster_propagator] = lambda: propagator

        response = test_client.post(
            f"/api/v1/projects/{uuid4()}/clusters/apply-answer",
            json={"source_question_id": str(uuid4()), "target_question_ids": [str(uuid4())]},
        )

        assert response.status_code == 404


class TestPipelineEndpoints:
    """Answer pipeline start and run status endpoints."""

    def test_start_run(self, test_client: TestClient) -> None:
        project_id, org_id = uuid4(), uuid4()
        service = AsyncMock()
        service.run_answer_generation.return_value = make_run(project_id, org_id=org_id)
        app.dependency_overrides[get_pipeline_service] = lambda: service

        response = test_client.post(
            f"/api/v1/projects/{project_id}/answer-pipeline",
            json={"org_id": str(org_id)},
        )

        assert response.status_code == 202
        data = response.json()
        assert data["stage"] == "PREPARING"
        assert data["summary"] == "preparing: 0 of 50 questions processed"
        service.run_answer_generation.assert_awaited_once_with(
            project_id, org_id=org_id, kb_ids=None, force_recluster=False
        )

    def test_start_run_requires_org(self, test_client: TestClient) -> None:
        app.dependency_overrides[get_pipeline_service] = lambda: AsyncMock()

        response = test_client.post(f"/api/v1/projects/{uuid4()}/answer-pipeline", json={})

        assert response.status_code == 422

    def test_start_run_conflict(self, test_client: TestClient) -> None:
        service = AsyncMock()
        service.run_answer_generation.side_effect = PipelineAlreadyRunningError("A run is already in progress")
        app.dependency_overrides[get_pipeline_service] = lambda: service

        response = test_client.post(
            f"/api/v1/projects/{uuid4()}/answer-pipeline",
            json={"org_id": str(uuid4())},
        )

        assert response.status_code == 409

    def test_start_run_empty_project(self, test_client: TestClient) -> None:
        service = AsyncMock()
        service.run_answer_generation.side_effect = ValidationError("Project has no questions")
        app.dependency_overrides[get_pipeline_service] = lambda: service

        response = test_client.post(
            f"/api/v1/projects/{uuid4()}/answer-pipeline",
            json={"org_id": str(uuid4())},
        )

        assert response.status_code == 400

    def test_get_latest_run(self, test_client: TestClient) -> None:
        project_id = uuid4()
        service = AsyncMock()
        service.get_latest_run.return_value = make_run(
            project_id, stage=PipelineStage.DONE, questions_answered=42, questions_processed=50
        )
        app.dependency_overrides[get_pipeline_service] = lambda: service

        response = test_client.get(f"/api/v1/projects/{project_id}/answer-pipeline/runs/latest")

        assert response.status_code == 200
        assert response.json()["summary"] == "42 of 50 questions answered"
        service.get_latest_run.assert_awaited_once_with(project_id)
        service.get_run.assert_not_awaited()

    def test_get_run_not_found(self, test_client: TestClient) -> None:
        service = AsyncMock()
        service.get_run.side_effect = PipelineRunNotFoundError("Run not found")
        app.dependency_overrides[get_pipeline_service] = lambda: service

        response = test_client.get(f"/api/v1/projects/{uuid4()}/answer-pipeline/runs/{uuid4()}")

        assert response.status_code == 404


class TestOrganizationEndpoints:
    def test_get_clustering_settings(self, test_client: TestClient) -> None:
        org_id = uuid4()
        repo = AsyncMock()
        repo.get_thresholds.return_value = ClusteringThresholds()
        app.dependency_overrides[get_organization_repository] = lambda: repo

        response = test_client.get(f"/api/v1/organizations/{org_id}/clustering-settings")

        assert response.status_code == 200
        assert response.json()["thresholds"] == {"cluster_threshold": 0.9, "similar_threshold": 0.8}

    def test_update_clamps_similar_threshold(self, test_client: TestClient) -> None:
        repo = AsyncMock()
        repo.set_thresholds.return_value = object()
        app.dependency_overrides[get_organization_repository] = lambda: repo

        response = test_client.put(
            f"/api/v1/organizations/{uuid4()}/clustering-settings",
            json={"cluster_threshold": 0.85, "similar_threshold": 0.95},
        )

        assert response.status_code == 200
        assert response.json()["thresholds"]["similar_threshold"] == 0.85

    def test_update_rejects_out_of_range(self, test_client: TestClient) -> None:
        app.dependency_overrides[get_organization_repository] = lambda: AsyncMock()

        response = test_client.put(
            f"/api/v1/organizations/{uuid4()}/clustering-settings",
            json={"cluster_threshold": 1.5, "similar_threshold": 0.8},
        )

        assert response.status_code == 422

    def test_update_unknown_organization(self, test_client: TestClient) -> None:
        repo = AsyncMock()
        repo.set_thresholds.return_value = None
        app.dependency_overrides[get_organization_repository] = lambda: repo

        response = test_client.put(
            f"/api/v1/organizations/{uuid4()}/clustering-settings",
            json={"cluster_threshold": 0.9, "similar_threshold": 0.8},
        )

        assert response.status_code == 404


class TestHealthEndpoints:
    def test_health_reports_database_status(self, test_client: TestClient) -> None:
        with patch.object(health.db_client, "health_check", AsyncMock(return_value={"status": "healthy"})):
            response = test_client.get("/health/")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["database"] == "healthy"

    def test_health_degraded_when_database_down(self, test_client: TestClient) -> None:
        with patch.object(
            health.db_client, "health_check", AsyncMock(return_value={"status": "unhealthy", "error": "refused"})
        ):
            response = test_client.get("/health/")

        assert response.status_code == 200
        assert response.json()["status"] == "degraded"

    def test_root(self, test_client: TestClient) -> None:
        response = test_client.get("/")

        assert response.status_code == 200
        assert response.json()["health"] == "/health"
        assert "X-Correlation-ID" in response.headers
