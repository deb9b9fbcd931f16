"""Answer Generation Temporal Workflow.

Runs one answer-generation pass over a project:
1. PREPARING: embed and cluster questions, fix the generation order
2. GENERATING: one bounded-concurrency activity per question (masters answer,
   members are skipped)
3. PROPAGATING: clone master answers onto cluster members
4. DONE, or FAILED when a stage errors or the run budget runs out

Per-question problems never stop the run; they are collected into
``failed_questions``. Progress is persisted through
``update_pipeline_run_activity`` and is also available via ``get_status``.
"""

import asyncio
from datetime import timedelta
from typing import Any, Dict, List, Optional

from temporalio import workflow
from temporalio.common import RetryPolicy

from rfp_engine.schemas.pipeline import PipelineStage
from rfp_engine.temporal.core.constants import (
    DEFAULT_GENERATION_CONCURRENCY,
    DEFAULT_PROGRESS_REPORT_INTERVAL,
    DEFAULT_RUN_BUDGET_SECONDS,
    DEFAULT_STAGE_TIMEOUT_SECONDS,
    DEFAULT_TASK_QUEUE,
    DEFAULT_UNIT_TIMEOUT_SECONDS,
    PROGRESS_UPDATE_TIMEOUT_SECONDS,
)
from rfp_engine.temporal.core.workflow_registry import WorkflowRegistry, WorkflowType

# Units are not retried; a failed unit is reported and the run moves on.
NO_RETRY = RetryPolicy(maximum_attempts=1)
PROGRESS_RETRY = RetryPolicy(maximum_attempts=3)


@WorkflowRegistry.register(
    category=WorkflowType.ANSWER_PIPELINE,
    task_queue=DEFAULT_TASK_QUEUE,
)
@workflow.defn
class AnswerGenerationWorkflow:
    """Temporal workflow for project-wide answer generation."""

    def __init__(self):
        self._run_id: Optional[str] = None
        self._stage = PipelineStage.PREPARING
        self._questions_total = 0
        self._questions_processed = 0
        self._answers_generated = 0
        self._answers_propagated = 0
        self._questions_answered = 0
        self._clusters_created = 0
        self._failed_questions: List[Dict[str, str]] = []
        self._error_message: Optional[str] = None
        self._units_completed = 0

    @workflow.query
    def get_status(self) -> dict:
        """Query handler for real-time status updates."""
        return self._snapshot()

    @workflow.run
    async def run(self, payload: Dict) -> dict:
        """Execute the answer generation workflow.

        Payload keys: ``run_id``, ``project_id``, ``kb_ids``,
        ``force_recluster`` and optional tuning values ``concurrency``,
        ``run_budget_seconds``, ``stage_timeout_seconds``,
        ``unit_timeout_seconds``, ``progress_report_interval``.
        """
        self._run_id = payload.get("run_id")
        project_id = payload["project_id"]
        budget_seconds = payload.get("run_budget_seconds") or DEFAULT_RUN_BUDGET_SECONDS

        workflow.logger.info(f"Starting answer generation for project {project_id} (run {self._run_id})")

        try:
            await asyncio.wait_for(self._execute(project_id, payload), timeout=budget_seconds)
            self._stage = PipelineStage.DONE
        except asyncio.TimeoutError:
            self._error_message = f"Run budget of {budget_seconds}s exhausted during {self._stage.value}"
            self._stage = PipelineStage.FAILED
            workflow.logger.warning(f"Answer generation for project {project_id} timed out: {self._error_message}")
        except Exception as e:
            failed_stage = self._stage
            self._stage = PipelineStage.FAILED
            self._error_message = f"{failed_stage.value} failed: {e}"
            workflow.logger.error(f"Answer generation for project {project_id} failed: {self._error_message}")

        await self._report_progress()

        workflow.logger.info(
            f"Answer generation for project {project_id} finished with stage {self._stage.value}: "
            f"{self._answers_generated} generated, {self._answers_propagated} propagated, "
            f"{len(self._failed_questions)} failed"
        )
        return self._snapshot()

    async def _execute(self, project_id: str, payload: Dict[str, Any]) -> None:
        stage_timeout = timedelta(seconds=payload.get("stage_timeout_seconds") or DEFAULT_STAGE_TIMEOUT_SECONDS)

        # Stage 1: cluster questions
        self._enter(PipelineStage.PREPARING)
        await self._report_progress()
        prepared = await workflow.execute_activity(
            "prepare_questions_activity",
            args=[project_id, bool(payload.get("force_recluster", False))],
            start_to_close_timeout=stage_timeout,
            retry_policy=NO_RETRY,
        )
        question_ids: List[str] = prepared.get("question_ids", [])
        self._questions_total = prepared.get("questions_total", len(question_ids))
        self._clusters_created = prepared.get("clusters_created", 0)
        self._failed_questions.extend(prepared.get("failed_questions", []))

        # Stage 2: fan out generation
        self._enter(PipelineStage.GENERATING)
        await self._report_progress()
        await self._generate_all(question_ids, payload)

        # Stage 3: clone master answers onto members
        self._enter(PipelineStage.PROPAGATING)
        await self._report_progress()
        propagation = await workflow.execute_activity(
            "propagate_answers_activity",
            args=[project_id],
            start_to_close_timeout=stage_timeout,
            retry_policy=NO_RETRY,
        )
        self._answers_propagated = propagation.get("applied", 0)
        self._questions_answered = propagation.get("questions_answered", 0)

    async def _generate_all(self, question_ids: List[str], payload: Dict[str, Any]) -> None:
        concurrency = max(1, payload.get("concurrency") or DEFAULT_GENERATION_CONCURRENCY)
        unit_timeout = timedelta(seconds=payload.get("unit_timeout_seconds") or DEFAULT_UNIT_TIMEOUT_SECONDS)
        report_every = max(1, payload.get("progress_report_interval") or DEFAULT_PROGRESS_REPORT_INTERVAL)
        kb_ids = payload.get("kb_ids")
        semaphore = asyncio.Semaphore(concurrency)

        async def generate_one(question_id: str) -> None:
            async with semaphore:
                try:
                    outcome = await workflow.execute_activity(
                        "generate_answer_activity",
                        args=[question_id, kb_ids],
                        start_to_close_timeout=unit_timeout,
                        retry_policy=NO_RETRY,
                    )
                except Exception as e:
                    workflow.logger.warning(f"Generation unit for question {question_id} failed: {e}")
                    outcome = {"question_id": question_id, "status": "failed", "reason": f"unit error: {e}"}

            self._record_outcome(question_id, outcome)
            if self._units_completed % report_every == 0:
                await self._report_progress()

        await asyncio.gather(*(generate_one(qid) for qid in question_ids))

    def _record_outcome(self, question_id: str, outcome: Dict[str, Any]) -> None:
        status = outcome.get("status")
        self._units_completed += 1
        if status == "generated":
            self._answers_generated += 1
            self._questions_processed += 1
        elif status == "skipped":
            self._questions_processed += 1
        else:
            self._failed_questions.append({
                "question_id": outcome.get("question_id") or question_id,
                "reason": outcome.get("reason") or "unknown error",
            })

    def _enter(self, stage: PipelineStage) -> None:
        self._stage = stage

    async def _report_progress(self) -> None:
        """Persist the current snapshot; a failed write only logs."""
        if not self._run_id:
            return
        try:
            answered = await workflow.execute_activity(
                "update_pipeline_run_activity",
                args=[self._run_id, self._progress_changes()],
                start_to_close_timeout=timedelta(seconds=PROGRESS_UPDATE_TIMEOUT_SECONDS),
                retry_policy=PROGRESS_RETRY,
            )
            if self._stage.is_terminal and answered is not None:
                self._questions_answered = answered
        except Exception as e:
            workflow.logger.warning(f"Progress update for run {self._run_id} failed: {e}")

    def _progress_changes(self) -> Dict[str, Any]:
        return {
            "stage": self._stage.value,
            "questions_total": self._questions_total,
            "questions_processed": self._questions_processed,
            "answers_generated": self._answers_generated,
            "answers_propagated": self._answers_propagated,
            "clusters_created": self._clusters_created,
            "failed_questions": list(self._failed_questions),
            "error_message": self._error_message,
        }

    def _snapshot(self) -> dict:
        return {
            "run_id": self._run_id,
            "stage": self._stage.value,
            "questions_total": self._questions_total,
            "questions_processed": self._questions_processed,
            "questions_answered": self._questions_answered,
            "answers_generated": self._answers_generated,
            "answers_propagated": self._answers_propagated,
            "clusters_created": self._clusters_created,
            "failed_questions": list(self._failed_questions),
            "error_message": self._error_message,
        }
