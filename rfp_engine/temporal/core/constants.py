"""Shared constants for Temporal workflows.

Workflow code cannot read application settings inside the sandbox, so the
defaults it falls back to live here. Callers normally pass the configured
values in the workflow payload.
"""

# Task Queues
DEFAULT_TASK_QUEUE = "answers-queue"

# Workflow ids
ANSWER_GENERATION_WORKFLOW_PREFIX = "answer-generation"

# Timeouts
DEFAULT_RUN_BUDGET_SECONDS = 3600        # 1 hour
DEFAULT_STAGE_TIMEOUT_SECONDS = 900      # 15 minutes
DEFAULT_UNIT_TIMEOUT_SECONDS = 300       # 5 minutes
PROGRESS_UPDATE_TIMEOUT_SECONDS = 30

# Fan-out
DEFAULT_GENERATION_CONCURRENCY = 5
DEFAULT_PROGRESS_REPORT_INTERVAL = 10


def answer_generation_workflow_id(project_id: str) -> str:
    """One in-flight answer-generation workflow per project."""
    return f"{ANSWER_GENERATION_WORKFLOW_PREFIX}-{project_id}"
