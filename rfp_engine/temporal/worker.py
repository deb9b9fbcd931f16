"""Temporal worker service for answer generation.

This worker:
- Connects to the configured Temporal server, retrying while it comes up
- Discovers and registers all workflows and activities
- Runs one worker per task queue
- Serves a small health endpoint alongside the workers
"""

import asyncio
from typing import Dict, List

import uvicorn
from fastapi import FastAPI
from temporalio.client import Client
from temporalio.worker import Worker
from temporalio.worker.workflow_sandbox import SandboxedWorkflowRunner, SandboxRestrictions

from rfp_engine.core.config import settings

# Trigger discovery of all components
from rfp_engine.temporal.core.discovery import discover_all
discover_all()

from rfp_engine.temporal.core.workflow_registry import WorkflowRegistry
from rfp_engine.temporal.core.activity_registry import ActivityRegistry
from rfp_engine.temporal.core.constants import DEFAULT_TASK_QUEUE
from rfp_engine.utils.logging import get_logger

logger = get_logger(__name__)

CONNECT_MAX_RETRIES = 5
CONNECT_RETRY_DELAY_SECONDS = 5
WORKER_HEALTH_PORT = 8001

# Create a minimal FastAPI app for health checks
app = FastAPI(title="Temporal Worker Health Check")


@app.get("/health")
async def health():
    return {"status": "ok", "service": "temporal-worker"}


@app.get("/")
async def root():
    return {"message": "Temporal Worker is running", "health": "/health"}


async def run_health_check_server():
    """Run the health check server."""
    logger.info(f"Starting health check server on port {WORKER_HEALTH_PORT}")
    config = uvicorn.Config(app, host=settings.host, port=WORKER_HEALTH_PORT, log_level="info")
    server = uvicorn.Server(config)
    await server.serve()


async def connect_with_retries() -> Client:
    """Connect to Temporal, retrying a few times before giving up."""
    target = f"{settings.temporal_host}:{settings.temporal_port}"
    for attempt in range(CONNECT_MAX_RETRIES):
        try:
            logger.info(f"Connecting to Temporal server at {target} (Attempt {attempt + 1}/{CONNECT_MAX_RETRIES})")
            return await Client.connect(target, namespace=settings.temporal_namespace)
        except Exception as e:
            if attempt < CONNECT_MAX_RETRIES - 1:
                logger.warning(f"Connection attempt {attempt + 1} failed: {e}. Retrying in {CONNECT_RETRY_DELAY_SECONDS}s...")
                await asyncio.sleep(CONNECT_RETRY_DELAY_SECONDS)
            else:
                logger.error(f"Failed to connect to Temporal server after {CONNECT_MAX_RETRIES} attempts: {e}")
                raise


def group_workflows_by_queue() -> Dict[str, List[type]]:
    """Workflows per task queue; the default queue follows TEMPORAL_TASK_QUEUE."""
    queues: Dict[str, List[type]] = {}
    for wf_name, metadata in WorkflowRegistry.get_all_workflows().items():
        queue = metadata.task_queue or DEFAULT_TASK_QUEUE
        if queue == DEFAULT_TASK_QUEUE:
            queue = settings.temporal_task_queue
        queues.setdefault(queue, []).append(metadata.workflow_class)
        logger.debug(f"Workflow '{wf_name}' assigned to queue '{queue}'")
    return queues


async def run_workers():
    """Connect to Temporal and run workers."""
    client = await connect_with_retries()
    logger.info("Successfully connected to Temporal server")

    all_activities = ActivityRegistry.get_all_activities()
    queues = group_workflows_by_queue()
    logger.info(f"Registered {sum(len(w) for w in queues.values())} workflows and {len(all_activities)} activities")

    workers = []
    for queue_name, workflows in queues.items():
        logger.debug(f"Starting worker for queue: {queue_name} (Workflows: {[w.__name__ for w in workflows]})")
        worker = Worker(
            client,
            task_queue=queue_name,
            workflows=workflows,
            activities=list(all_activities.values()),
            max_concurrent_activities=max(10, settings.pipeline.concurrency * 2),
            max_concurrent_workflow_tasks=20,
            workflow_runner=SandboxedWorkflowRunner(
                restrictions=SandboxRestrictions.default.with_passthrough_all_modules()
            ),
        )
        workers.append(worker.run())

    logger.info(f"Workers polling queues {list(queues.keys())} on {settings.temporal_host}:{settings.temporal_port}")
    await asyncio.gather(*workers)


async def main():
    """Start the Temporal worker(s)."""
    await asyncio.gather(
        run_health_check_server(),
        run_workers(),
    )


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Workers stopped by user")
    except Exception as e:
        logger.error(f"Worker failed: {e}", exc_info=True)
        raise
