from typing import Dict, List, Type
from dataclasses import dataclass
from enum import Enum

from rfp_engine.temporal.core.constants import DEFAULT_TASK_QUEUE


class WorkflowType(str, Enum):
    """Workflow categories."""
    SHARED = "shared"
    ANSWER_PIPELINE = "answer_pipeline"


@dataclass
class WorkflowMetadata:
    """Metadata for workflow discovery."""
    workflow_class: Type
    name: str
    category: WorkflowType
    task_queue: str
    dependencies: List[str]  # Other workflows it depends on


class WorkflowRegistry:
    """Central registry for all workflows."""

    _workflows: Dict[str, WorkflowMetadata] = {}

    @classmethod
    def register(
        cls,
        category: WorkflowType,
        task_queue: str = DEFAULT_TASK_QUEUE,
        dependencies: List[str] = None
    ):
        """Decorator to register a workflow."""
        def decorator(workflow_class):
            metadata = WorkflowMetadata(
                workflow_class=workflow_class,
                name=workflow_class.__name__,
                category=category,
                task_queue=task_queue,
                dependencies=dependencies or []
            )
            cls._workflows[workflow_class.__name__] = metadata
            return workflow_class
        return decorator

    @classmethod
    def get_all_workflows(cls) -> Dict[str, WorkflowMetadata]:
        """Get all registered workflows."""
        return cls._workflows

    @classmethod
    def get_by_category(cls, category: WorkflowType) -> List[WorkflowMetadata]:
        """Get workflows by category."""
        return [w for w in cls._workflows.values() if w.category == category]
