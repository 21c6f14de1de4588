"""Database models for the workflow orchestration engine.

This module imports all models to ensure they are registered
with SQLAlchemy's declarative base.
"""

from db.models.workflow_definition import WorkflowDefinition
from db.models.workflow_step_definition import WorkflowStepDefinition
from db.models.workflow_instance import WorkflowInstance
from db.models.workflow_execution import WorkflowExecution

__all__ = [
    "WorkflowDefinition",
    "WorkflowStepDefinition",
    "WorkflowInstance",
    "WorkflowExecution",
]
