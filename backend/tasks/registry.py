"""
Task Registry — handlers available to AUTOMATIC steps.

Maps handler keys to BaseTask subclasses. A step picks its handler with
``configuration.handler``, falling back to its ``service_endpoint`` and
then its ``step_name``; keys nobody registered resolve to the no-op task.
"""

from typing import Any, Dict, Optional, Type

from tasks.base_task import BaseTask
from tasks.implementations.approval_tasks import APPROVAL_TASK_TYPES, NoOpTask


class TaskRegistry:
    """Central registry for AUTOMATIC step handlers."""

    def __init__(self, **dependencies: Any):
        self._tasks: Dict[str, Type[BaseTask]] = {}
        self._dependencies = dependencies
        self._register_builtin_tasks()

    def _register_builtin_tasks(self):
        for task_type, task_class in APPROVAL_TASK_TYPES.items():
            self.register(task_type, task_class)

    def register(self, task_type: str, task_class: Type[BaseTask]):
        """Register a new handler."""
        self._tasks[task_type] = task_class

    def set_dependencies(self, **dependencies: Any) -> None:
        self._dependencies.update(dependencies)

    def get(self, task_type: str) -> Optional[Type[BaseTask]]:
        """Get a task class by handler key."""
        return self._tasks.get(task_type)

    def resolve(self, *keys: Optional[str]) -> BaseTask:
        """Instantiate the first registered handler among ``keys``."""
        for key in keys:
            if key and key in self._tasks:
                return self._tasks[key](**self._dependencies)
        return NoOpTask(**self._dependencies)

    def list_all(self) -> list:
        """List all registered handlers with metadata."""
        return [
            {
                "task_type": task_type,
                "display_name": cls.display_name,
                "description": cls.description,
            }
            for task_type, cls in self._tasks.items()
        ]

    @property
    def available_types(self) -> list:
        return list(self._tasks.keys())
