"""
Base task interface for AUTOMATIC workflow steps.

Every handler an AUTOMATIC step can name (``configuration.handler``)
inherits from BaseTask and implements execute().
"""

import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog

logger = structlog.get_logger(__name__)


class TaskResult:
    """Standardized result from task execution."""

    def __init__(
        self,
        success: bool,
        output: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
        duration_ms: float = 0,
    ):
        self.success = success
        self.output = output or {}
        self.error = error
        self.duration_ms = duration_ms
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "output": self.output,
            "error": self.error,
            "duration_ms": self.duration_ms,
            "timestamp": self.timestamp.isoformat(),
        }


class BaseTask(ABC):
    """
    Abstract base class for AUTOMATIC step handlers.

    Subclasses must implement:
    - execute(config, context) -> TaskResult
    - task_type (class attribute, the handler key)

    Collaborators (e.g. the identity port) are passed as keyword
    arguments by the registry and kept on ``self.dependencies``.

    The ``context`` given to execute() holds:
    - ``instance_id``, ``step_name``, ``entity_type``, ``entity_id``
    - ``input``: instance input data
    - ``context``: instance context data
    - ``steps``: outputs of completed steps by step name
    """

    task_type: str = "base"
    display_name: str = "Base Task"
    description: str = "Abstract base task"

    def __init__(self, **dependencies: Any):
        self.dependencies = dependencies

    @abstractmethod
    async def execute(
        self,
        config: Dict[str, Any],
        context: Dict[str, Any],
    ) -> TaskResult:
        """
        Execute the task with given configuration.

        Args:
            config: Step configuration with templates already resolved
            context: Execution context (see class docstring)

        Returns:
            TaskResult with output or error
        """
        pass

    async def run(
        self,
        config: Dict[str, Any],
        context: Optional[Dict[str, Any]] = None,
    ) -> TaskResult:
        """
        Run the task with timing and error handling.

        This is the entry point called by the step dispatcher. Exceptions
        are turned into an unsuccessful TaskResult carrying the message.
        """
        start = time.monotonic()
        try:
            logger.info(
                "Task starting",
                task_type=self.task_type,
                step_name=(context or {}).get("step_name"),
            )
            result = await self.execute(config, context or {})
            result.duration_ms = (time.monotonic() - start) * 1000

            logger.info(
                "Task completed",
                task_type=self.task_type,
                success=result.success,
                duration_ms=round(result.duration_ms, 2),
            )
            return result

        except Exception as e:
            duration_ms = (time.monotonic() - start) * 1000
            logger.error(
                "Task failed",
                task_type=self.task_type,
                error=str(e),
                duration_ms=round(duration_ms, 2),
            )
            return TaskResult(
                success=False,
                error=str(e),
                duration_ms=duration_ms,
            )
