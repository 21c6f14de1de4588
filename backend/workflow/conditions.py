"""Guard, template and mapping evaluation for workflow steps.

Expressions are plain Python expressions evaluated against a namespace
built from the instance:

- ``context.<key>`` / ``input.<key>``: instance context and input data
- ``<key>``: context and input keys flattened to the top level
  (context wins on collisions)
- ``steps.<step_name>.<key>``: outputs of previously completed steps
- ``output.<key>``: the step's own output (output mappings only)

Strings may wrap expressions in ``{{ }}``; a string that is exactly one
``{{ expr }}`` resolves to the raw value, otherwise each marker is
replaced by its string form.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Optional

import structlog

from core.constants import StepStatus
from core.exceptions import ExpressionError

logger = structlog.get_logger(__name__)

_TEMPLATE_MARKER = re.compile(r"\{\{\s*(.+?)\s*\}\}")

_SAFE_BUILTINS = {
    "True": True, "False": False, "None": None,
    "len": len, "int": int, "float": float, "str": str,
    "bool": bool, "list": list, "dict": dict, "abs": abs,
    "min": min, "max": max, "any": any, "all": all,
}


class _DotDict(dict):
    """Dict with attribute access so ``steps.validate.valid`` works in eval."""

    def __getattr__(self, name):
        try:
            return self[name]
        except KeyError:
            raise AttributeError(f"No key '{name}'")

    def __setattr__(self, name, value):
        self[name] = value


def _make_dot_dict(obj, _depth=0, _max_depth=50):
    """Recursively convert dicts to _DotDict for eval-friendly access."""
    if _depth >= _max_depth:
        return obj
    if isinstance(obj, dict) and not isinstance(obj, _DotDict):
        return _DotDict({k: _make_dot_dict(v, _depth + 1, _max_depth) for k, v in obj.items()})
    elif isinstance(obj, list):
        return [_make_dot_dict(item, _depth + 1, _max_depth) for item in obj]
    return obj


def _plain(obj):
    """Undo _DotDict wrapping so results are JSON-serializable plain dicts."""
    if isinstance(obj, dict):
        return {k: _plain(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_plain(v) for v in obj]
    return obj


@dataclass
class EvaluationContext:
    """Data an expression can see."""

    context: dict = field(default_factory=dict)
    input: dict = field(default_factory=dict)
    steps: dict = field(default_factory=dict)
    output: Optional[dict] = None

    def with_output(self, output: Optional[dict]) -> "EvaluationContext":
        return EvaluationContext(
            context=self.context, input=self.input, steps=self.steps, output=output or {}
        )

    def namespace(self) -> _DotDict:
        namespace = _DotDict()
        namespace.update(_make_dot_dict(self.input or {}))
        namespace.update(_make_dot_dict(self.context or {}))
        namespace["input"] = _make_dot_dict(self.input or {})
        namespace["context"] = _make_dot_dict(self.context or {})
        namespace["steps"] = _DotDict({
            name: _make_dot_dict(output or {}) for name, output in self.steps.items()
        })
        if self.output is not None:
            namespace["output"] = _make_dot_dict(self.output)
        return namespace


class ExpressionEvaluator:
    """Evaluates guards, templates and mappings."""

    @staticmethod
    def evaluate(expression: str, ctx: EvaluationContext) -> Any:
        """Evaluate a single expression, with or without ``{{ }}`` markers.

        Raises:
            ExpressionError: Syntax errors, unknown names, failing operations
        """
        expr = expression.strip()
        match = _TEMPLATE_MARKER.fullmatch(expr)
        if match:
            expr = match.group(1)
        try:
            value = eval(expr, {"__builtins__": _SAFE_BUILTINS}, ctx.namespace())
        except Exception as e:
            raise ExpressionError(f"Cannot evaluate {expression!r}: {e}")
        return _plain(value)

    @staticmethod
    def evaluate_condition(expression: Optional[str], ctx: EvaluationContext) -> bool:
        """Truth value of a guard. An absent or blank guard is true."""
        if expression is None or not expression.strip():
            return True
        result = bool(ExpressionEvaluator.evaluate(expression, ctx))
        logger.debug("guard_evaluated", expression=expression, result=result)
        return result

    @staticmethod
    def render(template: str, ctx: EvaluationContext) -> Any:
        """Resolve the ``{{ }}`` markers of one string.

        Strings without markers are returned unchanged.
        """
        if not isinstance(template, str) or "{{" not in template:
            return template
        match = _TEMPLATE_MARKER.fullmatch(template.strip())
        if match:
            return ExpressionEvaluator.evaluate(match.group(1), ctx)
        return _TEMPLATE_MARKER.sub(
            lambda m: str(ExpressionEvaluator.evaluate(m.group(1), ctx)), template
        )

    @staticmethod
    def resolve(value: Any, ctx: EvaluationContext) -> Any:
        """Recursively render every string inside dicts and lists."""
        if isinstance(value, str):
            return ExpressionEvaluator.render(value, ctx)
        if isinstance(value, dict):
            return {k: ExpressionEvaluator.resolve(v, ctx) for k, v in value.items()}
        if isinstance(value, list):
            return [ExpressionEvaluator.resolve(v, ctx) for v in value]
        return value

    @staticmethod
    def apply_mapping(mapping: dict, ctx: EvaluationContext) -> dict:
        """Evaluate a ``{key: expression}`` mapping.

        Values that are not strings are copied as literals; string values
        are expressions with optional ``{{ }}`` markers.
        """
        result = {}
        for key, expression in (mapping or {}).items():
            if isinstance(expression, str):
                result[key] = ExpressionEvaluator.evaluate(expression, ctx)
            else:
                result[key] = ExpressionEvaluator.resolve(expression, ctx)
        return result


def context_for(instance, executions) -> EvaluationContext:
    """Evaluation context of an instance given its executions so far."""
    return EvaluationContext(
        context=dict(instance.context_data or {}),
        input=dict(instance.input_data or {}),
        steps={
            e.step_name: e.output_data or {}
            for e in executions
            if e.status == StepStatus.COMPLETED.value
        },
    )


def merged_context(instance_context: dict, output_mapping: dict, ctx: EvaluationContext, output: dict) -> dict:
    """Instance context after merging a completed step's ``output_mapping``.

    Raises:
        ExpressionError: A mapping expression failed
    """
    if not output_mapping:
        return dict(instance_context or {})
    mapped = ExpressionEvaluator.apply_mapping(output_mapping, ctx.with_output(output))
    return {**(instance_context or {}), **mapped}
