"""Tests for guard, template and mapping evaluation."""

import pytest

from core.exceptions import ExpressionError
from db.models.workflow_execution import WorkflowExecution
from db.models.workflow_instance import WorkflowInstance
from workflow.conditions import (
    EvaluationContext,
    ExpressionEvaluator,
    context_for,
    merged_context,
)


@pytest.fixture
def ctx():
    return EvaluationContext(
        context={"tier": "gold", "score": 80},
        input={"userId": "u-1", "score": 10, "address": {"city": "Sofia"}},
        steps={"validate": {"valid": True, "fields": ["userId"]}},
    )


@pytest.mark.unit
class TestEvaluate:

    def test_flattened_keys_context_wins(self, ctx):
        assert ExpressionEvaluator.evaluate("score", ctx) == 80
        assert ExpressionEvaluator.evaluate("input.score", ctx) == 10

    def test_dot_access(self, ctx):
        assert ExpressionEvaluator.evaluate("address.city", ctx) == "Sofia"
        assert ExpressionEvaluator.evaluate("steps.validate.valid", ctx) is True

    def test_markers_optional(self, ctx):
        assert ExpressionEvaluator.evaluate("{{ tier == 'gold' }}", ctx) is True

    def test_safe_builtins(self, ctx):
        assert ExpressionEvaluator.evaluate("len(steps.validate.fields)", ctx) == 1

    def test_results_are_plain_dicts(self, ctx):
        value = ExpressionEvaluator.evaluate("input.address", ctx)
        assert type(value) is dict

    @pytest.mark.parametrize("expression", [
        "missing > 1",
        "steps.nothing.valid",
        "score >",
        "__import__('os')",
    ])
    def test_errors(self, ctx, expression):
        with pytest.raises(ExpressionError):
            ExpressionEvaluator.evaluate(expression, ctx)


@pytest.mark.unit
class TestConditions:

    @pytest.mark.parametrize("expression", [None, "", "   "])
    def test_blank_guard_is_true(self, ctx, expression):
        assert ExpressionEvaluator.evaluate_condition(expression, ctx) is True

    def test_truthiness(self, ctx):
        assert ExpressionEvaluator.evaluate_condition("score > 50", ctx) is True
        assert ExpressionEvaluator.evaluate_condition("input.score > 50", ctx) is False

    def test_broken_guard_raises(self, ctx):
        with pytest.raises(ExpressionError):
            ExpressionEvaluator.evaluate_condition("tier ==", ctx)


@pytest.mark.unit
class TestRender:

    def test_full_marker_keeps_type(self, ctx):
        assert ExpressionEvaluator.render("{{ score }}", ctx) == 80

    def test_partial_markers_become_strings(self, ctx):
        assert ExpressionEvaluator.render("user {{ userId }} in {{ address.city }}", ctx) == (
            "user u-1 in Sofia"
        )

    def test_plain_strings_untouched(self, ctx):
        assert ExpressionEvaluator.render("score", ctx) == "score"
        assert ExpressionEvaluator.render(5, ctx) == 5

    def test_resolve_nested(self, ctx):
        config = {"to": ["{{ userId }}", "static"], "meta": {"tier": "{{ tier }}", "n": 3}}
        assert ExpressionEvaluator.resolve(config, ctx) == {
            "to": ["u-1", "static"],
            "meta": {"tier": "gold", "n": 3},
        }


@pytest.mark.unit
class TestMappings:

    def test_apply_mapping(self, ctx):
        mapping = {"user": "userId", "city": "{{ address.city }}", "limit": 10, "flags": ["{{ tier }}"]}
        assert ExpressionEvaluator.apply_mapping(mapping, ctx) == {
            "user": "u-1",
            "city": "Sofia",
            "limit": 10,
            "flags": ["gold"],
        }

    def test_empty_mapping(self, ctx):
        assert ExpressionEvaluator.apply_mapping({}, ctx) == {}
        assert ExpressionEvaluator.apply_mapping(None, ctx) == {}

    def test_merged_context_sees_output(self, ctx):
        merged = merged_context(
            {"tier": "gold"}, {"accountId": "output.id", "owner": "userId"}, ctx, {"id": 99}
        )
        assert merged == {"tier": "gold", "accountId": 99, "owner": "u-1"}

    def test_merged_context_without_mapping(self, ctx):
        assert merged_context({"a": 1}, {}, ctx, {"id": 1}) == {"a": 1}


@pytest.mark.unit
class TestContextFor:

    def test_only_completed_steps_visible(self):
        instance = WorkflowInstance(input_data={"userId": "u-1"}, context_data={"x": 1})
        executions = [
            WorkflowExecution(step_name="a", status="COMPLETED", output_data={"ok": True}),
            WorkflowExecution(step_name="b", status="FAILED", output_data=None),
            WorkflowExecution(step_name="c", status="COMPLETED", output_data=None),
        ]
        ctx = context_for(instance, executions)
        assert ctx.input == {"userId": "u-1"}
        assert ctx.context == {"x": 1}
        assert ctx.steps == {"a": {"ok": True}, "c": {}}
