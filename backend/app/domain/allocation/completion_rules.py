"""
Completion rule evaluation.

A ruleset decides whether a pallet is complete given its fill metrics:

- A group with no conditions never matches.
- SEQUENTIAL (default): IF group1 ELSE IF group2 ... ELSE Incomplete, so the
  pallet is complete as soon as any group matches.
- COMBINE: group results are folded with the ruleset operator (default OR).
- No ruleset, or a ruleset without groups, is indeterminate (None). Callers
  treat None as "not configured", never as complete.
"""

import operator
from typing import Any, Callable, Dict, List, Optional, Union

from backend.app.schemas.completion_rules import (
    Comparator, CompletionMetric, CompletionMetrics, Condition, EvaluationMode,
    Group, GroupResult, LogicalOperator, RuleExplanation, RuleSet,
)

_COMPARATORS: Dict[Comparator, Callable[[float, float], bool]] = {
    Comparator.GTE: operator.ge,
    Comparator.GT: operator.gt,
    Comparator.LTE: operator.le,
    Comparator.LT: operator.lt,
}

_METRIC_LABELS = {
    CompletionMetric.BOTTLES: "Bottles",
    CompletionMetric.PROFIT_SEK: "Profit (SEK)",
}

RuleSource = Union[RuleSet, Dict[str, Any], None]


def load_rules(raw: RuleSource) -> Optional[RuleSet]:
    """Accept a RuleSet or its stored JSON form."""
    if raw is None or isinstance(raw, RuleSet):
        return raw
    return RuleSet.model_validate(raw)


def _metric_value(metrics: CompletionMetrics, metric: CompletionMetric) -> float:
    if metric == CompletionMetric.BOTTLES:
        return metrics.bottles
    return metrics.profit_sek


def _condition_holds(condition: Condition, metrics: CompletionMetrics) -> bool:
    return _COMPARATORS[condition.op](_metric_value(metrics, condition.metric), condition.value)


def _combine(op: LogicalOperator, values: List[bool]) -> bool:
    return all(values) if op == LogicalOperator.AND else any(values)


def _group_result(index: int, group: Group, metrics: CompletionMetrics) -> GroupResult:
    conditions = [_condition_holds(c, metrics) for c in group.conditions]
    matched = bool(conditions) and _combine(group.operator, conditions)
    return GroupResult(index=index, matched=matched, conditions=conditions)


def explain(rules: RuleSource, metrics: CompletionMetrics) -> RuleExplanation:
    """Evaluate and keep the per-group trace."""
    ruleset = load_rules(rules)
    description = format_rules(ruleset)
    if ruleset is None or not ruleset.groups:
        return RuleExplanation(result=None, description=description)

    groups = [_group_result(i, g, metrics) for i, g in enumerate(ruleset.groups)]
    outcomes = [g.matched for g in groups]
    matched_group = next((g.index for g in groups if g.matched), None)

    if ruleset.mode == EvaluationMode.SEQUENTIAL:
        result = any(outcomes)
    else:
        result = _combine(ruleset.operator or LogicalOperator.OR, outcomes)

    return RuleExplanation(
        result=result,
        mode=ruleset.mode,
        matched_group=matched_group if result else None,
        groups=groups,
        description=description,
    )


def evaluate(rules: RuleSource, metrics: CompletionMetrics) -> Optional[bool]:
    return explain(rules, metrics).result


def _format_number(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


def _format_condition(condition: Condition) -> str:
    return f"{_METRIC_LABELS[condition.metric]} {condition.op.value} {_format_number(condition.value)}"


def _format_group(group: Group) -> str:
    if not group.conditions:
        return "(—)"
    joiner = f" {group.operator.value} "
    return "(" + joiner.join(_format_condition(c) for c in group.conditions) + ")"


def format_rules(rules: RuleSource) -> str:
    """Human-readable IF / ELSE IF rendering."""
    ruleset = load_rules(rules)
    if ruleset is None or not ruleset.groups:
        return "IF — ELSE —"

    steps = [_format_group(g) for g in ruleset.groups]
    if ruleset.mode == EvaluationMode.SEQUENTIAL:
        else_ifs = "".join(f" ELSE IF {step} THEN Complete" for step in steps[1:])
        return f"IF {steps[0]} THEN Complete{else_ifs} ELSE Incomplete"

    joiner = f" {(ruleset.operator or LogicalOperator.OR).value} "
    return f"IF {joiner.join(steps)} THEN Complete ELSE Incomplete"
