"""
Completion rule evaluation and rendering.
"""

import pytest
from pydantic import ValidationError

from backend.app.domain.allocation.completion_rules import evaluate, explain, format_rules, load_rules
from backend.app.schemas.completion_rules import CompletionMetrics, RuleSet

SEQUENTIAL_RULES = {
    "groups": [
        {"operator": "AND", "conditions": [{"metric": "bottles", "op": ">=", "value": 600}]},
        {"operator": "AND", "conditions": [
            {"metric": "bottles", "op": ">=", "value": 300},
            {"metric": "profit_sek", "op": ">=", "value": 5000},
        ]},
    ]
}


def metrics(bottles, profit_sek=0.0):
    return CompletionMetrics(bottles=bottles, profit_sek=profit_sek)


# TEST 1: Sequential groups
def test_sequential_first_group_matches():
    explanation = explain(SEQUENTIAL_RULES, metrics(650))
    assert explanation.result is True
    assert explanation.matched_group == 0


def test_sequential_falls_through_to_second_group():
    explanation = explain(SEQUENTIAL_RULES, metrics(300, 6000))
    assert explanation.result is True
    assert explanation.matched_group == 1


def test_sequential_incomplete_when_no_group_matches():
    explanation = explain(SEQUENTIAL_RULES, metrics(300, 1000))
    assert explanation.result is False
    assert explanation.matched_group is None
    assert [g.matched for g in explanation.groups] == [False, False]


# TEST 2: Indeterminate rules
@pytest.mark.parametrize("rules", [None, {}, {"groups": []}])
def test_missing_rules_are_indeterminate(rules):
    assert evaluate(rules, metrics(10_000, 1_000_000)) is None


def test_empty_group_never_matches():
    rules = {"groups": [{"operator": "AND", "conditions": []}]}
    assert evaluate(rules, metrics(10_000)) is False


# TEST 3: Combine mode
def test_combine_defaults_to_or():
    rules = {
        "mode": "COMBINE",
        "groups": [
            {"conditions": [{"metric": "bottles", "op": ">=", "value": 600}]},
            {"conditions": [{"metric": "profit_sek", "op": ">", "value": 5000}]},
        ],
    }
    assert evaluate(rules, metrics(100, 5001)) is True
    assert evaluate(rules, metrics(100, 5000)) is False


def test_combine_with_and():
    rules = {
        "mode": "COMBINE",
        "operator": "AND",
        "groups": [
            {"conditions": [{"metric": "bottles", "op": ">=", "value": 600}]},
            {"operator": "OR", "conditions": [
                {"metric": "profit_sek", "op": ">=", "value": 5000},
                {"metric": "bottles", "op": ">=", "value": 1000},
            ]},
        ],
    }
    assert evaluate(rules, metrics(600, 5000)) is True
    assert evaluate(rules, metrics(600, 4999)) is False


def test_less_than_comparators():
    rules = {"groups": [{"conditions": [
        {"metric": "bottles", "op": "<", "value": 10},
        {"metric": "profit_sek", "op": "<=", "value": 0},
    ]}]}
    assert evaluate(rules, metrics(9, 0)) is True
    assert evaluate(rules, metrics(10, 0)) is False


# TEST 4: Closed rule types
@pytest.mark.parametrize("bad", [
    {"groups": [{"conditions": [{"metric": "weight_kg", "op": ">=", "value": 1}]}]},
    {"groups": [{"conditions": [{"metric": "bottles", "op": "==", "value": 1}]}]},
    {"groups": [{"operator": "XOR", "conditions": []}]},
    {"groups": [], "extra": True},
])
def test_unknown_rule_shapes_are_rejected(bad):
    with pytest.raises(ValidationError):
        load_rules(bad)


def test_load_rules_accepts_ruleset_instance():
    ruleset = RuleSet.model_validate(SEQUENTIAL_RULES)
    assert load_rules(ruleset) is ruleset


# TEST 5: Rendering
def test_format_sequential_rules():
    assert format_rules(SEQUENTIAL_RULES) == (
        "IF (Bottles >= 600) THEN Complete "
        "ELSE IF (Bottles >= 300 AND Profit (SEK) >= 5000) THEN Complete "
        "ELSE Incomplete"
    )


def test_format_without_rules():
    assert format_rules(None) == "IF — ELSE —"


def test_format_combine_rules_with_empty_group():
    rules = {
        "mode": "COMBINE",
        "operator": "AND",
        "groups": [
            {"conditions": [{"metric": "profit_sek", "op": ">", "value": 2500.5}]},
            {"conditions": []},
        ],
    }
    assert format_rules(rules) == "IF (Profit (SEK) > 2500.5) AND (—) THEN Complete ELSE Incomplete"
