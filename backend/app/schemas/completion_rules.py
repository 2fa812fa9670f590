"""
Completion rule schemas.

Closed, validated shapes for the per-pallet `completion_rules` JSON. Unknown
metrics, comparators, operators or keys are rejected at construction time.
"""

import enum
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional


class CompletionMetric(str, enum.Enum):
    """Fill metrics a condition can reference."""
    BOTTLES = "bottles"
    PROFIT_SEK = "profit_sek"


class Comparator(str, enum.Enum):
    """Comparison operators."""
    GTE = ">="
    GT = ">"
    LTE = "<="
    LT = "<"


class LogicalOperator(str, enum.Enum):
    """Boolean combinators for conditions and groups."""
    AND = "AND"
    OR = "OR"


class EvaluationMode(str, enum.Enum):
    """
    SEQUENTIAL: ordered IF / ELSE IF groups, first matching group wins.
    COMBINE: every group is evaluated and combined with the ruleset operator.
    """
    SEQUENTIAL = "SEQUENTIAL"
    COMBINE = "COMBINE"


class Condition(BaseModel):
    """A single comparison, e.g. bottles >= 600."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    metric: CompletionMetric
    op: Comparator
    value: float


class Group(BaseModel):
    """Conditions combined with AND / OR. An empty group never matches."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    operator: LogicalOperator = LogicalOperator.AND
    conditions: List[Condition] = Field(default_factory=list)


class RuleSet(BaseModel):
    """Per-pallet completion rules."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    mode: EvaluationMode = EvaluationMode.SEQUENTIAL
    operator: Optional[LogicalOperator] = None
    groups: List[Group] = Field(default_factory=list)


class CompletionMetrics(BaseModel):
    """The metric values rules are evaluated against."""
    bottles: int = 0
    profit_sek: float = 0.0


class GroupResult(BaseModel):
    """Outcome of one group, for explaining an evaluation."""
    index: int
    matched: bool
    conditions: List[bool]


class RuleExplanation(BaseModel):
    """Full evaluation trace of a ruleset against metrics."""
    result: Optional[bool]
    mode: Optional[EvaluationMode] = None
    matched_group: Optional[int] = None
    groups: List[GroupResult] = Field(default_factory=list)
    description: str
