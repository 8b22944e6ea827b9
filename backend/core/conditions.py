"""Alert-style indicator conditions.

A condition compares one indicator output against a constant, a closed
range, or another indicator output. All conditions of a set must hold;
evaluation stops at the first failure. Any missing data fails the set.
"""

from __future__ import annotations

import logging
from enum import Enum

from pydantic import BaseModel, ConfigDict, model_validator

from core.indicators.kinds import IndicatorRef, IndicatorTable
from core.models.candle import OhlcvSeries
from core.models.config import StrategyConfig

logger = logging.getLogger(__name__)


class Operator(str, Enum):
    GT = ">"
    LT = "<"
    GTE = ">="
    LTE = "<="
    EQ = "=="
    IN_RANGE = "in_range"
    CROSSES_ABOVE = "crosses_above"
    CROSSES_BELOW = "crosses_below"


class Condition(BaseModel):
    """One indicator condition."""

    model_config = ConfigDict(frozen=True)

    indicator: IndicatorRef
    operator: Operator
    target: float | tuple[float, float] | IndicatorRef

    @model_validator(mode="after")
    def _check_target(self) -> "Condition":
        is_range = isinstance(self.target, tuple)
        if self.operator == Operator.IN_RANGE and not is_range:
            raise ValueError("in_range requires a (min, max) target")
        if is_range:
            if self.operator != Operator.IN_RANGE:
                raise ValueError(f"{self.operator.value} does not accept a range target")
            lo, hi = self.target
            if lo > hi:
                raise ValueError(f"Range target min {lo} > max {hi}")
        return self

    def refs(self) -> list[IndicatorRef]:
        if isinstance(self.target, IndicatorRef):
            return [self.indicator, self.target]
        return [self.indicator]


def _fmt_target(target) -> str:
    if isinstance(target, IndicatorRef):
        return str(target)
    if isinstance(target, tuple):
        return f"[{target[0]:.4f}, {target[1]:.4f}]"
    return f"{target:.4f}"


class ConditionEvaluator:
    """Evaluate condition sets against a candle history."""

    def __init__(self, config: StrategyConfig | None = None):
        self.config = config or StrategyConfig()

    def evaluate(
        self, data: OhlcvSeries, conditions: list[Condition]
    ) -> tuple[bool, list[str]]:
        """Evaluate all conditions (logical AND).

        Args:
            data: Candle history ending at the bar being evaluated
            conditions: Conditions to check, in order

        Returns:
            Tuple of (all_met, reasons). Reasons are only returned when all
            conditions are met.
        """
        refs = [ref for cond in conditions for ref in cond.refs()]
        table = IndicatorTable.build(data, refs, self.config)
        return self.evaluate_table(table, conditions)

    def evaluate_table(
        self, table: IndicatorTable, conditions: list[Condition]
    ) -> tuple[bool, list[str]]:
        reasons: list[str] = []
        for cond in conditions:
            passed, reason = self._check(table, cond)
            if not passed:
                logger.debug("Condition failed: %s", reason or cond)
                return False, []
            reasons.append(reason)
        return True, reasons

    @staticmethod
    def _check(table: IndicatorTable, cond: Condition) -> tuple[bool, str]:
        op = cond.operator
        crossing = op in (Operator.CROSSES_ABOVE, Operator.CROSSES_BELOW)
        current = table.value(cond.indicator)
        previous = table.value(cond.indicator, offset=1) if crossing else None
        if current is None or (crossing and previous is None):
            return False, ""

        target = cond.target
        prev_target: float | None
        if isinstance(target, IndicatorRef):
            target_now = table.value(target)
            prev_target = table.value(target, offset=1) if crossing else None
            if target_now is None or (crossing and prev_target is None):
                return False, ""
        elif isinstance(target, tuple):
            target_now = prev_target = None
        else:
            target_now = prev_target = float(target)

        reason = f"{cond.indicator} ({current:.4f})"
        if op == Operator.IN_RANGE:
            lo, hi = target
            return lo <= current <= hi, f"{reason} is in range {_fmt_target(target)}"
        if op == Operator.CROSSES_ABOVE:
            passed = previous <= prev_target and current > target_now
            return passed, f"{reason} crosses above {_fmt_target(target)}"
        if op == Operator.CROSSES_BELOW:
            passed = previous >= prev_target and current < target_now
            return passed, f"{reason} crosses below {_fmt_target(target)}"
        if op == Operator.GT:
            return current > target_now, f"{reason} is > {target_now:.4f}"
        if op == Operator.LT:
            return current < target_now, f"{reason} is < {target_now:.4f}"
        if op == Operator.GTE:
            return current >= target_now, f"{reason} is >= {target_now:.4f}"
        if op == Operator.LTE:
            return current <= target_now, f"{reason} is <= {target_now:.4f}"
        return current == target_now, f"{reason} is exactly equal to {target_now:.4f}"
