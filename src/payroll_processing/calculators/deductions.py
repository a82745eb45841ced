"""Ordered deduction rules applied over an accumulating taxable base.

Rules are configured per employee as a list of dicts and applied
left-to-right (by ``order``, then by list position). Each rule is a pure
function of the running ``DeductionState``; a pre-tax rule lowers the
taxable base seen by every rule after it.

Supported kinds::

    {"code": "HMO", "kind": "fixed", "amount": "500"}
    {"code": "SSS", "kind": "percent", "rate": "4.5", "cap": "1350", "pre_tax": true}
    {"code": "WTAX", "kind": "bracket", "brackets": [
        {"over": "10417", "rate": "15", "base_amount": "0"},
        {"over": "16667", "rate": "20", "base_amount": "937.50"}]}

``rate`` values are percentages. ``basis`` selects ``"gross"`` or
``"taxable"`` (default) for percent rules.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Sequence

from payroll_processing.calculators.money import MoneyRounder
from payroll_processing.calculators.types import DeductionLine

DEDUCTION_KINDS = ("fixed", "percent", "bracket")
HUNDRED = Decimal("100")
MAX_CONFIG_VALUE = Decimal("1e12")


class DeductionConfigError(ValueError):
    """Raised when a deduction rule dict is malformed."""


def _decimal(value: Any, field_name: str, code: str) -> Decimal:
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise DeductionConfigError(
            f"Deduction {code}: '{field_name}' is not a number ({value!r})"
        ) from e
    if not result.is_finite() or result < 0:
        raise DeductionConfigError(
            f"Deduction {code}: '{field_name}' must be a non-negative number"
        )
    if result > MAX_CONFIG_VALUE:
        raise DeductionConfigError(f"Deduction {code}: '{field_name}' is out of range")
    return result


@dataclass(frozen=True)
class Bracket:
    """One row of a progressive table: base_amount + rate% of the excess over ``over``."""

    over: Decimal
    rate: Decimal
    base_amount: Decimal = Decimal("0")


@dataclass(frozen=True)
class DeductionState:
    """Running totals threaded through the rule sequence."""

    gross: Decimal
    taxable_base: Decimal
    remaining: Decimal


@dataclass(frozen=True)
class DeductionRule:
    """A single configured deduction."""

    code: str
    kind: str
    order: int = 0
    position: int = 0
    pre_tax: bool = False
    amount: Decimal | None = None
    rate: Decimal | None = None
    basis: str = "taxable"
    cap: Decimal | None = None
    brackets: tuple[Bracket, ...] = ()

    @classmethod
    def from_config(cls, config: dict[str, Any], position: int = 0) -> DeductionRule:
        """Parse a rule dict, raising DeductionConfigError when malformed."""
        if not isinstance(config, dict):
            raise DeductionConfigError(f"Deduction #{position} must be an object")

        code = str(config.get("code") or "").strip()
        if not code:
            raise DeductionConfigError(f"Deduction #{position} has no code")

        kind = config.get("kind")
        if kind not in DEDUCTION_KINDS:
            raise DeductionConfigError(
                f"Deduction {code}: kind must be one of {', '.join(DEDUCTION_KINDS)}"
            )

        try:
            order = int(config.get("order", 0))
        except (TypeError, ValueError) as e:
            raise DeductionConfigError(f"Deduction {code}: order must be an integer") from e

        basis = config.get("basis", "taxable")
        if basis not in ("gross", "taxable"):
            raise DeductionConfigError(f"Deduction {code}: basis must be 'gross' or 'taxable'")

        cap = config.get("cap")
        rule = cls(
            code=code,
            kind=kind,
            order=order,
            position=position,
            pre_tax=bool(config.get("pre_tax", False)),
            basis=basis,
            cap=_decimal(cap, "cap", code) if cap is not None else None,
        )

        if kind == "fixed":
            if config.get("amount") is None:
                raise DeductionConfigError(f"Deduction {code}: fixed rule requires 'amount'")
            return replace(rule, amount=_decimal(config["amount"], "amount", code))

        if kind == "percent":
            if config.get("rate") is None:
                raise DeductionConfigError(f"Deduction {code}: percent rule requires 'rate'")
            return replace(rule, rate=_decimal(config["rate"], "rate", code))

        rows = config.get("brackets")
        if not rows or not isinstance(rows, list):
            raise DeductionConfigError(f"Deduction {code}: bracket rule requires 'brackets'")
        brackets = tuple(
            sorted(
                (
                    Bracket(
                        over=_decimal(row.get("over", 0), "over", code),
                        rate=_decimal(row.get("rate", 0), "rate", code),
                        base_amount=_decimal(row.get("base_amount", 0), "base_amount", code),
                    )
                    for row in rows
                    if isinstance(row, dict)
                ),
                key=lambda b: b.over,
            )
        )
        if len(brackets) != len(rows):
            raise DeductionConfigError(f"Deduction {code}: every bracket must be an object")
        return replace(rule, brackets=brackets)

    def compute(self, state: DeductionState) -> Decimal:
        """Raw (unrounded, unclamped) deduction amount for this state."""
        if self.kind == "fixed":
            raw = self.amount or Decimal("0")
        elif self.kind == "percent":
            base = state.gross if self.basis == "gross" else state.taxable_base
            raw = base * (self.rate or Decimal("0")) / HUNDRED
        else:
            raw = Decimal("0")
            for bracket in self.brackets:
                if state.taxable_base > bracket.over:
                    excess = state.taxable_base - bracket.over
                    raw = bracket.base_amount + excess * bracket.rate / HUNDRED

        if self.cap is not None:
            raw = min(raw, self.cap)
        return raw

    def apply(
        self, state: DeductionState, rounder: MoneyRounder
    ) -> tuple[DeductionLine, DeductionState]:
        """Apply the rule, clamping to the pay still available."""
        requested = rounder.round(self.compute(state))
        amount = rounder.round(MoneyRounder.clamp(requested, state.remaining))

        explanation = None
        if amount < requested:
            explanation = f"Clamped from {requested} to available pay"

        taxable = state.taxable_base
        if self.pre_tax:
            taxable = max(taxable - amount, Decimal("0"))

        line = DeductionLine(
            code=self.code,
            amount=amount,
            pre_tax=self.pre_tax,
            explanation=explanation,
        )
        return line, DeductionState(
            gross=state.gross,
            taxable_base=taxable,
            remaining=state.remaining - amount,
        )


def build_rules(configs: Iterable[dict[str, Any]]) -> list[DeductionRule]:
    """Parse and order rule dicts (stable on list position)."""
    rules = [DeductionRule.from_config(c, position=i) for i, c in enumerate(configs)]
    return sorted(rules, key=lambda r: (r.order, r.position))


def apply_rules(
    rules: Sequence[DeductionRule],
    gross: Decimal,
    rounder: MoneyRounder,
) -> tuple[list[DeductionLine], DeductionState]:
    """Fold the rules left-to-right over the gross pay."""
    state = DeductionState(gross=gross, taxable_base=gross, remaining=gross)
    lines: list[DeductionLine] = []
    for rule in rules:
        line, state = rule.apply(state, rounder)
        lines.append(line)
    return lines, state
