"""Tests for ordered deduction rules."""

from decimal import Decimal

import pytest

from payroll_processing.calculators.deductions import (
    DeductionConfigError,
    DeductionRule,
    apply_rules,
    build_rules,
)
from payroll_processing.calculators.money import MoneyRounder

ROUNDER = MoneyRounder()


class TestRuleParsing:
    """Test rule dicts are parsed and validated."""

    def test_fixed_rule(self):
        rule = DeductionRule.from_config({"code": "HMO", "kind": "fixed", "amount": "500"})
        assert rule.kind == "fixed"
        assert rule.amount == Decimal("500")
        assert rule.pre_tax is False

    def test_percent_rule_with_cap(self):
        rule = DeductionRule.from_config(
            {"code": "SSS", "kind": "percent", "rate": "4.5", "cap": "1350", "pre_tax": True}
        )
        assert rule.rate == Decimal("4.5")
        assert rule.cap == Decimal("1350")
        assert rule.pre_tax is True
        assert rule.basis == "taxable"

    def test_bracket_rows_sorted(self):
        rule = DeductionRule.from_config(
            {
                "code": "WTAX",
                "kind": "bracket",
                "brackets": [{"over": "30000", "rate": "20"}, {"over": "10000", "rate": "10"}],
            }
        )
        assert [b.over for b in rule.brackets] == [Decimal("10000"), Decimal("30000")]

    @pytest.mark.parametrize(
        "config",
        [
            {"kind": "fixed", "amount": "1"},
            {"code": "X", "kind": "unknown"},
            {"code": "X", "kind": "fixed"},
            {"code": "X", "kind": "fixed", "amount": "abc"},
            {"code": "X", "kind": "fixed", "amount": "-5"},
            {"code": "X", "kind": "percent"},
            {"code": "X", "kind": "percent", "rate": "5", "basis": "net"},
            {"code": "X", "kind": "bracket", "brackets": []},
            {"code": "X", "kind": "bracket", "brackets": ["15%"]},
            {"code": "X", "kind": "fixed", "amount": "1", "order": "first"},
            {"code": "X", "kind": "fixed", "amount": "1e40"},
            {"code": "X", "kind": "percent", "rate": "5", "cap": "1e13"},
        ],
    )
    def test_malformed_rules_rejected(self, config):
        """Malformed rule dicts raise DeductionConfigError."""
        with pytest.raises(DeductionConfigError):
            DeductionRule.from_config(config)

    def test_order_key_then_position(self):
        """Explicit order wins; ties keep list position."""
        rules = build_rules(
            [
                {"code": "A", "kind": "fixed", "amount": "1", "order": 2},
                {"code": "B", "kind": "fixed", "amount": "1"},
                {"code": "C", "kind": "fixed", "amount": "1", "order": 1},
                {"code": "D", "kind": "fixed", "amount": "1"},
            ]
        )
        assert [r.code for r in rules] == ["B", "D", "C", "A"]


class TestApplyRules:
    """Test rules are folded left-to-right over the taxable base."""

    def test_pre_tax_rule_lowers_later_base(self):
        """A pre-tax contribution reduces the base of later percent rules."""
        rules = build_rules(
            [
                {"code": "PENSION", "kind": "fixed", "amount": "1000", "pre_tax": True},
                {"code": "TAX", "kind": "percent", "rate": "10"},
            ]
        )
        lines, state = apply_rules(rules, Decimal("10000.00"), ROUNDER)

        assert [(l.code, l.amount) for l in lines] == [
            ("PENSION", Decimal("1000.00")),
            ("TAX", Decimal("900.00")),
        ]
        assert state.taxable_base == Decimal("9000.00")
        assert state.remaining == Decimal("8100.00")

    def test_gross_basis_ignores_pre_tax(self):
        rules = build_rules(
            [
                {"code": "PENSION", "kind": "fixed", "amount": "1000", "pre_tax": True},
                {"code": "UNION", "kind": "percent", "rate": "1", "basis": "gross"},
            ]
        )
        lines, _ = apply_rules(rules, Decimal("10000.00"), ROUNDER)
        assert lines[1].amount == Decimal("100.00")

    def test_percent_cap(self):
        rules = build_rules([{"code": "SSS", "kind": "percent", "rate": "4.5", "cap": "1350"}])
        lines, _ = apply_rules(rules, Decimal("50000.00"), ROUNDER)
        assert lines[0].amount == Decimal("1350.00")

    def test_bracket_uses_highest_matching_row(self):
        rules = build_rules(
            [
                {
                    "code": "WTAX",
                    "kind": "bracket",
                    "brackets": [
                        {"over": "20833", "rate": "15"},
                        {"over": "33333", "rate": "20", "base_amount": "1875"},
                    ],
                }
            ]
        )
        low, _ = apply_rules(rules, Decimal("20000.00"), ROUNDER)
        mid, _ = apply_rules(rules, Decimal("28650.00"), ROUNDER)
        high, _ = apply_rules(rules, Decimal("43333.00"), ROUNDER)

        assert low[0].amount == Decimal("0.00")
        assert mid[0].amount == Decimal("1172.55")
        assert high[0].amount == Decimal("3875.00")

    def test_deductions_clamped_to_remaining_pay(self):
        """Deductions never take more than the pay still available."""
        rules = build_rules(
            [
                {"code": "LOAN", "kind": "fixed", "amount": "1500"},
                {"code": "HMO", "kind": "fixed", "amount": "100"},
            ]
        )
        lines, state = apply_rules(rules, Decimal("1000.00"), ROUNDER)

        assert lines[0].amount == Decimal("1000.00")
        assert lines[0].explanation == "Clamped from 1500.00 to available pay"
        assert lines[1].amount == Decimal("0.00")
        assert state.remaining == Decimal("0.00")

    def test_each_amount_rounded(self):
        rules = build_rules([{"code": "TAX", "kind": "percent", "rate": "50"}])
        lines, _ = apply_rules(rules, Decimal("0.25"), ROUNDER)
        # 0.125 rounds half-even at the cent
        assert lines[0].amount == Decimal("0.12")
