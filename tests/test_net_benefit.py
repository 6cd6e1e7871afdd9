"""
Tests for the net benefit calculator.
"""
from decimal import Decimal

import pytest

from taxlot_engine.core.errors import ValidationError
from taxlot_engine.tax_harvesting.net_benefit import NetBenefitCalculator


class TestNetBenefit:
    def test_reference_case(self):
        result = NetBenefitCalculator(fixed_commission=10).calculate_net_benefit(1000, "0.002", "0.35")

        assert result.tax_savings == Decimal("350")
        assert result.total_costs == Decimal("12")
        assert result.net_benefit == Decimal("338")
        assert result.is_worthwhile is True

    def test_small_loss_is_not_worthwhile(self):
        # 20 * 0.35 = 7 savings, 10.04 costs
        result = NetBenefitCalculator().calculate_net_benefit(20, "0.002", "0.35")

        assert result.net_benefit < 0
        assert result.is_worthwhile is False

    def test_benefit_must_clear_floor_strictly(self):
        # savings 100, costs 50 -> net 50 == 5% of 1000
        calculator = NetBenefitCalculator(fixed_commission=0, min_benefit_ratio="0.05")
        result = calculator.calculate_net_benefit(1000, "0.05", "0.10")

        assert result.net_benefit == Decimal("50")
        assert result.is_worthwhile is False

    def test_defaults_come_from_config(self):
        calculator = NetBenefitCalculator()
        assert calculator.fixed_commission == Decimal("10.00")
        assert calculator.min_benefit_ratio == Decimal("0.05")

    def test_rejects_negative_loss(self):
        with pytest.raises(ValidationError):
            NetBenefitCalculator().calculate_net_benefit(-100, "0.002", "0.35")
