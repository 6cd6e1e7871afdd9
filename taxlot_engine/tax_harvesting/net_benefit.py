"""
Net tax benefit calculation.

Turns a candidate loss into an after-cost benefit estimate. The loss is
assumed to offset short-term gains, the highest-rate offset available.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from taxlot_engine.core.config import Config
from taxlot_engine.core.errors import ValidationError
from taxlot_engine.core.utils import Number, to_decimal


@dataclass(frozen=True)
class NetBenefit:
    """Benefit estimate for realizing a loss."""
    loss_amount: Decimal
    tax_savings: Decimal
    total_costs: Decimal
    net_benefit: Decimal
    is_worthwhile: bool

    def to_dict(self) -> dict:
        return {
            "loss_amount": float(self.loss_amount),
            "tax_savings": float(self.tax_savings),
            "total_costs": float(self.total_costs),
            "net_benefit": float(self.net_benefit),
            "is_worthwhile": self.is_worthwhile,
        }


class NetBenefitCalculator:
    """Pure calculator; holds only its cost assumptions."""

    def __init__(self, fixed_commission: Optional[Number] = None, min_benefit_ratio: Optional[Number] = None):
        self.fixed_commission = to_decimal(
            Config.FIXED_COMMISSION if fixed_commission is None else fixed_commission)
        self.min_benefit_ratio = to_decimal(
            Config.MIN_BENEFIT_RATIO if min_benefit_ratio is None else min_benefit_ratio)

    def calculate_net_benefit(self, loss_amount: Number, slippage_rate: Number,
                              short_term_rate: Number) -> NetBenefit:
        """
        Calculate the net benefit of realizing ``loss_amount``.

        taxSavings = loss * short_term_rate
        totalCosts = loss * slippage_rate + fixed_commission
        netBenefit = taxSavings - totalCosts, worthwhile above min_benefit_ratio of the loss

        Args:
            loss_amount: Loss to realize, as a positive amount
            slippage_rate: Expected execution slippage as a fraction of the loss
            short_term_rate: Short-term tax rate

        Returns:
            NetBenefit
        """
        loss_amount = to_decimal(loss_amount)
        slippage_rate = to_decimal(slippage_rate)
        short_term_rate = to_decimal(short_term_rate)
        if loss_amount < 0:
            raise ValidationError(f"Loss amount must be expressed as a positive number, got {loss_amount}")

        tax_savings = loss_amount * short_term_rate
        total_costs = loss_amount * slippage_rate + self.fixed_commission
        net_benefit = tax_savings - total_costs
        return NetBenefit(
            loss_amount=loss_amount,
            tax_savings=tax_savings,
            total_costs=total_costs,
            net_benefit=net_benefit,
            is_worthwhile=net_benefit > loss_amount * self.min_benefit_ratio,
        )
