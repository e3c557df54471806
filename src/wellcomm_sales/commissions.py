"""Commission resolution for seller and installer payouts.

Commissions are computed on read from the current configuration and are never
stored, so editing the global config or a seller's rule changes historical
reports as well.

The global scheme is asymmetric on purpose: sellers earn a fixed amount and
installers a share of the plan price. A :class:`CommissionRule` lifts that
restriction and lets either party use either kind of term.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from .constants import (
    DEFAULT_INSTALLER_FREE_PERCENTAGE,
    DEFAULT_INSTALLER_PAID_PERCENTAGE,
    DEFAULT_SELLER_FREE_COMMISSION,
    DEFAULT_SELLER_PAID_COMMISSION,
    CommissionValueType,
    InstallationType,
)


@dataclass(frozen=True)
class CommissionTerm:
    """A single commission clause: a value and how to apply it."""

    kind: CommissionValueType
    value: Decimal

    def amount(self, plan_price: Decimal) -> Decimal:
        if self.kind is CommissionValueType.FIXED:
            return self.value
        if self.kind is CommissionValueType.PERCENTAGE:
            return self.value * plan_price
        raise ValueError(f"Unsupported commission kind: {self.kind}")

    @classmethod
    def fixed(cls, value: Decimal) -> "CommissionTerm":
        return cls(CommissionValueType.FIXED, Decimal(value))

    @classmethod
    def percentage(cls, value: Decimal) -> "CommissionTerm":
        return cls(CommissionValueType.PERCENTAGE, Decimal(value))


@dataclass(frozen=True)
class CommissionRule:
    """Per-seller override of the global commission scheme."""

    name: str
    seller_free: CommissionTerm
    seller_paid: CommissionTerm
    installer_free: CommissionTerm
    installer_paid: CommissionTerm

    def seller_term(self, installation_type: InstallationType) -> CommissionTerm:
        return self.seller_free if installation_type is InstallationType.FREE else self.seller_paid

    def installer_term(self, installation_type: InstallationType) -> CommissionTerm:
        return self.installer_free if installation_type is InstallationType.FREE else self.installer_paid


@dataclass(frozen=True)
class CommissionConfig:
    """Global commission settings used when a seller has no rule."""

    seller_free_commission: Decimal = DEFAULT_SELLER_FREE_COMMISSION
    seller_paid_commission: Decimal = DEFAULT_SELLER_PAID_COMMISSION
    installer_free_percentage: Decimal = DEFAULT_INSTALLER_FREE_PERCENTAGE
    installer_paid_percentage: Decimal = DEFAULT_INSTALLER_PAID_PERCENTAGE


@dataclass(frozen=True)
class CommissionBreakdown:
    """Seller and installer payout for one transaction."""

    seller_commission: Decimal
    installer_commission: Decimal


def resolve_commissions(
    installation_type: InstallationType,
    plan_price: Decimal,
    rule: Optional[CommissionRule],
    config: CommissionConfig,
) -> CommissionBreakdown:
    """Compute both commissions for one transaction.

    Args:
        installation_type (InstallationType): Tier selecting the FREE or PAID
            terms.
        plan_price (Decimal): Current price of the transaction's plan.
        rule (CommissionRule | None): The seller's override rule. When present
            ``config`` is not consulted at all.
        config (CommissionConfig): Global fallback settings.

    Returns:
        CommissionBreakdown: Seller and installer amounts.
    """

    installation_type = InstallationType(installation_type)
    if rule is not None:
        return CommissionBreakdown(
            seller_commission=rule.seller_term(installation_type).amount(plan_price),
            installer_commission=rule.installer_term(installation_type).amount(plan_price),
        )

    if installation_type is InstallationType.FREE:
        return CommissionBreakdown(
            seller_commission=config.seller_free_commission,
            installer_commission=plan_price * config.installer_free_percentage,
        )
    return CommissionBreakdown(
        seller_commission=config.seller_paid_commission,
        installer_commission=plan_price * config.installer_paid_percentage,
    )


__all__ = [
    "CommissionTerm",
    "CommissionRule",
    "CommissionConfig",
    "CommissionBreakdown",
    "resolve_commissions",
]
