# Overview: Quantity-threshold line pricing for a product in a subcategory.

"""
Line Pricing

WHY: Buying in bulk earns a discount configured per subcategory. A rule
either takes a percentage off the line or replaces the whole line total with
a flat amount.

All arithmetic stays in Decimal cents at full precision. Rounding to whole
cents happens only when a figure leaves the pricing layer (to_cents).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from ..errors import ValidationError
from ..models import QuantityPriceRule
from ..statuses import RuleKind

logger = logging.getLogger(__name__)

BPS_DENOMINATOR = Decimal(10000)
ZERO = Decimal(0)


def to_cents(value: Decimal) -> int:
    """Round half-up to whole cents."""
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class AppliedRule:
    rule_id: int
    threshold_quantity: int
    kind: str
    value: int
    message: str

    def to_dict(self) -> dict:
        return {
            "rule_id": self.rule_id,
            "threshold_quantity": self.threshold_quantity,
            "kind": self.kind,
            "value": self.value,
            "message": self.message,
        }


@dataclass(frozen=True)
class LinePricing:
    quantity: int
    base_unit_price: Decimal
    unit_effective_price: Decimal
    line_total: Decimal
    original_line_total: Decimal
    savings: Decimal
    applied_rule: Optional[AppliedRule] = None


class PricingResolver:
    """
    Resolves the cheapest applicable quantity rule for one cart line.

    Collaborators:
        session: SQLAlchemy session used to read active rules
    """

    def __init__(self, session):
        self.session = session

    def active_rules(self, subcategory_id: int, quantity: int) -> list[QuantityPriceRule]:
        return (
            self.session.query(QuantityPriceRule)
            .filter(
                QuantityPriceRule.subcategory_id == subcategory_id,
                QuantityPriceRule.is_active.is_(True),
                QuantityPriceRule.threshold_quantity <= quantity,
            )
            # Higher threshold first so it wins ties
            .order_by(QuantityPriceRule.threshold_quantity.desc(), QuantityPriceRule.id.asc())
            .all()
        )

    def resolve(self, base_unit_price, subcategory_id: Optional[int], quantity: int) -> LinePricing:
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
            raise ValidationError("Quantity must be a positive integer", details={"quantity": quantity})

        base = Decimal(base_unit_price)
        original = base * quantity
        undiscounted = LinePricing(
            quantity=quantity,
            base_unit_price=base,
            unit_effective_price=base,
            line_total=original,
            original_line_total=original,
            savings=ZERO,
        )
        if subcategory_id is None:
            return undiscounted

        best_total = original
        best_rule = None
        for rule in self.active_rules(subcategory_id, quantity):
            candidate = self._candidate_total(rule, original)
            if candidate < best_total:
                best_total = candidate
                best_rule = rule

        if best_rule is None:
            return undiscounted

        return LinePricing(
            quantity=quantity,
            base_unit_price=base,
            unit_effective_price=best_total / quantity,
            line_total=best_total,
            original_line_total=original,
            savings=original - best_total,
            applied_rule=AppliedRule(
                rule_id=best_rule.id,
                threshold_quantity=best_rule.threshold_quantity,
                kind=best_rule.kind,
                value=best_rule.value,
                message=best_rule.describe(),
            ),
        )

    def _candidate_total(self, rule: QuantityPriceRule, original: Decimal) -> Decimal:
        if rule.kind == RuleKind.PERCENTAGE.value:
            candidate = original * (BPS_DENOMINATOR - Decimal(rule.value)) / BPS_DENOMINATOR
        elif rule.kind == RuleKind.FIXED_TOTAL.value:
            # Flat replacement of the whole line total
            candidate = Decimal(rule.value)
        else:
            logger.warning("Ignoring quantity rule %s with unknown kind %r", rule.id, rule.kind)
            return original

        if not candidate.is_finite() or candidate < ZERO:
            logger.warning(
                "Quantity rule %s produced %s for a line worth %s; clamping to undiscounted total",
                rule.id, candidate, original,
            )
            return original
        return candidate
