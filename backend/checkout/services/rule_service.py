# Overview: Administration of quantity price rules per subcategory.

from __future__ import annotations

import logging
from typing import Optional

from ..errors import NotFound, ValidationError
from ..models import QuantityPriceRule, Subcategory
from ..statuses import RuleKind

logger = logging.getLogger(__name__)

MAX_PERCENTAGE_BPS = 10000


class QuantityRuleService:
    """
    Rule writes are validated here so the resolver can assume sane data.
    The resolver still clamps anything that slips past (old rows, manual SQL).
    """

    def __init__(self, session):
        self.session = session

    def list_for_subcategory(self, subcategory_id: int, *, active_only: bool = False) -> list[dict]:
        self._subcategory(subcategory_id)
        query = self.session.query(QuantityPriceRule).filter_by(subcategory_id=subcategory_id)
        if active_only:
            query = query.filter(QuantityPriceRule.is_active.is_(True))
        rules = query.order_by(QuantityPriceRule.threshold_quantity.asc(), QuantityPriceRule.id.asc()).all()
        return [r.to_dict() for r in rules]

    def add_rule(self, subcategory_id: int, *, threshold_quantity: int, kind: str, value: int,
                 is_active: bool = True) -> QuantityPriceRule:
        self._subcategory(subcategory_id)
        kind = self._validate(threshold_quantity, kind, value)
        if is_active:
            self._ensure_unique_active(subcategory_id, threshold_quantity)

        rule = QuantityPriceRule(
            subcategory_id=subcategory_id,
            threshold_quantity=threshold_quantity,
            kind=kind,
            value=value,
            is_active=is_active,
        )
        self.session.add(rule)
        self.session.commit()
        logger.info("Quantity rule %s added to subcategory %s", rule.id, subcategory_id)
        return rule

    def update_rule(self, rule_id: int, data: dict) -> QuantityPriceRule:
        rule = self._rule(rule_id)
        threshold = data.get("threshold_quantity", rule.threshold_quantity)
        kind = data.get("kind", rule.kind)
        value = data.get("value", rule.value)
        is_active = bool(data.get("is_active", rule.is_active))

        kind = self._validate(threshold, kind, value)
        if is_active:
            self._ensure_unique_active(rule.subcategory_id, threshold, exclude_id=rule.id)

        rule.threshold_quantity = threshold
        rule.kind = kind
        rule.value = value
        rule.is_active = is_active
        self.session.commit()
        return rule

    def set_active(self, rule_id: int, is_active: bool) -> QuantityPriceRule:
        rule = self._rule(rule_id)
        if is_active and not rule.is_active:
            self._ensure_unique_active(rule.subcategory_id, rule.threshold_quantity, exclude_id=rule.id)
        rule.is_active = is_active
        self.session.commit()
        return rule

    def delete_rule(self, rule_id: int) -> None:
        rule = self._rule(rule_id)
        self.session.delete(rule)
        self.session.commit()

    # -- helpers ----------------------------------------------------------

    def _subcategory(self, subcategory_id: int) -> Subcategory:
        subcategory = self.session.get(Subcategory, subcategory_id)
        if subcategory is None:
            raise NotFound("Subcategory not found", details={"subcategory_id": subcategory_id})
        return subcategory

    def _rule(self, rule_id: int) -> QuantityPriceRule:
        rule = self.session.get(QuantityPriceRule, rule_id)
        if rule is None:
            raise NotFound("Quantity price rule not found", details={"rule_id": rule_id})
        return rule

    def _validate(self, threshold_quantity, kind: Optional[str], value) -> str:
        if isinstance(threshold_quantity, bool) or not isinstance(threshold_quantity, int) or threshold_quantity < 2:
            raise ValidationError("Quantity must be at least 2", details={"threshold_quantity": threshold_quantity})
        try:
            kind = RuleKind((kind or "").upper()).value
        except ValueError:
            raise ValidationError("kind must be PERCENTAGE or FIXED_TOTAL", details={"kind": kind})
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            raise ValidationError("value must be a positive integer", details={"value": value})
        if kind == RuleKind.PERCENTAGE.value and value > MAX_PERCENTAGE_BPS:
            raise ValidationError("Discount percentage cannot exceed 100%", details={"value": value})
        return kind

    def _ensure_unique_active(self, subcategory_id: int, threshold_quantity: int,
                              exclude_id: Optional[int] = None) -> None:
        query = self.session.query(QuantityPriceRule).filter(
            QuantityPriceRule.subcategory_id == subcategory_id,
            QuantityPriceRule.threshold_quantity == threshold_quantity,
            QuantityPriceRule.is_active.is_(True),
        )
        if exclude_id is not None:
            query = query.filter(QuantityPriceRule.id != exclude_id)
        if query.first() is not None:
            raise ValidationError(
                f"Quantity price for quantity {threshold_quantity} already exists for this subcategory",
                details={"threshold_quantity": threshold_quantity},
            )
