"""
Cart quotes: line pricing, tender tiers and coupon application.
"""

from datetime import timedelta

import pytest

from checkout.errors import (
    CouponExhausted,
    CouponInvalid,
    InsufficientStock,
    NoItems,
    ProductNotFound,
    ProductUnavailable,
)
from checkout.models import Product
from checkout.schemas import CartLine
from checkout.time_utils import utcnow


class TestQuoteTotals:
    def test_quantity_rule_flows_into_subtotal(self, services, catalog, line):
        quote = services.quotes.build([line(catalog["product"], 12, catalog["variant"])])
        data = quote.to_dict()

        assert data["subtotal_cents"] == 102000
        assert data["quantity_savings_cents"] == 18000
        assert data["discount_cents"] == 0
        assert data["total_cents"] == 102000
        assert data["items"][0]["unit_price_cents"] == 8500
        assert data["items"][0]["applied_rule"]["threshold_quantity"] == 10

    def test_fixed_coupon_over_minimum(self, services, catalog, line, make_coupon):
        """50.00 off a 600.00 order leaves 550.00."""
        make_coupon()

        quote = services.quotes.build([line(catalog["product"], 6, catalog["variant"])], "save50")

        assert quote.to_dict()["subtotal_cents"] == 60000
        assert quote.to_dict()["discount_cents"] == 5000
        assert quote.total_cents == 55000
        assert quote.coupon_code == "SAVE50"

    def test_coupon_below_minimum_is_rejected(self, services, catalog, line, make_coupon):
        make_coupon()

        with pytest.raises(CouponInvalid) as exc:
            services.quotes.build([line(catalog["product"], 4, catalog["variant"])], "SAVE50")
        assert "Minimum order amount" in exc.value.message

    def test_percentage_coupon_is_capped(self, services, catalog, line, make_coupon):
        make_coupon("TENOFF", discount_type="PERCENTAGE", discount_value=1000,
                    max_discount_cents=3000, min_order_cents=0)

        quote = services.quotes.build([line(catalog["product"], 6, catalog["variant"])], "TENOFF")

        assert quote.to_dict()["discount_cents"] == 3000

    def test_discount_never_exceeds_subtotal(self, services, catalog, line, make_coupon):
        make_coupon("BIG", discount_value=999999, min_order_cents=0)

        quote = services.quotes.build([line(catalog["product"], 1, catalog["variant"])], "BIG")

        assert quote.total_cents == 0

    def test_shipping_is_added(self, services, catalog, line):
        services.quotes.shipping_cost_cents = 4900
        quote = services.quotes.build([line(catalog["product"], 1)])
        assert quote.total_cents == 14900

    def test_rounded_parts_add_up_to_total(self, services, catalog, line, make_coupon, db_session):
        """3.33 x 10 at 15% off is 28.305; a further 10% coupon lands on half cents twice."""
        product = Product(name="Sticker Pack", normal_price_cents=333, subcategory_id=catalog["subcategory"].id)
        db_session.add(product)
        db_session.commit()
        make_coupon("TENOFF", discount_type="PERCENTAGE", discount_value=1000, min_order_cents=0)

        data = services.quotes.build([line(product, 10)], "TENOFF").to_dict()

        assert data["subtotal_cents"] == 2831
        assert data["total_cents"] == 2547
        assert data["subtotal_cents"] - data["discount_cents"] + data["shipping_cost_cents"] == data["total_cents"]

    def test_building_has_no_side_effects(self, services, catalog, line, make_coupon, db_session):
        coupon = make_coupon()
        services.quotes.build([line(catalog["product"], 6, catalog["variant"])], "SAVE50")

        db_session.refresh(catalog["variant"])
        db_session.refresh(coupon)
        assert catalog["variant"].stock == 100
        assert coupon.used_count == 0


class TestTenderTier:
    def test_wholesale_uses_wholesale_price(self, services, catalog, line):
        quote = services.quotes.build([line(catalog["product"], 2)], tender_tier="WHOLESALE")
        assert quote.total_cents == 16000

    def test_retail_prefers_offer_price(self, services, catalog, line, db_session):
        catalog["product"].offer_price_cents = 9000
        db_session.commit()

        quote = services.quotes.build([line(catalog["product"], 2)])
        assert quote.total_cents == 18000

    def test_wholesale_without_wholesale_price_falls_back(self, services, catalog, line, db_session):
        catalog["product"].wholesale_price_cents = None
        db_session.commit()

        quote = services.quotes.build([line(catalog["product"], 2)], tender_tier="WHOLESALE")
        assert quote.total_cents == 20000


class TestQuoteErrors:
    def test_empty_cart(self, services, catalog):
        with pytest.raises(NoItems):
            services.quotes.build([])

    def test_unknown_product(self, services, catalog):
        with pytest.raises(ProductNotFound):
            services.quotes.build([CartLine(product_id=9999, quantity=1)])

    def test_inactive_product(self, services, catalog, line, db_session):
        catalog["product"].status = "INACTIVE"
        db_session.commit()

        with pytest.raises(ProductUnavailable):
            services.quotes.build([line(catalog["product"], 1)])

    def test_variant_of_another_product(self, services, catalog, db_session):
        other = Product(name="Hoodie", normal_price_cents=20000)
        db_session.add(other)
        db_session.commit()

        with pytest.raises(ProductNotFound):
            services.quotes.build([CartLine(product_id=other.id, quantity=1, variant_id=catalog["variant"].id)])

    def test_insufficient_stock_reports_available(self, services, catalog, line):
        with pytest.raises(InsufficientStock) as exc:
            services.quotes.build([line(catalog["product"], 6, catalog["scarce"])])
        assert exc.value.details["available"] == 5
        assert exc.value.details["requested"] == 6

    def test_stock_is_checked_across_lines_for_the_same_variant(self, services, catalog, line):
        lines = [line(catalog["product"], 3, catalog["scarce"]), line(catalog["product"], 3, catalog["scarce"])]

        with pytest.raises(InsufficientStock) as exc:
            services.quotes.build(lines)
        assert exc.value.details["available"] == 5
        assert exc.value.details["requested"] == 6

    def test_split_lines_within_stock_are_accepted(self, services, catalog, line):
        lines = [line(catalog["product"], 2, catalog["scarce"]), line(catalog["product"], 3, catalog["scarce"])]

        assert services.quotes.build(lines).total_cents == 50000

    def test_expired_coupon(self, services, catalog, line, make_coupon):
        make_coupon(valid_until=utcnow() - timedelta(minutes=1))

        with pytest.raises(CouponInvalid) as exc:
            services.quotes.build([line(catalog["product"], 6)], "SAVE50")
        assert exc.value.message == "Invalid or expired coupon"

    def test_exhausted_coupon(self, services, catalog, line, make_coupon):
        make_coupon(usage_limit=1, used_count=1)

        with pytest.raises(CouponExhausted):
            services.quotes.build([line(catalog["product"], 6)], "SAVE50")
