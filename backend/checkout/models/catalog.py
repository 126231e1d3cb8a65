from __future__ import annotations

from ..extensions import db
from checkout.time_utils import to_utc_z


class Subcategory(db.Model):
    """
    Pricing subcategory.

    Catalog CRUD lives elsewhere; only the reference that quantity price
    rules hang off is modelled here.
    """
    __tablename__ = "subcategories"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "is_active": self.is_active}


class Product(db.Model):
    """
    Product with three price lists.

    All prices are stored in cents. offer_price_cents and
    wholesale_price_cents are optional; normal_price_cents is the fallback.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_subcategory_status", "subcategory_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="ACTIVE", index=True)  # ACTIVE, INACTIVE

    normal_price_cents = db.Column(db.Integer, nullable=False)
    offer_price_cents = db.Column(db.Integer, nullable=True)
    wholesale_price_cents = db.Column(db.Integer, nullable=True)

    subcategory_id = db.Column(db.Integer, db.ForeignKey("subcategories.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    subcategory = db.relationship("Subcategory", backref=db.backref("products", lazy=True))

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status,
            "normal_price_cents": self.normal_price_cents,
            "offer_price_cents": self.offer_price_cents,
            "wholesale_price_cents": self.wholesale_price_cents,
            "subcategory_id": self.subcategory_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ProductVariant(db.Model):
    """
    Sellable variant of a product.

    stock is the only mutable inventory figure. It is decremented at
    settlement with a guarded UPDATE and may never go negative.
    """
    __tablename__ = "product_variants"
    __table_args__ = (
        db.CheckConstraint("stock >= 0", name="ck_product_variants_stock_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=True, unique=True)
    color = db.Column(db.String(64), nullable=True)
    size = db.Column(db.String(32), nullable=True)

    stock = db.Column(db.Integer, nullable=False, default=0)

    product = db.relationship("Product", backref=db.backref("variants", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "sku": self.sku,
            "color": self.color,
            "size": self.size,
            "stock": self.stock,
        }


class QuantityPriceRule(db.Model):
    """
    Threshold discount for a subcategory.

    value is basis points for PERCENTAGE (1500 = 15%) and cents for
    FIXED_TOTAL. A FIXED_TOTAL rule replaces the whole line total with value,
    it is not a per-unit price.
    """
    __tablename__ = "quantity_price_rules"
    __table_args__ = (
        db.CheckConstraint("threshold_quantity >= 2", name="ck_quantity_price_rules_threshold"),
        db.Index("ix_quantity_price_rules_lookup", "subcategory_id", "is_active", "threshold_quantity"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    subcategory_id = db.Column(db.Integer, db.ForeignKey("subcategories.id"), nullable=False)

    threshold_quantity = db.Column(db.Integer, nullable=False)
    kind = db.Column(db.String(16), nullable=False)  # PERCENTAGE, FIXED_TOTAL
    value = db.Column(db.Integer, nullable=False)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    subcategory = db.relationship("Subcategory", backref=db.backref("quantity_rules", lazy=True))

    def describe(self) -> str:
        if self.kind == "PERCENTAGE":
            return f"{self.value / 100:g}% off for {self.threshold_quantity}+ items"
        return f"{self.value / 100:.2f} for {self.threshold_quantity} items"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "subcategory_id": self.subcategory_id,
            "threshold_quantity": self.threshold_quantity,
            "kind": self.kind,
            "value": self.value,
            "is_active": self.is_active,
            "message": self.describe(),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
