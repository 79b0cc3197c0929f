from __future__ import annotations

from ..extensions import db
from scoopdesk.time_utils import to_utc_z


def _qty(value):
    return str(value) if value is not None else None


class Category(db.Model):
    """
    Product category.

    CATEGORY TYPES:
    - STANDARD: products priced by sale_price_cents (per unit or per kg)
    - ASSEMBLED: "Montado" products priced per size; the customer picks a
      size and a number of flavors bounded by the size's max_flavors
    """
    __tablename__ = "categories"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False, unique=True)
    description = db.Column(db.Text, nullable=True)
    category_type = db.Column(db.String(16), nullable=False, default="STANDARD")  # STANDARD, ASSEMBLED
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @property
    def is_assembled(self) -> bool:
        return self.category_type == "ASSEMBLED"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category_type": self.category_type,
            "is_active": self.is_active,
            "sizes": [s.to_dict() for s in self.sizes],
            "created_at": to_utc_z(self.created_at),
        }


class CategorySize(db.Model):
    """Size offered by an assembled category (e.g. P / M / G)."""
    __tablename__ = "category_sizes"
    __table_args__ = (
        db.UniqueConstraint("category_id", "name", name="uq_category_sizes_category_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=False, index=True)
    name = db.Column(db.String(32), nullable=False)
    max_flavors = db.Column(db.Integer, nullable=False, default=1)
    display_order = db.Column(db.Integer, nullable=False, default=0)

    category = db.relationship(
        "Category",
        backref=db.backref("sizes", lazy=True, order_by="CategorySize.display_order"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "category_id": self.category_id,
            "name": self.name,
            "max_flavors": self.max_flavors,
            "display_order": self.display_order,
        }


class Product(db.Model):
    """
    Sellable catalog entry.

    SALE TYPES:
    - UNIT: quantity is a whole count, price is per unit
    - WEIGHT: quantity is a weight in kg, price is per kg

    STOCK: current_stock is only meaningful when track_stock is set.
    It is decremented by settlement and never allowed below zero.
    """
    __tablename__ = "products"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=True, index=True)

    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(64), nullable=True, unique=True)
    sale_type = db.Column(db.String(16), nullable=False, default="UNIT")  # UNIT, WEIGHT

    sale_price_cents = db.Column(db.Integer, nullable=False, default=0)
    cost_price_cents = db.Column(db.Integer, nullable=False, default=0)

    track_stock = db.Column(db.Boolean, nullable=False, default=False)
    current_stock = db.Column(db.Numeric(12, 3), nullable=False, default=0)
    min_stock = db.Column(db.Numeric(12, 3), nullable=True)

    eligible_for_loyalty = db.Column(db.Boolean, nullable=False, default=True)
    earns_cashback = db.Column(db.Boolean, nullable=False, default=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    category = db.relationship("Category", backref=db.backref("products", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "category_id": self.category_id,
            "name": self.name,
            "code": self.code,
            "sale_type": self.sale_type,
            "sale_price_cents": self.sale_price_cents,
            "cost_price_cents": self.cost_price_cents,
            "track_stock": self.track_stock,
            "current_stock": _qty(self.current_stock),
            "min_stock": _qty(self.min_stock),
            "eligible_for_loyalty": self.eligible_for_loyalty,
            "earns_cashback": self.earns_cashback,
            "is_active": self.is_active,
            "size_prices": [p.to_dict() for p in self.size_prices],
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ProductCost(db.Model):
    """
    Time-ranged cost history.

    The newest row whose [valid_from, valid_to) window contains "now" is
    the current cost; without one, Product.cost_price_cents applies.
    """
    __tablename__ = "product_costs"
    __table_args__ = (
        db.Index("ix_product_costs_product_valid_from", "product_id", "valid_from"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    cost_cents = db.Column(db.Integer, nullable=False)
    valid_from = db.Column(db.DateTime(timezone=True), nullable=False)
    valid_to = db.Column(db.DateTime(timezone=True), nullable=True)
    notes = db.Column(db.String(255), nullable=True)

    product = db.relationship("Product", backref=db.backref("costs", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "cost_cents": self.cost_cents,
            "valid_from": to_utc_z(self.valid_from),
            "valid_to": to_utc_z(self.valid_to),
            "notes": self.notes,
        }


class ProductSizePrice(db.Model):
    """Per-size price of an assembled product."""
    __tablename__ = "product_size_prices"
    __table_args__ = (
        db.UniqueConstraint("product_id", "size_id", name="uq_product_size_prices_product_size"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    size_id = db.Column(db.Integer, db.ForeignKey("category_sizes.id"), nullable=False, index=True)
    price_cents = db.Column(db.Integer, nullable=False)

    product = db.relationship("Product", backref=db.backref("size_prices", lazy=True))
    size = db.relationship("CategorySize")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "size_id": self.size_id,
            "size_name": self.size.name if self.size else None,
            "price_cents": self.price_cents,
        }
